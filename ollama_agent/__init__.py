"""Ollama Agent - a terminal coding assistant for local models."""

__version__ = "0.1.0"
