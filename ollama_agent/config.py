"""Configuration constants, settings files and AppConfig dataclass."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

logger = logging.getLogger("ollama_agent.config")


# Default model for tool-calling tasks
DEFAULT_MODEL = "qwen2.5-coder:3b"

# Models offered when the server cannot be queried
DEFAULT_MODELS: list[str] = [
    "qwen2.5-coder:3b",
    "llama3.2:3b",
    "codellama:7b",
    "mistral:7b",
    "deepseek-coder:6.7b",
    "qwen2.5:7b",
]

# Base directory for all user-level data
DATA_DIR = Path.home() / ".ollama-agent"
USER_SETTINGS_FILE = DATA_DIR / "user-settings.json"
HISTORY_FILE = DATA_DIR / "history"

# Project-level directory, relative to the working directory
PROJECT_DIR_NAME = ".ollama-agent"
PROJECT_SETTINGS_NAME = "settings.json"
CUSTOM_INSTRUCTIONS_NAME = "OLLAMA.md"

# Ollama settings
OLLAMA_BASE_URL = os.environ.get("OLLAMA_BASE_URL", "http://localhost:11434")
OLLAMA_TIMEOUT = int(os.environ.get("OLLAMA_TIMEOUT", "300000")) / 1000  # ms -> seconds

# Agent loop limits
MAX_TOOL_ROUNDS = 50

# Retry settings
MAX_RETRIES = 3
RETRY_BASE_DELAY = 1.0
LARGE_PAYLOAD_BYTES = 100_000

# Context window management
CONTEXT_TOKEN_THRESHOLD = 15_000
COMPACT_MIN_MESSAGES = 10
COMPACT_KEEP_RECENT = 6
SUMMARY_TOOL_RESULT_CHARS = 100
SUMMARY_MAX_CHARS = 1_000

# Tool limits
DEFAULT_BASH_TIMEOUT = 30  # seconds
MAX_TOOL_OUTPUT_CHARS = 30_000
MAX_SEARCH_RESULTS = 50

# Prefix that routes a tool call to an external (MCP) server
EXTERNAL_TOOL_PREFIX = "mcp__"

# ── Bash command safety ──────────────────────────────────────────────────────
# Blocked commands: hard reject, never allowed
BLOCKED_BASH_PATTERNS: list[str] = [
    r"rm\s+-[^\s]*r[^\s]*f[^\s]*\s+/\s*$",   # rm -rf /
    r"rm\s+-[^\s]*f[^\s]*r[^\s]*\s+/\s*$",   # rm -fr /
    r"mkfs\b",                                 # mkfs (format disk)
    r"dd\s+if=/dev/",                          # dd if=/dev/... (raw disk)
    r">\s*/dev/sd[a-z]",                       # > /dev/sda (overwrite disk)
    r":\(\)\s*\{\s*:\|:\s*&\s*\}\s*;",        # fork bomb :(){ :|:& };
    r"chmod\s+-R\s+777\s+/\s*$",              # chmod -R 777 /
    r"wget\s+.*\|\s*(ba)?sh",                  # wget pipe to shell
    r"curl\s+.*\|\s*(ba)?sh",                  # curl pipe to shell
]

# Dangerous commands: confirmation required even when bash is auto-accepted
DANGEROUS_BASH_PATTERNS: list[str] = [
    r"^rm\s+.*-[^\s]*r",                       # recursive delete
    r"^rm\s+.*-[^\s]*f",                       # forced delete
    r"^sudo\s",
    r"^chmod\s+.*777",
    r"^fdisk\s",
    r"^format\s",
    r"^killall\s",
    r"^pkill\s",
    r"^systemctl\s",
    r"^service\s",
    r"^mount\s",
    r"^umount\s",
    r"git\s+reset\s+--hard",
    r"git\s+push\s+.*(--force|-f\b)",
]

# File path sandboxing
SENSITIVE_PATHS: list[str] = [
    "~/.ssh",
    "~/.gnupg",
    "~/.aws",
    "~/.kube",
    "/etc/shadow",
    "/etc/sudoers",
]

# Allowed paths outside working directory (always accessible)
ALLOWED_EXTRA_PATHS: list[str] = [
    "/tmp",
]


def load_json_file(path: Path) -> dict[str, Any]:
    """Read a JSON settings file. Returns {} when missing or unreadable."""
    if not path.exists():
        return {}
    try:
        data = json.loads(path.read_text())
    except (json.JSONDecodeError, OSError) as e:
        logger.warning("Failed to read settings file %s: %s", path, e)
        return {}
    if not isinstance(data, dict):
        logger.warning("Ignoring settings file %s: top level is not an object", path)
        return {}
    return data


class SettingsManager:
    """Reads and writes user-level and project-level settings.

    User settings (``~/.ollama-agent/user-settings.json``):
        baseURL, defaultModel, models
    Project settings (``.ollama-agent/settings.json`` in the working dir):
        model, mcpServers
    """

    USER_DEFAULTS: dict[str, Any] = {
        "baseURL": OLLAMA_BASE_URL,
        "defaultModel": None,
        "models": [],
    }
    PROJECT_DEFAULTS: dict[str, Any] = {
        "model": None,
        "mcpServers": {},
    }

    def __init__(self, working_dir: str | None = None, user_settings_path: Path | None = None):
        self.working_dir = Path(working_dir or os.getcwd())
        self.user_settings_path = user_settings_path or USER_SETTINGS_FILE
        self.project_settings_path = self.working_dir / PROJECT_DIR_NAME / PROJECT_SETTINGS_NAME

    def load_user_settings(self) -> dict[str, Any]:
        return {**self.USER_DEFAULTS, **load_json_file(self.user_settings_path)}

    def load_project_settings(self) -> dict[str, Any]:
        return {**self.PROJECT_DEFAULTS, **load_json_file(self.project_settings_path)}

    def save_user_settings(self, updates: dict[str, Any]) -> None:
        """Merge *updates* into the user settings file (mode 0600)."""
        merged = {**self.load_user_settings(), **updates}
        self._write(self.user_settings_path, merged)
        os.chmod(self.user_settings_path, 0o600)

    def save_project_settings(self, updates: dict[str, Any]) -> None:
        merged = {**self.load_project_settings(), **updates}
        self._write(self.project_settings_path, merged)

    @staticmethod
    def _write(path: Path, data: dict[str, Any]) -> None:
        path.parent.mkdir(parents=True, exist_ok=True, mode=0o700)
        path.write_text(json.dumps(data, indent=2) + "\n")

    def current_model(self) -> str:
        """Project model, then user default, then built-in default."""
        project_model = self.load_project_settings().get("model")
        if project_model:
            return project_model
        user_model = self.load_user_settings().get("defaultModel")
        return user_model or DEFAULT_MODEL

    def set_current_model(self, model: str) -> None:
        self.save_project_settings({"model": model})

    def base_url(self) -> str:
        return self.load_user_settings().get("baseURL") or OLLAMA_BASE_URL

    def mcp_servers(self) -> dict[str, Any]:
        servers = self.load_project_settings().get("mcpServers") or {}
        return servers if isinstance(servers, dict) else {}

    def custom_instructions(self) -> str | None:
        """Contents of .ollama-agent/OLLAMA.md, if present."""
        path = self.working_dir / PROJECT_DIR_NAME / CUSTOM_INSTRUCTIONS_NAME
        if not path.exists():
            return None
        try:
            text = path.read_text().strip()
        except OSError as e:
            logger.warning("Failed to read custom instructions: %s", e)
            return None
        return text or None


@dataclass
class AppConfig:
    """Runtime configuration for the application."""

    model: str = DEFAULT_MODEL
    working_dir: str = field(default_factory=lambda: os.getcwd())
    base_url: str = OLLAMA_BASE_URL
    timeout: float = OLLAMA_TIMEOUT
    max_tool_rounds: int = MAX_TOOL_ROUNDS
    context_token_threshold: int = CONTEXT_TOKEN_THRESHOLD
    auto_accept_tools: bool = False
    verbose: bool = False
    custom_instructions: str | None = None
    mcp_servers: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_settings_and_cli(cls, cli_overrides: dict, settings: SettingsManager | None = None) -> "AppConfig":
        """Create AppConfig by merging settings files with CLI overrides.

        Priority: CLI flags > project settings > user settings > dataclass defaults
        """
        working_dir = cli_overrides.get("working_dir") or os.getcwd()
        settings = settings or SettingsManager(working_dir)

        merged: dict[str, Any] = {
            "working_dir": working_dir,
            "model": settings.current_model(),
            "base_url": settings.base_url(),
            "custom_instructions": settings.custom_instructions(),
            "mcp_servers": settings.mcp_servers(),
        }

        # CLI overrides take priority (only non-None values)
        for key, value in cli_overrides.items():
            if value is not None:
                merged[key] = value

        return cls(**merged)

    @property
    def model_short_name(self) -> str:
        """Return model name without tag for display."""
        return self.model.split(":")[0]
