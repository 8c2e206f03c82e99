"""Shared fixtures for ollama_agent tests."""

import logging
from pathlib import Path

import ollama
import pytest

from ollama_agent import logging_config
from ollama_agent.session import SessionContext


@pytest.fixture(autouse=True)
def isolated_logs(tmp_path: Path, monkeypatch):
    """Keep audit and app logs out of the real home directory."""
    logs_dir = tmp_path / "logs"
    monkeypatch.setattr(logging_config, "LOGS_DIR", logs_dir)
    monkeypatch.setattr(logging_config, "AUDIT_LOG_FILE", logs_dir / "audit.jsonl")
    monkeypatch.setattr(logging_config, "APP_LOG_FILE", logs_dir / "ollama-agent.log")
    audit = logging.getLogger("ollama_agent.audit")
    saved = list(audit.handlers)
    for handler in saved:
        audit.removeHandler(handler)
    yield logs_dir
    for handler in list(audit.handlers):
        audit.removeHandler(handler)
        handler.close()
    for handler in saved:
        audit.addHandler(handler)


@pytest.fixture
def tmp_workdir(tmp_path: Path) -> Path:
    """Create a temporary working directory for tool tests."""
    workdir = tmp_path / "project"
    workdir.mkdir()
    return workdir


@pytest.fixture
def sample_file(tmp_workdir: Path) -> Path:
    """Create a sample source file in the temp workdir."""
    f = tmp_workdir / "hello.py"
    f.write_text('def greet(name):\n    return f"Hello, {name}!"\n')
    return f


@pytest.fixture
def context() -> SessionContext:
    return SessionContext()


class FakeClient:
    """Stands in for ollama.Client.

    ``chat_results`` is consumed one item per chat() call. An item is
    either an exception to raise, a list of fragment dicts (returned as a
    stream when stream=True) or a single response dict.
    """

    def __init__(self, chat_results=None, models=None):
        self.chat_results = list(chat_results or [])
        self.models = models if models is not None else ["qwen2.5-coder:3b"]
        self.calls: list[dict] = []
        self.pulled: list[str] = []

    def chat(self, **payload):
        self.calls.append(payload)
        if not self.chat_results:
            raise AssertionError("unexpected chat() call")
        item = self.chat_results.pop(0)
        if isinstance(item, BaseException):
            raise item
        if payload.get("stream"):
            if isinstance(item, list) or hasattr(item, "__next__"):
                return iter(item)
            return iter([item])
        return item

    def list(self):
        return {"models": [{"model": name} for name in self.models]}

    def pull(self, name):
        self.pulled.append(name)
        self.models.append(name)
        return {"status": "success"}


@pytest.fixture
def fake_client():
    return FakeClient()


@pytest.fixture
def sleep_calls():
    """Records backoff delays instead of sleeping."""
    delays: list[float] = []
    return delays


def chat_chunk(content="", tool_calls=(), done=False):
    """Build a real ollama.ChatResponse chunk.

    ``tool_calls`` is a sequence of (name, arguments-mapping) pairs. Going
    through the client's pydantic models means fields it does not know
    about (call ids, indexes) are dropped, exactly as on the wire.
    """
    calls = [
        ollama.Message.ToolCall(function=ollama.Message.ToolCall.Function(name=name, arguments=arguments))
        for name, arguments in tool_calls
    ]
    message = ollama.Message(role="assistant", content=content, tool_calls=calls or None)
    return ollama.ChatResponse(model="test-model", message=message, done=done)
