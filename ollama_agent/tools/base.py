"""Tool interface shared by every tool, and the path sandbox tools resolve through."""

from __future__ import annotations

import os
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Iterable

from ollama_agent.config import ALLOWED_EXTRA_PATHS, SENSITIVE_PATHS
from ollama_agent.conversation import ToolResult


class PathSandboxError(Exception):
    """Raised when a file path violates sandboxing rules."""


def _expand(path: str) -> Path:
    return Path(os.path.expanduser(path)).resolve()


class PathSandbox:
    """Decides which resolved paths tools may touch.

    Anything under a sensitive location is refused first; otherwise the path
    must sit inside the working directory or one of the extra allowed roots.
    """

    def __init__(
        self,
        working_dir: Path,
        sensitive: Iterable[str] = SENSITIVE_PATHS,
        extra_roots: Iterable[str] = ALLOWED_EXTRA_PATHS,
    ):
        self.working_dir = working_dir
        self.sensitive = [(entry, _expand(entry)) for entry in sensitive]
        self.roots = [working_dir, *(_expand(entry) for entry in extra_roots)]

    def resolve(self, path: str) -> Path:
        """Resolve *path* against the working directory and check it."""
        p = Path(os.path.expanduser(path))
        resolved = p.resolve() if p.is_absolute() else (self.working_dir / p).resolve()
        self.check(resolved)
        return resolved

    def check(self, resolved: Path) -> None:
        for entry, location in self.sensitive:
            if resolved.is_relative_to(location):
                raise PathSandboxError(
                    f"Access denied: {resolved} is in a sensitive location ({entry})"
                )
        if not any(resolved.is_relative_to(root) for root in self.roots):
            raise PathSandboxError(
                f"Access denied: {resolved} is outside the working directory ({self.working_dir})."
            )


class BaseTool(ABC):
    """Base class that all tools must inherit from."""

    def __init__(self, working_dir: str):
        self.working_dir = Path(working_dir).resolve()
        self.sandbox = PathSandbox(self.working_dir)

    @property
    @abstractmethod
    def name(self) -> str:
        """Tool name as the model will call it."""
        ...

    @property
    @abstractmethod
    def description(self) -> str:
        ...

    @property
    @abstractmethod
    def parameters(self) -> dict:
        """JSON Schema for the tool's parameters."""
        ...

    @property
    def requires_confirmation(self) -> bool:
        return False

    @property
    def confirmation_category(self) -> str:
        """Session flag that can pre-approve this tool ("bash", "file" or "all")."""
        return "all"

    def is_dangerous(self, args: dict) -> bool:
        """Calls that need confirmation even when the category is pre-approved."""
        return False

    @abstractmethod
    def execute(self, **kwargs: Any) -> ToolResult:
        """Execute the tool. Must always return a ToolResult, never raise."""
        ...

    def _resolve_path(self, path: str) -> Path:
        """Raises PathSandboxError if the path is disallowed."""
        return self.sandbox.resolve(path)

    def _path_argument(self, value: Any, default: Path | None = None) -> tuple[Path | None, ToolResult | None]:
        """Turn a model-supplied path argument into (path, None) or (None, error result).

        A missing argument falls back to *default* when one is given.
        """
        if value is None and default is not None:
            return default, None
        if not isinstance(value, str) or not value.strip():
            return None, ToolResult(
                success=False,
                error=f"Invalid path parameter: {value!r}. Path must be a non-empty string.",
            )
        try:
            return self._resolve_path(value.strip()), None
        except PathSandboxError as e:
            return None, ToolResult(success=False, error=str(e))

    def to_tool_definition(self) -> dict:
        """Convert to the function-calling schema the chat endpoint accepts."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }
