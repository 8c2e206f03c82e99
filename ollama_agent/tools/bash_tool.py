"""Bash command execution tool with safety classification."""

from __future__ import annotations

import re
import subprocess
from pathlib import Path
from typing import Any

from ollama_agent.config import (
    BLOCKED_BASH_PATTERNS,
    DANGEROUS_BASH_PATTERNS,
    DEFAULT_BASH_TIMEOUT,
    MAX_TOOL_OUTPUT_CHARS,
)
from ollama_agent.conversation import ToolResult
from ollama_agent.tools.base import BaseTool


class CommandSafety:
    """Classifies bash commands into blocked, dangerous, or allowed."""

    BLOCKED = "blocked"
    DANGEROUS = "dangerous"
    ALLOWED = "allowed"

    _blocked_re = [re.compile(p, re.IGNORECASE) for p in BLOCKED_BASH_PATTERNS]
    _dangerous_re = [re.compile(p, re.IGNORECASE) for p in DANGEROUS_BASH_PATTERNS]

    @classmethod
    def classify(cls, command: str) -> tuple[str, str]:
        """Classify a command. Returns (level, matched pattern)."""
        command = command.strip()
        for pattern in cls._blocked_re:
            if pattern.search(command):
                return cls.BLOCKED, pattern.pattern
        for pattern in cls._dangerous_re:
            if pattern.search(command):
                return cls.DANGEROUS, pattern.pattern
        return cls.ALLOWED, ""


class BashTool(BaseTool):
    def __init__(self, working_dir: str):
        super().__init__(working_dir)
        self.current_dir = self.working_dir

    @property
    def name(self) -> str:
        return "bash"

    @property
    def description(self) -> str:
        return (
            "Execute a bash command in the current directory. "
            f"Output is truncated at {MAX_TOOL_OUTPUT_CHARS} characters. "
            f"Default timeout: {DEFAULT_BASH_TIMEOUT}s. "
            "'cd <dir>' changes the directory used by later commands. "
            "Prefer the search tool over 'grep' or 'find'."
        )

    @property
    def parameters(self) -> dict:
        return {
            "type": "object",
            "properties": {
                "command": {
                    "type": "string",
                    "description": "The bash command to execute",
                },
            },
            "required": ["command"],
        }

    @property
    def requires_confirmation(self) -> bool:
        return True

    @property
    def confirmation_category(self) -> str:
        return "bash"

    def is_dangerous(self, args: dict) -> bool:
        level, _ = CommandSafety.classify(str(args.get("command", "")))
        return level == CommandSafety.DANGEROUS

    def execute(self, **kwargs: Any) -> ToolResult:
        command = kwargs.get("command", "")
        timeout = kwargs.get("timeout", DEFAULT_BASH_TIMEOUT)

        if not command or not isinstance(command, str):
            return ToolResult(success=False, error="command is required")

        level, reason = CommandSafety.classify(command)
        if level == CommandSafety.BLOCKED:
            return ToolResult(
                success=False,
                error=(
                    f"BLOCKED: This command matches a dangerous pattern and cannot be executed.\n"
                    f"Pattern: {reason}\n"
                    f"Command: {command}"
                ),
            )

        stripped = command.strip()
        if stripped == "cd" or stripped.startswith("cd "):
            return self._change_dir(stripped[2:].strip() or str(Path.home()))

        try:
            result = subprocess.run(
                command,
                shell=True,
                capture_output=True,
                text=True,
                timeout=timeout,
                cwd=str(self.current_dir),
            )
        except subprocess.TimeoutExpired:
            return ToolResult(success=False, error=f"Command timed out after {timeout} seconds")
        except Exception as e:
            return ToolResult(success=False, error=f"Command failed: {e}")

        output = result.stdout
        if result.stderr:
            output += f"\nSTDERR: {result.stderr}"
        output = output.strip()

        if len(output) > MAX_TOOL_OUTPUT_CHARS:
            output = output[:MAX_TOOL_OUTPUT_CHARS] + f"\n... [truncated at {MAX_TOOL_OUTPUT_CHARS} chars]"

        if result.returncode != 0:
            return ToolResult(
                success=False,
                error=f"Command failed with exit code {result.returncode}" + (f"\n{output}" if output else ""),
            )
        return ToolResult(success=True, output=output or "Command executed successfully (no output)")

    def _change_dir(self, target: str) -> ToolResult:
        new_dir = Path(target).expanduser()
        if not new_dir.is_absolute():
            new_dir = self.current_dir / new_dir
        new_dir = new_dir.resolve()
        if not new_dir.is_dir():
            return ToolResult(success=False, error=f"Cannot change directory: {target} is not a directory")
        self.current_dir = new_dir
        return ToolResult(success=True, output=f"Changed directory to: {self.current_dir}")
