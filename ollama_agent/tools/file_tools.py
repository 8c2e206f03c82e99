"""Text editor tools: view, create and replace, with path sandboxing and atomic writes."""

from __future__ import annotations

import difflib
import os
import tempfile
from pathlib import Path
from typing import Any

from ollama_agent.config import MAX_TOOL_OUTPUT_CHARS
from ollama_agent.conversation import ToolResult
from ollama_agent.tools.base import BaseTool


def _atomic_write(path: Path, content: str) -> None:
    """Write content to path atomically using a temp file + os.replace()."""
    parent = path.parent
    parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(dir=str(parent), suffix=".tmp")
    try:
        with os.fdopen(fd, "w") as f:
            f.write(content)
        os.replace(tmp_path, str(path))
    except BaseException:
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise


def _make_diff(path: Path, old_content: str, new_content: str) -> str:
    """Generate a unified diff string between old and new content."""
    diff = difflib.unified_diff(
        old_content.splitlines(keepends=True),
        new_content.splitlines(keepends=True),
        fromfile=str(path), tofile=str(path),
    )
    return "".join(diff)


class ViewFileTool(BaseTool):
    @property
    def name(self) -> str:
        return "view_file"

    @property
    def description(self) -> str:
        return (
            "View the contents of a file with line numbers, or list a directory. "
            "ALWAYS view a file before editing it. "
            "Use start_line and end_line (1-based, inclusive) for large files."
        )

    @property
    def parameters(self) -> dict:
        return {
            "type": "object",
            "properties": {
                "path": {"type": "string", "description": "Path to file or directory"},
                "start_line": {"type": "integer", "description": "First line to show (optional)"},
                "end_line": {"type": "integer", "description": "Last line to show (optional)"},
            },
            "required": ["path"],
        }

    def execute(self, **kwargs: Any) -> ToolResult:
        path, error = self._path_argument(kwargs.get("path"))
        if error:
            return error

        if not path.exists():
            return ToolResult(success=False, error=f"File or directory not found: {path}")

        if path.is_dir():
            entries = sorted(p.name + ("/" if p.is_dir() else "") for p in path.iterdir())
            return ToolResult(success=True, output=f"Directory contents of {path}:\n" + "\n".join(entries))

        try:
            lines = path.read_text(errors="replace").splitlines()
        except OSError as e:
            return ToolResult(success=False, error=f"Error reading file: {e}")

        start_line = kwargs.get("start_line")
        end_line = kwargs.get("end_line")
        total = len(lines)
        if isinstance(start_line, int) and isinstance(end_line, int):
            start = max(start_line, 1) - 1
            end = min(end_line, total)
            if start >= end:
                return ToolResult(success=False, error=f"Invalid line range {start_line}-{end_line} for {total}-line file")
        else:
            start, end = 0, total

        numbered = "\n".join(f"{i:>6}\t{line}" for i, line in enumerate(lines[start:end], start=start + 1))
        if len(numbered) > MAX_TOOL_OUTPUT_CHARS:
            numbered = numbered[:MAX_TOOL_OUTPUT_CHARS] + f"\n... [truncated at {MAX_TOOL_OUTPUT_CHARS} chars]"

        header = f"File: {path} ({total} lines)"
        if start > 0 or end < total:
            header += f" [showing lines {start + 1}-{end}]"
        return ToolResult(success=True, output=f"{header}\n{numbered}")


class CreateFileTool(BaseTool):
    @property
    def name(self) -> str:
        return "create_file"

    @property
    def description(self) -> str:
        return (
            "Create a new file with the given content. Creates parent directories. "
            "Fails if the file already exists; use str_replace_editor to change existing files."
        )

    @property
    def parameters(self) -> dict:
        return {
            "type": "object",
            "properties": {
                "path": {"type": "string", "description": "Path of the file to create"},
                "content": {"type": "string", "description": "Content to write"},
            },
            "required": ["path", "content"],
        }

    @property
    def requires_confirmation(self) -> bool:
        return True

    @property
    def confirmation_category(self) -> str:
        return "file"

    def execute(self, **kwargs: Any) -> ToolResult:
        path, error = self._path_argument(kwargs.get("path"))
        if error:
            return error
        content = kwargs.get("content", "")
        if not isinstance(content, str):
            content = str(content)

        if path.exists():
            return ToolResult(success=False, error=f"File already exists: {path}")

        try:
            _atomic_write(path, content)
        except OSError as e:
            return ToolResult(success=False, error=f"Error writing file: {e}")
        lines = content.count("\n") + (1 if content and not content.endswith("\n") else 0)
        return ToolResult(success=True, output=f"Created {path} ({lines} lines)")


class StrReplaceEditorTool(BaseTool):
    @property
    def name(self) -> str:
        return "str_replace_editor"

    @property
    def description(self) -> str:
        return (
            "Replace text in an existing file. old_str must match exactly, including "
            "whitespace. Set replace_all to replace every occurrence; otherwise old_str "
            "must be unique. Returns a unified diff."
        )

    @property
    def parameters(self) -> dict:
        return {
            "type": "object",
            "properties": {
                "path": {"type": "string", "description": "Path of the file to edit"},
                "old_str": {"type": "string", "description": "Exact text to replace"},
                "new_str": {"type": "string", "description": "Replacement text"},
                "replace_all": {"type": "boolean", "description": "Replace all occurrences (default false)"},
            },
            "required": ["path", "old_str", "new_str"],
        }

    @property
    def requires_confirmation(self) -> bool:
        return True

    @property
    def confirmation_category(self) -> str:
        return "file"

    def execute(self, **kwargs: Any) -> ToolResult:
        path, error = self._path_argument(kwargs.get("path"))
        if error:
            return error
        old_str = kwargs.get("old_str")
        new_str = kwargs.get("new_str", "")
        replace_all = bool(kwargs.get("replace_all", False))

        if not isinstance(old_str, str) or old_str == "":
            return ToolResult(success=False, error="old_str must be a non-empty string")
        if not isinstance(new_str, str):
            new_str = str(new_str)
        if not path.is_file():
            return ToolResult(success=False, error=f"File not found: {path}")

        try:
            content = path.read_text()
        except OSError as e:
            return ToolResult(success=False, error=f"Error reading file: {e}")

        count = content.count(old_str)
        if count == 0:
            first_line = old_str.splitlines()[0] if old_str.splitlines() else old_str
            partial = [
                f"  Line {i + 1}: {line.rstrip()}"
                for i, line in enumerate(content.splitlines())
                if first_line.strip() and first_line.strip() in line
            ]
            hint = "\n\nPartial matches found:\n" + "\n".join(partial[:5]) if partial else ""
            return ToolResult(success=False, error=f"String not found in {path}.{hint}")
        if count > 1 and not replace_all:
            return ToolResult(
                success=False,
                error=f"String found {count} times in {path}. Add context to make it unique or set replace_all.",
            )

        new_content = content.replace(old_str, new_str) if replace_all else content.replace(old_str, new_str, 1)
        try:
            _atomic_write(path, new_content)
        except OSError as e:
            return ToolResult(success=False, error=f"Error writing file: {e}")

        replaced = count if replace_all else 1
        diff_text = _make_diff(path, content, new_content)
        return ToolResult(success=True, output=f"Updated {path} ({replaced} replacement(s))\n\n{diff_text}")
