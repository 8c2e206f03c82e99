"""Unified text and file search tool."""

from __future__ import annotations

import fnmatch
import os
import re
from pathlib import Path
from typing import Any

from ollama_agent.config import MAX_SEARCH_RESULTS
from ollama_agent.conversation import ToolResult
from ollama_agent.tools.base import BaseTool

# Directories to always skip
SKIP_DIRS = {
    ".git", "__pycache__", "node_modules", ".venv", "venv",
    ".tox", ".mypy_cache", ".pytest_cache", "dist", "build", ".eggs",
}

# Binary file extensions to skip for text search
BINARY_EXTENSIONS = {
    ".pyc", ".pyo", ".so", ".o", ".a", ".lib", ".dll", ".exe",
    ".bin", ".dat", ".db", ".sqlite", ".sqlite3",
    ".png", ".jpg", ".jpeg", ".gif", ".bmp", ".ico",
    ".pdf", ".zip", ".tar", ".gz", ".bz2", ".xz", ".7z",
    ".mp3", ".mp4", ".avi", ".mov", ".wav",
    ".woff", ".woff2", ".ttf", ".eot",
}

MAX_FILE_BYTES = 1_000_000


def _should_skip_dir(name: str, include_hidden: bool) -> bool:
    if name in SKIP_DIRS or name.endswith(".egg-info"):
        return True
    return name.startswith(".") and not include_hidden


def file_match_score(query: str, rel_path: str) -> int:
    """Score how well a path matches a file-name query (0 = no match)."""
    q = query.lower()
    name = os.path.basename(rel_path).lower()
    path = rel_path.lower()
    if any(ch in q for ch in "*?["):
        return 90 if fnmatch.fnmatch(name, q) or fnmatch.fnmatch(path, q) else 0
    if name == q:
        return 100
    if name.startswith(q):
        return 80
    if q in name:
        return 60
    if q in path:
        return 40
    return 0


class SearchTool(BaseTool):
    @property
    def name(self) -> str:
        return "search"

    @property
    def description(self) -> str:
        return (
            "Search for text inside files and/or find files by name. "
            "search_type: 'text' (file contents), 'files' (file names, default) or 'both'. "
            f"Returns at most {MAX_SEARCH_RESULTS} results by default. "
            "Skips .git, node_modules, virtualenvs and binary files."
        )

    @property
    def parameters(self) -> dict:
        return {
            "type": "object",
            "properties": {
                "query": {"type": "string", "description": "Text, regex or file name to search for"},
                "search_type": {"type": "string", "enum": ["text", "files", "both"]},
                "include_pattern": {"type": "string", "description": "Glob of files to include, e.g. '*.py'"},
                "exclude_pattern": {"type": "string", "description": "Glob of files to exclude"},
                "case_sensitive": {"type": "boolean"},
                "whole_word": {"type": "boolean"},
                "regex": {"type": "boolean", "description": "Treat query as a regular expression"},
                "max_results": {"type": "integer"},
                "file_types": {"type": "array", "items": {"type": "string"}, "description": "Extensions, e.g. ['py', 'ts']"},
                "include_hidden": {"type": "boolean"},
            },
            "required": ["query"],
        }

    def execute(self, **kwargs: Any) -> ToolResult:
        query = kwargs.get("query")
        if not query or not isinstance(query, str) or not query.strip():
            return ToolResult(
                success=False,
                error=f"Invalid query parameter: {query!r}. Query must be a non-empty string.",
            )

        search_type = kwargs.get("search_type") or "files"
        if search_type not in ("text", "files", "both"):
            return ToolResult(success=False, error=f"Invalid search_type: {search_type}")

        max_results = kwargs.get("max_results") or MAX_SEARCH_RESULTS
        try:
            max_results = max(1, int(max_results))
        except (TypeError, ValueError):
            max_results = MAX_SEARCH_RESULTS

        root, error = self._path_argument(kwargs.get("path") or None, default=self.working_dir)
        if error:
            return error

        files = self._collect_files(
            root,
            include=kwargs.get("include_pattern") or "",
            exclude=kwargs.get("exclude_pattern") or "",
            file_types=kwargs.get("file_types") or [],
            include_hidden=bool(kwargs.get("include_hidden", False)),
        )

        sections = []
        if search_type in ("text", "both"):
            try:
                pattern = self._compile(query, kwargs)
            except re.error as e:
                return ToolResult(success=False, error=f"Invalid regex pattern: {e}")
            hits = self._search_text(files, pattern, max_results)
            if hits:
                sections.append(f"Text matches ({len(hits)}):\n" + "\n".join(hits))

        if search_type in ("files", "both"):
            found = self._search_files(files, query, max_results)
            if found:
                sections.append(f"Files ({len(found)}):\n" + "\n".join(found))

        if not sections:
            return ToolResult(success=True, output=f'No results found for "{query}"')
        return ToolResult(success=True, output="\n\n".join(sections))

    @staticmethod
    def _compile(query: str, options: dict) -> re.Pattern:
        source = query if options.get("regex") else re.escape(query)
        if options.get("whole_word"):
            source = rf"\b{source}\b"
        flags = 0 if options.get("case_sensitive") else re.IGNORECASE
        return re.compile(source, flags)

    def _rel(self, path: Path) -> str:
        try:
            return str(path.relative_to(self.working_dir))
        except ValueError:
            return str(path)

    def _collect_files(
        self,
        directory: Path,
        include: str,
        exclude: str,
        file_types: list[str],
        include_hidden: bool,
    ) -> list[Path]:
        """Collect candidate files, respecting skip rules and filters."""
        if directory.is_file():
            return [directory]
        suffixes = {f".{t.lstrip('.').lower()}" for t in file_types if isinstance(t, str)}
        files = []
        for root, dirs, filenames in os.walk(directory):
            dirs[:] = sorted(d for d in dirs if not _should_skip_dir(d, include_hidden))
            for fname in sorted(filenames):
                if fname.startswith(".") and not include_hidden:
                    continue
                fpath = Path(root) / fname
                if suffixes and fpath.suffix.lower() not in suffixes:
                    continue
                if include and not fnmatch.fnmatch(fname, include) and not fpath.match(include):
                    continue
                if exclude and (fnmatch.fnmatch(fname, exclude) or fpath.match(exclude)):
                    continue
                files.append(fpath)
        return files

    def _search_text(self, files: list[Path], pattern: re.Pattern, limit: int) -> list[str]:
        hits: list[str] = []
        for fpath in files:
            if fpath.suffix.lower() in BINARY_EXTENSIONS:
                continue
            try:
                if fpath.stat().st_size > MAX_FILE_BYTES:
                    continue
                lines = fpath.read_text(errors="replace").splitlines()
            except OSError:
                continue
            rel = self._rel(fpath)
            for i, line in enumerate(lines, start=1):
                match = pattern.search(line)
                if match:
                    hits.append(f"{rel}:{i}:{match.start() + 1}: {line.strip()}")
                    if len(hits) >= limit:
                        return hits
        return hits

    def _search_files(self, files: list[Path], query: str, limit: int) -> list[str]:
        scored = []
        for fpath in files:
            rel = self._rel(fpath)
            score = file_match_score(query, rel)
            if score:
                scored.append((score, rel))
        scored.sort(key=lambda item: (-item[0], item[1]))
        return [rel for _, rel in scored[:limit]]
