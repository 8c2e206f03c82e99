"""Tool registry - instantiates the built-in tools and dispatches calls."""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, Iterable

from ollama_agent.config import EXTERNAL_TOOL_PREFIX
from ollama_agent.conversation import ToolResult
from ollama_agent.logging_config import log_tool_execution
from ollama_agent.session import SessionContext
from ollama_agent.tools.base import BaseTool
from ollama_agent.tools.bash_tool import BashTool
from ollama_agent.tools.file_tools import CreateFileTool, StrReplaceEditorTool, ViewFileTool
from ollama_agent.tools.search_tool import SearchTool
from ollama_agent.tools.todo_tool import CreateTodoListTool, TodoList, UpdateTodoListTool

logger = logging.getLogger(__name__)

ConfirmCallback = Callable[[str, dict], bool]


class ToolRegistry:
    """Registry that holds all tool instances and executes calls by name."""

    def __init__(
        self,
        working_dir: str,
        context: SessionContext | None = None,
        confirm_callback: ConfirmCallback | None = None,
        external_tools: Iterable[BaseTool] = (),
    ):
        self.context = context or SessionContext()
        self.confirm_callback = confirm_callback
        self.todo_list = TodoList()
        self._tools: dict[str, BaseTool] = {}
        self._external: dict[str, BaseTool] = {}
        self._register_all(working_dir)
        self.register_external(external_tools)

    def _register_all(self, working_dir: str) -> None:
        tools: list[BaseTool] = [
            ViewFileTool(working_dir),
            CreateFileTool(working_dir),
            StrReplaceEditorTool(working_dir),
            BashTool(working_dir),
            SearchTool(working_dir),
            CreateTodoListTool(working_dir, self.todo_list),
            UpdateTodoListTool(working_dir, self.todo_list),
        ]
        for tool in tools:
            self._tools[tool.name] = tool

    def register_external(self, tools: Iterable[BaseTool]) -> None:
        """Add tools bridged from external servers; names must carry the mcp__ prefix."""
        for tool in tools:
            if not tool.name.startswith(EXTERNAL_TOOL_PREFIX):
                logger.warning("Ignoring external tool without %s prefix: %s", EXTERNAL_TOOL_PREFIX, tool.name)
                continue
            self._external[tool.name] = tool

    def get(self, name: str) -> BaseTool | None:
        """Get a tool by name."""
        if name.startswith(EXTERNAL_TOOL_PREFIX):
            return self._external.get(name)
        return self._tools.get(name)

    def all_tools(self) -> list[BaseTool]:
        """Return all registered tools, built-ins first."""
        return [*self._tools.values(), *self._external.values()]

    def tool_definitions(self) -> list[dict]:
        """Return tool definitions in the function-calling format the chat API expects."""
        return [tool.to_tool_definition() for tool in self.all_tools()]

    def _confirmed(self, tool: BaseTool, args: dict) -> bool:
        flags = self.context.flags
        if tool.is_dangerous(args):
            if flags.all_operations:
                return True
            return bool(self.confirm_callback and self.confirm_callback(tool.name, args))
        if not tool.requires_confirmation or flags.allows(tool.confirmation_category):
            return True
        if self.confirm_callback is None:
            return True
        return bool(self.confirm_callback(tool.name, args))

    def execute(self, name: str, args: dict[str, Any]) -> ToolResult:
        """Run tool *name* with decoded *args*. Never raises."""
        tool = self.get(name)
        if tool is None:
            return ToolResult(success=False, error=f"Unknown tool: {name}")

        if not self._confirmed(tool, args):
            logger.info("Tool %s denied by user", name)
            return ToolResult(success=False, error="Tool execution denied by user.")

        start = time.time()
        try:
            result = tool.execute(**args)
        except Exception as e:
            logger.exception("Tool %s raised", name)
            result = ToolResult(success=False, error=f"Tool execution error: {e}")
        elapsed = time.time() - start

        logger.debug("Tool %s finished in %.2fs (success=%s)", name, elapsed, result.success)
        log_tool_execution(name, args, result.text, result.success, elapsed)
        return result
