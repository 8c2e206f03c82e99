"""Todo list tools for planning multi-step work."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from ollama_agent.conversation import ToolResult
from ollama_agent.tools.base import BaseTool

STATUSES = ("pending", "in_progress", "completed")
PRIORITIES = ("high", "medium", "low")
_STATUS_MARKS = {"pending": "[ ]", "in_progress": "[~]", "completed": "[x]"}


@dataclass
class TodoItem:
    id: str
    content: str
    status: str = "pending"
    priority: str = "medium"


class TodoList:
    """Shared state behind the create/update todo tools."""

    def __init__(self) -> None:
        self.items: list[TodoItem] = []

    def render(self) -> str:
        if not self.items:
            return "No todos"
        return "\n".join(
            f"{_STATUS_MARKS[item.status]} {item.content} ({item.priority}) [{item.id}]"
            for item in self.items
        )


def _todo_schema() -> dict:
    return {
        "type": "object",
        "properties": {
            "id": {"type": "string"},
            "content": {"type": "string"},
            "status": {"type": "string", "enum": list(STATUSES)},
            "priority": {"type": "string", "enum": list(PRIORITIES)},
        },
    }


class CreateTodoListTool(BaseTool):
    def __init__(self, working_dir: str, todo_list: TodoList):
        super().__init__(working_dir)
        self.todo_list = todo_list

    @property
    def name(self) -> str:
        return "create_todo_list"

    @property
    def description(self) -> str:
        return "Create a todo list to plan and track a multi-step task. Replaces any existing list."

    @property
    def parameters(self) -> dict:
        return {
            "type": "object",
            "properties": {"todos": {"type": "array", "items": _todo_schema()}},
            "required": ["todos"],
        }

    def execute(self, **kwargs: Any) -> ToolResult:
        todos = kwargs.get("todos")
        if not isinstance(todos, list) or not todos:
            return ToolResult(success=False, error="todos must be a non-empty array")

        items = []
        for i, raw in enumerate(todos, start=1):
            if not isinstance(raw, dict) or not raw.get("content"):
                return ToolResult(success=False, error=f"Todo #{i} needs a 'content' field")
            status = raw.get("status", "pending")
            priority = raw.get("priority", "medium")
            if status not in STATUSES:
                return ToolResult(success=False, error=f"Invalid status '{status}' for todo #{i}")
            if priority not in PRIORITIES:
                return ToolResult(success=False, error=f"Invalid priority '{priority}' for todo #{i}")
            items.append(TodoItem(id=str(raw.get("id") or i), content=str(raw["content"]), status=status, priority=priority))

        self.todo_list.items = items
        return ToolResult(success=True, output=self.todo_list.render())


class UpdateTodoListTool(BaseTool):
    def __init__(self, working_dir: str, todo_list: TodoList):
        super().__init__(working_dir)
        self.todo_list = todo_list

    @property
    def name(self) -> str:
        return "update_todo_list"

    @property
    def description(self) -> str:
        return "Update status, content or priority of existing todos by id."

    @property
    def parameters(self) -> dict:
        return {
            "type": "object",
            "properties": {"updates": {"type": "array", "items": _todo_schema()}},
            "required": ["updates"],
        }

    def execute(self, **kwargs: Any) -> ToolResult:
        updates = kwargs.get("updates")
        if not isinstance(updates, list) or not updates:
            return ToolResult(success=False, error="updates must be a non-empty array")

        by_id = {item.id: item for item in self.todo_list.items}
        for update in updates:
            if not isinstance(update, dict):
                return ToolResult(success=False, error=f"Invalid update: {update!r}")
            item = by_id.get(str(update.get("id")))
            if item is None:
                return ToolResult(success=False, error=f"Todo with id {update.get('id')!r} not found")
            if "status" in update:
                if update["status"] not in STATUSES:
                    return ToolResult(success=False, error=f"Invalid status '{update['status']}'")
                item.status = update["status"]
            if "priority" in update:
                if update["priority"] not in PRIORITIES:
                    return ToolResult(success=False, error=f"Invalid priority '{update['priority']}'")
                item.priority = update["priority"]
            if update.get("content"):
                item.content = str(update["content"])

        return ToolResult(success=True, output=self.todo_list.render())
