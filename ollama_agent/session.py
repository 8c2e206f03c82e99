"""Per-session state shared by the agent loop, transport and tools.

One SessionContext is created for each agent session and handed to the
Agent and Transport at construction time. It holds the last client-error
diagnostics, the confirmation flags and the captured log lines.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any


@dataclass
class LastErrorDetails:
    """Most recent 4xx failure from the model server."""

    timestamp: str
    status: int
    message: str
    response: Any = None
    payload: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def now(cls, status: int, message: str, response: Any, payload: dict[str, Any]) -> "LastErrorDetails":
        return cls(
            timestamp=datetime.now(timezone.utc).isoformat(),
            status=status,
            message=message,
            response=response,
            payload=payload,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "status": self.status,
            "message": self.message,
            "response": self.response,
            "payload": self.payload,
        }


@dataclass
class SessionFlags:
    """Confirmation shortcuts granted by the user for this session."""

    bash_commands: bool = False
    file_operations: bool = False
    all_operations: bool = False

    def allows(self, category: str) -> bool:
        if self.all_operations:
            return True
        if category == "bash":
            return self.bash_commands
        if category == "file":
            return self.file_operations
        return False

    def grant(self, category: str) -> None:
        if category == "bash":
            self.bash_commands = True
        elif category == "file":
            self.file_operations = True
        else:
            self.all_operations = True


class CancellationToken:
    """Cooperative cancellation flag checked at the loop's checkpoints."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


class SessionContext:
    """State whose lifetime matches one agent session."""

    def __init__(self, flags: SessionFlags | None = None):
        self.flags = flags or SessionFlags()
        self.last_error: LastErrorDetails | None = None
        self.session_logs: list[str] = []
        self.current_prompt_logs: list[str] = []

    def record_error(self, details: LastErrorDetails) -> None:
        """Overwrite the last-error record."""
        self.last_error = details

    def clear_error(self) -> None:
        self.last_error = None

    def add_log(self, line: str) -> None:
        self.current_prompt_logs.append(line)

    def start_new_prompt(self) -> None:
        """Move the current prompt's log lines into the session log."""
        if self.current_prompt_logs:
            self.session_logs.extend(self.current_prompt_logs)
            self.current_prompt_logs = []

    def all_logs(self) -> list[str]:
        return [*self.session_logs, *self.current_prompt_logs]

    def clear_logs(self) -> None:
        self.session_logs = []
        self.current_prompt_logs = []
