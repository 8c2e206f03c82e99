"""Conversation data model, token accounting and context compaction."""

from __future__ import annotations

import json
import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Iterable

from ollama_agent.config import (
    COMPACT_KEEP_RECENT,
    COMPACT_MIN_MESSAGES,
    CONTEXT_TOKEN_THRESHOLD,
    SUMMARY_MAX_CHARS,
    SUMMARY_TOOL_RESULT_CHARS,
)

logger = logging.getLogger("ollama_agent.conversation")

SUMMARY_MARKER = "[Context Summary]"

ROLES = ("system", "user", "assistant", "tool")


def new_invocation_id() -> str:
    """Synthesize a tool call id: millisecond timestamp plus random suffix."""
    return f"call_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"


@dataclass
class ToolInvocation:
    """A model-requested call to a named tool. Arguments stay raw until dispatch."""

    id: str
    name: str
    raw_arguments: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": "function",
            "function": {"name": self.name, "arguments": self.raw_arguments},
        }


@dataclass
class ToolResult:
    success: bool
    output: str | None = None
    error: str | None = None

    @property
    def text(self) -> str:
        """Text fed back to the model for this result."""
        if self.success:
            return self.output or "Success"
        return self.error or "Error"


@dataclass
class Message:
    role: str
    content: str = ""
    tool_invocations: list[ToolInvocation] | None = None
    tool_invocation_id: str | None = None

    def __post_init__(self):
        if self.role not in ROLES:
            raise ValueError(f"Unknown message role: {self.role}")
        if self.role == "tool" and not self.tool_invocation_id:
            raise ValueError("tool messages require a tool_invocation_id")

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"role": self.role, "content": self.content}
        if self.tool_invocations:
            data["tool_calls"] = [inv.to_dict() for inv in self.tool_invocations]
        if self.tool_invocation_id:
            data["tool_call_id"] = self.tool_invocation_id
        return data


class TokenCounter:
    """Counts tokens with tiktoken, falling back to a character heuristic.

    The heuristic (1 token ~ 3.5 chars) is used when the encoding cannot be
    loaded, e.g. on a machine without network access to fetch the BPE file.
    """

    MESSAGE_OVERHEAD = 3

    def __init__(self, encoding_name: str = "cl100k_base"):
        self.encoding_name = encoding_name
        self._encoder: Any = None
        self._loaded = False

    def _get_encoder(self):
        if not self._loaded:
            self._loaded = True
            try:
                import tiktoken
                self._encoder = tiktoken.get_encoding(self.encoding_name)
            except Exception as e:
                logger.debug("tiktoken unavailable, using heuristic: %s", e)
                self._encoder = None
        return self._encoder

    def count_tokens(self, text: str) -> int:
        if not text:
            return 0
        encoder = self._get_encoder()
        if encoder is not None:
            return len(encoder.encode(text, disallowed_special=()))
        return int(len(text) / 3.5)

    def count_message_tokens(self, messages: Iterable[Message]) -> int:
        total = 0
        for msg in messages:
            total += self.MESSAGE_OVERHEAD
            total += self.count_tokens(msg.content)
            for inv in msg.tool_invocations or []:
                total += self.count_tokens(inv.name) + self.count_tokens(inv.raw_arguments)
        return total

    def estimate_streaming_tokens(self, partial_text: str) -> int:
        return self.count_tokens(partial_text)


class Conversation:
    """Ordered message log. Message 0 is always the system prompt."""

    def __init__(
        self,
        system_prompt: str,
        token_counter: TokenCounter | None = None,
        keep_recent: int = COMPACT_KEEP_RECENT,
        min_messages: int = COMPACT_MIN_MESSAGES,
    ):
        self.messages: list[Message] = [Message(role="system", content=system_prompt)]
        self.token_counter = token_counter or TokenCounter()
        self.keep_recent = keep_recent
        self.min_messages = min_messages

    def __len__(self) -> int:
        return len(self.messages)

    @property
    def system_message(self) -> Message:
        return self.messages[0]

    def set_system_prompt(self, prompt: str) -> None:
        self.messages[0] = Message(role="system", content=prompt)

    def append(self, message: Message) -> None:
        if message.role == "system":
            raise ValueError("Only the first message may be a system message")
        if message.role == "tool" and not self._has_invocation(message.tool_invocation_id):
            raise ValueError(f"No prior invocation with id {message.tool_invocation_id!r}")
        self.messages.append(message)

    def _has_invocation(self, invocation_id: str | None) -> bool:
        for msg in reversed(self.messages):
            if msg.role == "assistant" and msg.tool_invocations:
                if any(inv.id == invocation_id for inv in msg.tool_invocations):
                    return True
        return False

    def clear(self) -> None:
        """Drop everything except the system prompt."""
        self.messages = self.messages[:1]

    def estimate_tokens(self) -> int:
        return self.token_counter.count_message_tokens(self.messages)

    def to_dicts(self) -> list[dict[str, Any]]:
        return [m.to_dict() for m in self.messages]

    def compact_if_needed(self, threshold: int = CONTEXT_TOKEN_THRESHOLD) -> bool:
        """Compact when over *threshold* tokens and the log is long enough.

        Returns True when the log was compacted.
        """
        if len(self.messages) <= self.min_messages:
            return False
        tokens = self.estimate_tokens()
        if tokens <= threshold:
            return False
        logger.info("Context too large (%d tokens), summarizing...", tokens)
        self.compact()
        logger.info("Context reduced to %d tokens", self.estimate_tokens())
        return True

    def compact(self) -> None:
        """Replace the middle of the log with one summary message.

        Keeps [system] + [summary] + [last keep_recent]. The kept window is
        widened back past leading tool results so none is separated from the
        assistant message that requested it. When the digest cannot be built
        the middle is dropped outright.
        """
        system = self.messages[0]
        cut = max(len(self.messages) - self.keep_recent, 1)
        start = cut
        while cut > 1 and self.messages[cut].role == "tool":
            cut -= 1
        if cut != start:
            logger.debug("Compaction window moved back %d message(s) to keep tool results paired", start - cut)
        recent = self.messages[cut:]
        middle = self.messages[1:cut]
        if not middle:
            return

        try:
            digest = self._build_digest(middle)
            summary = Message(
                role="assistant",
                content=f"{SUMMARY_MARKER} Previous conversation included:\n{digest[:SUMMARY_MAX_CHARS]}...",
            )
            self.messages = [system, summary, *recent]
            logger.info("Context summarized: %d messages condensed into summary", len(middle))
        except Exception as e:
            logger.warning("Failed to summarize context: %s", e)
            self.messages = [system, *recent]

    @staticmethod
    def _build_digest(messages: list[Message]) -> str:
        lines = []
        for msg in messages:
            if msg.role == "user":
                lines.append(f"User: {msg.content}")
            elif msg.role == "assistant":
                lines.append(f"Assistant: {msg.content}")
            elif msg.role == "tool":
                content = msg.content if isinstance(msg.content, str) else json.dumps(msg.content)
                lines.append(f"Tool result: {content[:SUMMARY_TOOL_RESULT_CHARS]}...")
        return "\n".join(lines)


@dataclass
class ChatEntry:
    """A user-visible record of one step of the conversation."""

    type: str  # "user", "assistant", "tool_result"
    content: str
    timestamp: float = field(default_factory=time.time)
    tool_invocations: list[ToolInvocation] | None = None
    tool_invocation: ToolInvocation | None = None
    tool_result: ToolResult | None = None
