"""Stream aggregation: merges delta fragments into one assistant message.

Each fragment carries a partial message. Content strings are appended;
tool calls are merged slot by slot (the entry's ``index`` when present,
otherwise its position in the fragment's list), so argument strings for
several calls can grow independently. Complete calls that arrive one per
fragment, as the ollama client delivers them, each get their own slot.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Mapping

from ollama_agent.conversation import Message, ToolInvocation, new_invocation_id

logger = logging.getLogger("ollama_agent.streaming")

STAT_KEYS = ("prompt_eval_count", "eval_count", "eval_duration", "total_duration")


@dataclass
class PartialInvocation:
    """One tool call slot while its fragments are still arriving."""

    id: str = ""
    name: str = ""
    arguments: str = ""

    def merge(self, delta: Mapping[str, Any]) -> None:
        call_id = delta.get("id")
        if call_id and not self.id:
            self.id = str(call_id)

        function = delta.get("function") or {}
        name = function.get("name")
        if isinstance(name, str):
            self.name += name

        arguments = function.get("arguments")
        if isinstance(arguments, str):
            self.arguments += arguments
        elif isinstance(arguments, Mapping) and not self.arguments:
            self.arguments = json.dumps(arguments)

    def freeze(self) -> ToolInvocation:
        if not self.id:
            self.id = new_invocation_id()
        return ToolInvocation(
            id=self.id,
            name=self.name,
            raw_arguments=self.arguments,
        )


@dataclass
class StreamAccumulator:
    content: str = ""
    invocations: list[PartialInvocation] = field(default_factory=list)
    done: bool = False
    stats: dict[str, int] = field(default_factory=dict)
    # Slot that position 0 of an unindexed fragment maps to
    positional_base: int = 0

    def _slot_for(self, entry: Mapping[str, Any], position: int) -> int:
        """Pick the invocation slot an entry merges into.

        An explicit ``index`` (on the entry or its function) wins. The
        ollama client drops those fields, so unindexed entries are placed
        by position relative to ``positional_base``; a named entry whose
        slot already holds a named call, or one carrying complete mapping
        arguments, starts a new call instead of extending the old one.
        """
        function = entry.get("function") or {}
        slot = entry.get("index")
        if slot is None:
            slot = function.get("index")
        if isinstance(slot, int) and slot >= 0:
            return slot

        slot = self.positional_base + position
        if slot < len(self.invocations):
            current = self.invocations[slot]
            named = bool(function.get("name")) and bool(current.name)
            complete = isinstance(function.get("arguments"), Mapping) and bool(current.arguments)
            if named or complete:
                self.positional_base = len(self.invocations) - position
                slot = len(self.invocations)
        return slot

    def feed(self, fragment: Mapping[str, Any]) -> str:
        """Merge *fragment* in place. Returns the content delta it carried."""
        delta = fragment.get("message")
        if not isinstance(delta, Mapping):
            delta = fragment

        text = delta.get("content") or ""
        if isinstance(text, str) and text:
            self.content += text
        else:
            text = ""

        for position, entry in enumerate(delta.get("tool_calls") or []):
            if not isinstance(entry, Mapping):
                continue
            slot = self._slot_for(entry, position)
            while len(self.invocations) <= slot:
                self.invocations.append(PartialInvocation())
            self.invocations[slot].merge(entry)

        if fragment.get("done"):
            self.done = True
            for key in STAT_KEYS:
                if fragment.get(key) is not None:
                    self.stats[key] = fragment[key]

        return text

    @property
    def tool_calls_ready(self) -> bool:
        """True once any slot has a function name."""
        return any(inv.name for inv in self.invocations)

    def tool_invocations(self) -> list[ToolInvocation]:
        frozen = []
        for partial in self.invocations:
            if not partial.name:
                logger.debug("Dropping tool call slot without a name: %r", partial)
                continue
            frozen.append(partial.freeze())
        return frozen

    def to_message(self, tool_invocations: list[ToolInvocation] | None = None) -> Message:
        invocations = tool_invocations if tool_invocations is not None else self.tool_invocations()
        return Message(
            role="assistant",
            content=self.content,
            tool_invocations=invocations or None,
        )


def reduce_fragment(accumulator: StreamAccumulator, fragment: Mapping[str, Any]) -> StreamAccumulator:
    """Functional form of StreamAccumulator.feed."""
    accumulator.feed(fragment)
    return accumulator
