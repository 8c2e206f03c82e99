"""Agent loop: streams model turns, executes requested tools, repeats.

One call to ``process_user_message_stream`` runs rounds until the model
answers without tool calls, the round cap is hit, the user cancels, or an
error ends the round. Each round is: send the conversation, aggregate the
streamed reply, then execute the tool calls it carries in order.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Iterator, Mapping

from ollama_agent.config import AppConfig
from ollama_agent.conversation import (
    ChatEntry,
    Conversation,
    Message,
    TokenCounter,
    ToolInvocation,
    ToolResult,
    new_invocation_id,
)
from ollama_agent.json_repair import decode_arguments
from ollama_agent.logging_config import attach_session_handler, detach_session_handler
from ollama_agent.mcp_client import MCPClientManager
from ollama_agent.session import CancellationToken, LastErrorDetails, SessionContext
from ollama_agent.streaming import StreamAccumulator
from ollama_agent.system_prompt import build_system_prompt
from ollama_agent.tools import ConfirmCallback, ToolRegistry
from ollama_agent.transport import OllamaTransport

logger = logging.getLogger("ollama_agent.agent")

CANCELLED_NOTICE = "\n\n[Operation cancelled by user]"
ROUND_LIMIT_NOTICE = "\n\nMaximum tool execution rounds reached. Stopping to prevent infinite loops."
ERROR_PREFIX = "Sorry, I encountered an error: "

_FENCED_BLOCK_RE = re.compile(r"```(?:json)?\s*\n?([\s\S]*?)```")


@dataclass
class StreamChunk:
    """A chunk of output from the agent loop."""

    type: str  # "content", "tool_calls", "tool_result", "token_count", "done"
    content: str = ""
    tool_invocations: list[ToolInvocation] | None = None
    tool_invocation: ToolInvocation | None = None
    tool_result: ToolResult | None = None
    token_count: int | None = None


def _invocation_from(candidate: Any) -> ToolInvocation | None:
    if not isinstance(candidate, Mapping):
        return None
    name = candidate.get("name")
    if not isinstance(name, str) or not name or "arguments" not in candidate:
        return None
    arguments = candidate["arguments"]
    raw = arguments if isinstance(arguments, str) else json.dumps(arguments)
    return ToolInvocation(id=new_invocation_id(), name=name, raw_arguments=raw)


def extract_inline_invocations(content: str) -> list[ToolInvocation]:
    """Find tool calls a model wrote as text instead of native tool calls.

    Fenced code blocks are tried first, then the whole content. Only
    objects shaped like ``{"name": ..., "arguments": ...}`` count.
    """
    if not content or not content.strip():
        return []

    found = []
    for block in _FENCED_BLOCK_RE.findall(content):
        try:
            invocation = _invocation_from(json.loads(block.strip()))
        except json.JSONDecodeError:
            continue
        if invocation is not None:
            found.append(invocation)
    if found:
        return found

    try:
        invocation = _invocation_from(json.loads(content.strip()))
    except json.JSONDecodeError:
        return []
    return [invocation] if invocation is not None else []


class OllamaAgent:
    """Drives the conversation between the user, the model and the tools."""

    def __init__(
        self,
        config: AppConfig,
        context: SessionContext | None = None,
        transport: OllamaTransport | None = None,
        registry: ToolRegistry | None = None,
        confirm_callback: ConfirmCallback | None = None,
        token_counter: TokenCounter | None = None,
    ):
        self.config = config
        self.context = context or SessionContext()
        self.transport = transport or OllamaTransport(
            self.context,
            model=config.model,
            base_url=config.base_url,
            timeout=config.timeout,
        )
        self.registry = registry or ToolRegistry(
            config.working_dir, context=self.context, confirm_callback=confirm_callback
        )
        self.token_counter = token_counter or TokenCounter()
        self.conversation = Conversation(self._build_system_prompt(), token_counter=self.token_counter)
        self.chat_history: list[ChatEntry] = []
        self._cancel: CancellationToken | None = None
        self._mcp: MCPClientManager | None = None
        self._log_handler = attach_session_handler(self.context)

    def _build_system_prompt(self) -> str:
        external = [t.name for t in self.registry.all_tools() if t.name.startswith("mcp__")]
        return build_system_prompt(
            self.config.working_dir,
            self.config.model,
            custom_instructions=self.config.custom_instructions,
            extra_tool_names=external,
        )

    # ── External tools ───────────────────────────────────────────────────────

    def connect_external_tools(self) -> int:
        """Connect configured MCP servers and register their tools."""
        if not self.config.mcp_servers:
            return 0
        self._mcp = MCPClientManager(self.config.working_dir, self.config.mcp_servers)
        tools = self._mcp.connect_all()
        self.registry.register_external(tools)
        self.conversation.set_system_prompt(self._build_system_prompt())
        return len(tools)

    def close(self) -> None:
        if self._mcp is not None:
            self._mcp.close()
            self._mcp = None
        detach_session_handler(self._log_handler)

    # ── Agent loop ───────────────────────────────────────────────────────────

    def _begin_turn(self, text: str) -> CancellationToken:
        self._cancel = CancellationToken()
        self.context.start_new_prompt()
        logger.info("Processing user message (%d chars)", len(text))
        self.conversation.append(Message(role="user", content=text))
        self.chat_history.append(ChatEntry(type="user", content=text))
        self.conversation.compact_if_needed(self.config.context_token_threshold)
        return self._cancel

    def _resolve_invocations(self, accumulator: StreamAccumulator) -> list[ToolInvocation]:
        invocations = accumulator.tool_invocations()
        if not invocations:
            invocations = extract_inline_invocations(accumulator.content)
            if invocations:
                logger.info("Parsed %d tool call(s) from message content", len(invocations))
        return invocations

    def _record_assistant(self, accumulator: StreamAccumulator, invocations: list[ToolInvocation]) -> ChatEntry:
        self.conversation.append(accumulator.to_message(invocations))
        entry = ChatEntry(
            type="assistant",
            content=accumulator.content,
            tool_invocations=invocations or None,
        )
        self.chat_history.append(entry)
        return entry

    def _run_tool(self, invocation: ToolInvocation) -> tuple[ToolResult, ChatEntry]:
        args = decode_arguments(invocation.raw_arguments)
        logger.debug("Executing tool %s with %s", invocation.name, args)
        result = self.registry.execute(invocation.name, args)
        self.conversation.append(
            Message(role="tool", content=result.text, tool_invocation_id=invocation.id)
        )
        entry = ChatEntry(
            type="tool_result",
            content=result.text,
            tool_invocation=invocation,
            tool_result=result,
        )
        self.chat_history.append(entry)
        return result, entry

    def _skip_tools(self, invocations: list[ToolInvocation]) -> None:
        """Answer calls that never ran so every call keeps a tool message."""
        result = ToolResult(success=False, error="Cancelled by user")
        for invocation in invocations:
            logger.debug("Skipping tool %s after cancellation", invocation.name)
            self.conversation.append(
                Message(role="tool", content=result.text, tool_invocation_id=invocation.id)
            )

    def _notice(self, text: str) -> ChatEntry:
        entry = ChatEntry(type="assistant", content=text)
        self.chat_history.append(entry)
        return entry

    def process_user_message_stream(self, text: str) -> Iterator[StreamChunk]:
        """Run the agent loop for one user message, yielding chunks as they happen."""
        cancel = self._begin_turn(text)
        input_tokens = self.conversation.estimate_tokens()
        yield StreamChunk(type="token_count", token_count=input_tokens)

        rounds = 0
        try:
            while True:
                if rounds >= self.config.max_tool_rounds:
                    logger.warning("Tool round limit (%d) reached", self.config.max_tool_rounds)
                    self._notice(ROUND_LIMIT_NOTICE)
                    yield StreamChunk(type="content", content=ROUND_LIMIT_NOTICE)
                    break
                if cancel.cancelled:
                    yield StreamChunk(type="content", content=CANCELLED_NOTICE)
                    yield StreamChunk(type="done")
                    return

                accumulator = StreamAccumulator()
                announced = False
                stream = self.transport.send_streaming(
                    self.conversation.messages, self.registry.tool_definitions(), cancel
                )
                for fragment in stream:
                    if cancel.cancelled:
                        yield StreamChunk(type="content", content=CANCELLED_NOTICE)
                        yield StreamChunk(type="done")
                        return
                    delta = accumulator.feed(fragment)
                    if not announced and accumulator.tool_calls_ready:
                        announced = True
                        yield StreamChunk(type="tool_calls", tool_invocations=accumulator.tool_invocations())
                    if delta:
                        yield StreamChunk(type="content", content=delta)
                        output_tokens = self.token_counter.estimate_streaming_tokens(accumulator.content)
                        yield StreamChunk(type="token_count", token_count=input_tokens + output_tokens)

                if cancel.cancelled:
                    yield StreamChunk(type="content", content=CANCELLED_NOTICE)
                    yield StreamChunk(type="done")
                    return

                invocations = self._resolve_invocations(accumulator)
                if invocations and not announced:
                    yield StreamChunk(type="tool_calls", tool_invocations=invocations)
                self._record_assistant(accumulator, invocations)
                if not invocations:
                    break

                rounds += 1
                for position, invocation in enumerate(invocations):
                    if cancel.cancelled:
                        self._skip_tools(invocations[position:])
                        yield StreamChunk(type="content", content=CANCELLED_NOTICE)
                        yield StreamChunk(type="done")
                        return
                    result, _ = self._run_tool(invocation)
                    yield StreamChunk(type="tool_result", tool_invocation=invocation, tool_result=result)

                input_tokens = self.conversation.estimate_tokens()
                yield StreamChunk(type="token_count", token_count=input_tokens)

            yield StreamChunk(type="done")
        except Exception as e:
            if cancel.cancelled:
                yield StreamChunk(type="content", content=CANCELLED_NOTICE)
                yield StreamChunk(type="done")
                return
            logger.error("Agent round failed: %s", e, exc_info=True)
            message = f"{ERROR_PREFIX}{e}"
            self.conversation.append(Message(role="assistant", content=message))
            self._notice(message)
            yield StreamChunk(type="content", content=message)
            yield StreamChunk(type="done")

    def process_user_message(self, text: str) -> list[ChatEntry]:
        """Non-streaming variant. Returns the chat entries added for this message."""
        start = len(self.chat_history)
        cancel = self._begin_turn(text)

        rounds = 0
        try:
            while rounds < self.config.max_tool_rounds:
                if cancel.cancelled:
                    self._notice(CANCELLED_NOTICE.strip())
                    break
                response = self.transport.send(self.conversation.messages, self.registry.tool_definitions())
                accumulator = StreamAccumulator()
                accumulator.feed(response)

                invocations = self._resolve_invocations(accumulator)
                self._record_assistant(accumulator, invocations)
                if not invocations:
                    break

                rounds += 1
                for position, invocation in enumerate(invocations):
                    if cancel.cancelled:
                        self._skip_tools(invocations[position:])
                        break
                    self._run_tool(invocation)
            else:
                logger.warning("Tool round limit (%d) reached", self.config.max_tool_rounds)
                self._notice(ROUND_LIMIT_NOTICE.strip())
        except Exception as e:
            logger.error("Agent round failed: %s", e, exc_info=True)
            message = f"{ERROR_PREFIX}{e}"
            self.conversation.append(Message(role="assistant", content=message))
            self._notice(message)

        return self.chat_history[start:]

    def abort_current_operation(self) -> None:
        if self._cancel is not None:
            self._cancel.cancel()

    # ── Session management ───────────────────────────────────────────────────

    @property
    def current_model(self) -> str:
        return self.transport.model

    def set_model(self, model: str) -> None:
        self.config.model = model
        self.transport.set_model(model)
        self.conversation.set_system_prompt(self._build_system_prompt())

    def clear_history(self) -> None:
        self.conversation.clear()
        self.chat_history = []

    def get_logs(self) -> list[str]:
        return self.context.all_logs()

    def get_current_prompt_logs(self) -> list[str]:
        return list(self.context.current_prompt_logs)

    def clear_logs(self) -> None:
        self.context.clear_logs()

    def get_last_error_details(self) -> LastErrorDetails | None:
        return self.transport.last_error_details

    def clear_last_error_details(self) -> None:
        self.transport.clear_last_error_details()

    def check_health(self) -> bool:
        return self.transport.check_health()

    def available_models(self) -> list[str]:
        return self.transport.available_models

    def refresh_available_models(self) -> list[str]:
        return self.transport.refresh_available_models()

    def pull_model(self, name: str) -> None:
        self.transport.pull_model(name)

    def token_usage(self) -> int:
        return self.conversation.estimate_tokens()

    def tool_status(self) -> dict[str, Any]:
        return {
            "tools": [t.name for t in self.registry.all_tools()],
            "external": self._mcp.get_status() if self._mcp else {},
        }
