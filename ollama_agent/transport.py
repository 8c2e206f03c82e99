"""Chat transport to the Ollama server with retry and error classification."""

from __future__ import annotations

import json
import logging
import time
from typing import Any, Callable, Iterator, Mapping, Sequence, TypeVar

import httpx
import ollama

from ollama_agent.config import (
    DEFAULT_MODEL,
    DEFAULT_MODELS,
    LARGE_PAYLOAD_BYTES,
    MAX_RETRIES,
    OLLAMA_BASE_URL,
    OLLAMA_TIMEOUT,
    RETRY_BASE_DELAY,
)
from ollama_agent.conversation import Message
from ollama_agent.json_repair import decode_arguments
from ollama_agent.session import CancellationToken, LastErrorDetails, SessionContext

logger = logging.getLogger("ollama_agent.transport")

T = TypeVar("T")

RETRYABLE_STATUS = frozenset({429, 500, 501, 502, 503, 504})


class TransportError(Exception):
    """A chat request failed for good (non-retryable, or retries exhausted)."""

    def __init__(self, message: str, status: int | None = None, cause: BaseException | None = None):
        super().__init__(message)
        self.status = status
        self.cause = cause


def error_status(error: BaseException) -> int | None:
    """HTTP status carried by *error*, if any."""
    if isinstance(error, ollama.ResponseError):
        return error.status_code if error.status_code and error.status_code > 0 else None
    if isinstance(error, httpx.HTTPStatusError):
        return error.response.status_code
    return None


def is_retryable(error: BaseException) -> bool:
    """429, 500-504, refused connections and timeouts are worth retrying."""
    status = error_status(error)
    if status is not None:
        return status in RETRYABLE_STATUS
    return isinstance(error, (httpx.ConnectError, httpx.TimeoutException, ConnectionError, TimeoutError))


def _response_body(error: BaseException) -> Any:
    if isinstance(error, ollama.ResponseError):
        return error.error
    if isinstance(error, httpx.HTTPStatusError):
        return error.response.text
    return None


def _as_plain(obj: Any) -> dict[str, Any]:
    """Convert an ollama response model (or mapping) to a plain dict."""
    if hasattr(obj, "model_dump"):
        return obj.model_dump(exclude_none=True)
    if isinstance(obj, Mapping):
        return dict(obj)
    raise TypeError(f"Unexpected response type from model server: {type(obj).__name__}")


def convert_messages(messages: Sequence[Message]) -> list[dict[str, Any]]:
    """Render messages in the shape the chat endpoint expects.

    Tool call arguments go out as objects, not strings; tool results carry
    the id and name of the call they answer.
    """
    names: dict[str, str] = {}
    converted = []
    for msg in messages:
        data: dict[str, Any] = {"role": msg.role, "content": msg.content}
        if msg.tool_invocations:
            calls = []
            for inv in msg.tool_invocations:
                names[inv.id] = inv.name
                calls.append({
                    "id": inv.id,
                    "type": "function",
                    "function": {"name": inv.name, "arguments": decode_arguments(inv.raw_arguments)},
                })
            data["tool_calls"] = calls
        if msg.tool_invocation_id:
            data["tool_call_id"] = msg.tool_invocation_id
            if msg.tool_invocation_id in names:
                data["tool_name"] = names[msg.tool_invocation_id]
        converted.append(data)
    return converted


class OllamaTransport:
    """Single-shot and streaming chat requests with exponential backoff."""

    def __init__(
        self,
        context: SessionContext,
        model: str = DEFAULT_MODEL,
        base_url: str = OLLAMA_BASE_URL,
        timeout: float = OLLAMA_TIMEOUT,
        client: Any = None,
        max_retries: int = MAX_RETRIES,
        retry_base_delay: float = RETRY_BASE_DELAY,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.context = context
        self.model = model
        self.base_url = base_url
        self.client = client if client is not None else ollama.Client(host=base_url, timeout=timeout)
        self.max_retries = max_retries
        self.retry_base_delay = retry_base_delay
        self._sleep = sleep
        self._available_models: list[str] = []

    # ── Requests ─────────────────────────────────────────────────────────────

    def build_payload(self, messages: Sequence[Message], tools: list[dict] | None, stream: bool) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "model": self.model,
            "messages": convert_messages(messages),
            "stream": stream,
        }
        if tools:
            payload["tools"] = tools
        return payload

    def send(self, messages: Sequence[Message], tools: list[dict] | None = None) -> dict[str, Any]:
        """Send the conversation and return the complete response."""
        payload = self.build_payload(messages, tools, stream=False)
        response = self._with_retries(lambda: self.client.chat(**payload), payload, "CHAT")
        logger.debug("[OLLAMA CHAT] Response received successfully")
        return _as_plain(response)

    def send_streaming(
        self,
        messages: Sequence[Message],
        tools: list[dict] | None = None,
        cancel: CancellationToken | None = None,
    ) -> Iterator[dict[str, Any]]:
        """Send the conversation and yield response fragments.

        Ends after a fragment flagged ``done`` or when the server closes the
        stream. Only opening the stream is retried; a failure after the first
        fragment is raised as a TransportError.
        """
        payload = self.build_payload(messages, tools, stream=True)

        def open_stream() -> tuple[Iterator[Any], Any]:
            stream = iter(self.client.chat(**payload))
            return stream, next(stream, None)

        stream, first = self._with_retries(open_stream, payload, "STREAMING", cancel)
        logger.debug("[OLLAMA STREAMING] Stream created successfully")
        if first is None:
            return

        count = 0
        chunk = first
        while True:
            count += 1
            fragment = _as_plain(chunk)
            yield fragment
            if fragment.get("done"):
                logger.debug("[OLLAMA STREAMING] Stream completed (done=true) after %d chunks", count)
                return
            if cancel is not None and cancel.cancelled:
                return
            try:
                chunk = next(stream)
            except StopIteration:
                logger.debug("[OLLAMA STREAMING] Stream ended naturally after %d chunks", count)
                return
            except Exception as e:
                logger.error("[OLLAMA STREAMING] Stream processing error: %s", e)
                raise TransportError(
                    f"Ollama API streaming error: {e}", status=error_status(e), cause=e
                ) from e

    def _with_retries(
        self,
        call: Callable[[], T],
        payload: dict[str, Any],
        label: str,
        cancel: CancellationToken | None = None,
    ) -> T:
        attempts = self.max_retries + 1
        payload_size = len(json.dumps(payload, default=str))
        last_error: BaseException | None = None

        for attempt in range(attempts):
            logger.debug("[OLLAMA %s] Attempt %d/%d", label, attempt + 1, attempts)
            logger.debug("[OLLAMA %s] Payload size: %d bytes, model: %s", label, payload_size, payload["model"])
            if payload_size > LARGE_PAYLOAD_BYTES:
                logger.info("[OLLAMA %s] Large payload detected: %d bytes", label, payload_size)
            try:
                return call()
            except Exception as e:
                last_error = e
                status = error_status(e)
                logger.error(
                    "[OLLAMA %s] Error on attempt %d/%d: %s",
                    label, attempt + 1, attempts, e,
                    extra={"attempt": attempt + 1, "status": status},
                )

                if status is not None and 400 <= status < 500:
                    self.context.record_error(
                        LastErrorDetails.now(status, str(e), _response_body(e), dict(payload))
                    )

                message = f"Ollama API error: {e}" + (f" (status: {status})" if status is not None else "")
                if not is_retryable(e):
                    raise TransportError(message, status=status, cause=e) from e
                if attempt + 1 >= attempts:
                    break
                if cancel is not None and cancel.cancelled:
                    raise TransportError("Request cancelled", status=status, cause=e) from e

                delay = self.retry_base_delay * (2 ** attempt)
                logger.warning("[OLLAMA %s] Retrying in %.1fs...", label, delay)
                self._sleep(delay)

        assert last_error is not None
        raise TransportError(
            f"Ollama API error after {attempts} attempts: {last_error}",
            status=error_status(last_error),
            cause=last_error,
        ) from last_error

    # ── Diagnostics ──────────────────────────────────────────────────────────

    @property
    def last_error_details(self) -> LastErrorDetails | None:
        return self.context.last_error

    def clear_last_error_details(self) -> None:
        self.context.clear_error()

    # ── Model management ─────────────────────────────────────────────────────

    def set_model(self, model: str) -> None:
        self.model = model
        logger.info("[OLLAMA] Model changed to: %s", model)

    @property
    def available_models(self) -> list[str]:
        return list(self._available_models)

    def refresh_available_models(self) -> list[str]:
        """Ask the server for its models; fall back to the default list."""
        try:
            logger.debug("[OLLAMA] Fetching available models...")
            response = _as_plain(self.client.list())
            names = []
            for entry in response.get("models", []):
                name = entry.get("model") or entry.get("name")
                if name:
                    names.append(name)
            self._available_models = names
            logger.debug("[OLLAMA] Found %d available models", len(names))
        except Exception as e:
            logger.warning("[OLLAMA] Failed to fetch models: %s", e)
            self._available_models = list(DEFAULT_MODELS)
        return self.available_models

    def check_health(self) -> bool:
        try:
            self.client.list()
            return True
        except Exception:
            return False

    def pull_model(self, name: str) -> None:
        logger.info("[OLLAMA] Pulling model: %s", name)
        try:
            self.client.pull(name)
        except Exception as e:
            logger.error("[OLLAMA] Failed to pull model %s: %s", name, e)
            raise
        logger.info("[OLLAMA] Model %s pulled successfully", name)
        self.refresh_available_models()
