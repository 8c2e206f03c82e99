"""Tests for the Ollama transport: retries, error diagnostics, streaming."""

import httpx
import ollama
import pytest

from conftest import FakeClient
from ollama_agent.config import DEFAULT_MODELS
from ollama_agent.conversation import Message, ToolInvocation
from ollama_agent.transport import (
    OllamaTransport,
    TransportError,
    convert_messages,
    error_status,
    is_retryable,
)

ANSWER = {"model": "m", "message": {"role": "assistant", "content": "ok"}, "done": True}


def _transport(context, client, delays, **kwargs):
    return OllamaTransport(context, model="m", client=client, sleep=delays.append, **kwargs)


def _messages():
    return [Message(role="system", content="sys"), Message(role="user", content="hi")]


class TestErrorClassification:
    @pytest.mark.parametrize("status", [429, 500, 501, 502, 503, 504])
    def test_retryable_statuses(self, status):
        assert is_retryable(ollama.ResponseError("x", status))

    @pytest.mark.parametrize("status", [400, 401, 403, 404, 422])
    def test_client_errors_are_terminal(self, status):
        assert not is_retryable(ollama.ResponseError("x", status))

    @pytest.mark.parametrize("error", [
        httpx.ConnectError("refused"),
        httpx.ReadTimeout("slow"),
        ConnectionRefusedError("refused"),
        TimeoutError("slow"),
    ])
    def test_network_errors_are_retryable(self, error):
        assert is_retryable(error)

    def test_unknown_errors_are_terminal(self):
        assert not is_retryable(ValueError("bad"))

    def test_error_status(self):
        assert error_status(ollama.ResponseError("x", 404)) == 404
        assert error_status(ValueError("x")) is None


class TestSend:
    def test_returns_response_as_dict(self, context, sleep_calls):
        client = FakeClient([ANSWER])
        response = _transport(context, client, sleep_calls).send(_messages())
        assert response["message"]["content"] == "ok"
        assert client.calls[0]["model"] == "m"
        assert client.calls[0]["stream"] is False
        assert "tools" not in client.calls[0]

    def test_tools_included_when_given(self, context, sleep_calls):
        client = FakeClient([ANSWER])
        tools = [{"type": "function", "function": {"name": "bash"}}]
        _transport(context, client, sleep_calls).send(_messages(), tools)
        assert client.calls[0]["tools"] == tools

    def test_three_503s_then_success(self, context, sleep_calls):
        client = FakeClient([ollama.ResponseError("busy", 503)] * 3 + [ANSWER])
        response = _transport(context, client, sleep_calls).send(_messages())
        assert response["message"]["content"] == "ok"
        assert len(client.calls) == 4
        assert sleep_calls == [1.0, 2.0, 4.0]
        assert context.last_error is None

    def test_404_fails_immediately_and_records_details(self, context, sleep_calls):
        client = FakeClient([ollama.ResponseError("model not found", 404)])
        transport = _transport(context, client, sleep_calls)
        with pytest.raises(TransportError) as exc_info:
            transport.send(_messages())

        assert exc_info.value.status == 404
        assert len(client.calls) == 1
        assert sleep_calls == []
        details = transport.last_error_details
        assert details.status == 404
        assert details.response == "model not found"
        assert details.payload["model"] == "m"
        assert details.payload["messages"][1]["content"] == "hi"

        transport.clear_last_error_details()
        assert transport.last_error_details is None

    def test_retries_exhausted(self, context, sleep_calls):
        client = FakeClient([ollama.ResponseError("busy", 503)] * 4)
        with pytest.raises(TransportError, match="after 4 attempts"):
            _transport(context, client, sleep_calls).send(_messages())
        assert len(sleep_calls) == 3

    def test_connection_refused_is_retried(self, context, sleep_calls):
        client = FakeClient([httpx.ConnectError("refused"), ANSWER])
        assert _transport(context, client, sleep_calls).send(_messages())["done"] is True
        assert sleep_calls == [1.0]

    def test_custom_retry_settings(self, context, sleep_calls):
        client = FakeClient([ollama.ResponseError("busy", 502)] * 2)
        transport = _transport(context, client, sleep_calls, max_retries=1, retry_base_delay=0.5)
        with pytest.raises(TransportError):
            transport.send(_messages())
        assert sleep_calls == [0.5]


class TestSendStreaming:
    def test_yields_fragments_until_done(self, context, sleep_calls):
        fragments = [
            {"message": {"content": "a"}, "done": False},
            {"message": {"content": "b"}, "done": True},
            {"message": {"content": "never"}, "done": False},
        ]
        client = FakeClient([fragments])
        out = list(_transport(context, client, sleep_calls).send_streaming(_messages()))
        assert [f["message"]["content"] for f in out] == ["a", "b"]
        assert client.calls[0]["stream"] is True

    def test_ends_when_server_closes_stream(self, context, sleep_calls):
        client = FakeClient([[{"message": {"content": "a"}}]])
        assert len(list(_transport(context, client, sleep_calls).send_streaming(_messages()))) == 1

    def test_empty_stream(self, context, sleep_calls):
        client = FakeClient([[]])
        assert list(_transport(context, client, sleep_calls).send_streaming(_messages())) == []

    def test_opening_the_stream_is_retried(self, context, sleep_calls):
        client = FakeClient([ollama.ResponseError("busy", 503), [{"message": {"content": "a"}, "done": True}]])
        out = list(_transport(context, client, sleep_calls).send_streaming(_messages()))
        assert len(out) == 1
        assert sleep_calls == [1.0]

    def test_error_on_first_fragment_is_retried(self, context, sleep_calls):
        def failing():
            raise httpx.ConnectError("refused")
            yield  # pragma: no cover

        client = FakeClient([failing(), [{"message": {"content": "a"}, "done": True}]])
        out = list(_transport(context, client, sleep_calls).send_streaming(_messages()))
        assert out[0]["message"]["content"] == "a"

    def test_mid_stream_failure_raises(self, context, sleep_calls):
        def broken():
            yield {"message": {"content": "a"}}
            raise httpx.ReadError("connection reset")

        client = FakeClient([broken()])
        stream = _transport(context, client, sleep_calls).send_streaming(_messages())
        assert next(stream)["message"]["content"] == "a"
        with pytest.raises(TransportError, match="streaming error"):
            next(stream)
        assert len(client.calls) == 1


class TestConvertMessages:
    def test_arguments_go_out_as_objects_and_results_carry_ids(self):
        inv = ToolInvocation(id="call_1", name="bash", raw_arguments='{"command": "ls"}')
        converted = convert_messages([
            Message(role="user", content="list files"),
            Message(role="assistant", content="", tool_invocations=[inv]),
            Message(role="tool", content="a.txt", tool_invocation_id="call_1"),
        ])
        call = converted[1]["tool_calls"][0]
        assert call["id"] == "call_1"
        assert call["function"] == {"name": "bash", "arguments": {"command": "ls"}}
        assert converted[2] == {"role": "tool", "content": "a.txt", "tool_call_id": "call_1", "tool_name": "bash"}

    def test_malformed_arguments_are_repaired(self):
        inv = ToolInvocation(id="call_1", name="bash", raw_arguments='{"command": "ls')
        converted = convert_messages([Message(role="assistant", tool_invocations=[inv])])
        assert converted[0]["tool_calls"][0]["function"]["arguments"] == {"command": "ls"}


class TestModelManagement:
    def test_refresh_available_models(self, context, sleep_calls):
        client = FakeClient(models=["llama3.2:3b", "qwen2.5-coder:7b"])
        transport = _transport(context, client, sleep_calls)
        assert transport.refresh_available_models() == ["llama3.2:3b", "qwen2.5-coder:7b"]
        assert transport.available_models == ["llama3.2:3b", "qwen2.5-coder:7b"]

    def test_refresh_falls_back_to_defaults(self, context, sleep_calls):
        class Down(FakeClient):
            def list(self):
                raise httpx.ConnectError("refused")

        transport = _transport(context, Down(), sleep_calls)
        assert transport.refresh_available_models() == list(DEFAULT_MODELS)
        assert transport.check_health() is False

    def test_check_health(self, context, sleep_calls):
        assert _transport(context, FakeClient(), sleep_calls).check_health() is True

    def test_pull_model_refreshes_list(self, context, sleep_calls):
        client = FakeClient(models=[])
        transport = _transport(context, client, sleep_calls)
        transport.pull_model("llama3.2:1b")
        assert client.pulled == ["llama3.2:1b"]
        assert "llama3.2:1b" in transport.available_models

    def test_set_model_changes_payload(self, context, sleep_calls):
        client = FakeClient([ANSWER])
        transport = _transport(context, client, sleep_calls)
        transport.set_model("llama3.2:3b")
        transport.send(_messages())
        assert client.calls[0]["model"] == "llama3.2:3b"
