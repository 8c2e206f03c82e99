"""Tests for merging streamed fragments into one assistant message."""

import json

from conftest import FakeClient, chat_chunk
from ollama_agent.conversation import Message
from ollama_agent.session import SessionContext
from ollama_agent.streaming import PartialInvocation, StreamAccumulator, reduce_fragment
from ollama_agent.transport import OllamaTransport


def _feed_all(fragments):
    acc = StreamAccumulator()
    deltas = [acc.feed(f) for f in fragments]
    return acc, deltas


class TestContent:
    def test_content_deltas_concatenate_in_order(self):
        fragments = [
            {"message": {"role": "assistant", "content": "Hel"}},
            {"message": {"role": "assistant", "content": "lo, "}},
            {"message": {"role": "assistant", "content": ""}},
            {"message": {"role": "assistant", "content": "world"}, "done": True},
        ]
        acc, deltas = _feed_all(fragments)
        assert deltas == ["Hel", "lo, ", "", "world"]
        assert acc.content == "Hello, world"
        assert acc.done

    def test_fragment_without_message_wrapper(self):
        acc, _ = _feed_all([{"content": "a"}, {"content": "b"}])
        assert acc.content == "ab"

    def test_done_records_stats(self):
        acc, _ = _feed_all([{"message": {"content": "x"}, "done": True, "eval_count": 7, "prompt_eval_count": 20}])
        assert acc.stats == {"eval_count": 7, "prompt_eval_count": 20}

    def test_reduce_fragment_returns_accumulator(self):
        acc = StreamAccumulator()
        assert reduce_fragment(acc, {"message": {"content": "hi"}}) is acc
        assert acc.content == "hi"


class TestToolCalls:
    def test_name_and_arguments_merge_across_fragments(self):
        fragments = [
            {"tool_calls": [{"function": {"name": "bash"}}]},
            {"tool_calls": [{"function": {"arguments": '{"command"'}}]},
            {"tool_calls": [{"function": {"arguments": ':"ls"}'}}]},
        ]
        acc, _ = _feed_all(fragments)
        invocations = acc.tool_invocations()
        assert len(invocations) == 1
        assert invocations[0].name == "bash"
        assert invocations[0].raw_arguments == '{"command":"ls"}'

    def test_ready_once_any_slot_has_a_name(self):
        acc = StreamAccumulator()
        acc.feed({"tool_calls": [{"function": {"arguments": "{"}}]})
        assert not acc.tool_calls_ready
        acc.feed({"tool_calls": [{"function": {"name": "view_file"}}]})
        assert acc.tool_calls_ready

    def test_mapping_arguments_are_serialized(self):
        acc, _ = _feed_all([
            {"message": {"content": "", "tool_calls": [
                {"function": {"name": "view_file", "arguments": {"path": "a.py"}}},
            ]}},
        ])
        [invocation] = acc.tool_invocations()
        assert json.loads(invocation.raw_arguments) == {"path": "a.py"}

    def test_explicit_index_keeps_calls_apart(self):
        acc, _ = _feed_all([
            {"tool_calls": [{"index": 0, "function": {"name": "view_file", "arguments": '{"path":'}}]},
            {"tool_calls": [{"index": 1, "function": {"name": "bash", "arguments": '{"command":'}}]},
            {"tool_calls": [{"index": 0, "function": {"arguments": '"a"}'}}]},
            {"tool_calls": [{"index": 1, "function": {"arguments": '"ls"}'}}]},
        ])
        first, second = acc.tool_invocations()
        assert (first.name, first.raw_arguments) == ("view_file", '{"path":"a"}')
        assert (second.name, second.raw_arguments) == ("bash", '{"command":"ls"}')

    def test_index_inside_function_is_honoured(self):
        acc, _ = _feed_all([
            {"tool_calls": [{"function": {"index": 0, "name": "view_file", "arguments": {"path": "a"}}}]},
            {"tool_calls": [{"function": {"index": 1, "name": "bash", "arguments": {"command": "ls"}}}]},
        ])
        assert [inv.name for inv in acc.tool_invocations()] == ["view_file", "bash"]

    def test_positional_slots_within_one_fragment(self):
        acc, _ = _feed_all([
            {"tool_calls": [
                {"function": {"name": "a", "arguments": "{}"}},
                {"function": {"name": "b", "arguments": "{}"}},
            ]},
        ])
        assert [inv.name for inv in acc.tool_invocations()] == ["a", "b"]

    def test_nameless_slot_is_dropped(self):
        acc, _ = _feed_all([{"tool_calls": [{"function": {"arguments": "{}"}}]}])
        assert acc.tool_invocations() == []
        assert acc.to_message().tool_invocations is None

    def test_ids_are_kept_or_synthesized_once(self):
        acc, _ = _feed_all([
            {"tool_calls": [
                {"id": "call_abc", "function": {"name": "a"}},
                {"function": {"name": "b"}},
            ]},
        ])
        first = acc.tool_invocations()
        second = acc.tool_invocations()
        assert first[0].id == "call_abc"
        assert first[1].id.startswith("call_")
        assert [i.id for i in first] == [i.id for i in second]

    def test_to_message_carries_content_and_calls(self):
        acc, _ = _feed_all([
            {"message": {"content": "Let me look."}},
            {"message": {"tool_calls": [{"function": {"name": "view_file", "arguments": '{"path": "x"}'}}]}},
        ])
        message = acc.to_message()
        assert message.role == "assistant"
        assert message.content == "Let me look."
        assert message.tool_invocations[0].name == "view_file"


class TestPartialInvocation:
    def test_first_id_wins(self):
        partial = PartialInvocation()
        partial.merge({"id": "one", "function": {"name": "x"}})
        partial.merge({"id": "two"})
        assert partial.id == "one"

    def test_mapping_arguments_do_not_overwrite_string_arguments(self):
        partial = PartialInvocation(name="x", arguments='{"a": 1}')
        partial.merge({"function": {"arguments": {"b": 2}}})
        assert partial.arguments == '{"a": 1}'


class TestClientChunks:
    """Chunks as the ollama client yields them: pydantic models, no ids or indexes."""

    def _stream(self, chunks, sleep_calls):
        client = FakeClient([chunks])
        transport = OllamaTransport(SessionContext(), model="test-model", client=client, sleep=sleep_calls.append)
        acc = StreamAccumulator()
        for fragment in transport.send_streaming([Message(role="user", content="go")]):
            acc.feed(fragment)
        return acc

    def test_calls_in_separate_chunks_stay_separate(self, sleep_calls):
        acc = self._stream([
            chat_chunk(tool_calls=[("view_file", {"path": "a.txt"})]),
            chat_chunk(tool_calls=[("bash", {"command": "ls"})]),
            chat_chunk(done=True),
        ], sleep_calls)
        invocations = acc.tool_invocations()
        assert [inv.name for inv in invocations] == ["view_file", "bash"]
        assert [json.loads(inv.raw_arguments) for inv in invocations] == [{"path": "a.txt"}, {"command": "ls"}]
        assert invocations[0].id != invocations[1].id

    def test_same_tool_twice(self, sleep_calls):
        acc = self._stream([
            chat_chunk(tool_calls=[("view_file", {"path": "a.txt"})]),
            chat_chunk(tool_calls=[("view_file", {"path": "b.txt"})], done=True),
        ], sleep_calls)
        assert [json.loads(inv.raw_arguments)["path"] for inv in acc.tool_invocations()] == ["a.txt", "b.txt"]

    def test_several_calls_per_chunk_then_more(self, sleep_calls):
        acc = self._stream([
            chat_chunk(content="Checking. ", tool_calls=[("view_file", {"path": "a"}), ("view_file", {"path": "b"})]),
            chat_chunk(tool_calls=[("bash", {"command": "ls"})]),
            chat_chunk(done=True),
        ], sleep_calls)
        assert acc.content == "Checking. "
        assert [inv.name for inv in acc.tool_invocations()] == ["view_file", "view_file", "bash"]
