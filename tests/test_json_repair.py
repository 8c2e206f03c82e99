"""Tests for tool argument decoding and JSON repair."""

import pytest

from ollama_agent.json_repair import (
    STRATEGIES,
    decode_arguments,
    empty_mapping,
    extract_manually,
    parse_direct,
    repair_json_text,
)


class TestDecodeArguments:
    def test_valid_json(self):
        assert decode_arguments('{"path": "a.txt", "start_line": 3}') == {"path": "a.txt", "start_line": 3}

    def test_raw_newline_inside_string(self):
        raw = '{"path": "a.txt", "content": "line1\nline2"}'
        assert decode_arguments(raw) == {"path": "a.txt", "content": "line1\nline2"}

    def test_raw_tab_inside_string(self):
        assert decode_arguments('{"content": "a\tb"}') == {"content": "a\tb"}

    def test_unescaped_inner_quotes(self):
        raw = '{"command": "echo "hi" there"}'
        assert decode_arguments(raw) == {"command": 'echo "hi" there'}

    def test_truncated_string_and_object(self):
        assert decode_arguments('{"command": "ls -la') == {"command": "ls -la"}

    def test_missing_closing_brace(self):
        assert decode_arguments('{"todos": [{"id": "1", "content": "x"}') == {
            "todos": [{"id": "1", "content": "x"}]
        }

    def test_trailing_comma(self):
        assert decode_arguments('{"a": 1, "b": [1, 2,],}') == {"a": 1, "b": [1, 2]}

    def test_single_quotes(self):
        assert decode_arguments("{'path': 'x.py'}") == {"path": "x.py"}

    def test_surrounding_prose_is_trimmed(self):
        assert decode_arguments('Sure, here you go: {"path": "a"} hope that helps') == {"path": "a"}

    def test_invalid_backslash_is_kept_literally(self):
        assert decode_arguments(r'{"path": "C:\temp\dir"}')["path"].startswith("C:")

    def test_manual_extraction_without_braces(self):
        assert decode_arguments('"path": "a.txt", "mode": 3') == {"path": "a.txt", "mode": 3}

    def test_mapping_passes_through_as_copy(self):
        original = {"path": "a.txt"}
        decoded = decode_arguments(original)
        assert decoded == original
        assert decoded is not original

    @pytest.mark.parametrize("raw", [
        None,
        "",
        "   ",
        "not json at all",
        "{",
        "}",
        "[1, 2, 3]",
        '"just a string"',
        "null",
        "{{{{",
        '{"a": ',
        '{"a" "b"}',
        42,
        ["a"],
    ])
    def test_never_raises_and_returns_dict(self, raw):
        assert isinstance(decode_arguments(raw), dict)

    def test_non_object_json_gives_empty_mapping(self):
        assert decode_arguments("[1, 2, 3]") == {}


class TestStrategies:
    def test_chain_ends_with_total_strategy(self):
        assert STRATEGIES[0] is parse_direct
        assert STRATEGIES[-1] is empty_mapping
        assert empty_mapping("anything").value == {}

    def test_parse_direct_reports_error(self):
        result = parse_direct("{bad")
        assert not result.ok
        assert result.error

    def test_parse_direct_rejects_non_objects(self):
        result = parse_direct("[1]")
        assert not result.ok
        assert "list" in result.error

    def test_extract_manually_pairs_quoted_tokens(self):
        result = extract_manually('"path" "a.txt"')
        assert result.value == {"path": "a.txt"}

    def test_extract_manually_nothing_found(self):
        assert extract_manually("no pairs here").value == {}


class TestRepairJsonText:
    def test_balances_nested_brackets(self):
        assert repair_json_text('{"a": [1, {"b": 2') == '{"a": [1, {"b": 2}]}'

    def test_escapes_control_characters(self):
        assert repair_json_text('{"a": "x\ny"}') == '{"a": "x\\ny"}'

    def test_leaves_valid_json_alone(self):
        text = '{"a": "b", "c": [1, 2]}'
        assert repair_json_text(text) == text
