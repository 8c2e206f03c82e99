"""Best-effort decoding of tool call arguments from small models.

decode_arguments() never raises. It runs an ordered chain of strategies
and returns the first mapping one of them produces:

1. Direct JSON parse
2. Structural repair (outermost {...} span, stray quotes, raw control
   characters, lone backslashes, single quotes, trailing commas,
   truncation) and re-parse
3. Manual "key": value extraction by regex
4. Empty mapping
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any, Callable, Mapping

_VALID_ESCAPES = set('"\\/bfnrtu')
_CONTROL_ESCAPES = {"\n": "\\n", "\t": "\\t", "\r": "\\r", "\b": "\\b", "\f": "\\f"}

_KEY_VALUE_RE = re.compile(r'"([^"]+)"\s*:\s*(?:"([^"]*)"|([^,}\s]+))')
_QUOTED_RE = re.compile(r'"([^"]+)"')


@dataclass
class RepairResult:
    """Outcome of one decoding strategy."""

    value: dict | None = None
    error: str = ""

    @property
    def ok(self) -> bool:
        return self.value is not None


def _as_mapping(parsed: Any) -> RepairResult:
    if isinstance(parsed, dict):
        return RepairResult(value=parsed)
    return RepairResult(error=f"expected an object, got {type(parsed).__name__}")


def parse_direct(text: str) -> RepairResult:
    try:
        return _as_mapping(json.loads(text))
    except (json.JSONDecodeError, ValueError) as e:
        return RepairResult(error=str(e))


def parse_repaired(text: str) -> RepairResult:
    try:
        return _as_mapping(json.loads(repair_json_text(text)))
    except (json.JSONDecodeError, ValueError) as e:
        return RepairResult(error=str(e))


def extract_manually(text: str) -> RepairResult:
    """Pull "key": value pairs out of text that will not parse at all."""
    result: dict[str, Any] = {}

    for match in _KEY_VALUE_RE.finditer(text):
        key, string_value, bare_value = match.groups()
        if string_value is not None:
            result[key] = string_value
        elif bare_value is not None:
            try:
                result[key] = json.loads(bare_value)
            except (json.JSONDecodeError, ValueError):
                result[key] = bare_value

    if not result:
        # Pair up quoted tokens: key, value, key, value...
        tokens = _QUOTED_RE.findall(text)
        if len(tokens) >= 2 and len(tokens) % 2 == 0:
            for i in range(0, len(tokens), 2):
                result[tokens[i]] = tokens[i + 1]

    return RepairResult(value=result)


def empty_mapping(text: str) -> RepairResult:
    return RepairResult(value={})


STRATEGIES: list[Callable[[str], RepairResult]] = [
    parse_direct,
    parse_repaired,
    extract_manually,
    empty_mapping,
]


def decode_arguments(raw: str | Mapping[str, Any] | None) -> dict[str, Any]:
    """Turn a raw argument payload into a dict. Never raises."""
    if raw is None:
        return {}
    if isinstance(raw, Mapping):
        return dict(raw)
    if not isinstance(raw, str):
        return {}
    text = raw.strip()
    if not text:
        return {}

    for strategy in STRATEGIES:
        try:
            result = strategy(text)
        except Exception:
            continue
        if result.ok:
            return result.value
    return {}


def repair_json_text(text: str) -> str:
    """Apply structural repairs to a JSON object string."""
    repaired = text.strip()

    # Trim to the outermost {...} span
    if not (repaired.startswith("{") and repaired.endswith("}")):
        start = repaired.find("{")
        if start >= 0:
            end = repaired.rfind("}")
            repaired = repaired[start:end + 1] if end > start else repaired[start:]

    if '"' not in repaired and "'" in repaired:
        repaired = _fix_single_quotes(repaired)

    repaired = _repair_strings(repaired)
    repaired = _balance_brackets(repaired)

    # Fix trailing commas before } or ]
    return re.sub(r',\s*([}\]])', r'\1', repaired)


def _next_significant(text: str, i: int) -> str:
    """Return the next non-whitespace character at or after i ('' at end)."""
    while i < len(text) and text[i] in " \t\r\n":
        i += 1
    return text[i] if i < len(text) else ""


def _repair_strings(text: str) -> str:
    """Escape stray quotes, raw control characters and lone backslashes.

    A quote inside a string only closes it when the next significant
    character is a structural one (``, : } ]`` or end of input).
    An unterminated final string is closed.
    """
    out: list[str] = []
    in_string = False
    i = 0
    n = len(text)

    while i < n:
        ch = text[i]
        if not in_string:
            if ch == '"':
                in_string = True
            out.append(ch)
            i += 1
            continue

        if ch == "\\":
            nxt = text[i + 1] if i + 1 < n else ""
            if nxt in _VALID_ESCAPES:
                out.append(ch + nxt)
                i += 2
            else:
                out.append("\\\\")
                i += 1
            continue

        if ch == '"':
            if _next_significant(text, i + 1) in (",", ":", "}", "]", ""):
                in_string = False
                out.append(ch)
            else:
                out.append('\\"')
            i += 1
            continue

        if ch in _CONTROL_ESCAPES:
            out.append(_CONTROL_ESCAPES[ch])
        elif ord(ch) < 0x20:
            out.append(f"\\u{ord(ch):04x}")
        else:
            out.append(ch)
        i += 1

    if in_string:
        out.append('"')
    return "".join(out)


def _fix_single_quotes(text: str) -> str:
    """Replace single-quoted strings with double-quoted strings.

    Handles escaped quotes and avoids replacing apostrophes within words.
    """
    result = []
    i = 0
    in_double_quote = False

    while i < len(text):
        ch = text[i]

        if ch == '"' and (i == 0 or text[i - 1] != '\\'):
            in_double_quote = not in_double_quote
            result.append(ch)
        elif ch == "'" and not in_double_quote:
            # String boundary if preceded by :, [, {, , or whitespace
            before = text[i - 1] if i > 0 else ''
            if before in (':', '[', '{', ',', ' ', '\n', '\t', ''):
                j = text.find("'", i + 1)
                if j >= 0:
                    inner = text[i + 1:j].replace('"', '\\"')
                    result.append('"')
                    result.append(inner)
                    result.append('"')
                    i = j + 1
                    continue
            result.append(ch)
        else:
            result.append(ch)
        i += 1

    return ''.join(result)


def _balance_brackets(text: str) -> str:
    """Add missing closing braces/brackets."""
    stack: list[str] = []
    in_string = False
    escape = False

    for ch in text:
        if escape:
            escape = False
            continue
        if ch == '\\':
            escape = True
            continue
        if ch == '"':
            in_string = not in_string
            continue
        if in_string:
            continue
        if ch == '{':
            stack.append('}')
        elif ch == '[':
            stack.append(']')
        elif ch in ('}', ']'):
            if stack and stack[-1] == ch:
                stack.pop()

    while stack:
        text += stack.pop()

    return text
