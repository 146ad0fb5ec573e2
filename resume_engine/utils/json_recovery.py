"""
Recover a JSON object from free-form language-model output.

Model responses may wrap JSON in markdown fences, surround it with prose, or
stop mid-object when the token budget runs out. recover_json_object() tries,
in order:

  1. strip fences and parse the whole text
  2. parse the span from the first "{" to the last "}"
  3. walk that span back from the end in fixed steps, cutting at the last "}"
     in reach and closing whatever brackets are still open, until a parse
     succeeds or less than half of the span is left

and returns (obj, strategy) or (None, None). It never raises.
"""
import json
import re
from typing import Any, Dict, Optional, Tuple

SHRINK_STEP = 64

STRATEGY_DIRECT = "direct"
STRATEGY_BRACE_SPAN = "brace_span"
STRATEGY_TRUNCATION = "truncation"

_FENCE_OPEN = re.compile(r"^```[a-zA-Z0-9_-]*\s*\n?")
_FENCE_CLOSE = re.compile(r"\n?```\s*$")


def strip_code_fences(text: str) -> str:
    """Remove a leading ```lang fence and a trailing ``` fence."""
    cleaned = text.strip()
    cleaned = _FENCE_OPEN.sub("", cleaned)
    cleaned = _FENCE_CLOSE.sub("", cleaned)
    return cleaned.strip()


def _loads_object(candidate: str) -> Optional[Dict[str, Any]]:
    try:
        parsed = json.loads(candidate)
    except (json.JSONDecodeError, TypeError, ValueError):
        return None
    return parsed if isinstance(parsed, dict) else None


def close_open_brackets(fragment: str) -> str:
    """Append the closers for every "{" / "[" left open outside string literals."""
    stack = []
    in_string = False
    escaped = False
    for char in fragment:
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = True
        elif char in "{[":
            stack.append("}" if char == "{" else "]")
        elif char in "}]" and stack:
            stack.pop()
    # A dangling comma before the closers would still be invalid
    trimmed = fragment.rstrip()
    if trimmed.endswith(","):
        trimmed = trimmed[:-1]
    return trimmed + "".join(reversed(stack))


def _brace_span(text: str) -> Optional[str]:
    start = text.find("{")
    if start == -1:
        return None
    end = text.rfind("}")
    if end <= start:
        # No closing brace at all: keep everything after the opening one
        return text[start:]
    return text[start:end + 1]


def _shrink_and_probe(span: str, step: int = SHRINK_STEP) -> Optional[Dict[str, Any]]:
    minimum = len(span) / 2
    limit = len(span)
    while limit >= minimum:
        cut = span.rfind("}", 0, limit)
        if cut == -1 or cut + 1 < minimum:
            return None
        candidate = span[:cut + 1]
        parsed = _loads_object(candidate) or _loads_object(close_open_brackets(candidate))
        if parsed is not None:
            return parsed
        limit = min(limit - step, cut)
    return None


def recover_json_object(text: Optional[str]) -> Tuple[Optional[Dict[str, Any]], Optional[str]]:
    if not text or not isinstance(text, str):
        return None, None

    parsed = _loads_object(strip_code_fences(text))
    if parsed is not None:
        return parsed, STRATEGY_DIRECT

    span = _brace_span(text)
    if span is None:
        return None, None

    parsed = _loads_object(span)
    if parsed is not None:
        return parsed, STRATEGY_BRACE_SPAN

    parsed = _shrink_and_probe(span)
    if parsed is not None:
        return parsed, STRATEGY_TRUNCATION

    return None, None
