"""
Tolerant JSON array extraction from generation-engine output.

The engine is asked for a JSON array but does not reliably return clean
JSON: it may wrap the array in a code fence, quote it, return it as an
escaped string, or embed it in a larger object. extract_json_array() tries
a fixed chain of strategies, stopping at the first that yields a list.

Every stage is total; failures are reported through ExtractResult.error,
never raised.
"""

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Optional

logger = logging.getLogger(__name__)

# Keys under which a wrapping object may carry the array
ARRAY_KEYS = ("suggestions", "items", "result")

_ESCAPE_SEQUENCES = ("\\n", "\\t", '\\"', "\\\\")

# Opening fence with optional language tag, and closing fence
_LEADING_FENCE = re.compile(r'^```[\w-]*[ \t]*\n?')
_TRAILING_FENCE = re.compile(r'\n?```\s*$')

# 'key':  ->  "key":
_SINGLE_QUOTED_KEY = re.compile(r"'([^'\\\n]*)'(\s*):")
# : 'value'  ->  : "value"
_SINGLE_QUOTED_VALUE = re.compile(r":(\s*)'([^'\\\n]*)'")


@dataclass
class ExtractResult:
    """Outcome of extraction: items on success, error on failure."""
    items: list[Any] = field(default_factory=list)
    error: Optional[str] = None
    strategy: Optional[str] = None  # Which stage produced the items

    @property
    def ok(self) -> bool:
        return self.error is None


def strip_decoration(text: str) -> str:
    """Strip surrounding code fences and matching quotes, repeatedly."""
    previous = None
    text = text.strip()
    while text != previous:
        previous = text
        text = _LEADING_FENCE.sub("", text, count=1)
        text = _TRAILING_FENCE.sub("", text, count=1)
        text = text.strip()
        if len(text) >= 2 and text[0] == text[-1] and text[0] in ("'", '"', "`"):
            text = text[1:-1].strip()
    return text


def looks_escaped(text: str) -> bool:
    return any(seq in text for seq in _ESCAPE_SEQUENCES)


def unescape(text: str) -> Optional[str]:
    """Decode text as the body of a JSON string literal. None if it isn't one."""
    try:
        decoded = json.loads(f'"{text}"', strict=False)
    except json.JSONDecodeError:
        return None
    return decoded if isinstance(decoded, str) else None


def rewrite_single_quotes(text: str) -> str:
    """Convert single-quoted keys and scalar values to double quotes.

    Only quoted runs without backslashes, newlines or inner quotes are
    touched, so valid double-quoted JSON is left alone.
    """
    text = _SINGLE_QUOTED_KEY.sub(r'"\1"\2:', text)
    return _SINGLE_QUOTED_VALUE.sub(r':\1"\2"', text)


def _loads_list(text: str) -> Optional[list]:
    try:
        value = json.loads(text, strict=False)
    except (json.JSONDecodeError, ValueError):
        return None
    return value if isinstance(value, list) else None


def _bracket_slice(text: str) -> Optional[str]:
    start = text.find("[")
    end = text.rfind("]")
    if start == -1 or end <= start:
        return None
    return text[start:end + 1]


def _from_object(value: dict) -> tuple[Optional[list], Optional[str]]:
    """Pull an array (or text to keep searching) out of a wrapping object."""
    for key in ARRAY_KEYS:
        inner = value.get(key)
        if isinstance(inner, list):
            return inner, None
    inner = value.get("result")
    if isinstance(inner, str):
        return None, inner
    return None, None


def _from_slice(text: str, name: str) -> Optional[ExtractResult]:
    sliced = _bracket_slice(text)
    if sliced is None:
        return None

    items = _loads_list(sliced)
    if items is not None:
        return ExtractResult(items=items, strategy=f"{name}-slice")

    if "'" in sliced:
        items = _loads_list(rewrite_single_quotes(sliced))
        if items is not None:
            return ExtractResult(items=items, strategy=f"{name}-quotes")
    return None


def extract_json_array(raw: Any) -> ExtractResult:
    """Recover a JSON array from engine output.

    Order, first success wins:
      1. raw is already a list (or an object wrapping one)
      2. strip fences / quotes, parse the first '[' .. last ']' slice
      3. retry the slice with single quotes rewritten to double quotes
      4. if the text looks escaped, decode it as a string literal and repeat 2-3
      5. parse the whole original text; an object carrying the array as a
         "result" string is searched again

    Clean JSON is always tried before unescaping, so escapes inside valid
    string values (e.g. "\\n" in a code snippet) are never decoded twice.
    """
    if isinstance(raw, list):
        return ExtractResult(items=raw, strategy="structured")

    if isinstance(raw, dict):
        items, text = _from_object(raw)
        if items is not None:
            return ExtractResult(items=items, strategy="structured")
        if text is None:
            return ExtractResult(error="Object contains no array")
        raw = text

    if not isinstance(raw, str):
        return ExtractResult(error=f"Unsupported output type: {type(raw).__name__}")

    if not raw.strip():
        return ExtractResult(error="Empty output")

    stripped = strip_decoration(raw)

    result = _from_slice(stripped, "stripped")
    if result is not None:
        return result

    if looks_escaped(stripped):
        unescaped = unescape(stripped)
        if unescaped is not None and unescaped != stripped:
            result = _from_slice(strip_decoration(unescaped), "unescaped")
            if result is not None:
                return result

    try:
        value = json.loads(raw, strict=False)
    except (json.JSONDecodeError, ValueError) as e:
        return ExtractResult(error=f"No JSON array found in output: {e}")

    if isinstance(value, list):
        return ExtractResult(items=value, strategy="whole")
    if isinstance(value, dict):
        items, text = _from_object(value)
        if items is not None:
            return ExtractResult(items=items, strategy="whole")
        if text is not None:
            return extract_json_array(text)
    return ExtractResult(error=f"Output is JSON but not an array ({type(value).__name__})")
