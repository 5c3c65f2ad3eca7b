"""Split a free-form model reply into reasoning trace + JSON action array."""

from __future__ import annotations

import json

import structlog
from pydantic import TypeAdapter, ValidationError

from vwap_trader.errors import ResponseParseError
from vwap_trader.models.decision import TradeAction

logger = structlog.get_logger()

_ACTIONS_ADAPTER = TypeAdapter(list[TradeAction])

# Typographic quotes that input methods substitute for ASCII ones
_QUOTE_FIXES = {
    "\u201c": '"',
    "\u201d": '"',
    "\u2018": "'",
    "\u2019": "'",
}


def extract_reasoning_trace(text: str) -> str:
    """Everything before the first '[' (the whole reply if there is none)."""
    start = text.find("[")
    if start == -1:
        return text.strip()
    return text[:start].strip()


def find_matching_bracket(text: str, start: int) -> int:
    """Index of the ']' closing the '[' at `start`, or -1.

    Counts raw bracket characters, so brackets inside string values are
    counted too.
    """
    if start < 0 or start >= len(text) or text[start] != "[":
        return -1

    depth = 0
    for i in range(start, len(text)):
        char = text[i]
        if char == "[":
            depth += 1
        elif char == "]":
            depth -= 1
            if depth == 0:
                return i
    return -1


def normalize_quotes(text: str) -> str:
    for bad, good in _QUOTE_FIXES.items():
        text = text.replace(bad, good)
    return text


def extract_actions(text: str) -> list[TradeAction]:
    """Parse the first balanced JSON array in `text` into TradeActions."""
    start = text.find("[")
    if start == -1:
        raise ResponseParseError("no JSON array start found in model reply", fragment=text[:200])

    end = find_matching_bracket(text, start)
    if end == -1:
        raise ResponseParseError("no balanced JSON array found in model reply", fragment=text[start:][:200])

    fragment = normalize_quotes(text[start : end + 1].strip())

    try:
        data = json.loads(fragment)
    except json.JSONDecodeError as e:
        logger.warning("decision_json_decode_error", error=str(e), fragment=fragment[:200])
        raise ResponseParseError(f"JSON decode failed: {e}", fragment=fragment, cause=e) from e

    try:
        return _ACTIONS_ADAPTER.validate_python(data)
    except ValidationError as e:
        logger.warning("decision_schema_error", errors=e.error_count(), fragment=fragment[:200])
        raise ResponseParseError(f"decision schema invalid: {e}", fragment=fragment, cause=e) from e
