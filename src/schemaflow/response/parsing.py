"""
Text-level recovery strategies for structured model output
"""

import json
import re

from schemaflow.constants import MAX_BLOCK_CANDIDATES

_FENCE_RE = re.compile(r"^```[a-zA-Z0-9_-]*\s*\n?(.*?)\n?\s*```$", re.DOTALL)
_NUMBER_RE = re.compile(r"-?\d+(?:\.\d+)?(?:[eE][-+]?\d+)?")
_BOOLEAN_RE = re.compile(r"\b(true|false|yes|no)\b", re.IGNORECASE)
_CLOSERS = {"{": "}", "[": "]"}


def strip_code_fences(text: str) -> str:
    """Remove a surrounding markdown code fence (```json ... ```), if present."""
    cleaned = text.strip()
    match = _FENCE_RE.match(cleaned)
    if match:
        return match.group(1).strip()
    return cleaned


def strip_quotes(text: str) -> str:
    """Trim whitespace and one layer of matching quotes."""
    cleaned = text.strip()
    if len(cleaned) >= 2 and cleaned[0] == cleaned[-1] and cleaned[0] in "\"'`":
        return cleaned[1:-1].strip()
    return cleaned


def _bracket_spans(text: str) -> list[tuple[int, int]]:
    """``(start, end)`` of every balanced bracket pair, ordered by start.

    One left-to-right pass. Quotes only open strings inside a bracket, and a
    mismatched closer discards every bracket still open.
    """
    spans: list[tuple[int, int]] = []
    stack: list[int] = []
    in_string = False
    escaped = False
    for i, ch in enumerate(text):
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch in _CLOSERS:
            stack.append(i)
        elif ch in "}]":
            if not stack:
                continue
            start = stack.pop()
            if _CLOSERS[text[start]] != ch:
                stack.clear()
                continue
            spans.append((start, i + 1))
        elif ch == '"' and stack:
            in_string = True
    spans.sort()
    return spans


def find_structured_block(text: str) -> str | None:
    """Locate the first balanced JSON object or array embedded in prose.

    Candidates that balance but are not valid JSON are skipped, up to
    ``MAX_BLOCK_CANDIDATES`` of them. Truncated text yields None rather than
    raising, in time linear in its length.
    """
    for start, end in _bracket_spans(text)[:MAX_BLOCK_CANDIDATES]:
        candidate = text[start:end]
        try:
            json.loads(candidate)
        except json.JSONDecodeError:
            continue
        return candidate
    return None


def find_number(text: str) -> str | None:
    """First numeric token in ``text``."""
    match = _NUMBER_RE.search(text)
    return match.group(0) if match else None


def find_boolean(text: str) -> str | None:
    """First boolean-like word in ``text``, normalized to a JSON literal."""
    match = _BOOLEAN_RE.search(text)
    if not match:
        return None
    return "true" if match.group(1).lower() in ("true", "yes") else "false"
