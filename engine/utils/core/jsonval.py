import json
import re
from typing import Any, Iterator, Optional

from utils.core.errors import MalformedResponseError
from utils.core.log import get_logger

"""
Helpers for reading JSON out of LLM output.

The structured-extraction service is asked for JSON only, but answers may
still arrive wrapped in markdown fences or explanatory prose. Callers locate
the first balanced {...} / [...] span instead of assuming strict JSON.
"""

_OPENERS = {"{": "}", "[": "]"}
_FENCE_RE = re.compile(r"^```(?:json)?\s*(.*?)\s*```$", re.DOTALL | re.IGNORECASE)


def is_valid_json(input):
    try:
        json.loads(input)
        return True
    except (json.JSONDecodeError, TypeError):
        return False


def strip_code_fences(text: str) -> str:
    """Remove a single surrounding ```json fence, if present."""
    stripped = text.strip()
    match = _FENCE_RE.match(stripped)
    return match.group(1) if match else stripped


def _scan_span(text: str, start: int) -> tuple[int, bool]:
    """
    Scan the bracketed value opening at text[start].

    Returns (end, balanced): one past the closing bracket and True, or the
    position where scanning gave up and False. A mismatched closer gives up
    at that closer; a value that never closes gives up at len(text).
    """
    stack = [_OPENERS[text[start]]]
    in_string = False
    escaped = False
    for pos in range(start + 1, len(text)):
        ch = text[pos]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch in _OPENERS:
            stack.append(_OPENERS[ch])
        elif ch in ("}", "]"):
            if ch != stack[-1]:
                return pos + 1, False
            stack.pop()
            if not stack:
                return pos + 1, True
    return len(text), False


def iter_json_spans(text: str) -> Iterator[str]:
    """
    Yield each top-level balanced {...} or [...] span, left to right.

    Spans nested inside another value are never yielded on their own, so a
    truncated array cannot be mistaken for one of its complete elements.
    """
    pos = 0
    while pos < len(text):
        if text[pos] not in _OPENERS:
            pos += 1
            continue
        end, balanced = _scan_span(text, pos)
        if balanced:
            yield text[pos:end]
        pos = end


def extract_json_span(text: str, *, clean: bool = False, label: Optional[str] = None) -> Optional[str]:
    """
    First balanced span that also parses as JSON.

    With `clean`, a span that does not parse as-is is retried after
    `clean_malformed_json` before moving on to the next span.
    """
    for span in iter_json_spans(text):
        if is_valid_json(span):
            return span
        if clean:
            cleaned = clean_malformed_json(span, label=label)
            if is_valid_json(cleaned):
                return cleaned
    return None


def clean_malformed_json(raw: str, *, label: Optional[str] = None) -> str:
    """
    Best-effort scrub for common model JSON glitches.

    The heuristics are idempotent - running twice is safe.
    """
    logger = get_logger()

    try:
        # fix '}, ], {' breaks in arrays
        raw = re.sub(r"\},\s*\],\s*\{", r"}, {", raw)

        # drop trailing commas before ] or }
        raw = re.sub(r",\s*([\]}])", r"\1", raw)

        # replace raw control characters (0x00-0x1F) with space
        raw = re.sub(r"(?<!\\)[\x00-\x08\x0B\x0C\x0E-\x1F]", " ", raw)

        return raw
    except re.error as e:
        logger.debug("[clean_malformed_json] (%s) failed: %s", label or "json", e)
        return raw


def parse_json_from_message(message: str, *, label: Optional[str] = None) -> Any:
    """
    Parse the JSON value carried by an LLM message.

    Tries, in order: the whole message (fences stripped), the whole message
    after `clean_malformed_json`, and then each top-level balanced span,
    raw first and cleaned second.

    Raises:
        MalformedResponseError: if no JSON value can be read.
    """
    logger = get_logger()
    if not message or not message.strip():
        raise MalformedResponseError("Response was empty")

    text = strip_code_fences(message)
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        pass

    cleaned = clean_malformed_json(text, label=label)
    if is_valid_json(cleaned):
        logger.debug("[%s] JSON recovered after cleanup", label or "json")
        return json.loads(cleaned)

    span = extract_json_span(text, clean=True, label=label)
    if span is not None:
        return json.loads(span)

    preview = message[:200].replace("\n", " ")
    raise MalformedResponseError(f"Response did not include JSON: '{preview}'")

