"""Best-effort repair of a streamed LLM response into JSON text.

The model is asked for a bare JSON array of Excalidraw elements but often
wraps it in a markdown fence or forgets to escape quotes inside string
values. ``normalize_response`` is run on the whole accumulated buffer after
every chunk, so it must tolerate text that stops mid-string or mid-structure.

The quote repair is a heuristic: a quote inside a string is treated as the
closing quote only when the next non-whitespace character is structural
(``:``, ``,``, ``}``, ``]``) or the text ends. A literal quote that happens to
be followed by one of those characters is misread as a closing quote.
"""

import json
import logging
import re
from typing import Any

logger = logging.getLogger(__name__)

LEADING_FENCE_RE = re.compile(r"^```(?:json|javascript|js)?\s*\n?", re.IGNORECASE)
TRAILING_FENCE_RE = re.compile(r"\n?```\s*$")

STRUCTURAL_CHARS = {":", ",", "}", "]"}


def normalize_response(text: Any) -> Any:
    if not text or not isinstance(text, str):
        return text

    stripped = strip_code_fence(text)
    if is_valid_json(stripped):
        return stripped

    try:
        return repair_unescaped_quotes(stripped)
    except Exception as exc:  # pragma: no cover
        logger.warning("Quote repair failed, keeping fence-stripped text: %s", exc)
        return stripped


def strip_code_fence(text: str) -> str:
    processed = (text or "").strip()
    processed = LEADING_FENCE_RE.sub("", processed, count=1)
    processed = TRAILING_FENCE_RE.sub("", processed, count=1)
    return processed.strip()


def is_valid_json(text: str) -> bool:
    try:
        json.loads(text)
    except (TypeError, ValueError):
        return False
    return True


def repair_unescaped_quotes(text: str) -> str:
    result = []
    in_string = False
    escape_next = False
    length = len(text)

    for index, char in enumerate(text):
        if escape_next:
            result.append(char)
            escape_next = False
            continue

        if char == "\\":
            result.append(char)
            escape_next = True
            continue

        if char != '"':
            result.append(char)
            continue

        if not in_string:
            in_string = True
            result.append(char)
            continue

        next_char = _next_non_whitespace(text, index + 1, length)
        if next_char == "" or next_char in STRUCTURAL_CHARS:
            in_string = False
            result.append(char)
        else:
            result.append('\\"')

    return "".join(result)


def _next_non_whitespace(text: str, start: int, length: int) -> str:
    position = start
    while position < length and text[position].isspace():
        position += 1
    return text[position] if position < length else ""
