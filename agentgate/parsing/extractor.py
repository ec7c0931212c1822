"""
Isolate the JSON payload in free-text model output.

Models wrap their JSON in prose and markdown fences. Extraction drops the
fence lines, then scans for balanced top-level {...} spans while honoring string
literals and escapes, so braces inside string values do not end the object
early. The first span that decodes as a JSON object wins. When no balanced
span exists the first-'{' to last-'}' span is used instead.
"""
import json
import logging
import re
from typing import Any, Iterator, Optional, Tuple

from .errors import ExtractionError

logger = logging.getLogger(__name__)

FENCE_LINE_PATTERN = re.compile(r"^[ \t]*```[\w-]*[ \t]*(?:\n|$)", re.MULTILINE)


def strip_fences(text: str) -> str:
    """Remove ```json and bare ``` fence lines; backticks inside the payload are kept."""
    return FENCE_LINE_PATTERN.sub("", text)


def iter_balanced_objects(text: str) -> Iterator[Tuple[int, int]]:
    """
    Yield (start, end) of each balanced top-level {...} span.

    `end` is exclusive. Quotes are only tracked inside a span, since prose
    outside the payload often contains unpaired apostrophes and quotes.
    """
    depth = 0
    start = -1
    in_string = False
    escaped = False

    for index, char in enumerate(text):
        if depth == 0:
            if char == "{":
                depth = 1
                start = index
                in_string = False
                escaped = False
            continue

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
        elif char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                yield start, index + 1


def _first_last_span(text: str) -> Optional[str]:
    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end == -1 or start >= end:
        return None
    return text[start:end + 1]


def extract_json_text(raw_text: str) -> str:
    """
    Return the text of the JSON object embedded in a model response.

    Args:
        raw_text: Raw model output

    Returns:
        The object's exact source text

    Raises:
        ExtractionError: If no {...} span exists
    """
    if not isinstance(raw_text, str):
        raise ExtractionError("Response text must be a string")

    text = strip_fences(raw_text)

    first_balanced = None
    for start, end in iter_balanced_objects(text):
        candidate = text[start:end]
        if first_balanced is None:
            first_balanced = candidate
        try:
            if isinstance(json.loads(candidate), dict):
                return candidate
        except (ValueError, RecursionError):
            continue

    if first_balanced is not None:
        return first_balanced

    span = _first_last_span(text)
    if span is None:
        raise ExtractionError("No valid JSON object found in response")
    logger.debug("No balanced object found, using first/last brace span")
    return span


def extract_json(raw_text: str) -> Any:
    """
    Extract and decode the JSON payload.

    Raises:
        ExtractionError: If no span exists, it is not valid JSON or it is
            nested too deeply to decode
    """
    candidate = extract_json_text(raw_text)
    try:
        return json.loads(candidate)
    except ValueError as e:
        raise ExtractionError(f"Invalid JSON in response: {e}") from e
    except RecursionError as e:
        raise ExtractionError("JSON in response is nested too deeply") from e
