"""
Recover a JSON object from generated text.

Models are asked for bare JSON but still wrap it in code fences, prepend
chatter or cut it off mid-object. Three strategies are tried in order:

  1. "direct"      strip code fences, strict json.loads
  2. "brace_scan"  brace-matched substring scan, string-aware
  3. "field_regex" per-field regex for the known extraction fields

The first strategy that yields a dict wins.
"""

import json
import re
from enum import Enum
from typing import Any, Iterator, Optional, Sequence

from .exceptions import ResponseParseError
from .logger import get_module_logger

logger = get_module_logger("json_parser")

# Fields the regex fallback looks for
EXTRACTION_FIELDS = (
    "title", "author", "publication_date", "main_content_summary", "category",
    "description", "price", "rating", "reviews_rating", "ingredients",
    "instructions", "links", "images", "confidence_score",
    "headline", "byline", "publishedAt", "body", "summary", "topic",
)

_FENCE = re.compile(r"^```[a-zA-Z]*\s*|\s*```$")


class ScanState(Enum):
    OUTSIDE = "outside"
    IN_STRING = "in_string"
    ESCAPED = "escaped"


def strip_code_fences(text: str) -> str:
    return _FENCE.sub("", text.strip()).strip()


def _balanced_end(text: str, start: int) -> Optional[int]:
    """
    Index of the brace closing the object opened at text[start], or None.

    Transitions:
      OUTSIDE   "  → IN_STRING     { → depth+1     } → depth-1
      IN_STRING \\ → ESCAPED       " → OUTSIDE
      ESCAPED   any → IN_STRING
    """
    state = ScanState.OUTSIDE
    depth = 0
    for index in range(start, len(text)):
        char = text[index]
        if state is ScanState.ESCAPED:
            state = ScanState.IN_STRING
        elif state is ScanState.IN_STRING:
            if char == "\\":
                state = ScanState.ESCAPED
            elif char == '"':
                state = ScanState.OUTSIDE
        elif char == '"':
            state = ScanState.IN_STRING
        elif char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                return index
    return None


def iter_json_candidates(text: str) -> Iterator[str]:
    """Yield every balanced {...} substring, one per opening brace."""
    start = text.find("{")
    while start != -1:
        end = _balanced_end(text, start)
        if end is not None:
            yield text[start:end + 1]
        start = text.find("{", start + 1)


def _loads_dict(text: str) -> Optional[dict]:
    try:
        parsed = json.loads(text)
    except (json.JSONDecodeError, ValueError):
        return None
    return parsed if isinstance(parsed, dict) else None


def _decode_string(raw: str) -> str:
    try:
        return json.loads(f'"{raw}"')
    except (json.JSONDecodeError, ValueError):
        return raw


def extract_fields(text: str, fields: Sequence[str] = EXTRACTION_FIELDS) -> dict[str, Any]:
    """Last resort: pull known fields out one by one with regexes."""
    found: dict[str, Any] = {}
    for field in fields:
        key = rf'"{re.escape(field)}"\s*:\s*'

        match = re.search(key + r'"((?:[^"\\]|\\.)*)"', text)
        if match:
            found[field] = _decode_string(match.group(1))
            continue

        if re.search(key + r"null\b", text):
            found[field] = None
            continue

        match = re.search(key + r"\[(.*?)\]", text, re.DOTALL)
        if match:
            found[field] = [
                _decode_string(item)
                for item in re.findall(r'"((?:[^"\\]|\\.)*)"', match.group(1))
            ]
            continue

        match = re.search(key + r"(-?\d+(?:\.\d+)?)", text)
        if match:
            number = match.group(1)
            found[field] = float(number) if "." in number else int(number)
    return found


def parse_json_response(text: Optional[str]) -> tuple[dict[str, Any], str]:
    """
    Parse generated text into a field map.

    Returns:
        (data, strategy) where strategy names the method that succeeded

    Raises:
        ResponseParseError: If no strategy yields an object
    """
    if not text or not text.strip():
        raise ResponseParseError("JSON parsing failed: empty response", response_text=text or "")

    data = _loads_dict(strip_code_fences(text))
    if data is not None:
        return data, "direct"

    for candidate in iter_json_candidates(text):
        data = _loads_dict(candidate)
        if data is not None:
            logger.debug("Recovered JSON object by brace scan")
            return data, "brace_scan"

    data = extract_fields(text)
    if data:
        logger.warning(f"Recovered {len(data)} fields by regex fallback")
        return data, "field_regex"

    raise ResponseParseError(
        "JSON parsing failed: no object could be recovered",
        response_text=text[:500]
    )
