"""
Parsing of untrusted model output.

Model responses are plain text. Stages expect exactly one JSON object;
this module turns the text into a dict or fails with ``ValueError``. It
does not validate structure: each stage runs its own schema validator on
the result.
"""

import json
import logging
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


def parse_json_object(raw: str) -> Dict[str, Any]:
    """Parse one JSON object from a model response.

    Direct parsing is tried first. If that fails, the outermost balanced
    ``{...}`` region is extracted once and parsed; this recovers objects
    wrapped in markdown fences or surrounded by prose.

    Raises:
        ValueError: If no JSON object can be recovered
    """
    if not raw or not raw.strip():
        raise ValueError("empty response")

    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        region = outermost_object(raw)
        if region is None:
            raise ValueError(f"no JSON object found: {e}")
        try:
            data = json.loads(region)
        except json.JSONDecodeError as inner:
            raise ValueError(f"extracted region is not valid JSON: {inner}")
        logger.warning("Recovered JSON object from surrounding text (%d of %d chars)",
                       len(region), len(raw))

    if not isinstance(data, dict):
        raise ValueError(f"expected a JSON object, got {type(data).__name__}")
    return data


def outermost_object(text: str) -> Optional[str]:
    """Return the first balanced top-level ``{...}`` region of ``text``.

    Braces inside JSON strings are ignored. Returns None when there is no
    opening brace or the region never closes (truncated output).
    """
    start = text.find("{")
    if start == -1:
        return None

    depth = 0
    in_string = False
    escaped = False
    for index in range(start, len(text)):
        char = text[index]
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
                return text[start:index + 1]
    return None
