"""Helpers for reading structured data out of model replies."""

import json
import re
from typing import Any

_FENCE_RE = re.compile(r"```(?:json)?", re.IGNORECASE)


def strip_code_fences(text: str) -> str:
    """Remove markdown code fences around a model reply."""
    return _FENCE_RE.sub("", text).strip()


def parse_json_reply(text: str) -> Any:
    """
    Parse a model reply that should be JSON.

    Raises:
        ValueError: If the reply is not valid JSON after fence stripping
    """
    cleaned = strip_code_fences(text)
    try:
        return json.loads(cleaned)
    except json.JSONDecodeError as e:
        raise ValueError(f"Reply is not valid JSON: {e.msg}") from e


def word_count(text: str) -> int:
    return len(text.split(" "))
