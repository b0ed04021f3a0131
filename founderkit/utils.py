"""Shared utility functions used across founderkit modules."""
from __future__ import annotations

import json
import re
from typing import Any

_MISSING = object()

_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)


def json_parse(value: str | None, default: Any = _MISSING) -> Any:
    """Safely parse a JSON string, returning *default* on failure.

    If no default is given, returns ``{}`` on parse error.
    """
    try:
        return json.loads(value or "")
    except (json.JSONDecodeError, TypeError):
        return {} if default is _MISSING else default


def strip_code_fences(text: str) -> str:
    """Remove a leading ```json fence and a trailing ``` fence, if present."""
    return _FENCE_RE.sub("", text.strip()).strip()
