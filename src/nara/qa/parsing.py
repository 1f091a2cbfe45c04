"""Helpers for reading semi-structured model output."""

from __future__ import annotations

import re


_FENCE_RE = re.compile(r"^```(?:json|JSON)?\s*\n(?P<body>.*?)\n?```\s*$", re.DOTALL)


def strip_code_fence(text: str) -> str:
    stripped = text.strip()
    match = _FENCE_RE.match(stripped)
    if match:
        return match.group("body").strip()
    return stripped


def looks_like_json(text: str, *, opener: str) -> bool:
    """True when the (unfenced) text starts with ``opener`` (``{`` or ``[``)."""

    return strip_code_fence(text).startswith(opener)
