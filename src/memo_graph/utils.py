"""Utility functions for the memo graph."""

import re

_WHITESPACE = re.compile(r"\s+")


def make_preview(content: str, length: int = 120) -> str:
    """Build a one-line preview of note content.

    Collapses all whitespace (including paragraph breaks) to single spaces
    and truncates to ``length`` characters, marking truncation with "...".

    Examples:
        "First line\\n\\nSecond" -> "First line Second"

    Args:
        content: The note content.
        length: Maximum preview length in characters. 0 disables previews.

    Returns:
        Preview string, at most ``length`` characters long.
    """
    if not content or length <= 0:
        return ""
    flat = _WHITESPACE.sub(" ", content).strip()
    if len(flat) <= length:
        return flat
    if length <= 3:
        return flat[:length]
    return flat[: length - 3].rstrip() + "..."
