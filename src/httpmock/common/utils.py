"""
httpmock Common Utilities

Formatting helpers for diagnostics.
"""

from typing import Iterable, Tuple

# Bodies longer than this are truncated in diagnostics
MAX_BODY_PREVIEW = 1024


def safe_body(raw: bytes, max_bytes: int = MAX_BODY_PREVIEW) -> str:
    """
    Render a body for diagnostic output.

    Handles both text and binary data gracefully:
    - UTF-8 text is returned as is (truncated to max_bytes)
    - Anything else is replaced with a placeholder

    Args:
        raw: Raw bytes of body
        max_bytes: Maximum size to render

    Returns:
        Body as string, or placeholder for binary data
    """
    if not raw:
        return ""
    try:
        text = raw[:max_bytes].decode('utf-8')
    except UnicodeDecodeError:
        return f"[binary data, {len(raw)} bytes]"
    if len(raw) > max_bytes:
        text += f"... ({len(raw) - max_bytes} more bytes)"
    return text


def format_headers(headers: Iterable[Tuple[str, str]], indent: str = "  ") -> str:
    """
    Render header pairs one per line, `Name: value`.

    Args:
        headers: Iterable of (name, value) pairs
        indent: Prefix for every line

    Returns:
        Multi-line string, or '<indent>(none)' when there are no headers
    """
    lines = [f"{indent}{name}: {value}" for name, value in headers]
    if not lines:
        return f"{indent}(none)"
    return "\n".join(lines)
