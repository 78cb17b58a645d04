"""Small text helpers shared by adapters and the display."""

from __future__ import annotations

import json
from typing import Any, Optional


def truncate(s: str, max_len: int) -> str:
    """Cut s to max_len characters, marking the cut with '...'."""
    if len(s) <= max_len:
        return s
    if max_len <= 3:
        return s[:max_len]
    return s[: max_len - 3] + "..."


def short_path(path: str) -> str:
    """Shorten a path to its last two segments: /a/b/c/d.py -> .../c/d.py"""
    parts = path.split("/")
    if len(parts) <= 2:
        return path
    return ".../" + "/".join(parts[-2:])


def format_tokens(n: int) -> str:
    """Compact token count: 1.2M, 3.4k, 999."""
    if n >= 1_000_000:
        return f"{n / 1_000_000:.1f}M"
    if n >= 1_000:
        return f"{n / 1_000:.1f}k"
    return str(n)


def format_duration(seconds: float) -> str:
    """
    Render a duration the way the engine CLIs print them.

    Examples: 900 -> "15m0s", 3600 -> "1h0m0s", 45 -> "45s", 0.25 -> "250ms".
    """
    if seconds < 0:
        seconds = 0
    if 0 < seconds < 1:
        return f"{int(round(seconds * 1000))}ms"

    total = int(seconds)
    hours, rest = divmod(total, 3600)
    minutes, secs = divmod(rest, 60)
    if hours:
        return f"{hours}h{minutes}m{secs}s"
    if minutes:
        return f"{minutes}m{secs}s"
    return f"{secs}s"


def load_json_object(line: str) -> Optional[dict[str, Any]]:
    """Decode one JSONL record; None for blank, malformed or non-object lines."""
    line = line.strip()
    if not line:
        return None
    try:
        value = json.loads(line)
    except json.JSONDecodeError:
        return None
    return value if isinstance(value, dict) else None


def get_str(data: dict[str, Any], key: str) -> str:
    value = data.get(key)
    return value if isinstance(value, str) else ""


def get_dict(data: dict[str, Any], key: str) -> dict[str, Any]:
    value = data.get(key)
    return value if isinstance(value, dict) else {}


def get_list(data: dict[str, Any], key: str) -> list[Any]:
    value = data.get(key)
    return value if isinstance(value, list) else []


def get_number(data: dict[str, Any], key: str) -> Optional[float]:
    """Numeric field, or None when missing or not a number."""
    value = data.get(key)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return value


def sum_fields(data: dict[str, Any], keys: tuple[str, ...]) -> int:
    """Add up the numeric fields among keys, ignoring missing ones."""
    total = 0
    for key in keys:
        value = get_number(data, key)
        if value is not None:
            total += int(value)
    return total
