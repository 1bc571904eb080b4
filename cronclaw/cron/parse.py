"""Absolute time parsing for ``at`` schedules"""
from __future__ import annotations

import re
from datetime import UTC, datetime, timedelta

_DIGITS_RE = re.compile(r"^\d+$")
_DATE_ONLY_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_EPOCH = datetime(1970, 1, 1, tzinfo=UTC)


def parse_absolute_time_ms(raw: str | int | float | None) -> int | None:
    """
    Parse an absolute timestamp into epoch milliseconds.

    Accepts epoch milliseconds (number or digit string) and ISO-8601 strings.
    ISO strings without an offset are treated as UTC. Returns None when the
    value cannot be parsed.
    """
    if raw is None or isinstance(raw, bool):
        return None
    if isinstance(raw, (int, float)):
        return int(raw) if raw > 0 else None

    text = raw.strip()
    if not text:
        return None
    if _DIGITS_RE.match(text):
        value = int(text)
        return value if value > 0 else None
    if _DATE_ONLY_RE.match(text):
        text = f"{text}T00:00:00"
    try:
        dt = datetime.fromisoformat(text.replace("Z", "+00:00").replace("z", "+00:00"))
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return (dt - _EPOCH) // timedelta(milliseconds=1)


def format_iso_ms(ms: int) -> str:
    """Format epoch ms as ``YYYY-MM-DDTHH:MM:SS.mmmZ``."""
    dt = _EPOCH + timedelta(milliseconds=ms)
    return dt.isoformat(timespec="milliseconds").replace("+00:00", "Z")
