"""Summary helpers for isolated agent output"""
from __future__ import annotations

SUMMARY_MAX_CHARS = 2000


def truncate_text(text: str, max_len: int) -> str:
    if len(text) <= max_len:
        return text
    return text[: max(0, max_len - 1)].rstrip() + "…"


def pick_summary_from_output(text: str | None) -> str | None:
    """Trimmed output, cut to ``SUMMARY_MAX_CHARS`` with an ellipsis."""
    clean = (text or "").strip()
    if not clean:
        return None
    return truncate_text(clean, SUMMARY_MAX_CHARS)
