"""Data directory and cron store paths."""
from __future__ import annotations

import os
from pathlib import Path
from typing import Optional


def resolve_state_dir() -> Path:
    """
    Get the cronclaw data directory.

    ``CRONCLAW_STATE_DIR`` overrides the default ``~/.cronclaw``.
    """
    override = os.getenv("CRONCLAW_STATE_DIR", "").strip()
    if override:
        return Path(override).expanduser().resolve()
    return Path.home() / ".cronclaw"


def default_cron_dir() -> Path:
    return resolve_state_dir() / "cron"


def default_cron_store_path() -> Path:
    return default_cron_dir() / "jobs.json"


def resolve_cron_store_path(store_path: Optional[str | Path] = None) -> Path:
    """Resolve the cron store path, expanding ``~``; falls back to the default."""
    if store_path is not None and str(store_path).strip():
        return Path(str(store_path).strip()).expanduser().resolve()
    return default_cron_store_path()


__all__ = [
    "resolve_state_dir",
    "default_cron_dir",
    "default_cron_store_path",
    "resolve_cron_store_path",
]
