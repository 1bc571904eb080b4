"""Per-job run history as JSON lines

One file per job at ``<store dir>/runs/<sanitized job id>.jsonl``. Appends to
the same file are serialized in call order; different files never wait on
each other. When a file grows past ``max_bytes`` it is cut down to its last
``keep_lines`` lines.
"""
from __future__ import annotations

import asyncio
import json
import logging
import math
import os
import re
import uuid
from pathlib import Path
from typing import Any

from .types import RUN_STATUSES, CronRunLogEntry

logger = logging.getLogger(__name__)

DEFAULT_MAX_BYTES = 2_000_000
DEFAULT_KEEP_LINES = 2_000
DEFAULT_READ_LIMIT = 200
MAX_READ_LIMIT = 5_000

_UNSAFE_ID_CHARS = re.compile(r"[/\\:\x00]")

# resolved path -> future completed when the latest queued write finishes
_writes_by_path: dict[str, asyncio.Future[None]] = {}


def resolve_cron_run_log_path(store_path: str | Path, job_id: str) -> Path:
    """Run log file for ``job_id``; raises ValueError if it would escape ``runs/``."""
    runs_dir = Path(store_path).resolve().parent / "runs"
    safe_id = _UNSAFE_ID_CHARS.sub("_", job_id or "")
    if not safe_id.strip() or safe_id in (".", ".."):
        raise ValueError("Invalid job ID: empty after sanitization")
    resolved = (runs_dir / f"{safe_id}.jsonl").resolve()
    if resolved.parent != runs_dir.resolve():
        raise ValueError("Invalid job ID: resolved path escapes runs directory")
    return resolved


def _prune_if_needed(path: Path, max_bytes: int, keep_lines: int) -> None:
    try:
        size = path.stat().st_size
    except FileNotFoundError:
        return
    if size <= max_bytes:
        return

    lines = [line.strip() for line in path.read_text(encoding="utf-8").split("\n")]
    lines = [line for line in lines if line]
    kept = lines[-keep_lines:] if keep_lines > 0 else []
    tmp = path.with_name(f"{path.name}.{os.getpid()}.{uuid.uuid4().hex[:12]}.tmp")
    tmp.write_text("\n".join(kept) + "\n" if kept else "", encoding="utf-8")
    try:
        os.replace(tmp, path)
    except OSError:
        tmp.unlink(missing_ok=True)
        raise


def _append_sync(path: Path, line: str, max_bytes: int, keep_lines: int) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "a", encoding="utf-8") as f:
        f.write(line + "\n")
    _prune_if_needed(path, max_bytes, keep_lines)


async def append_cron_run_log(
    file_path: str | Path,
    entry: CronRunLogEntry | dict[str, Any],
    *,
    max_bytes: int = DEFAULT_MAX_BYTES,
    keep_lines: int = DEFAULT_KEEP_LINES,
) -> None:
    """Append one entry, then prune. Waits for earlier writes to the same file."""
    resolved = Path(file_path).resolve()
    key = str(resolved)
    record = entry.to_dict() if isinstance(entry, CronRunLogEntry) else dict(entry)
    line = json.dumps(record, ensure_ascii=False)

    loop = asyncio.get_running_loop()
    done: asyncio.Future[None] = loop.create_future()
    prev = _writes_by_path.get(key)
    _writes_by_path[key] = done
    try:
        if prev is not None and not prev.done():
            await asyncio.wait({prev})
        await asyncio.to_thread(_append_sync, resolved, line, max_bytes, keep_lines)
    finally:
        done.set_result(None)
        if _writes_by_path.get(key) is done:
            del _writes_by_path[key]


def _parse_entry(line: str, job_id: str | None) -> CronRunLogEntry | None:
    try:
        obj = json.loads(line)
    except json.JSONDecodeError:
        return None
    if not isinstance(obj, dict) or obj.get("action") != "finished":
        return None
    entry_job_id = obj.get("jobId")
    if not isinstance(entry_job_id, str) or not entry_job_id.strip():
        return None
    ts = obj.get("ts")
    if isinstance(ts, bool) or not isinstance(ts, (int, float)):
        return None
    if isinstance(ts, float) and not math.isfinite(ts):
        return None
    if job_id and entry_job_id != job_id:
        return None
    if "status" in obj and obj["status"] not in RUN_STATUSES:
        return None
    return CronRunLogEntry.from_dict(obj)


def read_cron_run_log_entries(
    file_path: str | Path,
    *,
    limit: int | None = None,
    job_id: str | None = None,
) -> list[CronRunLogEntry]:
    """
    Read finished-run entries, most recent first.

    Blank and malformed lines are skipped. ``limit`` defaults to 200 and is
    clamped to [1, 5000].
    """
    max_entries = max(1, min(MAX_READ_LIMIT, int(limit if limit is not None else DEFAULT_READ_LIMIT)))
    wanted_job = job_id.strip() if job_id and job_id.strip() else None
    try:
        raw = Path(file_path).resolve().read_text(encoding="utf-8")
    except FileNotFoundError:
        return []
    except OSError as e:
        logger.warning(f"cron: unable to read run log {file_path}: {e}")
        return []

    entries: list[CronRunLogEntry] = []
    for line in reversed(raw.split("\n")):
        if len(entries) >= max_entries:
            break
        line = line.strip()
        if not line:
            continue
        entry = _parse_entry(line, wanted_job)
        if entry is not None:
            entries.append(entry)
    return entries


__all__ = [
    "resolve_cron_run_log_path",
    "append_cron_run_log",
    "read_cron_run_log_entries",
    "DEFAULT_MAX_BYTES",
    "DEFAULT_KEEP_LINES",
]
