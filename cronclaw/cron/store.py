"""Job store: the whole job list persisted as one JSON document

Key features:
- Missing file loads as an empty store
- Corrupt file loads as an empty store; the bad file is kept as ``.corrupt``
- Malformed job entries are dropped on load
- Atomic writes (unique temp file in the same directory + rename)
- ``.bak`` copy of the previous file, only when it still parses
"""
from __future__ import annotations

import json
import logging
import os
import shutil
import uuid
from pathlib import Path
from typing import Any

from .types import CronJob, CronStoreFile

logger = logging.getLogger(__name__)

STORE_VERSION = 1


def _is_job_shaped(raw: Any) -> bool:
    return (
        isinstance(raw, dict)
        and isinstance(raw.get("id"), str)
        and bool(raw["id"])
        and isinstance(raw.get("name"), str)
        and isinstance(raw.get("schedule"), dict)
        and isinstance(raw.get("payload"), dict)
    )


def _preserve_corrupt_copy(path: Path) -> None:
    try:
        shutil.copyfile(path, path.with_name(f"{path.name}.corrupt"))
    except OSError:
        pass  # forensics only


def load_cron_store(store_path: str | Path) -> CronStoreFile:
    """Load the store. Never raises on a missing or corrupt file."""
    path = Path(store_path)
    try:
        raw = path.read_bytes()
    except FileNotFoundError:
        return CronStoreFile(version=STORE_VERSION, jobs=[])

    try:
        data = json.loads(raw.decode("utf-8"))
    except ValueError as e:
        logger.warning(f"cron: corrupt store at {path}: {e}; starting with an empty job list")
        _preserve_corrupt_copy(path)
        return CronStoreFile(version=STORE_VERSION, jobs=[])

    # v0 stores were a bare list of jobs
    if isinstance(data, list):
        jobs_data = data
    elif isinstance(data, dict) and isinstance(data.get("jobs"), list):
        jobs_data = data["jobs"]
    else:
        jobs_data = []

    jobs: list[CronJob] = []
    for raw_job in jobs_data:
        if not _is_job_shaped(raw_job):
            continue
        try:
            jobs.append(CronJob.from_dict(raw_job))
        except ValueError as e:
            logger.debug(f"cron: dropping malformed job {raw_job.get('id')!r}: {e}")

    return CronStoreFile(version=STORE_VERSION, jobs=jobs)


def _backup_existing(path: Path, backup_path: Path) -> None:
    """Copy the current store to ``.bak`` if it exists and is valid JSON."""
    try:
        json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        return
    except (OSError, ValueError) as e:
        logger.warning(f"cron: not backing up unreadable store {path}: {e}")
        return
    try:
        shutil.copy2(path, backup_path)
    except FileNotFoundError:
        return
    except OSError as e:
        logger.warning(f"cron: store backup failed ({backup_path}): {e}")


def save_cron_store(store_path: str | Path, store: CronStoreFile) -> None:
    """Write the store atomically. Raises only if the final rename fails."""
    path = Path(store_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    data = json.dumps(store.to_dict(), indent=2, ensure_ascii=False)

    tmp = path.with_name(f"{path.name}.{os.getpid()}.{uuid.uuid4().hex[:12]}.tmp")
    try:
        tmp.write_text(data, encoding="utf-8")
    except OSError:
        tmp.unlink(missing_ok=True)
        raise

    _backup_existing(path, path.with_name(f"{path.name}.bak"))

    try:
        os.replace(tmp, path)
    except OSError:
        tmp.unlink(missing_ok=True)
        raise
    logger.debug(f"Saved {len(store.jobs)} jobs to {path}")


class CronStore:
    """
    File-backed cron store bound to one path.

    Provides:
    - load/save of the whole ``CronStoreFile``
    - mtime tracking so callers can detect external edits
    """

    def __init__(self, store_path: str | Path):
        self.store_path = Path(store_path)
        self.backup_path = self.store_path.with_name(f"{self.store_path.name}.bak")
        self.corrupt_path = self.store_path.with_name(f"{self.store_path.name}.corrupt")

    def get_file_mtime_ms(self) -> float | None:
        """File modification time in ms (None if missing)."""
        try:
            return self.store_path.stat().st_mtime_ns / 1e6
        except FileNotFoundError:
            return None

    def load(self) -> CronStoreFile:
        store = load_cron_store(self.store_path)
        logger.debug(f"Loaded {len(store.jobs)} jobs from {self.store_path}")
        return store

    def save(self, store: CronStoreFile) -> None:
        save_cron_store(self.store_path, store)


__all__ = ["CronStore", "load_cron_store", "save_cron_store", "STORE_VERSION"]
