"""API view of cron jobs

The stored document is already camelCase; the API view adds a few derived,
read-only fields for UIs and the CLI.
"""
from __future__ import annotations

from typing import Any

from .parse import format_iso_ms
from .schedule import format_schedule
from .types import CronJob, CronRunLogEntry


def job_to_api(job: CronJob) -> dict[str, Any]:
    """
    Serialize a job for command responses.

    Adds:
    - ``nextRun`` / ``lastRun``: ISO strings mirroring the ms fields
    - ``running``: whether a run is in progress
    - ``scheduleText``: human-readable schedule
    """
    data = job.to_dict()
    state = job.state
    data["nextRun"] = format_iso_ms(state.next_run_at_ms) if state.next_run_at_ms is not None else None
    data["lastRun"] = format_iso_ms(state.last_run_at_ms) if state.last_run_at_ms is not None else None
    data["running"] = state.running_at_ms is not None
    data["scheduleText"] = format_schedule(job.schedule)
    return data


def run_entry_to_api(entry: CronRunLogEntry) -> dict[str, Any]:
    data = entry.to_dict()
    if entry.run_at_ms is not None:
        data["runAt"] = format_iso_ms(entry.run_at_ms)
    return data


__all__ = ["job_to_api", "run_entry_to_api"]
