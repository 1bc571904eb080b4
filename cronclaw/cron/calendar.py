"""Projection of future runs over a horizon (calendar view)"""
from __future__ import annotations

from typing import Iterable

from .schedule import (
    compute_every_next_run_ms,
    compute_next_run_at_ms,
    next_cron_occurrence_ms,
    now_ms as _now_ms,
)
from .types import AtSchedule, CronJob, CronSchedule, EverySchedule, ProjectedRun

MAX_RUNS_PER_JOB = 5000
DAY_MS = 24 * 60 * 60 * 1000


def project_future_runs(
    jobs: Iterable[CronJob],
    days: float,
    now_ms: int | None = None,
) -> list[ProjectedRun]:
    """
    Project run times of all enabled jobs within ``[now, now + days]``.

    Each job contributes at most ``MAX_RUNS_PER_JOB`` runs. The result is
    sorted by ``run_at_ms``; ties keep input order.
    """
    now = now_ms if now_ms is not None else _now_ms()
    horizon_ms = now + int(days * DAY_MS)
    runs: list[ProjectedRun] = []

    for job in jobs:
        if not job.enabled:
            continue
        for run_at_ms in project_job_runs(job, now, horizon_ms):
            runs.append(ProjectedRun(job_id=job.id, job_name=job.name, run_at_ms=run_at_ms))

    # sorted() is stable, so equal timestamps stay in job order
    return sorted(runs, key=lambda r: r.run_at_ms)


def project_job_runs(job: CronJob, now_ms: int, horizon_ms: int) -> list[int]:
    schedule = job.schedule
    if isinstance(schedule, AtSchedule):
        if job.state.last_status == "ok" and job.state.last_run_at_ms:
            return []
        nxt = compute_next_run_at_ms(schedule, now_ms)
        return [nxt] if nxt is not None and nxt <= horizon_ms else []

    runs: list[int] = []
    cursor = now_ms

    if isinstance(schedule, EverySchedule):
        anchor = schedule.anchor_ms
        if anchor is None:
            anchor = job.created_at_ms or now_ms
        while len(runs) < MAX_RUNS_PER_JOB:
            nxt = compute_every_next_run_ms(schedule.every_ms, max(0, anchor), cursor)
            if nxt > horizon_ms:
                break
            runs.append(nxt)
            cursor = nxt + 1
        return runs

    if isinstance(schedule, CronSchedule):
        while len(runs) < MAX_RUNS_PER_JOB:
            nxt = next_cron_occurrence_ms(schedule, cursor)
            if nxt is None or nxt > horizon_ms:
                break
            runs.append(nxt)
            cursor = nxt + 1
        return runs

    return runs
