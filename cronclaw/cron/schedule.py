"""Schedule engine: next-run computation for at / every / cron schedules

All functions are pure apart from logging. Invalid cron expressions or
timezones never raise; they produce no next run and a warning.
"""
from __future__ import annotations

import logging
from datetime import UTC, datetime, timedelta
from zoneinfo import ZoneInfo

from croniter import croniter

from .parse import parse_absolute_time_ms
from .types import AtSchedule, CronSchedule, EverySchedule, Schedule

logger = logging.getLogger(__name__)

_EPOCH = datetime(1970, 1, 1, tzinfo=UTC)


def _to_ms(dt: datetime) -> int:
    return (dt - _EPOCH) // timedelta(milliseconds=1)


def now_ms() -> int:
    return _to_ms(datetime.now(UTC))


def next_cron_occurrence_ms(schedule: CronSchedule, after_ms: int) -> int | None:
    """First occurrence strictly after ``after_ms`` (None on bad expr/tz)."""
    expr = (schedule.expr or "").strip()
    if not expr:
        return None
    try:
        tz = ZoneInfo(schedule.tz) if schedule.tz else UTC
        start = (_EPOCH + timedelta(milliseconds=after_ms)).astimezone(tz)
        nxt = croniter(expr, start).get_next(datetime)
    except Exception as e:
        logger.warning(f"cron: invalid schedule expr={expr!r} tz={schedule.tz!r}: {e}")
        return None
    return _to_ms(nxt)


def compute_every_next_run_ms(every_ms: int, anchor_ms: int, now_ms: int) -> int:
    """
    Anchor-aligned interval: the first ``anchor + k * every`` (k >= 1) that is
    >= now. Before the anchor, the anchor itself is the next run.
    """
    every = max(1, int(every_ms))
    if now_ms < anchor_ms:
        return anchor_ms
    elapsed = now_ms - anchor_ms
    steps = max(1, -(-elapsed // every))
    return anchor_ms + steps * every


def compute_next_run_at_ms(
    schedule: Schedule,
    now_ms: int,
    *,
    default_anchor_ms: int | None = None,
) -> int | None:
    """
    Next due timestamp (epoch ms) for a schedule, or None if there is none.

    - at: the timestamp if still in the future
    - every: anchor-aligned; ``anchor_ms`` falls back to ``default_anchor_ms``
      (usually the job's creation time) and then to ``now_ms``
    - cron: next occurrence after ``now_ms``
    """
    if isinstance(schedule, AtSchedule):
        at_ms = parse_absolute_time_ms(schedule.at)
        if at_ms is None:
            return None
        return at_ms if at_ms > now_ms else None

    if isinstance(schedule, EverySchedule):
        anchor = schedule.anchor_ms
        if anchor is None:
            anchor = default_anchor_ms if default_anchor_ms is not None else now_ms
        return compute_every_next_run_ms(schedule.every_ms, max(0, anchor), now_ms)

    if isinstance(schedule, CronSchedule):
        return next_cron_occurrence_ms(schedule, now_ms)

    return None


def format_next_run(next_run_ms: int, now: int | None = None) -> str:
    """Human-readable next run, e.g. ``2026-10-17 09:00:00 UTC (in 2h 5m)``."""
    current = now if now is not None else now_ms()
    when = (_EPOCH + timedelta(milliseconds=next_run_ms)).strftime("%Y-%m-%d %H:%M:%S UTC")
    delta_s = max(0, (next_run_ms - current) // 1000)
    if delta_s < 60:
        rel = f"{delta_s}s"
    elif delta_s < 3600:
        rel = f"{delta_s // 60}m"
    elif delta_s < 86400:
        rel = f"{delta_s // 3600}h {(delta_s % 3600) // 60}m"
    else:
        rel = f"{delta_s // 86400}d {(delta_s % 86400) // 3600}h"
    return f"{when} (in {rel})"


def format_schedule(schedule: Schedule) -> str:
    if isinstance(schedule, AtSchedule):
        return f"One-time at {schedule.at}"
    if isinstance(schedule, EverySchedule):
        interval_ms = schedule.every_ms
        if interval_ms >= 3_600_000:
            return f"Every {interval_ms / 3_600_000:.1f}h"
        if interval_ms >= 60_000:
            return f"Every {interval_ms / 60_000:.0f}m"
        return f"Every {interval_ms / 1000:.0f}s"
    if isinstance(schedule, CronSchedule):
        return f"Cron: {schedule.expr} ({schedule.tz or 'UTC'})"
    return "Unknown schedule"
