"""
Tests for next-run computation
"""
import logging
from datetime import datetime, timezone

import pytest

from cronclaw.cron.parse import format_iso_ms, parse_absolute_time_ms
from cronclaw.cron.schedule import (
    compute_every_next_run_ms,
    compute_next_run_at_ms,
    format_next_run,
    format_schedule,
    next_cron_occurrence_ms,
)
from cronclaw.cron.types import AtSchedule, CronSchedule, EverySchedule


def ms(*args) -> int:
    return int(datetime(*args, tzinfo=timezone.utc).timestamp() * 1000)


class TestEverySchedule:
    def test_aligned_to_anchor(self):
        assert compute_every_next_run_ms(10_000, 0, 25_000) == 30_000

    def test_boundary_counts_as_next(self):
        assert compute_every_next_run_ms(10_000, 0, 30_000) == 30_000

    def test_at_anchor_skips_to_first_interval(self):
        assert compute_every_next_run_ms(10_000, 5_000, 5_000) == 15_000

    def test_before_anchor_returns_anchor(self):
        assert compute_every_next_run_ms(10_000, 50_000, 1_000) == 50_000

    @pytest.mark.parametrize("now", [20_001, 24_000, 29_999])
    def test_reference_time_within_interval_does_not_shift(self, now):
        assert compute_every_next_run_ms(10_000, 0, now) == 30_000

    def test_default_anchor_used_when_unset(self):
        schedule = EverySchedule(every_ms=60_000)
        assert compute_next_run_at_ms(schedule, 100_000, default_anchor_ms=30_000) == 150_000

    def test_explicit_anchor_wins(self):
        schedule = EverySchedule(every_ms=60_000, anchor_ms=0)
        assert compute_next_run_at_ms(schedule, 100_000, default_anchor_ms=30_000) == 120_000


class TestAtSchedule:
    def test_future_timestamp(self):
        at = ms(2030, 1, 1, 12, 0)
        schedule = AtSchedule(at=format_iso_ms(at))
        assert compute_next_run_at_ms(schedule, at - 1) == at

    def test_past_timestamp_has_no_next_run(self):
        at = ms(2020, 1, 1)
        assert compute_next_run_at_ms(AtSchedule(at="2020-01-01T00:00:00Z"), at + 1) is None

    def test_unparseable_timestamp(self):
        assert compute_next_run_at_ms(AtSchedule(at="tomorrow-ish"), 0) is None


class TestCronSchedule:
    def test_daily_utc(self):
        schedule = CronSchedule(expr="0 9 * * *")
        assert next_cron_occurrence_ms(schedule, ms(2026, 1, 1)) == ms(2026, 1, 1, 9, 0)

    def test_strictly_after(self):
        schedule = CronSchedule(expr="0 9 * * *")
        assert next_cron_occurrence_ms(schedule, ms(2026, 1, 1, 9, 0)) == ms(2026, 1, 2, 9, 0)

    def test_timezone(self):
        schedule = CronSchedule(expr="0 9 * * *", tz="America/New_York")
        # 09:00 EST is 14:00 UTC
        assert compute_next_run_at_ms(schedule, ms(2026, 1, 15)) == ms(2026, 1, 15, 14, 0)

    def test_invalid_expression_never_raises(self, caplog):
        with caplog.at_level(logging.WARNING):
            assert compute_next_run_at_ms(CronSchedule(expr="not a cron"), ms(2026, 1, 1)) is None
        assert "invalid schedule" in caplog.text

    def test_invalid_timezone_never_raises(self):
        schedule = CronSchedule(expr="0 9 * * *", tz="Mars/Olympus_Mons")
        assert compute_next_run_at_ms(schedule, ms(2026, 1, 1)) is None

    def test_blank_expression(self):
        assert next_cron_occurrence_ms(CronSchedule(expr="  "), 0) is None


class TestParse:
    def test_iso_with_offset(self):
        assert parse_absolute_time_ms("2026-01-01T10:00:00+01:00") == ms(2026, 1, 1, 9, 0)

    def test_naive_iso_is_utc(self):
        assert parse_absolute_time_ms("2026-01-01T09:00:00") == ms(2026, 1, 1, 9, 0)

    def test_date_only(self):
        assert parse_absolute_time_ms("2026-01-01") == ms(2026, 1, 1)

    def test_numeric_string(self):
        assert parse_absolute_time_ms("1700000000000") == 1_700_000_000_000

    def test_garbage(self):
        assert parse_absolute_time_ms("soon") is None
        assert parse_absolute_time_ms("") is None
        assert parse_absolute_time_ms(None) is None

    def test_format_iso_ms(self):
        assert format_iso_ms(ms(2026, 1, 1, 9, 0) + 5) == "2026-01-01T09:00:00.005Z"


class TestFormatting:
    def test_format_schedule(self):
        assert format_schedule(EverySchedule(every_ms=90 * 60_000)) == "Every 1.5h"
        assert format_schedule(EverySchedule(every_ms=600_000)) == "Every 10m"
        assert format_schedule(EverySchedule(every_ms=30_000)) == "Every 30s"
        assert format_schedule(CronSchedule(expr="0 9 * * *", tz="Europe/Paris")) == "Cron: 0 9 * * * (Europe/Paris)"
        assert format_schedule(AtSchedule(at="2026-01-01T00:00:00.000Z")) == "One-time at 2026-01-01T00:00:00.000Z"

    def test_format_next_run(self):
        now = ms(2026, 1, 1)
        assert format_next_run(now + 2 * 3_600_000 + 5 * 60_000, now) == "2026-01-01 02:05:00 UTC (in 2h 5m)"
