"""
Pytest configuration for cronclaw tests

Shared fixtures: a temporary store directory, a controllable clock and a
job factory.
"""
from __future__ import annotations

from pathlib import Path

import pytest

from cronclaw.cron.types import (
    AgentTurnPayload,
    CronDelivery,
    CronJob,
    EverySchedule,
    SystemEventPayload,
)

# 2023-11-14T22:13:20Z
T0 = 1_700_000_000_000


class FakeClock:
    """Callable clock in epoch ms; tests move it explicitly."""

    def __init__(self, now: int = T0):
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> int:
        self.now += ms
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def cron_dir(tmp_path) -> Path:
    d = tmp_path / "cron"
    d.mkdir()
    return d


@pytest.fixture
def store_path(cron_dir) -> Path:
    return cron_dir / "jobs.json"


def make_main_job(job_id: str = "job-main", **overrides) -> CronJob:
    fields = dict(
        id=job_id,
        name="Main job",
        schedule=EverySchedule(every_ms=60_000),
        session_target="main",
        wake_mode="next-heartbeat",
        payload=SystemEventPayload(text="ping"),
        created_at_ms=T0,
        updated_at_ms=T0,
    )
    fields.update(overrides)
    return CronJob(**fields)


def make_isolated_job(job_id: str = "job-iso", **overrides) -> CronJob:
    fields = dict(
        id=job_id,
        name="Isolated job",
        schedule=EverySchedule(every_ms=60_000),
        session_target="isolated",
        wake_mode="next-heartbeat",
        payload=AgentTurnPayload(message="summarize"),
        delivery=CronDelivery(mode="announce", channel="telegram", to="+15555550100"),
        created_at_ms=T0,
        updated_at_ms=T0,
    )
    fields.update(overrides)
    return CronJob(**fields)
