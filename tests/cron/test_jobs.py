"""
Tests for job creation, patching and next-run bookkeeping
"""
import logging

import pytest

from cronclaw.cron.errors import CronJobNotFoundError, CronValidationError, InvalidJobDefinitionError
from cronclaw.cron.jobs import (
    STUCK_RUN_MS,
    apply_job_patch,
    compute_job_next_run_at_ms,
    create_job,
    is_job_due,
    merge_cron_payload,
    next_wake_at_ms,
    recompute_next_runs,
    resolve_job_payload_text_for_main,
)
from cronclaw.cron.normalize import normalize_cron_job_create, normalize_cron_job_patch
from cronclaw.cron.parse import format_iso_ms
from cronclaw.cron.types import (
    AgentTurnPayload,
    AtSchedule,
    CronDelivery,
    CronJobState,
    CronStoreFile,
    EverySchedule,
    SystemEventPayload,
)

from ..conftest import T0, make_isolated_job, make_main_job


def create(raw, now=T0):
    return create_job(normalize_cron_job_create(raw), now)


def main_raw(**overrides):
    raw = {
        "name": "Ping",
        "schedule": {"kind": "every", "everyMs": 60_000},
        "payload": {"kind": "systemEvent", "text": "ping"},
    }
    raw.update(overrides)
    return raw


class TestCreateJob:
    def test_every_job_next_run_is_one_interval_out(self):
        job = create(main_raw())
        assert job.id
        assert job.created_at_ms == job.updated_at_ms == T0
        assert job.state.next_run_at_ms == T0 + 60_000

    def test_ids_are_unique(self):
        assert create(main_raw()).id != create(main_raw()).id

    def test_future_at_job(self):
        job = create(main_raw(schedule={"kind": "at", "at": format_iso_ms(T0 + 5_000)}))
        assert job.state.next_run_at_ms == T0 + 5_000
        assert job.delete_after_run is True

    def test_past_at_is_rejected(self):
        with pytest.raises(CronValidationError, match="past"):
            create(main_raw(schedule={"kind": "at", "at": format_iso_ms(T0 - 1)}))

    def test_at_equal_to_now_is_rejected(self):
        with pytest.raises(CronValidationError):
            create(main_raw(schedule={"kind": "at", "at": format_iso_ms(T0)}))

    def test_unparseable_at_is_rejected(self):
        with pytest.raises(CronValidationError):
            create(main_raw(schedule={"kind": "at", "at": "next tuesday"}))

    def test_every_floor(self):
        with pytest.raises(CronValidationError, match="10000"):
            create(main_raw(schedule={"kind": "every", "everyMs": 9_999}))
        assert create(main_raw(schedule={"kind": "every", "everyMs": 10_000})).schedule.every_ms == 10_000

    def test_main_requires_system_event(self):
        with pytest.raises(CronValidationError, match="systemEvent"):
            create(main_raw(sessionTarget="main", payload={"kind": "agentTurn", "message": "hi"}))

    def test_isolated_requires_agent_turn(self):
        with pytest.raises(CronValidationError, match="agentTurn"):
            create(main_raw(sessionTarget="isolated"))

    def test_delivery_only_for_isolated(self):
        with pytest.raises(CronValidationError, match="isolated"):
            create(main_raw(delivery={"mode": "announce"}))

    def test_name_is_required(self):
        with pytest.raises(InvalidJobDefinitionError, match="name"):
            create(main_raw(name="   "))

    def test_cron_job_in_timezone(self):
        job = create(main_raw(schedule={"kind": "cron", "expr": "0 9 * * *", "tz": "UTC"}))
        # T0 is 22:13:20 UTC, next 09:00 is the following morning
        assert job.state.next_run_at_ms == T0 + (10 * 3600 + 46 * 60 + 40) * 1000

    def test_invalid_cron_expr_has_no_next_run(self):
        job = create(main_raw(schedule={"kind": "cron", "expr": "not a cron"}))
        assert job.state.next_run_at_ms is None

    def test_disabled_job_has_no_next_run(self):
        assert create(main_raw(enabled=False)).state.next_run_at_ms is None


class TestNextRun:
    def test_every_never_refires_the_boundary_that_just_ran(self):
        job = make_main_job()
        job.state.last_run_at_ms = T0 + 60_000
        job.state.last_status = "ok"
        assert compute_job_next_run_at_ms(job, T0 + 60_000) == T0 + 120_000

    def test_every_skips_missed_boundaries(self):
        job = make_main_job()
        assert compute_job_next_run_at_ms(job, T0 + 150_000) == T0 + 180_000

    def test_every_uses_explicit_anchor(self):
        job = make_main_job(schedule=EverySchedule(every_ms=60_000, anchor_ms=T0 + 30_000))
        assert compute_job_next_run_at_ms(job, T0) == T0 + 30_000
        assert compute_job_next_run_at_ms(job, T0 + 45_000) == T0 + 90_000

    def test_at_exhausted_after_success(self):
        job = make_main_job(schedule=AtSchedule(at=format_iso_ms(T0 + 10_000)))
        assert compute_job_next_run_at_ms(job, T0) == T0 + 10_000
        job.state.last_run_at_ms = T0 + 10_000
        job.state.last_status = "ok"
        assert compute_job_next_run_at_ms(job, T0) is None

    def test_at_after_error_stays_scheduled_until_it_passes(self):
        job = make_main_job(schedule=AtSchedule(at=format_iso_ms(T0 + 10_000)))
        job.state.last_run_at_ms = T0
        job.state.last_status = "error"
        assert compute_job_next_run_at_ms(job, T0 + 1) == T0 + 10_000
        assert compute_job_next_run_at_ms(job, T0 + 10_000) is None

    def test_recompute_clears_disabled_jobs(self):
        job = make_main_job(enabled=False, state=CronJobState(next_run_at_ms=T0, running_at_ms=T0))
        store = CronStoreFile(jobs=[job])
        recompute_next_runs(store, T0)
        assert job.state.next_run_at_ms is None
        assert job.state.running_at_ms is None

    def test_recompute_clears_stuck_running_marker(self, caplog):
        job = make_main_job(state=CronJobState(running_at_ms=T0))
        store = CronStoreFile(jobs=[job])

        recompute_next_runs(store, T0 + STUCK_RUN_MS)
        assert job.state.running_at_ms == T0

        with caplog.at_level(logging.WARNING):
            recompute_next_runs(store, T0 + STUCK_RUN_MS + 1)
        assert job.state.running_at_ms is None
        assert "stuck" in caplog.text

    def test_next_wake_is_earliest_enabled(self):
        a = make_main_job("a", state=CronJobState(next_run_at_ms=T0 + 500))
        b = make_main_job("b", state=CronJobState(next_run_at_ms=T0 + 100), enabled=False)
        c = make_main_job("c", state=CronJobState(next_run_at_ms=T0 + 300))
        assert next_wake_at_ms(CronStoreFile(jobs=[a, b, c])) == T0 + 300
        assert next_wake_at_ms(CronStoreFile()) is None
        assert next_wake_at_ms(None) is None

    def test_is_job_due(self):
        job = make_main_job(state=CronJobState(next_run_at_ms=T0))
        assert is_job_due(job, T0)
        assert not is_job_due(job, T0 - 1)
        assert is_job_due(job, T0 - 1, forced=True)
        job.enabled = False
        assert not is_job_due(job, T0)

    def test_main_text_resolution(self):
        assert resolve_job_payload_text_for_main(make_main_job()) == "ping"
        assert resolve_job_payload_text_for_main(make_main_job(payload=SystemEventPayload(text="  "))) is None
        assert resolve_job_payload_text_for_main(make_isolated_job()) is None


class TestApplyPatch:
    def store_with(self, *jobs):
        return CronStoreFile(jobs=list(jobs))

    def patch(self, store, job_id, raw, now=T0 + 1_000):
        return apply_job_patch(store, job_id, normalize_cron_job_patch(raw), now)

    def test_simple_fields(self):
        store = self.store_with(make_main_job())
        job = self.patch(store, "job-main", {"name": " Renamed ", "enabled": False, "description": "d"})
        assert (job.name, job.enabled, job.description) == ("Renamed", False, "d")
        assert job.updated_at_ms == T0 + 1_000
        assert store.jobs[0] is job

    def test_unknown_id(self):
        with pytest.raises(CronJobNotFoundError):
            self.patch(self.store_with(), "missing", {"enabled": False})

    def test_invalid_patch_leaves_store_untouched(self):
        original = make_main_job()
        store = self.store_with(original)
        before = original.to_dict()
        with pytest.raises(CronValidationError):
            self.patch(store, "job-main", {"name": "New", "payload": {"kind": "agentTurn", "message": "x"}})
        assert store.jobs[0] is original
        assert original.to_dict() == before

    def test_schedule_patch_validated(self):
        store = self.store_with(make_main_job())
        with pytest.raises(CronValidationError):
            self.patch(store, "job-main", {"schedule": {"kind": "every", "everyMs": 1_000}})
        with pytest.raises(CronValidationError):
            self.patch(store, "job-main", {"schedule": {"kind": "at", "at": format_iso_ms(T0)}})

    def test_invalid_wake_mode(self):
        with pytest.raises(CronValidationError, match="wakeMode"):
            self.patch(self.store_with(make_main_job()), "job-main", {"wakeMode": "soon"})

    def test_isolated_to_main_clears_delivery(self):
        store = self.store_with(make_isolated_job())
        job = self.patch(store, "job-iso", {
            "sessionTarget": "main",
            "payload": {"kind": "systemEvent", "text": "now main"},
        })
        assert job.session_target == "main"
        assert job.delivery is None
        assert job.payload == SystemEventPayload(text="now main")

    def test_payload_kind_change_requires_fields(self):
        store = self.store_with(make_main_job())
        with pytest.raises(CronValidationError, match="message"):
            self.patch(store, "job-main", {"sessionTarget": "isolated", "payload": {"kind": "agentTurn"}})

    def test_payload_fields_merge(self):
        existing = AgentTurnPayload(message="old", model="m1", timeout_seconds=30)
        merged = merge_cron_payload(existing, {"message": "new", "timeoutSeconds": 99_999})
        assert merged.message == "new"
        assert merged.model == "m1"
        assert merged.timeout_seconds == 3600
        assert existing.message == "old"

    def test_delivery_merge(self):
        store = self.store_with(make_isolated_job())
        job = self.patch(store, "job-iso", {"delivery": {"to": None, "bestEffort": True}})
        assert job.delivery == CronDelivery(mode="announce", channel="telegram", to=None, best_effort=True)

    def test_legacy_payload_delivery_patch(self):
        store = self.store_with(make_isolated_job())
        job = self.patch(store, "job-iso", {"payload": {"kind": "agentTurn", "deliver": False}})
        assert job.delivery.mode == "none"

    def test_state_and_agent_patch(self):
        store = self.store_with(make_main_job())
        job = self.patch(store, "job-main", {"state": {"lastStatus": "error"}, "agentId": "Ops"})
        assert job.state.last_status == "error"
        assert job.agent_id == "ops"
