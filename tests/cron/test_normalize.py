"""
Tests for add/update input normalization
"""
import pytest

from cronclaw.cron.errors import InvalidJobDefinitionError
from cronclaw.cron.normalize import (
    normalize_cron_job_create,
    normalize_cron_job_input,
    normalize_cron_job_patch,
    sanitize_agent_id,
)
from cronclaw.cron.types import AgentTurnPayload, AtSchedule, CronDelivery, EverySchedule, SystemEventPayload


def base_job(**overrides):
    job = {
        "name": "Daily digest",
        "schedule": {"kind": "every", "everyMs": 60_000},
        "payload": {"kind": "systemEvent", "text": "digest"},
    }
    job.update(overrides)
    return job


def test_create_defaults_for_main_job():
    create = normalize_cron_job_create(base_job())
    assert create.session_target == "main"
    assert create.wake_mode == "next-heartbeat"
    assert create.enabled is True
    assert create.delete_after_run is None
    assert create.delivery is None
    assert create.schedule == EverySchedule(every_ms=60_000)
    assert create.payload == SystemEventPayload(text="digest")


@pytest.mark.parametrize("key", ["data", "job"])
def test_unwraps_envelopes(key):
    assert normalize_cron_job_create({key: base_job()}).name == "Daily digest"


def test_infers_schedule_kind_and_converts_at_ms():
    create = normalize_cron_job_create(base_job(schedule={"atMs": 1_700_000_000_000}))
    assert create.schedule == AtSchedule(at="2023-11-14T22:13:20.000Z")
    assert create.delete_after_run is True


def test_infers_every_and_cron_kinds():
    assert normalize_cron_job_input({"schedule": {"everyMs": 10_000}})["schedule"]["kind"] == "every"
    assert normalize_cron_job_input({"schedule": {"expr": "0 * * * *"}})["schedule"]["kind"] == "cron"


def test_legacy_schedule_spellings():
    result = normalize_cron_job_input({
        "schedule": {"type": "cron", "expression": "0 9 * * *", "timezone": "Europe/Berlin"},
    })
    assert result["schedule"] == {"kind": "cron", "expr": "0 9 * * *", "tz": "Europe/Berlin"}


def test_string_enabled():
    assert normalize_cron_job_create(base_job(enabled="false")).enabled is False
    assert normalize_cron_job_create(base_job(enabled=" TRUE ")).enabled is True


def test_agent_id_is_sanitized():
    assert normalize_cron_job_create(base_job(agentId="Ops Team!")).agent_id == "opsteam"
    assert sanitize_agent_id("x" * 100) == "x" * 64
    assert "agentId" not in normalize_cron_job_input({"agentId": "!!!"})


def test_isolated_agent_turn_gets_announce_delivery():
    create = normalize_cron_job_create(base_job(payload={"kind": "agentTurn", "message": "check inbox"}))
    assert create.session_target == "isolated"
    assert create.delivery == CronDelivery(mode="announce")


def test_legacy_payload_delivery_hints_become_delivery():
    create = normalize_cron_job_create(base_job(payload={
        "kind": "agentTurn",
        "message": "check inbox",
        "deliver": True,
        "provider": "Telegram",
        "to": "+15555550100",
        "bestEffortDeliver": True,
    }))
    assert create.delivery == CronDelivery(mode="announce", channel="telegram", to="+15555550100", best_effort=True)
    assert create.payload == AgentTurnPayload(message="check inbox")


def test_drops_isolation_and_unsafe_flags():
    result = normalize_cron_job_input(base_job(
        isolation={"postToMainPrefix": "Cron"},
        payload={"kind": "agentTurn", "message": "m", "allowUnsafeExternalContent": True},
    ))
    assert "isolation" not in result
    assert "allowUnsafeExternalContent" not in result["payload"]


def test_delivery_mode_deliver_is_announce():
    result = normalize_cron_job_input({"delivery": {"mode": "deliver", "channel": " Slack ", "to": "  "}})
    assert result["delivery"] == {"mode": "announce", "channel": "slack"}


def test_rejects_non_objects():
    with pytest.raises(InvalidJobDefinitionError):
        normalize_cron_job_create("not a job")
    with pytest.raises(InvalidJobDefinitionError):
        normalize_cron_job_patch(None)


def test_rejects_missing_payload():
    job = base_job()
    del job["payload"]
    with pytest.raises(InvalidJobDefinitionError, match="payload"):
        normalize_cron_job_create(job)


def test_rejects_unknown_schedule_kind():
    with pytest.raises(InvalidJobDefinitionError):
        normalize_cron_job_create(base_job(schedule={"kind": "fortnightly"}))


def test_patch_gets_no_defaults():
    patch = normalize_cron_job_patch({"enabled": "false"})
    assert patch == {"enabled": False}
