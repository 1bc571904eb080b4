"""Job lifecycle: creation, patching, due detection and next-run bookkeeping

These functions operate on an in-memory ``CronStoreFile``; callers are
responsible for holding the service lock and persisting the result.
"""
from __future__ import annotations

import copy
import logging
import uuid
from typing import Any

from .errors import CronJobNotFoundError, CronValidationError
from .legacy_compat import build_legacy_delivery_patch
from .normalize import normalize_optional_agent_id, normalize_optional_text, normalize_required_name
from .parse import parse_absolute_time_ms
from .schedule import compute_next_run_at_ms
from .types import (
    SESSION_TARGETS,
    WAKE_MODES,
    AgentTurnPayload,
    AtSchedule,
    CronDelivery,
    CronJob,
    CronJobCreate,
    CronJobState,
    CronStoreFile,
    EverySchedule,
    Payload,
    Schedule,
    SystemEventPayload,
    clamp_timeout_seconds,
    normalize_delivery_mode,
    payload_from_dict,
    schedule_from_dict,
)

logger = logging.getLogger(__name__)

STUCK_RUN_MS = 2 * 60 * 60 * 1000
MIN_EVERY_MS = 10_000


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------

def assert_supported_job_spec(job: CronJob) -> None:
    if job.session_target == "main" and not isinstance(job.payload, SystemEventPayload):
        raise CronValidationError('main cron jobs require payload.kind="systemEvent"')
    if job.session_target == "isolated" and not isinstance(job.payload, AgentTurnPayload):
        raise CronValidationError('isolated cron jobs require payload.kind="agentTurn"')


def assert_delivery_support(job: CronJob) -> None:
    if job.delivery is not None and job.session_target != "isolated":
        raise CronValidationError('cron delivery config is only supported for sessionTarget="isolated"')


def assert_every_floor(schedule: Schedule) -> None:
    if isinstance(schedule, EverySchedule) and schedule.every_ms < MIN_EVERY_MS:
        raise CronValidationError(f"everyMs must be at least {MIN_EVERY_MS}ms (10 seconds)")


def assert_future_at(schedule: Schedule, now_ms: int) -> None:
    if not isinstance(schedule, AtSchedule):
        return
    at_ms = parse_absolute_time_ms(schedule.at)
    if at_ms is None:
        raise CronValidationError(f"invalid schedule.at timestamp: {schedule.at!r}")
    if at_ms <= now_ms:
        raise CronValidationError(f"schedule.at is in the past: {schedule.at}")


def find_job_or_throw(store: CronStoreFile, job_id: str) -> CronJob:
    for job in store.jobs:
        if job.id == job_id:
            return job
    raise CronJobNotFoundError(job_id)


# ---------------------------------------------------------------------------
# Next-run bookkeeping
# ---------------------------------------------------------------------------

def compute_job_next_run_at_ms(job: CronJob, now_ms: int) -> int | None:
    """Next due time for a job, taking its enablement and run state into account."""
    if not job.enabled:
        return None
    schedule = job.schedule
    if isinstance(schedule, AtSchedule):
        # one-shot jobs stay exhausted once they succeed
        if job.state.last_status == "ok" and job.state.last_run_at_ms:
            return None
        return compute_next_run_at_ms(schedule, now_ms)
    if isinstance(schedule, EverySchedule):
        reference = now_ms
        if job.state.last_run_at_ms is not None:
            # never hand back the boundary that just ran
            reference = max(now_ms, job.state.last_run_at_ms + 1)
        return compute_next_run_at_ms(schedule, reference, default_anchor_ms=job.created_at_ms or None)
    return compute_next_run_at_ms(schedule, now_ms)


def recompute_next_runs(store: CronStoreFile, now_ms: int, *, stuck_run_ms: int = STUCK_RUN_MS) -> None:
    """Refresh ``nextRunAtMs`` for every job and clear stuck running markers."""
    for job in store.jobs:
        if not job.enabled:
            job.state.next_run_at_ms = None
            job.state.running_at_ms = None
            continue
        running_at = job.state.running_at_ms
        if running_at is not None and now_ms - running_at > stuck_run_ms:
            logger.warning(f"cron: clearing stuck running marker for job {job.id} (runningAtMs={running_at})")
            job.state.running_at_ms = None
        job.state.next_run_at_ms = compute_job_next_run_at_ms(job, now_ms)


def next_wake_at_ms(store: CronStoreFile | None) -> int | None:
    """Earliest ``nextRunAtMs`` across enabled jobs, or None."""
    if store is None:
        return None
    candidates = [
        job.state.next_run_at_ms
        for job in store.jobs
        if job.enabled and job.state.next_run_at_ms is not None
    ]
    return min(candidates) if candidates else None


def is_job_due(job: CronJob, now_ms: int, *, forced: bool = False) -> bool:
    if forced:
        return True
    nxt = job.state.next_run_at_ms
    return job.enabled and nxt is not None and now_ms >= nxt


def resolve_job_payload_text_for_main(job: CronJob) -> str | None:
    if not isinstance(job.payload, SystemEventPayload):
        return None
    text = job.payload.text or ""
    return text if text.strip() else None


# ---------------------------------------------------------------------------
# Create
# ---------------------------------------------------------------------------

def create_job(spec: CronJobCreate, now_ms: int) -> CronJob:
    """
    Build a new job from a normalized ``add`` request.

    Raises CronValidationError without side effects if anything is invalid.
    """
    if isinstance(spec.delete_after_run, bool):
        delete_after_run = spec.delete_after_run
    elif isinstance(spec.schedule, AtSchedule):
        delete_after_run = True
    else:
        delete_after_run = None

    job = CronJob(
        id=str(uuid.uuid4()),
        agent_id=normalize_optional_agent_id(spec.agent_id),
        name=normalize_required_name(spec.name),
        description=normalize_optional_text(spec.description),
        enabled=spec.enabled,
        delete_after_run=delete_after_run,
        created_at_ms=now_ms,
        updated_at_ms=now_ms,
        schedule=copy.deepcopy(spec.schedule),
        session_target=spec.session_target,
        wake_mode=spec.wake_mode,
        payload=copy.deepcopy(spec.payload),
        delivery=copy.deepcopy(spec.delivery),
        state=copy.deepcopy(spec.state) if spec.state is not None else CronJobState(),
    )
    assert_supported_job_spec(job)
    assert_delivery_support(job)
    assert_every_floor(job.schedule)
    assert_future_at(job.schedule, now_ms)

    job.state.next_run_at_ms = compute_job_next_run_at_ms(job, now_ms)
    return job


# ---------------------------------------------------------------------------
# Patch
# ---------------------------------------------------------------------------

def _build_payload_from_patch(patch: dict[str, Any]) -> Payload:
    kind = patch.get("kind")
    if kind == "systemEvent":
        if not isinstance(patch.get("text"), str) or not patch["text"]:
            raise CronValidationError('cron.update payload.kind="systemEvent" requires text')
    elif kind == "agentTurn":
        if not isinstance(patch.get("message"), str) or not patch["message"]:
            raise CronValidationError('cron.update payload.kind="agentTurn" requires message')
    try:
        return payload_from_dict(patch)
    except ValueError as e:
        raise CronValidationError(str(e)) from e


def merge_cron_payload(existing: Payload, patch: dict[str, Any]) -> Payload:
    """Merge a payload patch field by field; a kind change replaces the payload."""
    kind = patch.get("kind", existing.kind)
    if kind != existing.kind:
        return _build_payload_from_patch({**patch, "kind": kind})

    if isinstance(existing, SystemEventPayload):
        text = patch.get("text")
        return SystemEventPayload(text=text if isinstance(text, str) else existing.text)

    nxt = copy.copy(existing)
    for key, attr in (("message", "message"), ("model", "model"), ("thinking", "thinking"),
                      ("channel", "channel"), ("to", "to")):
        if isinstance(patch.get(key), str):
            setattr(nxt, attr, patch[key])
    timeout = clamp_timeout_seconds(patch.get("timeoutSeconds"))
    if timeout is not None:
        nxt.timeout_seconds = timeout
    if isinstance(patch.get("deliver"), bool):
        nxt.deliver = patch["deliver"]
    if isinstance(patch.get("bestEffortDeliver"), bool):
        nxt.best_effort_deliver = patch["bestEffortDeliver"]
    return nxt


def merge_cron_delivery(existing: CronDelivery | None, patch: dict[str, Any]) -> CronDelivery:
    nxt = copy.copy(existing) if existing is not None else CronDelivery()
    if isinstance(patch.get("mode"), str):
        nxt.mode = normalize_delivery_mode(patch["mode"])
    if "channel" in patch:
        channel = patch["channel"].strip() if isinstance(patch["channel"], str) else ""
        nxt.channel = channel or None
    if "to" in patch:
        to = patch["to"].strip() if isinstance(patch["to"], str) else ""
        nxt.to = to or None
    if isinstance(patch.get("bestEffort"), bool):
        nxt.best_effort = patch["bestEffort"]
    return nxt


def apply_job_patch(store: CronStoreFile, job_id: str, patch: dict[str, Any], now_ms: int) -> CronJob:
    """
    Apply a normalized patch to a job.

    The patch is applied to a deep copy and validated as a whole; the stored
    job is only replaced once the draft is valid.
    """
    existing = find_job_or_throw(store, job_id)
    draft = copy.deepcopy(existing)

    if "name" in patch:
        draft.name = normalize_required_name(patch["name"])
    if "description" in patch:
        draft.description = normalize_optional_text(patch["description"])
    if isinstance(patch.get("enabled"), bool):
        draft.enabled = patch["enabled"]
    if isinstance(patch.get("deleteAfterRun"), bool):
        draft.delete_after_run = patch["deleteAfterRun"]
    if isinstance(patch.get("schedule"), dict):
        try:
            draft.schedule = schedule_from_dict(patch["schedule"])
        except ValueError as e:
            raise CronValidationError(str(e)) from e
        assert_every_floor(draft.schedule)
        assert_future_at(draft.schedule, now_ms)
    if patch.get("sessionTarget"):
        if patch["sessionTarget"] not in SESSION_TARGETS:
            raise CronValidationError(f"invalid sessionTarget: {patch['sessionTarget']!r}")
        draft.session_target = patch["sessionTarget"]
    if patch.get("wakeMode"):
        if patch["wakeMode"] not in WAKE_MODES:
            raise CronValidationError(f"invalid wakeMode: {patch['wakeMode']!r}")
        draft.wake_mode = patch["wakeMode"]

    payload_patch = patch.get("payload") if isinstance(patch.get("payload"), dict) else None
    if payload_patch is not None:
        draft.payload = merge_cron_payload(draft.payload, payload_patch)

    delivery_patch = patch.get("delivery") if isinstance(patch.get("delivery"), dict) else None
    if delivery_patch is None and payload_patch is not None and payload_patch.get("kind", draft.payload.kind) == "agentTurn":
        legacy_patch = build_legacy_delivery_patch(payload_patch)
        if (
            legacy_patch is not None
            and draft.session_target == "isolated"
            and isinstance(draft.payload, AgentTurnPayload)
        ):
            draft.delivery = merge_cron_delivery(draft.delivery, legacy_patch)
    if delivery_patch is not None:
        draft.delivery = merge_cron_delivery(draft.delivery, delivery_patch)
    if draft.session_target == "main":
        draft.delivery = None

    if isinstance(patch.get("state"), dict):
        draft.state = CronJobState.from_dict({**draft.state.to_dict(), **patch["state"]})
    if "agentId" in patch:
        draft.agent_id = normalize_optional_agent_id(patch["agentId"])

    assert_supported_job_spec(draft)
    assert_delivery_support(draft)

    draft.updated_at_ms = now_ms
    index = store.jobs.index(existing)
    store.jobs[index] = draft
    return draft


__all__ = [
    "STUCK_RUN_MS",
    "MIN_EVERY_MS",
    "assert_supported_job_spec",
    "assert_delivery_support",
    "find_job_or_throw",
    "compute_job_next_run_at_ms",
    "recompute_next_runs",
    "next_wake_at_ms",
    "is_job_due",
    "resolve_job_payload_text_for_main",
    "create_job",
    "merge_cron_payload",
    "merge_cron_delivery",
    "apply_job_patch",
]
