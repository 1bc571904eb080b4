"""Cron data model

Schedules, payloads and delivery are tagged unions expressed as dataclasses
with a ``kind`` discriminator. On disk and on the wire every type uses
camelCase keys; ``to_dict`` omits unset (``None``) fields and ``from_dict``
raises ``ValueError`` on malformed input.
"""
from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, Literal, Optional, Union

from .parse import format_iso_ms, parse_absolute_time_ms

SessionTarget = Literal["main", "isolated"]
WakeMode = Literal["next-heartbeat", "now"]
CronRunStatus = Literal["ok", "error", "skipped"]
CronDeliveryMode = Literal["none", "announce"]

SESSION_TARGETS = ("main", "isolated")
WAKE_MODES = ("next-heartbeat", "now")
RUN_STATUSES = ("ok", "error", "skipped")
DELIVERY_MODES = ("none", "announce")

MIN_TIMEOUT_SECONDS = 1
MAX_TIMEOUT_SECONDS = 3600


def _prune(data: dict[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in data.items() if v is not None}


def _opt_int(value: Any) -> int | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if isinstance(value, float) and not math.isfinite(value):
        return None
    return int(value)


def _opt_str(value: Any) -> str | None:
    return value if isinstance(value, str) else None


def _opt_bool(value: Any) -> bool | None:
    return value if isinstance(value, bool) else None


def clamp_timeout_seconds(value: Any) -> int | None:
    """Clamp an agent-turn timeout into [1, 3600]; non-numbers become None."""
    seconds = _opt_int(value)
    if seconds is None:
        return None
    return max(MIN_TIMEOUT_SECONDS, min(seconds, MAX_TIMEOUT_SECONDS))


# ---------------------------------------------------------------------------
# Schedules
# ---------------------------------------------------------------------------

@dataclass
class AtSchedule:
    """One-shot schedule at an absolute ISO-8601 timestamp."""
    at: str
    kind: Literal["at"] = "at"

    def to_dict(self) -> dict[str, Any]:
        return {"kind": "at", "at": self.at}


@dataclass
class EverySchedule:
    """Fixed interval, aligned to ``anchor_ms`` (job creation time when unset)."""
    every_ms: int
    anchor_ms: int | None = None
    kind: Literal["every"] = "every"

    def to_dict(self) -> dict[str, Any]:
        return _prune({"kind": "every", "everyMs": self.every_ms, "anchorMs": self.anchor_ms})


@dataclass
class CronSchedule:
    """5-field cron expression with optional IANA timezone."""
    expr: str
    tz: str | None = None
    kind: Literal["cron"] = "cron"

    def to_dict(self) -> dict[str, Any]:
        return _prune({"kind": "cron", "expr": self.expr, "tz": self.tz})


Schedule = Union[AtSchedule, EverySchedule, CronSchedule]


def schedule_from_dict(data: dict[str, Any]) -> Schedule:
    kind = data.get("kind")
    if kind == "at":
        at = data.get("at")
        if isinstance(at, str) and at.strip():
            return AtSchedule(at=at.strip())
        # Legacy numeric field; always rewritten into the canonical ``at``.
        legacy = data.get("atMs")
        at_ms = _opt_int(legacy)
        if at_ms is None and isinstance(legacy, str):
            at_ms = parse_absolute_time_ms(legacy)
        if at_ms is None:
            raise ValueError('schedule.kind="at" requires an "at" timestamp')
        return AtSchedule(at=format_iso_ms(at_ms))
    if kind == "every":
        every_ms = _opt_int(data.get("everyMs"))
        if every_ms is None:
            raise ValueError('schedule.kind="every" requires numeric everyMs')
        return EverySchedule(every_ms=every_ms, anchor_ms=_opt_int(data.get("anchorMs")))
    if kind == "cron":
        expr = data.get("expr")
        if not isinstance(expr, str):
            raise ValueError('schedule.kind="cron" requires expr')
        tz = _opt_str(data.get("tz"))
        return CronSchedule(expr=expr, tz=tz.strip() if tz and tz.strip() else None)
    raise ValueError(f"unknown schedule kind: {kind!r}")


# ---------------------------------------------------------------------------
# Payloads
# ---------------------------------------------------------------------------

@dataclass
class SystemEventPayload:
    """Text injected into the main session. Only valid with sessionTarget=main."""
    text: str
    kind: Literal["systemEvent"] = "systemEvent"

    def to_dict(self) -> dict[str, Any]:
        return {"kind": "systemEvent", "text": self.text}


@dataclass
class AgentTurnPayload:
    """Agent turn in an isolated session. Only valid with sessionTarget=isolated.

    ``deliver``/``channel``/``to``/``best_effort_deliver`` are the deprecated
    payload-embedded delivery fields, kept for stores written by older clients.
    """
    message: str
    model: str | None = None
    thinking: str | None = None
    timeout_seconds: int | None = None
    deliver: bool | None = None
    channel: str | None = None
    to: str | None = None
    best_effort_deliver: bool | None = None
    kind: Literal["agentTurn"] = "agentTurn"

    def to_dict(self) -> dict[str, Any]:
        return _prune({
            "kind": "agentTurn",
            "message": self.message,
            "model": self.model,
            "thinking": self.thinking,
            "timeoutSeconds": self.timeout_seconds,
            "deliver": self.deliver,
            "channel": self.channel,
            "to": self.to,
            "bestEffortDeliver": self.best_effort_deliver,
        })


Payload = Union[SystemEventPayload, AgentTurnPayload]


def payload_from_dict(data: dict[str, Any]) -> Payload:
    kind = data.get("kind")
    if kind == "systemEvent":
        text = data.get("text")
        if not isinstance(text, str):
            raise ValueError('payload.kind="systemEvent" requires text')
        return SystemEventPayload(text=text)
    if kind == "agentTurn":
        message = data.get("message")
        if not isinstance(message, str):
            raise ValueError('payload.kind="agentTurn" requires message')
        return AgentTurnPayload(
            message=message,
            model=_opt_str(data.get("model")),
            thinking=_opt_str(data.get("thinking")),
            timeout_seconds=clamp_timeout_seconds(data.get("timeoutSeconds")),
            deliver=_opt_bool(data.get("deliver")),
            channel=_opt_str(data.get("channel")),
            to=_opt_str(data.get("to")),
            best_effort_deliver=_opt_bool(data.get("bestEffortDeliver")),
        )
    raise ValueError(f"unknown payload kind: {kind!r}")


# ---------------------------------------------------------------------------
# Delivery
# ---------------------------------------------------------------------------

def normalize_delivery_mode(value: Any) -> CronDeliveryMode:
    """``deliver`` is the legacy spelling of ``announce``; anything else is ``none``."""
    if not isinstance(value, str):
        return "none"
    mode = value.strip().lower()
    if mode == "deliver":
        return "announce"
    return mode if mode in DELIVERY_MODES else "none"  # type: ignore[return-value]


@dataclass
class CronDelivery:
    mode: CronDeliveryMode = "none"
    channel: str | None = None
    to: str | None = None
    best_effort: bool | None = None

    def to_dict(self) -> dict[str, Any]:
        return _prune({
            "mode": self.mode,
            "channel": self.channel,
            "to": self.to,
            "bestEffort": self.best_effort,
        })

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CronDelivery":
        return cls(
            mode=normalize_delivery_mode(data.get("mode")),
            channel=_opt_str(data.get("channel")),
            to=_opt_str(data.get("to")),
            best_effort=_opt_bool(data.get("bestEffort")),
        )


@dataclass(frozen=True)
class CronDeliveryPlan:
    mode: CronDeliveryMode
    channel: str
    to: str | None
    source: Literal["delivery", "payload"]
    requested: bool

    def to_dict(self) -> dict[str, Any]:
        return _prune({
            "mode": self.mode,
            "channel": self.channel,
            "to": self.to,
            "source": self.source,
            "requested": self.requested,
        })


# ---------------------------------------------------------------------------
# Job
# ---------------------------------------------------------------------------

@dataclass
class CronJobState:
    next_run_at_ms: int | None = None
    running_at_ms: int | None = None
    last_run_at_ms: int | None = None
    last_status: CronRunStatus | None = None
    last_error: str | None = None
    last_duration_ms: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return _prune({
            "nextRunAtMs": self.next_run_at_ms,
            "runningAtMs": self.running_at_ms,
            "lastRunAtMs": self.last_run_at_ms,
            "lastStatus": self.last_status,
            "lastError": self.last_error,
            "lastDurationMs": self.last_duration_ms,
        })

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "CronJobState":
        data = data if isinstance(data, dict) else {}
        status = data.get("lastStatus")
        return cls(
            next_run_at_ms=_opt_int(data.get("nextRunAtMs")),
            running_at_ms=_opt_int(data.get("runningAtMs")),
            last_run_at_ms=_opt_int(data.get("lastRunAtMs")),
            last_status=status if status in RUN_STATUSES else None,
            last_error=_opt_str(data.get("lastError")),
            last_duration_ms=_opt_int(data.get("lastDurationMs")),
        )


def infer_session_target(payload: Payload) -> SessionTarget:
    return "main" if isinstance(payload, SystemEventPayload) else "isolated"


@dataclass
class CronJob:
    id: str
    name: str
    schedule: Schedule
    session_target: SessionTarget
    wake_mode: WakeMode
    payload: Payload
    description: str | None = None
    enabled: bool = True
    delete_after_run: bool | None = None
    created_at_ms: int = 0
    updated_at_ms: int = 0
    delivery: CronDelivery | None = None
    agent_id: str | None = None
    state: CronJobState = field(default_factory=CronJobState)

    def to_dict(self) -> dict[str, Any]:
        data = _prune({
            "id": self.id,
            "agentId": self.agent_id,
            "name": self.name,
            "description": self.description,
            "enabled": self.enabled,
            "deleteAfterRun": self.delete_after_run,
            "createdAtMs": self.created_at_ms,
            "updatedAtMs": self.updated_at_ms,
            "schedule": self.schedule.to_dict(),
            "sessionTarget": self.session_target,
            "wakeMode": self.wake_mode,
            "payload": self.payload.to_dict(),
        })
        if self.delivery is not None:
            data["delivery"] = self.delivery.to_dict()
        data["state"] = self.state.to_dict()
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CronJob":
        job_id = data.get("id")
        name = data.get("name")
        if not isinstance(job_id, str) or not job_id:
            raise ValueError("job requires id")
        if not isinstance(name, str):
            raise ValueError("job requires name")
        schedule = data.get("schedule")
        payload_raw = data.get("payload")
        if not isinstance(schedule, dict) or not isinstance(payload_raw, dict):
            raise ValueError("job requires schedule and payload objects")

        payload = payload_from_dict(payload_raw)
        session_target = data.get("sessionTarget")
        if session_target not in SESSION_TARGETS:
            session_target = infer_session_target(payload)
        wake_mode = data.get("wakeMode")
        if wake_mode not in WAKE_MODES:
            wake_mode = "next-heartbeat"
        delivery = data.get("delivery")
        enabled = data.get("enabled")

        return cls(
            id=job_id,
            name=name,
            schedule=schedule_from_dict(schedule),
            session_target=session_target,
            wake_mode=wake_mode,
            payload=payload,
            description=_opt_str(data.get("description")),
            enabled=enabled if isinstance(enabled, bool) else True,
            delete_after_run=_opt_bool(data.get("deleteAfterRun")),
            created_at_ms=_opt_int(data.get("createdAtMs")) or 0,
            updated_at_ms=_opt_int(data.get("updatedAtMs")) or 0,
            delivery=CronDelivery.from_dict(delivery) if isinstance(delivery, dict) else None,
            agent_id=_opt_str(data.get("agentId")),
            state=CronJobState.from_dict(data.get("state")),
        )


@dataclass
class CronJobCreate:
    """Validated shape of an ``add`` request after input normalization."""
    name: str
    schedule: Schedule
    session_target: SessionTarget
    wake_mode: WakeMode
    payload: Payload
    description: str | None = None
    enabled: bool = True
    delete_after_run: bool | None = None
    delivery: CronDelivery | None = None
    agent_id: str | None = None
    state: CronJobState | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CronJobCreate":
        name = data.get("name")
        if not isinstance(name, str):
            raise ValueError("job requires name")
        schedule = data.get("schedule")
        payload = data.get("payload")
        if not isinstance(schedule, dict) or not isinstance(payload, dict):
            raise ValueError("job requires schedule and payload objects")
        session_target = data.get("sessionTarget")
        if session_target not in SESSION_TARGETS:
            raise ValueError(f"invalid sessionTarget: {session_target!r}")
        wake_mode = data.get("wakeMode")
        if wake_mode not in WAKE_MODES:
            raise ValueError(f"invalid wakeMode: {wake_mode!r}")
        delivery = data.get("delivery")
        enabled = data.get("enabled")
        agent_id = data.get("agentId")
        return cls(
            name=name,
            schedule=schedule_from_dict(schedule),
            session_target=session_target,
            wake_mode=wake_mode,
            payload=payload_from_dict(payload),
            description=_opt_str(data.get("description")),
            enabled=enabled if isinstance(enabled, bool) else True,
            delete_after_run=_opt_bool(data.get("deleteAfterRun")),
            delivery=CronDelivery.from_dict(delivery) if isinstance(delivery, dict) else None,
            agent_id=agent_id if isinstance(agent_id, str) else None,
            state=CronJobState.from_dict(data["state"]) if isinstance(data.get("state"), dict) else None,
        )


# ---------------------------------------------------------------------------
# Store / run log / projection
# ---------------------------------------------------------------------------

@dataclass
class CronStoreFile:
    version: int = 1
    jobs: list[CronJob] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {"version": self.version, "jobs": [job.to_dict() for job in self.jobs]}


@dataclass
class CronRunLogEntry:
    ts: int
    job_id: str
    action: Literal["finished"] = "finished"
    status: Optional[CronRunStatus] = None
    error: str | None = None
    summary: str | None = None
    run_at_ms: int | None = None
    duration_ms: int | None = None
    next_run_at_ms: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return _prune({
            "ts": self.ts,
            "jobId": self.job_id,
            "action": self.action,
            "status": self.status,
            "error": self.error,
            "summary": self.summary,
            "runAtMs": self.run_at_ms,
            "durationMs": self.duration_ms,
            "nextRunAtMs": self.next_run_at_ms,
        })

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CronRunLogEntry":
        return cls(
            ts=int(data["ts"]),
            job_id=str(data["jobId"]),
            status=data.get("status"),
            error=_opt_str(data.get("error")),
            summary=_opt_str(data.get("summary")),
            run_at_ms=_opt_int(data.get("runAtMs")),
            duration_ms=_opt_int(data.get("durationMs")),
            next_run_at_ms=_opt_int(data.get("nextRunAtMs")),
        )


@dataclass(frozen=True)
class ProjectedRun:
    job_id: str
    job_name: str
    run_at_ms: int

    def to_dict(self) -> dict[str, Any]:
        return {"jobId": self.job_id, "jobName": self.job_name, "runAtMs": self.run_at_ms}


__all__ = [
    "SessionTarget",
    "WakeMode",
    "CronRunStatus",
    "CronDeliveryMode",
    "AtSchedule",
    "EverySchedule",
    "CronSchedule",
    "Schedule",
    "schedule_from_dict",
    "SystemEventPayload",
    "AgentTurnPayload",
    "Payload",
    "payload_from_dict",
    "CronDelivery",
    "CronDeliveryPlan",
    "normalize_delivery_mode",
    "clamp_timeout_seconds",
    "CronJobState",
    "CronJob",
    "CronJobCreate",
    "CronStoreFile",
    "CronRunLogEntry",
    "ProjectedRun",
    "infer_session_target",
]
