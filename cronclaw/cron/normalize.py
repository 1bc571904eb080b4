"""Input normalization for cron add/update requests

Runs once at command intake, before anything reaches the lifecycle code.
Accepts the current job shape plus the legacy spellings older clients send:

- ``{"data": job}`` / ``{"job": job}`` envelopes
- schedule ``type``/``timestamp``/``interval_ms``/``expression``/``timezone``
  and numeric ``atMs`` (rewritten to the ISO ``at`` field)
- payload ``prompt`` (now ``message``) and ``provider`` (now ``channel``)
- delivery mode ``deliver`` (now ``announce``)
- a top-level ``isolation`` object (dropped)
"""
from __future__ import annotations

import re
from typing import Any

from .errors import InvalidJobDefinitionError
from .legacy_compat import (
    build_delivery_from_legacy_payload,
    has_legacy_delivery_hints,
    strip_legacy_delivery_fields,
)
from .parse import format_iso_ms, parse_absolute_time_ms
from .types import CronJobCreate, normalize_delivery_mode

_AGENT_ID_INVALID = re.compile(r"[^a-z0-9_-]")
AGENT_ID_MAX_LEN = 64

CREATE_REQUIRED_KEYS = ("name", "schedule", "payload", "sessionTarget", "wakeMode", "enabled")


def sanitize_agent_id(raw: str) -> str:
    return _AGENT_ID_INVALID.sub("", raw.strip().lower())[:AGENT_ID_MAX_LEN]


def normalize_optional_agent_id(raw: Any) -> str | None:
    if not isinstance(raw, str):
        return None
    sanitized = sanitize_agent_id(raw)
    return sanitized or None


def normalize_optional_text(raw: Any) -> str | None:
    if not isinstance(raw, str):
        return None
    text = raw.strip()
    return text or None


def normalize_required_name(raw: Any) -> str:
    if not isinstance(raw, str) or not raw.strip():
        raise InvalidJobDefinitionError("cron job name is required")
    return raw.strip()


def _coerce_schedule(schedule: dict[str, Any]) -> dict[str, Any]:
    nxt = dict(schedule)

    if "kind" not in nxt and isinstance(nxt.get("type"), str):
        nxt["kind"] = nxt.pop("type")
    nxt.pop("type", None)
    if "at" not in nxt and "timestamp" in nxt:
        nxt["at"] = nxt.pop("timestamp")
    for legacy in ("interval_ms", "intervalMs"):
        if legacy in nxt:
            value = nxt.pop(legacy)
            nxt.setdefault("everyMs", value)
    if "expr" not in nxt and "expression" in nxt:
        nxt["expr"] = nxt.pop("expression")
    if "tz" not in nxt and "timezone" in nxt:
        nxt["tz"] = nxt.pop("timezone")

    at_ms_raw = nxt.get("atMs")
    at_raw = nxt.get("at")
    at_string = at_raw.strip() if isinstance(at_raw, str) else ""
    if isinstance(at_ms_raw, (int, float)) and not isinstance(at_ms_raw, bool):
        parsed_at_ms = int(at_ms_raw)
    elif isinstance(at_ms_raw, str):
        parsed_at_ms = parse_absolute_time_ms(at_ms_raw)
    elif at_string:
        parsed_at_ms = parse_absolute_time_ms(at_string)
    else:
        parsed_at_ms = None

    if not isinstance(nxt.get("kind"), str):
        if isinstance(at_ms_raw, (int, float, str)) or at_string:
            nxt["kind"] = "at"
        elif isinstance(nxt.get("everyMs"), (int, float)):
            nxt["kind"] = "every"
        elif isinstance(nxt.get("expr"), str):
            nxt["kind"] = "cron"

    if at_string:
        nxt["at"] = format_iso_ms(parsed_at_ms) if parsed_at_ms else at_string
    elif parsed_at_ms is not None:
        nxt["at"] = format_iso_ms(parsed_at_ms)
    nxt.pop("atMs", None)

    return nxt


def _coerce_payload(payload: dict[str, Any]) -> dict[str, Any]:
    nxt = dict(payload)
    if "message" not in nxt and isinstance(nxt.get("prompt"), str):
        nxt["message"] = nxt["prompt"]
    nxt.pop("prompt", None)
    provider = nxt.pop("provider", None)
    if isinstance(provider, str) and provider.strip() and not isinstance(nxt.get("channel"), str):
        nxt["channel"] = provider.strip().lower()
    nxt.pop("allowUnsafeExternalContent", None)
    return nxt


def _coerce_delivery(delivery: dict[str, Any]) -> dict[str, Any]:
    nxt = dict(delivery)
    if isinstance(delivery.get("mode"), str):
        nxt["mode"] = normalize_delivery_mode(delivery["mode"])
    for key, lower in (("channel", True), ("to", False)):
        value = delivery.get(key)
        if isinstance(value, str):
            trimmed = value.strip().lower() if lower else value.strip()
            if trimmed:
                nxt[key] = trimmed
            else:
                nxt.pop(key, None)
    if "target" in nxt and "to" not in nxt and isinstance(nxt["target"], str) and nxt["target"].strip():
        nxt["to"] = nxt["target"].strip()
    nxt.pop("target", None)
    if "best_effort" in nxt:
        nxt.setdefault("bestEffort", nxt.pop("best_effort"))
    return nxt


def _unwrap_job(raw: dict[str, Any]) -> dict[str, Any]:
    if isinstance(raw.get("data"), dict):
        return raw["data"]
    if isinstance(raw.get("job"), dict):
        return raw["job"]
    return raw


def normalize_cron_job_input(raw: Any, *, apply_defaults: bool = False) -> dict[str, Any] | None:
    """Normalize an untyped job or patch dict; returns None if it is not a dict."""
    if not isinstance(raw, dict):
        return None
    base = _unwrap_job(raw)
    nxt: dict[str, Any] = dict(base)

    for snake, camel in (
        ("session_target", "sessionTarget"),
        ("wake_mode", "wakeMode"),
        ("agent_id", "agentId"),
        ("delete_after_run", "deleteAfterRun"),
    ):
        if snake in nxt:
            value = nxt.pop(snake)
            nxt.setdefault(camel, value)

    if "agentId" in nxt:
        agent_id = nxt["agentId"]
        if agent_id is None:
            nxt["agentId"] = None
        elif isinstance(agent_id, str):
            sanitized = sanitize_agent_id(agent_id)
            if sanitized:
                nxt["agentId"] = sanitized
            else:
                del nxt["agentId"]

    if "enabled" in nxt:
        enabled = nxt["enabled"]
        if isinstance(enabled, str):
            lowered = enabled.strip().lower()
            if lowered in ("true", "false"):
                nxt["enabled"] = lowered == "true"

    if isinstance(nxt.get("schedule"), dict):
        nxt["schedule"] = _coerce_schedule(nxt["schedule"])
    if isinstance(nxt.get("payload"), dict):
        nxt["payload"] = _coerce_payload(nxt["payload"])
    if isinstance(nxt.get("delivery"), dict):
        nxt["delivery"] = _coerce_delivery(nxt["delivery"])
    if isinstance(nxt.get("isolation"), dict):
        del nxt["isolation"]

    if apply_defaults:
        _apply_create_defaults(nxt)

    return nxt


def _apply_create_defaults(nxt: dict[str, Any]) -> None:
    if not nxt.get("wakeMode"):
        nxt["wakeMode"] = "next-heartbeat"
    if not isinstance(nxt.get("enabled"), bool):
        nxt["enabled"] = True

    payload = nxt.get("payload") if isinstance(nxt.get("payload"), dict) else None
    payload_kind = payload.get("kind") if payload and isinstance(payload.get("kind"), str) else ""
    if not nxt.get("sessionTarget") and payload is not None:
        if payload_kind == "systemEvent":
            nxt["sessionTarget"] = "main"
        elif payload_kind == "agentTurn":
            nxt["sessionTarget"] = "isolated"

    schedule = nxt.get("schedule")
    if isinstance(schedule, dict) and schedule.get("kind") == "at" and "deleteAfterRun" not in nxt:
        nxt["deleteAfterRun"] = True

    session_target = nxt.get("sessionTarget") if isinstance(nxt.get("sessionTarget"), str) else ""
    is_isolated_agent_turn = session_target == "isolated" or (
        session_target == "" and payload_kind == "agentTurn"
    )
    has_delivery = nxt.get("delivery") is not None
    if not has_delivery and is_isolated_agent_turn and payload_kind == "agentTurn" and payload is not None:
        if has_legacy_delivery_hints(payload):
            nxt["delivery"] = build_delivery_from_legacy_payload(payload)
            nxt["payload"] = strip_legacy_delivery_fields(payload)
        else:
            nxt["delivery"] = {"mode": "announce"}


def normalize_cron_job_create(raw: Any) -> CronJobCreate:
    """
    Normalize an ``add`` request into a ``CronJobCreate``.

    Raises InvalidJobDefinitionError when the input cannot describe a job.
    """
    result = normalize_cron_job_input(raw, apply_defaults=True)
    if result is None:
        raise InvalidJobDefinitionError()
    missing = [key for key in CREATE_REQUIRED_KEYS if result.get(key) is None]
    if missing:
        raise InvalidJobDefinitionError(f"invalid job definition: missing {', '.join(missing)}")
    try:
        return CronJobCreate.from_dict(result)
    except ValueError as e:
        raise InvalidJobDefinitionError(f"invalid job definition: {e}") from e


def normalize_cron_job_patch(raw: Any) -> dict[str, Any]:
    """Normalize an ``update`` patch (no defaults applied)."""
    result = normalize_cron_job_input(raw, apply_defaults=False)
    if result is None:
        raise InvalidJobDefinitionError("invalid job patch")
    return result


__all__ = [
    "normalize_cron_job_input",
    "normalize_cron_job_create",
    "normalize_cron_job_patch",
    "normalize_optional_agent_id",
    "normalize_optional_text",
    "normalize_required_name",
    "sanitize_agent_id",
]
