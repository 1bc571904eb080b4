"""Helpers for the deprecated payload-embedded delivery fields

Older clients put ``deliver``/``channel``/``to``/``bestEffortDeliver`` on an
agentTurn payload instead of a top-level ``delivery`` object.
"""
from __future__ import annotations

from typing import Any

LEGACY_DELIVERY_FIELDS = ("deliver", "channel", "to", "bestEffortDeliver")


def has_legacy_delivery_hints(payload: dict[str, Any]) -> bool:
    if isinstance(payload.get("deliver"), bool):
        return True
    if isinstance(payload.get("bestEffortDeliver"), bool):
        return True
    to = payload.get("to")
    return isinstance(to, str) and bool(to.strip())


def build_delivery_from_legacy_payload(payload: dict[str, Any]) -> dict[str, Any]:
    """Build a ``delivery`` dict from legacy payload hints."""
    mode = "none" if payload.get("deliver") is False else "announce"
    channel = payload.get("channel")
    to = payload.get("to")
    result: dict[str, Any] = {"mode": mode}
    if isinstance(channel, str) and channel.strip():
        result["channel"] = channel.strip().lower()
    if isinstance(to, str) and to.strip():
        result["to"] = to.strip()
    if isinstance(payload.get("bestEffortDeliver"), bool):
        result["bestEffort"] = payload["bestEffortDeliver"]
    return result


def build_legacy_delivery_patch(payload: dict[str, Any]) -> dict[str, Any] | None:
    """
    Delivery patch implied by legacy fields on an agentTurn payload patch.

    Returns None when the payload patch carries no delivery hints.
    """
    deliver = payload.get("deliver")
    to_raw = payload.get("to")
    to = to_raw.strip() if isinstance(to_raw, str) else ""
    if not (isinstance(deliver, bool) or isinstance(payload.get("bestEffortDeliver"), bool) or to):
        return None

    patch: dict[str, Any] = {}
    if deliver is False:
        patch["mode"] = "none"
    elif deliver is True or to:
        patch["mode"] = "announce"

    channel = payload.get("channel")
    if isinstance(channel, str):
        patch["channel"] = channel.strip().lower() or None
    if isinstance(to_raw, str):
        patch["to"] = to
    if isinstance(payload.get("bestEffortDeliver"), bool):
        patch["bestEffort"] = payload["bestEffortDeliver"]
    return patch or None


def strip_legacy_delivery_fields(payload: dict[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in payload.items() if k not in LEGACY_DELIVERY_FIELDS}


__all__ = [
    "has_legacy_delivery_hints",
    "build_delivery_from_legacy_payload",
    "build_legacy_delivery_patch",
    "strip_legacy_delivery_fields",
]
