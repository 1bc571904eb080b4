"""Delivery resolver for isolated job output

Merges the ``delivery`` object with the deprecated payload fields into one
plan. Unknown channel names fall back to ``last`` with a warning.
"""
from __future__ import annotations

import logging
from typing import Any

from .types import AgentTurnPayload, CronDelivery, CronDeliveryPlan, CronJob, normalize_delivery_mode

logger = logging.getLogger(__name__)

KNOWN_CHANNELS = frozenset({
    "web",
    "telegram",
    "discord",
    "slack",
    "whatsapp",
    "signal",
    "imessage",
    "googlechat",
    "last",
})


def normalize_channel(value: Any) -> str | None:
    if not isinstance(value, str):
        return None
    channel = value.strip().lower()
    if not channel:
        return None
    if channel not in KNOWN_CHANNELS:
        logger.warning(f"cron: unknown delivery channel {channel!r}, defaulting to last")
        return "last"
    return channel


def _normalize_to(value: Any) -> str | None:
    if not isinstance(value, str):
        return None
    return value.strip() or None


def resolve_cron_delivery_plan(job: CronJob) -> CronDeliveryPlan:
    """Decide whether and where an isolated job's output is announced."""
    payload = job.payload if isinstance(job.payload, AgentTurnPayload) else None
    delivery = job.delivery if isinstance(job.delivery, CronDelivery) else None

    payload_channel = normalize_channel(payload.channel) if payload else None
    payload_to = _normalize_to(payload.to) if payload else None
    delivery_channel = normalize_channel(delivery.channel) if delivery else None
    delivery_to = _normalize_to(delivery.to) if delivery else None

    channel = delivery_channel or payload_channel or "last"
    to = delivery_to or payload_to

    if delivery is not None:
        mode = normalize_delivery_mode(delivery.mode)
        return CronDeliveryPlan(
            mode=mode,
            channel=channel,
            to=to,
            source="delivery",
            requested=mode == "announce",
        )

    deliver = payload.deliver if payload else None
    if deliver is True:
        requested = True
    elif deliver is False:
        requested = False
    else:
        requested = bool(to)

    return CronDeliveryPlan(
        mode="announce" if requested else "none",
        channel=channel,
        to=to,
        source="payload",
        requested=requested,
    )


__all__ = ["resolve_cron_delivery_plan", "normalize_channel", "KNOWN_CHANNELS"]
