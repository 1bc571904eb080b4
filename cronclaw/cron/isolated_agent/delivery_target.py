"""Resolve a delivery plan's channel/target into a concrete destination"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

DEFAULT_LAST_CHANNEL = "web"


@dataclass(frozen=True)
class DeliveryTarget:
    channel: str
    to: str | None
    mode: Literal["explicit", "implicit"]


def resolve_delivery_target(
    channel: str | None,
    to: str | None,
    *,
    last_channel: str | None = None,
) -> DeliveryTarget:
    """
    ``last`` (or no channel) resolves to the channel that last talked to the
    host, falling back to ``web``. A ``to`` makes the target explicit.
    """
    requested = channel.strip().lower() if isinstance(channel, str) and channel.strip() else "last"
    if requested == "last":
        requested = (last_channel or DEFAULT_LAST_CHANNEL).strip().lower() or DEFAULT_LAST_CHANNEL
    explicit_to = to.strip() if isinstance(to, str) and to.strip() else None
    return DeliveryTarget(
        channel=requested,
        to=explicit_to,
        mode="explicit" if explicit_to else "implicit",
    )
