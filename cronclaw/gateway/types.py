"""Gateway-side collaborator wiring for the cron service"""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional

from ..cron.service import CronService

# chat(message, *, model, thinking) -> reply text
AgentChatFn = Callable[..., Awaitable[Any]]
# deliver_message(channel, to, text)
DeliverMessageFn = Callable[..., Any]
BroadcastFn = Callable[[str, dict[str, Any]], Any]


@dataclass
class GatewayDeps:
    """Host services the cron jobs talk to. Everything is optional."""
    session_manager: Any = None
    agent_chat: Optional[AgentChatFn] = None
    deliver_message: Optional[DeliverMessageFn] = None
    request_heartbeat_now: Optional[Callable[..., Any]] = None
    run_heartbeat_once: Optional[Callable[..., Awaitable[dict[str, Any]]]] = None
    last_channel: Optional[Callable[[], Optional[str]]] = None
    broadcast: Optional[BroadcastFn] = None


@dataclass
class GatewayCronState:
    cron: CronService
    store_path: Path
    enabled: bool
