"""Cron service bootstrap for the gateway

Key responsibilities:
1. Resolve store path and limits from config
2. Create CronService with its callbacks wired to GatewayDeps:
   - enqueue_system_event (main session)
   - request_heartbeat_now / run_heartbeat_once
   - run_isolated_agent_job (agent chat)
   - deliver_announcement (outbound channel message)
   - on_event (broadcast + logging)
3. Return GatewayCronState (start is deferred)
"""
from __future__ import annotations

import inspect
import logging
import os
from typing import Any

from ..config.paths import resolve_cron_store_path
from ..config.schema import CronclawConfig, CronConfig
from ..cron.isolated_agent.delivery_target import DeliveryTarget
from ..cron.isolated_agent.run import RunCronAgentTurnResult, run_cron_isolated_agent_turn
from ..cron.service import CronEvent, CronService
from ..cron.types import CronJob
from .types import GatewayCronState, GatewayDeps

logger = logging.getLogger(__name__)

SKIP_CRON_ENV = "CRONCLAW_SKIP_CRON"


def is_cron_enabled(cron_config: CronConfig) -> bool:
    if os.getenv(SKIP_CRON_ENV, "").strip() == "1":
        return False
    return cron_config.enabled


def _resolve_cron_config(config: CronclawConfig | dict[str, Any] | None) -> CronConfig:
    if config is None:
        return CronConfig()
    if isinstance(config, CronclawConfig):
        return config.cron
    return CronclawConfig.model_validate(config).cron


async def build_gateway_cron_service(
    config: CronclawConfig | dict[str, Any] | None,
    deps: GatewayDeps,
) -> GatewayCronState:
    """
    Build the cron service for the gateway.

    The service is returned unstarted; call ``state.cron.start()`` once the
    channels it delivers to are ready.
    """
    cron_config = _resolve_cron_config(config)
    store_path = resolve_cron_store_path(cron_config.store)
    cron_enabled = is_cron_enabled(cron_config)
    logger.info(f"Cron store path: {store_path}")

    async def enqueue_system_event(text: str, agent_id: str | None = None) -> None:
        session_key = f"{agent_id or 'main'}-main"
        if deps.session_manager is None:
            logger.warning("Session manager not available for system event")
            return
        session = deps.session_manager.get_session(session_key)
        if session is None:
            logger.warning(f"Session '{session_key}' not found for system event")
            return
        session.add_system_message(text)

    async def run_isolated_agent(job: CronJob) -> RunCronAgentTurnResult:
        if deps.agent_chat is None:
            return RunCronAgentTurnResult(status="error", error="agent not available")
        return await run_cron_isolated_agent_turn(job, deps.agent_chat)

    async def deliver_announcement(*, target: DeliveryTarget, text: str, job: CronJob) -> None:
        if deps.deliver_message is None:
            raise RuntimeError("no outbound channel configured")
        logger.info(f"Delivering cron output for {job.id} to {target.channel} ({target.mode})")
        result = deps.deliver_message(target.channel, target.to, text)
        if inspect.isawaitable(result):
            await result

    def on_event(event: CronEvent) -> None:
        action = event.get("action")
        job_id = event.get("jobId")
        if action == "finished":
            status = event.get("status")
            logger.info(f"Cron job finished: {job_id}, status={status}, duration={event.get('durationMs', 0)}ms")
            if status == "error":
                logger.error(f"Cron job error: {job_id}: {event.get('error')}")
        elif action == "started":
            logger.info(f"Cron job started: {job_id}")
        if deps.broadcast is not None:
            deps.broadcast("cron", dict(event))

    service = CronService(
        store_path=store_path,
        cron_enabled=cron_enabled,
        enqueue_system_event=enqueue_system_event,
        request_heartbeat_now=deps.request_heartbeat_now,
        run_heartbeat_once=deps.run_heartbeat_once,
        run_isolated_agent_job=run_isolated_agent,
        deliver_announcement=deliver_announcement if deps.deliver_message is not None else None,
        resolve_last_channel=deps.last_channel,
        on_event=on_event,
        run_log_max_bytes=cron_config.runLog.maxBytes,
        run_log_keep_lines=cron_config.runLog.keepLines,
        stuck_run_ms=cron_config.stuckRunMs,
    )
    if not cron_enabled:
        logger.info("Cron service is disabled")
    return GatewayCronState(cron=service, store_path=store_path, enabled=cron_enabled)


__all__ = ["build_gateway_cron_service", "is_cron_enabled", "SKIP_CRON_ENV"]
