"""Run a cron job's agent turn in an isolated session"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Literal

from ..types import AgentTurnPayload, CronJob, _prune
from .helpers import pick_summary_from_output

logger = logging.getLogger(__name__)

# chat(message, *, model, thinking) -> reply text
AgentChat = Callable[..., Awaitable[Any]]


@dataclass
class RunCronAgentTurnResult:
    status: Literal["ok", "error", "skipped"]
    summary: str | None = None
    output_text: str | None = None  # full reply, not truncated
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return _prune({
            "status": self.status,
            "summary": self.summary,
            "outputText": self.output_text,
            "error": self.error,
        })

    @classmethod
    def from_value(cls, value: Any) -> "RunCronAgentTurnResult":
        """Accept a result object or a ``{status, summary, outputText, error}`` dict."""
        if isinstance(value, cls):
            return value
        if not isinstance(value, dict):
            return cls(status="error", error=f"unexpected agent result: {type(value).__name__}")
        status = value.get("status")
        if status not in ("ok", "error", "skipped"):
            status = "error" if value.get("error") else "ok"
        return cls(
            status=status,
            summary=value.get("summary") if isinstance(value.get("summary"), str) else None,
            output_text=value.get("outputText") if isinstance(value.get("outputText"), str) else None,
            error=str(value["error"]) if value.get("error") else None,
        )


def _reply_text(reply: Any) -> str | None:
    if reply is None:
        return None
    if isinstance(reply, str):
        return reply
    if isinstance(reply, dict):
        text = reply.get("text")
        return text if isinstance(text, str) else None
    text = getattr(reply, "text", None)
    return text if isinstance(text, str) else None


async def run_cron_isolated_agent_turn(
    job: CronJob,
    chat: AgentChat,
    *,
    message: str | None = None,
) -> RunCronAgentTurnResult:
    """
    Send the job's message to the agent and capture the reply.

    The message is prefixed with ``[cron:<id> <name>]`` so the agent can tell
    scheduled turns apart. ``timeoutSeconds`` bounds the call.
    """
    payload = job.payload
    if not isinstance(payload, AgentTurnPayload):
        return RunCronAgentTurnResult(status="skipped", error='isolated job requires payload.kind="agentTurn"')

    body = f"[cron:{job.id} {job.name}] {message if message is not None else payload.message}".strip()
    try:
        call = chat(body, model=payload.model, thinking=payload.thinking)
        if payload.timeout_seconds:
            reply = await asyncio.wait_for(call, timeout=payload.timeout_seconds)
        else:
            reply = await call
    except asyncio.TimeoutError:
        return RunCronAgentTurnResult(
            status="error",
            error=f"agent turn timed out after {payload.timeout_seconds}s",
        )
    except Exception as e:
        logger.error(f"cron: isolated agent turn failed for job {job.id}: {e}")
        return RunCronAgentTurnResult(status="error", error=str(e))

    output_text = (_reply_text(reply) or "").strip() or None
    return RunCronAgentTurnResult(
        status="ok",
        summary=pick_summary_from_output(output_text),
        output_text=output_text,
    )
