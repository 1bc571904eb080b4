"""Single wake-up timer for the cron service

The timer sleeps until the earliest ``nextRunAtMs`` across enabled jobs that
are not currently running, then calls back into the service. The service
decides what is due under its own lock and re-arms afterwards.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Iterable

from .types import CronJob

logger = logging.getLogger(__name__)

# asyncio handles larger delays, but keep wake-ups bounded (~24 days)
MAX_TIMEOUT_MS = 2**31 - 1


class CronTimer:
    """
    Timer manager for cron jobs.

    Maintains a single asyncio task; arming again cancels the previous one.
    """

    def __init__(
        self,
        on_timer_callback: Callable[[], Awaitable[None]],
        *,
        stuck_run_ms: int | None = None,
    ):
        self.on_timer = on_timer_callback
        self.stuck_run_ms = stuck_run_ms
        self.timer_task: asyncio.Task[None] | None = None
        self.next_fire_ms: int | None = None

    def arm_timer(self, jobs: Iterable[CronJob], now_ms: int) -> int | None:
        """Arm (or re-arm) for the next due job. Returns the wake time, if any."""
        self._cancel()

        next_run_ms: int | None = None
        next_job_name: str | None = None
        for job in jobs:
            if not job.enabled:
                continue
            running_at = job.state.running_at_ms
            if running_at is not None:
                if self.stuck_run_ms is None:
                    continue
                # wake once the marker counts as stuck so the tick can clear it
                nxt = running_at + self.stuck_run_ms + 1
            else:
                nxt = job.state.next_run_at_ms
            if nxt is not None and (next_run_ms is None or nxt < next_run_ms):
                next_run_ms = nxt
                next_job_name = job.name or job.id

        if next_run_ms is None:
            self.next_fire_ms = None
            return None

        delay_ms = min(max(0, next_run_ms - now_ms), MAX_TIMEOUT_MS)
        self.next_fire_ms = next_run_ms
        logger.debug(f"cron: timer armed for {next_job_name!r} in {delay_ms / 1000:.1f}s")
        self.timer_task = asyncio.create_task(self._timer_wait(delay_ms / 1000))
        return next_run_ms

    def stop(self) -> None:
        self._cancel()
        self.next_fire_ms = None

    @property
    def armed(self) -> bool:
        return self.timer_task is not None and not self.timer_task.done()

    def _cancel(self) -> None:
        task = self.timer_task
        self.timer_task = None
        if task is not None and not task.done():
            task.cancel()

    async def _timer_wait(self, delay_seconds: float) -> None:
        try:
            await asyncio.sleep(delay_seconds)
            # detach so re-arming during the tick doesn't cancel it
            if self.timer_task is asyncio.current_task():
                self.timer_task = None
            await self.on_timer()
        except asyncio.CancelledError:
            logger.debug("cron: timer cancelled")
        except Exception as e:
            logger.error(f"cron: error in timer: {e}", exc_info=True)

    def get_status(self, now_ms: int) -> dict[str, Any]:
        status: dict[str, Any] = {"armed": self.armed, "nextFireMs": self.next_fire_ms}
        if self.next_fire_ms is not None:
            status["timeUntilMs"] = max(0, self.next_fire_ms - now_ms)
        return status


__all__ = ["CronTimer", "MAX_TIMEOUT_MS"]
