"""
Cron scheduling service

All store mutations are serialized through one asyncio.Lock. Job execution
happens outside the lock: a tick marks due jobs as running and persists,
runs them, then takes the lock again to record outcomes.
"""

from __future__ import annotations

import asyncio
import copy
import inspect
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, Literal, Optional

from .delivery import resolve_cron_delivery_plan
from .errors import CronValidationError
from .isolated_agent.delivery_target import DeliveryTarget, resolve_delivery_target
from .isolated_agent.run import RunCronAgentTurnResult
from .jobs import (
    STUCK_RUN_MS,
    apply_job_patch,
    compute_job_next_run_at_ms,
    create_job,
    find_job_or_throw,
    is_job_due,
    next_wake_at_ms,
    recompute_next_runs,
    resolve_job_payload_text_for_main,
)
from .normalize import normalize_cron_job_create, normalize_cron_job_patch
from .run_log import (
    DEFAULT_KEEP_LINES,
    DEFAULT_MAX_BYTES,
    append_cron_run_log,
    read_cron_run_log_entries,
    resolve_cron_run_log_path,
)
from .schedule import now_ms as _wall_clock_ms
from .store import CronStore
from .timer import CronTimer
from .types import (
    AgentTurnPayload,
    AtSchedule,
    CronJob,
    CronJobCreate,
    CronRunLogEntry,
    CronRunStatus,
    CronStoreFile,
)

logger = logging.getLogger(__name__)

CronEventAction = Literal["added", "updated", "removed", "started", "finished"]

HEARTBEAT_MAX_WAIT_MS = 2 * 60_000
HEARTBEAT_RETRY_SECONDS = 0.25


class CronEvent(dict):
    """Lifecycle event passed to ``on_event`` (camelCase keys)."""


def _make_event(**kwargs: Any) -> CronEvent:
    return CronEvent({k: v for k, v in kwargs.items() if v is not None})


async def _maybe_await(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


@dataclass
class _RunOutcome:
    job_id: str
    status: CronRunStatus
    started_at_ms: int
    ended_at_ms: int
    error: str | None = None
    summary: str | None = None


class CronService:
    """
    Cron scheduling service.

    Features:
    - at / every / cron schedules, anchor-aligned intervals
    - main-session system events and isolated agent turns
    - announce delivery for isolated job output
    - mtime-based reload of the store file
    - per-job run logs
    - stuck-run recovery
    - status / list / add / update / remove / run / runs / wake
    """

    def __init__(
        self,
        store_path: Path | str,
        *,
        cron_enabled: bool = True,
        enqueue_system_event: Optional[Callable[..., Any]] = None,
        request_heartbeat_now: Optional[Callable[..., Any]] = None,
        run_heartbeat_once: Optional[Callable[..., Awaitable[Dict[str, Any]]]] = None,
        run_isolated_agent_job: Optional[Callable[[CronJob], Awaitable[Any]]] = None,
        deliver_announcement: Optional[Callable[..., Any]] = None,
        resolve_last_channel: Optional[Callable[[], Optional[str]]] = None,
        on_event: Optional[Callable[[CronEvent], None]] = None,
        now_ms: Optional[Callable[[], int]] = None,
        run_log_max_bytes: int = DEFAULT_MAX_BYTES,
        run_log_keep_lines: int = DEFAULT_KEEP_LINES,
        stuck_run_ms: int = STUCK_RUN_MS,
    ):
        self.store_path = Path(store_path)
        self._store = CronStore(self.store_path)
        self._state: Optional[CronStoreFile] = None
        self._store_file_mtime_ms: float | None = None
        self._cron_enabled = cron_enabled

        # collaborators
        self.enqueue_system_event = enqueue_system_event
        self.request_heartbeat_now = request_heartbeat_now
        self.run_heartbeat_once = run_heartbeat_once
        self.run_isolated_agent_job = run_isolated_agent_job
        self.deliver_announcement = deliver_announcement
        self.resolve_last_channel = resolve_last_channel
        self.on_event = on_event

        self._now = now_ms or _wall_clock_ms
        self.run_log_max_bytes = run_log_max_bytes
        self.run_log_keep_lines = run_log_keep_lines
        self.stuck_run_ms = stuck_run_ms

        self._lock = asyncio.Lock()
        self._timer: Optional[CronTimer] = None
        self._timer_running = False
        self._warned_disabled = False

    # ------------------------------------------------------------------
    # Store helpers
    # ------------------------------------------------------------------
    @property
    def enabled(self) -> bool:
        return self._cron_enabled

    @property
    def running(self) -> bool:
        return self._timer is not None

    def _ensure_loaded(self, *, force_reload: bool = False) -> CronStoreFile:
        """Load the store once; with ``force_reload``, reload if the file changed on disk."""
        if self._state is not None and not force_reload:
            return self._state
        mtime = self._store.get_file_mtime_ms()
        if self._state is not None and mtime == self._store_file_mtime_ms:
            return self._state
        self._state = self._store.load()
        self._store_file_mtime_ms = mtime
        return self._state

    def _persist(self) -> None:
        if self._state is None:
            return
        self._store.save(self._state)
        self._store_file_mtime_ms = self._store.get_file_mtime_ms()

    def _emit(self, **kwargs: Any) -> None:
        if not self.on_event:
            return
        try:
            self.on_event(_make_event(**kwargs))
        except Exception as e:
            logger.warning(f"cron: event listener failed: {e}")

    def _warn_if_disabled(self, action: str) -> None:
        if self._cron_enabled or self._warned_disabled:
            return
        self._warned_disabled = True
        logger.warning(f"cron: scheduler disabled; jobs will not run automatically (action={action})")

    def _arm_timer(self) -> None:
        if self._timer is None or self._state is None:
            return
        self._timer.arm_timer(self._state.jobs, self._now())

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    async def start(self) -> None:
        async with self._lock:
            if not self._cron_enabled:
                logger.info("cron: disabled")
                return
            state = self._ensure_loaded(force_reload=True)
            recompute_next_runs(state, self._now(), stuck_run_ms=self.stuck_run_ms)
            self._persist()
            self._timer = CronTimer(on_timer_callback=self._on_timer, stuck_run_ms=self.stuck_run_ms)
            self._arm_timer()
            logger.info(f"cron: started (jobs={len(state.jobs)}, nextWakeAtMs={next_wake_at_ms(state)})")

    def stop(self) -> None:
        if self._timer:
            self._timer.stop()
            self._timer = None
        logger.info("cron: stopped")

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------
    async def status(self) -> Dict[str, Any]:
        async with self._lock:
            state = self._ensure_loaded(force_reload=True)
            return {
                "enabled": self._cron_enabled,
                "storePath": str(self.store_path),
                "jobs": len(state.jobs),
                "nextWakeAtMs": next_wake_at_ms(state) if self._cron_enabled else None,
            }

    async def list_jobs(self, include_disabled: bool = False) -> list[CronJob]:
        """Jobs sorted by next run (jobs without one last). Returns copies."""
        async with self._lock:
            state = self._ensure_loaded(force_reload=True)
            jobs = [j for j in state.jobs if include_disabled or j.enabled]
            jobs.sort(key=lambda j: (j.state.next_run_at_ms is None, j.state.next_run_at_ms or 0))
            return copy.deepcopy(jobs)

    async def get_job(self, job_id: str) -> Optional[CronJob]:
        async with self._lock:
            state = self._ensure_loaded(force_reload=True)
            for job in state.jobs:
                if job.id == job_id:
                    return copy.deepcopy(job)
            return None

    async def add(self, spec: CronJobCreate | Dict[str, Any]) -> CronJob:
        """Create a job. Raw dicts go through input normalization first."""
        create = spec if isinstance(spec, CronJobCreate) else normalize_cron_job_create(spec)
        async with self._lock:
            self._warn_if_disabled("add")
            state = self._ensure_loaded(force_reload=True)
            job = create_job(create, self._now())
            state.jobs.append(job)
            self._persist()
            self._arm_timer()
            self._emit(jobId=job.id, action="added", nextRunAtMs=job.state.next_run_at_ms)
            logger.info(f"cron: added job {job.name!r} (id={job.id})")
            return copy.deepcopy(job)

    async def update(self, job_id: str, patch: Dict[str, Any]) -> CronJob:
        normalized = normalize_cron_job_patch(patch)
        async with self._lock:
            self._warn_if_disabled("update")
            state = self._ensure_loaded(force_reload=True)
            now = self._now()
            job = apply_job_patch(state, job_id, normalized, now)
            if not job.enabled:
                job.state.running_at_ms = None
            job.state.next_run_at_ms = compute_job_next_run_at_ms(job, now)
            self._persist()
            self._arm_timer()
            self._emit(jobId=job_id, action="updated", nextRunAtMs=job.state.next_run_at_ms)
            logger.info(f"cron: updated job {job_id}")
            return copy.deepcopy(job)

    async def remove(self, job_id: str) -> Dict[str, Any]:
        async with self._lock:
            self._warn_if_disabled("remove")
            state = self._ensure_loaded(force_reload=True)
            job = find_job_or_throw(state, job_id)
            state.jobs.remove(job)
            self._persist()
            self._arm_timer()
            self._emit(jobId=job_id, action="removed")
            logger.info(f"cron: removed job {job_id}")
            return {"ok": True, "removed": True}

    async def run(self, job_id: str, mode: Literal["due", "force"] = "force") -> Dict[str, Any]:
        """Run one job now. ``due`` only runs it if it is due."""
        if mode not in ("due", "force"):
            raise CronValidationError(f"invalid run mode: {mode!r}")
        async with self._lock:
            self._warn_if_disabled("run")
            state = self._ensure_loaded(force_reload=True)
            job = find_job_or_throw(state, job_id)
            if job.state.running_at_ms is not None:
                return {"ok": True, "ran": False, "reason": "already-running"}
            now = self._now()
            if not is_job_due(job, now, forced=mode == "force"):
                return {"ok": True, "ran": False, "reason": "not-due"}
            snapshot = self._mark_running([job], now)[0]
            self._persist()

        outcome = await self._execute_job(snapshot)
        entries = await self._record_outcomes([outcome])
        await self._append_run_logs(entries)
        self._arm_timer()
        return {"ok": True, "ran": True, "status": outcome.status}

    async def runs(self, job_id: str, limit: Optional[int] = None) -> list[CronRunLogEntry]:
        """Run history for a job, most recent first. History outlives the job."""
        path = resolve_cron_run_log_path(self.store_path, job_id)
        return await asyncio.to_thread(read_cron_run_log_entries, path, limit=limit, job_id=job_id)

    async def wake(self, text: str, mode: Literal["now", "next-heartbeat"] = "next-heartbeat") -> Dict[str, Any]:
        """Enqueue a system event; ``now`` also requests an immediate heartbeat."""
        text = (text or "").strip()
        if not text:
            return {"ok": False}
        if self.enqueue_system_event:
            await _maybe_await(self.enqueue_system_event(text))
        if mode == "now" and self.request_heartbeat_now:
            await _maybe_await(self.request_heartbeat_now(reason="wake"))
        return {"ok": True}

    # ------------------------------------------------------------------
    # Timer tick
    # ------------------------------------------------------------------
    async def _on_timer(self) -> None:
        if self._timer_running:
            return
        self._timer_running = True
        try:
            async with self._lock:
                state = self._ensure_loaded(force_reload=True)
                now = self._now()
                due = [
                    j for j in state.jobs
                    if j.state.running_at_ms is None and is_job_due(j, now)
                ]
                snapshots = self._mark_running(due, now)
                if snapshots:
                    self._persist()

            outcomes = []
            for job in snapshots:
                outcomes.append(await self._execute_job(job))
            entries = await self._record_outcomes(outcomes)
            await self._append_run_logs(entries)

            async with self._lock:
                state = self._ensure_loaded(force_reload=True)
                recompute_next_runs(state, self._now(), stuck_run_ms=self.stuck_run_ms)
                self._persist()
        except Exception as e:
            logger.error(f"cron: timer tick failed: {e}", exc_info=True)
        finally:
            self._timer_running = False
            # re-arm even after a failed tick
            self._arm_timer()

    def _mark_running(self, jobs: list[CronJob], now: int) -> list[CronJob]:
        """Set the running marker (caller holds the lock); returns snapshots to execute."""
        snapshots = []
        for job in jobs:
            job.state.running_at_ms = now
            job.state.last_error = None
            snapshots.append(copy.deepcopy(job))
        return snapshots

    async def _record_outcomes(self, outcomes: list[_RunOutcome]) -> list[tuple[Path, CronRunLogEntry]]:
        if not outcomes:
            return []
        entries: list[tuple[Path, CronRunLogEntry]] = []
        async with self._lock:
            state = self._ensure_loaded(force_reload=True)
            for outcome in outcomes:
                next_run = self._apply_outcome(state, outcome)
                entry = CronRunLogEntry(
                    ts=self._now(),
                    job_id=outcome.job_id,
                    status=outcome.status,
                    error=outcome.error,
                    summary=outcome.summary,
                    run_at_ms=outcome.started_at_ms,
                    duration_ms=max(0, outcome.ended_at_ms - outcome.started_at_ms),
                    next_run_at_ms=next_run,
                )
                try:
                    entries.append((resolve_cron_run_log_path(self.store_path, outcome.job_id), entry))
                except ValueError as e:
                    logger.warning(f"cron: skipping run log for job {outcome.job_id!r}: {e}")
            self._persist()
        return entries

    def _apply_outcome(self, state: CronStoreFile, outcome: _RunOutcome) -> int | None:
        """Write a run's result into the stored job. Returns its next run time."""
        duration = max(0, outcome.ended_at_ms - outcome.started_at_ms)
        job = next((j for j in state.jobs if j.id == outcome.job_id), None)
        if job is None:
            # removed while running
            self._emit(
                jobId=outcome.job_id, action="finished", status=outcome.status, error=outcome.error,
                summary=outcome.summary, runAtMs=outcome.started_at_ms, durationMs=duration,
            )
            return None

        job.state.running_at_ms = None
        job.state.last_run_at_ms = outcome.started_at_ms
        job.state.last_status = outcome.status
        job.state.last_error = outcome.error
        job.state.last_duration_ms = duration

        should_delete = (
            isinstance(job.schedule, AtSchedule)
            and outcome.status == "ok"
            and job.delete_after_run is True
        )
        job.state.next_run_at_ms = None if should_delete else compute_job_next_run_at_ms(job, outcome.ended_at_ms)

        self._emit(
            jobId=job.id, action="finished", status=outcome.status, error=outcome.error,
            summary=outcome.summary, runAtMs=outcome.started_at_ms, durationMs=duration,
            nextRunAtMs=job.state.next_run_at_ms,
        )
        if should_delete:
            state.jobs.remove(job)
            self._emit(jobId=job.id, action="removed")
            logger.info(f"cron: removed one-shot job {job.id} after successful run")
        return job.state.next_run_at_ms

    async def _append_run_logs(self, entries: list[tuple[Path, CronRunLogEntry]]) -> None:
        for path, entry in entries:
            try:
                await append_cron_run_log(
                    path,
                    entry,
                    max_bytes=self.run_log_max_bytes,
                    keep_lines=self.run_log_keep_lines,
                )
            except OSError as e:
                logger.warning(f"cron: failed to write run log for job {entry.job_id}: {e}")

    # ------------------------------------------------------------------
    # Job execution
    # ------------------------------------------------------------------
    async def _execute_job(self, job: CronJob) -> _RunOutcome:
        """Run a job snapshot. Never raises; failures become an ``error`` outcome."""
        started_at = self._now()
        self._emit(jobId=job.id, action="started", runAtMs=started_at)
        try:
            if job.session_target == "main":
                status, error, summary = await self._execute_main_session_job(job)
            else:
                status, error, summary = await self._execute_isolated_job(job)
        except Exception as e:
            logger.error(f"cron: job {job.id} failed: {e}", exc_info=True)
            status, error, summary = "error", str(e) or type(e).__name__, None
        return _RunOutcome(
            job_id=job.id,
            status=status,
            started_at_ms=started_at,
            ended_at_ms=self._now(),
            error=error,
            summary=summary,
        )

    async def _execute_main_session_job(self, job: CronJob) -> tuple[CronRunStatus, str | None, str | None]:
        text = resolve_job_payload_text_for_main(job)
        if not text:
            kind = getattr(job.payload, "kind", "unknown")
            reason = (
                "main job requires non-empty systemEvent text"
                if kind == "systemEvent"
                else 'main job requires payload.kind="systemEvent"'
            )
            return "skipped", reason, None

        if not self.enqueue_system_event:
            return "error", "system event sink not configured", None
        await _maybe_await(self.enqueue_system_event(text, job.agent_id))

        if job.wake_mode == "now" and self.run_heartbeat_once:
            result = await self._run_heartbeat_when_idle(f"cron:{job.id}")
            hb_status = result.get("status", "error")
            if hb_status in ("ran", "completed"):
                return "ok", None, text
            if hb_status == "skipped":
                return "skipped", result.get("reason"), text
            return "error", result.get("reason") or "heartbeat failed", text

        if self.request_heartbeat_now:
            await _maybe_await(self.request_heartbeat_now(reason=f"cron:{job.id}"))
        return "ok", None, text

    async def _run_heartbeat_when_idle(self, reason: str) -> Dict[str, Any]:
        """Run a heartbeat, retrying while the main lane is busy (up to 2 minutes)."""
        assert self.run_heartbeat_once is not None
        wait_started_at = self._now()
        while True:
            try:
                result = await self.run_heartbeat_once(reason=reason)
            except Exception as e:
                return {"status": "error", "reason": str(e)}
            if not isinstance(result, dict):
                return {"status": "ran"}
            if result.get("status") != "skipped" or result.get("reason") != "requests-in-flight":
                return result
            if self._now() - wait_started_at > HEARTBEAT_MAX_WAIT_MS:
                return {"status": "skipped", "reason": "timeout waiting for main lane to become idle"}
            await asyncio.sleep(HEARTBEAT_RETRY_SECONDS)

    async def _execute_isolated_job(self, job: CronJob) -> tuple[CronRunStatus, str | None, str | None]:
        if not isinstance(job.payload, AgentTurnPayload):
            return "skipped", 'isolated job requires payload.kind="agentTurn"', None
        if not self.run_isolated_agent_job:
            return "error", "isolated agent runner not configured", None

        res = RunCronAgentTurnResult.from_value(await self.run_isolated_agent_job(job))
        if res.status != "ok":
            return res.status, res.error or ("cron job failed" if res.status == "error" else None), res.summary

        if res.output_text:
            delivery_error = await self._deliver_output(job, res.output_text)
            if delivery_error:
                return "error", delivery_error, res.summary
        return "ok", None, res.summary

    async def _deliver_output(self, job: CronJob, text: str) -> str | None:
        """Announce isolated output if requested. Returns an error unless best-effort."""
        plan = resolve_cron_delivery_plan(job)
        if not plan.requested:
            return None
        if not self.deliver_announcement:
            logger.warning(f"cron: job {job.id} requested delivery but no deliverer is configured")
            return None

        last_channel = self.resolve_last_channel() if self.resolve_last_channel else None
        target: DeliveryTarget = resolve_delivery_target(plan.channel, plan.to, last_channel=last_channel)
        try:
            await _maybe_await(self.deliver_announcement(target=target, text=text, job=job))
        except Exception as e:
            if plan.source == "delivery":
                best_effort = bool(job.delivery and job.delivery.best_effort)
            else:
                best_effort = bool(isinstance(job.payload, AgentTurnPayload) and job.payload.best_effort_deliver)
            if best_effort:
                logger.warning(f"cron: best-effort delivery failed for job {job.id} ({target.channel}): {e}")
                return None
            return f"delivery failed: {e}"
        return None


__all__ = ["CronService", "CronEvent", "CronEventAction"]
