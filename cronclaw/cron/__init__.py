"""Cron scheduler: job store, schedule engine, run log and service"""
from .calendar import project_future_runs
from .delivery import resolve_cron_delivery_plan
from .errors import CronError, CronJobNotFoundError, CronValidationError, InvalidJobDefinitionError
from .jobs import apply_job_patch, create_job, is_job_due, next_wake_at_ms, recompute_next_runs
from .normalize import normalize_cron_job_create, normalize_cron_job_patch
from .run_log import append_cron_run_log, read_cron_run_log_entries, resolve_cron_run_log_path
from .schedule import compute_next_run_at_ms, format_next_run, format_schedule
from .serialization import job_to_api
from .service import CronEvent, CronService
from .store import CronStore, load_cron_store, save_cron_store
from .timer import CronTimer
from .types import (
    AgentTurnPayload,
    AtSchedule,
    CronDelivery,
    CronDeliveryPlan,
    CronJob,
    CronJobCreate,
    CronJobState,
    CronRunLogEntry,
    CronSchedule,
    CronStoreFile,
    EverySchedule,
    ProjectedRun,
    SystemEventPayload,
)

__all__ = [
    "CronService",
    "CronEvent",
    "CronTimer",
    "CronStore",
    "load_cron_store",
    "save_cron_store",
    "append_cron_run_log",
    "read_cron_run_log_entries",
    "resolve_cron_run_log_path",
    "compute_next_run_at_ms",
    "format_next_run",
    "format_schedule",
    "project_future_runs",
    "resolve_cron_delivery_plan",
    "create_job",
    "apply_job_patch",
    "is_job_due",
    "next_wake_at_ms",
    "recompute_next_runs",
    "normalize_cron_job_create",
    "normalize_cron_job_patch",
    "job_to_api",
    "CronError",
    "CronValidationError",
    "CronJobNotFoundError",
    "InvalidJobDefinitionError",
    "AtSchedule",
    "EverySchedule",
    "CronSchedule",
    "SystemEventPayload",
    "AgentTurnPayload",
    "CronDelivery",
    "CronDeliveryPlan",
    "CronJob",
    "CronJobCreate",
    "CronJobState",
    "CronStoreFile",
    "CronRunLogEntry",
    "ProjectedRun",
]
