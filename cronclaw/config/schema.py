"""Configuration schema (pydantic)"""
from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..cron.jobs import STUCK_RUN_MS
from ..cron.run_log import DEFAULT_KEEP_LINES, DEFAULT_MAX_BYTES


class CronRunLogConfig(BaseModel):
    """Run log pruning limits"""
    maxBytes: int = Field(DEFAULT_MAX_BYTES, gt=0, description="Prune a job's log once it exceeds this size")
    keepLines: int = Field(DEFAULT_KEEP_LINES, gt=0, description="Lines kept after pruning")


class CronConfig(BaseModel):
    """The ``cron`` config section"""
    enabled: bool = True
    store: Optional[str] = Field(None, description="Job store path (default ~/.cronclaw/cron/jobs.json)")
    runLog: CronRunLogConfig = Field(default_factory=CronRunLogConfig)
    stuckRunMs: int = Field(STUCK_RUN_MS, gt=0, description="Clear running markers older than this")

    @field_validator("store")
    @classmethod
    def blank_store_is_default(cls, v):
        if v is not None and not v.strip():
            return None
        return v


class CronclawConfig(BaseModel):
    """Root configuration; unknown sections are kept for other components."""
    model_config = ConfigDict(extra="allow")

    cron: CronConfig = Field(default_factory=CronConfig)

    @field_validator("cron", mode="before")
    @classmethod
    def null_cron_is_default(cls, v):
        return {} if v is None else v


__all__ = ["CronclawConfig", "CronConfig", "CronRunLogConfig"]
