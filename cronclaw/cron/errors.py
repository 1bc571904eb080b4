"""Cron error types"""
from __future__ import annotations


class CronError(Exception):
    """Base class for cron scheduler errors."""


class CronValidationError(CronError, ValueError):
    """A job definition or patch was rejected. The store is left untouched."""


class CronJobNotFoundError(CronValidationError):
    def __init__(self, job_id: str):
        super().__init__(f"unknown cron job id: {job_id}")
        self.job_id = job_id


class InvalidJobDefinitionError(CronValidationError):
    def __init__(self, message: str | None = None):
        super().__init__(message or "invalid job definition")


__all__ = [
    "CronError",
    "CronValidationError",
    "CronJobNotFoundError",
    "InvalidJobDefinitionError",
]
