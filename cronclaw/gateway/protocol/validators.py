"""
Request parameter validation

Pydantic models for the cron command surface. Job bodies stay plain dicts
here; the cron input normalizer owns their shape.
"""

from typing import Any, Literal, Optional

from pydantic import BaseModel, Field


class CronStatusParams(BaseModel):
    """Parameters for cron.status"""
    jobId: Optional[str] = None  # omit for the service summary


class CronListParams(BaseModel):
    includeDisabled: bool = False


class CronAddParams(BaseModel):
    """
    Parameters for cron.add

    Note: id is NOT accepted - it is generated by the server
    """
    job: dict = Field(..., description="Job definition (without id)")


class CronUpdateParams(BaseModel):
    jobId: str = Field(..., min_length=1)
    patch: dict = Field(..., description="Partial job definition")


class CronRemoveParams(BaseModel):
    """Parameters for cron.remove"""
    jobId: str = Field(..., min_length=1)


class CronRunParams(BaseModel):
    jobId: str = Field(..., min_length=1)
    mode: Literal["due", "force"] = "force"


class CronRunsParams(BaseModel):
    jobId: str = Field(..., min_length=1)
    limit: Optional[int] = Field(None, ge=1, le=5000)


class CronWakeParams(BaseModel):
    text: str
    mode: Literal["now", "next-heartbeat"] = "next-heartbeat"


PARAM_VALIDATORS = {
    "cron.status": CronStatusParams,
    "cron.list": CronListParams,
    "cron.add": CronAddParams,
    "cron.update": CronUpdateParams,
    "cron.remove": CronRemoveParams,
    "cron.run": CronRunParams,
    "cron.runs": CronRunsParams,
    "cron.wake": CronWakeParams,
}


def validate_method_params(method: str, params: dict) -> Any:
    """
    Validate method parameters

    Raises:
        ValidationError: If params are invalid
    """
    validator = PARAM_VALIDATORS.get(method)
    if validator:
        return validator(**params)
    return params  # No validation for unknown methods
