"""Cron command surface for the gateway

Each ``cron.*`` method validates its params, calls the service and returns
a JSON-ready payload. Failures are raised as ``GatewayError``.
"""
from __future__ import annotations

import logging
from typing import Any, Optional

from pydantic import ValidationError

from ..cron.errors import CronJobNotFoundError, CronValidationError
from ..cron.serialization import job_to_api, run_entry_to_api
from ..cron.service import CronService
from .error_codes import GatewayError, InvalidRequestError, NotFoundError, UnavailableError
from .protocol.validators import PARAM_VALIDATORS, validate_method_params

logger = logging.getLogger(__name__)

CRON_METHODS = frozenset(PARAM_VALIDATORS)


async def _dispatch(service: CronService, method: str, params: Any) -> Any:
    if method == "cron.status":
        if params.jobId:
            job = await service.get_job(params.jobId)
            if job is None:
                raise CronJobNotFoundError(params.jobId)
            return job_to_api(job)
        return await service.status()
    if method == "cron.list":
        jobs = await service.list_jobs(include_disabled=params.includeDisabled)
        return {"jobs": [job_to_api(j) for j in jobs]}
    if method == "cron.add":
        return job_to_api(await service.add(params.job))
    if method == "cron.update":
        return job_to_api(await service.update(params.jobId, params.patch))
    if method == "cron.remove":
        return await service.remove(params.jobId)
    if method == "cron.run":
        return await service.run(params.jobId, mode=params.mode)
    if method == "cron.runs":
        try:
            entries = await service.runs(params.jobId, limit=params.limit)
        except ValueError as e:
            raise InvalidRequestError(str(e)) from e
        return {"entries": [run_entry_to_api(e) for e in entries]}
    if method == "cron.wake":
        return await service.wake(params.text, mode=params.mode)
    raise InvalidRequestError(f"unknown cron method: {method}")


async def handle_cron_method(
    service: Optional[CronService],
    method: str,
    params: Optional[dict[str, Any]] = None,
) -> Any:
    """Run one ``cron.*`` request; raises GatewayError on failure."""
    if service is None:
        raise UnavailableError("cron service not available")
    if method not in CRON_METHODS:
        raise InvalidRequestError(f"unknown cron method: {method}")
    try:
        validated = validate_method_params(method, params or {})
    except ValidationError as e:
        errors = [
            {"loc": list(err["loc"]), "msg": err["msg"], "type": err["type"]}
            for err in e.errors(include_url=False)
        ]
        raise InvalidRequestError(f"invalid {method} params", {"errors": errors}) from e

    try:
        return await _dispatch(service, method, validated)
    except GatewayError:
        raise
    except CronJobNotFoundError as e:
        raise NotFoundError(str(e), {"jobId": e.job_id}) from e
    except CronValidationError as e:
        raise InvalidRequestError(str(e)) from e


async def dispatch_cron_request(
    service: Optional[CronService],
    method: str,
    params: Optional[dict[str, Any]] = None,
) -> dict[str, Any]:
    """Response envelope: ``{"ok": true, "payload": ...}`` or ``{"ok": false, "error": ...}``."""
    try:
        payload = await handle_cron_method(service, method, params)
    except GatewayError as e:
        logger.debug(f"{method} failed: {e}")
        return {"ok": False, "error": e.to_dict()}
    return {"ok": True, "payload": payload}


__all__ = ["CRON_METHODS", "handle_cron_method", "dispatch_cron_request"]
