from __future__ import annotations

from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    INVALID_REQUEST = "INVALID_REQUEST"
    NOT_FOUND = "NOT_FOUND"
    UNAVAILABLE = "UNAVAILABLE"


class GatewayError(Exception):
    def __init__(self, message: str, error_code: ErrorCode, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.error_code = error_code
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": self.error_code.value,
            "message": str(self),
            "details": self.details,
        }


class InvalidRequestError(GatewayError):
    def __init__(self, message: str | None = None, details: dict[str, Any] | None = None):
        super().__init__(message or "Invalid request", ErrorCode.INVALID_REQUEST, details)


class NotFoundError(GatewayError):
    def __init__(self, message: str | None = None, details: dict[str, Any] | None = None):
        super().__init__(message or "Not found", ErrorCode.NOT_FOUND, details)


class UnavailableError(GatewayError):
    def __init__(self, message: str | None = None):
        super().__init__(message or "Service unavailable", ErrorCode.UNAVAILABLE)


__all__ = [
    "ErrorCode",
    "GatewayError",
    "InvalidRequestError",
    "NotFoundError",
    "UnavailableError",
]
