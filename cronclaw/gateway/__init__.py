"""Gateway-facing cron wiring and command surface"""
from .cron_bootstrap import build_gateway_cron_service
from .cron_methods import CRON_METHODS, dispatch_cron_request, handle_cron_method
from .error_codes import ErrorCode, GatewayError
from .types import GatewayCronState, GatewayDeps

__all__ = [
    "build_gateway_cron_service",
    "handle_cron_method",
    "dispatch_cron_request",
    "CRON_METHODS",
    "ErrorCode",
    "GatewayError",
    "GatewayCronState",
    "GatewayDeps",
]
