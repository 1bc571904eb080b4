"""Isolated agent turns for cron jobs"""
from .delivery_target import DeliveryTarget, resolve_delivery_target
from .helpers import pick_summary_from_output, truncate_text
from .run import RunCronAgentTurnResult, run_cron_isolated_agent_turn

__all__ = [
    "DeliveryTarget",
    "resolve_delivery_target",
    "pick_summary_from_output",
    "truncate_text",
    "RunCronAgentTurnResult",
    "run_cron_isolated_agent_turn",
]
