"""Configuration"""
from .loader import get_config_path, invalidate_config_cache, load_config
from .paths import default_cron_store_path, resolve_cron_store_path, resolve_state_dir
from .schema import CronclawConfig, CronConfig, CronRunLogConfig

__all__ = [
    "CronclawConfig",
    "CronConfig",
    "CronRunLogConfig",
    "load_config",
    "get_config_path",
    "invalidate_config_cache",
    "resolve_state_dir",
    "resolve_cron_store_path",
    "default_cron_store_path",
]
