"""Configuration loader

- JSON5 parsing (comments, trailing commas, unquoted keys)
- $include directives: {"$include": "./extra.json"}
- ${ENV_VAR} environment variable substitution
- A broken or invalid file logs a warning and yields the defaults
"""

from __future__ import annotations

import logging
import os
import re
from pathlib import Path
from typing import Any, Optional

import json5
from pydantic import ValidationError

from .paths import resolve_state_dir
from .schema import CronclawConfig

logger = logging.getLogger(__name__)

_cached_config: Optional[CronclawConfig] = None

_ENV_VAR_RE = re.compile(r"\$\{([^}]+)\}")
MAX_INCLUDE_DEPTH = 10


def _substitute_env_vars(obj: Any) -> Any:
    """Recursively replace ${VAR} with os.environ values (unset vars are left as-is)."""
    if isinstance(obj, str):
        return _ENV_VAR_RE.sub(lambda m: os.environ.get(m.group(1), m.group(0)), obj)
    if isinstance(obj, dict):
        return {k: _substitute_env_vars(v) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_substitute_env_vars(v) for v in obj]
    return obj


def _resolve_includes(obj: Any, base_dir: Path, depth: int = 0) -> Any:
    if depth > MAX_INCLUDE_DEPTH:
        raise ValueError("$include depth limit exceeded (circular?)")

    if isinstance(obj, dict):
        if "$include" in obj and len(obj) == 1:
            include_path = base_dir / obj["$include"]
            if not include_path.exists():
                logger.warning(f"$include target not found: {include_path}")
                return {}
            included = json5.loads(include_path.read_text(encoding="utf-8"))
            return _resolve_includes(included, include_path.parent, depth + 1)
        return {k: _resolve_includes(v, base_dir, depth) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_resolve_includes(v, base_dir, depth) for v in obj]
    return obj


def get_config_path() -> Path:
    """
    Path of the active config file.

    Searches well-known locations; returns the user-level default (which
    may not exist) when none is found.
    """
    state_dir = resolve_state_dir()
    candidates = [
        Path.cwd() / "cronclaw.json",
        Path.cwd() / "cronclaw.json5",
        state_dir / "config.json",
        state_dir / "config.json5",
    ]
    for candidate in candidates:
        if candidate.exists():
            return candidate
    return state_dir / "config.json"


def load_config_raw(path: Path) -> dict[str, Any]:
    """Parse a config file with includes and env substitution, before validation."""
    obj = json5.loads(path.read_text(encoding="utf-8"))
    obj = _resolve_includes(obj, path.parent)
    obj = _substitute_env_vars(obj)
    return obj if isinstance(obj, dict) else {}


def load_config(config_path: Optional[str | Path] = None) -> CronclawConfig:
    """Load and validate configuration. Results are cached until invalidated."""
    global _cached_config

    if _cached_config is not None and config_path is None:
        return _cached_config

    path = Path(config_path).expanduser() if config_path else get_config_path()
    config_dict: dict[str, Any] = {}
    if path.exists():
        try:
            config_dict = load_config_raw(path)
        except (OSError, ValueError) as exc:
            logger.warning(f"Failed to load config from {path}: {exc}")

    try:
        config = CronclawConfig.model_validate(config_dict)
    except ValidationError as exc:
        logger.warning(f"Invalid config in {path}, using defaults: {exc}")
        config = CronclawConfig()

    if config_path is None:
        _cached_config = config
    return config


def invalidate_config_cache() -> None:
    global _cached_config
    _cached_config = None


__all__ = ["load_config", "load_config_raw", "get_config_path", "invalidate_config_cache"]
