"""
Configuration helper.

Settings resolve in order: FASTTRACK_<NAME> environment variable,
fasttrack.json next to this file, built-in default.

Usage:
  import config

  url = config.get("api_url")
  interval = config.get("milestone_interval")   # float seconds
"""

import json
import os

_CONFIG_PATH = os.path.join(os.path.dirname(os.path.abspath(__file__)), "fasttrack.json")
_ENV_PREFIX = "FASTTRACK_"
_cache = None

DEFAULTS = {
    "api_url": "http://localhost/wp-json/fasttrack/v1",
    "api_nonce": "",
    "request_timeout": 10.0,
    "milestone_interval": 60.0,
    "hydration_interval": 2 * 60 * 60.0,
    "sync_interval": 30.0,
    "sync_debounce": 5.0,
    "permission_timeout": 60.0,
    "active_hours_start": 8,
    "active_hours_end": 22,
    "hydration_threshold": 0.8,
    "hydration_goal_ml": 2500,
    "host": "0.0.0.0",
    "port": 8000,
}


def _load():
    global _cache
    if _cache is None:
        try:
            with open(_CONFIG_PATH) as f:
                _cache = json.load(f)
        except FileNotFoundError:
            _cache = {}
    return _cache


def reload():
    """Drop the cached config file so the next get() re-reads it."""
    global _cache
    _cache = None


def _coerce(raw, default):
    if isinstance(default, bool):
        return raw.strip().lower() in ("1", "true", "yes", "on")
    if isinstance(default, int):
        return int(raw)
    if isinstance(default, float):
        return float(raw)
    return raw


def get(name):
    """Resolve a setting by name."""
    if name not in DEFAULTS:
        raise KeyError(f"Unknown setting '{name}'. Known: {', '.join(DEFAULTS)}")
    default = DEFAULTS[name]
    raw = os.environ.get(_ENV_PREFIX + name.upper())
    if raw is not None:
        try:
            return _coerce(raw, default)
        except ValueError as e:
            raise ValueError(f"Bad value for {_ENV_PREFIX}{name.upper()}: {raw!r}") from e
    return _load().get(name, default)
