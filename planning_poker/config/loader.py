from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Dict, List

import yaml

_CONFIG_PATH = Path(__file__).resolve().parent / "config.yaml"

_DEFAULT_SESSION_GUARD = {
    "enabled": True,
    "rate_limit_window_seconds": 60,
    "rate_limit_max_messages": 100,
    "heartbeat_interval_seconds": 30,
    "idle_timeout_seconds": 30 * 60,
}
_DEFAULT_TICKET_SOURCE = {
    "timeout_seconds": 15,
    "default_story_points_field": "customfield_10016",
    "default_max_results": 50,
    "max_results_cap": 100,
}
_DEFAULT_VALIDATION = {
    "display_name_max_length": 50,
    "free_text_max_length": 500,
}


def load_config() -> Dict[str, Any]:
    """Load the application config from YAML, returning an empty mapping on error."""
    try:
        with _CONFIG_PATH.open("r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle) or {}
            if isinstance(data, dict):
                return data
            logging.warning(
                "Config file %s is not a mapping; using defaults.", _CONFIG_PATH
            )
            return {}
    except FileNotFoundError:
        logging.warning(
            "Configuration file %s not found; using defaults.", _CONFIG_PATH
        )
        return {}
    except Exception as exc:  # noqa: BLE001
        logging.error("Failed to load configuration from %s: %s", _CONFIG_PATH, exc)
        return {}


def _coerce_positive_int(value: Any, fallback: int) -> int:
    try:
        candidate = int(value)
        return candidate if candidate > 0 else fallback
    except Exception:  # noqa: BLE001
        return fallback


def _coerce_bool(value: Any, fallback: bool) -> bool:
    if value is None:
        return fallback
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "on"}
    return bool(value)


def _env_bool(name: str) -> Any:
    value = os.getenv(name)
    if value is None:
        return None
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str) -> Any:
    value = os.getenv(name)
    if value is None:
        return None
    try:
        return int(value)
    except Exception:  # noqa: BLE001
        return None


def get_session_guard_settings() -> Dict[str, Any]:
    """Return per-connection rate/liveness settings with env/config overrides."""
    config = load_config()
    section = config.get("session_guard") or {}
    defaults = dict(_DEFAULT_SESSION_GUARD)

    enabled = _env_bool("PLANNING_POKER_GUARD_ENABLED")
    if enabled is None:
        enabled = section.get("enabled")

    resolved: Dict[str, Any] = {
        "enabled": _coerce_bool(enabled, defaults["enabled"]),
    }
    for key in (
        "rate_limit_window_seconds",
        "rate_limit_max_messages",
        "heartbeat_interval_seconds",
        "idle_timeout_seconds",
    ):
        raw = _env_int(f"PLANNING_POKER_{key.upper()}")
        if raw is None:
            raw = section.get(key)
        resolved[key] = _coerce_positive_int(raw, defaults[key])
    return resolved


def get_ticket_source_settings() -> Dict[str, Any]:
    """Return issue-tracker client settings sourced from config with safe defaults."""
    config = load_config()
    section = config.get("ticket_source") or {}
    defaults = dict(_DEFAULT_TICKET_SOURCE)

    field = section.get("default_story_points_field")
    if not isinstance(field, str) or not field.strip():
        field = defaults["default_story_points_field"]

    cap = _coerce_positive_int(section.get("max_results_cap"), defaults["max_results_cap"])
    default_max = _coerce_positive_int(
        section.get("default_max_results"), defaults["default_max_results"]
    )
    return {
        "timeout_seconds": _coerce_positive_int(
            section.get("timeout_seconds"), defaults["timeout_seconds"]
        ),
        "default_story_points_field": field.strip(),
        "default_max_results": min(default_max, cap),
        "max_results_cap": cap,
    }


def get_validation_limits() -> Dict[str, int]:
    """Return input length limits sourced from config with safe defaults."""
    config = load_config()
    section = config.get("validation") or {}
    limits = dict(_DEFAULT_VALIDATION)
    limits["display_name_max_length"] = _coerce_positive_int(
        section.get("display_name_max_length"), limits["display_name_max_length"]
    )
    limits["free_text_max_length"] = _coerce_positive_int(
        section.get("free_text_max_length"), limits["free_text_max_length"]
    )
    return limits


def get_seed_tickets() -> List[Dict[str, Any]]:
    """Return the raw ticket mappings the queue starts with."""
    config = load_config()
    raw = config.get("seed_tickets")
    if not isinstance(raw, list):
        return []
    return [entry for entry in raw if isinstance(entry, dict)]
