"""Configuration loading, defaults and credential checks."""

from __future__ import annotations

import os
from copy import deepcopy
from pathlib import Path
from typing import Any, Dict

import yaml

from .errors import InvalidCredentialFormat, MissingCredential

API_KEY_ENV = "CLAUDE_API_KEY"
API_KEY_ALIASES = ("ANTHROPIC_API_KEY",)
API_KEY_PREFIX = "sk-ant-"

DEFAULT_SETTINGS: Dict[str, Any] = {
    "provider": {
        "base_url": "https://api.anthropic.com",
        "anthropic_version": "2023-06-01",
        "batch_beta": "message-batches-2024-09-24",
        "model": "claude-3-5-sonnet-20241022",
        "request_timeout_seconds": None,
    },
    "generation": {
        "words_per_section": 2500,
        "context_excerpt_chars": 300,
    },
    "execution": {
        "mode": "auto",
        "pacing_seconds": 1.0,
    },
    "registry": {
        "ttl_seconds": 86400,
    },
    "polling": {
        "interval_seconds": 10,
        "max_wait_seconds": 1800,
        "max_consecutive_errors": 3,
    },
}

EXECUTION_MODES = ("batch", "sequential", "auto")


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    merged = deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_settings(settings_path: str = "config/settings.yaml") -> Dict[str, Any]:
    """Loads settings.yaml and merges it onto defaults."""
    merged = deepcopy(DEFAULT_SETTINGS)
    config_path = Path(settings_path)
    if config_path.exists():
        with config_path.open("r", encoding="utf-8") as f:
            user_cfg = yaml.safe_load(f) or {}
        merged = _deep_merge(merged, user_cfg)
    mode = merged["execution"].get("mode")
    if mode not in EXECUTION_MODES:
        raise ValueError(f"Invalid execution mode: {mode!r} (expected one of {', '.join(EXECUTION_MODES)})")
    return merged


def read_api_key() -> str | None:
    for name in (API_KEY_ENV, *API_KEY_ALIASES):
        value = os.getenv(name)
        if value and value.strip():
            return value.strip()
    return None


def validate_api_key(api_key: str | None) -> str:
    """Raises a credential error unless the key looks like an Anthropic key."""
    if not api_key:
        raise MissingCredential(
            f"{API_KEY_ENV} is not set. Add it to the environment or the .env file."
        )
    if not api_key.startswith(API_KEY_PREFIX):
        raise InvalidCredentialFormat(
            f"{API_KEY_ENV} must be an Anthropic API key starting with '{API_KEY_PREFIX}'."
        )
    return api_key
