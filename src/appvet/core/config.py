"""Layered configuration for the review pipeline.

Loads and merges configuration from:
1. Default settings (built-in)
2. Config file (appvet.yaml or --config)
3. Environment variables
4. CLI parameters (override)
"""

from __future__ import annotations

import copy
import os
from pathlib import Path
from typing import Mapping, Optional

import yaml
from pydantic import ValidationError

from ..exceptions import ConfigurationError
from ..models.config import ReviewConfig

DEFAULT_CONFIG_FILE = "appvet.yaml"

DEFAULT_CONFIG: dict = {
    "review": {
        "enabled": True,
        "auto_trigger": False,
        "approve_threshold": 80,
        "reject_threshold": 40,
        "sample_rate": 0.1,
        "max_review_seconds": 900,
    },
    "limits": {
        "max_file_size_kb": 500,
        "max_total_size_kb": 5000,
        "max_files": 100,
        "max_extract_size_kb": 102400,
    },
    "budget": {
        "cost_limit_per_review": 1.0,
        "rate_limit_per_minute": 10,
    },
    "analysis": {
        "max_tokens_per_batch": 50000,
        "agent_max_files": 10,
        "agent_max_content_chars": 3000,
    },
    "sandbox": {
        "enabled": False,
        "runtime": "docker",
        "image": "appvet-sandbox:latest",
        "timeout_seconds": 60,
        "memory_limit": "512m",
        "cpu_limit": 0.5,
        "kill_buffer_seconds": 10,
        "tmpfs_size": "100m",
    },
    "ai": {
        "provider": "anthropic",
        "timeout_seconds": 300,
        "retry_attempts": 3,
        "retry_delay_seconds": 1,
        "anthropic": {
            "model": "claude-sonnet-4-5-20250929",
            "api_key_env": "ANTHROPIC_API_KEY",
            "max_tokens": 8192,
        },
        "openai": {
            "model": "gpt-4o",
            "api_key_env": "OPENAI_API_KEY",
            "max_tokens": 8192,
        },
    },
}

# env var -> (section, key, type)
ENV_OVERRIDES: dict[str, tuple[str, str, type]] = {
    "ENABLE_AI_REVIEW": ("review", "enabled", bool),
    "AI_REVIEW_AUTO_TRIGGER": ("review", "auto_trigger", bool),
    "AI_REVIEW_APPROVE_THRESHOLD": ("review", "approve_threshold", int),
    "AI_REVIEW_REJECT_THRESHOLD": ("review", "reject_threshold", int),
    "AI_REVIEW_MAX_SECONDS": ("review", "max_review_seconds", float),
    "AI_REVIEW_MAX_FILE_SIZE_KB": ("limits", "max_file_size_kb", int),
    "AI_REVIEW_MAX_TOTAL_SIZE_KB": ("limits", "max_total_size_kb", int),
    "AI_REVIEW_MAX_FILES": ("limits", "max_files", int),
    "AI_REVIEW_COST_LIMIT": ("budget", "cost_limit_per_review", float),
    "AI_REVIEW_RATE_LIMIT_PER_MINUTE": ("budget", "rate_limit_per_minute", int),
    "DOCKER_SANDBOX_ENABLED": ("sandbox", "enabled", bool),
    "SANDBOX_TIMEOUT_SECONDS": ("sandbox", "timeout_seconds", int),
    "SANDBOX_MEMORY_LIMIT": ("sandbox", "memory_limit", str),
    "SANDBOX_CPU_LIMIT": ("sandbox", "cpu_limit", float),
    "AI_REVIEW_PROVIDER": ("ai", "provider", str),
}

TRUE_VALUES = {"true", "1", "yes", "on"}


def deep_merge(base: dict, override: dict) -> dict:
    """Deep merge two dicts. Arrays are replaced, not merged."""
    result = {}
    for key in base:
        result[key] = base[key]
    for key, value in override.items():
        base_value = result.get(key)
        if isinstance(base_value, dict) and isinstance(value, dict):
            result[key] = deep_merge(base_value, value)
        else:
            result[key] = value
    return result


def load_config_file(config_path: Path) -> dict:
    """Load a YAML config file. Missing or unreadable files yield {}."""
    if not config_path.exists():
        return {}
    try:
        content = config_path.read_text(encoding="utf-8-sig")  # utf-8-sig strips BOM
        data = yaml.safe_load(content) or {}
    except (OSError, yaml.YAMLError):
        return {}
    return data if isinstance(data, dict) else {}


def _coerce(name: str, raw: str, kind: type):
    if kind is bool:
        return raw.strip().lower() in TRUE_VALUES
    if kind is str:
        return raw
    try:
        return kind(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be a {kind.__name__}, got {raw!r}") from None


def get_env_overrides(env: Mapping[str, str], default_provider: str = "anthropic") -> dict:
    """Translate the environment-style configuration surface into a config dict."""
    overrides: dict = {}
    for name, (section, key, kind) in ENV_OVERRIDES.items():
        raw = env.get(name)
        if raw is None or raw == "":
            continue
        overrides.setdefault(section, {})[key] = _coerce(name, raw, kind)

    # The model override applies to whichever provider ends up selected.
    model = env.get("AI_REVIEW_MODEL")
    if model:
        provider = overrides.get("ai", {}).get("provider") or default_provider
        overrides.setdefault("ai", {}).setdefault(provider, {})["model"] = model

    return overrides


def get_effective_config(
    config_path: Optional[Path] = None,
    env: Optional[Mapping[str, str]] = None,
    cli_overrides: Optional[dict] = None,
) -> ReviewConfig:
    """Get the fully resolved configuration for a review."""
    config = copy.deepcopy(DEFAULT_CONFIG)

    path = config_path or Path.cwd() / DEFAULT_CONFIG_FILE
    file_config = load_config_file(path)
    if file_config:
        config = deep_merge(config, file_config)

    env_config = get_env_overrides(
        os.environ if env is None else env,
        default_provider=config.get("ai", {}).get("provider", "anthropic"),
    )
    if env_config:
        config = deep_merge(config, env_config)

    if cli_overrides:
        config = deep_merge(config, cli_overrides)

    try:
        return ReviewConfig.model_validate(config)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid configuration: {e}") from e
