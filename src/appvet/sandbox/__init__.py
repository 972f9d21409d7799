"""Sandbox runners."""

from __future__ import annotations

from typing import Union

from ..exceptions import ConfigurationError
from ..models.config import ReviewConfig, SandboxSettings
from .base import NullSandbox, Sandbox, classify_signals, sandbox_score, skipped_result
from .docker import DockerSandbox

__all__ = [
    "DockerSandbox",
    "NullSandbox",
    "Sandbox",
    "classify_signals",
    "get_sandbox",
    "sandbox_score",
    "skipped_result",
]


def get_sandbox(config: Union[ReviewConfig, SandboxSettings]) -> Sandbox:
    """Factory for the configured sandbox runtime."""
    settings = config.sandbox if isinstance(config, ReviewConfig) else config
    if not settings.enabled:
        return NullSandbox()
    if settings.runtime == "docker":
        return DockerSandbox(settings)
    raise ConfigurationError(f"Unknown sandbox runtime: {settings.runtime}")
