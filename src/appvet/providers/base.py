"""Reasoning-backend provider abstraction with retry logic."""

from __future__ import annotations

import asyncio
from typing import Optional, Protocol, runtime_checkable

from rich.console import Console

from ..models.provider import CompletionResult
from ..utils.sanitize import sanitize_error

console = Console()

RATE_LIMITED_STATUS = 429
OVERLOADED_STATUSES = (503, 529)


@runtime_checkable
class AIProvider(Protocol):
    """Protocol that all AI providers must implement."""

    name: str
    model: str

    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        max_tokens: int = 0,
        temperature: float = 0.0,
    ) -> CompletionResult: ...

    async def complete_with_retry(
        self,
        system_prompt: str,
        user_prompt: str,
        max_tokens: int = 0,
        temperature: float = 0.0,
    ) -> CompletionResult: ...


def is_rate_limited(result: CompletionResult) -> bool:
    return result.status_code == RATE_LIMITED_STATUS


def is_overloaded(result: CompletionResult) -> bool:
    return result.status_code in OVERLOADED_STATUSES


class BaseProvider:
    """Base class with shared retry logic and config handling."""

    name: str = "base"
    default_model: str = ""

    def __init__(self, provider_config: dict, common_config: dict):
        self.config = provider_config
        self.common = common_config
        self.max_attempts = common_config.get("retry_attempts", 3)
        self.retry_delay = common_config.get("retry_delay_seconds", 1)

    @property
    def model(self) -> str:
        return self.config.get("model", self.default_model)

    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        max_tokens: int = 0,
        temperature: float = 0.0,
    ) -> CompletionResult:
        raise NotImplementedError

    async def complete_with_retry(
        self,
        system_prompt: str,
        user_prompt: str,
        max_tokens: int = 0,
        temperature: float = 0.0,
    ) -> CompletionResult:
        """Wrap complete() with backoff for rate-limit and overload responses.

        Every other failure is returned on the first attempt.
        """
        result = CompletionResult(success=False, error="Max retries exceeded")

        for attempt in range(self.max_attempts):
            result = await self.complete(system_prompt, user_prompt, max_tokens, temperature)
            if result.success:
                return result

            rate_limited = is_rate_limited(result)
            overloaded = is_overloaded(result)
            if not (rate_limited or overloaded) or attempt + 1 >= self.max_attempts:
                break

            wait_time = self.retry_delay * (2 ** attempt)
            if overloaded:
                wait_time *= 2
                console.print(
                    f"  [yellow]WARN[/yellow] {self.name} overloaded, retrying in {wait_time}s"
                )
            else:
                console.print(
                    f"  [yellow]WARN[/yellow] {self.name} rate limited, retrying in {wait_time}s"
                )
            await asyncio.sleep(wait_time)

        return result.model_copy(update={"error": sanitize_error(result.error or "")})


def get_ai_provider(
    config: dict,
    provider_override: Optional[str] = None,
    model_override: Optional[str] = None,
) -> BaseProvider:
    """Factory function to create the configured AI provider."""
    ai_config = config.get("ai", {})
    provider_name = provider_override or ai_config.get("provider", "anthropic")

    # Get provider-specific config
    provider_config = dict(ai_config.get(provider_name, {}))
    if model_override:
        provider_config["model"] = model_override

    # Build common config (ai section minus provider sub-configs)
    common_config = {
        k: v for k, v in ai_config.items() if k not in ("anthropic", "openai")
    }

    if provider_name == "anthropic":
        from .anthropic import AnthropicProvider
        return AnthropicProvider(provider_config, common_config)
    elif provider_name == "openai":
        from .openai_provider import OpenAIProvider
        return OpenAIProvider(provider_config, common_config)
    else:
        raise ValueError(f"Unknown AI provider: {provider_name}")
