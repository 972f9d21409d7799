"""Reasoning-backend client: budget enforcement and structured replies."""

from __future__ import annotations

import json
import re
import time
from typing import Any, Optional, TypeVar

from pydantic import TypeAdapter, ValidationError

from ..exceptions import (
    BackendOverloaded,
    BackendRateLimited,
    ReasoningError,
    StructuredDecodeError,
)
from ..models.provider import ReasoningResponse, TokenUsage
from ..providers.base import AIProvider, is_overloaded, is_rate_limited
from ..utils.sanitize import sanitize_error
from .budget import BudgetTracker

T = TypeVar("T")

DEFAULT_MAX_TOKENS = 4096
_FENCE_RE = re.compile(r"```(?:json)?\s*([\s\S]*?)\s*```")
_decoder = json.JSONDecoder()


def strip_code_fences(text: str) -> str:
    match = _FENCE_RE.search(text)
    return match.group(1) if match else text


def extract_json(text: str) -> Any:
    """Return the first well-formed JSON array or object in ``text``.

    Markdown code fences are stripped first. Raises StructuredDecodeError
    when nothing decodes.
    """
    body = strip_code_fences(text or "")
    for i, ch in enumerate(body):
        if ch not in "[{":
            continue
        try:
            value, _ = _decoder.raw_decode(body, i)
        except json.JSONDecodeError:
            continue
        return value
    preview = (text or "")[:200]
    raise StructuredDecodeError(f"No JSON found in backend reply: {preview!r}")


class ReasoningClient:
    """Budget-aware wrapper around an AI provider."""

    def __init__(
        self,
        provider: AIProvider,
        budget: BudgetTracker,
        model: Optional[str] = None,
    ):
        self.provider = provider
        self.budget = budget
        self.model = model or getattr(provider, "model", "")

    async def send(
        self,
        prompt: str,
        system_prompt: str,
        max_tokens: int = DEFAULT_MAX_TOKENS,
        temperature: float = 0.0,
    ) -> ReasoningResponse:
        # Fails fast with RateLimitExceeded; callers never wait on the window.
        self.budget.acquire_slot()

        start = time.monotonic()
        result = await self.provider.complete_with_retry(
            system_prompt, prompt, max_tokens, temperature
        )
        latency_ms = int((time.monotonic() - start) * 1000)

        if not result.success:
            message = sanitize_error(result.error or "Unknown backend error")
            if is_rate_limited(result):
                raise BackendRateLimited(message)
            if is_overloaded(result):
                raise BackendOverloaded(message)
            raise ReasoningError(message)

        usage = result.tokens_used or {}
        input_tokens = int(usage.get("input", 0))
        output_tokens = int(usage.get("output", 0))
        cost = self.budget.record_usage(self.model, input_tokens, output_tokens)

        return ReasoningResponse(
            content=result.content or "",
            tokens=TokenUsage(
                input=input_tokens,
                output=output_tokens,
                total=input_tokens + output_tokens,
            ),
            cost=cost,
            latency_ms=latency_ms,
        )

    async def send_structured(
        self,
        prompt: str,
        response_type: type[T],
        system_prompt: str,
        max_tokens: int = DEFAULT_MAX_TOKENS,
        temperature: float = 0.0,
    ) -> tuple[T, ReasoningResponse]:
        """Send a prompt and validate the JSON reply against ``response_type``."""
        response = await self.send(prompt, system_prompt, max_tokens, temperature)
        raw = extract_json(response.content)
        try:
            data = TypeAdapter(response_type).validate_python(raw)
        except ValidationError as e:
            raise StructuredDecodeError(
                f"Backend reply does not match {getattr(response_type, '__name__', response_type)}: "
                f"{e.error_count()} validation error(s)"
            ) from e
        return data, response
