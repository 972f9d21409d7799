"""AI provider data models."""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel


class CompletionResult(BaseModel):
    success: bool
    content: Optional[str] = None
    tokens_used: Optional[dict] = None
    error: Optional[str] = None
    status_code: Optional[int] = None


class TokenUsage(BaseModel):
    input: int = 0
    output: int = 0
    total: int = 0


class ReasoningResponse(BaseModel):
    content: str
    tokens: TokenUsage = TokenUsage()
    cost: float = 0.0
    latency_ms: int = 0
