"""Validated configuration model."""

from __future__ import annotations

from pydantic import BaseModel, Field, model_validator

from .analysis import SandboxLimits


class ReviewSettings(BaseModel):
    enabled: bool = True
    auto_trigger: bool = False
    approve_threshold: int = Field(default=80, ge=0, le=100)
    reject_threshold: int = Field(default=40, ge=0, le=100)
    sample_rate: float = Field(default=0.1, ge=0.0, le=1.0)
    max_review_seconds: float = 900

    @model_validator(mode="after")
    def _thresholds_ordered(self) -> "ReviewSettings":
        if self.approve_threshold < self.reject_threshold:
            raise ValueError("approve_threshold must be >= reject_threshold")
        return self


class ExtractionLimits(BaseModel):
    max_file_size_kb: int = 500
    max_total_size_kb: int = 5000
    max_files: int = 100
    max_extract_size_kb: int = 102400


class BudgetSettings(BaseModel):
    cost_limit_per_review: float = 1.0
    rate_limit_per_minute: int = 10


class AnalysisSettings(BaseModel):
    max_tokens_per_batch: int = 50000
    agent_max_files: int = 10
    agent_max_content_chars: int = 3000


class SandboxSettings(BaseModel):
    enabled: bool = False
    runtime: str = "docker"
    image: str = "appvet-sandbox:latest"
    timeout_seconds: int = 60
    memory_limit: str = "512m"
    cpu_limit: float = 0.5
    kill_buffer_seconds: int = 10
    tmpfs_size: str = "100m"

    @property
    def limits(self) -> SandboxLimits:
        return SandboxLimits(
            timeout_seconds=self.timeout_seconds,
            memory_limit=self.memory_limit,
            cpu_limit=self.cpu_limit,
        )


class ReviewConfig(BaseModel):
    review: ReviewSettings = ReviewSettings()
    limits: ExtractionLimits = ExtractionLimits()
    budget: BudgetSettings = BudgetSettings()
    analysis: AnalysisSettings = AnalysisSettings()
    sandbox: SandboxSettings = SandboxSettings()
    # Provider settings stay a plain dict for get_ai_provider().
    ai: dict = {}

    @property
    def model(self) -> str:
        provider = self.ai.get("provider", "anthropic")
        return self.ai.get(provider, {}).get("model", "")
