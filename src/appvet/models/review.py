"""Review run data models."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import ConfigDict, Field
from pydantic.alias_generators import to_camel

from .finding import Finding, WireModel


class ReviewStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class Recommendation(str, Enum):
    APPROVE = "approve"
    REJECT = "reject"
    MANUAL_REVIEW = "manual_review"


class StageStatus(str, Enum):
    RAN = "ran"
    SKIPPED = "skipped"
    FAILED = "failed"


class StageOutcome(WireModel):
    name: str
    status: StageStatus
    detail: str = ""
    degraded: bool = False
    duration_ms: int = 0


class ReviewMetadata(WireModel):
    name: str = ""
    description: str = ""
    category: str = ""
    price: float = 0.0


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ReviewResult(WireModel):
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, frozen=True
    )

    id: str
    app_id: str
    file_hash: str
    status: ReviewStatus = ReviewStatus.PENDING

    overall_score: int = 0
    security_score: int = 0
    code_quality_score: Optional[int] = None
    agent_safety_score: Optional[int] = None
    sandbox_score: Optional[int] = None

    findings: list[Finding] = []
    critical_count: int = 0
    high_count: int = 0
    medium_count: int = 0
    low_count: int = 0

    recommendation: Optional[Recommendation] = None
    summary: str = ""

    tokens_used: int = 0
    cost_estimate: float = 0.0
    processing_time_ms: int = 0
    error_message: Optional[str] = None
    stages: list[StageOutcome] = []

    created_at: datetime = Field(default_factory=utcnow)
    completed_at: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in (ReviewStatus.COMPLETED, ReviewStatus.FAILED)
