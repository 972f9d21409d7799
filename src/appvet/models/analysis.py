"""Per-analyzer result models."""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel

from .finding import Finding, WireModel


class AnalysisResult(WireModel):
    findings: list[Finding] = []
    score: int = 100
    summary: str = ""
    tokens_used: int = 0
    processing_time_ms: int = 0


class StaticAnalysisResult(AnalysisResult):
    batches_total: int = 0
    batches_completed: int = 0
    batches_failed: int = 0
    stopped_early: bool = False


class AgentSafetyResult(WireModel):
    prompt_injection_risks: list[Finding] = []
    permission_violations: list[Finding] = []
    suspicious_behaviors: list[Finding] = []
    declared_permissions: list[str] = []
    actual_permissions: list[str] = []
    score: int = 100
    summary: str = ""
    tokens_used: int = 0
    processing_time_ms: int = 0
    ai_analyzed: bool = False
    fallback_reason: Optional[str] = None

    @property
    def findings(self) -> list[Finding]:
        return [
            *self.prompt_injection_risks,
            *self.permission_violations,
            *self.suspicious_behaviors,
        ]


class ResourceUsage(WireModel):
    cpu_percent: float = 0
    memory_mb: float = 0
    disk_mb: float = 0


class SandboxLimits(BaseModel):
    timeout_seconds: int = 60
    memory_limit: str = "512m"
    cpu_limit: float = 0.5


class SandboxResult(WireModel):
    passed: bool = True
    findings: list[Finding] = []
    score: int = 100
    resource_usage: ResourceUsage = ResourceUsage()
    execution_time_ms: int = 0
    skipped: bool = False
