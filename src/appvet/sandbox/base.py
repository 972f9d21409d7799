"""Sandbox interface, log classification and the disabled-sandbox stand-in."""

from __future__ import annotations

from pathlib import Path
from typing import Optional, Protocol, runtime_checkable

from ..models.analysis import ResourceUsage, SandboxLimits, SandboxResult
from ..models.finding import Finding, FindingCategory, Severity

SEVERITY_PENALTIES = {
    Severity.CRITICAL: 40,
    Severity.HIGH: 25,
    Severity.MEDIUM: 15,
    Severity.LOW: 5,
    Severity.INFO: 0,
}

TIMEOUT_EXIT_CODES = (124,)


@runtime_checkable
class Sandbox(Protocol):
    """Isolated runtime for dynamic behavioural checks."""

    name: str

    async def is_available(self) -> bool: ...

    async def run(self, code_path: Path, limits: SandboxLimits) -> SandboxResult: ...


def classify_signals(
    logs: str,
    status: Optional[str] = None,
    exit_code: Optional[int] = None,
    timed_out: bool = False,
    timeout_seconds: int = 60,
) -> list[Finding]:
    """Turn container logs and exit information into findings."""
    findings: list[Finding] = []
    lower = logs.lower()

    if "ECONNREFUSED" in logs or "network" in lower:
        findings.append(Finding(
            severity=Severity.MEDIUM,
            category=FindingCategory.SUSPICIOUS_BEHAVIOR,
            title="Network access attempt",
            description="App attempted to make network requests while isolated",
            confidence=0.8,
        ))

    if "EACCES" in logs or "permission denied" in lower:
        findings.append(Finding(
            severity=Severity.LOW,
            category=FindingCategory.PERMISSION_VIOLATION,
            title="Permission denied",
            description="App attempted to access restricted resources",
            confidence=0.7,
        ))

    if timed_out or status == "timeout" or exit_code in TIMEOUT_EXIT_CODES:
        findings.append(Finding(
            severity=Severity.MEDIUM,
            category=FindingCategory.SUSPICIOUS_BEHAVIOR,
            title="Execution timeout",
            description=f"App did not complete within {timeout_seconds} seconds",
            confidence=0.9,
        ))
    elif status == "error" or (exit_code is not None and exit_code != 0):
        findings.append(Finding(
            severity=Severity.LOW,
            category=FindingCategory.CODE_QUALITY,
            title="Runtime error",
            description="App encountered an error during execution",
            confidence=0.8,
        ))

    return findings


def sandbox_score(findings: list[Finding]) -> int:
    """Flat per-finding penalties, floored at 0. Confidence is not applied."""
    return max(0, 100 - sum(SEVERITY_PENALTIES[f.severity] for f in findings))


def build_result(
    findings: list[Finding],
    execution_time_ms: int = 0,
    resource_usage: Optional[ResourceUsage] = None,
) -> SandboxResult:
    return SandboxResult(
        passed=not any(f.severity in (Severity.CRITICAL, Severity.HIGH) for f in findings),
        findings=findings,
        score=sandbox_score(findings),
        resource_usage=resource_usage or ResourceUsage(),
        execution_time_ms=execution_time_ms,
    )


def skipped_result(reason: str) -> SandboxResult:
    """Neutral passing result used whenever no sandbox run happens."""
    return SandboxResult(
        passed=True,
        findings=[
            Finding(
                severity=Severity.INFO,
                category=FindingCategory.SUSPICIOUS_BEHAVIOR,
                title="Sandbox skipped",
                description=reason,
                confidence=1.0,
            )
        ],
        score=100,
        skipped=True,
    )


class NullSandbox:
    """Used when sandboxing is disabled. Never touches a container runtime."""

    name = "none"

    async def is_available(self) -> bool:
        return False

    async def run(self, code_path: Path, limits: SandboxLimits) -> SandboxResult:
        return skipped_result("Sandbox analysis is disabled by configuration")
