"""Score aggregation and recommendation logic.

Combines the per-stage results of one review into a terminal
``ReviewResult``.

- security: every non-code-quality finding from the pattern scan and
  static analysis
- code quality: code_quality findings, present only if static analysis ran
- agent safety / sandbox: the analyzer's own score, present only if it ran

The overall score is the weighted mean of the components that are present.
"""

from __future__ import annotations

import math
import uuid
from typing import Iterable, Optional

from ..models.analysis import AgentSafetyResult, SandboxResult, StaticAnalysisResult
from ..models.finding import (
    Finding,
    FindingCategory,
    Severity,
    count_by_severity,
    dedupe_findings,
    sort_by_severity,
)
from ..models.review import (
    Recommendation,
    ReviewResult,
    ReviewStatus,
    StageOutcome,
    StageStatus,
    utcnow,
)

SEVERITY_WEIGHTS = {
    Severity.CRITICAL: 40,
    Severity.HIGH: 25,
    Severity.MEDIUM: 15,
    Severity.LOW: 5,
    Severity.INFO: 0,
}

COMPONENT_WEIGHTS = {
    "security": 0.5,
    "code_quality": 0.15,
    "agent_safety": 0.2,
    "sandbox": 0.15,
}

FORCE_REJECT_CATEGORIES = (FindingCategory.MALWARE, FindingCategory.BACKDOOR)
FORCE_REJECT_CONFIDENCE = 0.8
TOP_ISSUES = 3


def round_half_up(value: float) -> int:
    """Halves round up; builtin round() sends them to the even neighbour."""
    return math.floor(value + 0.5)


def calculate_score(findings: Iterable[Finding]) -> int:
    """100 minus confidence-weighted severity deductions, clamped to 0..100."""
    deductions = sum(SEVERITY_WEIGHTS[f.severity] * f.confidence for f in findings)
    return max(0, min(100, round_half_up(100 - deductions)))


def get_recommendation(
    score: int,
    approve_threshold: int = 80,
    reject_threshold: int = 40,
) -> Recommendation:
    if score >= approve_threshold:
        return Recommendation.APPROVE
    if score < reject_threshold:
        return Recommendation.REJECT
    return Recommendation.MANUAL_REVIEW


def has_critical_findings(findings: Iterable[Finding]) -> bool:
    """True when a confident critical malware/backdoor finding forces reject."""
    return any(
        f.severity == Severity.CRITICAL
        and f.category in FORCE_REJECT_CATEGORIES
        and f.confidence >= FORCE_REJECT_CONFIDENCE
        for f in findings
    )


def has_blocking_findings(findings: Iterable[Finding]) -> bool:
    return any(f.severity in (Severity.CRITICAL, Severity.HIGH) for f in findings)


def apply_overrides(recommendation: Recommendation, findings: list[Finding]) -> Recommendation:
    """Force reject on confident malware; never auto-approve with critical/high findings."""
    if has_critical_findings(findings):
        return Recommendation.REJECT
    if recommendation == Recommendation.APPROVE and has_blocking_findings(findings):
        return Recommendation.MANUAL_REVIEW
    return recommendation


def calculate_overall_score(
    security: int,
    code_quality: Optional[int] = None,
    agent_safety: Optional[int] = None,
    sandbox: Optional[int] = None,
) -> int:
    """Weighted mean renormalized over the components that are present."""
    components = {
        "security": security,
        "code_quality": code_quality,
        "agent_safety": agent_safety,
        "sandbox": sandbox,
    }
    weighted_sum = 0.0
    total_weight = 0.0
    for name, score in components.items():
        if score is None:
            continue
        weighted_sum += score * COMPONENT_WEIGHTS[name]
        total_weight += COMPONENT_WEIGHTS[name]
    return round_half_up(weighted_sum / total_weight)


def degradation_notes(stages: Iterable[StageOutcome]) -> list[str]:
    notes = []
    for stage in stages:
        if stage.status == StageStatus.RAN and not stage.degraded:
            continue
        label = stage.name.replace("_", " ")
        if stage.status == StageStatus.RAN:
            note = f"{label} partial"
        else:
            note = f"{label} {stage.status.value}"
        if stage.detail:
            note += f" ({stage.detail})"
        notes.append(note)
    return notes


def generate_summary(
    findings: list[Finding],
    overall_score: int,
    recommendation: Recommendation,
    stages: Iterable[StageOutcome] = (),
) -> str:
    parts: list[str] = []

    if recommendation == Recommendation.APPROVE:
        parts.append("This app passed security review.")
    elif recommendation == Recommendation.REJECT:
        parts.append("This app failed security review due to serious issues.")
    else:
        parts.append("This app requires manual review.")

    counts = count_by_severity(findings)
    issues = [
        f"{n} {label}"
        for n, label in (
            (counts.critical, "critical"),
            (counts.high, "high"),
            (counts.medium, "medium"),
            (counts.low, "low"),
        )
        if n
    ]
    if issues:
        parts.append(f"Found {', '.join(issues)} severity issue(s).")
    else:
        parts.append("No security issues detected.")

    parts.append(f"Overall score: {overall_score}/100.")

    top = [f for f in sort_by_severity(findings) if f.severity in (Severity.CRITICAL, Severity.HIGH)]
    if top:
        parts.append("Key issues: " + "; ".join(f.title for f in top[:TOP_ISSUES]) + ".")

    notes = degradation_notes(stages)
    if notes:
        parts.append("Reduced analysis depth: " + "; ".join(notes) + ".")

    return " ".join(parts)


def aggregate_results(
    app_id: str,
    file_hash: str,
    pattern_findings: list[Finding],
    stages: list[StageOutcome],
    static: Optional[StaticAnalysisResult] = None,
    agent_safety: Optional[AgentSafetyResult] = None,
    sandbox: Optional[SandboxResult] = None,
    approve_threshold: int = 80,
    reject_threshold: int = 40,
    review_id: Optional[str] = None,
    tokens_used: int = 0,
    cost_estimate: float = 0.0,
) -> ReviewResult:
    """Build the completed ReviewResult from whatever stages ran."""
    static_findings = static.findings if static is not None else []
    security_findings = dedupe_findings(
        f
        for f in [*pattern_findings, *static_findings]
        if f.category != FindingCategory.CODE_QUALITY
    )
    security_score = calculate_score(security_findings)

    code_quality_score = None
    if static is not None:
        code_quality_score = calculate_score(
            dedupe_findings(f for f in static_findings if f.category == FindingCategory.CODE_QUALITY)
        )

    agent_safety_score = agent_safety.score if agent_safety is not None else None
    sandbox_score = None
    if sandbox is not None and not sandbox.skipped:
        sandbox_score = sandbox.score

    findings = dedupe_findings(
        [
            *pattern_findings,
            *static_findings,
            *(agent_safety.findings if agent_safety is not None else []),
            *(sandbox.findings if sandbox is not None else []),
        ]
    )

    overall = calculate_overall_score(
        security_score, code_quality_score, agent_safety_score, sandbox_score
    )
    recommendation = apply_overrides(
        get_recommendation(overall, approve_threshold, reject_threshold), findings
    )
    counts = count_by_severity(findings)

    return ReviewResult(
        id=review_id or uuid.uuid4().hex,
        app_id=app_id,
        file_hash=file_hash,
        status=ReviewStatus.COMPLETED,
        overall_score=overall,
        security_score=security_score,
        code_quality_score=code_quality_score,
        agent_safety_score=agent_safety_score,
        sandbox_score=sandbox_score,
        findings=findings,
        critical_count=counts.critical,
        high_count=counts.high,
        medium_count=counts.medium,
        low_count=counts.low,
        recommendation=recommendation,
        summary=generate_summary(findings, overall, recommendation, stages),
        tokens_used=tokens_used,
        cost_estimate=cost_estimate,
        stages=stages,
        completed_at=utcnow(),
    )


def build_immediate_reject(
    app_id: str,
    file_hash: str,
    findings: list[Finding],
    stages: list[StageOutcome],
    review_id: Optional[str] = None,
) -> ReviewResult:
    """Terminal reject for blatant malware caught by the pattern scan."""
    findings = dedupe_findings(findings)
    counts = count_by_severity(findings)
    malware = [
        f for f in findings
        if f.severity == Severity.CRITICAL and f.category in FORCE_REJECT_CATEGORIES
    ]
    titles = "; ".join(f.title for f in malware[:TOP_ISSUES])
    summary = (
        "This app failed security review due to serious issues. "
        f"Critical malware patterns detected in quick scan: {titles}. "
        "Deeper analysis was skipped."
    )
    return ReviewResult(
        id=review_id or uuid.uuid4().hex,
        app_id=app_id,
        file_hash=file_hash,
        status=ReviewStatus.COMPLETED,
        overall_score=0,
        security_score=0,
        findings=findings,
        critical_count=counts.critical,
        high_count=counts.high,
        medium_count=counts.medium,
        low_count=counts.low,
        recommendation=Recommendation.REJECT,
        summary=summary,
        stages=stages,
        completed_at=utcnow(),
    )
