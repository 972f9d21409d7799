"""Markdown rendering of findings and review results."""

from __future__ import annotations

from ..models.finding import Finding, Severity
from ..models.review import ReviewResult

RECOMMENDATION_LABELS = {
    "approve": "APPROVE",
    "reject": "REJECT",
    "manual_review": "MANUAL REVIEW",
}


def format_findings_for_display(findings: list[Finding]) -> str:
    """Render findings grouped by severity, most severe first."""
    if not findings:
        return "No issues found."

    lines: list[str] = []
    for severity in Severity:
        items = [f for f in findings if f.severity == severity]
        if not items:
            continue

        lines.append(f"\n## {severity.value.upper()} ({len(items)})")
        for f in items:
            lines.append(f"\n### {f.title}")
            lines.append(f"- **Category:** {f.category.value}")
            lines.append(f"- **Confidence:** {round(f.confidence * 100)}%")
            if f.file_path:
                loc = f.file_path
                if f.line_start:
                    loc += f":{f.line_start}"
                lines.append(f"- **Location:** {loc}")
            lines.append(f"- **Description:** {f.description}")
            if f.suggestion:
                lines.append(f"- **Suggestion:** {f.suggestion}")

    return "\n".join(lines)


def _score(value) -> str:
    return "n/a" if value is None else f"{value}/100"


def generate_review_report(result: ReviewResult) -> str:
    """Full markdown report for one review."""
    rec = result.recommendation.value if result.recommendation else "none"

    lines: list[str] = []
    lines.append("# Security Review Report")
    lines.append("")
    lines.append(f"**App:** {result.app_id}")
    lines.append(f"**File hash:** `{result.file_hash}`")
    lines.append(f"**Status:** {result.status.value}")
    lines.append(f"**Recommendation:** {RECOMMENDATION_LABELS.get(rec, rec.upper())}")
    lines.append(f"**Date:** {result.created_at.strftime('%Y-%m-%d %H:%M:%S')} UTC")
    lines.append(f"**Duration:** {round(result.processing_time_ms / 1000, 1)}s")
    if result.error_message:
        lines.append(f"**Error:** {result.error_message}")
    lines.append("")

    lines.append("## Scores")
    lines.append("")
    lines.append("| Component | Score |")
    lines.append("|-----------|-------|")
    lines.append(f"| **Overall** | **{result.overall_score}/100** |")
    lines.append(f"| Security | {_score(result.security_score)} |")
    lines.append(f"| Code quality | {_score(result.code_quality_score)} |")
    lines.append(f"| Agent safety | {_score(result.agent_safety_score)} |")
    lines.append(f"| Sandbox | {_score(result.sandbox_score)} |")
    lines.append("")

    lines.append("## Summary")
    lines.append("")
    lines.append(result.summary or "(no summary)")
    lines.append("")

    if result.stages:
        lines.append("## Stages")
        lines.append("")
        lines.append("| Stage | Status | Detail | Duration |")
        lines.append("|-------|--------|--------|----------|")
        for stage in result.stages:
            status = stage.status.value + (" (partial)" if stage.degraded else "")
            lines.append(
                f"| {stage.name} | {status} | {stage.detail or '-'} | {stage.duration_ms}ms |"
            )
        lines.append("")

    lines.append("## Findings")
    lines.append(format_findings_for_display(result.findings))
    lines.append("")
    lines.append(
        f"---\nTokens used: {result.tokens_used} | "
        f"Estimated cost: ${result.cost_estimate:.4f}"
    )
    return "\n".join(lines)
