"""Batched static security analysis through the reasoning backend."""

from __future__ import annotations

import time
from typing import Iterable

from rich.console import Console

from ..exceptions import ReasoningError
from ..models.analysis import StaticAnalysisResult
from ..models.file import ExtractedFile
from ..models.finding import Finding, Severity, count_by_severity
from .budget import BudgetTracker, estimate_tokens
from .extractor import group_files_by_priority
from .prompts import load_prompt
from .reasoning import ReasoningClient
from .scoring import round_half_up

console = Console()

DEFAULT_MAX_TOKENS_PER_BATCH = 50000
# Prompt framing around each file (header and fence).
FILE_OVERHEAD_TOKENS = 100
SINGLE_FILE_MAX_TOKENS = 4096
BATCH_MAX_TOKENS = 8192

# Analyzer-local weights. The overall review is scored in scoring.py.
LOCAL_SEVERITY_WEIGHTS = {
    Severity.CRITICAL: 40,
    Severity.HIGH: 25,
    Severity.MEDIUM: 10,
    Severity.LOW: 3,
    Severity.INFO: 0,
}


def build_analysis_prompt(files: list[ExtractedFile]) -> str:
    parts = ["Analyze the following code files for security vulnerabilities:\n\n"]
    for f in files:
        lang = f.extension.lstrip(".")
        parts.append(f"## File: {f.relative_path}\n```{lang}\n{f.content}\n```\n\n")
    parts.append("\nReturn your findings as a JSON array.")
    return "".join(parts)


def create_file_batches(
    files: list[ExtractedFile],
    max_tokens_per_batch: int = DEFAULT_MAX_TOKENS_PER_BATCH,
) -> list[list[ExtractedFile]]:
    """Group files so each batch stays under the estimated token budget.

    A file larger than the budget on its own still gets a batch of its own.
    """
    batches: list[list[ExtractedFile]] = []
    current: list[ExtractedFile] = []
    current_tokens = 0

    for f in files:
        file_tokens = estimate_tokens(f.content) + FILE_OVERHEAD_TOKENS
        if current and current_tokens + file_tokens > max_tokens_per_batch:
            batches.append(current)
            current = []
            current_tokens = 0
        current.append(f)
        current_tokens += file_tokens

    if current:
        batches.append(current)
    return batches


def local_score(findings: Iterable[Finding]) -> int:
    deductions = sum(LOCAL_SEVERITY_WEIGHTS[f.severity] * f.confidence for f in findings)
    return max(0, min(100, round_half_up(100 - deductions)))


def summarize(result: StaticAnalysisResult) -> str:
    if result.batches_total == 0:
        return "No files to analyze."

    coverage = f"{result.batches_completed}/{result.batches_total} batches analyzed"
    if result.batches_failed:
        coverage += f", {result.batches_failed} failed"
    if result.stopped_early:
        coverage += ", stopped early on budget"

    if not result.findings:
        return f"No security issues detected ({coverage})."

    counts = count_by_severity(result.findings)
    parts = []
    if counts.critical:
        parts.append(f"{counts.critical} critical issue(s) found - immediate attention required")
    if counts.high:
        parts.append(f"{counts.high} high severity issue(s)")
    if counts.medium:
        parts.append(f"{counts.medium} medium severity issue(s)")
    if counts.low:
        parts.append(f"{counts.low} low severity issue(s)")
    if counts.info:
        parts.append(f"{counts.info} informational note(s)")

    categories = ", ".join(sorted({f.category.value for f in result.findings}))
    return (
        f"Security score: {result.score}/100. {', '.join(parts)}. "
        f"Categories: {categories}. ({coverage})"
    )


class StaticAnalyzer:
    """Runs prioritized file batches through the reasoning backend."""

    def __init__(
        self,
        client: ReasoningClient,
        budget: BudgetTracker,
        max_tokens_per_batch: int = DEFAULT_MAX_TOKENS_PER_BATCH,
    ):
        self.client = client
        self.budget = budget
        self.max_tokens_per_batch = max_tokens_per_batch

    async def _analyze_batch(self, batch: list[ExtractedFile]) -> tuple[list[Finding], int]:
        max_tokens = SINGLE_FILE_MAX_TOKENS if len(batch) == 1 else BATCH_MAX_TOKENS
        findings, response = await self.client.send_structured(
            build_analysis_prompt(batch),
            list[Finding],
            system_prompt=load_prompt("static_analysis"),
            max_tokens=max_tokens,
        )
        if len(batch) == 1:
            path = batch[0].relative_path
            findings = [
                f if f.file_path else f.model_copy(update={"file_path": path})
                for f in findings
            ]
        return findings, response.tokens.total

    async def analyze(self, files: list[ExtractedFile]) -> StaticAnalysisResult:
        start = time.monotonic()
        high, medium, low = group_files_by_priority(files)
        batches = create_file_batches([*high, *medium, *low], self.max_tokens_per_batch)

        console.print(
            f"  [cyan]Running static analysis...[/cyan] "
            f"{len(files)} files in {len(batches)} batches"
        )

        findings: list[Finding] = []
        tokens = 0
        completed = 0
        failed = 0
        stopped_early = False

        for i, batch in enumerate(batches, 1):
            reason = self.budget.exhausted_reason()
            if reason:
                console.print(
                    f"  [yellow]WARN[/yellow] {reason.capitalize()} budget exhausted, "
                    f"stopping after {i - 1}/{len(batches)} batches"
                )
                stopped_early = True
                break

            try:
                batch_findings, batch_tokens = await self._analyze_batch(batch)
            except ReasoningError as e:
                failed += 1
                console.print(f"  [red]ERROR[/red] Batch {i}/{len(batches)}: {e}")
                continue

            findings.extend(batch_findings)
            tokens += batch_tokens
            completed += 1
            console.print(
                f"  [dim]Batch {i}/{len(batches)}: {len(batch)} files, "
                f"{len(batch_findings)} findings[/dim]"
            )

        result = StaticAnalysisResult(
            findings=findings,
            score=local_score(findings),
            tokens_used=tokens,
            processing_time_ms=int((time.monotonic() - start) * 1000),
            batches_total=len(batches),
            batches_completed=completed,
            batches_failed=failed,
            stopped_early=stopped_early,
        )
        result = result.model_copy(update={"summary": summarize(result)})

        status = "[green]OK[/green]" if not failed else "[yellow]WARN[/yellow]"
        console.print(
            f"  {status} Static analysis: {len(findings)} findings, "
            f"{completed}/{len(batches)} batches ({result.processing_time_ms}ms)"
        )
        return result
