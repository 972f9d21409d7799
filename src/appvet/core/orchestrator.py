"""Review orchestrator.

Runs one upload through extract -> pattern scan -> static analysis ->
agent safety -> sandbox -> scoring. Every stage is recorded as a
``StageOutcome``; only extraction failures and unexpected errors fail the
review, everything else degrades.
"""

from __future__ import annotations

import random
import time
import uuid
from pathlib import Path
from typing import Callable, Optional

from rich.console import Console

from .. import __version__
from ..exceptions import ConfigurationError, ExtractionError, SandboxError
from ..models.analysis import AgentSafetyResult, SandboxResult, StaticAnalysisResult
from ..models.config import ReviewConfig
from ..models.finding import Severity
from ..models.review import (
    ReviewMetadata,
    ReviewResult,
    ReviewStatus,
    StageOutcome,
    StageStatus,
    utcnow,
)
from ..providers.base import AIProvider, get_ai_provider
from ..sandbox import Sandbox, get_sandbox
from ..utils.sanitize import sanitize_error
from .agent_safety import AgentSafetyAnalyzer
from .budget import BudgetTracker, RateLimiter
from .config import get_effective_config
from .extractor import ExtractionResult, extracted_archive, get_file_stats
from .patterns import is_immediate_reject, scan_patterns
from .reasoning import ReasoningClient
from .scoring import aggregate_results, build_immediate_reject, get_recommendation
from .static_analyzer import StaticAnalyzer
from .store import ReviewStore

console = Console()

QUICK_SCORES = {Severity.CRITICAL: 0, Severity.HIGH: 30}
QUICK_DEFAULT_SCORE = 60


def _elapsed_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)


def _stage(
    name: str,
    status: StageStatus,
    started: float,
    detail: str = "",
    degraded: bool = False,
) -> StageOutcome:
    return StageOutcome(
        name=name,
        status=status,
        detail=detail,
        degraded=degraded,
        duration_ms=_elapsed_ms(started),
    )


class ReviewOrchestrator:
    """Owns the shared rate limiter and drives each review through its stages."""

    def __init__(
        self,
        config: ReviewConfig,
        provider: Optional[AIProvider] = None,
        sandbox: Optional[Sandbox] = None,
        rate_limiter: Optional[RateLimiter] = None,
        store: Optional[ReviewStore] = None,
    ):
        self.config = config
        if provider is None:
            try:
                provider = get_ai_provider({"ai": config.ai})
            except ValueError as e:
                raise ConfigurationError(str(e)) from e
        self.provider = provider
        self.sandbox = sandbox or get_sandbox(config)
        self.rate_limiter = rate_limiter or RateLimiter(config.budget.rate_limit_per_minute)
        self.store = store

    # -- helpers -------------------------------------------------------------

    def new_budget(self) -> BudgetTracker:
        """Fresh per-review ledger sharing this orchestrator's rate limiter."""
        return BudgetTracker(
            cost_limit=self.config.budget.cost_limit_per_review,
            rate_limiter=self.rate_limiter,
            time_limit_seconds=self.config.review.max_review_seconds,
        )

    def _save(self, result: ReviewResult) -> None:
        if self.store is not None:
            self.store.save(result)

    def should_trigger(
        self,
        basic_score: int,
        rng: Callable[[], float] = random.random,
    ) -> bool:
        """Decide whether an upload with this basic score gets a full review."""
        settings = self.config.review
        if not settings.enabled or not settings.auto_trigger:
            return False
        if basic_score < settings.approve_threshold:
            return True
        # Sampling audit of high-scoring uploads
        return rng() < settings.sample_rate

    # -- stages --------------------------------------------------------------

    async def _static_stage(
        self,
        extraction: ExtractionResult,
        client: ReasoningClient,
        budget: BudgetTracker,
        stages: list[StageOutcome],
    ) -> Optional[StaticAnalysisResult]:
        started = time.monotonic()
        reason = budget.exhausted_reason()
        if reason:
            console.print(f"  [yellow]WARN[/yellow] Skipping static analysis: {reason} budget exhausted")
            stages.append(_stage("static_analysis", StageStatus.SKIPPED, started, f"{reason} budget exhausted"))
            return None

        analyzer = StaticAnalyzer(client, budget, self.config.analysis.max_tokens_per_batch)
        result = await analyzer.analyze(extraction.files)

        if result.batches_total and result.batches_completed == 0:
            if result.batches_failed:
                detail = f"all {result.batches_failed} batches failed"
                stages.append(_stage("static_analysis", StageStatus.FAILED, started, detail))
            else:
                stages.append(_stage("static_analysis", StageStatus.SKIPPED, started, "budget exhausted"))
            return None

        notes = []
        if result.batches_failed:
            notes.append(f"{result.batches_failed}/{result.batches_total} batches failed")
        if result.stopped_early:
            notes.append("stopped early on budget")
        stages.append(
            _stage(
                "static_analysis", StageStatus.RAN, started,
                ", ".join(notes) or f"{len(result.findings)} findings",
                degraded=bool(notes),
            )
        )
        return result

    async def _agent_safety_stage(
        self,
        extraction: ExtractionResult,
        client: ReasoningClient,
        budget: BudgetTracker,
        metadata: Optional[ReviewMetadata],
        stages: list[StageOutcome],
    ) -> AgentSafetyResult:
        started = time.monotonic()
        analyzer = AgentSafetyAnalyzer(
            client,
            budget,
            max_files=self.config.analysis.agent_max_files,
            max_content_chars=self.config.analysis.agent_max_content_chars,
        )
        result = await analyzer.analyze(extraction.files, metadata)
        if result.fallback_reason:
            stages.append(
                _stage("agent_safety", StageStatus.RAN, started,
                       f"heuristics only, {result.fallback_reason}", degraded=True)
            )
        else:
            stages.append(_stage("agent_safety", StageStatus.RAN, started, f"score {result.score}"))
        return result

    async def _sandbox_stage(
        self,
        extraction: ExtractionResult,
        budget: BudgetTracker,
        stages: list[StageOutcome],
    ) -> Optional[SandboxResult]:
        started = time.monotonic()
        if budget.is_time_limit_exceeded():
            console.print("  [yellow]WARN[/yellow] Skipping sandbox: time budget exhausted")
            stages.append(_stage("sandbox", StageStatus.SKIPPED, started, "time budget exhausted"))
            return None

        try:
            result = await self.sandbox.run(extraction.extract_dir, self.config.sandbox.limits)
        except SandboxError as e:
            message = sanitize_error(str(e))
            console.print(f"  [red]ERROR[/red] Sandbox failed: {message}")
            stages.append(_stage("sandbox", StageStatus.FAILED, started, message))
            return None

        if result.skipped:
            detail = result.findings[0].description if result.findings else ""
            stages.append(_stage("sandbox", StageStatus.SKIPPED, started, detail))
        else:
            stages.append(_stage("sandbox", StageStatus.RAN, started, f"score {result.score}"))
        return result

    # -- pipeline ------------------------------------------------------------

    async def _run_pipeline(
        self,
        processing: ReviewResult,
        archive_path: Path,
        metadata: Optional[ReviewMetadata],
        budget: BudgetTracker,
    ) -> ReviewResult:
        stages: list[StageOutcome] = []
        review = self.config.review
        app_id, file_hash = processing.app_id, processing.file_hash

        started = time.monotonic()
        console.print("  [cyan]Extracting archive...[/cyan]")
        with extracted_archive(archive_path, self.config.limits) as extraction:
            stats = get_file_stats(extraction.files)
            console.print(
                f"  [green]OK[/green] Extracted {stats['total_files']} files "
                f"({round(stats['total_size'] / 1024)} KB)"
            )
            stages.append(_stage("extract", StageStatus.RAN, started, f"{stats['total_files']} files"))

            if not extraction.files:
                result = aggregate_results(app_id, file_hash, [], stages, review_id=processing.id)
                return result.model_copy(update={"summary": "No code files found to analyze."})

            started = time.monotonic()
            console.print("  [cyan]Running pattern scan...[/cyan]")
            pattern_findings = scan_patterns(extraction.files)
            stages.append(
                _stage("pattern_scan", StageStatus.RAN, started, f"{len(pattern_findings)} findings")
            )
            console.print(f"  [green]OK[/green] Pattern scan: {len(pattern_findings)} findings")

            if is_immediate_reject(pattern_findings):
                console.print("  [red]REJECT[/red] Critical malware detected, skipping deeper analysis")
                return build_immediate_reject(
                    app_id, file_hash, pattern_findings, stages, review_id=processing.id
                )

            client = ReasoningClient(self.provider, budget, model=self.config.model or None)
            static = await self._static_stage(extraction, client, budget, stages)
            agent_safety = await self._agent_safety_stage(extraction, client, budget, metadata, stages)
            sandbox = await self._sandbox_stage(extraction, budget, stages)

            return aggregate_results(
                app_id,
                file_hash,
                pattern_findings,
                stages,
                static=static,
                agent_safety=agent_safety,
                sandbox=sandbox,
                approve_threshold=review.approve_threshold,
                reject_threshold=review.reject_threshold,
                review_id=processing.id,
            )

    async def review(
        self,
        app_id: str,
        archive_path: Path,
        file_hash: str,
        metadata: Optional[ReviewMetadata] = None,
    ) -> ReviewResult:
        """Run the full review pipeline and return the terminal result."""
        if not self.config.review.enabled:
            raise ConfigurationError("Review pipeline is disabled (ENABLE_AI_REVIEW=false)")

        start = time.monotonic()
        processing = ReviewResult(
            id=uuid.uuid4().hex,
            app_id=app_id,
            file_hash=file_hash,
            status=ReviewStatus.PROCESSING,
        )
        self._save(processing)
        budget = self.new_budget()

        console.print()
        console.print(f"  [bold cyan]APPVET[/bold cyan] v{__version__}")
        console.print(f"  App:      [white]{app_id}[/white]")
        console.print(f"  Provider: [white]{getattr(self.provider, 'name', '?')}[/white] ({self.config.model})")
        console.print(f"  Sandbox:  [white]{getattr(self.sandbox, 'name', '?')}[/white]")
        console.print()

        try:
            result = await self._run_pipeline(processing, Path(archive_path), metadata, budget)
        except ExtractionError as e:
            message = sanitize_error(str(e))
            console.print(f"  [red]ERROR[/red] Extraction failed: {message}")
            result = self._failed(processing, message)
        except Exception as e:
            message = sanitize_error(f"{type(e).__name__}: {e}")
            console.print(f"  [red]ERROR[/red] Review failed: {message}")
            result = self._failed(processing, message)

        terminal = result.model_copy(
            update={
                "created_at": processing.created_at,
                "tokens_used": budget.tokens_used,
                "cost_estimate": budget.session_cost,
                "processing_time_ms": _elapsed_ms(start),
                "completed_at": utcnow(),
            }
        )
        self._save(terminal)

        rec = terminal.recommendation.value if terminal.recommendation else terminal.status.value
        console.print(
            f"\n  [bold]Result:[/bold] {rec} (score {terminal.overall_score}/100, "
            f"${terminal.cost_estimate:.4f}, {terminal.processing_time_ms}ms)"
        )
        return terminal

    @staticmethod
    def _failed(processing: ReviewResult, message: str) -> ReviewResult:
        return processing.model_copy(
            update={
                "status": ReviewStatus.FAILED,
                "recommendation": None,
                "error_message": message,
                "summary": f"Review failed: {message}",
            }
        )

    async def quick_review(
        self,
        app_id: str,
        archive_path: Path,
        file_hash: str,
    ) -> ReviewResult:
        return await run_quick_review(app_id, archive_path, file_hash, self.config)


async def run_quick_review(
    app_id: str,
    archive_path: Path,
    file_hash: str,
    config: Optional[ReviewConfig] = None,
) -> ReviewResult:
    """Pattern scan only. No provider, no reasoning calls, no sandbox, not persisted."""
    config = config or get_effective_config()
    start = time.monotonic()
    review_id = uuid.uuid4().hex
    try:
        with extracted_archive(Path(archive_path), config.limits) as extraction:
            findings = scan_patterns(extraction.files)
    except ExtractionError as e:
        message = sanitize_error(str(e))
        return ReviewResult(
            id=review_id, app_id=app_id, file_hash=file_hash,
            status=ReviewStatus.FAILED, error_message=message,
            summary=f"Review failed: {message}",
            processing_time_ms=_elapsed_ms(start), completed_at=utcnow(),
        )

    if not findings:
        score = 100
    else:
        score = min(QUICK_SCORES.get(f.severity, QUICK_DEFAULT_SCORE) for f in findings)

    review = config.review
    recommendation = get_recommendation(score, review.approve_threshold, review.reject_threshold)
    summary = (
        "Quick scan passed."
        if not findings
        else f"Quick scan found {len(findings)} potential issue(s)."
    )
    counts = {s: sum(1 for f in findings if f.severity == s) for s in Severity}
    return ReviewResult(
        id=review_id,
        app_id=app_id,
        file_hash=file_hash,
        status=ReviewStatus.COMPLETED,
        overall_score=score,
        security_score=score,
        findings=findings,
        critical_count=counts[Severity.CRITICAL],
        high_count=counts[Severity.HIGH],
        medium_count=counts[Severity.MEDIUM],
        low_count=counts[Severity.LOW],
        recommendation=recommendation,
        summary=summary,
        processing_time_ms=_elapsed_ms(start),
        stages=[StageOutcome(name="pattern_scan", status=StageStatus.RAN,
                             detail=f"{len(findings)} findings")],
        completed_at=utcnow(),
    )


async def run_review(
    app_id: str,
    archive_path: Path,
    file_hash: str,
    metadata: Optional[ReviewMetadata] = None,
    config: Optional[ReviewConfig] = None,
    **kwargs,
) -> ReviewResult:
    """Convenience wrapper: resolve config, build an orchestrator, review once."""
    orchestrator = ReviewOrchestrator(config or get_effective_config(), **kwargs)
    return await orchestrator.review(app_id, archive_path, file_hash, metadata)
