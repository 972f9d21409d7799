"""Agent-safety analysis for LLM-driven apps.

Heuristics run on every upload. The reasoning backend is consulted only
when agent-related code is present, no heuristic is already critical, and
budget remains. Any backend failure degrades to the heuristic result.
"""

from __future__ import annotations

import re
import time
from dataclasses import dataclass
from typing import Optional

from pydantic import Field
from rich.console import Console

from ..exceptions import ReasoningError
from ..models.analysis import AgentSafetyResult
from ..models.file import ExtractedFile
from ..models.finding import Finding, FindingCategory, Severity, WireModel, dedupe_findings
from ..models.review import ReviewMetadata
from ..utils.sanitize import truncate
from .budget import BudgetTracker
from .prompts import load_prompt
from .reasoning import ReasoningClient
from .scoring import calculate_score

console = Console()

DEFAULT_MAX_FILES = 10
DEFAULT_MAX_CONTENT_CHARS = 3000
CRITICAL_EARLY_SCORE = 20
SNIPPET_CHARS = 100


@dataclass(frozen=True)
class Heuristic:
    regex: re.Pattern
    title: str


def _h(expr: str, title: str) -> Heuristic:
    return Heuristic(re.compile(expr, re.IGNORECASE), title)


PROMPT_INJECTION_HEURISTICS = (
    _h(r"\$\{[^}]*user[^}]*input[^}]*\}", "Direct user input in template literal"),
    _h(r"\+\s*user\w*Input", "String concatenation with user input"),
    _h(r"\bf[\"'][^\"'\n]*\{[^}]*user[^}]*\}", "F-string with user input"),
    _h(r"messages\s*:\s*\[\s*\{[^}]*content\s*:\s*[^\"'`\[\s]", "Dynamic message content"),
    _h(r"\bprompt\s*\+?=(?!=)\s*(?![\s\"'`])", "Dynamic prompt construction"),
)

OVERRIDE_DIRECTIVE = _h(
    r"ignore\s+(?:all\s+)?(?:previous|prior|above)\s+instructions",
    "Embedded instruction override",
)

PERMISSION_HEURISTICS = (
    _h(r"child_process|\bspawn\s*\(|\bexec(?!ute)\w*\s*\(|subprocess\.", "Process execution capability"),
    _h(r"fs\.(?:read|write|unlink|rmdir)|readFileSync|writeFileSync|shutil\.rmtree|os\.remove", "File system access"),
    _h(r"fetch\s*\(|axios|http\.request|urllib|requests\.(?:get|post|put|delete)", "Network request capability"),
    _h(r"process\.env\[\s*['\"`](?!NODE_ENV|DEBUG)|os\.environ\[|os\.getenv\(", "Environment variable access"),
    _h(r"\beval\s*\(|new\s+Function\s*\(", "Dynamic code evaluation"),
)

DECEPTIVE_HEURISTICS = (
    _h(r"\bsystem\s*:\s*['\"`](?!You are)", "Custom system message injection"),
    _h(r"role['\"]?\s*:\s*['\"`]system['\"`]", "System role manipulation"),
    _h(r"\b(?:fake|spoof|impersonat|disguise)", "Potential deceptive behavior"),
    _h(r"localStorage|sessionStorage|indexedDB", "Browser storage access"),
    _h(r"document\.cookie|setCookie", "Cookie access"),
)

AGENT_PATH_TOKENS = {"ai", "api", "bot", "llm", "llms"}
AGENT_PATH_PREFIXES = ("agent", "chat", "prompt", "handler", "tool")
LLM_CONTENT_KEYWORDS = (
    "openai", "anthropic", "langchain", "llama", "cohere",
    "huggingface", "ollama", "mistral", "gemini",
)

PERMISSION_SIGNATURES = (
    ("filesystem", re.compile(r"fs\.|readFile|writeFile|readdir|\bopen\s*\(|pathlib", re.IGNORECASE)),
    ("network", re.compile(r"fetch|axios|https?\.|request\(|requests\.|urllib|httpx", re.IGNORECASE)),
    ("subprocess", re.compile(r"child_process|spawn|exec\(|execSync|subprocess", re.IGNORECASE)),
    ("database", re.compile(r"prisma|mongoose|sequelize|typeorm|knex|pg\.|mysql|sqlite|sqlalchemy", re.IGNORECASE)),
    ("environment", re.compile(r"process\.env|os\.environ|os\.getenv", re.IGNORECASE)),
    ("llm_api", re.compile(r"openai|anthropic|langchain|cohere|huggingface", re.IGNORECASE)),
)


class AgentSafetyReply(WireModel):
    findings: list[Finding] = []
    declared_permissions: list[str] = []
    actual_permissions: list[str] = []
    summary: str = ""
    score: Optional[int] = Field(default=None, ge=0, le=100)


# ---------------------------------------------------------------------------
# Heuristics
# ---------------------------------------------------------------------------

def _line_of(content: str, offset: int) -> int:
    return content.count("\n", 0, offset) + 1


def _heuristic_finding(
    file: ExtractedFile,
    heuristic: Heuristic,
    match: re.Match,
    severity: Severity,
    category: FindingCategory,
    confidence: float,
    description: str,
    suggestion: str,
) -> Finding:
    return Finding(
        severity=severity,
        category=category,
        title=heuristic.title,
        description=description,
        file_path=file.relative_path,
        line_start=_line_of(file.content, match.start()),
        code_snippet=truncate(match.group(0), SNIPPET_CHARS),
        confidence=confidence,
        suggestion=suggestion,
    )


def heuristic_scan(files: list[ExtractedFile]) -> list[Finding]:
    """Regex pass over every file, one finding per (file, title)."""
    findings: list[Finding] = []
    for file in files:
        for h in PROMPT_INJECTION_HEURISTICS:
            m = h.regex.search(file.content)
            if m:
                findings.append(_heuristic_finding(
                    file, h, m, Severity.HIGH, FindingCategory.PROMPT_INJECTION, 0.7,
                    "User input may reach the model without sanitization.",
                    "Sanitize user input before including it in prompts; validate format and use allow-lists.",
                ))

        m = OVERRIDE_DIRECTIVE.regex.search(file.content)
        if m:
            findings.append(_heuristic_finding(
                file, OVERRIDE_DIRECTIVE, m, Severity.CRITICAL, FindingCategory.PROMPT_INJECTION, 0.8,
                "Code embeds a directive telling a model to discard its instructions.",
                "Remove instruction-override text from prompts and data sent to models.",
            ))

        for h in PERMISSION_HEURISTICS:
            m = h.regex.search(file.content)
            if m:
                findings.append(_heuristic_finding(
                    file, h, m, Severity.MEDIUM, FindingCategory.PERMISSION_VIOLATION, 0.8,
                    f"Code uses {h.title.lower()} which may need an explicit permission declaration.",
                    "Declare this capability in the app manifest and enforce access controls.",
                ))

        for h in DECEPTIVE_HEURISTICS:
            m = h.regex.search(file.content)
            if m:
                findings.append(_heuristic_finding(
                    file, h, m, Severity.HIGH, FindingCategory.SUSPICIOUS_BEHAVIOR, 0.6,
                    f"{h.title} detected, which could indicate deceptive or misleading functionality.",
                    "Make sure every behavior is transparent and documented in the listing.",
                ))
    return dedupe_findings(findings)


def extract_actual_permissions(files: list[ExtractedFile]) -> list[str]:
    found = set()
    for file in files:
        for name, regex in PERMISSION_SIGNATURES:
            if name not in found and regex.search(file.content):
                found.add(name)
    return [name for name, _ in PERMISSION_SIGNATURES if name in found]


# ---------------------------------------------------------------------------
# Relevance
# ---------------------------------------------------------------------------

def _path_signal(relative_path: str) -> bool:
    tokens = [t for t in re.split(r"[^a-z0-9]+", relative_path.lower()) if t]
    return any(t in AGENT_PATH_TOKENS or t.startswith(AGENT_PATH_PREFIXES) for t in tokens)


def _content_signals(content: str) -> int:
    lower = content.lower()
    return sum(1 for kw in LLM_CONTENT_KEYWORDS if kw in lower)


def is_agent_file(file: ExtractedFile) -> bool:
    return _path_signal(file.relative_path) or _content_signals(file.content) > 0


def rank_agent_files(
    files: list[ExtractedFile],
    heuristic_findings: list[Finding],
    limit: int = DEFAULT_MAX_FILES,
) -> list[ExtractedFile]:
    """Most relevant agent files first: more signals, then path order."""
    per_file: dict[str, int] = {}
    for f in heuristic_findings:
        if f.file_path:
            per_file[f.file_path] = per_file.get(f.file_path, 0) + 1

    def signals(file: ExtractedFile) -> int:
        return (
            int(_path_signal(file.relative_path))
            + _content_signals(file.content)
            + per_file.get(file.relative_path, 0)
        )

    candidates = [f for f in files if is_agent_file(f)]
    candidates.sort(key=lambda f: (-signals(f), f.relative_path))
    return candidates[:limit]


# ---------------------------------------------------------------------------
# Result assembly
# ---------------------------------------------------------------------------

def split_findings(
    findings: list[Finding],
) -> tuple[list[Finding], list[Finding], list[Finding]]:
    injection, permission, suspicious = [], [], []
    for f in findings:
        if f.category == FindingCategory.PROMPT_INJECTION:
            injection.append(f)
        elif f.category == FindingCategory.PERMISSION_VIOLATION:
            permission.append(f)
        else:
            suspicious.append(f)
    return injection, permission, suspicious


def build_prompt(
    files: list[ExtractedFile],
    max_content_chars: int,
    metadata: Optional[ReviewMetadata] = None,
) -> str:
    parts = []
    if metadata and (metadata.name or metadata.description):
        parts.append(
            "Declared app listing:\n"
            f"- Name: {metadata.name}\n"
            f"- Category: {metadata.category}\n"
            f"- Description: {metadata.description}\n\n"
        )
    parts.append("Analyze these AI agent-related files for safety issues:\n\n")
    parts.append(
        "\n\n".join(
            f"### File: {f.relative_path}\n```\n{truncate(f.content, max_content_chars)}\n```"
            for f in files
        )
    )
    return "".join(parts)


class AgentSafetyAnalyzer:
    def __init__(
        self,
        client: ReasoningClient,
        budget: BudgetTracker,
        max_files: int = DEFAULT_MAX_FILES,
        max_content_chars: int = DEFAULT_MAX_CONTENT_CHARS,
    ):
        self.client = client
        self.budget = budget
        self.max_files = max_files
        self.max_content_chars = max_content_chars

    @staticmethod
    def _result(
        findings: list[Finding],
        actual_permissions: list[str],
        score: int,
        summary: str,
        start: float,
        **extra,
    ) -> AgentSafetyResult:
        injection, permission, suspicious = split_findings(findings)
        return AgentSafetyResult(
            prompt_injection_risks=injection,
            permission_violations=permission,
            suspicious_behaviors=suspicious,
            actual_permissions=actual_permissions,
            score=score,
            summary=summary,
            processing_time_ms=int((time.monotonic() - start) * 1000),
            **extra,
        )

    async def analyze(
        self,
        files: list[ExtractedFile],
        metadata: Optional[ReviewMetadata] = None,
    ) -> AgentSafetyResult:
        start = time.monotonic()
        console.print("  [cyan]Running agent safety analysis...[/cyan]")

        heuristic = heuristic_scan(files)
        actual = extract_actual_permissions(files)

        if any(f.severity == Severity.CRITICAL for f in heuristic):
            console.print("  [red]CRITICAL[/red] Agent safety heuristics found critical issues")
            return self._result(
                heuristic, actual, CRITICAL_EARLY_SCORE,
                "Critical agent safety issues detected in heuristic scan.", start,
            )

        agent_files = rank_agent_files(files, heuristic, self.max_files)
        if not agent_files:
            console.print("  [green]OK[/green] No AI agent code detected")
            return self._result(
                [], actual, 100,
                "No AI agent code detected. App does not appear to use LLM capabilities.", start,
            )

        reason = self.budget.exhausted_reason()
        if reason:
            console.print(
                f"  [yellow]WARN[/yellow] {reason.capitalize()} budget exhausted, "
                f"agent safety uses heuristics only"
            )
            return self._result(
                heuristic, actual, calculate_score(heuristic),
                f"Agent safety analysis used pattern matching only ({reason} budget exhausted).",
                start, fallback_reason=f"{reason} budget exhausted",
            )

        try:
            reply, response = await self.client.send_structured(
                build_prompt(agent_files, self.max_content_chars, metadata),
                AgentSafetyReply,
                system_prompt=load_prompt("agent_safety"),
                max_tokens=4096,
                temperature=0.1,
            )
        except ReasoningError as e:
            console.print(f"  [yellow]WARN[/yellow] Agent safety AI analysis failed: {e}")
            return self._result(
                heuristic, actual, calculate_score(heuristic),
                "Agent safety analysis completed with pattern matching only (AI analysis failed).",
                start, fallback_reason="AI analysis failed",
            )

        merged = dedupe_findings([*heuristic, *reply.findings])
        score = calculate_score(merged)
        if reply.score is not None:
            score = min(reply.score, score)

        extra_perms = sorted(set(reply.actual_permissions) - set(actual))
        result = self._result(
            merged, [*actual, *extra_perms], score,
            reply.summary or "Agent safety analysis complete.", start,
            declared_permissions=reply.declared_permissions,
            tokens_used=response.tokens.total,
            ai_analyzed=True,
        )
        console.print(
            f"  [green]OK[/green] Agent safety: {len(merged)} findings, "
            f"score {score} ({result.processing_time_ms}ms)"
        )
        return result
