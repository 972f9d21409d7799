"""Fast regex pass for obvious malware, secrets and unsafe capabilities.

Pure and deterministic: no I/O, no reasoning calls. Runs before any paid
analyzer so that blatant malware can short-circuit the pipeline.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterable

from ..models.file import ExtractedFile
from ..models.finding import Finding, FindingCategory, Severity
from ..utils.sanitize import MAX_SNIPPET_CHARS, redact_secret, truncate

MANUAL_REVIEW_SUGGESTION = "Review this code manually for potential security issues"


@dataclass(frozen=True)
class ScanPattern:
    regex: re.Pattern
    title: str
    severity: Severity
    category: FindingCategory
    confidence: float
    description: str
    redact: bool = False


def _p(expr: str) -> re.Pattern:
    return re.compile(expr, re.IGNORECASE)


MALWARE_PATTERNS: tuple[ScanPattern, ...] = (
    ScanPattern(
        _p(r"eval\s*\(\s*atob\s*\("),
        "Obfuscated eval detected",
        Severity.CRITICAL, FindingCategory.MALWARE, 0.7,
        "Base64-decoded string passed straight to eval()",
    ),
    ScanPattern(
        _p(r"eval\s*\(\s*Buffer\.from\s*\([^)]*['\"`]base64['\"`]"),
        "Obfuscated eval of base64 payload",
        Severity.CRITICAL, FindingCategory.MALWARE, 0.7,
        "Buffer decoded from base64 and evaluated at runtime",
    ),
    ScanPattern(
        _p(r"exec\s*\(\s*(?:base64\.)?b64decode\s*\("),
        "Obfuscated exec of base64 payload",
        Severity.CRITICAL, FindingCategory.MALWARE, 0.7,
        "Base64-decoded bytes executed as Python code",
    ),
    ScanPattern(
        _p(r"new\s+Function\s*\(\s*['\"`]return\s+this"),
        "Suspicious Function constructor",
        Severity.CRITICAL, FindingCategory.MALWARE, 0.7,
        "Function constructor used to reach the global object",
    ),
    ScanPattern(
        _p(r"new\s+Function\s*\(\s*atob\s*\("),
        "Function constructed from decoded string",
        Severity.CRITICAL, FindingCategory.MALWARE, 0.7,
        "Function body decoded from base64 at runtime",
    ),
    ScanPattern(
        _p(r"/dev/tcp/"),
        "Reverse shell pattern",
        Severity.CRITICAL, FindingCategory.BACKDOOR, 0.7,
        "Shell redirection to a raw TCP socket",
    ),
)

SECRET_PATTERNS: tuple[ScanPattern, ...] = (
    ScanPattern(
        _p(r"BEGIN\s+(?:RSA\s+|EC\s+|DSA\s+|OPENSSH\s+)?PRIVATE\s+KEY"),
        "Private key detected",
        Severity.HIGH, FindingCategory.SECRETS, 0.7,
        "A private key block is embedded in the source",
        redact=True,
    ),
    ScanPattern(
        re.compile(r"sk[-_]live[-_]|pk[-_]live[-_]|ghp_|gho_|sk-ant-|\bAKIA[0-9A-Z]{16}\b|xox[bp]-"),
        "Potential API key detected",
        Severity.HIGH, FindingCategory.SECRETS, 0.7,
        "String matches a known vendor API key prefix",
        redact=True,
    ),
    ScanPattern(
        _p(r"password\s*[:=]\s*['\"`][^'\"`\s]{8,}"),
        "Hardcoded password detected",
        Severity.HIGH, FindingCategory.SECRETS, 0.7,
        "Password literal assigned in source",
        redact=True,
    ),
)

CAPABILITY_PATTERNS: tuple[ScanPattern, ...] = (
    ScanPattern(
        _p(r"child_process|\bexec\s*\(|\bspawn\s*\(|os\.system\s*\(|subprocess\.(?:run|call|Popen|check_output)"),
        "Shell command execution",
        Severity.MEDIUM, FindingCategory.VULNERABILITY, 0.8,
        "Code can spawn processes or run shell commands",
    ),
    ScanPattern(
        _p(r"\.cookie\s*=|document\.cookie"),
        "Cookie manipulation",
        Severity.MEDIUM, FindingCategory.SUSPICIOUS_BEHAVIOR, 0.6,
        "Raw read or write of browser cookies",
    ),
    ScanPattern(
        _p(r"\b(?:localStorage|sessionStorage)\b"),
        "Browser storage access",
        Severity.MEDIUM, FindingCategory.SUSPICIOUS_BEHAVIOR, 0.6,
        "Direct access to browser local or session storage",
    ),
    ScanPattern(
        _p(r"process\.env\.[A-Z_]+\s*=(?!=)|os\.environ\[[^\]]+\]\s*=(?!=)"),
        "Environment variable modification",
        Severity.MEDIUM, FindingCategory.SUSPICIOUS_BEHAVIOR, 0.6,
        "Process environment is modified at runtime",
    ),
    ScanPattern(
        _p(r"crypto\.createCipheriv.*['\"`]aes"),
        "Encryption usage detected",
        Severity.MEDIUM, FindingCategory.SUSPICIOUS_BEHAVIOR, 0.6,
        "Symmetric encryption of data, possibly to hide payloads",
    ),
)

ALL_PATTERNS: tuple[ScanPattern, ...] = MALWARE_PATTERNS + SECRET_PATTERNS + CAPABILITY_PATTERNS


def _locate(pattern: ScanPattern, content: str, match: re.Match) -> tuple[int, str]:
    """Return (1-based line, line text) for the first line matching the pattern.

    Patterns that only match across lines fall back to the line of the
    match offset.
    """
    lines = content.split("\n")
    for i, line in enumerate(lines):
        if pattern.regex.search(line):
            return i + 1, line
    line_no = content.count("\n", 0, match.start()) + 1
    return line_no, lines[line_no - 1]


def _snippet(pattern: ScanPattern, line: str) -> str:
    snippet = truncate(line.strip(), MAX_SNIPPET_CHARS)
    return redact_secret(snippet) if pattern.redact else snippet


def scan_file(file: ExtractedFile, patterns: Iterable[ScanPattern] = ALL_PATTERNS) -> list[Finding]:
    findings: list[Finding] = []
    for pattern in patterns:
        match = pattern.regex.search(file.content)
        if not match:
            continue
        line_no, line = _locate(pattern, file.content, match)
        findings.append(
            Finding(
                severity=pattern.severity,
                category=pattern.category,
                title=pattern.title,
                description=pattern.description,
                file_path=file.relative_path,
                line_start=line_no,
                code_snippet=_snippet(pattern, line),
                confidence=pattern.confidence,
                suggestion=MANUAL_REVIEW_SUGGESTION,
            )
        )
    return findings


def scan_patterns(files: Iterable[ExtractedFile]) -> list[Finding]:
    """Scan every file; one finding per (file, pattern) that matches."""
    findings: list[Finding] = []
    for file in files:
        findings.extend(scan_file(file))
    return findings


def is_immediate_reject(findings: Iterable[Finding]) -> bool:
    """Any critical malware or backdoor finding rejects without paid analysis."""
    return any(
        f.severity == Severity.CRITICAL
        and f.category in (FindingCategory.MALWARE, FindingCategory.BACKDOOR)
        for f in findings
    )
