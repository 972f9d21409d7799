"""Finding data models."""

from __future__ import annotations

from enum import Enum
from typing import Iterable, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class Severity(str, Enum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    INFO = "info"


class FindingCategory(str, Enum):
    MALWARE = "malware"
    BACKDOOR = "backdoor"
    SECRETS = "secrets"
    VULNERABILITY = "vulnerability"
    PROMPT_INJECTION = "prompt_injection"
    PERMISSION_VIOLATION = "permission_violation"
    DATA_EXFILTRATION = "data_exfiltration"
    CODE_QUALITY = "code_quality"
    SUSPICIOUS_BEHAVIOR = "suspicious_behavior"


SEVERITY_ORDER = {
    Severity.CRITICAL: 0,
    Severity.HIGH: 1,
    Severity.MEDIUM: 2,
    Severity.LOW: 3,
    Severity.INFO: 4,
}


class WireModel(BaseModel):
    """Base for models exchanged as camelCase JSON."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Finding(WireModel):
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, frozen=True
    )

    severity: Severity
    category: FindingCategory
    title: str = Field(min_length=1)
    description: str
    file_path: Optional[str] = None
    line_start: Optional[int] = None
    line_end: Optional[int] = None
    code_snippet: Optional[str] = None
    confidence: float = Field(default=0.8, ge=0.0, le=1.0)
    suggestion: Optional[str] = None


class SeverityCounts(BaseModel):
    critical: int = 0
    high: int = 0
    medium: int = 0
    low: int = 0
    info: int = 0


def count_by_severity(findings: Iterable[Finding]) -> SeverityCounts:
    counts = SeverityCounts()
    for f in findings:
        setattr(counts, f.severity.value, getattr(counts, f.severity.value) + 1)
    return counts


def dedupe_findings(findings: Iterable[Finding]) -> list[Finding]:
    """Keep the first finding for each (file_path, title) pair."""
    seen: set[tuple[Optional[str], str]] = set()
    result: list[Finding] = []
    for f in findings:
        key = (f.file_path, f.title)
        if key in seen:
            continue
        seen.add(key)
        result.append(f)
    return result


def sort_by_severity(findings: Iterable[Finding]) -> list[Finding]:
    return sorted(findings, key=lambda f: SEVERITY_ORDER[f.severity])
