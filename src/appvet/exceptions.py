"""Exception hierarchy for the review pipeline."""

from __future__ import annotations

__all__ = [
    "AppVetError",
    "ArchiveTooLarge",
    "BackendOverloaded",
    "BackendRateLimited",
    "ConfigurationError",
    "CostLimitExceeded",
    "ExtractionError",
    "RateLimitExceeded",
    "ReasoningError",
    "ReviewStoreError",
    "SandboxError",
    "StructuredDecodeError",
    "TooManyFiles",
]


class AppVetError(Exception):
    """Base exception for all pipeline errors."""


class ConfigurationError(AppVetError):
    """Invalid configuration, or the pipeline is disabled."""


class ExtractionError(AppVetError):
    """The uploaded archive could not be unpacked safely."""


class ArchiveTooLarge(ExtractionError):
    """Aggregate size of the archive (raw or filtered) exceeds its cap."""


class TooManyFiles(ExtractionError):
    """More source files than the per-app cap."""


class ReasoningError(AppVetError):
    """A call to the reasoning backend failed."""


class RateLimitExceeded(ReasoningError):
    """The local request window is full. Callers must not wait on it."""


class BackendRateLimited(ReasoningError):
    """The backend kept answering 429 after all retries."""


class BackendOverloaded(ReasoningError):
    """The backend kept reporting overload after all retries."""


class StructuredDecodeError(ReasoningError):
    """The backend reply was not valid JSON or did not match the schema."""


class CostLimitExceeded(AppVetError):
    """The per-review dollar ceiling has been reached."""


class ReviewStoreError(AppVetError):
    """Attempt to overwrite a terminal review record."""


class SandboxError(AppVetError):
    """The container runtime is present but the sandbox run could not start."""
