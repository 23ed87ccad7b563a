"""Error taxonomy for the extraction pipeline.

Every failure the pipeline knows about carries an ``ErrorKind``. Adapters
translate third-party exceptions into one of the stage-specific subclasses
below; the orchestrator turns them into result payloads.
"""

from __future__ import annotations

from enum import Enum
from typing import Any


class ErrorKind(str, Enum):
    # resolver
    INVALID_URL = "InvalidUrl"
    UNSUPPORTED_PLATFORM = "UnsupportedPlatform"
    # acquirer
    DEPENDENCY_UNAVAILABLE = "DependencyUnavailable"
    DOWNLOAD_FAILED = "DownloadFailed"
    # transcription
    FILE_TOO_LARGE = "FileTooLarge"
    UNSUPPORTED_FORMAT = "UnsupportedFormat"
    INVALID_CREDENTIALS = "InvalidCredentials"
    ENGINE_QUOTA_EXCEEDED = "EngineQuotaExceeded"
    TRANSCRIPTION_FAILED = "TranscriptionFailed"
    TIMEOUT = "Timeout"
    # policy (user-facing)
    QUOTA_EXCEEDED = "QuotaExceeded"
    DURATION_EXCEEDED = "DurationExceeded"
    # export
    UNSUPPORTED_EXPORT_FORMAT = "UnsupportedExportFormat"


USER_FACING = {ErrorKind.QUOTA_EXCEEDED, ErrorKind.DURATION_EXCEEDED}


class VidscriptError(Exception):
    """Raised when the pipeline hits a known error condition."""

    def __init__(self, kind: ErrorKind, message: str, details: dict[str, Any] | None = None):
        self.kind = kind
        self.message = message
        self.details = details or {}
        super().__init__(f"[{kind.value}] {message}")

    @property
    def user_facing(self) -> bool:
        return self.kind in USER_FACING

    def to_failure(self):
        from .schemas import ExtractionFailure

        return ExtractionFailure(
            error_kind=self.kind,
            message=self.message,
            details=self.details or None,
        )


class ResolutionError(VidscriptError):
    pass


class AcquisitionError(VidscriptError):
    pass


class TranscriptionError(VidscriptError):
    pass


class PolicyError(VidscriptError):
    pass
