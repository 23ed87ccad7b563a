"""Extraction orchestrator — the entry point.

Callers hand in a raw URL and get back a result payload, never an exception
for a known failure:

  Validating   → resolve the URL (InvalidUrl / UnsupportedPlatform)
  PolicyCheck  → daily quota for the IP or account (QuotaExceeded)
  Acquiring    → downloader availability, duration probe against the guest
                 cap (DurationExceeded), audio download
  Transcribing → speech-to-text; guest runs are cut at the cap
  Finalizing   → release the audio file, consume quota on success, save

Acquisition and transcription failures do not fail the call: they produce a
clearly labelled fallback transcript with the record marked ``failed``.
Quota is only consumed once a transcript was really produced.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Protocol, Union

from . import config
from .adapters import AudioAcquirer, TranscriptionEngine, check_dependencies
from .adapters.downloader import AudioArtifact
from .errors import (
    AcquisitionError,
    ErrorKind,
    PolicyError,
    ResolutionError,
    TranscriptionError,
    VidscriptError,
)
from .progress import ProgressCallback
from .resolver import resolve
from .schemas import (
    Extraction,
    ExtractionFailure,
    ExtractionOk,
    ExtractionStatus,
    GuestInfo,
    ProgressEvent,
    Transcript,
    UsageCheck,
    VideoMetadata,
    VideoReference,
)
from .store import ExtractionStore, UsageStore, guest_key, user_key

logger = logging.getLogger(__name__)

Result = Union[ExtractionOk, ExtractionFailure]


class Stage(str, Enum):
    VALIDATING = "validating"
    POLICY_CHECK = "policy_check"
    ACQUIRING = "acquiring"
    TRANSCRIBING = "transcribing"
    FINALIZING = "finalizing"
    COMPLETED = "completed"
    FAILED = "failed"


_STAGE_TEXT = {
    Stage.VALIDATING: "Analyzing video...",
    Stage.POLICY_CHECK: "Checking usage limits...",
    Stage.ACQUIRING: "Extracting audio...",
    Stage.TRANSCRIBING: "Processing transcript...",
    Stage.FINALIZING: "Finalizing...",
    Stage.COMPLETED: "Complete!",
    Stage.FAILED: "Extraction failed",
}


def estimate_seconds(stage: Stage, duration_seconds: float) -> float | None:
    """Rough seconds-remaining for a stage, from the video length."""
    download = 5.0 + duration_seconds * 0.05
    transcribe = 5.0 + duration_seconds * 0.1
    if stage is Stage.ACQUIRING:
        return round(download + transcribe + 1.0)
    if stage is Stage.TRANSCRIBING:
        return round(transcribe + 1.0)
    if stage is Stage.FINALIZING:
        return 1.0
    if stage in (Stage.COMPLETED, Stage.FAILED):
        return 0.0
    return None


class UsageBackend(Protocol):
    def check_usage(self, key: str, limit: int | None) -> UsageCheck: ...

    def increment_usage(self, key: str, limit: int | None) -> bool: ...


class ExtractionBackend(Protocol):
    def save_extraction(self, record: Extraction) -> str: ...


def _default_tier_limits() -> dict[str, Optional[int]]:
    return {"free": 5, "pro": 100, "enterprise": None}


@dataclass(slots=True)
class Limits:
    guest_max_duration: float = 60.0
    guest_daily_limit: int = 3
    tier_daily_limits: dict[str, Optional[int]] = field(default_factory=_default_tier_limits)

    @classmethod
    def from_config(cls) -> "Limits":
        def _tier(key: str, default: int | None) -> int | None:
            value = config.get_int(key, default)
            return None if value is None or value < 0 else value

        return cls(
            guest_max_duration=config.get_float("VIDSCRIPT_GUEST_MAX_DURATION", 60.0),
            guest_daily_limit=config.get_int("VIDSCRIPT_GUEST_DAILY_LIMIT", 3) or 0,
            tier_daily_limits={
                "free": _tier("VIDSCRIPT_FREE_DAILY_LIMIT", 5),
                "pro": _tier("VIDSCRIPT_PRO_DAILY_LIMIT", 100),
                "enterprise": _tier("VIDSCRIPT_ENTERPRISE_DAILY_LIMIT", None),
            },
        )

    def daily_limit_for(self, tier: str) -> int | None:
        if tier not in self.tier_daily_limits:
            logger.warning("Unknown subscription tier %r, applying free-tier limit", tier)
            tier = "free"
        return self.tier_daily_limits[tier]


@dataclass(slots=True, frozen=True)
class _Caller:
    key: str
    limit: Optional[int]
    max_duration: Optional[float] = None
    user_id: Optional[str] = None
    client_ip: Optional[str] = None
    tier: Optional[str] = None

    @property
    def is_guest(self) -> bool:
        return self.user_id is None


def fallback_transcript(error: VidscriptError, metadata: VideoMetadata | None,
                        max_duration: float | None = None) -> Transcript:
    """Renderable placeholder used whenever acquisition or transcription fails."""
    title = metadata.title if metadata else "this video"
    end = metadata.duration_seconds if metadata else 0.0
    if max_duration is not None:
        end = min(end, max_duration)
    text = f"[Transcription failed: {error.message}] No transcript could be extracted for {title}."
    return Transcript.from_text(text, end_seconds=end)


class Orchestrator:
    def __init__(
        self,
        acquirer: AudioAcquirer | None = None,
        engine: TranscriptionEngine | None = None,
        usage: UsageBackend | None = None,
        extractions: ExtractionBackend | None = None,
        limits: Limits | None = None,
    ) -> None:
        self.acquirer = acquirer or AudioAcquirer()
        self.engine = engine or TranscriptionEngine()
        self.usage = usage or UsageStore()
        self.extractions = extractions or ExtractionStore()
        self.limits = limits or Limits.from_config()

    # ── Entry points ─────────────────────────────────────────────

    def extract_guest(self, raw_url: str, client_ip: str, language: str | None = None,
                      progress: ProgressCallback | None = None) -> Result:
        """Guest run: IP-keyed daily quota and a hard cap on video length."""
        caller = _Caller(
            key=guest_key(client_ip),
            limit=self.limits.guest_daily_limit,
            max_duration=self.limits.guest_max_duration,
            client_ip=client_ip,
        )
        return self._run(raw_url, caller, language, progress)

    def extract_authenticated(self, raw_url: str, requester_id: str, language: str | None = None,
                              tier: str = "free", progress: ProgressCallback | None = None) -> Result:
        """Account run: tier-dependent daily quota, full video transcribed."""
        tier = (tier or "free").lower()
        caller = _Caller(
            key=user_key(requester_id),
            limit=self.limits.daily_limit_for(tier),
            user_id=requester_id,
            tier=tier,
        )
        return self._run(raw_url, caller, language, progress)

    def check_services(self) -> dict[str, bool]:
        return check_dependencies(self.acquirer, self.engine)

    # ── State machine ────────────────────────────────────────────

    def _run(self, raw_url: str, caller: _Caller, language: str | None,
             progress: ProgressCallback | None) -> Result:
        self._emit(progress, Stage.VALIDATING)
        try:
            ref = resolve(raw_url)
        except ResolutionError as exc:
            logger.info("Rejected URL %r: %s", raw_url, exc.message)
            self._emit(progress, Stage.FAILED)
            return exc.to_failure()

        self._emit(progress, Stage.POLICY_CHECK)
        usage = self.usage.check_usage(caller.key, caller.limit)
        if not usage.can_proceed:
            exc = self._quota_error(caller, usage)
            logger.info("Quota exhausted for %s: %s", caller.key, exc.message)
            self._emit(progress, Stage.FAILED)
            return exc.to_failure()

        record = Extraction(
            requester=caller.user_id,
            client_ip=caller.client_ip,
            video=ref,
            language=language,
        )
        record.advance(ExtractionStatus.PROCESSING)

        artifact: AudioArtifact | None = None
        transcript: Transcript | None = None
        failure: VidscriptError | None = None
        try:
            record.metadata = self._probe(ref)
            duration = record.metadata.duration_seconds
            if caller.max_duration is not None and duration > caller.max_duration:
                raise self._duration_error(caller, duration, usage)
            self._emit(progress, Stage.ACQUIRING, estimate_seconds(Stage.ACQUIRING, duration))
            artifact = self.acquirer.acquire(ref, record.metadata)

            self._emit(progress, Stage.TRANSCRIBING, estimate_seconds(Stage.TRANSCRIBING, duration))
            transcript = self.engine.transcribe(
                artifact,
                language=language,
                max_duration_seconds=caller.max_duration,
            )
        except PolicyError as exc:
            logger.info("Rejected %s for %s: %s", ref.canonical_id, caller.key, exc.message)
            self._emit(progress, Stage.FAILED)
            return exc.to_failure()
        except (AcquisitionError, TranscriptionError) as exc:
            logger.warning("Extraction of %s degraded to fallback transcript: %s", ref.canonical_id, exc)
            failure = exc
        except Exception as exc:
            logger.warning("Extraction of %s hit an unexpected error, degrading to fallback transcript",
                           ref.canonical_id, exc_info=True)
            failure = TranscriptionError(ErrorKind.TRANSCRIPTION_FAILED, f"Unexpected error: {exc}")
        finally:
            if artifact is not None:
                artifact.release()

        self._emit(progress, Stage.FINALIZING, estimate_seconds(Stage.FINALIZING, 0.0))
        return self._finalize(record, caller, transcript, failure, progress)

    def _finalize(self, record: Extraction, caller: _Caller, transcript: Transcript | None,
                  failure: VidscriptError | None, progress: ProgressCallback | None) -> Result:
        if failure is None and transcript is not None:
            if not self.usage.increment_usage(caller.key, caller.limit):
                # A concurrent run took the last unit between check and now.
                usage = self.usage.check_usage(caller.key, caller.limit)
                exc = self._quota_error(caller, usage)
                record.transcript = transcript
                record.advance(ExtractionStatus.FAILED, exc.message)
                self._save(record)
                logger.info("Quota exhausted for %s during finalizing", caller.key)
                self._emit(progress, Stage.FAILED)
                return exc.to_failure()
            record.transcript = transcript
            record.advance(ExtractionStatus.COMPLETED)
            logger.info("Extraction %s completed: %d segments", record.id, len(transcript.segments))
        else:
            if failure is None:
                failure = TranscriptionError(ErrorKind.TRANSCRIPTION_FAILED, "Engine returned no transcript")
            transcript = fallback_transcript(failure, record.metadata, caller.max_duration)
            record.transcript = transcript
            record.advance(ExtractionStatus.FAILED, failure.message)

        self._save(record)

        guest_info = None
        if caller.is_guest:
            after = self.usage.check_usage(caller.key, caller.limit)
            guest_info = GuestInfo(remaining_extractions=after.remaining or 0, reset_at=after.reset_at)

        self._emit(progress, Stage.COMPLETED if failure is None else Stage.FAILED)
        return ExtractionOk(
            extraction=record,
            transcript=transcript,
            guest_info=guest_info,
            degraded_by=failure.kind if failure else None,
        )

    # ── Helpers ──────────────────────────────────────────────────

    def _probe(self, ref: VideoReference) -> VideoMetadata:
        if not self.acquirer.is_available():
            raise AcquisitionError(
                ErrorKind.DEPENDENCY_UNAVAILABLE,
                "yt-dlp is not available. Please ensure it is installed.",
            )
        return self.acquirer.probe(ref)

    def _save(self, record: Extraction) -> None:
        try:
            self.extractions.save_extraction(record)
        except Exception as exc:
            logger.warning("Could not persist extraction %s (%s): %s",
                           record.id, record.status.value, exc)

    def _quota_error(self, caller: _Caller, usage: UsageCheck) -> PolicyError:
        details = {
            "remaining_extractions": 0,
            "reset_at": usage.reset_at.isoformat(),
            "limit": caller.limit,
        }
        if caller.is_guest:
            details["upgrade_message"] = "Create an account for higher limits"
            message = (f"Daily limit reached. Guest users can extract {caller.limit} "
                       f"video{'s' if caller.limit != 1 else ''} per day.")
        else:
            details["tier"] = caller.tier
            details["upgrade_required"] = caller.tier == "free"
            message = f"Daily extraction limit reached ({caller.limit} extractions per day)"
        return PolicyError(ErrorKind.QUOTA_EXCEEDED, message, details)

    def _duration_error(self, caller: _Caller, duration: float, usage: UsageCheck) -> PolicyError:
        cap = caller.max_duration or 0.0
        return PolicyError(
            ErrorKind.DURATION_EXCEEDED,
            f"Video duration exceeds the {cap:g}-second limit for guest users",
            {
                "duration": duration,
                "limit": cap,
                "remaining_extractions": usage.remaining,
                "reset_at": usage.reset_at.isoformat(),
                "upgrade_message": "Create an account to process longer videos",
            },
        )

    @staticmethod
    def _emit(progress: ProgressCallback | None, stage: Stage, estimate: float | None = None) -> None:
        logger.info("Stage %s%s", stage.value, f" (~{estimate:.0f}s left)" if estimate else "")
        if progress is None:
            return
        try:
            progress(ProgressEvent(
                session_id="",
                stage=stage.value,
                status_text=_STAGE_TEXT[stage],
                estimated_seconds=estimate,
            ))
        except Exception as exc:
            logger.debug("Progress callback failed at %s: %s", stage.value, exc)


# ── Module-level convenience ─────────────────────────────────────

_default: Orchestrator | None = None
_default_lock = threading.Lock()


def get_orchestrator() -> Orchestrator:
    """Process-wide orchestrator built from config on first use."""
    global _default
    with _default_lock:
        if _default is None:
            _default = Orchestrator()
        return _default


def extract_guest(raw_url: str, client_ip: str, language: str | None = None,
                  progress: ProgressCallback | None = None) -> Result:
    return get_orchestrator().extract_guest(raw_url, client_ip, language=language, progress=progress)


def extract_authenticated(raw_url: str, requester_id: str, language: str | None = None,
                          tier: str = "free", progress: ProgressCallback | None = None) -> Result:
    return get_orchestrator().extract_authenticated(
        raw_url, requester_id, language=language, tier=tier, progress=progress
    )
