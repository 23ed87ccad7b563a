"""vidscript schemas — transcript, extraction record and result payloads."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, Field, computed_field, model_validator

from .errors import ErrorKind


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Platform(str, Enum):
    YOUTUBE = "youtube"
    BILIBILI = "bilibili"
    REDBOOK = "redbook"


class VideoReference(BaseModel, frozen=True):
    raw_url: str
    platform: Platform
    canonical_id: str


class VideoMetadata(BaseModel):
    title: str
    duration_seconds: float = Field(default=0.0, ge=0)
    thumbnail_url: Optional[str] = None


class TranscriptSegment(BaseModel):
    start_seconds: float = Field(ge=0)
    end_seconds: float = Field(ge=0)
    text: str

    @model_validator(mode="after")
    def _end_after_start(self) -> "TranscriptSegment":
        if self.end_seconds < self.start_seconds:
            raise ValueError(
                f"segment ends ({self.end_seconds}) before it starts ({self.start_seconds})"
            )
        return self


def join_segments(segments: list[TranscriptSegment]) -> str:
    return " ".join(s.text for s in segments)


class Transcript(BaseModel):
    """Ordered, time-aligned transcript.

    ``full_text`` is always the segment texts joined with a single space;
    exporters rely on that, so it is checked on construction.
    """

    full_text: str = ""
    segments: list[TranscriptSegment] = Field(default_factory=list)
    language: Optional[str] = None

    @model_validator(mode="after")
    def _full_text_matches_segments(self) -> "Transcript":
        if self.full_text != join_segments(self.segments):
            raise ValueError("full_text must equal the segment texts joined by a single space")
        return self

    @classmethod
    def from_segments(cls, segments: list[TranscriptSegment], language: str | None = None) -> "Transcript":
        return cls(full_text=join_segments(segments), segments=list(segments), language=language)

    @classmethod
    def from_text(cls, text: str, end_seconds: float = 0.0, language: str | None = None) -> "Transcript":
        """Single segment covering the whole text, starting at zero."""
        text = text.strip()
        if not text:
            return cls(language=language)
        segment = TranscriptSegment(start_seconds=0.0, end_seconds=max(0.0, end_seconds), text=text)
        return cls.from_segments([segment], language=language)

    def truncated(self, max_duration_seconds: float) -> "Transcript":
        """Keep segments starting before the limit and clamp ends to it.

        Segments are cut first and the text rebuilt from them, so the join
        invariant holds. Truncating again to the same or a larger limit
        returns an identical transcript.
        """
        kept: list[TranscriptSegment] = []
        for seg in self.segments:
            if seg.start_seconds >= max_duration_seconds:
                continue
            if seg.end_seconds > max_duration_seconds:
                seg = seg.model_copy(update={"end_seconds": max_duration_seconds})
            kept.append(seg)
        return Transcript.from_segments(kept, language=self.language)


class ExtractionStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


_TRANSITIONS = {
    ExtractionStatus.PENDING: {ExtractionStatus.PROCESSING, ExtractionStatus.FAILED},
    ExtractionStatus.PROCESSING: {ExtractionStatus.COMPLETED, ExtractionStatus.FAILED},
    ExtractionStatus.COMPLETED: set(),
    ExtractionStatus.FAILED: set(),
}


class Extraction(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    requester: Optional[str] = None  # None for guests
    client_ip: Optional[str] = None
    video: VideoReference
    metadata: Optional[VideoMetadata] = None
    transcript: Optional[Transcript] = None
    language: Optional[str] = None
    status: ExtractionStatus = ExtractionStatus.PENDING
    error_message: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @computed_field
    @property
    def duration_seconds(self) -> Optional[float]:
        return self.metadata.duration_seconds if self.metadata else None

    @property
    def is_guest(self) -> bool:
        return self.requester is None

    def advance(self, status: ExtractionStatus, error_message: str | None = None) -> None:
        """Move to ``status``; only pending → processing → completed|failed is legal."""
        if status not in _TRANSITIONS[self.status]:
            raise ValueError(f"illegal status transition {self.status.value} -> {status.value}")
        self.status = status
        if error_message is not None:
            self.error_message = error_message
        self.updated_at = utcnow()


class GuestInfo(BaseModel):
    remaining_extractions: int
    reset_at: datetime


class UsageCheck(BaseModel):
    can_proceed: bool
    remaining: Optional[int] = None  # None = unlimited
    reset_at: datetime
    limit: Optional[int] = None


class ExtractionOk(BaseModel):
    kind: Literal["ok"] = "ok"
    extraction: Extraction
    transcript: Transcript
    guest_info: Optional[GuestInfo] = None
    # set when the transcript is a fallback placeholder
    degraded_by: Optional[ErrorKind] = None


class ExtractionFailure(BaseModel):
    kind: Literal["error"] = "error"
    error_kind: ErrorKind
    message: str
    details: Optional[dict[str, Any]] = None


ExtractionResult = Annotated[Union[ExtractionOk, ExtractionFailure], Field(discriminator="kind")]


class ProgressEvent(BaseModel):
    session_id: str
    stage: str
    status_text: str = ""
    estimated_seconds: Optional[float] = None
    timestamp: datetime = Field(default_factory=utcnow)
