"""Speech-to-text adapter — OpenAI-compatible transcription API.

Works with any endpoint that speaks the OpenAI audio API (OpenAI itself,
or a compatible gateway via VIDSCRIPT_STT_BASE_URL).

Setup:
  VIDSCRIPT_STT_API_KEY=sk-...        (falls back to OPENAI_API_KEY)
  VIDSCRIPT_STT_MODEL=whisper-1
  VIDSCRIPT_TRANSCRIBE_TIMEOUT=300
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import openai
from openai import OpenAI

from .. import config
from ..errors import ErrorKind, TranscriptionError
from ..schemas import Transcript, TranscriptSegment
from .downloader import AudioArtifact

logger = logging.getLogger(__name__)

# Hard request-body ceiling of the transcription endpoint.
MAX_UPLOAD_BYTES = 25 * 1024 * 1024

SUPPORTED_EXTENSIONS = frozenset({"flac", "m4a", "mp3", "mp4", "mpeg", "mpga", "ogg", "wav", "webm"})


def _field(obj: Any, name: str, default: Any = None) -> Any:
    if isinstance(obj, dict):
        return obj.get(name, default)
    return getattr(obj, name, default)


def normalize_transcription(response: Any) -> Transcript:
    """Convert an engine response (SDK object or plain dict) into a ``Transcript``.

    When the engine reports text but no segments, one segment spanning the
    text is synthesized from 0 to the engine-reported duration (0 if unknown).
    """
    text = (_field(response, "text") or "").strip()
    language = _field(response, "language") or None
    raw_segments = _field(response, "segments") or []

    segments: list[TranscriptSegment] = []
    for raw in raw_segments:
        seg_text = str(_field(raw, "text") or "").strip()
        if not seg_text:
            continue
        try:
            start = max(0.0, float(_field(raw, "start") or 0.0))
            end = max(start, float(_field(raw, "end") or start))
            segments.append(TranscriptSegment(start_seconds=round(start, 3), end_seconds=round(end, 3), text=seg_text))
        except (TypeError, ValueError) as exc:
            raise TranscriptionError(
                ErrorKind.TRANSCRIPTION_FAILED,
                f"Engine returned a malformed segment {raw!r}: {exc}",
            )

    if segments:
        segments.sort(key=lambda s: s.start_seconds)
        return Transcript.from_segments(segments, language=language)

    try:
        duration = float(_field(response, "duration") or 0.0)
    except (TypeError, ValueError):
        duration = 0.0
    return Transcript.from_text(text, end_seconds=duration, language=language)


class TranscriptionEngine:
    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        model: str | None = None,
        timeout: float | None = None,
        client: Any = None,
    ) -> None:
        self.api_key = api_key
        self.base_url = base_url
        self.model = model or config.get("VIDSCRIPT_STT_MODEL", "whisper-1")
        self.timeout = timeout or config.get_float("VIDSCRIPT_TRANSCRIBE_TIMEOUT", 300.0)
        self._client = client

    def _get_client(self) -> Any:
        if self._client is None:
            api_key = self.api_key or config.get("VIDSCRIPT_STT_API_KEY") or config.get("OPENAI_API_KEY")
            if not api_key:
                raise TranscriptionError(
                    ErrorKind.INVALID_CREDENTIALS,
                    "No speech-to-text API key configured. Set VIDSCRIPT_STT_API_KEY or OPENAI_API_KEY.",
                )
            client_kwargs: dict[str, Any] = {"api_key": api_key, "timeout": self.timeout, "max_retries": 0}
            base_url = self.base_url or config.get("VIDSCRIPT_STT_BASE_URL")
            if base_url:
                client_kwargs["base_url"] = base_url
            self._client = OpenAI(**client_kwargs)
        return self._client

    def is_available(self) -> bool:
        """Lightweight authenticated call; readiness checks only."""
        try:
            self._get_client().models.list()
            return True
        except TranscriptionError as exc:
            logger.warning("Speech-to-text not configured: %s", exc.message)
        except openai.OpenAIError as exc:
            logger.warning("Speech-to-text API not available: %s", exc)
        return False

    def check_upload(self, path: Path) -> None:
        """Reject files the engine would refuse, before any network call."""
        try:
            size = path.stat().st_size
        except OSError as exc:
            raise TranscriptionError(ErrorKind.TRANSCRIPTION_FAILED, f"Audio file not readable: {exc}")
        if size > MAX_UPLOAD_BYTES:
            raise TranscriptionError(
                ErrorKind.FILE_TOO_LARGE,
                f"Audio file is too large for transcription ({size / (1024 * 1024):.1f}MB, max 25MB)",
                details={"size_bytes": size, "limit_bytes": MAX_UPLOAD_BYTES},
            )
        ext = path.suffix.lower().lstrip(".")
        if ext not in SUPPORTED_EXTENSIONS:
            raise TranscriptionError(
                ErrorKind.UNSUPPORTED_FORMAT,
                f"Audio format '.{ext}' is not supported (expected one of {', '.join(sorted(SUPPORTED_EXTENSIONS))})",
            )

    def transcribe(
        self,
        artifact: AudioArtifact,
        language: str | None = None,
        max_duration_seconds: float | None = None,
    ) -> Transcript:
        """Transcribe an acquired artifact into time-aligned segments.

        ``language=None`` asks the engine to auto-detect. With
        ``max_duration_seconds`` (guest runs) only segments starting before
        the limit are kept and the last one is clamped to it.
        """
        path = Path(artifact.local_path)
        self.check_upload(path)
        client = self._get_client()

        request: dict[str, Any] = {
            "model": self.model,
            "response_format": "verbose_json",
            "timestamp_granularities": ["segment"],
        }
        if language and language != "auto":
            request["language"] = language

        logger.info("Transcribing %s with %s (language=%s)", path.name, self.model, language or "auto")
        try:
            with open(path, "rb") as audio_file:
                response = client.audio.transcriptions.create(file=audio_file, **request)
        except (openai.AuthenticationError, openai.PermissionDeniedError) as exc:
            raise TranscriptionError(ErrorKind.INVALID_CREDENTIALS, f"Invalid speech-to-text API key: {exc}")
        except openai.RateLimitError as exc:
            raise TranscriptionError(ErrorKind.ENGINE_QUOTA_EXCEEDED, f"Speech-to-text quota exceeded: {exc}")
        except (openai.BadRequestError, openai.UnprocessableEntityError) as exc:
            raise TranscriptionError(
                ErrorKind.UNSUPPORTED_FORMAT, f"Audio file format not supported or file is corrupted: {exc}"
            )
        except openai.APITimeoutError:
            raise TranscriptionError(ErrorKind.TIMEOUT, f"Transcription did not finish within {self.timeout:.0f}s")
        except openai.OpenAIError as exc:
            raise TranscriptionError(ErrorKind.TRANSCRIPTION_FAILED, f"Transcription failed: {exc}")
        except OSError as exc:
            raise TranscriptionError(ErrorKind.TRANSCRIPTION_FAILED, f"Audio file not readable: {exc}")

        transcript = normalize_transcription(response)
        if max_duration_seconds is not None:
            transcript = transcript.truncated(max_duration_seconds)

        logger.info("Transcription completed: %d segments", len(transcript.segments))
        return transcript
