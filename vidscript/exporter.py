"""Transcript exporter — renders a transcript as txt, srt, vtt or json.

  txt   one paragraph per segment
  srt   numbered cues, HH:MM:SS,mmm
  vtt   WEBVTT header, HH:MM:SS.mmm
  json  {"text": ..., "segments": [{"start", "end", "text"}], "language"}

An unrecognized format renders as txt (logged), see ``format_transcript``.
"""

from __future__ import annotations

import json
import logging
from enum import Enum

from .schemas import Transcript

logger = logging.getLogger(__name__)


class ExportFormat(str, Enum):
    TXT = "txt"
    SRT = "srt"
    VTT = "vtt"
    JSON = "json"


MIME_TYPES = {
    ExportFormat.TXT: "text/plain",
    ExportFormat.SRT: "application/x-subrip",
    ExportFormat.VTT: "text/vtt",
    ExportFormat.JSON: "application/json",
}


def _timecode(seconds: float, separator: str) -> str:
    total_ms = max(0, round(seconds * 1000))
    hours, rest = divmod(total_ms, 3_600_000)
    minutes, rest = divmod(rest, 60_000)
    secs, ms = divmod(rest, 1_000)
    return f"{hours:02d}:{minutes:02d}:{secs:02d}{separator}{ms:03d}"


def srt_timecode(seconds: float) -> str:
    return _timecode(seconds, ",")


def vtt_timecode(seconds: float) -> str:
    return _timecode(seconds, ".")


def _to_txt(transcript: Transcript) -> str:
    if not transcript.segments:
        return transcript.full_text
    return "\n\n".join(s.text for s in transcript.segments)


def _to_srt(transcript: Transcript) -> str:
    return "".join(
        f"{i}\n{srt_timecode(s.start_seconds)} --> {srt_timecode(s.end_seconds)}\n{s.text}\n\n"
        for i, s in enumerate(transcript.segments, 1)
    )


def _to_vtt(transcript: Transcript) -> str:
    cues = "".join(
        f"{vtt_timecode(s.start_seconds)} --> {vtt_timecode(s.end_seconds)}\n{s.text}\n\n"
        for s in transcript.segments
    )
    return "WEBVTT\n\n" + cues


def _to_json(transcript: Transcript) -> str:
    payload = {
        "text": transcript.full_text,
        "segments": [
            {"start": s.start_seconds, "end": s.end_seconds, "text": s.text}
            for s in transcript.segments
        ],
        "language": transcript.language,
    }
    return json.dumps(payload, indent=2, ensure_ascii=False)


_RENDERERS = {
    ExportFormat.TXT: _to_txt,
    ExportFormat.SRT: _to_srt,
    ExportFormat.VTT: _to_vtt,
    ExportFormat.JSON: _to_json,
}


def parse_format(value: str | ExportFormat) -> ExportFormat | None:
    if isinstance(value, ExportFormat):
        return value
    try:
        return ExportFormat((value or "").strip().lower())
    except ValueError:
        return None


def format_transcript(transcript: Transcript, fmt: str | ExportFormat = ExportFormat.TXT) -> str:
    """Render ``transcript`` in ``fmt``. Pure; unknown formats fall back to txt."""
    export_format = parse_format(fmt)
    if export_format is None:
        logger.warning("Unknown export format %r, rendering plain text", fmt)
        export_format = ExportFormat.TXT
    return _RENDERERS[export_format](transcript)
