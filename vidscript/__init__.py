"""
vidscript — video-to-transcript extraction.

Usage:
    from vidscript import extract_guest, extract_authenticated, format_transcript

    # Guest run: IP-keyed daily quota, videos up to 60 seconds
    result = extract_guest("https://youtu.be/dQw4w9WgXcQ", client_ip="203.0.113.7")

    # Account run: tier-dependent daily quota, full-length videos
    result = extract_authenticated("https://www.bilibili.com/video/BV1xx411c7mD", "alice", tier="pro")

    if result.kind == "ok":
        print(format_transcript(result.transcript, "srt"))
    else:
        print(result.error_kind, result.message)
"""

from .errors import ErrorKind, VidscriptError
from .exporter import ExportFormat, format_transcript
from .orchestrator import Orchestrator, extract_authenticated, extract_guest, get_orchestrator
from .resolver import resolve
from .schemas import ExtractionFailure, ExtractionOk, Transcript, TranscriptSegment, VideoReference

__all__ = [
    "ErrorKind",
    "ExportFormat",
    "ExtractionFailure",
    "ExtractionOk",
    "Orchestrator",
    "Transcript",
    "TranscriptSegment",
    "VideoReference",
    "VidscriptError",
    "extract_authenticated",
    "extract_guest",
    "format_transcript",
    "get_orchestrator",
    "resolve",
]
