"""External-service adapters — the downloader and the speech-to-text engine."""

from __future__ import annotations

from .downloader import AudioAcquirer, AudioArtifact, YtDlpClient
from .stt import TranscriptionEngine


def check_dependencies(acquirer: AudioAcquirer, engine: TranscriptionEngine) -> dict[str, bool]:
    """Availability of every external dependency, for health/readiness reporting."""
    return {
        "downloader": acquirer.is_available(),
        "transcription": engine.is_available(),
    }


__all__ = ["AudioAcquirer", "AudioArtifact", "TranscriptionEngine", "YtDlpClient", "check_dependencies"]
