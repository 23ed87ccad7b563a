"""Shared fakes for pipeline tests — no network, no yt-dlp binary."""

from __future__ import annotations

import threading
import uuid
from pathlib import Path

import pytest

from vidscript.adapters.downloader import AudioArtifact
from vidscript.orchestrator import Limits, Orchestrator
from vidscript.schemas import Transcript, TranscriptSegment, VideoMetadata
from vidscript.store import ExtractionStore, UsageStore


def make_transcript(*spans: tuple[float, float, str], language: str | None = "en") -> Transcript:
    return Transcript.from_segments(
        [TranscriptSegment(start_seconds=s, end_seconds=e, text=t) for s, e, t in spans],
        language=language,
    )


class FakeAcquirer:
    """Writes a real temp file per download so release() can be observed."""

    def __init__(self, workdir: Path, metadata: VideoMetadata | None = None,
                 available: bool = True, error: Exception | None = None) -> None:
        self.workdir = workdir
        self.metadata = metadata or VideoMetadata(title="Test Video", duration_seconds=50.0)
        self.available = available
        self.error = error
        self.probed: list[str] = []
        self.artifacts: list[AudioArtifact] = []

    def is_available(self) -> bool:
        return self.available

    def probe(self, ref):
        self.probed.append(ref.canonical_id)
        return self.metadata

    def acquire(self, ref, metadata=None):
        if self.error is not None:
            raise self.error
        path = self.workdir / f"audio-{uuid.uuid4().hex[:8]}.mp3"
        path.write_bytes(b"ID3" + b"\x00" * 64)
        artifact = AudioArtifact(local_path=path, duration_seconds=self.metadata.duration_seconds,
                                 title=self.metadata.title)
        self.artifacts.append(artifact)
        return artifact


class FakeEngine:
    def __init__(self, transcript: Transcript | None = None, error: Exception | None = None,
                 barrier: threading.Barrier | None = None) -> None:
        self.transcript = transcript if transcript is not None else make_transcript((0.0, 5.0, "hello"))
        self.error = error
        self.barrier = barrier
        self.calls: list[dict] = []

    def is_available(self) -> bool:
        return True

    def transcribe(self, artifact, language=None, max_duration_seconds=None):
        self.calls.append({"path": artifact.local_path, "language": language,
                           "max_duration_seconds": max_duration_seconds})
        if self.barrier is not None:
            self.barrier.wait()
        if self.error is not None:
            raise self.error
        if max_duration_seconds is not None:
            return self.transcript.truncated(max_duration_seconds)
        return self.transcript


class RecordingExtractions:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.saved = []

    def save_extraction(self, record):
        if self.fail:
            raise OSError("disk full")
        self.saved.append(record.model_copy(deep=True))
        return record.id


@pytest.fixture
def workdir(tmp_path: Path) -> Path:
    path = tmp_path / "audio"
    path.mkdir()
    return path


@pytest.fixture
def usage_store(tmp_path: Path) -> UsageStore:
    return UsageStore(tmp_path / "data")


@pytest.fixture
def extraction_store(tmp_path: Path) -> ExtractionStore:
    return ExtractionStore(tmp_path / "data")


@pytest.fixture
def make_orchestrator(workdir, usage_store, extraction_store):
    def _make(acquirer=None, engine=None, extractions=None, **limits) -> Orchestrator:
        return Orchestrator(
            acquirer=acquirer or FakeAcquirer(workdir),
            engine=engine or FakeEngine(),
            usage=usage_store,
            extractions=extractions if extractions is not None else extraction_store,
            limits=Limits(**limits),
        )

    return _make
