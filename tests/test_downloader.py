"""Tests for the yt-dlp adapter (probe, download, artifact lifetime)."""

import json
import subprocess
from pathlib import Path

import pytest

from vidscript.adapters.downloader import AudioAcquirer, AudioArtifact, YtDlpClient, normalize_info
from vidscript.errors import AcquisitionError, ErrorKind
from vidscript.resolver import resolve
from vidscript.schemas import VideoMetadata

INFO = {"title": "Never Gonna Give You Up", "duration": 212, "thumbnail": "https://i.ytimg.com/x.jpg"}


def _fake_which(name: str) -> str | None:
    return "/usr/bin/yt-dlp" if name == "yt-dlp" else None


def _template_of(command: list[str]) -> str:
    return command[command.index("-o") + 1]


def _install(monkeypatch, fake_run) -> None:
    monkeypatch.setenv("VIDSCRIPT_YTDLP_PATH", "")
    monkeypatch.setattr("vidscript.adapters.downloader.shutil.which", _fake_which)
    monkeypatch.setattr("vidscript.adapters.downloader.subprocess.run", fake_run)


def test_probe_reads_metadata_without_writing_files(monkeypatch, tmp_path) -> None:
    calls: list[list[str]] = []

    def fake_run(command, *, capture_output=False, text=False, timeout=120, check=False):
        calls.append(command)
        return subprocess.CompletedProcess(command, 0, json.dumps(INFO), "")

    _install(monkeypatch, fake_run)
    acquirer = AudioAcquirer(temp_dir=tmp_path)
    metadata = acquirer.probe(resolve("https://youtu.be/dQw4w9WgXcQ"))

    assert metadata.title == "Never Gonna Give You Up"
    assert metadata.duration_seconds == 212
    assert "--skip-download" in calls[0]
    assert calls[0][-1] == "https://www.youtube.com/watch?v=dQw4w9WgXcQ"
    assert list(tmp_path.iterdir()) == []


def test_probe_failure_carries_exit_code(monkeypatch, tmp_path) -> None:
    def fake_run(command, *, capture_output=False, text=False, timeout=120, check=False):
        return subprocess.CompletedProcess(command, 1, "", "ERROR: Video unavailable")

    _install(monkeypatch, fake_run)
    with pytest.raises(AcquisitionError) as excinfo:
        AudioAcquirer(temp_dir=tmp_path).probe(resolve("https://youtu.be/dQw4w9WgXcQ"))
    assert excinfo.value.kind is ErrorKind.DOWNLOAD_FAILED
    assert excinfo.value.details["exit_code"] == 1
    assert "Video unavailable" in excinfo.value.details["stderr"]


def test_acquire_returns_artifact_owning_the_file(monkeypatch, tmp_path) -> None:
    def fake_run(command, *, capture_output=False, text=False, timeout=120, check=False):
        out = Path(_template_of(command).replace("%(ext)s", "mp3"))
        out.write_bytes(b"ID3audio")
        return subprocess.CompletedProcess(command, 0, "", "")

    _install(monkeypatch, fake_run)
    acquirer = AudioAcquirer(temp_dir=tmp_path)
    ref = resolve("https://www.bilibili.com/video/BV1xx411c7mD")
    artifact = acquirer.acquire(ref, VideoMetadata(title="clip", duration_seconds=30))
    assert artifact.local_path.exists()
    assert artifact.local_path.suffix == ".mp3"
    assert artifact.size_bytes == len(b"ID3audio")
    assert artifact.duration_seconds == 30

    artifact.release()
    assert not artifact.local_path.exists()
    artifact.release()
    assert artifact.released


def test_missing_output_fails_and_removes_partials(monkeypatch, tmp_path) -> None:
    def fake_run(command, *, capture_output=False, text=False, timeout=120, check=False):
        if "--dump-json" in command:
            return subprocess.CompletedProcess(command, 0, json.dumps(INFO), "")
        Path(_template_of(command).replace("%(ext)s", "webm.part")).write_bytes(b"partial")
        return subprocess.CompletedProcess(command, 0, "", "")

    _install(monkeypatch, fake_run)
    with pytest.raises(AcquisitionError) as excinfo:
        AudioAcquirer(temp_dir=tmp_path).acquire(resolve("https://youtu.be/dQw4w9WgXcQ"))
    assert excinfo.value.kind is ErrorKind.DOWNLOAD_FAILED
    assert "not created" in excinfo.value.message
    assert list(tmp_path.iterdir()) == []


def test_nonzero_download_exit_is_download_failed(monkeypatch, tmp_path) -> None:
    def fake_run(command, *, capture_output=False, text=False, timeout=120, check=False):
        return subprocess.CompletedProcess(command, 2, "", "HTTP Error 403: Forbidden")

    _install(monkeypatch, fake_run)
    with pytest.raises(AcquisitionError) as excinfo:
        AudioAcquirer(temp_dir=tmp_path).acquire(
            resolve("https://youtu.be/dQw4w9WgXcQ"), VideoMetadata(title="x", duration_seconds=10)
        )
    assert excinfo.value.kind is ErrorKind.DOWNLOAD_FAILED
    assert excinfo.value.details == {"exit_code": 2, "stderr": "HTTP Error 403: Forbidden"}


def test_timeout_maps_to_timeout(monkeypatch, tmp_path) -> None:
    def fake_run(command, *, capture_output=False, text=False, timeout=120, check=False):
        raise subprocess.TimeoutExpired(command, timeout)

    _install(monkeypatch, fake_run)
    with pytest.raises(AcquisitionError) as excinfo:
        YtDlpClient(probe_timeout=5).get_info("https://www.youtube.com/watch?v=dQw4w9WgXcQ")
    assert excinfo.value.kind is ErrorKind.TIMEOUT


def test_download_timeout_removes_partials(monkeypatch, tmp_path) -> None:
    def fake_run(command, *, capture_output=False, text=False, timeout=120, check=False):
        Path(_template_of(command).replace("%(ext)s", "webm.part")).write_bytes(b"partial")
        raise subprocess.TimeoutExpired(command, timeout)

    _install(monkeypatch, fake_run)
    acquirer = AudioAcquirer(YtDlpClient(download_timeout=5), temp_dir=tmp_path)
    with pytest.raises(AcquisitionError) as excinfo:
        acquirer.acquire(resolve("https://youtu.be/dQw4w9WgXcQ"), VideoMetadata(title="x", duration_seconds=10))
    assert excinfo.value.kind is ErrorKind.TIMEOUT
    assert list(tmp_path.iterdir()) == []


def test_missing_binary_is_dependency_unavailable(monkeypatch, tmp_path) -> None:
    monkeypatch.setenv("VIDSCRIPT_YTDLP_PATH", "")
    monkeypatch.setattr("vidscript.adapters.downloader.shutil.which", lambda name: None)

    with pytest.raises(AcquisitionError) as excinfo:
        YtDlpClient().get_info("https://www.youtube.com/watch?v=dQw4w9WgXcQ")
    assert excinfo.value.kind is ErrorKind.DEPENDENCY_UNAVAILABLE
    assert AudioAcquirer(temp_dir=tmp_path).is_available() is False


def test_is_available_runs_version(monkeypatch, tmp_path) -> None:
    def fake_run(command, *, capture_output=False, text=False, timeout=120, check=False):
        assert command[1:] == ["--version"]
        return subprocess.CompletedProcess(command, 0, "2024.08.06\n", "")

    _install(monkeypatch, fake_run)
    assert AudioAcquirer(temp_dir=tmp_path).is_available() is True


def test_artifact_context_manager_releases(tmp_path) -> None:
    path = tmp_path / "a.mp3"
    path.write_bytes(b"x")
    with AudioArtifact(local_path=path, duration_seconds=1, title="t") as artifact:
        assert artifact.local_path.exists()
    assert not path.exists()


def test_normalize_info_shapes() -> None:
    assert normalize_info(INFO).title == "Never Gonna Give You Up"
    assert normalize_info([INFO]).duration_seconds == 212
    assert normalize_info({"_type": "playlist", "entries": [INFO]}).title == "Never Gonna Give You Up"

    lines = json.dumps(INFO) + "\n" + json.dumps({"title": "second"})
    assert normalize_info(lines).title == "Never Gonna Give You Up"

    sparse = normalize_info({"thumbnails": [{"url": "a"}, {"url": "b"}]})
    assert sparse.title == "Unknown Title"
    assert sparse.duration_seconds == 0
    assert sparse.thumbnail_url == "b"


def test_normalize_info_rejects_garbage() -> None:
    with pytest.raises(AcquisitionError):
        normalize_info("not json")
    with pytest.raises(AcquisitionError):
        normalize_info(42)
