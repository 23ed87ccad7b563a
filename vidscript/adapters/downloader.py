"""Downloader adapter — metadata probing and audio acquisition via yt-dlp.

The yt-dlp binary is driven as an external process. ``YtDlpClient`` is the
raw service contract (info / download / version); ``AudioAcquirer`` builds
the pipeline semantics on top: probe without writing files, download to a
unique temp file, verify it, and hand back an ``AudioArtifact`` that owns
the file until ``release()``.
"""

from __future__ import annotations

import json
import logging
import shutil
import subprocess
import tempfile
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .. import config
from ..errors import AcquisitionError, ErrorKind
from ..resolver import canonical_url
from ..schemas import VideoMetadata, VideoReference

logger = logging.getLogger(__name__)

_STDERR_TAIL = 500


# ── Artifact ─────────────────────────────────────────────────

@dataclass(slots=True)
class AudioArtifact:
    local_path: Path
    duration_seconds: float
    title: str
    _released: bool = field(default=False, repr=False)

    @property
    def size_bytes(self) -> int:
        return self.local_path.stat().st_size

    @property
    def released(self) -> bool:
        return self._released

    def release(self) -> None:
        """Delete the temp file. Safe to call any number of times."""
        if self._released:
            return
        self._released = True
        try:
            self.local_path.unlink(missing_ok=True)
            logger.debug("Released audio artifact %s", self.local_path)
        except OSError as exc:
            logger.warning("Could not delete audio artifact %s: %s", self.local_path, exc)

    def __enter__(self) -> "AudioArtifact":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.release()


# ── Response normalization ───────────────────────────────────

def normalize_info(raw: Any) -> VideoMetadata:
    """Turn any accepted yt-dlp info shape into ``VideoMetadata``.

    Accepts a dict, a list of dicts (playlist-style output), or the raw
    ``--dump-json`` text, which may hold one JSON object per line.
    """
    if isinstance(raw, (str, bytes)):
        text = raw.decode("utf-8", errors="replace") if isinstance(raw, bytes) else raw
        lines = [line for line in text.splitlines() if line.strip()]
        if not lines:
            raise AcquisitionError(ErrorKind.DOWNLOAD_FAILED, "yt-dlp returned no video info")
        try:
            raw = json.loads(lines[0]) if len(lines) > 1 else json.loads(text)
        except json.JSONDecodeError as exc:
            raise AcquisitionError(ErrorKind.DOWNLOAD_FAILED, f"Unreadable yt-dlp info output: {exc}")

    if isinstance(raw, list):
        raw = next((item for item in raw if isinstance(item, dict)), None)
    if isinstance(raw, dict) and raw.get("_type") == "playlist" and raw.get("entries"):
        raw = next((e for e in raw["entries"] if isinstance(e, dict)), raw)
    if not isinstance(raw, dict):
        raise AcquisitionError(ErrorKind.DOWNLOAD_FAILED, "yt-dlp returned an unexpected info shape")

    try:
        duration = max(0.0, float(raw.get("duration") or 0))
    except (TypeError, ValueError):
        duration = 0.0

    thumbnail = raw.get("thumbnail")
    if not thumbnail:
        thumbs = [t for t in raw.get("thumbnails") or [] if isinstance(t, dict) and t.get("url")]
        thumbnail = thumbs[-1]["url"] if thumbs else None

    return VideoMetadata(
        title=str(raw.get("title") or "Unknown Title"),
        duration_seconds=duration,
        thumbnail_url=thumbnail,
    )


# ── yt-dlp service client ────────────────────────────────────

class YtDlpClient:
    def __init__(
        self,
        binary: str | None = None,
        probe_timeout: float | None = None,
        download_timeout: float | None = None,
    ) -> None:
        self.binary = binary
        self.probe_timeout = probe_timeout or config.get_float("VIDSCRIPT_PROBE_TIMEOUT", 60.0)
        self.download_timeout = download_timeout or config.get_float("VIDSCRIPT_DOWNLOAD_TIMEOUT", 600.0)

    def _binary_path(self) -> str:
        path = self.binary or config.get("VIDSCRIPT_YTDLP_PATH") or shutil.which("yt-dlp")
        if not path:
            raise AcquisitionError(ErrorKind.DEPENDENCY_UNAVAILABLE, "yt-dlp is not installed or not on PATH")
        return path

    def _run(self, args: list[str], timeout: float) -> subprocess.CompletedProcess:
        cmd = [self._binary_path(), *args]
        logger.debug("Running: %s", " ".join(cmd))
        try:
            return subprocess.run(cmd, capture_output=True, text=True, timeout=timeout, check=False)
        except subprocess.TimeoutExpired:
            raise AcquisitionError(ErrorKind.TIMEOUT, f"yt-dlp did not finish within {timeout:.0f}s")
        except (FileNotFoundError, PermissionError) as exc:
            raise AcquisitionError(ErrorKind.DEPENDENCY_UNAVAILABLE, f"yt-dlp could not be started: {exc}")
        except (OSError, subprocess.SubprocessError) as exc:
            raise AcquisitionError(ErrorKind.DOWNLOAD_FAILED, f"yt-dlp failed to run: {exc}")

    def get_info(self, url: str) -> VideoMetadata:
        result = self._run(
            ["--dump-json", "--skip-download", "--no-playlist", "--no-warnings", url],
            timeout=self.probe_timeout,
        )
        if result.returncode != 0:
            stderr = (result.stderr or "").strip()[-_STDERR_TAIL:]
            raise AcquisitionError(
                ErrorKind.DOWNLOAD_FAILED,
                f"Failed to get video info (exit {result.returncode}): {stderr}",
                details={"exit_code": result.returncode, "stderr": stderr},
            )
        return normalize_info(result.stdout)

    def download_audio(self, url: str, output_template: str) -> subprocess.CompletedProcess:
        return self._run(
            [
                "-x", "--audio-format", "mp3",
                "--audio-quality", "0",
                "--no-playlist", "--no-warnings", "--quiet",
                "-o", output_template,
                url,
            ],
            timeout=self.download_timeout,
        )

    def check_version(self) -> int:
        return self._run(["--version"], timeout=15).returncode


# ── Acquirer ─────────────────────────────────────────────────

class AudioAcquirer:
    def __init__(self, client: YtDlpClient | None = None, temp_dir: str | Path | None = None) -> None:
        self.client = client or YtDlpClient()
        self.temp_dir = Path(temp_dir) if temp_dir else Path(tempfile.gettempdir())

    def is_available(self) -> bool:
        try:
            return self.client.check_version() == 0
        except AcquisitionError as exc:
            logger.warning("yt-dlp not available: %s", exc.message)
            return False

    def probe(self, ref: VideoReference) -> VideoMetadata:
        """Title/duration/thumbnail without downloading anything."""
        metadata = self.client.get_info(canonical_url(ref))
        logger.info("Probed %s:%s — %r (%.0fs)", ref.platform.value, ref.canonical_id,
                    metadata.title[:60], metadata.duration_seconds)
        return metadata

    def acquire(self, ref: VideoReference, metadata: VideoMetadata | None = None) -> AudioArtifact:
        """Download the audio track of ``ref`` into a unique temp file."""
        if metadata is None:
            metadata = self.probe(ref)

        self.temp_dir.mkdir(parents=True, exist_ok=True)
        stem = f"vidscript-{uuid.uuid4().hex}"
        audio_path = self.temp_dir / f"{stem}.mp3"
        output_template = str(self.temp_dir / f"{stem}.%(ext)s")

        try:
            result = self.client.download_audio(canonical_url(ref), output_template)
            if result.returncode != 0:
                stderr = (result.stderr or "").strip()[-_STDERR_TAIL:]
                raise AcquisitionError(
                    ErrorKind.DOWNLOAD_FAILED,
                    f"yt-dlp exited with code {result.returncode}: {stderr}",
                    details={"exit_code": result.returncode, "stderr": stderr},
                )
            if not audio_path.exists() or audio_path.stat().st_size == 0:
                raise AcquisitionError(ErrorKind.DOWNLOAD_FAILED, "Audio file was not created")
        except BaseException:
            self._discard(stem)
            raise

        logger.info("Downloaded audio for %s (%d bytes)", ref.canonical_id, audio_path.stat().st_size)
        return AudioArtifact(
            local_path=audio_path,
            duration_seconds=metadata.duration_seconds,
            title=metadata.title,
        )

    def _discard(self, stem: str) -> None:
        """Remove anything yt-dlp left behind for this download (.part, .webm, ...)."""
        for leftover in self.temp_dir.glob(f"{stem}.*"):
            try:
                leftover.unlink()
                logger.debug("Removed partial download %s", leftover)
            except OSError as exc:
                logger.warning("Could not remove partial download %s: %s", leftover, exc)
