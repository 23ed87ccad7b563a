"""URL resolver — routes a raw URL to a supported platform and video id."""

from __future__ import annotations

import re
from urllib.parse import urlparse

from .errors import ErrorKind, ResolutionError
from .schemas import Platform, VideoReference

_ID_END = r"(?=$|[?&#/])"

# Platforms in priority order; within a platform the most specific pattern
# comes first so an embed URL is never read with the watch-URL pattern.
PLATFORM_PATTERNS: list[tuple[Platform, list[re.Pattern[str]]]] = [
    (Platform.YOUTUBE, [
        re.compile(r"^https?://(?:www\.|m\.)?youtube\.com/embed/([A-Za-z0-9_-]{11})" + _ID_END),
        re.compile(r"^https?://youtu\.be/([A-Za-z0-9_-]{11})" + _ID_END),
        re.compile(r"^https?://(?:www\.|m\.)?youtube\.com/watch\?(?:[^#]*&)?v=([A-Za-z0-9_-]{11})(?=$|[&#])"),
    ]),
    (Platform.BILIBILI, [
        re.compile(r"^https?://(?:www\.|m\.)?bilibili\.com/video/(BV[A-Za-z0-9]{10})" + _ID_END),
        re.compile(r"^https?://(?:www\.|m\.)?bilibili\.com/video/(av\d+)" + _ID_END, re.IGNORECASE),
    ]),
    (Platform.REDBOOK, [
        re.compile(r"^https?://(?:www\.)?xiaohongshu\.com/explore/([A-Za-z0-9]+)" + _ID_END),
        re.compile(r"^https?://(?:www\.)?xhslink\.com/(?:[a-z]/)?([A-Za-z0-9]+)" + _ID_END),
    ]),
]


def _validate_url(raw_url: str) -> str:
    url = (raw_url or "").strip()
    if not url:
        raise ResolutionError(ErrorKind.INVALID_URL, "Video URL is required")
    parsed = urlparse(url)
    if parsed.scheme.lower() not in ("http", "https") or not parsed.hostname:
        raise ResolutionError(ErrorKind.INVALID_URL, f"Invalid URL format: {url}")
    if " " in url:
        raise ResolutionError(ErrorKind.INVALID_URL, f"Invalid URL format: {url}")
    # Hostnames are case-insensitive; paths and ids are not.
    return parsed._replace(scheme=parsed.scheme.lower(), netloc=parsed.netloc.lower()).geturl()


def resolve(raw_url: str) -> VideoReference:
    """Classify a URL into a ``VideoReference``.

    Raises ResolutionError with ``InvalidUrl`` for anything that is not an
    http(s) URL, and ``UnsupportedPlatform`` when no platform pattern matches.
    """
    url = _validate_url(raw_url)
    for platform, patterns in PLATFORM_PATTERNS:
        for pattern in patterns:
            m = pattern.match(url)
            if m:
                return VideoReference(raw_url=raw_url.strip(), platform=platform, canonical_id=m.group(1))
    raise ResolutionError(ErrorKind.UNSUPPORTED_PLATFORM, f"Unsupported video platform: {url}")


def detect_platform(raw_url: str) -> Platform | None:
    try:
        return resolve(raw_url).platform
    except ResolutionError:
        return None


def canonical_url(ref: VideoReference) -> str:
    """URL handed to the downloader for a resolved reference."""
    if ref.platform is Platform.YOUTUBE:
        return f"https://www.youtube.com/watch?v={ref.canonical_id}"
    if ref.platform is Platform.BILIBILI:
        return f"https://www.bilibili.com/video/{ref.canonical_id}"
    if "xiaohongshu.com/explore/" in ref.raw_url:
        return f"https://www.xiaohongshu.com/explore/{ref.canonical_id}"
    # xhslink short links only resolve through their redirect
    return ref.raw_url
