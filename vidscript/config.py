"""vidscript configuration — environment first, then .env files.

Lookup order for every key:
  1. Process environment
  2. ./.env
  3. ./.vidscript/.env
  4. The default passed by the caller

Only the first .env file found is read. Empty values count as unset.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

logger = logging.getLogger(__name__)

ENV_FILES = (Path(".env"), Path(".vidscript") / ".env")

_file_values: dict[str, str] | None = None


def parse_env_lines(lines: list[str]) -> dict[str, str]:
    """KEY=VALUE pairs; ``export`` prefixes, quotes and ``#`` comments are tolerated."""
    values: dict[str, str] = {}
    for line in lines:
        line = line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        if line.startswith("export "):
            line = line[len("export "):]
        key, _, value = line.partition("=")
        value = value.strip()
        if value[:1] in ("'", '"') and value.endswith(value[0]) and len(value) > 1:
            value = value[1:-1]
        elif " #" in value:
            value = value.split(" #", 1)[0].rstrip()
        values[key.strip()] = value
    return values


def _read_env_files() -> dict[str, str]:
    for rel in ENV_FILES:
        path = Path.cwd() / rel
        if path.is_file():
            logger.debug("Read config from %s", path)
            return parse_env_lines(path.read_text(encoding="utf-8").splitlines())
    return {}


def reload() -> None:
    """Forget cached .env values; the next lookup re-reads the files."""
    global _file_values
    _file_values = None


def get(key: str, default: str = "") -> str:
    global _file_values
    value = os.environ.get(key)
    if value:
        return value
    if _file_values is None:
        _file_values = _read_env_files()
    return _file_values.get(key) or default


def get_int(key: str, default: int | None) -> int | None:
    raw = get(key)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning("Ignoring non-integer %s=%r, using %s", key, raw, default)
        return default


def get_float(key: str, default: float) -> float:
    raw = get(key)
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning("Ignoring non-numeric %s=%r, using %s", key, raw, default)
        return default


def data_dir() -> Path:
    """Directory holding the SQLite index (usage counters + extractions)."""
    configured = get("VIDSCRIPT_DATA_DIR")
    return Path(configured) if configured else Path.cwd() / ".vidscript"
