"""vidscript store — SQLite-backed usage counters and extraction records.

Storage layout:
  .vidscript/
  └── _index.sqlite3
      ├── usage        ← (key, usage_date) → extraction_count
      └── extractions  ← one row per pipeline run, record kept as JSON

Usage keys are opaque: ``ip:<address>`` for guests, ``user:<id>`` for
account holders. Days are UTC calendar days.
"""

from __future__ import annotations

import logging
import sqlite3
from datetime import date, datetime, time, timedelta, timezone
from pathlib import Path
from typing import Callable

from . import config
from .schemas import Extraction, UsageCheck, utcnow

logger = logging.getLogger(__name__)


def guest_key(client_ip: str) -> str:
    return f"ip:{client_ip}"


def user_key(user_id: str) -> str:
    return f"user:{user_id}"


class _SQLiteStore:
    def __init__(self, data_dir: str | Path | None = None) -> None:
        self.data_dir = Path(data_dir) if data_dir else config.data_dir()
        self.data_dir.mkdir(parents=True, exist_ok=True)
        self._db_path = str(self.data_dir / "_index.sqlite3")
        self._ensure_schema()

    def _connect(self) -> sqlite3.Connection:
        return sqlite3.connect(self._db_path, timeout=30)

    def _ensure_schema(self) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS usage (
                    key TEXT NOT NULL,
                    usage_date TEXT NOT NULL,
                    extraction_count INTEGER NOT NULL DEFAULT 0,
                    last_extraction_at TEXT,
                    PRIMARY KEY (key, usage_date)
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS extractions (
                    id TEXT PRIMARY KEY,
                    requester TEXT,
                    client_ip TEXT,
                    status TEXT NOT NULL,
                    record TEXT NOT NULL,
                    created_at TEXT NOT NULL
                )
                """
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_extractions_requester "
                "ON extractions(requester, created_at DESC)"
            )
            conn.commit()


class UsageStore(_SQLiteStore):
    """Per-key daily extraction counter with an atomic conditional increment."""

    def __init__(self, data_dir: str | Path | None = None,
                 now: Callable[[], datetime] | None = None) -> None:
        self._now = now or utcnow
        super().__init__(data_dir)

    def _today(self) -> date:
        return self._now().astimezone(timezone.utc).date()

    def _reset_at(self, day: date) -> datetime:
        return datetime.combine(day + timedelta(days=1), time.min, tzinfo=timezone.utc)

    def current_count(self, key: str) -> int:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT extraction_count FROM usage WHERE key = ? AND usage_date = ?",
                (key, self._today().isoformat()),
            ).fetchone()
        return row[0] if row else 0

    def check_usage(self, key: str, limit: int | None) -> UsageCheck:
        """Read-only view of today's usage. ``limit=None`` means unlimited."""
        day = self._today()
        reset_at = self._reset_at(day)
        if limit is None:
            return UsageCheck(can_proceed=True, remaining=None, reset_at=reset_at, limit=None)
        used = self.current_count(key)
        remaining = max(0, limit - used)
        return UsageCheck(can_proceed=remaining > 0, remaining=remaining, reset_at=reset_at, limit=limit)

    def increment_usage(self, key: str, limit: int | None) -> bool:
        """Consume one unit. Returns False when the limit is already reached.

        The check and the increment are a single UPSERT statement, so two
        concurrent callers with one unit left cannot both succeed.
        """
        if limit is not None and limit <= 0:
            return False
        day = self._today().isoformat()
        stamp = self._now().isoformat()
        with self._connect() as conn:
            if limit is None:
                cur = conn.execute(
                    """INSERT INTO usage (key, usage_date, extraction_count, last_extraction_at)
                       VALUES (?, ?, 1, ?)
                       ON CONFLICT(key, usage_date) DO UPDATE SET
                         extraction_count = extraction_count + 1,
                         last_extraction_at = excluded.last_extraction_at""",
                    (key, day, stamp),
                )
            else:
                cur = conn.execute(
                    """INSERT INTO usage (key, usage_date, extraction_count, last_extraction_at)
                       VALUES (?, ?, 1, ?)
                       ON CONFLICT(key, usage_date) DO UPDATE SET
                         extraction_count = extraction_count + 1,
                         last_extraction_at = excluded.last_extraction_at
                       WHERE extraction_count < ?""",
                    (key, day, stamp, limit),
                )
            conn.commit()
            consumed = cur.rowcount == 1
        if consumed:
            logger.debug("Usage incremented for %s", key)
        else:
            logger.info("Usage increment refused for %s (limit %s reached)", key, limit)
        return consumed


class ExtractionStore(_SQLiteStore):
    """Persistence for finished extraction records."""

    def save_extraction(self, record: Extraction) -> str:
        with self._connect() as conn:
            conn.execute(
                """INSERT OR REPLACE INTO extractions
                   (id, requester, client_ip, status, record, created_at)
                   VALUES (?, ?, ?, ?, ?, ?)""",
                (
                    record.id,
                    record.requester,
                    record.client_ip,
                    record.status.value,
                    record.model_dump_json(),
                    record.created_at.isoformat(),
                ),
            )
            conn.commit()
        logger.info("Saved extraction %s (%s)", record.id, record.status.value)
        return record.id

    def get_extraction(self, extraction_id: str) -> Extraction | None:
        with self._connect() as conn:
            row = conn.execute("SELECT record FROM extractions WHERE id = ?", (extraction_id,)).fetchone()
        if not row:
            return None
        return Extraction.model_validate_json(row[0])

    def list_extractions(self, requester: str, limit: int = 10, offset: int = 0) -> list[Extraction]:
        """A requester's history, newest first."""
        with self._connect() as conn:
            rows = conn.execute(
                """SELECT record FROM extractions WHERE requester = ?
                   ORDER BY created_at DESC LIMIT ? OFFSET ?""",
                (requester, limit, offset),
            ).fetchall()
        return [Extraction.model_validate_json(r[0]) for r in rows]

    def delete_extraction(self, extraction_id: str, requester: str) -> bool:
        with self._connect() as conn:
            cur = conn.execute(
                "DELETE FROM extractions WHERE id = ? AND requester = ?",
                (extraction_id, requester),
            )
            conn.commit()
        return cur.rowcount > 0
