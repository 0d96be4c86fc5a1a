from __future__ import annotations

import json
import logging
import sqlite3
from datetime import UTC, datetime
from pathlib import Path

from twitter_session.application.ports.session_snapshot_port import (
    CookieRecord,
    SessionSnapshotStorePort,
)

logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS session_snapshot (
  id INTEGER PRIMARY KEY CHECK (id = 1),
  cookies TEXT NOT NULL,
  expires_at TEXT,
  is_active INTEGER NOT NULL DEFAULT 0
);
INSERT OR IGNORE INTO session_snapshot (id, cookies, expires_at, is_active) VALUES (1, '[]', NULL, 0);
"""


class SQLiteSnapshotStore(SessionSnapshotStorePort):
    """SQLite-backed snapshot store. Persists cookies/expiry across restarts.

    File path configurable; creates schema on first use. Holds cookies only,
    never passwords.
    """

    def __init__(self, db_path: str | Path = ".twitter_session.sqlite") -> None:
        self._path = Path(db_path)
        self._conn = sqlite3.connect(self._path)
        self._conn.execute("PRAGMA journal_mode=WAL;")
        self._conn.executescript(SCHEMA)
        self._conn.commit()

    def load(self) -> tuple[list[CookieRecord], datetime | None, bool]:
        cur = self._conn.execute(
            "SELECT cookies, expires_at, is_active FROM session_snapshot WHERE id=1"
        )
        row = cur.fetchone()
        if not row:
            return [], None, False

        cookies_str, expires_iso, active_int = row
        try:
            cookies = json.loads(cookies_str or "[]")
        except json.JSONDecodeError:
            logger.warning("Discarding unreadable cookie snapshot in %s", self._path)
            cookies = []
        if not isinstance(cookies, list):
            cookies = []
        expires = None
        if expires_iso:
            try:
                expires = datetime.fromisoformat(expires_iso)
                if expires.tzinfo is None:
                    expires = expires.replace(tzinfo=UTC)
            except ValueError:
                expires = None
        return cookies, expires, bool(active_int)

    def save(self, cookies: list[CookieRecord], expires_at: datetime) -> None:
        expires_iso = expires_at.astimezone(UTC).isoformat()
        self._conn.execute(
            "UPDATE session_snapshot SET cookies=?, expires_at=?, is_active=1 WHERE id=1",
            (json.dumps(cookies), expires_iso),
        )
        self._conn.commit()

    def mark_inactive(self) -> None:
        self._conn.execute("UPDATE session_snapshot SET is_active=0 WHERE id=1")
        self._conn.commit()

    def close(self) -> None:
        self._conn.close()
