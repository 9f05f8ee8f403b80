"""
SQLite-backed cache of event labels typed for previous photos.

Keys come from the capture timestamp plus filename (or the filename alone), so
re-importing the same photo restores its label. Entries older than the
retention window are purged on each intake batch. Failures never reach the
caller: they are logged and treated as cache misses.
"""
from __future__ import annotations

import json
import logging
import os
import re
import sqlite3
import time
from datetime import datetime
from typing import Optional

from settings import settings

logger = logging.getLogger(__name__)

_UNSAFE_CHARS = re.compile(r"[^a-zA-Z0-9]")


def make_cache_key(full_date: Optional[datetime], filename: str) -> str:
    clean = _UNSAFE_CHARS.sub("_", filename or "")
    if full_date is None:
        return f"file_{clean}"
    return f"{int(full_date.timestamp() * 1000)}_{clean}"


class LabelCache:
    def __init__(self, db_path: Optional[str] = None, retention_seconds: Optional[int] = None):
        self.db_path = db_path or settings.LABEL_CACHE_PATH
        self.retention_seconds = (
            retention_seconds if retention_seconds is not None else settings.label_retention_seconds
        )
        self._conn: Optional[sqlite3.Connection] = None

    def _connect(self) -> sqlite3.Connection:
        if self._conn is None:
            parent = os.path.dirname(self.db_path)
            if parent:
                os.makedirs(parent, exist_ok=True)
            self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
            self._init_schema(self._conn)
        return self._conn

    def _init_schema(self, conn: sqlite3.Connection) -> None:
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS event_labels (
                cache_key TEXT PRIMARY KEY,
                payload TEXT NOT NULL
            )
            """
        )
        conn.commit()

    def save(self, key: str, label: str) -> None:
        payload = json.dumps({"event_name": label, "timestamp": int(time.time() * 1000)})
        try:
            conn = self._connect()
            conn.execute(
                "INSERT OR REPLACE INTO event_labels (cache_key, payload) VALUES (?, ?)",
                (key, payload),
            )
            conn.commit()
        except (sqlite3.Error, OSError):
            logger.warning("[label_cache] failed to save label for %s", key, exc_info=True)

    def load(self, key: str) -> Optional[str]:
        try:
            row = self._connect().execute(
                "SELECT payload FROM event_labels WHERE cache_key=?", (key,)
            ).fetchone()
        except (sqlite3.Error, OSError):
            logger.warning("[label_cache] failed to load label for %s", key, exc_info=True)
            return None
        if not row:
            return None
        try:
            parsed = json.loads(row[0])
            label = parsed.get("event_name")
        except (ValueError, AttributeError):
            logger.warning("[label_cache] dropping corrupt entry %s", key)
            self._delete(key)
            return None
        return label if isinstance(label, str) and label else None

    def _delete(self, key: str) -> None:
        try:
            conn = self._connect()
            conn.execute("DELETE FROM event_labels WHERE cache_key=?", (key,))
            conn.commit()
        except (sqlite3.Error, OSError):
            logger.warning("[label_cache] failed to delete %s", key, exc_info=True)

    def purge_older_than(self, max_age_seconds: Optional[int] = None) -> int:
        """Remove expired and unreadable entries; returns how many were removed."""
        max_age_ms = (max_age_seconds if max_age_seconds is not None else self.retention_seconds) * 1000
        now_ms = int(time.time() * 1000)
        try:
            conn = self._connect()
            rows = conn.execute("SELECT cache_key, payload FROM event_labels").fetchall()
        except (sqlite3.Error, OSError):
            logger.warning("[label_cache] purge skipped", exc_info=True)
            return 0

        stale = []
        for key, payload in rows:
            try:
                stamp = int(json.loads(payload)["timestamp"])
            except (ValueError, KeyError, TypeError):
                stale.append(key)
                continue
            if now_ms - stamp > max_age_ms:
                stale.append(key)

        for key in stale:
            self._delete(key)
        if stale:
            logger.info("[label_cache] purged %s entr%s", len(stale), "y" if len(stale) == 1 else "ies")
        return len(stale)

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None
