from __future__ import annotations

import os
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Iterator, Tuple


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# runs: one row per process start.
# events: signals, position lifecycle, scan errors (never read back into state).
_SCHEMA: Tuple[str, ...] = (
    """
    CREATE TABLE IF NOT EXISTS runs (
        run_id TEXT PRIMARY KEY,
        started_at TEXT NOT NULL,
        stopped_at TEXT,
        mode TEXT NOT NULL,
        scan_interval_sec INTEGER NOT NULL,
        config_json TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS events (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        timestamp_utc TEXT NOT NULL,
        run_id TEXT,
        cycle_id TEXT,
        pair_id TEXT,
        event_type TEXT NOT NULL,
        action TEXT,
        details_json TEXT,
        FOREIGN KEY(run_id) REFERENCES runs(run_id)
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_events_run ON events(run_id)",
    "CREATE INDEX IF NOT EXISTS idx_events_type ON events(event_type)",
    "CREATE INDEX IF NOT EXISTS idx_events_pair ON events(pair_id)",
)


class DB:
    """Append-only SQLite journal for the audit log (default data/bot.db)."""

    def __init__(self, path: str = "data/bot.db"):
        self.path = path
        parent = os.path.dirname(path)
        if parent:
            os.makedirs(parent, exist_ok=True)
        with self.connect() as conn:
            for ddl in _SCHEMA:
                conn.execute(ddl)

    @contextmanager
    def connect(self) -> Iterator[sqlite3.Connection]:
        # check_same_thread=False: units of work run in asyncio.to_thread workers
        conn = sqlite3.connect(self.path, timeout=30, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        finally:
            conn.close()
