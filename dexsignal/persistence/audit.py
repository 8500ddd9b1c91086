# dexsignal/persistence/audit.py
from __future__ import annotations

import json
import logging
import sqlite3
from pathlib import Path
from typing import Any, Dict, List, Optional

from dexsignal.ops.context import get_cycle_id, get_run_id
from dexsignal.persistence.db import DB, utc_now_iso

log = logging.getLogger("dexsignal.audit")


def _dumps(obj: Any) -> str:
    return json.dumps(obj, ensure_ascii=False, default=str)


class Audit:
    """
    Event journal: the SQLite DB is authoritative, a JSONL file mirrors every
    row for `tail -f`. run_id / cycle_id default to the current ops context.
    """

    def __init__(self, db: DB, jsonl_path: str = "logs/bot_audit.jsonl"):
        self.db = db
        self.jsonl_path = Path(jsonl_path)

        try:
            self.jsonl_path.parent.mkdir(parents=True, exist_ok=True)
            self.jsonl_path.touch(exist_ok=True)
        except OSError as e:
            log.warning("audit jsonl unavailable (%s): %s", self.jsonl_path, e)

    # ---------- runs ----------

    def start_run(
        self, run_id: str, mode: str, scan_interval_sec: int, config: Dict[str, Any]
    ) -> None:
        with self.db.connect() as conn:
            conn.execute(
                "INSERT OR REPLACE INTO runs(run_id, started_at, mode, scan_interval_sec, config_json) "
                "VALUES (?,?,?,?,?)",
                (run_id, utc_now_iso(), mode, scan_interval_sec, _dumps(config)),
            )
        self._mirror("RUN_START", run_id, details={"mode": mode, "scan_interval_sec": scan_interval_sec})

    def stop_run(self, run_id: str) -> None:
        with self.db.connect() as conn:
            conn.execute(
                "UPDATE runs SET stopped_at = ? WHERE run_id = ?", (utc_now_iso(), run_id)
            )
        self._mirror("RUN_STOP", run_id)

    # ---------- events ----------

    def event(
        self,
        event_type: str,
        pair_id: Optional[str] = None,
        action: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        run_id: Optional[str] = None,
        cycle_id: Optional[str] = None,
    ) -> None:
        run_id = run_id or get_run_id()
        cycle_id = cycle_id or get_cycle_id()
        details = details or {}

        with self.db.connect() as conn:
            conn.execute(
                """
                INSERT INTO events(timestamp_utc, run_id, cycle_id, pair_id, event_type, action, details_json)
                VALUES (?,?,?,?,?,?,?)
                """,
                (utc_now_iso(), run_id, cycle_id, pair_id, event_type, action, _dumps(details)),
            )

        self._mirror(
            event_type, run_id, cycle_id=cycle_id, pair_id=pair_id, action=action, details=details
        )

    def tail(self, limit: int = 50) -> List[Dict[str, Any]]:
        """Newest events first; limit clamped to [1, 500]."""
        limit = max(1, min(int(limit), 500))
        with self.db.connect() as conn:
            rows = conn.execute(
                """
                SELECT id, timestamp_utc, run_id, cycle_id, pair_id, event_type, action, details_json
                FROM events ORDER BY id DESC LIMIT ?
                """,
                (limit,),
            ).fetchall()

        out: List[Dict[str, Any]] = []
        for r in rows:
            item = dict(r)
            try:
                item["details"] = json.loads(item.pop("details_json") or "{}")
            except ValueError:
                item["details"] = {}
            out.append(item)
        return out

    # ---------- JSONL mirror ----------

    def _mirror(self, event_type: str, run_id: Optional[str], **fields: Any) -> None:
        row = {"timestamp_utc": utc_now_iso(), "event_type": event_type, "run_id": run_id}
        row.update(fields)
        row.setdefault("details", {})
        try:
            with self.jsonl_path.open("a", encoding="utf-8") as f:
                f.write(_dumps(row) + "\n")
        except OSError as e:
            # a broken mirror file must not break a tick
            log.warning("audit jsonl write failed: %s", e)


def record(audit: Optional[Audit], event_type: str, **kwargs: Any) -> None:
    """Best-effort audit write for code running inside a tick."""
    if audit is None:
        return
    try:
        audit.event(event_type, **kwargs)
    except sqlite3.Error as e:
        log.warning("audit event %s dropped: %s", event_type, e)
