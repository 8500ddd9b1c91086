import json
import sqlite3

from dexsignal.ops.context import cycle, get_cycle_id, set_run_id
from dexsignal.persistence.audit import Audit, record
from dexsignal.persistence.db import DB


def _audit(tmp_path):
    return Audit(DB(str(tmp_path / "data" / "bot.db")), str(tmp_path / "logs" / "audit.jsonl"))


def test_run_lifecycle_rows(tmp_path):
    a = _audit(tmp_path)
    a.start_run("run-1", "TEST", 20, {"TELEGRAM_BOT_TOKEN": "***"})
    a.stop_run("run-1")

    with a.db.connect() as conn:
        row = conn.execute("SELECT * FROM runs WHERE run_id = 'run-1'").fetchone()
    assert row["mode"] == "TEST"
    assert row["scan_interval_sec"] == 20
    assert row["stopped_at"] is not None
    assert json.loads(row["config_json"]) == {"TELEGRAM_BOT_TOKEN": "***"}

    lines = (tmp_path / "logs" / "audit.jsonl").read_text(encoding="utf-8").splitlines()
    assert [json.loads(x)["event_type"] for x in lines] == ["RUN_START", "RUN_STOP"]


def test_event_picks_up_context_ids(tmp_path):
    a = _audit(tmp_path)
    set_run_id("run-2")
    try:
        with cycle("scan") as cid:
            assert get_cycle_id() == cid
            a.event("SIGNAL", pair_id="P1", action="NOTIFY", details={"liq": 50_000})
    finally:
        set_run_id(None)
    assert get_cycle_id() is None

    ev = a.tail(1)[0]
    assert ev["run_id"] == "run-2"
    assert ev["cycle_id"].startswith("scan-")
    assert ev["pair_id"] == "P1"
    assert ev["details"] == {"liq": 50_000}


def test_tail_is_newest_first_and_bounded(tmp_path):
    a = _audit(tmp_path)
    for i in range(5):
        a.event("TICK", details={"i": i})
    events = a.tail(3)
    assert [e["details"]["i"] for e in events] == [4, 3, 2]
    assert len(a.tail(0)) == 1


def test_record_is_noop_without_audit():
    record(None, "SIGNAL", pair_id="X")


def test_record_drops_sqlite_errors(tmp_path):
    class _Broken:
        def event(self, event_type, **kw):
            raise sqlite3.OperationalError("database is locked")

    record(_Broken(), "SIGNAL", pair_id="X")
