import pytest
from fastapi.testclient import TestClient

import dexsignal.main as main
from dexsignal.core.config import Settings
from dexsignal.core.errors import DataSourceError
from dexsignal.market.models import PairCandidate
from dexsignal.persistence.audit import Audit
from dexsignal.persistence.db import DB
from dexsignal.runner.service import BotService


class _FakeSource:
    def __init__(self, candidates=None, error=None):
        self.candidates = candidates or []
        self.error = error

    def search_pairs(self):
        if self.error:
            raise self.error
        return list(self.candidates)


class _SilentTelegram:
    def send_message(self, chat_id, text, buttons=None):
        pass

    def answer_callback(self, callback_id):
        pass

    def get_updates(self, offset, timeout=30):
        return []


@pytest.fixture
def api(monkeypatch):
    svc = BotService.from_settings(
        Settings(TELEGRAM_BOT_TOKEN="t", SIGNAL_COOLDOWN_SEC=0), source=_FakeSource()
    )
    svc.telegram = _SilentTelegram()
    svc.router.notifier.client = svc.telegram
    monkeypatch.setattr(main, "bot_service", svc)
    monkeypatch.setattr(main, "audit", None)
    monkeypatch.setattr(main.settings, "AUDIT_ENABLED", False)
    # no `with`: startup hooks (and the background loops) stay off
    return TestClient(main.app), svc


def test_root_and_status(api):
    client, _ = api
    assert client.get("/").json()["name"] == "dexsignal"
    st = client.get("/bot/status").json()
    assert st["scan_enabled"] is True
    assert st["chat_bound"] is False
    assert st["position"] is None


def test_pause_resume(api):
    client, svc = api
    assert client.post("/bot/pause").json() == {"scan_enabled": False}
    assert svc.state.enabled is False
    assert client.post("/bot/resume").json() == {"scan_enabled": True}


def test_scan_skipped_without_chat(api):
    client, _ = api
    body = client.post("/bot/scan").json()
    assert body == {"status": "skipped", "reason": "no_chat", "signal": None}


def test_scan_signals_candidate(api):
    import time

    client, svc = api
    svc.state.chat_id = 42
    svc.scanner.source = _FakeSource(
        [
            PairCandidate(
                pair_id="P1",
                chain_id="solana",
                base_symbol="CAT",
                quote_symbol="SOL",
                liquidity_usd=50_000,
                volume_m5_usd=60_000,
                market_cap_usd=100_000,
                created_at_ms=int(time.time() * 1000) - 60_000,
                url="https://dexscreener.com/solana/p1",
            )
        ]
    )
    body = client.post("/bot/scan").json()
    assert body["status"] == "ok"
    assert body["signal"]["pair_id"] == "P1"
    assert body["signal"]["symbol"] == "CAT/SOL"
    assert "P1" in svc.state.signals


def test_scan_source_error_is_502(api):
    client, svc = api
    svc.state.chat_id = 42
    svc.scanner.source = _FakeSource(error=DataSourceError("Dexscreener failed: 503"))
    r = client.post("/bot/scan")
    assert r.status_code == 502
    assert "503" in r.json()["detail"]


def test_close_without_position(api):
    client, _ = api
    assert client.post("/bot/close").json() == {"result": "No position."}


def test_events_tail(api, monkeypatch, tmp_path):
    client, _ = api
    assert client.get("/logs/events/tail").json() == {"enabled": False, "events": []}

    a = Audit(DB(str(tmp_path / "bot.db")), str(tmp_path / "audit.jsonl"))
    a.event("SIGNAL", pair_id="P1")
    monkeypatch.setattr(main, "audit", a)
    body = client.get("/logs/events/tail", params={"limit": 5}).json()
    assert body["enabled"] is True
    assert body["events"][0]["pair_id"] == "P1"

    assert client.get("/logs/events/tail", params={"limit": 0}).status_code == 422


def test_config_snapshot_masks_token():
    assert main.safe_config_snapshot()["TELEGRAM_BOT_TOKEN"] == "***"


def test_state_routes_run_under_service_lock(api, monkeypatch):
    client, svc = api
    held = []

    real_status = svc.status
    real_set_enabled = svc.scanner.set_enabled

    def _status():
        held.append(("status", svc._lock.locked()))
        return real_status()

    def _set_enabled(enabled):
        held.append(("set_enabled", svc._lock.locked()))
        real_set_enabled(enabled)

    monkeypatch.setattr(svc, "status", _status)
    monkeypatch.setattr(svc.scanner, "set_enabled", _set_enabled)

    assert client.get("/bot/status").status_code == 200
    assert client.post("/bot/pause").json() == {"scan_enabled": False}
    assert client.post("/bot/resume").json() == {"scan_enabled": True}
    assert held == [("status", True), ("set_enabled", True), ("set_enabled", True)]
