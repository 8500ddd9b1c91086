import asyncio

from dexsignal.core.config import Settings
from dexsignal.core.errors import DataSourceError, TransportError
from dexsignal.market.models import PairCandidate
from dexsignal.runner.service import BotService


class _FakeSource:
    def __init__(self, candidates=None, error=None):
        self.candidates = candidates or []
        self.error = error

    def search_pairs(self):
        if self.error:
            raise self.error
        return list(self.candidates)


class _FakeTelegram:
    def __init__(self, updates=None, poll_error=None):
        self.updates = list(updates or [])
        self.poll_error = poll_error
        self.messages = []
        self.offsets = []

    def get_updates(self, offset, timeout=30):
        self.offsets.append(offset)
        if self.poll_error:
            raise self.poll_error
        out, self.updates = self.updates, []
        return out

    def send_message(self, chat_id, text, buttons=None):
        self.messages.append((chat_id, text))

    def answer_callback(self, callback_id):
        pass


def _settings(**overrides):
    base = dict(TELEGRAM_BOT_TOKEN="t", SIGNAL_COOLDOWN_SEC=0)
    base.update(overrides)
    return Settings(**base)


def _service(source=None, telegram=None, **overrides):
    svc = BotService.from_settings(_settings(**overrides), source=source or _FakeSource())
    tg = telegram or _FakeTelegram()
    svc.telegram = tg
    svc.router.notifier.client = tg
    return svc, tg


def _cand(pair_id):
    import time

    return PairCandidate(
        pair_id=pair_id,
        chain_id="solana",
        base_symbol="CAT",
        quote_symbol="SOL",
        liquidity_usd=50_000,
        volume_m5_usd=60_000,
        market_cap_usd=100_000,
        created_at_ms=int(time.time() * 1000) - 60_000,
        url="",
    )


def test_from_settings_wires_one_shared_state():
    svc, _ = _service(SCAN_ENABLED=False, DEDUP_TTL_MIN=5)
    assert svc.scanner.state is svc.state
    assert svc.positions.state is svc.state
    assert svc.router.notifier.state is svc.state
    assert svc.state.enabled is False
    assert svc.state.registry.ttl_ms == 300_000
    assert svc.positions.rules.tp1_multiplier == 2.0
    assert svc.scanner.policy.min_liquidity == 30_000


def test_poll_handles_updates_and_advances_offset():
    tg = _FakeTelegram(
        updates=[
            {"update_id": 10, "message": {"text": "/start", "chat": {"id": 7}}},
            {"update_id": 11, "edited_message": {}},
            {"update_id": 12, "message": {"text": "/pause", "chat": {"id": 7}}},
        ]
    )
    svc, _ = _service(telegram=tg)

    handled = asyncio.run(svc.poll_once())

    assert handled == 2
    assert svc.state.chat_id == 7
    assert svc.state.enabled is False
    assert svc._offset == 13
    asyncio.run(svc.poll_once())
    assert tg.offsets == [0, 13]


def test_poll_transport_error_is_recorded_not_raised():
    svc, _ = _service(telegram=_FakeTelegram(poll_error=TransportError("502 Bad Gateway")))
    assert asyncio.run(svc.poll_once()) == 0
    assert svc.stats["poll"].errors == 1
    assert "502" in svc.stats["poll"].last_error


def test_scan_tick_signals_and_swallows_source_errors():
    svc, tg = _service(source=_FakeSource([_cand("A")]))
    svc.router.notifier.bind(3)

    asyncio.run(svc.scan_tick())
    assert svc.state.registry.has("A")
    assert svc.stats["scan"].cycles == 1
    assert "`A`" in tg.messages[-1][1]

    svc.scanner.source = _FakeSource(error=DataSourceError("Dexscreener failed: 500"))
    asyncio.run(svc.scan_tick())
    assert svc.stats["scan"].errors == 1
    assert svc.stats["scan"].last_error == "Dexscreener failed: 500"


def test_tick_failure_does_not_escape():
    svc, _ = _service()
    svc.state.signals["A"] = _cand("A")
    svc.positions.open_signaled("A")

    def _boom(pos):
        raise ZeroDivisionError("bad math")

    svc.positions.simulator.tick = _boom
    asyncio.run(svc.sim_tick())
    assert svc.stats["tick"].errors == 1
    assert "ZeroDivisionError" in svc.stats["tick"].last_error
    # position untouched by the failed tick
    assert svc.state.position is not None


def test_status_snapshot():
    svc, _ = _service()
    st = svc.status()
    assert st["running"] is False
    assert st["position"] is None
    assert set(st["loops"]) == {"poll", "scan", "tick"}

    svc.state.signals["A"] = _cand("A")
    svc.positions.open_signaled("A")
    assert svc.status()["position"]["pair_id"] == "A"


def test_start_and_stop_loops():
    async def _run():
        svc, _ = _service()
        svc.start()
        assert svc.running is True
        assert set(svc._tasks) == {"poll", "scan", "tick"}
        await asyncio.sleep(0)
        await svc.stop()
        return svc

    svc = asyncio.run(_run())
    assert svc.running is False
    assert svc._tasks == {}
