import requests

from dexsignal.bot.router import CommandRouter
from dexsignal.bot.telegram import ChatNotifier, InboundCallback, InboundText
from dexsignal.core.errors import DataSourceError, TransportError
from dexsignal.market.dexscreener import DexscreenerClient
from dexsignal.market.models import PairCandidate
from dexsignal.runner.models import AppState
from dexsignal.scanner.filters import FilterPolicy
from dexsignal.scanner.scanner import Scanner
from dexsignal.trading.exit_rules import ExitEngine, ExitRules
from dexsignal.trading.position_manager import PositionManager


class _FakeTelegram:
    """Records sendMessage / answerCallbackQuery calls."""

    def __init__(self, fail=False):
        self.messages = []
        self.acks = []
        self.fail = fail

    def send_message(self, chat_id, text, buttons=None):
        if self.fail:
            raise TransportError("Forbidden: bot was blocked by the user")
        self.messages.append((chat_id, text, buttons))

    def answer_callback(self, callback_id):
        self.acks.append(callback_id)

    def texts(self):
        return [t for _, t, _ in self.messages]


class _FakeSource:
    def __init__(self, candidates=None, error=None):
        self.candidates = candidates or []
        self.error = error

    def search_pairs(self):
        if self.error:
            raise self.error
        return list(self.candidates)


class _FlatSimulator:
    def tick(self, pos):
        return pos.multiple


def _cand(pair_id, now_ms):
    return PairCandidate(
        pair_id=pair_id,
        chain_id="solana",
        base_symbol="CAT",
        quote_symbol="SOL",
        liquidity_usd=50_000,
        volume_m5_usd=60_000,
        market_cap_usd=100_000,
        created_at_ms=now_ms - 60_000,
        url="",
    )


def _router(clock, source=None, telegram=None, state=None):
    state = state or AppState()
    tg = telegram or _FakeTelegram()
    notifier = ChatNotifier(tg, state)
    policy = FilterPolicy("solana", 30_000, 50_000, 30, 200_000)
    scanner = Scanner(state, source or _FakeSource(), policy, notifier, clock=clock)
    positions = PositionManager(
        state, ExitEngine(ExitRules()), notifier, simulator=_FlatSimulator(), clock=clock
    )
    return CommandRouter(scanner, positions, notifier, scan_interval_sec=20), tg, state


def test_start_binds_chat_and_reports_mode(clock):
    r, tg, state = _router(clock)
    r.handle(InboundText(1, 777, "/start"))
    assert state.chat_id == 777
    assert "*TEST*" in tg.texts()[0]
    assert "Scan: *ON*" in tg.texts()[0]


def test_pause_resume_text_and_buttons(clock):
    r, tg, state = _router(clock)
    r.handle_text(5, "/pause")
    assert state.enabled is False
    r.handle_callback(5, "resume", "cb1")
    assert state.enabled is True
    r.handle_callback(5, "pause", "cb2")
    assert state.enabled is False
    assert tg.acks == ["cb1", "cb2"]
    assert tg.texts() == ["⏸️ Scan OFF", "▶️ Scan ON", "⏸️ Scan OFF"]


def test_scan_reports_nothing_found(clock):
    r, tg, state = _router(clock)
    r.handle_text(9, "/start")
    r.handle_text(9, "/scan@DexSignalBot")
    texts = tg.texts()
    assert texts[1] == "🔎 Scanning Dexscreener..."
    assert texts[2].startswith("ℹ️ Nothing matched the filters")


def test_scan_reports_data_source_error(clock):
    r, tg, _ = _router(clock, source=_FakeSource(error=DataSourceError("Dexscreener failed: 503")))
    r.handle_text(9, "/start")
    r.handle_text(9, "/scan")
    assert tg.texts()[-1] == "❌ Scan error: Dexscreener failed: 503"


def test_scan_before_start_explains(clock):
    r, tg, _ = _router(clock)
    r.handle_text(9, "/scan")
    assert tg.texts() == ["ℹ️ Send /start first."]


def test_signal_buy_and_position_flow(clock):
    src = _FakeSource([_cand("PAIR1", clock())])
    r, tg, state = _router(clock, source=src)
    r.handle_text(9, "/start")
    r.handle_text(9, "/scan")
    assert "PAIR1" in state.signals

    r.handle_callback(9, "buy|PAIR1", "cb")
    assert state.position is not None
    assert state.position.symbol == "CAT/SOL"
    # ack text + position snapshot with manual buttons
    chat_id, text, buttons = tg.messages[-1]
    assert "OPEN POSITION" in text
    assert buttons[0][0] == ("SELL 80% @2x", "sell_tp1")

    # second buy is rejected, state untouched
    r.handle_callback(9, "buy|PAIR1", "cb")
    assert "already open" in tg.texts()[-1]

    # /scan while a position is open never signals
    r.handle_text(9, "/scan")
    assert "position is open" in tg.texts()[-1]


def test_buy_unknown_pair_rejected(clock):
    r, tg, state = _router(clock)
    r.handle_text(9, "/start")
    r.handle_callback(9, "buy|GHOST", "cb")
    assert state.position is None
    assert "Unknown or expired signal" in tg.texts()[-1]


def test_manual_tp1_rejected_below_threshold(clock):
    state = AppState(chat_id=9)
    state.signals["P"] = _cand("P", clock())
    r, tg, _ = _router(clock, state=state)
    r.handle_callback(9, "buy|P", "cb")
    r.handle_callback(9, "sell_tp1", "cb")
    assert "Not at x2 yet" in tg.texts()[-1]
    assert state.position.tp1_done is False

    state.position.apply_price(2.4)
    r.handle_callback(9, "sell_tp1", "cb")
    assert state.position.tp1_done is True
    assert any("Manual TP1: SOLD 80%" in t for t in tg.texts())


def test_panic_and_close_commands(clock):
    state = AppState(chat_id=9)
    state.signals["P"] = _cand("P", clock())
    r, tg, _ = _router(clock, state=state)

    r.handle_text(9, "/panic")
    assert tg.texts()[-1] == "ℹ️ No open position."

    r.handle_callback(9, "buy|P", "cb")
    r.handle_text(9, "/close")
    assert state.position is None
    assert tg.texts()[-1].startswith("✅ Closed position (manual)")

    r.handle_callback(9, "buy|P", "cb")
    r.handle_callback(9, "panic", "cb")
    assert state.position is None
    assert tg.texts()[-1].startswith("🔴 PANIC SELL")

    r.handle_callback(9, "buy|P", "cb")
    r.handle_callback(9, "sell_all", "cb")
    assert state.position is None
    assert tg.texts()[-1].startswith("✅ SELL ALL")


def test_status_includes_filters_and_position(clock):
    state = AppState(chat_id=9)
    state.signals["P"] = _cand("P", clock())
    r, tg, _ = _router(clock, state=state)

    r.handle_text(9, "/status")
    assert "Open position: *NO*" in tg.texts()[-1]
    assert "Interval: 20s" in tg.texts()[-1]

    r.handle_callback(9, "buy|P", "cb")
    r.handle_text(9, "/status")
    status = tg.texts()[-1]
    assert "Open position: *YES*" in status
    assert "Multiple:* x1.00" in status
    assert "Expected out" in status


def test_skip_changes_nothing(clock):
    r, tg, state = _router(clock, state=AppState(chat_id=9))
    r.handle_callback(9, "skip|P", "cb")
    assert tg.texts() == ["⏭️ Skipped."]
    assert state.position is None


def test_transport_failure_is_swallowed(clock):
    r, tg, state = _router(clock, telegram=_FakeTelegram(fail=True))
    r.handle_text(9, "/start")
    r.handle_text(9, "/pause")
    assert state.chat_id == 9
    assert state.enabled is False


class _BrokenBodySession:
    def __init__(self):
        self.calls = 0

    def get(self, url, **kw):
        self.calls += 1
        raise requests.exceptions.ChunkedEncodingError("connection broken mid-body")


def test_scan_reports_broken_transport(clock, monkeypatch):
    monkeypatch.setattr("dexsignal.market.dexscreener.time.sleep", lambda s: None)
    source = DexscreenerClient(session=_BrokenBodySession(), max_retries=1)
    r, tg, _ = _router(clock, source=source)
    r.handle_text(9, "/start")
    r.handle_text(9, "/scan")
    assert tg.texts()[-2] == "🔎 Scanning Dexscreener..."
    assert tg.texts()[-1].startswith("❌ Scan error: Dexscreener request failed")
    assert source.session.calls == 2
