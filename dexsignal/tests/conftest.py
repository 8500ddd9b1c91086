import pytest


@pytest.fixture(autouse=True)
def _test_env(monkeypatch, tmp_path):
    """
    Tests never talk to Telegram or Dexscreener and never write the real journal.
    """
    monkeypatch.setenv("TELEGRAM_BOT_TOKEN", "test-token")
    monkeypatch.setenv("BOT_MODE", "TEST")
    monkeypatch.setenv("AUDIT_ENABLED", "false")
    monkeypatch.setenv("AUDIT_DB_PATH", str(tmp_path / "bot.db"))
    monkeypatch.setenv("AUDIT_JSONL_PATH", str(tmp_path / "audit.jsonl"))


class FakeNotifier:
    """Collects every outbound message instead of sending it."""

    def __init__(self):
        self.sent = []

    def notify(self, text, buttons=None):
        self.sent.append((text, buttons))
        return True

    @property
    def texts(self):
        return [t for t, _ in self.sent]


class ScriptedRandom:
    """random() returns the scripted values in order, then repeats the last one."""

    def __init__(self, values):
        self.values = list(values)
        self.calls = 0

    def random(self):
        i = min(self.calls, len(self.values) - 1)
        self.calls += 1
        return self.values[i]


class Clock:
    def __init__(self, now_ms=1_700_000_000_000):
        self.now_ms = now_ms

    def __call__(self):
        return self.now_ms

    def advance_min(self, minutes):
        self.now_ms += int(minutes * 60_000)


@pytest.fixture
def notifier():
    return FakeNotifier()


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def scripted_random():
    return ScriptedRandom
