# dexsignal/trading/exit_rules.py
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from dexsignal.trading.position import Position


class ExitAction(str, Enum):
    HOLD = "HOLD"
    TP1 = "TP1"  # partial sell, position stays open
    CLOSE = "CLOSE"


class ExitReason(str, Enum):
    TIME_STOP = "time_stop"
    TP1 = "tp1"
    TP2 = "tp2"
    TRAILING_STOP = "trailing_stop"
    BREAKEVEN = "breakeven"
    # operator overrides
    SELL_ALL = "sell_all"
    PANIC = "panic"
    MANUAL_CLOSE = "manual_close"


@dataclass(frozen=True)
class ExitRules:
    tp1_multiplier: float = 2.0
    tp1_sell_percent: float = 80.0
    tp2_multiplier: float = 5.0
    trailing_stop_percent: float = 30.0
    time_stop_minutes: float = 60.0
    min_sell_out: float = 0.01
    fee_rate: float = 0.006
    breakeven_multiple: float = 1.05

    @classmethod
    def from_settings(cls, s) -> "ExitRules":
        return cls(
            tp1_multiplier=float(s.TP1_MULTIPLIER),
            tp1_sell_percent=float(s.TP1_SELL_PERCENT),
            tp2_multiplier=float(s.TP2_MULTIPLIER),
            trailing_stop_percent=float(s.TRAILING_STOP_PERCENT),
            time_stop_minutes=float(s.TIME_STOP_MIN),
            min_sell_out=float(s.MIN_SELL_OUT_SOL),
            fee_rate=float(s.FEE_RATE),
            breakeven_multiple=float(s.BREAKEVEN_MULTIPLE),
        )

    def trailing_floor(self, ath_multiple: float) -> float:
        return ath_multiple * (1 - self.trailing_stop_percent / 100)


@dataclass
class ExitDecision:
    action: ExitAction
    reason: str
    expected_out: float
    suppressed: bool  # payout guard blocked liquidations this tick


def update_trailing(pos: Position, rules: ExitRules) -> None:
    """Arms trailing after TP1 (or once TP1 level is reached) and ratchets the floor up."""
    if pos.tp1_done or pos.multiple >= rules.tp1_multiplier:
        pos.raise_trailing_floor(rules.trailing_floor(pos.ath_multiple))


def decide(pos: Position, rules: ExitRules, now_ms: int) -> ExitDecision:
    """
    Exit policy brain. Pure: reads the position, never mutates it.

    Fixed priority, first match wins:
      time stop -> TP1 (partial) -> TP2 -> trailing stop -> breakeven
    Every liquidating rule except TP1 is blocked while the expected
    payout of the remainder is below rules.min_sell_out.
    """
    expected_out = pos.expected_out(rules.fee_rate)
    too_small = expected_out < rules.min_sell_out

    def _hold(reason: str) -> ExitDecision:
        return ExitDecision(ExitAction.HOLD, reason, expected_out, too_small)

    def _close(reason: ExitReason) -> ExitDecision:
        return ExitDecision(ExitAction.CLOSE, reason.value, expected_out, False)

    if pos.elapsed_minutes(now_ms) >= rules.time_stop_minutes and not too_small:
        return _close(ExitReason.TIME_STOP)

    if not pos.tp1_done and pos.multiple >= rules.tp1_multiplier:
        return ExitDecision(ExitAction.TP1, ExitReason.TP1.value, expected_out, too_small)

    if pos.tp1_done and pos.multiple >= rules.tp2_multiplier and not too_small:
        return _close(ExitReason.TP2)

    if (
        pos.trailing_active
        and pos.multiple <= pos.trailing_floor_multiple
        and not too_small
    ):
        return _close(ExitReason.TRAILING_STOP)

    if pos.tp1_done and pos.multiple <= rules.breakeven_multiple and not too_small:
        return _close(ExitReason.BREAKEVEN)

    if too_small:
        return _hold("payout_below_min_sell_out")
    return _hold("no_rule_matched")


class ExitEngine:
    """Runs the per-tick exit state machine on the live position."""

    def __init__(self, rules: ExitRules):
        self.rules = rules

    def evaluate(self, pos: Position, now_ms: int) -> ExitDecision:
        """
        Ratchets trailing, decides, and applies TP1 in place.
        CLOSE is returned to the caller, which owns the position slot.
        """
        update_trailing(pos, self.rules)
        decision = decide(pos, self.rules, now_ms)
        if decision.action == ExitAction.TP1:
            pos.mark_tp1(self.rules.tp1_sell_percent)
        return decision

    def can_manual_tp1(self, pos: Position) -> tuple[bool, str]:
        if pos.tp1_done:
            return (False, "tp1_already_done")
        if pos.multiple < self.rules.tp1_multiplier:
            return (False, "tp1_not_reached")
        return (True, "ok")
