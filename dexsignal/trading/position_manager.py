from __future__ import annotations

import logging
import time
from typing import Callable, Optional

from dexsignal.bot import messages
from dexsignal.core.errors import InvalidCommandState
from dexsignal.core.interfaces import Notifier
from dexsignal.market.models import PairCandidate
from dexsignal.persistence.audit import Audit, record
from dexsignal.runner.models import AppState
from dexsignal.trading.exit_rules import ExitAction, ExitDecision, ExitEngine, ExitReason
from dexsignal.trading.position import Position, PositionSnapshot
from dexsignal.trading.simulator import PriceSimulator

log = logging.getLogger("dexsignal.position")


def _now_ms() -> int:
    return int(time.time() * 1000)


class PositionManager:
    """
    Owns the single position slot in AppState.

    Every handler re-checks the slot and the TP1 flag on entry: a manual
    command and an automatic tick may arrive back to back, so no state from
    an earlier check is trusted.
    """

    def __init__(
        self,
        state: AppState,
        engine: ExitEngine,
        notifier: Notifier,
        *,
        spend_amount: float = 0.08,
        mode: str = "TEST",
        simulator: Optional[PriceSimulator] = None,
        audit: Optional[Audit] = None,
        clock: Callable[[], int] = _now_ms,
    ):
        self.state = state
        self.engine = engine
        self.rules = engine.rules
        self.notifier = notifier
        self.spend_amount = float(spend_amount)
        self.mode = mode
        self.simulator = simulator or PriceSimulator()
        self.audit = audit
        self.clock = clock

    @property
    def position(self) -> Optional[Position]:
        return self.state.position

    # ---------- lifecycle ----------

    def open(self, candidate: PairCandidate) -> Position:
        if self.state.position is not None:
            raise InvalidCommandState("⚠️ A position is already open (one at a time).")

        pos = Position(
            pair_id=candidate.pair_id,
            base_symbol=candidate.base_symbol,
            quote_symbol=candidate.quote_symbol,
            url=candidate.url,
            entry_ms=self.clock(),
            spent=self.spend_amount,
        )
        self.state.position = pos

        log.info("position open %s %s spent=%g", pos.symbol, pos.pair_id, pos.spent)
        record(
            self.audit,
            "POSITION_OPEN",
            pair_id=pos.pair_id,
            action="BUY",
            details={"symbol": pos.symbol, "spent": pos.spent},
        )
        return pos

    def open_signaled(self, pair_id: str) -> Position:
        """Open from a `buy|<pair_id>` action. The pair must have been signaled."""
        if self.state.position is not None:
            raise InvalidCommandState("⚠️ A position is already open (one at a time).")
        candidate = self.state.signal(pair_id)
        if candidate is None:
            raise InvalidCommandState("⚠️ Unknown or expired signal, nothing opened.")
        return self.open(candidate)

    def close(self, reason: str) -> str:
        """Clears the slot. Returns the acknowledgment text."""
        pos = self.state.position
        if pos is None:
            return messages.closed_ack(None)

        snap = pos.snapshot(self.clock(), self.rules.fee_rate)
        self.state.position = None

        log.info(
            "position closed %s reason=%s multiple=%.2f out=%.4f",
            pos.pair_id,
            reason,
            snap.multiple,
            snap.expected_out,
        )
        record(
            self.audit,
            "POSITION_CLOSE",
            pair_id=pos.pair_id,
            action=reason,
            details={
                "multiple": snap.multiple,
                "ath_multiple": snap.ath_multiple,
                "sold_pct": snap.sold_pct,
                "expected_out": snap.expected_out,
                "elapsed_min": snap.elapsed_min,
            },
        )
        return messages.closed_ack(reason)

    def describe(self) -> Optional[PositionSnapshot]:
        pos = self.state.position
        if pos is None:
            return None
        return pos.snapshot(self.clock(), self.rules.fee_rate)

    # ---------- manual actions ----------

    def manual_tp1(self) -> PositionSnapshot:
        pos = self.state.position
        if pos is None:
            raise InvalidCommandState(messages.NO_POSITION)

        ok, why = self.engine.can_manual_tp1(pos)
        if not ok:
            if why == "tp1_already_done":
                raise InvalidCommandState("ℹ️ TP1 already done.")
            raise InvalidCommandState(
                f"ℹ️ Not at x{self.rules.tp1_multiplier:g} yet. Now x{pos.multiple:.2f}."
            )

        pos.mark_tp1(self.rules.tp1_sell_percent)
        log.info("manual tp1 %s sold=%g%%", pos.pair_id, pos.sold_pct)
        record(
            self.audit,
            "TP1",
            pair_id=pos.pair_id,
            action="MANUAL",
            details={"multiple": pos.multiple, "sold_pct": pos.sold_pct},
        )
        return self.describe()

    def sell_all(self, reason: str = ExitReason.SELL_ALL.value) -> PositionSnapshot:
        """Operator override: closes regardless of the payout guard."""
        pos = self.state.position
        if pos is None:
            raise InvalidCommandState(messages.NO_POSITION)
        snap = pos.snapshot(self.clock(), self.rules.fee_rate)
        self.close(reason)
        return snap

    def push_update(self) -> None:
        """Send the current snapshot with the manual-action buttons to the bound chat."""
        pos = self.state.position
        if pos is None:
            return
        snap = pos.snapshot(self.clock(), self.rules.fee_rate)
        self.notifier.notify(
            messages.position_text(snap, self.rules, self.mode),
            messages.position_buttons(snap, self.rules, self.state.enabled),
        )

    # ---------- periodic tick ----------

    def tick(self) -> Optional[ExitDecision]:
        """Advance the simulated price once and run the exit rules."""
        pos = self.state.position
        if pos is None:
            return None

        self.simulator.tick(pos)
        now = self.clock()
        decision = self.engine.evaluate(pos, now)

        if decision.action == ExitAction.TP1:
            snap = pos.snapshot(now, self.rules.fee_rate)
            log.info("tp1 hit %s x%.2f", pos.pair_id, pos.multiple)
            record(
                self.audit,
                "TP1",
                pair_id=pos.pair_id,
                action="AUTO",
                details={"multiple": pos.multiple, "sold_pct": pos.sold_pct},
            )
            self.notifier.notify(messages.tp1_text(snap, self.rules))
            self.push_update()

        elif decision.action == ExitAction.CLOSE:
            snap = pos.snapshot(now, self.rules.fee_rate)
            self.close(decision.reason)
            self.notifier.notify(messages.exit_text(decision.reason, snap, self.rules))

        return decision
