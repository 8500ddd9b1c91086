from __future__ import annotations

import logging
import time
from typing import Callable, List, Optional

from dexsignal.bot import messages
from dexsignal.core.interfaces import CandidateSource, Notifier
from dexsignal.market.models import PairCandidate
from dexsignal.persistence.audit import Audit, record
from dexsignal.runner.models import AppState
from dexsignal.scanner.filters import FilterPolicy, passes

log = logging.getLogger("dexsignal.scanner")


def _now_ms() -> int:
    return int(time.time() * 1000)


def rank_by_volume(candidates: List[PairCandidate]) -> List[PairCandidate]:
    """Highest 5m volume first. sorted() is stable, so ties keep input order."""
    return sorted(candidates, key=lambda c: c.volume_m5_usd, reverse=True)


class Scanner:
    def __init__(
        self,
        state: AppState,
        source: CandidateSource,
        policy: FilterPolicy,
        notifier: Notifier,
        *,
        mode: str = "TEST",
        buy_amount: float = 0.08,
        cooldown_sec: int = 25,
        audit: Optional[Audit] = None,
        clock: Callable[[], int] = _now_ms,
    ):
        self.state = state
        self.source = source
        self.policy = policy
        self.notifier = notifier
        self.mode = mode
        self.buy_amount = buy_amount
        self.cooldown_ms = int(cooldown_sec) * 1000
        self.audit = audit
        self.clock = clock

    @property
    def enabled(self) -> bool:
        return self.state.enabled

    def set_enabled(self, enabled: bool) -> None:
        if self.state.enabled != enabled:
            log.info("scan %s", "enabled" if enabled else "paused")
        self.state.enabled = bool(enabled)

    def _in_cooldown(self, now_ms: int) -> bool:
        if self.cooldown_ms <= 0 or self.state.last_signal_ms <= 0:
            return False
        return (now_ms - self.state.last_signal_ms) < self.cooldown_ms

    def blocked_reason(self, now_ms: Optional[int] = None) -> Optional[str]:
        st = self.state
        if st.chat_id is None:
            return "no_chat"
        if not st.enabled:
            return "paused"
        if st.position is not None:
            return "position_open"
        if self._in_cooldown(self.clock() if now_ms is None else now_ms):
            return "cooldown"
        return None

    def scan_once(self, notify_if_empty: bool = False) -> Optional[PairCandidate]:
        """
        Emits at most one signal. Returns the signaled candidate, or None.

        No-op when no chat is bound, scanning is paused, a position is open,
        or the last signal is still inside the cooldown window.
        Raises DataSourceError when the candidate fetch fails.
        """
        st = self.state
        now = self.clock()
        st.registry.expire()
        blocked = self.blocked_reason(now)
        if blocked is not None:
            log.debug("scan skipped: %s", blocked)
            return None

        candidates = rank_by_volume(self.source.search_pairs())

        for c in candidates:
            if not passes(c, self.policy, now):
                continue
            if st.registry.has(c.pair_id):
                continue

            st.registry.add(c.pair_id)
            st.signals[c.pair_id] = c
            st.last_signal_ms = now

            log.info(
                "signal %s %s liq=%.0f vol5m=%.0f",
                c.symbol,
                c.pair_id,
                c.liquidity_usd,
                c.volume_m5_usd,
            )
            record(
                self.audit,
                "SIGNAL",
                pair_id=c.pair_id,
                action="NOTIFY",
                details={
                    "symbol": c.symbol,
                    "liquidity_usd": c.liquidity_usd,
                    "volume_m5_usd": c.volume_m5_usd,
                    "market_cap_usd": c.market_cap_usd,
                    "age_min": c.age_minutes(now),
                },
            )
            self.notifier.notify(
                messages.signal_text(c, now, self.mode),
                messages.signal_buttons(c, self.buy_amount, st.enabled),
            )
            return c

        log.debug("scan: no candidate out of %d", len(candidates))
        if notify_if_empty:
            record(self.audit, "SCAN_EMPTY", details={"candidates": len(candidates)})
            self.notifier.notify(messages.nothing_found_text(self.policy))
        return None
