# dexsignal/runner/models.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Optional

from dexsignal.market.models import PairCandidate
from dexsignal.scanner.dedup import DedupRegistry
from dexsignal.trading.position import Position


@dataclass
class AppState:
    """
    Process-wide bot state, created once and injected into every component.
    Handlers never write these fields directly: Scanner, PositionManager and
    ChatNotifier own the mutations.
    """

    enabled: bool = True
    chat_id: Optional[int] = None
    last_signal_ms: int = 0
    position: Optional[Position] = None  # single slot
    registry: DedupRegistry = field(default_factory=DedupRegistry)
    signals: Dict[str, PairCandidate] = field(default_factory=dict)

    def __post_init__(self) -> None:
        # a signaled candidate lives exactly as long as its dedup entry
        self.registry.on_evict = self._forget_signal

    def _forget_signal(self, pair_id: str) -> None:
        self.signals.pop(pair_id, None)

    def signal(self, pair_id: str) -> Optional[PairCandidate]:
        """Candidate for a `buy|<pair_id>` action, or None once it has expired."""
        self.registry.expire()
        return self.signals.get(pair_id)

    @property
    def has_position(self) -> bool:
        return self.position is not None
