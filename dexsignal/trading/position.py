from __future__ import annotations

from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, Dict


class PositionStage(str, Enum):
    OPEN = "OPEN"
    OPEN_TP1_DONE = "OPEN_TP1_DONE"
    CLOSED = "CLOSED"


@dataclass
class Position:
    """
    The single simulated position.

    multiple = simulated price / entry price (starts at 1.0).
    Invariants kept by the mutators below:
      sold_pct + remaining_pct == 100
      ath_multiple >= multiple
      trailing_floor_multiple never decreases
    """

    pair_id: str
    base_symbol: str
    quote_symbol: str
    url: str
    entry_ms: int
    spent: float

    multiple: float = 1.0
    ath_multiple: float = 1.0

    tp1_done: bool = False
    sold_pct: float = 0.0
    remaining_pct: float = 100.0

    trailing_active: bool = False
    trailing_floor_multiple: float = 0.0

    @property
    def symbol(self) -> str:
        return f"{self.base_symbol}/{self.quote_symbol}"

    @property
    def stage(self) -> PositionStage:
        return PositionStage.OPEN_TP1_DONE if self.tp1_done else PositionStage.OPEN

    def elapsed_minutes(self, now_ms: int) -> float:
        return (now_ms - self.entry_ms) / 60000.0

    def pnl_pct(self) -> float:
        return (self.multiple - 1.0) * 100.0

    def expected_out(self, fee_rate: float) -> float:
        gross = self.spent * self.multiple * (self.remaining_pct / 100.0)
        return gross - gross * fee_rate

    # ---- mutators ----

    def apply_price(self, multiple: float) -> None:
        self.multiple = float(multiple)
        self.ath_multiple = max(self.ath_multiple, self.multiple)

    def raise_trailing_floor(self, floor: float) -> None:
        self.trailing_active = True
        self.trailing_floor_multiple = max(self.trailing_floor_multiple, float(floor))

    def mark_tp1(self, sell_pct: float) -> None:
        sell_pct = min(max(float(sell_pct), 0.0), 100.0)
        self.tp1_done = True
        self.sold_pct = sell_pct
        self.remaining_pct = 100.0 - sell_pct

    def snapshot(self, now_ms: int, fee_rate: float) -> "PositionSnapshot":
        return PositionSnapshot(
            pair_id=self.pair_id,
            symbol=self.symbol,
            url=self.url,
            stage=self.stage.value,
            entry_ms=self.entry_ms,
            spent=self.spent,
            multiple=self.multiple,
            ath_multiple=self.ath_multiple,
            pnl_pct=self.pnl_pct(),
            tp1_done=self.tp1_done,
            sold_pct=self.sold_pct,
            remaining_pct=self.remaining_pct,
            trailing_active=self.trailing_active,
            trailing_floor_multiple=self.trailing_floor_multiple,
            expected_out=self.expected_out(fee_rate),
            elapsed_min=self.elapsed_minutes(now_ms),
        )


@dataclass(frozen=True)
class PositionSnapshot:
    pair_id: str
    symbol: str
    url: str
    stage: str
    entry_ms: int
    spent: float
    multiple: float
    ath_multiple: float
    pnl_pct: float
    tp1_done: bool
    sold_pct: float
    remaining_pct: float
    trailing_active: bool
    trailing_floor_multiple: float
    expected_out: float
    elapsed_min: float

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
