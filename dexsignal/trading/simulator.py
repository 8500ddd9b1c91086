from __future__ import annotations

import random
from typing import Optional

from dexsignal.core.interfaces import RandomSource
from dexsignal.trading.position import Position

MIN_MULTIPLE = 0.15
MAX_MULTIPLE = 12.0


def clamp(n: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, n))


class PriceSimulator:
    """
    Synthetic price multiple: random walk with a slight negative drift,
    plus occasional pump / dump jumps. Stands in for a real price feed.

    Draw order per tick (matters for scripted sources in tests):
      1. step        (rng - drift_center) * step_scale
      2. pump roll   then pump size if it hits
      3. dump roll   then dump size if it hits
    """

    def __init__(
        self,
        rng: Optional[RandomSource] = None,
        *,
        drift_center: float = 0.48,
        step_scale: float = 0.10,
        pump_prob: float = 0.06,
        pump_scale: float = 0.8,
        dump_prob: float = 0.04,
        dump_scale: float = 0.5,
        lo: float = MIN_MULTIPLE,
        hi: float = MAX_MULTIPLE,
    ):
        self.rng = rng or random.Random()
        self.drift_center = drift_center
        self.step_scale = step_scale
        self.pump_prob = pump_prob
        self.pump_scale = pump_scale
        self.dump_prob = dump_prob
        self.dump_scale = dump_scale
        self.lo = lo
        self.hi = hi

    def next_multiple(self, current: float) -> float:
        step = (self.rng.random() - self.drift_center) * self.step_scale
        if self.rng.random() < self.pump_prob:
            step += self.rng.random() * self.pump_scale
        if self.rng.random() < self.dump_prob:
            step -= self.rng.random() * self.dump_scale
        return clamp(current + step, self.lo, self.hi)

    def tick(self, pos: Position) -> float:
        # ATH is updated inside apply_price, before any exit rule looks at it
        pos.apply_price(self.next_multiple(pos.multiple))
        return pos.multiple
