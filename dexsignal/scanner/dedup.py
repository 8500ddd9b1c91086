from __future__ import annotations

import time
from typing import Callable, Dict, List, Optional


def _now_ms() -> int:
    return int(time.time() * 1000)


class DedupRegistry:
    """
    Pair ids that were already signaled.

    ttl_ms == 0 keeps every id for the process lifetime.
    ttl_ms > 0 forgets ids older than the ttl (checked lazily on has/add/expire).
    `on_evict` is called with each forgotten id.
    """

    def __init__(
        self,
        ttl_ms: int = 0,
        clock: Callable[[], int] = _now_ms,
        on_evict: Optional[Callable[[str], None]] = None,
    ):
        self.ttl_ms = int(ttl_ms)
        self._clock = clock
        self._seen: Dict[str, int] = {}
        self.on_evict = on_evict

    def has(self, pair_id: str) -> bool:
        self.expire()
        return pair_id in self._seen

    def add(self, pair_id: str) -> None:
        self.expire()
        self._seen.setdefault(pair_id, self._clock())

    def __len__(self) -> int:
        return len(self._seen)

    def expire(self) -> List[str]:
        """Drop ids older than the ttl. Returns the dropped ids."""
        if self.ttl_ms <= 0 or not self._seen:
            return []
        cutoff = self._clock() - self.ttl_ms
        expired = [k for k, ts in self._seen.items() if ts < cutoff]
        for k in expired:
            del self._seen[k]
            if self.on_evict is not None:
                self.on_evict(k)
        return expired
