from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping, Optional


def _num(v: Any) -> float:
    try:
        x = float(v or 0)
    except (TypeError, ValueError):
        return 0.0
    if x != x or x in (float("inf"), float("-inf")):
        return 0.0
    return x


def _nested(raw: Mapping[str, Any], key: str, sub: str) -> Any:
    node = raw.get(key)
    if isinstance(node, Mapping):
        return node.get(sub)
    return None


@dataclass(frozen=True)
class PairCandidate:
    """One pair record from the market-data feed. Read-only."""

    pair_id: str
    chain_id: str
    base_symbol: str
    quote_symbol: str
    liquidity_usd: float
    volume_m5_usd: float
    market_cap_usd: float  # 0 when unknown
    created_at_ms: int  # 0 when unknown
    url: str = ""

    @property
    def symbol(self) -> str:
        return f"{self.base_symbol}/{self.quote_symbol}"

    def age_minutes(self, now_ms: int) -> Optional[float]:
        if not self.created_at_ms:
            return None
        return (now_ms - self.created_at_ms) / 60000.0

    @classmethod
    def from_raw(cls, raw: Mapping[str, Any]) -> Optional["PairCandidate"]:
        """
        Dexscreener pair shape:
          {"chainId", "pairAddress", "baseToken": {"symbol"}, "quoteToken": {"symbol"},
           "liquidity": {"usd"}, "volume": {"m5"}, "fdv", "marketCap",
           "pairCreatedAt" (ms), "url"}
        Returns None for records without a pair address.
        """
        if not isinstance(raw, Mapping):
            return None
        pair_id = str(raw.get("pairAddress") or "").strip()
        if not pair_id:
            return None

        mcap = _num(raw.get("fdv")) or _num(raw.get("marketCap"))

        return cls(
            pair_id=pair_id,
            chain_id=str(raw.get("chainId") or "").lower(),
            base_symbol=str(_nested(raw, "baseToken", "symbol") or "TOKEN"),
            quote_symbol=str(_nested(raw, "quoteToken", "symbol") or "SOL"),
            liquidity_usd=_num(_nested(raw, "liquidity", "usd")),
            volume_m5_usd=_num(_nested(raw, "volume", "m5")),
            market_cap_usd=mcap,
            created_at_ms=int(_num(raw.get("pairCreatedAt"))),
            url=str(raw.get("url") or ""),
        )
