from __future__ import annotations

from dataclasses import dataclass

from dexsignal.market.models import PairCandidate


@dataclass(frozen=True)
class FilterPolicy:
    target_chain: str
    min_liquidity: float
    min_volume: float
    max_age_minutes: float
    max_market_cap: float

    def __post_init__(self) -> None:
        for name in ("min_liquidity", "min_volume", "max_age_minutes", "max_market_cap"):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must be >= 0")

    @classmethod
    def from_settings(cls, s) -> "FilterPolicy":
        return cls(
            target_chain=s.TARGET_CHAIN,
            min_liquidity=float(s.MIN_LIQUIDITY_USD),
            min_volume=float(s.MIN_VOLUME_M5_USD),
            max_age_minutes=float(s.MAX_TOKEN_AGE_MIN),
            max_market_cap=float(s.MAX_MARKETCAP_USD),
        )


def passes(candidate: PairCandidate, policy: FilterPolicy, now_ms: int) -> bool:
    """
    All must hold:
      - chain matches
      - creation timestamp known (age is undefined otherwise)
      - liquidity >= min, 5m volume >= min (inclusive)
      - age <= max
      - market cap <= max, unless it is unknown (0)
    """
    if candidate is None or candidate.chain_id != policy.target_chain:
        return False

    age = candidate.age_minutes(now_ms)
    if age is None:
        return False

    if candidate.liquidity_usd < policy.min_liquidity:
        return False
    if candidate.volume_m5_usd < policy.min_volume:
        return False
    if age > policy.max_age_minutes:
        return False
    if candidate.market_cap_usd and candidate.market_cap_usd > policy.max_market_cap:
        return False

    return True
