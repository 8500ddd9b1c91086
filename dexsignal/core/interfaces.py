from typing import List, Optional, Protocol, Tuple

from dexsignal.market.models import PairCandidate

# Inline keyboard: rows of (label, callback_data)
Buttons = List[List[Tuple[str, str]]]


class Notifier(Protocol):
    def notify(self, text: str, buttons: Optional[Buttons] = None) -> bool: ...


class CandidateSource(Protocol):
    def search_pairs(self) -> List[PairCandidate]: ...


class RandomSource(Protocol):
    def random(self) -> float: ...
