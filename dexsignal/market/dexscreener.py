from __future__ import annotations

import logging
import random
import time
from email.utils import parsedate_to_datetime
from typing import List, Optional

import requests

from dexsignal.core.errors import DataSourceError
from dexsignal.market.models import PairCandidate

log = logging.getLogger("dexsignal.dexscreener")


def retry_after_seconds(value: Optional[str]) -> Optional[float]:
    """Retry-After is either delta-seconds or an HTTP-date. None when unparseable."""
    if not value:
        return None
    value = value.strip()
    try:
        return max(0.0, float(value))
    except ValueError:
        pass
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when is None:
        return None
    return max(0.0, when.timestamp() - time.time())


class DexscreenerClient:
    """Public Dexscreener search API. No auth, rate-limited by IP."""

    def __init__(
        self,
        base_url: str = "https://api.dexscreener.com",
        query: str = "solana",
        timeout_s: float = 15.0,
        max_retries: int = 3,
        session: requests.Session | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.query = query
        self.timeout_s = timeout_s
        self.max_retries = max_retries
        self.session = session or requests.Session()

    def _request(self, path: str, params=None):
        url = f"{self.base_url}{path}"
        params = dict(params or {})

        last_err = None
        for attempt in range(self.max_retries + 1):
            try:
                r = self.session.get(url, params=params, timeout=self.timeout_s)

                # Rate limit
                if r.status_code == 429:
                    sleep_s = retry_after_seconds(r.headers.get("Retry-After"))
                    if sleep_s is None:
                        sleep_s = 0.4 * (2**attempt)
                    sleep_s += random.uniform(0, 0.2)
                    last_err = "HTTP 429"
                    time.sleep(min(sleep_s, 10.0))
                    continue

                # Server errors
                if r.status_code >= 500:
                    last_err = f"HTTP {r.status_code}"
                    time.sleep(min(0.4 * (2**attempt), 8.0))
                    continue

                if r.status_code >= 400:
                    raise DataSourceError(f"Dexscreener failed: {r.status_code}")

                try:
                    return r.json()
                except ValueError as e:
                    raise DataSourceError(f"Dexscreener returned invalid JSON: {e}") from e

            except requests.RequestException as e:
                # any transport-level failure is retried, then reported as DataSourceError
                last_err = e
                time.sleep(min(0.4 * (2**attempt), 8.0))
                continue

        raise DataSourceError(
            f"Dexscreener request failed after retries: GET {path} ({last_err})"
        )

    def search_pairs(self) -> List[PairCandidate]:
        """
        GET /latest/dex/search?q=<query> and convert the `pairs` array.
        Raises DataSourceError on transport failure or malformed payload.
        """
        data = self._request("/latest/dex/search", {"q": self.query})
        if not isinstance(data, dict):
            raise DataSourceError("Dexscreener payload is not an object")

        pairs = data.get("pairs")
        if pairs is None:
            return []
        if not isinstance(pairs, list):
            raise DataSourceError("Dexscreener payload: 'pairs' is not a list")

        out: List[PairCandidate] = []
        for raw in pairs:
            c = PairCandidate.from_raw(raw)
            if c is not None:
                out.append(c)

        log.debug("dexscreener q=%s pairs=%d usable=%d", self.query, len(pairs), len(out))
        return out
