from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional

import httpx

logger = logging.getLogger(__name__)


@dataclass
class CachedRate:
    value: float
    timestamp: float  # 0 means "never fetched", value is the seed
    ttl: float

    def fresh(self, now: float) -> bool:
        return self.timestamp > 0 and now - self.timestamp <= self.ttl


class FxRateCache:
    """
    INR→USD rate with a last-good fallback.

    The clock is injected so staleness is controlled by the caller rather
    than by wall-clock sleeps.
    """

    def __init__(
        self,
        url: str,
        ttl: float,
        seed: float = 0.012,
        clock: Callable[[], float] = time.time,
        timeout_s: float = 5.0,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self.url = url
        self.timeout_s = timeout_s
        self._clock = clock
        self._transport = transport
        self._lock = threading.Lock()
        self.cached = CachedRate(value=seed, timestamp=0.0, ttl=ttl)

    def _fetch(self) -> Optional[float]:
        try:
            with httpx.Client(timeout=self.timeout_s, transport=self._transport) as client:
                r = client.get(self.url)
                r.raise_for_status()
                data = r.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("fx fetch failed: %s", exc.__class__.__name__)
            return None
        rate = float(((data or {}).get("rates") or {}).get("USD") or 0)
        return rate if rate > 0 else None

    def get(self) -> CachedRate:
        now = self._clock()
        with self._lock:
            if self.cached.fresh(now):
                return self.cached
        rate = self._fetch()
        with self._lock:
            if rate is not None:
                self.cached = CachedRate(value=rate, timestamp=now, ttl=self.cached.ttl)
            return self.cached
