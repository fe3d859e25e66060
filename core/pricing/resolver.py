from __future__ import annotations

import re
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Protocol

from core.logging.audit import audit_event

DEFAULT_FRESHNESS_SECONDS = 24 * 60 * 60
DEFAULT_FALLBACK_PRICE = 1000

_NON_DIGITS = re.compile(r"[^\d]")


class PriceSource(str, Enum):
    CACHE = "cache"
    ESTIMATED = "estimated"
    DEFAULT = "default"


@dataclass(frozen=True)
class PriceQuote:
    price: int
    source: PriceSource


class PriceOracle(Protocol):
    """Anything that can guess a unit price; the answer is validated by the resolver."""

    def quote(self, item_name: str) -> str | int | None:
        ...


class NullPriceOracle:
    """Oracle used when no estimator is configured; every lookup falls back."""

    def quote(self, item_name: str) -> str | int | None:
        _ = item_name
        return None


def parse_price(raw: str | int | float | None) -> int | None:
    if raw is None or isinstance(raw, bool):
        return None
    if isinstance(raw, (int, float)):
        value = int(raw)
    else:
        digits = _NON_DIGITS.sub("", raw.strip())
        if not digits:
            return None
        value = int(digits)
    return value if value > 0 else None


def cache_key(item_name: str) -> str:
    return item_name.strip().lower()


class PriceResolver:
    """Unit price lookup backed by a time-boxed in-memory cache.

    Stale or missing entries go to the oracle. Anything unusable coming back
    from the oracle (error, non-numeric, zero) is replaced by the fallback
    price so item ingestion never blocks on pricing.
    """

    def __init__(
        self,
        oracle: PriceOracle | None = None,
        *,
        freshness_seconds: float = DEFAULT_FRESHNESS_SECONDS,
        fallback_price: int = DEFAULT_FALLBACK_PRICE,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._oracle = oracle or NullPriceOracle()
        self._freshness = freshness_seconds
        self._fallback = fallback_price
        self._clock = clock
        self._lock = threading.Lock()
        self._cache: dict[str, tuple[int, float]] = {}

    def _cached(self, key: str, now: float) -> int | None:
        with self._lock:
            entry = self._cache.get(key)
        if entry is None:
            return None
        price, resolved_at = entry
        if now - resolved_at >= self._freshness:
            return None
        return price

    def get_price(self, item_name: str) -> PriceQuote:
        key = cache_key(item_name)
        now = self._clock()
        cached = self._cached(key, now)
        if cached is not None:
            audit_event("pricing.cache_hit", item=key, price=cached)
            return PriceQuote(price=cached, source=PriceSource.CACHE)

        try:
            raw = self._oracle.quote(item_name)
        except Exception as exc:
            audit_event("pricing.oracle_failed", item=key, error=str(exc))
            return PriceQuote(price=self._fallback, source=PriceSource.DEFAULT)

        price = parse_price(raw)
        if price is None:
            audit_event("pricing.oracle_unusable", item=key)
            return PriceQuote(price=self._fallback, source=PriceSource.DEFAULT)

        with self._lock:
            self._cache[key] = (price, self._clock())
        audit_event("pricing.estimated", item=key, price=price)
        return PriceQuote(price=price, source=PriceSource.ESTIMATED)

    def purge_stale(self) -> int:
        now = self._clock()
        with self._lock:
            stale = [key for key, (_, resolved_at) in self._cache.items() if now - resolved_at > self._freshness]
            for key in stale:
                del self._cache[key]
        if stale:
            audit_event("pricing.cache_purged", removed=len(stale))
        return len(stale)

    def __len__(self) -> int:
        with self._lock:
            return len(self._cache)
