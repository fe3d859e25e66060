from __future__ import annotations

import pytest

from core.pricing.resolver import PriceResolver, PriceSource, parse_price


class CountingOracle:
    def __init__(self, answer: object = "8500") -> None:
        self.answer = answer
        self.calls: list[str] = []

    def quote(self, item_name: str):
        self.calls.append(item_name)
        if isinstance(self.answer, Exception):
            raise self.answer
        return self.answer


class FakeClock:
    def __init__(self) -> None:
        self.now = 1_000_000.0

    def __call__(self) -> float:
        return self.now


@pytest.mark.parametrize(
    ("raw", "expected"),
    [("8500", 8500), ("$8.500", 8500), ("0", None), ("sin precio", None), (None, None), (12000, 12000)],
)
def test_parse_price(raw: object, expected: int | None) -> None:
    assert parse_price(raw) == expected


def test_second_lookup_within_window_hits_cache() -> None:
    oracle = CountingOracle()
    resolver = PriceResolver(oracle, clock=FakeClock())
    first = resolver.get_price("cemento")
    second = resolver.get_price("  Cemento ")
    assert first.source is PriceSource.ESTIMATED
    assert second.source is PriceSource.CACHE
    assert second.price == 8500
    assert oracle.calls == ["cemento"]


def test_stale_entry_goes_back_to_oracle() -> None:
    oracle = CountingOracle()
    clock = FakeClock()
    resolver = PriceResolver(oracle, freshness_seconds=60, clock=clock)
    resolver.get_price("cemento")
    clock.now += 61
    assert resolver.get_price("cemento").source is PriceSource.ESTIMATED
    assert len(oracle.calls) == 2


@pytest.mark.parametrize("answer", ["0", "no idea", None, RuntimeError("boom")])
def test_unusable_answers_fall_back(answer: object) -> None:
    resolver = PriceResolver(CountingOracle(answer), fallback_price=1000)
    quote = resolver.get_price("clavos")
    assert quote.price == 1000
    assert quote.source is PriceSource.DEFAULT
    assert len(resolver) == 0


def test_purge_only_removes_entries_past_the_window() -> None:
    clock = FakeClock()
    resolver = PriceResolver(CountingOracle(), freshness_seconds=100, clock=clock)
    resolver.get_price("old")
    clock.now += 60
    resolver.get_price("fresh")
    clock.now += 50
    assert resolver.purge_stale() == 1
    assert len(resolver) == 1
    assert resolver.get_price("fresh").source is PriceSource.CACHE
