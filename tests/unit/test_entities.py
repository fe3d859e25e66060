from __future__ import annotations

from core.orchestrator.entities import ItemRequest, Many, Single, as_sequence, build_item_requests, lift
from core.orchestrator.schemas import Entities


def test_lift_tags_scalars_and_lists() -> None:
    assert lift("a") == Single("a")
    assert lift(["a", "b"]) == Many(("a", "b"))
    assert lift(None) is None
    assert as_sequence(Single(3)) == [3]


def test_aligned_lists_with_missing_price() -> None:
    entities = Entities(item=["a", "b"], quantity=[10, 5], unit_price=[8500, None])
    assert build_item_requests(entities) == [
        ItemRequest(name="a", quantity=10, unit_price=8500),
        ItemRequest(name="b", quantity=5, unit_price=None),
    ]


def test_scalar_quantity_broadcasts_but_scalar_price_does_not() -> None:
    entities = Entities(item=["a", "b", "c"], quantity=4, unit_price=2000)
    requests = build_item_requests(entities)
    assert [request.quantity for request in requests] == [4, 4, 4]
    assert [request.unit_price for request in requests] == [None, None, None]


def test_scalar_price_kept_for_single_item() -> None:
    entities = Entities(item=["a"], quantity=[2], unit_price=2000)
    assert build_item_requests(entities) == [ItemRequest(name="a", quantity=2, unit_price=2000)]


def test_short_quantity_list_falls_back_to_first_value() -> None:
    entities = Entities(item=["a", "b", "c"], quantity=[3, 0])
    assert [request.quantity for request in build_item_requests(entities)] == [3, 3, 3]


def test_non_positive_prices_count_as_missing() -> None:
    entities = Entities(item="a", quantity=2, unit_price=0)
    assert build_item_requests(entities) == [ItemRequest(name="a", quantity=2, unit_price=None)]


def test_nothing_to_build_without_item_or_quantity() -> None:
    assert build_item_requests(Entities(item="a")) == []
    assert build_item_requests(Entities(quantity=3)) == []


def test_prices_rounding_to_zero_count_as_missing() -> None:
    entities = Entities(item="tornillo", quantity=10, unit_price=0.4)
    assert build_item_requests(entities) == [ItemRequest(name="tornillo", quantity=10, unit_price=None)]
    assert build_item_requests(Entities(item="a", quantity=1, unit_price=0.5))[0].unit_price is None
    assert build_item_requests(Entities(item="a", quantity=1, unit_price=1.6))[0].unit_price == 2
