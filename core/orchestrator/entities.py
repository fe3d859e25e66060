from __future__ import annotations

from dataclasses import dataclass
from typing import Generic, Optional, Sequence, TypeVar, Union

from core.orchestrator.schemas import Entities

T = TypeVar("T")


@dataclass(frozen=True)
class Single(Generic[T]):
    value: T


@dataclass(frozen=True)
class Many(Generic[T]):
    values: tuple[T, ...]


Cardinal = Union[Single[T], Many[T]]


@dataclass(frozen=True)
class ItemRequest:
    name: str
    quantity: float
    unit_price: Optional[int]


def lift(value: Union[T, Sequence[T], None]) -> Optional[Cardinal[T]]:
    if value is None:
        return None
    if isinstance(value, (list, tuple)):
        return Many(tuple(value))
    return Single(value)


def as_sequence(variant: Optional[Cardinal[T]]) -> list[T]:
    if variant is None:
        return []
    if isinstance(variant, Single):
        return [variant.value]
    return list(variant.values)


def _positive(value: object) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value) if value > 0 else None


def item_names(entities: Entities) -> list[str]:
    return [name for name in as_sequence(lift(entities.item)) if name]


def quantities(entities: Entities) -> list[float]:
    return [q for q in (_positive(value) for value in as_sequence(lift(entities.quantity))) if q is not None]


def _price(value: object) -> Optional[int]:
    amount = _positive(value)
    if amount is None:
        return None
    rounded = int(round(amount))
    return rounded if rounded > 0 else None


def build_item_requests(entities: Entities) -> list[ItemRequest]:
    """Line up items, quantities and prices into one row per item.

    A single quantity applies to every item, and a short quantity list
    falls back to its first usable value. A lone price only counts for a
    single-item request; with several items prices must come as a list.
    Anything that does not round to a positive price is left for the
    price resolver.
    """
    names = item_names(entities)
    quantity_variant = lift(entities.quantity)
    raw_quantities = [_positive(value) for value in as_sequence(quantity_variant)]
    usable = [q for q in raw_quantities if q is not None]
    if not names or not usable:
        return []
    first_quantity = usable[0]
    price_variant = lift(entities.unit_price)
    if len(names) > 1 and isinstance(price_variant, Single):
        prices: list[Optional[int]] = []
    else:
        prices = [_price(value) for value in as_sequence(price_variant)]

    requests: list[ItemRequest] = []
    for index, name in enumerate(names):
        if isinstance(quantity_variant, Single):
            quantity = first_quantity
        else:
            candidate = raw_quantities[index] if index < len(raw_quantities) else None
            quantity = candidate if candidate is not None else first_quantity
        price = prices[index] if index < len(prices) else None
        requests.append(ItemRequest(name=name, quantity=quantity, unit_price=price))
    return requests
