from __future__ import annotations

from dataclasses import dataclass

RESERVED_SHEET = "Information"


@dataclass(frozen=True)
class LineItem:
    name: str
    quantity: float
    unit_price: int
    note: str = ""

    @property
    def subtotal(self) -> float:
        return self.quantity * self.unit_price


@dataclass(frozen=True)
class BudgetSummary:
    count: int
    total: float
    highest: LineItem | None
    lowest: LineItem | None
    mean: float


def summarize(items: list[LineItem]) -> BudgetSummary:
    if not items:
        return BudgetSummary(count=0, total=0, highest=None, lowest=None, mean=0)
    total = sum(item.subtotal for item in items)
    # max/min keep the first item on ties
    highest = max(items, key=lambda item: item.subtotal)
    lowest = min(items, key=lambda item: item.subtotal)
    return BudgetSummary(
        count=len(items),
        total=total,
        highest=highest,
        lowest=lowest,
        mean=total / len(items),
    )
