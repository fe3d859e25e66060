from __future__ import annotations

from datetime import date
from typing import Callable

from core.ledger.store import LedgerStore
from core.orchestrator.messages import format_money, format_quantity


class RenderError(Exception):
    """Budget document could not be produced."""


class EmptyBudgetError(RenderError):
    def __init__(self, budget_name: str):
        super().__init__(f'Budget "{budget_name}" has no items.')
        self.budget_name = budget_name


class TextBudgetRenderer:
    """Fixed-width plain-text quote for one budget."""

    width = 72

    def __init__(self, ledger: LedgerStore, today: Callable[[], date] = date.today) -> None:
        self._ledger = ledger
        self._today = today

    def render(self, ledger_handle: str, budget_name: str) -> bytes:
        items = self._ledger.get_items(ledger_handle, budget_name)
        if not items:
            raise EmptyBudgetError(budget_name)
        total = sum(item.subtotal for item in items)
        rule = "-" * self.width
        lines = [
            "BUDGET".center(self.width),
            self._today().strftime("%d/%m/%Y").center(self.width),
            "",
            budget_name,
            "Cost estimate",
            rule,
            f"{'#':<4}{'Description':<30}{'Qty':>10}{'Unit price':>14}{'Subtotal':>14}",
            rule,
        ]
        for index, item in enumerate(items, start=1):
            lines.append(
                f"{index:02d}  {item.name[:29]:<30}{format_quantity(item.quantity):>10}"
                f"{format_money(item.unit_price):>14}{format_money(item.subtotal):>14}"
            )
        lines += [rule, f"{'TOTAL':<58}{format_money(total):>14}", "", "Generated via WhatsApp"]
        return ("\n".join(lines) + "\n").encode("utf-8")
