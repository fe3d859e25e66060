from __future__ import annotations

from typing import Optional, Protocol, Sequence


class BudgetMatcher(Protocol):
    def match(self, query: str, budgets: Sequence[str]) -> Optional[str]:
        ...


def _fold(value: str) -> str:
    return " ".join(value.split()).casefold()


class SubstringMatcher:
    """First budget whose name contains the query, case-insensitively."""

    def match(self, query: str, budgets: Sequence[str]) -> Optional[str]:
        needle = _fold(query)
        if not needle:
            return None
        for budget in budgets:
            if needle in _fold(budget):
                return budget
        return None


class TieredMatcher:
    """Exact name, then prefix, then substring; first hit inside a tier wins."""

    def match(self, query: str, budgets: Sequence[str]) -> Optional[str]:
        needle = _fold(query)
        if not needle:
            return None
        folded = [(budget, _fold(budget)) for budget in budgets]
        for budget, name in folded:
            if name == needle:
                return budget
        for budget, name in folded:
            if name.startswith(needle):
                return budget
        for budget, name in folded:
            if needle in name:
                return budget
        return None


def build_matcher(name: str) -> BudgetMatcher:
    if name == "substring":
        return SubstringMatcher()
    return TieredMatcher()


def pick_by_index(index: Optional[int], budgets: Sequence[str]) -> Optional[str]:
    if index is None or index < 1 or index > len(budgets):
        return None
    return budgets[index - 1]
