from __future__ import annotations

from core.ledger.models import LineItem


class LedgerError(Exception):
    """Base class for ledger store failures."""


class BudgetExistsError(LedgerError):
    def __init__(self, name: str):
        super().__init__(
            f'A budget named "{name}" already exists. '
            f'Try another name or add a number (e.g. "{name} 2").'
        )
        self.name = name


class BudgetNotFoundError(LedgerError):
    def __init__(self, name: str):
        super().__init__(f'Budget "{name}" does not exist.')
        self.name = name


class ItemNotFoundError(LedgerError):
    def __init__(self, budget: str, position: int):
        super().__init__(f'Budget "{budget}" has no item at position {position}.')
        self.budget = budget
        self.position = position


class PartialIngestionError(LedgerError):
    """An item write failed after earlier items of the same request were committed."""

    def __init__(self, committed: list[LineItem], failed: LineItem, cause: Exception):
        super().__init__(f"Stored {len(committed)} item(s) before failing on {failed.name!r}: {cause}")
        self.committed = committed
        self.failed = failed
        self.cause = cause
