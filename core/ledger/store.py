from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Protocol

from core.ledger.errors import BudgetExistsError, BudgetNotFoundError, ItemNotFoundError, LedgerError
from core.ledger.models import RESERVED_SHEET, LineItem
from core.logging.audit import audit_event
from core.storage.db import transaction


class LedgerStore(Protocol):
    """Spreadsheet-like store: one ledger per account, one sheet per budget.

    Items are addressed by 1-based position, which shifts after deletions.
    Every call is atomic on its own; there is no batch or transaction API.
    """

    def create_budget(self, ledger_handle: str, name: str) -> None:
        ...

    def list_budgets(self, ledger_handle: str) -> list[str]:
        ...

    def add_item(self, ledger_handle: str, budget_name: str, item: LineItem) -> None:
        ...

    def get_items(self, ledger_handle: str, budget_name: str) -> list[LineItem]:
        ...

    def delete_item(self, ledger_handle: str, budget_name: str, position: int) -> LineItem:
        ...

    def delete_budget(self, ledger_handle: str, budget_name: str) -> None:
        ...


def _key(name: str) -> str:
    return " ".join(name.split()).casefold()


def _row_to_item(row: Any) -> LineItem:
    return LineItem(
        name=row["name"],
        quantity=float(row["quantity"]),
        unit_price=int(row["unit_price"]),
        note=row["note"] or "",
    )


class SqliteLedgerStore:
    """Local ledger kept in the application SQLite database."""

    def __init__(self, db_path: Path | None = None) -> None:
        self._db_path = db_path

    def _require_budget(self, conn: Any, ledger_handle: str, budget_name: str) -> str:
        key = _key(budget_name)
        row = conn.execute(
            "SELECT name_key FROM budgets WHERE ledger_id = ? AND name_key = ?",
            (ledger_handle, key),
        ).fetchone()
        if row is None:
            raise BudgetNotFoundError(budget_name)
        return key

    def create_budget(self, ledger_handle: str, name: str) -> None:
        cleaned = " ".join(name.split())
        if not cleaned:
            raise LedgerError("Budget name must not be empty.")
        key = _key(cleaned)
        if key == _key(RESERVED_SHEET):
            raise BudgetExistsError(cleaned)
        with transaction(self._db_path) as conn:
            existing = conn.execute(
                "SELECT 1 FROM budgets WHERE ledger_id = ? AND name_key = ?",
                (ledger_handle, key),
            ).fetchone()
            if existing is not None:
                raise BudgetExistsError(cleaned)
            conn.execute(
                "INSERT INTO budgets (ledger_id, name, name_key, created_at) VALUES (?, ?, ?, ?)",
                (ledger_handle, cleaned, key, datetime.now(tz=timezone.utc).isoformat()),
            )
        audit_event("ledger.budget_created", ledger=ledger_handle, budget=cleaned)

    def list_budgets(self, ledger_handle: str) -> list[str]:
        with transaction(self._db_path) as conn:
            rows = conn.execute(
                "SELECT name FROM budgets WHERE ledger_id = ? ORDER BY created_at, rowid",
                (ledger_handle,),
            ).fetchall()
        return [row["name"] for row in rows if row["name"] != RESERVED_SHEET]

    def add_item(self, ledger_handle: str, budget_name: str, item: LineItem) -> None:
        with transaction(self._db_path) as conn:
            key = self._require_budget(conn, ledger_handle, budget_name)
            conn.execute(
                """
                INSERT INTO items (ledger_id, budget_key, name, quantity, unit_price, note, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    ledger_handle,
                    key,
                    item.name,
                    item.quantity,
                    item.unit_price,
                    item.note,
                    datetime.now(tz=timezone.utc).isoformat(),
                ),
            )
        audit_event("ledger.item_added", ledger=ledger_handle, budget=budget_name)

    def get_items(self, ledger_handle: str, budget_name: str) -> list[LineItem]:
        with transaction(self._db_path) as conn:
            key = self._require_budget(conn, ledger_handle, budget_name)
            rows = conn.execute(
                "SELECT * FROM items WHERE ledger_id = ? AND budget_key = ? ORDER BY id",
                (ledger_handle, key),
            ).fetchall()
        return [_row_to_item(row) for row in rows]

    def delete_item(self, ledger_handle: str, budget_name: str, position: int) -> LineItem:
        with transaction(self._db_path) as conn:
            key = self._require_budget(conn, ledger_handle, budget_name)
            if position < 1:
                raise ItemNotFoundError(budget_name, position)
            row = conn.execute(
                "SELECT * FROM items WHERE ledger_id = ? AND budget_key = ? ORDER BY id LIMIT 1 OFFSET ?",
                (ledger_handle, key, position - 1),
            ).fetchone()
            if row is None:
                raise ItemNotFoundError(budget_name, position)
            conn.execute("DELETE FROM items WHERE id = ?", (row["id"],))
        audit_event("ledger.item_deleted", ledger=ledger_handle, budget=budget_name, position=position)
        return _row_to_item(row)

    def delete_budget(self, ledger_handle: str, budget_name: str) -> None:
        with transaction(self._db_path) as conn:
            key = self._require_budget(conn, ledger_handle, budget_name)
            conn.execute("DELETE FROM items WHERE ledger_id = ? AND budget_key = ?", (ledger_handle, key))
            conn.execute("DELETE FROM budgets WHERE ledger_id = ? AND name_key = ?", (ledger_handle, key))
        audit_event("ledger.budget_deleted", ledger=ledger_handle, budget=budget_name)
