from __future__ import annotations

import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

from core.config import ensure_directories

_DB_INITIALIZED: set[Path] = set()
_INIT_LOCK = threading.Lock()

_SCHEMA = """
CREATE TABLE IF NOT EXISTS users (
    user_id TEXT PRIMARY KEY,
    created_at TEXT NOT NULL,
    active_budget TEXT,
    ledger_handle TEXT,
    turn_count INTEGER NOT NULL DEFAULT 0,
    pending_kind TEXT,
    pending_target TEXT,
    pending_expires_at_turn INTEGER
);
CREATE TABLE IF NOT EXISTS turns (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id TEXT NOT NULL,
    role TEXT NOT NULL,
    text TEXT NOT NULL,
    intent TEXT,
    entities TEXT,
    ts TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_turns_user ON turns (user_id, id);
CREATE TABLE IF NOT EXISTS budgets (
    ledger_id TEXT NOT NULL,
    name TEXT NOT NULL,
    name_key TEXT NOT NULL,
    created_at TEXT NOT NULL,
    PRIMARY KEY (ledger_id, name_key)
);
CREATE TABLE IF NOT EXISTS items (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    ledger_id TEXT NOT NULL,
    budget_key TEXT NOT NULL,
    name TEXT NOT NULL,
    quantity REAL NOT NULL,
    unit_price INTEGER NOT NULL,
    note TEXT,
    created_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_items_budget ON items (ledger_id, budget_key, id);
"""


def get_db_path() -> Path:
    return ensure_directories().db_path


def init_db(db_path: Path) -> None:
    with _INIT_LOCK:
        if db_path in _DB_INITIALIZED:
            return
        db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(str(db_path))
        try:
            conn.executescript(_SCHEMA)
            conn.commit()
            _DB_INITIALIZED.add(db_path)
        finally:
            conn.close()


def get_connection(db_path: Path | None = None) -> sqlite3.Connection:
    path = db_path or get_db_path()
    init_db(path)
    conn = sqlite3.connect(str(path), check_same_thread=False)
    conn.row_factory = sqlite3.Row
    return conn


@contextmanager
def transaction(db_path: Path | None = None) -> Iterator[sqlite3.Connection]:
    """Yield a connection that commits on success, rolls back on error and always closes."""
    conn = get_connection(db_path)
    try:
        with conn:
            yield conn
    finally:
        conn.close()
