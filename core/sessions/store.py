from __future__ import annotations

import json
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from core.logging.audit import audit_event, user_hash
from core.sessions.models import PendingConfirmation, Role, Session, Turn
from core.storage.db import transaction


def _now() -> str:
    return datetime.now(tz=timezone.utc).isoformat()


def _row_to_turn(row: Any) -> Turn:
    entities_raw = row["entities"]
    entities: dict[str, Any] | None = None
    if entities_raw:
        try:
            entities = json.loads(entities_raw)
        except json.JSONDecodeError:
            entities = None
    return Turn(
        role=row["role"],
        text=row["text"],
        timestamp=row["ts"],
        intent=row["intent"],
        entities=entities,
    )


def _row_to_pending(row: Any) -> Optional[PendingConfirmation]:
    if not row["pending_kind"] or not row["pending_target"]:
        return None
    return PendingConfirmation(
        kind=row["pending_kind"],
        target=row["pending_target"],
        expires_at_turn=int(row["pending_expires_at_turn"] or 0),
    )


class SessionStore:
    """Per-user conversation log plus the mutable pointers the orchestrator owns.

    Every call is its own transaction; concurrent writes for one user are
    last-write-wins.
    """

    def __init__(self, db_path: Path | None = None) -> None:
        self._db_path = db_path

    def _ensure_user(self, conn: sqlite3.Connection, user_id: str) -> sqlite3.Row:
        row = conn.execute("SELECT * FROM users WHERE user_id = ?", (user_id,)).fetchone()
        if row is not None:
            return row
        conn.execute("INSERT OR IGNORE INTO users (user_id, created_at) VALUES (?, ?)", (user_id, _now()))
        audit_event("session.user_created", user=user_hash(user_id))
        return conn.execute("SELECT * FROM users WHERE user_id = ?", (user_id,)).fetchone()

    def get_or_create_user(self, user_id: str) -> Session:
        with transaction(self._db_path) as conn:
            row = self._ensure_user(conn, user_id)
        return Session(
            user_id=user_id,
            active_budget=row["active_budget"],
            ledger_handle=row["ledger_handle"],
            turn_count=int(row["turn_count"] or 0),
            pending_confirmation=_row_to_pending(row),
        )

    def get_session(self, user_id: str, history_limit: int = 10) -> Session:
        session = self.get_or_create_user(user_id)
        session.history = self.get_recent_turns(user_id, limit=history_limit)
        return session

    def append_turn(
        self,
        user_id: str,
        role: Role,
        text: str,
        intent: str | None = None,
        entities: dict[str, Any] | None = None,
    ) -> int:
        """Store a turn. User turns advance the turn counter, which is returned."""
        with transaction(self._db_path) as conn:
            self._ensure_user(conn, user_id)
            conn.execute(
                "INSERT INTO turns (user_id, role, text, intent, entities, ts) VALUES (?, ?, ?, ?, ?, ?)",
                (
                    user_id,
                    role,
                    text,
                    intent,
                    json.dumps(entities) if entities else None,
                    _now(),
                ),
            )
            if role == "user":
                conn.execute("UPDATE users SET turn_count = turn_count + 1 WHERE user_id = ?", (user_id,))
            row = conn.execute("SELECT turn_count FROM users WHERE user_id = ?", (user_id,)).fetchone()
        return int(row["turn_count"])

    def get_recent_turns(self, user_id: str, limit: int = 10) -> list[Turn]:
        with transaction(self._db_path) as conn:
            rows = conn.execute(
                "SELECT * FROM turns WHERE user_id = ? ORDER BY id DESC LIMIT ?",
                (user_id, limit),
            ).fetchall()
        return [_row_to_turn(row) for row in reversed(rows)]

    def set_active_budget(self, user_id: str, name: str | None) -> None:
        with transaction(self._db_path) as conn:
            self._ensure_user(conn, user_id)
            conn.execute("UPDATE users SET active_budget = ? WHERE user_id = ?", (name, user_id))
        audit_event("session.active_budget", user=user_hash(user_id), cleared=name is None)

    def set_ledger_handle(self, user_id: str, handle: str) -> None:
        with transaction(self._db_path) as conn:
            self._ensure_user(conn, user_id)
            conn.execute("UPDATE users SET ledger_handle = ? WHERE user_id = ?", (handle, user_id))
        audit_event("session.ledger_handle", user=user_hash(user_id))

    def set_pending_confirmation(self, user_id: str, pending: PendingConfirmation) -> None:
        with transaction(self._db_path) as conn:
            self._ensure_user(conn, user_id)
            conn.execute(
                """
                UPDATE users
                SET pending_kind = ?, pending_target = ?, pending_expires_at_turn = ?
                WHERE user_id = ?
                """,
                (pending.kind, pending.target, pending.expires_at_turn, user_id),
            )
        audit_event(
            "session.pending_set",
            user=user_hash(user_id),
            kind=pending.kind,
            expires_at_turn=pending.expires_at_turn,
        )

    def clear_pending_confirmation(self, user_id: str) -> None:
        with transaction(self._db_path) as conn:
            conn.execute(
                """
                UPDATE users
                SET pending_kind = NULL, pending_target = NULL, pending_expires_at_turn = NULL
                WHERE user_id = ?
                """,
                (user_id,),
            )

    def trim_history(self, user_id: str, keep: int = 50) -> int:
        with transaction(self._db_path) as conn:
            cursor = conn.execute(
                """
                DELETE FROM turns
                WHERE user_id = ? AND id NOT IN (
                    SELECT id FROM turns WHERE user_id = ? ORDER BY id DESC LIMIT ?
                )
                """,
                (user_id, user_id, keep),
            )
            removed = cursor.rowcount
        if removed:
            audit_event("session.history_trimmed", user=user_hash(user_id), removed=removed)
        return removed
