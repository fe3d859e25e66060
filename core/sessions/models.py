from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal, Optional

Role = Literal["user", "agent"]


@dataclass(frozen=True)
class Turn:
    role: Role
    text: str
    timestamp: str
    intent: Optional[str] = None
    entities: dict[str, Any] | None = None


@dataclass(frozen=True)
class PendingConfirmation:
    kind: str
    target: str
    expires_at_turn: int

    def is_live(self, turn_count: int) -> bool:
        return turn_count <= self.expires_at_turn


@dataclass
class Session:
    user_id: str
    active_budget: Optional[str] = None
    ledger_handle: Optional[str] = None
    turn_count: int = 0
    pending_confirmation: Optional[PendingConfirmation] = None
    history: list[Turn] = field(default_factory=list)

    def live_pending(self, kind: str) -> Optional[PendingConfirmation]:
        pending = self.pending_confirmation
        if pending is None or pending.kind != kind:
            return None
        if not pending.is_live(self.turn_count):
            return None
        return pending

    def history_for_prompt(self) -> list[dict[str, str]]:
        return [
            {"role": "assistant" if turn.role == "agent" else "user", "content": turn.text}
            for turn in self.history
        ]
