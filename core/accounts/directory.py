from __future__ import annotations

import json
import re
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

from core.logging.audit import audit_event, user_hash

_PHONE_SEPARATORS = re.compile(r"[\s\-()+]")


class AccountConfigError(Exception):
    """Raised when a user has no usable account or ledger configured."""


@dataclass(frozen=True)
class Account:
    account_id: str
    display_name: str
    phone: str
    ledger_handle: str | None
    notify_emails: tuple[str, ...] = field(default_factory=tuple)


def normalize_phone(phone: str) -> str:
    return _PHONE_SEPARATORS.sub("", phone or "")


def _parse_account(raw: dict[str, Any]) -> Optional[Account]:
    phone = normalize_phone(str(raw.get("phone") or ""))
    if not phone:
        return None
    ledger = str(raw.get("ledger_id") or "").strip()
    emails = raw.get("notify_emails") or []
    if isinstance(emails, str):
        emails = [emails]
    return Account(
        account_id=str(raw.get("id") or phone),
        display_name=str(raw.get("name") or phone),
        phone=phone,
        ledger_handle=ledger or None,
        notify_emails=tuple(str(email) for email in emails if email),
    )


class AccountDirectory:
    """Static phone -> account mapping loaded from a JSON file.

    The file looks like ``{"accounts": [{"id", "name", "phone", "ledger_id",
    "notify_emails"}]}``. A missing or unreadable file yields an empty
    directory; ``reload()`` re-reads it on demand.
    """

    def __init__(self, source: Path | None = None, accounts: list[Account] | None = None) -> None:
        self._source = source
        self._lock = threading.Lock()
        self._accounts: dict[str, Account] = {}
        if accounts is not None:
            self._accounts = {account.phone: account for account in accounts}
        elif source is not None:
            self.reload()

    @property
    def source(self) -> Path | None:
        return self._source

    def reload(self) -> int:
        loaded = self._read_source()
        with self._lock:
            self._accounts = loaded
        audit_event("accounts.loaded", total=len(loaded), source=str(self._source))
        return len(loaded)

    def _read_source(self) -> dict[str, Account]:
        if self._source is None:
            return {}
        if not self._source.exists():
            audit_event("accounts.missing_file", source=str(self._source))
            return {}
        try:
            data = json.loads(self._source.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            audit_event("accounts.load_failed", source=str(self._source), error=str(exc))
            return {}
        entries = data.get("accounts", []) if isinstance(data, dict) else []
        accounts: dict[str, Account] = {}
        for raw in entries:
            if not isinstance(raw, dict):
                continue
            account = _parse_account(raw)
            if account is not None:
                accounts[account.phone] = account
        return accounts

    def lookup(self, phone: str) -> Optional[Account]:
        with self._lock:
            return self._accounts.get(normalize_phone(phone))

    def all(self) -> list[Account]:
        with self._lock:
            return list(self._accounts.values())

    def require_ledger(self, phone: str) -> str:
        account = self.lookup(phone)
        if account is None:
            audit_event("accounts.unknown_user", user=user_hash(phone))
            raise AccountConfigError(
                "⚠️ This number is not registered.\n\nPlease contact the administrator to set up your account."
            )
        if not account.ledger_handle:
            audit_event("accounts.missing_ledger", account_id=account.account_id)
            raise AccountConfigError(
                "⚠️ Configuration error.\n\n"
                "Your account has no budget ledger assigned. Please contact the administrator."
            )
        return account.ledger_handle
