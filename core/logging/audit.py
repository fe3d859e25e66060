from __future__ import annotations

import hashlib
import logging
from datetime import datetime, timezone
from typing import Any

from core.logging.logger import get_logger


def safe_excerpt(value: str, *, max_len: int = 80) -> str:
    compact = " ".join(value.split())
    if len(compact) <= max_len:
        return compact
    return f"{compact[:max_len]}..."


def text_hash(value: str) -> str:
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


def user_hash(user_id: str) -> str:
    """Short stable identifier for a phone number, safe to put in logs."""
    return text_hash(user_id)[:12]


def audit_event(event: str, *, level: int = logging.INFO, exc_info: bool = False, **fields: Any) -> None:
    logger = get_logger()
    timestamp = datetime.now(tz=timezone.utc).isoformat()
    payload = {"event": event, "timestamp": timestamp, **fields}
    logger.log(level, "audit %s", payload, exc_info=exc_info)
