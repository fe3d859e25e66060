from __future__ import annotations

import logging
import os
from typing import Optional


_ROOT_NAME = "budgetbot"
_LOGGER: Optional[logging.Logger] = None


def _level_from_env() -> int:
    raw = os.getenv("BUDGETBOT_LOG_LEVEL", "INFO").strip().upper()
    level = logging.getLevelName(raw)
    return level if isinstance(level, int) else logging.INFO


def get_logger(component: str | None = None) -> logging.Logger:
    """Return the process logger, or a child of it for ``component``."""
    global _LOGGER
    if _LOGGER is None:
        logger = logging.getLogger(_ROOT_NAME)
        if not logger.handlers:
            handler = logging.StreamHandler()
            handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s %(message)s"))
            logger.addHandler(handler)
        logger.setLevel(_level_from_env())
        _LOGGER = logger
    if component:
        return _LOGGER.getChild(component)
    return _LOGGER
