from __future__ import annotations

import os

import uvicorn
from dotenv import load_dotenv

from core.config import ensure_directories
from core.logging.logger import get_logger


def main() -> None:
    load_dotenv()
    paths = ensure_directories()
    logger = get_logger()
    host = os.getenv("BUDGETBOT_HOST", "0.0.0.0")
    port = int(os.getenv("BUDGETBOT_PORT", "3000"))
    logger.info("Starting BudgetBot webhook on %s:%s (data in %s)", host, port, paths.data_dir)
    uvicorn.run("apps.webhook.main:create_app", factory=True, host=host, port=port, reload=False)


if __name__ == "__main__":
    main()
