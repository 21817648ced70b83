from __future__ import annotations

import logging

from core.config import settings

DEV_FORMAT = "%(asctime)s [%(levelname)s] %(name)s:%(lineno)d: %(message)s"
PROD_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

NOISY_LOGGERS = ("sqlalchemy.engine", "uvicorn.access", "aiosqlite", "asyncio")


def _coerce_level(value) -> int:
    if isinstance(value, int):
        return value
    level = logging.getLevelName(str(value or "INFO").upper())
    return level if isinstance(level, int) else logging.INFO


def configure_logging(level=None, environment: str | None = None) -> None:
    level = _coerce_level(level if level is not None else settings.log_level)
    environment = environment or settings.environment

    root = logging.getLogger()
    root.setLevel(level)
    formatter = logging.Formatter(PROD_FORMAT if environment == "production" else DEV_FORMAT)
    if not root.handlers:
        root.addHandler(logging.StreamHandler())
    for handler in root.handlers:
        handler.setFormatter(formatter)

    if level > logging.DEBUG:
        for noisy in NOISY_LOGGERS:
            logging.getLogger(noisy).setLevel(logging.WARNING)
