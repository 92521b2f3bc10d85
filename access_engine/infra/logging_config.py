from __future__ import annotations

import logging
import sys

from access_engine.infra.settings import LOG_LEVEL

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"

QUIET_LOGGERS = {
    "httpx": "WARNING",
    "httpcore": "WARNING",
    "sqlalchemy.engine": "WARNING",
}


def setup_logging(level: str | None = None) -> None:
    resolved = getattr(logging, (level or LOG_LEVEL).upper(), logging.INFO)
    root_logger = logging.getLogger()
    root_logger.setLevel(resolved)

    for handler in root_logger.handlers[:]:
        if getattr(handler, "_access_engine", False):
            root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(resolved)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    handler._access_engine = True  # type: ignore[attr-defined]
    root_logger.addHandler(handler)

    for name, name_level in QUIET_LOGGERS.items():
        logging.getLogger(name).setLevel(getattr(logging, name_level))


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
