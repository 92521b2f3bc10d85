from __future__ import annotations

import os

from alembic import command
from alembic.config import Config

from access_engine.infra.db import DATABASE_URL
from access_engine.infra.logging_config import get_logger, setup_logging

ALEMBIC_CONFIG = os.getenv("ALEMBIC_CONFIG", "alembic.ini")

log = get_logger(__name__)


def build_alembic_config(path: str | None = None) -> Config:
    config = Config(path or ALEMBIC_CONFIG)
    config.set_main_option("sqlalchemy.url", os.getenv("DATABASE_URL", DATABASE_URL))
    return config


def run_upgrade_head() -> None:
    config = build_alembic_config()
    log.info("upgrading schema to head using %s", config.config_file_name)
    command.upgrade(config, "head")


if __name__ == "__main__":
    setup_logging()
    run_upgrade_head()
