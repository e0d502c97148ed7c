from __future__ import annotations

import structlog
from alembic import command
from alembic.config import Config

from churchhub.infra.logging import configure_logging

logger = structlog.get_logger(__name__)


def run_upgrade_head() -> None:
    config = Config("alembic.ini")
    logger.info("migrations_upgrade_started", target="head")
    command.upgrade(config, "head")
    logger.info("migrations_upgrade_finished", target="head")


if __name__ == "__main__":
    configure_logging()
    run_upgrade_head()
