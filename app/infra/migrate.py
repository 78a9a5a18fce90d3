from __future__ import annotations

import logging
from pathlib import Path

from alembic import command
from alembic.config import Config

logger = logging.getLogger(__name__)

ALEMBIC_INI = Path(__file__).resolve().parents[2] / "alembic.ini"


def alembic_config() -> Config:
    config = Config(str(ALEMBIC_INI))
    config.set_main_option("script_location", str(ALEMBIC_INI.parent / "infra" / "migrations"))
    return config


def run_upgrade_head() -> None:
    logger.info("upgrading schema to head")
    command.upgrade(alembic_config(), "head")


if __name__ == "__main__":
    run_upgrade_head()
