from __future__ import annotations

import argparse
import logging
from pathlib import Path

from alembic import command
from alembic.config import Config

from iam_service.infra.db import DATABASE_URL

MIGRATIONS_DIR = Path(__file__).resolve().parents[1] / "migrations"

logger = logging.getLogger(__name__)


def build_config(database_url: str | None = None) -> Config:
    """Alembic config built in code, so an installed package needs no alembic.ini."""
    config = Config()
    config.set_main_option("script_location", str(MIGRATIONS_DIR))
    config.attributes["database_url"] = database_url or DATABASE_URL
    config.attributes["configure_logger"] = False
    return config


def run_upgrade(revision: str = "head", database_url: str | None = None) -> None:
    logger.info("upgrading schema to %s", revision)
    command.upgrade(build_config(database_url), revision)


def run_downgrade(revision: str, database_url: str | None = None) -> None:
    logger.info("downgrading schema to %s", revision)
    command.downgrade(build_config(database_url), revision)


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="Apply iam-service schema migrations.")
    parser.add_argument("direction", choices=("upgrade", "downgrade"))
    parser.add_argument("revision", nargs="?", default=None)
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO)
    if args.direction == "upgrade":
        run_upgrade(args.revision or "head")
    else:
        run_downgrade(args.revision or "-1")


if __name__ == "__main__":
    main()
