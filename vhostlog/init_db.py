"""Create the traffic accounting tables (one-time setup)."""

import argparse
import logging
import sys
from typing import List, Optional

from sqlalchemy.exc import ArgumentError, SQLAlchemyError

from vhostlog.core.config import get_settings
from vhostlog.core.database import build_engine, check_connection, init_db
from vhostlog.core.exceptions import ConfigurationError, StoreUnavailableError, VhostlogError
from vhostlog.main import setup_logging

logger = logging.getLogger(__name__)


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(prog="vhostlog-init-db", description="Create the vhosts and traffic tables.")
    parser.add_argument("-d", "--database-url", metavar="URL",
                        help="SQLAlchemy database URL (default: VHOSTLOG_DATABASE_URL)")
    args = parser.parse_args(argv)

    try:
        overrides = {"DATABASE_URL": args.database_url} if args.database_url else {}
        settings = get_settings(**overrides)
        setup_logging(settings.LOG_LEVEL)
        if not settings.DATABASE_URL:
            raise ConfigurationError("No database URL given.")
        try:
            engine = build_engine(settings.DATABASE_URL)
        except ArgumentError as e:
            raise ConfigurationError(f"Invalid database URL: {e}") from e
        check_connection(engine)
        logger.info("Creating tables: vhosts, traffic")
        try:
            init_db(engine)
        except SQLAlchemyError as e:
            raise StoreUnavailableError(f"Failed to create tables: {e}") from e
    except VhostlogError as e:
        print(f"vhostlog-init-db: {e}", file=sys.stderr)
        return e.exit_code
    return 0


def run() -> None:
    sys.exit(main())


if __name__ == "__main__":
    run()
