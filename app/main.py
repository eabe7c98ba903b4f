"""
Server entry point for Household Ledger

Runs the JSON API with uvicorn:

    python -m app.main --port 8000
    python -m app.main --db var/ledger.sqlite3 --allow-origin '*'

DESIGN PRINCIPLES:
1. Configuration is validated before the server binds a port
2. A broken setting stops startup with a readable message
"""

import argparse
import logging
import sys
from typing import Optional

import structlog
import uvicorn

from household_ledger.api import create_app
from household_ledger.config import get_settings, validate_all_settings


logger = structlog.get_logger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Run the household ledger API.")
    parser.add_argument("--host", default="127.0.0.1")
    parser.add_argument("--port", type=int, default=8000)
    parser.add_argument("--db", dest="db_path", help="SQLite database file (overrides LEDGER_DB_PATH)")
    parser.add_argument(
        "--allow-origin",
        action="append",
        dest="allow_origins",
        help="Allowed CORS origin (can be provided multiple times, use '*' for any).",
    )
    return parser


def main(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    checks = validate_all_settings()
    failed = {name: ok for name, ok in checks.items() if ok is False}
    if failed:
        for name in failed:
            print(f"Invalid {name} settings: {checks.get(f'{name}_error')}", file=sys.stderr)
        return 2

    settings = get_settings().app
    logging.basicConfig(level=settings.log_level, format="%(message)s")

    app = create_app(args.db_path, allow_origins=args.allow_origins)
    logger.info("server_starting", host=args.host, port=args.port, environment=settings.app_environment)

    uvicorn.run(
        app,
        host=args.host,
        port=args.port,
        log_level=settings.log_level.lower(),
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
