"""Command-line interface for the summits auth service."""

import argparse
import asyncio
import logging
import sys

from summits_auth.config import get_settings


def _init_db() -> None:
    from summits_auth.database.connection import Database

    async def run() -> None:
        database = Database.from_settings(get_settings())
        try:
            await database.create_tables()
        finally:
            await database.dispose()

    asyncio.run(run())


def main() -> int:
    """Main entry point for the CLI."""
    parser = argparse.ArgumentParser(
        description="Summits - OAuth sign-in and sessions for the climbing log"
    )
    parser.add_argument(
        "--version",
        action="version",
        version="%(prog)s 0.1.0",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # Serve command
    serve_parser = subparsers.add_parser("serve", help="Run the HTTP server")
    serve_parser.add_argument("--host", help="Bind address (default: from settings)")
    serve_parser.add_argument(
        "--port", type=int, help="Port to listen on (default: from settings)"
    )
    serve_parser.add_argument(
        "--reload", action="store_true", help="Reload on code changes"
    )

    # Init-db command
    subparsers.add_parser("init-db", help="Create database tables")

    args = parser.parse_args()

    if args.command is None:
        parser.print_help()
        return 0

    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.command == "init-db":
        _init_db()
        return 0

    import uvicorn

    uvicorn.run(
        "summits_auth.api:create_app",
        factory=True,
        host=args.host or settings.host,
        port=args.port or settings.port,
        reload=args.reload,
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
