"""Main entry point for the tracker data engine"""

import asyncio
import argparse
import logging
import sys
from pathlib import Path

from config import settings
from core.enums import ImportMode
from core.exceptions import TrackerEngineError


logger = logging.getLogger(__name__)


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def serve(args) -> int:
    import uvicorn
    from web.api import create_app

    app = create_app()
    uvicorn.run(app, host=args.host, port=args.port, log_level=args.log_level.lower())
    return 0


async def init_db(database_url: str, drop: bool = False) -> None:
    from db import DatabaseManager, SchemaManager

    schema = SchemaManager(DatabaseManager(database_url))
    if drop:
        await schema.drop_tables()
        logger.info("Dropped existing tables")
    await schema.create_tables()


async def import_csv_file(args) -> int:
    from db import PostgresStore, create_store
    from trackers import RowService

    store = create_store()
    if isinstance(store, PostgresStore):
        await store.db.create_pool()

    try:
        text = args.file.read_text(encoding="utf-8-sig")
        result = await RowService(store).import_csv(
            args.user,
            args.tracker,
            text,
            mode=args.mode,
            delimiter=args.delimiter or None,
        )
    finally:
        if isinstance(store, PostgresStore):
            await store.db.close()

    print(f"✓ Imported {result.imported}, updated {result.updated}, failed {len(result.failed)}")
    for failure in result.failed:
        print(f"  row {failure.row}: {failure.error}")
    return 0 if not result.failed else 2


def main():
    parser = argparse.ArgumentParser(description="Tracker Data Engine")
    parser.add_argument("--log-level", default=settings.LOG_LEVEL, help="Logging level")
    subparsers = parser.add_subparsers(dest="command", required=True)

    serve_parser = subparsers.add_parser("serve", help="Run the HTTP API")
    serve_parser.add_argument("--host", default="127.0.0.1")
    serve_parser.add_argument("--port", type=int, default=8000)

    init_parser = subparsers.add_parser("init-db", help="Create PostgreSQL tables")
    init_parser.add_argument(
        "--db",
        type=str,
        default=settings.DATABASE_URL,
        help="PostgreSQL connection string",
    )
    init_parser.add_argument("--drop", action="store_true", help="Drop existing tables first")

    import_parser = subparsers.add_parser("import-csv", help="Import a CSV file into a tracker")
    import_parser.add_argument("file", type=Path, help="CSV file path")
    import_parser.add_argument("--tracker", required=True, help="Tracker ID")
    import_parser.add_argument("--user", required=True, help="Owner subject")
    import_parser.add_argument(
        "--mode",
        choices=[m.value for m in ImportMode],
        default=ImportMode.APPEND.value,
    )
    import_parser.add_argument("--delimiter", default=",", help="Field delimiter; empty to detect")

    args = parser.parse_args()
    configure_logging(args.log_level)

    try:
        if args.command == "serve":
            return serve(args)

        if args.command == "init-db":
            if not args.db:
                print("Error: no database URL; pass --db or set DATABASE_URL")
                return 1
            asyncio.run(init_db(args.db, drop=args.drop))
            print("✓ Database schema ready")
            return 0

        if not args.file.exists():
            print(f"Error: File not found: {args.file}")
            return 1
        return asyncio.run(import_csv_file(args))

    except TrackerEngineError as e:
        print(f"\n✗ {args.command} failed: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
