#!/usr/bin/env python
# manage.py
import argparse
import asyncio
import getpass
import logging
import sys

import orjson

from sheetsync.core.config import settings
from sheetsync.core.exceptions import ValidationError
from sheetsync.core.locking import close_redis_pool, run_locked
from sheetsync.core.store import create_store
from sheetsync.models.schema import TableType
from sheetsync.services.sync_service import SyncService
from sheetsync.utils.timeutils import EPOCH_TIME_LOWEST_MILLISECONDS, to_epoch_millis

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def print_json(data):
    print(orjson.dumps(data, option=orjson.OPT_INDENT_2 | orjson.OPT_NON_STR_KEYS).decode("utf-8"))


async def _run_locked(store, func, *args):
    try:
        return await run_locked(store, func, *args)
    finally:
        await close_redis_pool()


def run_with_store(func, *args):
    """
    Open the configured store and run one maintenance operation under the
    same write lock the API uses, so a running server cannot overwrite it.
    """
    store = create_store(settings.STORE_BACKEND)
    service = SyncService(store)
    try:
        return asyncio.run(_run_locked(store, func, service, *args))
    finally:
        store.close()


def setup(service: SyncService):
    message = service.setup.setup_sheets()
    logger.info(message)


def init_log(service: SyncService):
    count = service.change_log.initialize_from_data_sheets()
    logger.info(f"Change log rebuilt with {count} INSERT entries")


def condense(service: SyncService, since):
    since_ms = to_epoch_millis(since) if since else EPOCH_TIME_LOWEST_MILLISECONDS
    if since_ms is None:
        raise ValidationError(f"Invalid --since value: {since!r}")
    count = service.condenser.write_condensed(since_ms)
    logger.info(f"Condensed change log written with {count} entries")


def check(service: SyncService, simulate: bool):
    report = service.consistency.check_and_clean_all_tables(simulate=simulate)
    print_json(report)
    if simulate and report["total_would_delete"]:
        print(f"\n{report['total_would_delete']} rows would be deleted. Run 'python manage.py cleanup' to delete them.")


def stats(service: SyncService):
    print_json(service.consistency.record_count_statistics())


def refresh_lookups(service: SyncService, table_name):
    if table_name:
        count = service.setup.refresh_lookup_columns(table_name)
    else:
        count = service.setup.refresh_all_lookup_columns()
    logger.info(f"Refreshed {count} lookup cells")


def clear_sheet(service: SyncService, table_name: str):
    count = service.setup.clear_sheet(table_name)
    logger.info(f"Cleared {count} rows from '{table_name}'")


def clear_type(service: SyncService, table_type: str):
    cleared = service.setup.clear_sheets_of_type(TableType(table_type))
    print_json(cleared)


def clear_logs(service: SyncService):
    cleared = service.setup.clear_sheets_of_type(TableType.LOG)
    print_json(cleared)


def hash_code():
    """Print a hash for the APP_CODE_HASH setting"""
    from sheetsync.core.security import get_app_code_hash

    code = getpass.getpass("APP_CODE: ")
    if not code:
        logger.error("Empty APP_CODE")
        return False
    print(get_app_code_hash(code))
    return True


def serve():
    import uvicorn

    uvicorn.run(
        "sheetsync.main:app",
        host=settings.HOST,
        port=settings.PORT,
        workers=settings.WORKERS,
        log_level=settings.LOG_LEVEL,
        reload=settings.RELOAD
    )


def main():
    """Main entry point for the store manager"""
    parser = argparse.ArgumentParser(description="Manage the sync record store")
    parser.add_argument("--backend", choices=["workbook", "sql", "memory"], help="Override STORE_BACKEND")
    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    subparsers.add_parser("setup", help="Create or repair the config, log and data sheets")
    subparsers.add_parser("init-log", help="Rebuild the change log with one INSERT per existing record")

    condense_parser = subparsers.add_parser("condense", help="Rewrite the condensed change log")
    condense_parser.add_argument("--since", help="Only include changes after this time (epoch ms or ISO)")

    subparsers.add_parser("check", help="Report key and foreign key problems without changing anything")
    subparsers.add_parser("cleanup", help="Delete rows with key or foreign key problems")
    subparsers.add_parser("stats", help="Show record counts per table")

    lookups_parser = subparsers.add_parser("refresh-lookups", help="Recompute lookup columns")
    lookups_parser.add_argument("table", nargs="?", help="Only refresh this table")

    clear_sheet_parser = subparsers.add_parser("clear-sheet", help="Delete all rows of one table")
    clear_sheet_parser.add_argument("table")

    clear_type_parser = subparsers.add_parser("clear-type", help="Delete all rows of every table of a type")
    clear_type_parser.add_argument("type", choices=[table_type.value for table_type in TableType])

    subparsers.add_parser("clear-logs", help="Empty change_log and condensed_change_log")
    subparsers.add_parser("hash-code", help="Hash an APP_CODE for the APP_CODE_HASH setting")
    subparsers.add_parser("serve", help="Start the API server")

    args = parser.parse_args()

    if args.backend:
        settings.STORE_BACKEND = args.backend

    try:
        if args.command == "setup":
            run_with_store(setup)
        elif args.command == "init-log":
            run_with_store(init_log)
        elif args.command == "condense":
            run_with_store(condense, args.since)
        elif args.command == "check":
            run_with_store(check, True)
        elif args.command == "cleanup":
            run_with_store(check, False)
        elif args.command == "stats":
            run_with_store(stats)
        elif args.command == "refresh-lookups":
            run_with_store(refresh_lookups, args.table)
        elif args.command == "clear-sheet":
            run_with_store(clear_sheet, args.table)
        elif args.command == "clear-type":
            run_with_store(clear_type, args.type)
        elif args.command == "clear-logs":
            run_with_store(clear_logs)
        elif args.command == "hash-code":
            if not hash_code():
                sys.exit(1)
        elif args.command == "serve":
            serve()
        else:
            parser.print_help()
            sys.exit(1)
    except Exception as e:
        logger.error(f"Command '{args.command}' failed: {str(e)}")
        sys.exit(1)


if __name__ == "__main__":
    main()
