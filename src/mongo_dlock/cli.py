"""Administrative command-line interface for mongo-dlock."""

from __future__ import annotations

import argparse
import json
import logging
import signal
import sys
import threading
from collections.abc import Sequence

from bson import ObjectId
from bson.errors import InvalidId

from mongo_dlock.core.config import LockSvcOptions, LogConfig, ReaperConfig
from mongo_dlock.core.exceptions import ConfigurationError, StoreTransportError
from mongo_dlock.core.logging import setup_logging
from mongo_dlock.core.version import __version__
from mongo_dlock.locks.reaper import Reaper
from mongo_dlock.locks.service import LockService

EXIT_OK = 0
EXIT_NOT_HELD = 1
EXIT_CONFIG_ERROR = 2
EXIT_STORE_ERROR = 3

logger = logging.getLogger(__name__)


def parse_arguments(argv: Sequence[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments"""
    parser = argparse.ArgumentParser(
        prog="mongo-dlock",
        description="Administer MongoDB-backed distributed locks",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Create the lock collection indexes
  mongo-dlock --uri mongodb://localhost:27017 --db app setup

  # Show every lock, or just a few
  mongo-dlock --db app status
  mongo-dlock --db app status nightly-import billing-sync

  # Force-release a lock held by a known token
  mongo-dlock --db app release nightly-import 65f0c0ffee0ddba11deadbee

  # Run one reclamation pass, or keep reaping in the foreground
  mongo-dlock --db app reap --once
  mongo-dlock --db app reap --interval 5

Options not given on the command line fall back to MONGO_DLOCK_* environment variables.
""",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--uri", help="MongoDB connection string (env: MONGO_DLOCK_URI)")
    parser.add_argument("--db", dest="db_name", help="Database name (env: MONGO_DLOCK_DB)")
    parser.add_argument("--collection", dest="collection_name", help="Lock collection (env: MONGO_DLOCK_COLLECTION)")
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default=None,
        help="Logging level (default: LOG_LEVEL env or INFO)",
    )
    parser.add_argument("--log-format", choices=["text", "json"], default="text", help="Log output format")
    parser.add_argument("--log-file", default=None, help="Also write logs to this rotating file")

    subparsers = parser.add_subparsers(dest="command", required=True)
    subparsers.add_parser("setup", help="Create lock collection indexes (idempotent)")

    status = subparsers.add_parser("status", help="Show lock documents as JSON")
    status.add_argument("names", nargs="*", help="Lock names (default: all locks)")

    release = subparsers.add_parser("release", help="Release a lock held by TOKEN")
    release.add_argument("name", help="Lock name")
    release.add_argument("token", help="Lock token (ObjectId hex)")

    reap = subparsers.add_parser("reap", help="Reclaim locks whose heartbeat expired")
    reap.add_argument("--once", action="store_true", help="Run a single scan and exit")
    reap.add_argument("--interval", type=float, default=None, help="Seconds between scans")
    reap.add_argument("--batch-size", type=int, default=None, help="Locked documents examined per scan")

    return parser.parse_args(argv)


def _build_service(args: argparse.Namespace) -> LockService:
    options = LockSvcOptions.from_env(
        uri=args.uri,
        db_name=args.db_name,
        collection_name=args.collection_name,
    )
    return LockService(options)


def _cmd_setup(service: LockService, args: argparse.Namespace) -> int:
    created = service.setup()
    print(json.dumps({"created_indexes": created}))
    return EXIT_OK


def _cmd_status(service: LockService, args: argparse.Namespace) -> int:
    if args.names:
        docs = [service.get_info(name) for name in args.names]
        payload = [
            doc.to_dict() if doc is not None else {"name": name, "state": None}
            for name, doc in zip(args.names, docs)
        ]
    else:
        payload = [doc.to_dict() for doc in service.list_locks()]
    print(json.dumps(payload, indent=2))
    return EXIT_OK


def _cmd_release(service: LockService, args: argparse.Namespace) -> int:
    try:
        token = ObjectId(args.token)
    except InvalidId as e:
        raise ConfigurationError("Invalid lock token", field="token", details=str(e)) from e
    result = service.release(args.name, token)
    print(json.dumps({"name": args.name, "status": result.status.value}))
    return EXIT_OK if result.released else EXIT_NOT_HELD


def _cmd_reap(service: LockService, args: argparse.Namespace) -> int:
    base = ReaperConfig.from_env()
    config = ReaperConfig(
        interval_seconds=args.interval if args.interval is not None else base.interval_seconds,
        batch_size=args.batch_size if args.batch_size is not None else base.batch_size,
    )
    if args.once:
        reclaimed = Reaper(service.coordinator, config).run_once()
        print(json.dumps({"reclaimed": reclaimed}))
        return EXIT_OK

    stop = threading.Event()
    signal.signal(signal.SIGINT, lambda *_: stop.set())
    signal.signal(signal.SIGTERM, lambda *_: stop.set())
    service.start_reaper(config)
    try:
        stop.wait()
    finally:
        service.stop_reaper()
    return EXIT_OK


_COMMANDS = {
    "setup": _cmd_setup,
    "status": _cmd_status,
    "release": _cmd_release,
    "reap": _cmd_reap,
}


def main(argv: Sequence[str] | None = None) -> int:
    """Main entry point for the script"""
    args = parse_arguments(argv)
    log_config = LogConfig.from_args(args)
    setup_logging(
        log_level=log_config.level,
        log_format=log_config.format,
        log_file=log_config.file,
        max_bytes=log_config.file_max_bytes,
        backup_count=log_config.file_backup_count,
    )

    try:
        with _build_service(args) as service:
            return _COMMANDS[args.command](service, args)
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return EXIT_CONFIG_ERROR
    except StoreTransportError as e:
        logger.error("Lock store unavailable: %s", e)
        return EXIT_STORE_ERROR


if __name__ == "__main__":
    sys.exit(main())
