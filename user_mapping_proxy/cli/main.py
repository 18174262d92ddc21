"""CLI: user-mapping-proxy run, migrate, list, config validate."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys

from ..config import load_config, validate_config
from ..storage.sqlite import SQLiteStore
from ..types import ProxyConfig, StoreError


class _SuppressCancelled(logging.Filter):
    """Drop CancelledError tracebacks uvicorn logs on shutdown."""

    def filter(self, record: logging.LogRecord) -> bool:
        if record.exc_info:
            exc_type = record.exc_info[0]
            if exc_type is asyncio.CancelledError:
                return False
        return True


def setup_logging(config: ProxyConfig) -> None:
    """Log to stderr, or to ``log.output`` when set."""
    logging.basicConfig(
        level=config.log.level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        filename=config.log.output or None,
    )
    logging.getLogger("uvicorn.error").addFilter(_SuppressCancelled())


def _load(args) -> ProxyConfig:
    config = load_config(config_path=args.config)
    if getattr(args, "target", None):
        config.target = args.target.rstrip("/")
    if getattr(args, "host", None):
        config.server.host = args.host
    if getattr(args, "port", None):
        config.server.port = args.port
    if getattr(args, "database", None):
        config.storage.sqlite_path = args.database
    return config


def cmd_run(args):
    """Migrate the store, then serve the proxy."""
    import uvicorn

    from ..proxy import create_app

    config = _load(args)
    errors = validate_config(config)
    if errors:
        for err in errors:
            print(f"Config error: {err}", file=sys.stderr)
        sys.exit(1)

    setup_logging(config)
    store = SQLiteStore(db_path=config.storage.sqlite_path)
    app = create_app(config, store)
    print(
        f"user-mapping-proxy on {config.server.host}:{config.server.port} -> {config.target}",
        flush=True,
    )
    try:
        uvicorn.run(
            app,
            host=config.server.host,
            port=config.server.port,
            log_config=None,
            timeout_graceful_shutdown=2,
        )
    finally:
        store.close()


def cmd_migrate(args):
    """Apply pending schema migrations."""
    config = _load(args)
    try:
        store = SQLiteStore(db_path=config.storage.sqlite_path, migrate=False)
        before = store.schema_version()
        after = store.migrate_to_latest()
        store.close()
    except StoreError as e:
        print(f"Migration failed: {e}", file=sys.stderr)
        sys.exit(1)

    if after == before:
        print(f"Schema is up to date (version {after}).")
    else:
        print(f"Migrated schema from version {before} to {after}.")


def cmd_list(args):
    """Print ownership records."""
    config = _load(args)
    store = SQLiteStore(db_path=config.storage.sqlite_path)
    contents = store.list_all()
    store.close()

    if args.user:
        contents = [c for c in contents if c.user == args.user]
    if args.active:
        contents = [c for c in contents if c.active]

    if not contents:
        print("No content records.")
        return

    print(f"{'User':<16} {'Hash':<48} {'Size':>12} {'Created':>20} {'Removed':>20}  Name")
    print("-" * 130)
    for c in contents:
        created = c.created.strftime("%Y-%m-%d %H:%M:%S") if c.created else "n/a"
        removed = c.removed.strftime("%Y-%m-%d %H:%M:%S") if c.removed else "-"
        print(
            f"{c.user:<16} {c.hash:<48} {c.size:>12,} {created:>20} {removed:>20}  {c.name}"
        )


def cmd_config_validate(args):
    """Validate the loaded config."""
    config = _load(args)
    errors = validate_config(config)
    if errors:
        print("Config errors:")
        for err in errors:
            print(f"  - {err}")
        sys.exit(1)
    print("Config is valid.")


def main():
    parser = argparse.ArgumentParser(
        prog="user-mapping-proxy",
        description="Reverse proxy mapping uploaded content to the users who own it",
    )
    parser.add_argument("--config", "-c", help="Path to config file")

    subparsers = parser.add_subparsers(dest="command")

    # run
    run_parser = subparsers.add_parser("run", help="Run the proxy")
    run_parser.add_argument(
        "--target", "-t", default=None,
        help="Target URL of the backend HTTP API (e.g. http://127.0.0.1:5001)",
    )
    run_parser.add_argument("--host", default=None, help="Address to listen on")
    run_parser.add_argument("--port", "-p", type=int, default=None, help="Port to listen on")
    run_parser.add_argument("--database", "-d", default=None, help="SQLite database path")

    # migrate
    migrate_parser = subparsers.add_parser("migrate", help="Migrate the database to the latest schema")
    migrate_parser.add_argument("--database", "-d", default=None, help="SQLite database path")

    # list
    list_parser = subparsers.add_parser("list", help="List content ownership records")
    list_parser.add_argument("--user", "-u", default=None, help="Only records of this user")
    list_parser.add_argument("--active", action="store_true", help="Only records still pinned")
    list_parser.add_argument("--database", "-d", default=None, help="SQLite database path")

    # config
    config_parser = subparsers.add_parser("config", help="Config management")
    config_sub = config_parser.add_subparsers(dest="config_action")
    config_sub.add_parser("validate", help="Validate config file")

    args = parser.parse_args()

    commands = {
        "run": cmd_run,
        "migrate": cmd_migrate,
        "list": cmd_list,
    }

    if args.command == "config":
        if args.config_action == "validate":
            cmd_config_validate(args)
        else:
            config_parser.print_help()
    elif args.command in commands:
        commands[args.command](args)
    else:
        parser.print_help()


if __name__ == "__main__":
    main()
