#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Command-line runner.

Usage:
    schemaflow [--config FILE] [--database-url URL] [--migrations-dir DIR] migrate
    schemaflow rollback --steps 2
    schemaflow status --json
    schemaflow forget 7

Exits 0 on success, otherwise with the failing error's exit code
(see schemaflow.errors).
"""
import argparse
import asyncio
import json
import logging
import sys
import time
from pathlib import Path

from .config import LOG_FORMAT, Config, configure_logger, load_config
from .errors import MigrationError
from .migrations import DirectorySource, MigrationEngine, MigrationLedger, MigrationRegistry
from .storage import MigrationLock, SQLAlchemyStore

logger = logging.getLogger(__name__)


def _non_negative_int(value: str) -> int:
    try:
        number = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid int value: '{value}'")
    if number < 0:
        raise argparse.ArgumentTypeError(f"must be >= 0, got {number}")
    return number


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='schemaflow',
        description='Apply, roll back and inspect database schema migrations'
    )
    parser.add_argument('--config', help='JSON or YAML config file')
    parser.add_argument('--database-url', help='Database URL or SQLite file path')
    parser.add_argument('--migrations-dir', help='Directory of migration files')
    parser.add_argument(
        '--log-level',
        type=str.lower,
        choices=['debug', 'info', 'warning', 'error'],
        help='Logging level (default: from config, else info)'
    )

    commands = parser.add_subparsers(dest='command', required=True)

    migrate = commands.add_parser('migrate', help='Apply pending migrations')
    migrate.add_argument('--limit', type=_non_negative_int, help='Apply at most N migrations')
    migrate.add_argument('--dry-run', action='store_true',
                         help='Run pending migrations and roll everything back')
    migrate.add_argument('--timeout', type=float,
                         help='Stop between migrations after SECONDS')

    rollback = commands.add_parser('rollback', help='Revert applied migrations')
    rollback.add_argument('--steps', type=_non_negative_int, default=1,
                          help='Number of migrations to revert (default: 1)')
    rollback.add_argument('--dry-run', action='store_true',
                          help='Run reverts and roll everything back')

    status = commands.add_parser('status', help='Show applied and pending migrations')
    status.add_argument('--json', action='store_true', help='Print status as JSON')

    forget = commands.add_parser(
        'forget', help='Remove a ledger record without reverting its schema change'
    )
    forget.add_argument('key', help='Order key of the migration to forget')

    return parser


def build_engine(config: Config):
    """Create the store and engine described by a config.

    Returns:
        Tuple of (store, engine); caller must close the store
    """
    store = SQLAlchemyStore(config.database_url)
    registry = MigrationRegistry(DirectorySource(Path(config.migrations_dir)))
    lock = MigrationLock(
        store,
        table_name=config.lock_table,
        lease_seconds=config.lock.lease_seconds,
        wait_timeout=config.lock.wait_timeout,
        poll_interval=config.lock.poll_interval,
    )
    engine = MigrationEngine(
        store,
        registry,
        ledger=MigrationLedger(store, config.ledger_table),
        lock=lock,
    )
    return store, engine


def _print_units(heading, keys, names):
    print(f"✓ {heading} {len(keys)} migration(s):")
    for key in keys:
        print(f"  - {key}: {names.get(key, '?')}")


async def _migrate(engine, args):
    names = {u.order_key: u.name for u in engine.registry.discover()}
    deadline = time.monotonic() + args.timeout if args.timeout is not None else None
    applied = await engine.migrate(args.limit, dry_run=args.dry_run, deadline=deadline)
    if not applied:
        print("✓ No pending migrations (already up-to-date)")
    elif args.dry_run:
        _print_units('Dry run (rolled back): would apply', applied, names)
    else:
        _print_units('Applied', applied, names)


async def _rollback(engine, args):
    names = {u.order_key: u.name for u in engine.registry.discover()}
    reverted = await engine.rollback(args.steps, dry_run=args.dry_run)
    if not reverted:
        print("✓ Nothing to roll back")
    elif args.dry_run:
        _print_units('Dry run (rolled back): would revert', reverted, names)
    else:
        _print_units('Reverted', reverted, names)


async def _status(engine, args):
    report = await engine.status()
    if args.json:
        print(json.dumps([entry.to_dict() for entry in report], indent=2))
        return

    if not report:
        print("No migrations found")
        return
    for entry in report:
        applied_at = entry.applied_at.isoformat(timespec='seconds') if entry.applied_at else '-'
        flag = '  (modified since applied)' if entry.modified else ''
        print(f"{entry.order_key!s:>8}  {entry.state:<8}  {applied_at:<25}  {entry.name}{flag}")


async def _forget(engine, args):
    await engine.forget(args.key)
    print(f"✓ Removed ledger record for migration {args.key}")


COMMANDS = {
    'migrate': _migrate,
    'rollback': _rollback,
    'status': _status,
    'forget': _forget,
}


async def run(args: argparse.Namespace) -> int:
    """Execute a parsed command line and return the exit code."""
    try:
        config = load_config(args.config, overrides={
            'database_url': args.database_url,
            'migrations_dir': args.migrations_dir,
            'log_level': args.log_level,
        })
    except MigrationError as e:
        print(f"✗ {e}", file=sys.stderr)
        return e.exit_code

    logging.basicConfig(level=config.logging_level, format=LOG_FORMAT)
    if config.log_file:
        configure_logger(logging.getLogger(), config.log_file, LOG_FORMAT, config.logging_level)

    store = None
    try:
        store, engine = build_engine(config)
        await store.connect()
        await COMMANDS[args.command](engine, args)
        return 0
    except MigrationError as e:
        print(f"✗ {e}", file=sys.stderr)
        if e.unit_label:
            print(f"  Migration: {e.unit_label}", file=sys.stderr)
        if e.cause is not None:
            print(f"  Cause: {e.cause}", file=sys.stderr)
        completed = getattr(e, 'completed', None)
        if completed:
            print(f"  Completed before failure: {', '.join(map(str, completed))}", file=sys.stderr)
        logger.debug('Command %s failed', args.command, exc_info=True)
        return e.exit_code
    finally:
        if store is not None:
            await store.close()


def main(argv=None) -> int:
    """Console entry point."""
    args = build_parser().parse_args(argv)
    return asyncio.run(run(args))


if __name__ == '__main__':
    sys.exit(main())
