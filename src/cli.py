#!/usr/bin/env python3
"""
Royalty Ledger Command Line Interface.

Operational commands against a configured ledger store:
    - check: Verify configuration, storage and locking
    - info: Display configuration and storage information
    - tracks: List stored tracks with their pending balances
    - show: Print one track's stored record as JSON

Usage:
    royalty-ledger check
    royalty-ledger info
    royalty-ledger tracks
    royalty-ledger show TRACK_ID
    royalty-ledger --version
"""

import argparse
import json
import os
import sys

from dotenv import load_dotenv

from config import LedgerConfig
from monitoring.logging import configure_logging
from royalty_exceptions import ConfigurationError
from scaling import get_lock_manager
from storage import StorageError, get_storage_backend
from track_accounts import TrackAccount

__version__ = "0.1.0"


def _load_config() -> LedgerConfig:
    load_dotenv()
    config = LedgerConfig.from_env()
    configure_logging(config.log_level, json_output=config.log_format == "json")
    return config


def _open_storage(config: LedgerConfig):
    return get_storage_backend(config.storage_backend, config.storage_path)


def cmd_check(args) -> int:
    """Check configuration and collaborators."""
    print("Royalty Ledger Check")
    print("=" * 40)

    checks = []
    config = None

    try:
        config = _load_config()
        config.validate()
        checks.append(("Configuration", "OK"))
    except (ConfigurationError, ValueError) as e:
        checks.append(("Configuration", f"FAIL: {e}"))

    if config is not None:
        try:
            storage = _open_storage(config)
            status = "OK" if storage.is_available() else "WARN (not available)"
            checks.append((f"Storage ({type(storage).__name__})", status))
        except StorageError as e:
            checks.append(("Storage", f"FAIL: {e}"))

        try:
            lock_manager = get_lock_manager(config.redis_url)
            checks.append((f"Locking ({type(lock_manager).__name__})", "OK"))
        except ImportError as e:
            checks.append(("Locking", f"FAIL: {e}"))

    print()
    all_ok = True
    for name, status in checks:
        icon = "✓" if status == "OK" else ("○" if "WARN" in status else "✗")
        print(f"  {icon} {name}: {status}")
        if "FAIL" in status:
            all_ok = False

    print()
    if all_ok:
        print("All checks passed!")
        return 0
    print("Some checks failed. See above for details.")
    return 1


def cmd_info(args) -> int:
    """Display configuration and storage information."""
    import platform

    config = _load_config()

    print("Royalty Ledger Information")
    print("=" * 40)
    print(f"Version: {__version__}")
    print(f"Python: {platform.python_version()}")
    print(f"Platform: {platform.platform()}")

    print()
    print("Configuration:")
    print(f"  total_share_units: {config.total_share_units}")
    print(f"  global_minimum: {config.global_minimum}")
    print(f"  lock_timeout: {config.lock_timeout}s")
    print(f"  storage_backend: {config.storage_backend}")
    print(f"  REDIS_URL: {'configured' if config.redis_url else 'not set'}")
    print(f"  LOG_LEVEL: {os.getenv('LOG_LEVEL', 'INFO (default)')}")
    print(f"  LOG_FORMAT: {os.getenv('LOG_FORMAT', 'console (default)')}")

    print()
    print("Storage:")
    try:
        storage = _open_storage(config)
        for key, value in storage.get_info().items():
            print(f"  {key}: {value}")
    except StorageError as e:
        print(f"  Error: {e}")

    return 0


def cmd_tracks(args) -> int:
    """List stored tracks."""
    config = _load_config()
    storage = _open_storage(config)

    track_ids = storage.list_track_ids()
    if not track_ids:
        print("No tracks stored.")
        return 0

    for track_id in track_ids:
        record = storage.load_account(track_id)
        if record is None:
            continue
        account = TrackAccount.from_dict(record)
        print(
            f"{track_id}: {len(account.payees)} payees, "
            f"pending {account.accrual.pending_amount}, "
            f"distributed {account.accrual.total_distributed}"
        )
    return 0


def cmd_show(args) -> int:
    """Print one track record."""
    config = _load_config()
    storage = _open_storage(config)

    record = storage.load_account(args.track_id)
    if record is None:
        print(f"Track {args.track_id} not found", file=sys.stderr)
        return 1

    print(json.dumps(record, indent=2, sort_keys=True))
    return 0


def main(argv: list[str] | None = None) -> int:
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        prog="royalty-ledger",
        description="Royalty distribution and metered-accrual ledger",
    )
    parser.add_argument("--version", "-v", action="version", version=f"%(prog)s {__version__}")

    subparsers = parser.add_subparsers(dest="command", help="Commands")
    subparsers.add_parser("check", help="Check configuration, storage and locking")
    subparsers.add_parser("info", help="Display configuration and storage information")
    subparsers.add_parser("tracks", help="List stored tracks")
    show_parser = subparsers.add_parser("show", help="Print a track record as JSON")
    show_parser.add_argument("track_id", help="Track identifier")

    args = parser.parse_args(argv)

    commands = {
        "check": cmd_check,
        "info": cmd_info,
        "tracks": cmd_tracks,
        "show": cmd_show,
    }
    command = commands.get(args.command)
    if command is None:
        parser.print_help()
        return 1
    return command(args)


if __name__ == "__main__":
    sys.exit(main())
