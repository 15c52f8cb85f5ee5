"""Command line entry point for the HACCP backup engine."""

from __future__ import annotations

import argparse
import json
import logging
import sys
import time
from pathlib import Path

import settings
from haccp_backup import documents
from haccp_backup.errors import BackupError, UnknownDocumentType
from haccp_backup.instance_lock import SchedulerAlreadyRunning, SchedulerLock
from haccp_backup.logging_config import configure_logging
from haccp_backup.orchestrator import BackupOrchestrator
from haccp_backup.scheduler import BackupScheduler
from kv_store import SqliteKeyValueStore

logger = logging.getLogger(__name__)


def _open_store(args: argparse.Namespace) -> SqliteKeyValueStore:
    return SqliteKeyValueStore(args.db)


def _print_json(payload) -> None:
    print(json.dumps(payload, ensure_ascii=False, indent=2))


def _print_error(exc: BackupError) -> None:
    print(f"Error: {exc}", file=sys.stderr)
    if exc.hint:
        print(f"Hint : {exc.hint}", file=sys.stderr)


def command_config(args: argparse.Namespace) -> int:
    store = _open_store(args)
    if args.service_account:
        try:
            raw = Path(args.service_account).read_text(encoding="utf-8")
        except OSError as exc:
            print(f"Error: {exc}", file=sys.stderr)
            return 1
        try:
            settings.save_backup_config(store, args.spreadsheet_id or "", raw)
        except BackupError as exc:
            _print_error(exc)
            return 1
        print("Backup configuration saved.")
        return 0

    config = settings.load_backup_config(store)
    if config is None:
        print("No backup configuration saved.")
        return 1
    if args.spreadsheet_id:
        settings.update_spreadsheet_id(store, args.spreadsheet_id)
        print("Spreadsheet id updated.")
        return 0

    try:
        email = json.loads(config.service_account_json).get("client_email", "")
    except (ValueError, AttributeError):
        email = "(unreadable)"
    print(f"Spreadsheet id : {settings.resolve_default_spreadsheet_id(config) or '(not set)'}")
    print(f"Service account: {email or '(not set)'}")
    print(f"Updated at     : {config.updated_at or '-'}")
    return 0


def command_test_connection(args: argparse.Namespace) -> int:
    result = BackupOrchestrator(_open_store(args)).test_connection()
    _print_json(result.to_dict())
    return 0 if result.success else 1


def command_backup(args: argparse.Namespace) -> int:
    orchestrator = BackupOrchestrator(_open_store(args))
    if args.document:
        result = orchestrator.run_document_backup(args.document, args.spreadsheet_id, args.sheet_name)
    else:
        result = orchestrator.run_manual_backup()
    _print_json(result.to_dict())
    return 0 if result.success else 1


def command_schedule(args: argparse.Namespace) -> int:
    store = _open_store(args)
    if args.action == "set":
        try:
            schedule = settings.parse_schedule(args.time or "")
        except ValueError as exc:
            print(f"Error: {exc}", file=sys.stderr)
            return 1
        settings.save_schedule(store, schedule)
        print(f"Daily backup scheduled at {schedule.label()}")
        return 0

    print(f"Daily backup at {settings.load_schedule(store).label()}")
    return 0


def command_structures(args: argparse.Namespace) -> int:
    store = _open_store(args)
    if args.action == "list":
        structures = settings.load_structures(store)
        if not structures:
            print("No backup structures; scheduled backups cover CCP records only.")
        for structure in structures:
            state = "enabled" if structure.enabled else "disabled"
            sheet = structure.sheet_name or "(default)"
            print(f"{structure.document_type:<20} {state:<8} {structure.spreadsheet_id}  {sheet}")
        return 0

    if not args.document_type:
        print("Error: a document type is required", file=sys.stderr)
        return 1

    try:
        if args.action == "add":
            structure = settings.default_structure(args.document_type)
            structure.spreadsheet_id = args.spreadsheet_id or settings.DEFAULT_SPREADSHEET
            structure.sheet_name = args.sheet_name or ""
            settings.save_structure(store, structure)
            print(f"Backup structure saved for {structure.document_type}")
            return 0

        if args.action == "disable":
            structure = settings.load_structure(store, args.document_type)
            if structure is None:
                print(f"No backup structure for {args.document_type}", file=sys.stderr)
                return 1
            structure.enabled = False
            settings.save_structure(store, structure)
            print(f"Backup structure disabled for {args.document_type}")
            return 0
    except UnknownDocumentType as exc:
        _print_error(exc)
        return 1

    if not settings.delete_structure(store, args.document_type):
        print(f"No backup structure for {args.document_type}", file=sys.stderr)
        return 1
    print(f"Backup structure removed for {args.document_type}")
    return 0


def command_logs(args: argparse.Namespace) -> int:
    orchestrator = BackupOrchestrator(_open_store(args))
    entries = orchestrator.log_book.list_entries(limit=args.limit)
    if not entries:
        print("No backup runs recorded.")
    for entry in entries:
        finished = entry.completed_at or entry.failed_at or "-"
        print(f"{entry.id}  {entry.status:<8} {entry.trigger:<9} {entry.record_count:>5}  {entry.started_at} -> {finished}  {entry.document_type}")
    return 0


def command_serve(args: argparse.Namespace) -> int:
    configure_logging(console=True)
    store = _open_store(args)
    try:
        lock = SchedulerLock().acquire()
    except SchedulerAlreadyRunning as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    scheduler = BackupScheduler(BackupOrchestrator(store), store)
    try:
        scheduler.start()
        print(f"Backup scheduler running; daily backup at {scheduler.get_schedule().label()}. Ctrl+C to stop.")
        while scheduler.running:
            time.sleep(1.0)
    except KeyboardInterrupt:
        print("Stopping backup scheduler...")
    finally:
        scheduler.stop()
        lock.release()
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="HACCP Google Sheets backup tool")
    parser.add_argument("--db", help="Path of the key-value store database")
    subparsers = parser.add_subparsers(dest="command", required=True)

    config_parser = subparsers.add_parser("config", help="Show or save the backup configuration")
    config_parser.add_argument("--spreadsheet-id", help="Default spreadsheet id")
    config_parser.add_argument("--service-account", help="Path to the service account JSON key file")
    config_parser.set_defaults(func=command_config)

    test_parser = subparsers.add_parser("test-connection", help="Authenticate and list the default spreadsheet's sheets")
    test_parser.set_defaults(func=command_test_connection)

    backup_parser = subparsers.add_parser("backup", help="Run a backup now")
    backup_parser.add_argument("--document", choices=sorted(documents.DOCUMENT_TYPES), help="Back up a single document type")
    backup_parser.add_argument("--spreadsheet-id", help="Target spreadsheet for --document")
    backup_parser.add_argument("--sheet-name", help="Target sheet name for --document")
    backup_parser.set_defaults(func=command_backup)

    schedule_parser = subparsers.add_parser("schedule", help="Show or change the daily backup time")
    schedule_parser.add_argument("action", choices=("show", "set"))
    schedule_parser.add_argument("time", nargs="?", help="HH:MM for 'set'")
    schedule_parser.set_defaults(func=command_schedule)

    structures_parser = subparsers.add_parser("structures", help="Manage per-document backup structures")
    structures_parser.add_argument("action", choices=("list", "add", "disable", "remove"))
    structures_parser.add_argument("document_type", nargs="?")
    structures_parser.add_argument("--spreadsheet-id", help="Spreadsheet id for 'add' (default spreadsheet otherwise)")
    structures_parser.add_argument("--sheet-name", help="Sheet name for 'add'")
    structures_parser.set_defaults(func=command_structures)

    logs_parser = subparsers.add_parser("logs", help="List recent backup runs")
    logs_parser.add_argument("--limit", type=int, default=20)
    logs_parser.set_defaults(func=command_logs)

    serve_parser = subparsers.add_parser("serve", help="Run the daily backup scheduler")
    serve_parser.set_defaults(func=command_serve)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.command != "serve":
        configure_logging()
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
