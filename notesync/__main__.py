"""CLI entry point for notesync."""

import argparse
import asyncio
import json
import logging
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

from .app import NotesApp, run_app
from .config import load_config
from .errors import NotAuthenticated, StorageError
from .store import Note


class JSONFormatter(logging.Formatter):
    """One JSON object per log line."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname,
            "component": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


LOG_LEVELS = {
    "warning": logging.WARNING,
    "info": logging.INFO,
    "debug": logging.DEBUG,
}


def setup_logging(verbose: bool = False, log_level: str | None = None, json_output: bool = False) -> None:
    """Configure the root logger for CLI runs.

    An explicit ``log_level`` wins over ``verbose``; the default is WARNING so
    normal command output is not interleaved with sync chatter.
    """
    if log_level:
        level = LOG_LEVELS.get(log_level, logging.INFO)
    else:
        level = logging.DEBUG if verbose else logging.WARNING

    handler = logging.StreamHandler()
    handler.setFormatter(
        JSONFormatter()
        if json_output
        else logging.Formatter(
            fmt="%(asctime)s %(levelname)-7s %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
    )
    logging.basicConfig(level=level, handlers=[handler])

    # httpx logs every request at INFO
    if level > logging.DEBUG:
        logging.getLogger("httpx").setLevel(logging.WARNING)


def _format_note(note: Note) -> str:
    marker = " " if note.synced else "*"
    updated = note.updated_at.astimezone().strftime("%Y-%m-%d %H:%M")
    line = f"{marker} {note.id}  {updated}  {note.title}"
    if note.body:
        preview = note.body.replace("\n", " ")
        if len(preview) > 60:
            preview = preview[:57] + "..."
        line += f"\n      {preview}"
    return line


def _print_sync_error(app: NotesApp) -> None:
    if app.engine.last_error:
        print(f"Sync: {app.engine.last_error}", file=sys.stderr)


async def cmd_list(args: argparse.Namespace) -> int:
    """List notes, pulling from the remote when reachable."""
    async with NotesApp(load_config(args.config), user_id=args.user) as app:
        notes = await app.engine.refresh()

        if not notes:
            print("No notes yet")
        for note in notes:
            print(_format_note(note))
        if any(not n.synced for n in notes):
            print("\n* not yet synced")
    return 0


async def cmd_add(args: argparse.Namespace) -> int:
    """Create a note."""
    async with NotesApp(load_config(args.config), user_id=args.user) as app:
        note = await app.engine.create(args.title, args.body or "")
        print(_format_note(note))
        _print_sync_error(app)
    return 0


async def cmd_edit(args: argparse.Namespace) -> int:
    """Edit a note."""
    async with NotesApp(load_config(args.config), user_id=args.user) as app:
        note = await app.engine.update(args.id, args.title, args.body or "")
        if note is None:
            print(f"Note not found: {args.id}", file=sys.stderr)
            return 1
        print(_format_note(note))
        _print_sync_error(app)
    return 0


async def cmd_rm(args: argparse.Namespace) -> int:
    """Delete a note."""
    async with NotesApp(load_config(args.config), user_id=args.user) as app:
        note = await app.engine.remove(args.id)
        if note is None:
            print(f"Note not found: {args.id}", file=sys.stderr)
            return 1
        print(f"Deleted {note.id}" + ("" if note.synced else " (pending sync)"))
    return 0


async def cmd_sync(args: argparse.Namespace) -> int:
    """Run one reconciliation pass."""
    async with NotesApp(load_config(args.config), user_id=args.user) as app:
        result = await app.engine.reconcile()

    print(
        f"Sync: {result.status.value}, pulled={result.notes_pulled}, "
        f"pushed={result.notes_pushed}, deleted={result.deletions_pushed}, "
        f"failed={result.failures}"
    )
    if result.error:
        print(f"Error: {result.error}", file=sys.stderr)
    return 0 if result.status.value in ("success", "coalesced") else 1


async def cmd_status(args: argparse.Namespace) -> int:
    """Show connectivity and pending-sync status."""
    config = load_config(args.config)

    async with NotesApp(config, user_id=args.user) as app:
        online = await app.monitor.is_online()
        status_data = {
            "timestamp": datetime.now().isoformat(),
            "remote": {
                "base_url": config.remote.base_url or None,
                "table": config.remote.table,
                "online": online,
            },
            "store": {"db_path": str(app.store.db_path or ":memory:")},
            "sync": app.engine.get_sync_status(),
        }

    if args.json:
        print(json.dumps(status_data, indent=2))
        return 0

    sync = status_data["sync"]
    print(f"Remote: {status_data['remote']['base_url'] or 'not configured'}")
    print(f"  Connectivity: {'online' if online else 'offline'}")
    print(f"Store: {status_data['store']['db_path']}")
    print(f"User: {sync['owner_id'] or 'not signed in'}")
    if sync["owner_id"]:
        print(f"  Notes: {sync['active_notes']}")
        print(f"  Pending sync: {sync['pending_notes']}")
        print(f"  Tombstones: {sync['tombstones']}")
    return 0


async def cmd_refresh(args: argparse.Namespace) -> int:
    """Pull remote notes into the local store."""
    async with NotesApp(load_config(args.config), user_id=args.user) as app:
        notes = await app.engine.refresh()
    print(f"{len(notes)} notes")
    return 0


async def cmd_cleanup(args: argparse.Namespace) -> int:
    """Remove synced tombstones from the local store."""
    older_than = None
    if args.days is not None:
        older_than = datetime.now(timezone.utc) - timedelta(days=args.days)

    async with NotesApp(load_config(args.config), user_id=args.user) as app:
        removed = await app.engine.cleanup_tombstones(older_than)
    print(f"Removed {removed} tombstones")
    return 0


async def cmd_logout(args: argparse.Namespace) -> int:
    """Purge the user's local notes."""
    async with NotesApp(load_config(args.config), user_id=args.user) as app:
        user = app.session.require_owner()
        pending = app.store.get_stats(user)["unsynced_notes"]
        if pending and not args.force:
            print(
                f"{pending} notes are not synced yet; run 'sync' first or pass --force",
                file=sys.stderr,
            )
            return 1
        app.session.sign_out()
    print(f"Signed out {user}")
    return 0


async def cmd_run(args: argparse.Namespace) -> int:
    """Run background sync until interrupted."""
    config = load_config(args.config)

    print(f"Starting notesync for {args.user or config.session.user_id}")
    print(f"Remote: {config.remote.base_url or 'not configured'}")
    print(f"Store: {config.store.db_path}")

    try:
        await run_app(config, user_id=args.user)
    except KeyboardInterrupt:
        print("\nShutting down...")
    return 0


def main() -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        prog="notesync",
        description="Local-first notes with background sync",
    )
    parser.add_argument(
        "-c", "--config",
        type=Path,
        default=None,
        help="Path to config file",
    )
    parser.add_argument(
        "-u", "--user",
        type=str,
        default=None,
        help="User id (overrides session.user_id)",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        choices=list(LOG_LEVELS),
        default=None,
        help="Set log level explicitly (overrides -v/--verbose)",
    )
    parser.add_argument(
        "--json-logs",
        action="store_true",
        help="Output logs as JSON for machine parsing",
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    list_parser = subparsers.add_parser("list", help="List notes")
    list_parser.set_defaults(func=cmd_list)

    add_parser = subparsers.add_parser("add", help="Create a note")
    add_parser.add_argument("title")
    add_parser.add_argument("body", nargs="?", default="")
    add_parser.set_defaults(func=cmd_add)

    edit_parser = subparsers.add_parser("edit", help="Edit a note")
    edit_parser.add_argument("id")
    edit_parser.add_argument("title")
    edit_parser.add_argument("body", nargs="?", default="")
    edit_parser.set_defaults(func=cmd_edit)

    rm_parser = subparsers.add_parser("rm", help="Delete a note")
    rm_parser.add_argument("id")
    rm_parser.set_defaults(func=cmd_rm)

    sync_parser = subparsers.add_parser("sync", help="Pull, then push unsynced notes")
    sync_parser.set_defaults(func=cmd_sync)

    refresh_parser = subparsers.add_parser("refresh", help="Pull remote notes only")
    refresh_parser.set_defaults(func=cmd_refresh)

    status_parser = subparsers.add_parser("status", help="Show sync status")
    status_parser.add_argument(
        "--json",
        action="store_true",
        help="Output status as JSON",
    )
    status_parser.set_defaults(func=cmd_status)

    cleanup_parser = subparsers.add_parser("cleanup", help="Remove synced tombstones")
    cleanup_parser.add_argument(
        "--days",
        type=int,
        default=None,
        help="Only remove tombstones older than this many days",
    )
    cleanup_parser.set_defaults(func=cmd_cleanup)

    logout_parser = subparsers.add_parser("logout", help="Purge local notes for the user")
    logout_parser.add_argument(
        "--force",
        action="store_true",
        help="Purge even if some notes are not synced",
    )
    logout_parser.set_defaults(func=cmd_logout)

    run_parser = subparsers.add_parser("run", help="Run background sync")
    run_parser.set_defaults(func=cmd_run)

    args = parser.parse_args()

    setup_logging(args.verbose, args.log_level, args.json_logs)

    if not args.command:
        parser.print_help()
        return 1

    try:
        return asyncio.run(args.func(args))
    except NotAuthenticated as e:
        print(f"Error: {e} (pass --user or set session.user_id)", file=sys.stderr)
        return 1
    except StorageError as e:
        print(f"Storage error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
