"""CLI interface for managing quotes and schedules."""

import argparse
import asyncio
import sqlite3
import sys
from pathlib import Path

from . import db
from .bootstrap import import_quotes, read_quotes_file
from .config import load_config
from .errors import JobSchedulingFailure
from .jobs import JobScheduler, validate_cron
from .logging_setup import setup_logging
from .reconciler import Reconciler
from .talk import TalkClient
from .tracking import make_tracking_log


def _config(args):
    return load_config(Path(args.config) if args.config else None)


def cmd_init(args):
    """Initialize the database."""
    config = _config(args)
    config.db_path.parent.mkdir(parents=True, exist_ok=True)
    db.init_db(config.db_path)
    print(f"Database initialized at {config.db_path}")


# ============================================================================
# Quotes
# ============================================================================


def cmd_quote_add(args):
    config = _config(args)
    with db.get_db(config.db_path) as conn:
        try:
            quote_id = db.add_quote(conn, args.text, args.tag)
        except sqlite3.IntegrityError:
            print("Error: a quote with that text already exists", file=sys.stderr)
            sys.exit(1)
    print(f"Quote added: {quote_id}")


def cmd_quote_import(args):
    config = _config(args)
    path = Path(args.file).expanduser()
    if not path.exists():
        print(f"Error: file not found: {path}", file=sys.stderr)
        sys.exit(1)
    texts = read_quotes_file(path)
    with db.get_db(config.db_path) as conn:
        added, skipped = import_quotes(conn, texts, args.tag)
    print(f"Imported {added} quote(s), skipped {skipped} duplicate(s)")


def cmd_quote_list(args):
    config = _config(args)
    with db.get_db(config.db_path) as conn:
        if args.tag:
            quotes = db.quotes_with_tags(conn, args.tag)
        else:
            quotes = db.all_quotes(conn)

    if not quotes:
        print("No quotes found")
        return

    for q in quotes:
        tags = ", ".join(sorted(q.tags)) or "-"
        print(f"[{q.id}] {q.text}  ({tags})")


def cmd_quote_tag(args):
    config = _config(args)
    with db.get_db(config.db_path) as conn:
        found = db.tag_quote(conn, args.text, args.tags)
    if not found:
        print("Error: quote not found", file=sys.stderr)
        sys.exit(1)
    print(f"Tagged quote with: {', '.join(args.tags)}")


def cmd_quote_untag(args):
    config = _config(args)
    with db.get_db(config.db_path) as conn:
        found = db.untag_quote(conn, args.text, args.tags)
    if not found:
        print("Error: quote not found", file=sys.stderr)
        sys.exit(1)
    print(f"Removed tags: {', '.join(args.tags)}")


# ============================================================================
# Schedules
# ============================================================================


def _check_cron(cron):
    try:
        validate_cron(cron)
    except JobSchedulingFailure as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


def cmd_schedule_add(args):
    config = _config(args)
    _check_cron(args.cron)
    with db.get_db(config.db_path) as conn:
        try:
            db.add_schedule(conn, args.name, args.cron, args.tag)
        except sqlite3.IntegrityError:
            print(f"Error: schedule '{args.name}' already exists", file=sys.stderr)
            sys.exit(1)
    print(f"Schedule added: {args.name}")


def cmd_schedule_update(args):
    config = _config(args)
    if args.cron is None and args.tag is None:
        print("Error: nothing to update (use --cron and/or --tag)", file=sys.stderr)
        sys.exit(1)
    if args.cron is not None:
        _check_cron(args.cron)
    with db.get_db(config.db_path) as conn:
        found = db.update_schedule(conn, args.name, cron=args.cron, tags=args.tag)
    if not found:
        print(f"Error: schedule '{args.name}' not found", file=sys.stderr)
        sys.exit(1)
    print(f"Schedule updated: {args.name}")


def cmd_schedule_remove(args):
    config = _config(args)
    with db.get_db(config.db_path) as conn:
        removed = db.remove_schedule(conn, args.name)
    if not removed:
        print(f"Error: schedule '{args.name}' not found", file=sys.stderr)
        sys.exit(1)
    print(f"Schedule removed: {args.name}")


def cmd_schedule_list(args):
    config = _config(args)
    with db.get_db(config.db_path) as conn:
        schedules = db.all_schedules(conn)

    if not schedules:
        print("No schedules found")
        return

    for s in schedules:
        print(f"{s.name:<30} {s.cron:<24} {', '.join(sorted(s.tags))}")


# ============================================================================
# Tracking
# ============================================================================


def cmd_tracking_show(args):
    config = _config(args)
    record = make_tracking_log(config).load(args.name)
    if not record.ids:
        print(f"No quotes sent yet in the current cycle of '{args.name}'")
        return

    with db.get_db(config.db_path) as conn:
        texts = {q.id: q.text for q in db.all_quotes(conn)}
    print(f"{len(record.ids)} quote(s) sent in the current cycle of '{args.name}':")
    for quote_id in sorted(record.ids):
        print(f"  [{quote_id}] {texts.get(quote_id, '(not in database)')}")


def cmd_tracking_reset(args):
    config = _config(args)
    make_tracking_log(config).clear(args.name)
    print(f"Tracking reset for '{args.name}'")


# ============================================================================
# Engine
# ============================================================================


def cmd_sync(args):
    """Run one reconciliation pass against a scratch scheduler and show the result."""
    config = _config(args)
    scheduler = JobScheduler(timezone=config.engine.timezone)
    reconciler = Reconciler(
        scheduler,
        lambda: db.load_schedules(config.db_path),
        lambda data: None,
    )
    reconciler.sync()

    jobs = sorted(scheduler.list_jobs_in_group(reconciler.group), key=lambda j: j.name)
    if not jobs:
        print("No live schedule jobs")
        return
    for job in jobs:
        next_run = job.next_run_at.strftime("%Y-%m-%d %H:%M:%S") if job.next_run_at else "never"
        print(f"{job.name:<30} {job.cron:<24} next: {next_run}")


def cmd_talk_rooms(args):
    """List Talk conversations, to find the recipient's conversation token."""
    config = _config(args)
    if not config.nextcloud.url:
        print("Error: Nextcloud URL not configured", file=sys.stderr)
        sys.exit(1)
    rooms = asyncio.run(TalkClient(config).list_conversations())
    for room in rooms:
        print(f"{room.get('token', ''):<12} {room.get('displayName', '')}")


def cmd_run(args):
    """Run the quote daemon in the foreground."""
    from .daemon import run_daemon

    config = _config(args)
    run_daemon(config, dry_run=args.dry_run)


def main():
    parser = argparse.ArgumentParser(description="chatter-quote administration")
    parser.add_argument("-c", "--config", help="Path to config file")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable verbose logging")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("init", help="Initialize database")

    # quote
    quote_parser = subparsers.add_parser("quote", help="Manage quotes")
    quote_subparsers = quote_parser.add_subparsers(dest="quote_action", required=True)

    quote_add_parser = quote_subparsers.add_parser("add", help="Add a quote")
    quote_add_parser.add_argument("text", help="Quote text")
    quote_add_parser.add_argument("-t", "--tag", action="append", default=[], help="Tag (repeatable)")

    quote_import_parser = quote_subparsers.add_parser("import", help="Import quotes from a file, one per line")
    quote_import_parser.add_argument("file", help="Path to quotes file")
    quote_import_parser.add_argument("-t", "--tag", action="append", default=[], help="Tag (repeatable)")

    quote_list_parser = quote_subparsers.add_parser("list", help="List quotes")
    quote_list_parser.add_argument("-t", "--tag", action="append", default=[], help="Only quotes with this tag")

    quote_tag_parser = quote_subparsers.add_parser("tag", help="Add tags to a quote")
    quote_tag_parser.add_argument("text", help="Exact quote text")
    quote_tag_parser.add_argument("tags", nargs="+", help="Tags to add")

    quote_untag_parser = quote_subparsers.add_parser("untag", help="Remove tags from a quote")
    quote_untag_parser.add_argument("text", help="Exact quote text")
    quote_untag_parser.add_argument("tags", nargs="+", help="Tags to remove")

    # schedule
    schedule_parser = subparsers.add_parser("schedule", help="Manage sending schedules")
    schedule_subparsers = schedule_parser.add_subparsers(dest="schedule_action", required=True)

    schedule_add_parser = schedule_subparsers.add_parser("add", help="Add a schedule")
    schedule_add_parser.add_argument("name", help="Unique schedule name")
    schedule_add_parser.add_argument("cron", help='Cron expression, e.g. "0 0 8 * * ?"')
    schedule_add_parser.add_argument("-t", "--tag", action="append", default=[], help="Tag (repeatable)")

    schedule_update_parser = schedule_subparsers.add_parser("update", help="Change a schedule")
    schedule_update_parser.add_argument("name", help="Schedule name")
    schedule_update_parser.add_argument("--cron", help="New cron expression")
    schedule_update_parser.add_argument("-t", "--tag", action="append", help="Replacement tag (repeatable)")

    schedule_remove_parser = schedule_subparsers.add_parser("remove", help="Remove a schedule")
    schedule_remove_parser.add_argument("name", help="Schedule name")

    schedule_subparsers.add_parser("list", help="List schedules")

    # tracking
    tracking_parser = subparsers.add_parser("tracking", help="Inspect per-schedule sent-quote tracking")
    tracking_subparsers = tracking_parser.add_subparsers(dest="tracking_action", required=True)

    tracking_show_parser = tracking_subparsers.add_parser("show", help="Show quotes sent this cycle")
    tracking_show_parser.add_argument("name", help="Schedule name")

    tracking_reset_parser = tracking_subparsers.add_parser("reset", help="Start a new cycle")
    tracking_reset_parser.add_argument("name", help="Schedule name")

    # engine
    subparsers.add_parser("sync", help="Show the jobs one schedule sync would produce")

    talk_parser = subparsers.add_parser("talk", help="Nextcloud Talk helpers")
    talk_subparsers = talk_parser.add_subparsers(dest="talk_action", required=True)
    talk_subparsers.add_parser("rooms", help="List Talk conversations")

    run_parser = subparsers.add_parser("run", help="Run the quote daemon")
    run_parser.add_argument("--dry-run", action="store_true", help="Log quotes instead of sending them")

    args = parser.parse_args()

    if args.command != "init":
        config = _config(args)
        setup_logging(config, verbose=args.verbose, daemon_mode=args.command == "run")

    if args.command == "quote":
        quote_commands = {
            "add": cmd_quote_add,
            "import": cmd_quote_import,
            "list": cmd_quote_list,
            "tag": cmd_quote_tag,
            "untag": cmd_quote_untag,
        }
        quote_commands[args.quote_action](args)
    elif args.command == "schedule":
        schedule_commands = {
            "add": cmd_schedule_add,
            "update": cmd_schedule_update,
            "remove": cmd_schedule_remove,
            "list": cmd_schedule_list,
        }
        schedule_commands[args.schedule_action](args)
    elif args.command == "tracking":
        tracking_commands = {
            "show": cmd_tracking_show,
            "reset": cmd_tracking_reset,
        }
        tracking_commands[args.tracking_action](args)
    elif args.command == "talk":
        cmd_talk_rooms(args)
    else:
        commands = {
            "init": cmd_init,
            "sync": cmd_sync,
            "run": cmd_run,
        }
        commands[args.command](args)


if __name__ == "__main__":
    main()
