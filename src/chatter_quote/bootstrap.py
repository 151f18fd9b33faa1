"""Seed the store from a plain-text quotes file."""

import logging
import sqlite3
from pathlib import Path
from typing import Iterable

from . import db
from .config import Config

logger = logging.getLogger("chatter_quote.bootstrap")


def read_quotes_file(path: Path) -> list[str]:
    """One quote per line; blank lines are skipped."""
    return [line.strip() for line in Path(path).read_text().splitlines() if line.strip()]


def import_quotes(
    conn: sqlite3.Connection, texts: Iterable[str], tags: Iterable[str],
) -> tuple[int, int]:
    """
    Insert quotes under the given tags, skipping ones already stored.

    Returns (added, skipped).
    """
    tags = list(tags)
    added = skipped = 0
    for text in texts:
        try:
            db.add_quote(conn, text, tags)
            added += 1
        except sqlite3.IntegrityError:
            skipped += 1
            logger.debug("Quote already stored, skipping: %s", text[:60])
    return added, skipped


def bootstrap_store(config: Config) -> tuple[int, int]:
    """
    Import config.bootstrap.quotes_file and create the bootstrap schedule.

    Does nothing if the quotes file isn't configured or doesn't exist.
    Returns (added, skipped) quote counts.
    """
    boot = config.bootstrap
    if not boot.quotes_file:
        return 0, 0
    quotes_path = Path(boot.quotes_file).expanduser()
    if not quotes_path.exists():
        logger.debug("No bootstrap quotes file at %s", quotes_path)
        return 0, 0

    texts = read_quotes_file(quotes_path)
    with db.get_db(config.db_path) as conn:
        added, skipped = import_quotes(conn, texts, [boot.tag])
        logger.info(
            "Imported %d quote(s) from %s (%d already stored)", added, quotes_path, skipped,
        )
        if boot.schedule_name and db.get_schedule(conn, boot.schedule_name) is None:
            db.add_schedule(conn, boot.schedule_name, boot.schedule_cron, [boot.tag])
            logger.info(
                "Added schedule '%s' (%s) for tag %s",
                boot.schedule_name, boot.schedule_cron, boot.tag,
            )
    return added, skipped
