"""Database operations for the quote and schedule store."""

import logging
import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, Iterator

from .errors import StoreUnavailable

logger = logging.getLogger("chatter_quote.db")

SCHEMA_PATH = Path(__file__).parent / "schema.sql"


@dataclass
class Quote:
    id: int
    text: str
    tags: set[str] = field(default_factory=set)


@dataclass
class Schedule:
    name: str
    cron: str
    tags: set[str] = field(default_factory=set)
    id: int | None = None


def init_db(db_path: Path) -> None:
    """Initialize database with schema."""
    with sqlite3.connect(db_path) as conn:
        conn.executescript(SCHEMA_PATH.read_text())


@contextmanager
def get_db(db_path: Path) -> Iterator[sqlite3.Connection]:
    """Get database connection with row factory."""
    # timeout=30.0 waits up to 30s for locks instead of failing immediately
    conn = sqlite3.connect(db_path, timeout=30.0)
    conn.execute("PRAGMA journal_mode=WAL")
    conn.row_factory = sqlite3.Row
    try:
        yield conn
        conn.commit()
    finally:
        conn.close()


def _normalize_tags(tags: Iterable[str]) -> list[str]:
    return sorted({t.strip() for t in tags if t and t.strip()})


# ============================================================================
# Quotes
# ============================================================================


def add_quote(conn: sqlite3.Connection, text: str, tags: Iterable[str]) -> int:
    """
    Insert a quote with its tags. Returns the new quote ID.

    Raises sqlite3.IntegrityError if a quote with the same text already exists.
    """
    cursor = conn.execute("INSERT INTO quotes (text) VALUES (?)", (text,))
    quote_id = cursor.lastrowid
    conn.executemany(
        "INSERT OR IGNORE INTO quote_tags (quote_id, tag) VALUES (?, ?)",
        [(quote_id, tag) for tag in _normalize_tags(tags)],
    )
    return quote_id


def _tags_by_quote(conn: sqlite3.Connection) -> dict[int, set[str]]:
    tags: dict[int, set[str]] = {}
    for row in conn.execute("SELECT quote_id, tag FROM quote_tags"):
        tags.setdefault(row["quote_id"], set()).add(row["tag"])
    return tags


def all_quotes(conn: sqlite3.Connection) -> list[Quote]:
    """Fetch every quote with its tags, ordered by ID."""
    tags = _tags_by_quote(conn)
    cursor = conn.execute("SELECT id, text FROM quotes ORDER BY id")
    return [
        Quote(id=row["id"], text=row["text"], tags=tags.get(row["id"], set()))
        for row in cursor.fetchall()
    ]


def get_quote_by_text(conn: sqlite3.Connection, text: str) -> Quote | None:
    """Look up a quote by its exact text."""
    row = conn.execute("SELECT id, text FROM quotes WHERE text = ?", (text,)).fetchone()
    if not row:
        return None
    tag_rows = conn.execute(
        "SELECT tag FROM quote_tags WHERE quote_id = ? ORDER BY tag", (row["id"],),
    ).fetchall()
    return Quote(id=row["id"], text=row["text"], tags={r["tag"] for r in tag_rows})


def quotes_with_tags(conn: sqlite3.Connection, tags: Iterable[str]) -> list[Quote]:
    """Fetch all quotes carrying at least one of the given tags."""
    wanted = _normalize_tags(tags)
    if not wanted:
        return []
    placeholders = ", ".join("?" for _ in wanted)
    cursor = conn.execute(
        f"""
        SELECT DISTINCT q.id, q.text
        FROM quotes q
        JOIN quote_tags t ON t.quote_id = q.id
        WHERE t.tag IN ({placeholders})
        ORDER BY q.id
        """,
        wanted,
    )
    rows = cursor.fetchall()
    all_tags = _tags_by_quote(conn)
    return [
        Quote(id=row["id"], text=row["text"], tags=all_tags.get(row["id"], set()))
        for row in rows
    ]


def tag_quote(conn: sqlite3.Connection, text: str, tags: Iterable[str]) -> bool:
    """Add tags to an existing quote. Returns False if the quote doesn't exist."""
    quote = get_quote_by_text(conn, text)
    if quote is None:
        return False
    conn.executemany(
        "INSERT OR IGNORE INTO quote_tags (quote_id, tag) VALUES (?, ?)",
        [(quote.id, tag) for tag in _normalize_tags(tags)],
    )
    return True


def untag_quote(conn: sqlite3.Connection, text: str, tags: Iterable[str]) -> bool:
    """Remove tags from an existing quote. Returns False if the quote doesn't exist."""
    quote = get_quote_by_text(conn, text)
    if quote is None:
        return False
    conn.executemany(
        "DELETE FROM quote_tags WHERE quote_id = ? AND tag = ?",
        [(quote.id, tag) for tag in _normalize_tags(tags)],
    )
    return True


# ============================================================================
# Schedules
# ============================================================================


def add_schedule(
    conn: sqlite3.Connection, name: str, cron: str, tags: Iterable[str],
) -> int:
    """
    Store a quote-sending schedule. Returns the new schedule ID.

    Raises sqlite3.IntegrityError if a schedule with the same name exists.
    """
    cursor = conn.execute(
        "INSERT INTO schedules (name, cron_expression) VALUES (?, ?)",
        (name, cron),
    )
    schedule_id = cursor.lastrowid
    conn.executemany(
        "INSERT OR IGNORE INTO schedule_tags (schedule_id, tag) VALUES (?, ?)",
        [(schedule_id, tag) for tag in _normalize_tags(tags)],
    )
    return schedule_id


def update_schedule(
    conn: sqlite3.Connection,
    name: str,
    cron: str | None = None,
    tags: Iterable[str] | None = None,
) -> bool:
    """Change a schedule's cron and/or replace its tags. Returns False if not found."""
    row = conn.execute("SELECT id FROM schedules WHERE name = ?", (name,)).fetchone()
    if not row:
        return False
    schedule_id = row["id"]
    if cron is not None:
        conn.execute(
            "UPDATE schedules SET cron_expression = ? WHERE id = ?",
            (cron, schedule_id),
        )
    if tags is not None:
        conn.execute("DELETE FROM schedule_tags WHERE schedule_id = ?", (schedule_id,))
        conn.executemany(
            "INSERT OR IGNORE INTO schedule_tags (schedule_id, tag) VALUES (?, ?)",
            [(schedule_id, tag) for tag in _normalize_tags(tags)],
        )
    return True


def remove_schedule(conn: sqlite3.Connection, name: str) -> bool:
    """Delete a schedule by name. Returns True if it existed."""
    row = conn.execute("SELECT id FROM schedules WHERE name = ?", (name,)).fetchone()
    if not row:
        return False
    conn.execute("DELETE FROM schedule_tags WHERE schedule_id = ?", (row["id"],))
    conn.execute("DELETE FROM schedules WHERE id = ?", (row["id"],))
    return True


def _tags_by_schedule(conn: sqlite3.Connection) -> dict[int, set[str]]:
    tags: dict[int, set[str]] = {}
    for row in conn.execute("SELECT schedule_id, tag FROM schedule_tags"):
        tags.setdefault(row["schedule_id"], set()).add(row["tag"])
    return tags


def get_schedule(conn: sqlite3.Connection, name: str) -> Schedule | None:
    """Look up a schedule by name."""
    row = conn.execute(
        "SELECT id, name, cron_expression FROM schedules WHERE name = ?", (name,),
    ).fetchone()
    if not row:
        return None
    tag_rows = conn.execute(
        "SELECT tag FROM schedule_tags WHERE schedule_id = ?", (row["id"],),
    ).fetchall()
    return Schedule(
        id=row["id"],
        name=row["name"],
        cron=row["cron_expression"],
        tags={r["tag"] for r in tag_rows},
    )


def all_schedules(conn: sqlite3.Connection) -> list[Schedule]:
    """Fetch every sending schedule with its tags, ordered by name."""
    tags = _tags_by_schedule(conn)
    cursor = conn.execute(
        "SELECT id, name, cron_expression FROM schedules ORDER BY name"
    )
    return [
        Schedule(
            id=row["id"],
            name=row["name"],
            cron=row["cron_expression"],
            tags=tags.get(row["id"], set()),
        )
        for row in cursor.fetchall()
    ]


# ============================================================================
# Sent-quote tracking (SQLite backend)
# ============================================================================


def get_sent_quote_ids(conn: sqlite3.Connection, schedule_name: str) -> set[int]:
    cursor = conn.execute(
        "SELECT quote_id FROM sent_quotes WHERE schedule_name = ?",
        (schedule_name,),
    )
    return {row["quote_id"] for row in cursor.fetchall()}


def add_sent_quote(conn: sqlite3.Connection, schedule_name: str, quote_id: int) -> None:
    conn.execute(
        "INSERT OR IGNORE INTO sent_quotes (schedule_name, quote_id) VALUES (?, ?)",
        (schedule_name, quote_id),
    )


def clear_sent_quotes(conn: sqlite3.Connection, schedule_name: str) -> int:
    """Forget every sent quote for a schedule. Returns rows removed."""
    cursor = conn.execute(
        "DELETE FROM sent_quotes WHERE schedule_name = ?", (schedule_name,),
    )
    return cursor.rowcount


# ============================================================================
# Store access for the engine (failures surface as StoreUnavailable)
# ============================================================================


def load_schedules(db_path: Path) -> list[Schedule]:
    """Read all schedules in a fresh connection."""
    try:
        with get_db(db_path) as conn:
            return all_schedules(conn)
    except sqlite3.Error as e:
        raise StoreUnavailable(f"Failed to read schedules from {db_path}: {e}") from e


def load_quotes_with_tags(db_path: Path, tags: Iterable[str]) -> list[Quote]:
    """Read the eligible quotes for a tag set in a fresh connection."""
    try:
        with get_db(db_path) as conn:
            return quotes_with_tags(conn, tags)
    except sqlite3.Error as e:
        raise StoreUnavailable(f"Failed to read quotes from {db_path}: {e}") from e
