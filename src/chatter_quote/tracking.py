"""Per-schedule memory of which quotes were sent in the current cycle.

Each schedule keeps its own record so several batches of quotes can cycle
independently. A record only ever grows until every eligible quote has been
sent, at which point it is cleared and the cycle starts over.
"""

import hashlib
import logging
import re
import sqlite3
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol

from . import db
from .config import Config
from .errors import StoreUnavailable

logger = logging.getLogger("chatter_quote.tracking")


@dataclass
class TrackingRecord:
    schedule_name: str
    ids: set[int] = field(default_factory=set)


class TrackingLog(Protocol):
    def load(self, schedule_name: str) -> TrackingRecord: ...

    def append(self, schedule_name: str, quote_id: int) -> None: ...

    def clear(self, schedule_name: str) -> None: ...


def munge_schedule_name(schedule_name: str) -> str:
    """Make a schedule name safe for use in a file name.

    Spaces become underscores and any other non-word character is dropped.
    e.g. "Morning quotes!" -> "Morning_quotes"
    """
    return re.sub(r"\W", "", schedule_name.replace(" ", "_"))


def tracking_file_stem(schedule_name: str) -> str:
    """
    File name stem for a schedule's tracking file.

    Names made only of word characters are used as-is. Any name that munging
    alters gets a short digest of the raw name appended, so "a b" and "a_b"
    never share a file.
    """
    munged = munge_schedule_name(schedule_name)
    if munged == schedule_name and munged:
        return munged
    digest = hashlib.sha1(schedule_name.encode("utf-8")).hexdigest()[:8]
    return f"{munged}-{digest}"


class FileTrackingLog:
    """One text file per schedule, one quote ID per line, cleared by truncation."""

    def __init__(self, directory: Path, prefix: str = "sent-quotes-"):
        self.directory = Path(directory)
        self.prefix = prefix
        self._lock = threading.Lock()

    def path_for(self, schedule_name: str) -> Path:
        return self.directory / f"{self.prefix}{tracking_file_stem(schedule_name)}.txt"

    def _ensure(self, schedule_name: str) -> Path:
        path = self.path_for(schedule_name)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.touch(exist_ok=True)
        return path

    def load(self, schedule_name: str) -> TrackingRecord:
        try:
            with self._lock:
                content = self._ensure(schedule_name).read_text()
        except OSError as e:
            raise StoreUnavailable(f"Cannot read tracking file for '{schedule_name}': {e}") from e

        ids = set()
        for line in content.splitlines():
            line = line.strip()
            if not line:
                continue
            try:
                ids.add(int(line))
            except ValueError:
                logger.warning(
                    "Ignoring malformed line %r in tracking file for '%s'",
                    line, schedule_name,
                )
        return TrackingRecord(schedule_name=schedule_name, ids=ids)

    def append(self, schedule_name: str, quote_id: int) -> None:
        try:
            with self._lock:
                path = self._ensure(schedule_name)
                with open(path, "a") as f:
                    f.write(f"{quote_id}\n")
        except OSError as e:
            raise StoreUnavailable(f"Cannot append to tracking file for '{schedule_name}': {e}") from e

    def clear(self, schedule_name: str) -> None:
        try:
            with self._lock:
                self._ensure(schedule_name).write_text("")
        except OSError as e:
            raise StoreUnavailable(f"Cannot clear tracking file for '{schedule_name}': {e}") from e
        logger.info("Cleared tracking file for schedule '%s'", schedule_name)


class DbTrackingLog:
    """Tracking records kept in the sent_quotes table of the main database."""

    def __init__(self, db_path: Path):
        self.db_path = db_path

    def load(self, schedule_name: str) -> TrackingRecord:
        try:
            with db.get_db(self.db_path) as conn:
                ids = db.get_sent_quote_ids(conn, schedule_name)
        except sqlite3.Error as e:
            raise StoreUnavailable(f"Cannot read sent quotes for '{schedule_name}': {e}") from e
        return TrackingRecord(schedule_name=schedule_name, ids=ids)

    def append(self, schedule_name: str, quote_id: int) -> None:
        try:
            with db.get_db(self.db_path) as conn:
                db.add_sent_quote(conn, schedule_name, quote_id)
        except sqlite3.Error as e:
            raise StoreUnavailable(f"Cannot record sent quote for '{schedule_name}': {e}") from e

    def clear(self, schedule_name: str) -> None:
        try:
            with db.get_db(self.db_path) as conn:
                db.clear_sent_quotes(conn, schedule_name)
        except sqlite3.Error as e:
            raise StoreUnavailable(f"Cannot clear sent quotes for '{schedule_name}': {e}") from e
        logger.info("Cleared sent quotes for schedule '%s'", schedule_name)


def make_tracking_log(config: Config) -> TrackingLog:
    """Build the tracking log selected by config.tracking.backend."""
    if config.tracking.backend == "db":
        return DbTrackingLog(config.db_path)
    if config.tracking.backend != "file":
        logger.warning("Unknown tracking backend %r, using file", config.tracking.backend)
    return FileTrackingLog(config.tracking.dir, config.tracking.file_prefix)
