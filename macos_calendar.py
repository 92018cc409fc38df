"""
macOS Calendar Reader

Reads today's timed events straight from Calendar.app's SQLite store. No API
keys, no OAuth, no network.

The database lives at:
  ~/Library/Group Containers/group.com.apple.calendar/Calendar.sqlitedb
  (fallback: ~/Library/Calendars/Calendar.sqlitedb)

Core Data stores dates as seconds since 2001-01-01 UTC (the "Apple epoch").
"""

import logging
import os
import shutil
import sqlite3
import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path

from meeting_models import CalendarEvent

logger = logging.getLogger(__name__)

APPLE_EPOCH_OFFSET = 978307200
QUERY_TIMEOUT_SECONDS = 5.0

CALENDAR_DB_PATHS = [
    Path.home() / 'Library' / 'Group Containers' / 'group.com.apple.calendar' / 'Calendar.sqlitedb',
    Path.home() / 'Library' / 'Calendars' / 'Calendar.sqlitedb',
]

# Timed events only: all-day markers have start == end
TODAYS_EVENTS_SQL = """
    SELECT
      ci.ROWID AS rowid,
      ci.ZSUMMARY AS summary,
      ci.ZSTARTDATE AS start_date,
      ci.ZENDDATE AS end_date,
      c.ZTITLE AS calendar_title
    FROM ZCALENDARITEM ci
    LEFT JOIN ZCALENDAR c ON ci.ZCALENDAR = c.Z_PK
    WHERE ci.ZSTARTDATE >= ?
      AND ci.ZSTARTDATE < ?
      AND ci.ZSTARTDATE != ci.ZENDDATE
      AND ci.ZSUMMARY IS NOT NULL
    ORDER BY ci.ZSTARTDATE ASC
"""


class CalendarUnavailable(RuntimeError):
    pass


def from_apple_timestamp(value: float) -> datetime:
    return datetime.fromtimestamp(value + APPLE_EPOCH_OFFSET, tz=timezone.utc)


def to_apple_timestamp(moment: datetime) -> int:
    return int(moment.timestamp()) - APPLE_EPOCH_OFFSET


def find_calendar_db(paths: list[Path] | None = None) -> Path:
    """Return the first Calendar database that exists."""
    candidates = paths or CALENDAR_DB_PATHS
    for path in candidates:
        if path.exists():
            return path
    checked = '\n'.join(f"  - {p}" for p in candidates)
    raise CalendarUnavailable(
        f"macOS Calendar database not found. Checked:\n{checked}\n\n"
        "Make sure Calendar.app is set up and has synced at least once."
    )


def day_bounds(now: datetime) -> tuple[datetime, datetime]:
    """Local midnight-to-midnight window containing `now`."""
    local_now = now.astimezone()
    start_of_day = local_now.replace(hour=0, minute=0, second=0, microsecond=0)
    return start_of_day, start_of_day + timedelta(days=1)


def parse_rows(rows: list[sqlite3.Row]) -> list[CalendarEvent]:
    events = []
    for row in rows:
        start = from_apple_timestamp(row['start_date'])
        end = from_apple_timestamp(row['end_date'])
        if end <= start:
            continue
        events.append(CalendarEvent(
            id=str(row['rowid']),
            title=row['summary'],
            start=start,
            end=end,
            calendar_name=row['calendar_title'] or 'Unknown',
        ))
    return events


def query_events(db_path: Path, start: datetime, end: datetime) -> list[CalendarEvent]:
    conn = sqlite3.connect(f"file:{db_path}?mode=ro", uri=True, timeout=QUERY_TIMEOUT_SECONDS)
    try:
        conn.row_factory = sqlite3.Row
        rows = conn.execute(TODAYS_EVENTS_SQL, (to_apple_timestamp(start), to_apple_timestamp(end))).fetchall()
    finally:
        conn.close()
    return parse_rows(rows)


def _query_copy(db_path: Path, start: datetime, end: datetime) -> list[CalendarEvent]:
    """Query a private copy of the database when Calendar.app holds a lock."""
    fd, tmp_name = tempfile.mkstemp(prefix='granola-automator-cal-', suffix='.sqlitedb')
    os.close(fd)
    try:
        shutil.copyfile(db_path, tmp_name)
        return query_events(Path(tmp_name), start, end)
    finally:
        os.unlink(tmp_name)


def fetch_todays_events(now: datetime | None = None, db_path: Path | None = None) -> list[CalendarEvent]:
    """Today's timed events, earliest first. Any failure yields an empty list."""
    now = now or datetime.now(timezone.utc)
    start, end = day_bounds(now)

    try:
        path = db_path or find_calendar_db()
    except CalendarUnavailable as e:
        logger.error(str(e))
        return []

    try:
        return query_events(path, start, end)
    except sqlite3.Error as e:
        logger.info(f"Calendar query failed ({e}); retrying against a copy of the database")

    try:
        return _query_copy(path, start, end)
    except (sqlite3.Error, OSError) as e:
        logger.error(f"Failed to read macOS Calendar database: {e}")
        return []
