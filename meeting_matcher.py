"""
Meeting Matcher

Resolves a calendar event to the Granola document holding its notes.

Users often rename notes after the meeting, so title matching alone is
unreliable. Matching runs in two passes:

1. Title + time band: creation time within 2 hours of the event start and the
   normalized titles are equal or one contains the other.
2. Time-only fallback: creation time within 30 minutes of the event start.

The closest document in time wins; ties go to the earliest created. Everything
here is pure: callers supply the candidates.
"""

from datetime import datetime, timedelta

from meeting_models import CalendarEvent, NotesDocument

TITLE_MATCH_WINDOW = timedelta(hours=2)
TIME_ONLY_WINDOW = timedelta(minutes=30)


def normalize_title(title: str | None) -> str:
    return (title or '').strip().casefold()


def time_distance(doc: NotesDocument, moment: datetime) -> timedelta:
    return abs(doc.created_at - moment)


def titles_match(doc_title: str, event_title: str) -> bool:
    """Equal, or one contains the other. An empty title is contained in every title."""
    a = normalize_title(doc_title)
    b = normalize_title(event_title)
    return a == b or b in a or a in b


def _closest(candidates: list[NotesDocument], moment: datetime) -> NotesDocument | None:
    if not candidates:
        return None
    return min(candidates, key=lambda d: (time_distance(d, moment), d.created_at))


def find_matching_document(candidates: list[NotesDocument], event: CalendarEvent) -> NotesDocument | None:
    """Pick the notes document for a calendar event, or None."""
    start = event.start

    title_matches = [
        doc for doc in candidates
        if time_distance(doc, start) < TITLE_MATCH_WINDOW and titles_match(doc.title, event.title)
    ]
    if title_matches:
        return _closest(title_matches, start)

    # Renamed meetings: fall back to time proximity alone, in a tighter band
    time_matches = [doc for doc in candidates if time_distance(doc, start) < TIME_ONLY_WINDOW]
    return _closest(time_matches, start)


def find_by_title(candidates: list[NotesDocument], search: str) -> NotesDocument | None:
    """First document whose title contains the search text (case-insensitive)."""
    needle = normalize_title(search)
    if not needle:
        return None
    for doc in candidates:
        if needle in normalize_title(doc.title):
            return doc
    return None
