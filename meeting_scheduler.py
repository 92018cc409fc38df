"""
Calendar-driven meeting scheduler.

One timer per calendar event fires a few minutes after the meeting ends. On
fire, the scheduler pulls recent Granola documents, matches one to the event,
waits (once) for notes to appear if they are not ready yet, and hands the
meeting to the processing pipeline. A refresh loop re-reads today's calendar
periodically and arms any event it has not seen.

Per-event task lifecycle:

    ARMED -> FIRED -> MATCHING -> READY -> DONE
                               -> NOT_READY -> RETRY_ARMED -> FIRED -> ...
                               -> NOT_READY -> ABANDONED
                               -> NO_MATCH -> ABANDONED

DONE marks both the event id and the document id in the processed store.
ABANDONED only drops the task from memory, so the next calendar refresh can
arm the event again. A timer that fires for a task which is no longer tracked
is ignored.
"""

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from functools import partial
from typing import Callable

from macos_calendar import fetch_todays_events
from meeting_matcher import find_matching_document
from meeting_models import CalendarEvent, MeetingContent

logger = logging.getLogger(__name__)

DEFAULT_DELAY_AFTER_END = timedelta(minutes=5)
DEFAULT_LATE_FIRE_FLOOR = timedelta(seconds=30)
DEFAULT_RETRY_DELAY_SECONDS = 120
DEFAULT_CANDIDATE_LIMIT = 20


class TaskState(Enum):
    ARMED = 'armed'
    FIRED = 'fired'
    MATCHING = 'matching'
    NOT_READY = 'not_ready'
    RETRY_ARMED = 'retry_armed'
    READY = 'ready'
    NO_MATCH = 'no_match'
    DONE = 'done'
    ABANDONED = 'abandoned'


ARMED_STATES = (TaskState.ARMED, TaskState.RETRY_ARMED)


@dataclass
class ScheduledTask:
    event: CalendarEvent
    fire_at: datetime
    timer: object = None
    attempt_count: int = 0
    next_attempt_at: datetime | None = None
    state: TaskState = TaskState.ARMED
    matched_document_id: str | None = None
    history: list[TaskState] = field(default_factory=lambda: [TaskState.ARMED])

    def transition(self, state: TaskState) -> None:
        self.state = state
        self.history.append(state)

    def as_dict(self) -> dict:
        return {
            'event_id': self.event.id,
            'title': self.event.title,
            'state': self.state.value,
            'fire_at': self.fire_at.isoformat(),
            'attempt_count': self.attempt_count,
            'next_attempt_at': self.next_attempt_at.isoformat() if self.next_attempt_at else None,
            'matched_document_id': self.matched_document_id,
        }


def format_time(moment: datetime) -> str:
    return moment.astimezone().strftime('%H:%M')


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _daemon_timer(delay_seconds: float, callback: Callable[[], None]) -> threading.Timer:
    timer = threading.Timer(delay_seconds, callback)
    timer.daemon = True
    return timer


class RetryController:
    """Readiness gate for matched documents, with a bounded retry budget."""

    def __init__(self, retry_delay_seconds: float = DEFAULT_RETRY_DELAY_SECONDS, max_retries: int = 1):
        self.retry_delay_seconds = retry_delay_seconds
        self.max_retries = max_retries

    def is_ready(self, meeting: MeetingContent) -> bool:
        return meeting.is_ready

    def should_retry(self, task: ScheduledTask) -> bool:
        return task.attempt_count < self.max_retries


class EventScheduler:
    """
    Owns the table of tracked calendar events and their timers.

    `notes` needs fetch_documents(limit) and fetch_meeting(doc); `store` is a
    ProcessedStore; `pipeline` is called with a MeetingContent and may raise.
    `timer_factory(delay_seconds, callback)` returns an unstarted timer with
    start() and cancel().
    """

    def __init__(self, notes, store, pipeline: Callable[[MeetingContent], object], *,
                 delay_after_end: timedelta = DEFAULT_DELAY_AFTER_END,
                 late_fire_floor: timedelta = DEFAULT_LATE_FIRE_FLOOR,
                 retry: RetryController | None = None,
                 candidate_limit: int = DEFAULT_CANDIDATE_LIMIT,
                 timer_factory: Callable | None = None,
                 clock: Callable[[], datetime] | None = None):
        self.notes = notes
        self.store = store
        self.pipeline = pipeline
        self.delay_after_end = delay_after_end
        self.late_fire_floor = late_fire_floor
        self.retry = retry or RetryController()
        self.candidate_limit = candidate_limit
        self._timer_factory = timer_factory or _daemon_timer
        self._clock = clock or _utcnow
        self._lock = threading.Lock()
        self._tasks: dict[str, ScheduledTask] = {}

    def is_tracked(self, event_id: str) -> bool:
        with self._lock:
            return event_id in self._tasks

    def get_task(self, event_id: str) -> ScheduledTask | None:
        with self._lock:
            return self._tasks.get(event_id)

    def snapshot(self) -> list[dict]:
        with self._lock:
            return [task.as_dict() for task in self._tasks.values()]

    def arm(self, event: CalendarEvent) -> bool:
        """Start tracking an event. Returns True if a new timer was set."""
        if self.store.has(event.id):
            logger.debug(f"Already processed: \"{event.title}\"")
            return False

        with self._lock:
            existing = self._tasks.get(event.id)
            if existing is not None:
                if existing.state is not TaskState.ARMED or existing.event == event:
                    return False
                # Meeting was edited before it fired: supersede the pending timer
                existing.timer.cancel()
                existing.transition(TaskState.ABANDONED)
                logger.info(f"Rescheduling edited meeting \"{event.title}\" (ends {format_time(event.end)})")

            now = self._clock()
            wait = max(event.end + self.delay_after_end - now, self.late_fire_floor)
            task = ScheduledTask(event=event, fire_at=now + wait)
            task.timer = self._timer_factory(wait.total_seconds(), partial(self._on_fire, event.id, task))
            self._tasks[event.id] = task

        logger.info(
            f"\"{event.title}\" ends {format_time(event.end)} -> processing at {format_time(task.fire_at)}"
        )
        task.timer.start()
        return True

    def shutdown(self) -> None:
        """Cancel every pending timer and forget all tasks."""
        with self._lock:
            for task in self._tasks.values():
                if task.timer is not None:
                    task.timer.cancel()
            self._tasks.clear()

    def _release(self, task: ScheduledTask, state: TaskState) -> None:
        with self._lock:
            task.transition(state)
            if self._tasks.get(task.event.id) is task:
                del self._tasks[task.event.id]

    def _on_fire(self, event_id: str, task: ScheduledTask) -> None:
        with self._lock:
            if self._tasks.get(event_id) is not task or task.state not in ARMED_STATES:
                logger.debug(f"Ignoring stale timer for event {event_id}")
                return
            task.transition(TaskState.FIRED)

        try:
            self._process(task)
        except Exception as e:
            logger.error(f"Failed to process \"{task.event.title}\": {e}", exc_info=True)
            self._release(task, TaskState.ABANDONED)

    def _process(self, task: ScheduledTask) -> None:
        event = task.event
        if self.store.has(event.id):
            self._release(task, TaskState.DONE)
            return

        logger.info(f"Meeting ended: \"{event.title}\", searching Granola for notes")
        task.transition(TaskState.MATCHING)
        docs = self.notes.fetch_documents(self.candidate_limit)
        doc = find_matching_document(docs, event)

        if doc is None:
            # Not marked processed: the notes may simply not exist yet
            logger.warning(f"No Granola notes found for \"{event.title}\"; will try again on a later refresh")
            task.transition(TaskState.NO_MATCH)
            self._release(task, TaskState.ABANDONED)
            return

        task.matched_document_id = doc.id
        if self.store.has(doc.id):
            logger.info(f"Granola doc {doc.id} already processed; marking \"{event.title}\" done")
            self.store.mark_done(event.id)
            self._release(task, TaskState.DONE)
            return

        meeting = self.notes.fetch_meeting(doc)
        if not self.retry.is_ready(meeting):
            task.transition(TaskState.NOT_READY)
            if self.retry.should_retry(task):
                self._arm_retry(task)
            else:
                logger.warning(f"Notes for \"{event.title}\" still not ready after {task.attempt_count} "
                               f"retry(ies); giving up until a later refresh")
                self._release(task, TaskState.ABANDONED)
            return

        task.transition(TaskState.READY)
        self.pipeline(meeting)
        self.store.mark_done(event.id)
        self.store.mark_done(doc.id)
        self._release(task, TaskState.DONE)

    def _arm_retry(self, task: ScheduledTask) -> None:
        delay = self.retry.retry_delay_seconds
        with self._lock:
            if self._tasks.get(task.event.id) is not task:
                return
            task.attempt_count += 1
            task.next_attempt_at = self._clock() + timedelta(seconds=delay)
            task.fire_at = task.next_attempt_at
            task.transition(TaskState.RETRY_ARMED)
            task.timer = self._timer_factory(delay, partial(self._on_fire, task.event.id, task))
        logger.info(f"Notes not ready yet for \"{task.event.title}\"; retrying in {delay:g}s")
        task.timer.start()


class RefreshLoop:
    """Re-reads today's calendar on an interval and arms every event."""

    def __init__(self, scheduler: EventScheduler, interval_seconds: float,
                 fetch_events: Callable[[], list[CalendarEvent]] = fetch_todays_events,
                 clock: Callable[[], datetime] | None = None):
        self.scheduler = scheduler
        self.interval_seconds = interval_seconds
        self.fetch_events = fetch_events
        self._clock = clock or _utcnow
        self.last_refresh_at: datetime | None = None
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    def refresh(self) -> int:
        """Arm today's events. Returns how many new timers were set; never raises."""
        now = self._clock()
        try:
            logger.info("Fetching today's calendar...")
            events = self.fetch_events()
            self.last_refresh_at = now
            if not events:
                logger.info("No meetings on the calendar today")
                return 0

            logger.info(f"Found {len(events)} meeting(s) today")
            armed = 0
            for event in events:
                status = '(ended)' if event.end < now else f"(ends {format_time(event.end)})"
                logger.info(f"  - {event.title} {format_time(event.start)}-{format_time(event.end)} {status}")
                try:
                    if self.scheduler.arm(event):
                        armed += 1
                except Exception as e:
                    logger.error(f"Failed to schedule \"{event.title}\": {e}")
            return armed
        except Exception as e:
            logger.error(f"Calendar refresh failed: {e}", exc_info=True)
            return 0

    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return

        def _loop():
            logger.info(f"Calendar refresh started (interval={self.interval_seconds:g}s)")
            while not self._stop_event.is_set():
                self.refresh()
                self._stop_event.wait(self.interval_seconds)

        self._stop_event.clear()
        self._thread = threading.Thread(target=_loop, name='calendar-refresh', daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._stop_event.set()

    def join(self, timeout: float | None = None) -> None:
        if self._thread:
            self._thread.join(timeout)
