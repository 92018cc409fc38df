"""
Processed Store

Durable record of meeting ids that have already been handled. Calendar event
ids and Granola document ids share one namespace. The store is a small JSON
file in the user's home directory, bounded to the most recent entries.

Read failures fail open (an id is reported as not processed). Write failures
are logged as warnings and never raise.
"""

import json
import logging
import os
import tempfile
import threading
from datetime import datetime, timezone
from pathlib import Path

logger = logging.getLogger(__name__)

DEFAULT_STATE_FILE = Path.home() / '.granola-automator-state.json'
MAX_PROCESSED_IDS = 500

_EPOCH = datetime.fromtimestamp(0, tz=timezone.utc)


def _empty_state() -> dict:
    return {'processed_ids': [], 'last_poll_at': _EPOCH.isoformat()}


class ProcessedStore:
    def __init__(self, path: str | Path | None = None, max_entries: int = MAX_PROCESSED_IDS):
        self.path = Path(path).expanduser() if path else DEFAULT_STATE_FILE
        self.max_entries = max_entries
        self._lock = threading.Lock()

    def _read(self) -> dict:
        """Load state from disk. Missing files are an empty state; unreadable ones raise."""
        if not self.path.exists():
            return _empty_state()
        with open(self.path, 'r', encoding='utf-8') as f:
            state = json.load(f)
        if not isinstance(state, dict) or not isinstance(state.get('processed_ids'), list):
            raise ValueError(f"unexpected state layout in {self.path}")
        return state

    def _write(self, state: dict) -> None:
        """Write state atomically so a crash mid-write never truncates the file."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=self.path.parent, prefix='.automator-state-', suffix='.tmp')
        try:
            with os.fdopen(fd, 'w', encoding='utf-8') as f:
                json.dump(state, f, indent=2)
            os.replace(tmp_path, self.path)
        except BaseException:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
            raise

    def has(self, entity_id: str) -> bool:
        """Return True if the id has been processed. Unreadable state counts as not processed."""
        with self._lock:
            try:
                state = self._read()
            except (OSError, ValueError) as e:
                logger.warning(f"Processed store unreadable ({self.path}): {e}; treating {entity_id} as new")
                return False
        return entity_id in state['processed_ids']

    def mark_done(self, entity_id: str) -> None:
        """Record an id as processed. Idempotent; evicts the oldest ids past capacity."""
        with self._lock:
            try:
                try:
                    state = self._read()
                except ValueError as e:
                    logger.warning(f"Processed store corrupt ({self.path}): {e}; starting fresh")
                    state = _empty_state()

                ids = state['processed_ids']
                if entity_id in ids:
                    return
                ids.append(entity_id)
                if len(ids) > self.max_entries:
                    state['processed_ids'] = ids[-self.max_entries:]
                state['last_poll_at'] = datetime.now(timezone.utc).isoformat()
                self._write(state)
            except OSError as e:
                logger.warning(f"Failed to record {entity_id} as processed: {e}")

    def reset(self) -> None:
        """Forget every processed id."""
        with self._lock:
            self._write(_empty_state())
        logger.info("Processed state reset; all meetings will be re-evaluated on the next refresh")

    def last_poll_at(self) -> datetime:
        """Timestamp of the most recent mark_done, or the Unix epoch."""
        with self._lock:
            try:
                state = self._read()
                return datetime.fromisoformat(state.get('last_poll_at') or _EPOCH.isoformat())
            except (OSError, ValueError):
                return _EPOCH

    def processed_ids(self) -> list[str]:
        with self._lock:
            try:
                return list(self._read()['processed_ids'])
            except (OSError, ValueError):
                return []
