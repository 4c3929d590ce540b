"""Timed holding area for soft-deleted meal logs."""

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from uuid import uuid4

from nutrivision.domain.meals import MealLog

_logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(tz=UTC)


@dataclass(frozen=True)
class UndoEntry:
    """Snapshot of a deleted log and the moment it becomes final."""

    log: MealLog
    expires_at: datetime
    id: str = field(default_factory=lambda: str(uuid4()))


@dataclass
class UndoLedger:
    """Keeps deleted logs restorable until their undo window passes.

    The newest entry is the one a UI shows; older entries keep their own
    timers and still finalize on schedule.
    """

    clock: Callable[[], datetime] = _utcnow
    _entries: dict[str, UndoEntry] = field(default_factory=dict, init=False)
    _timers: dict[str, asyncio.TimerHandle] = field(default_factory=dict, init=False)
    _current: str | None = field(default=None, init=False)

    @property
    def current(self) -> UndoEntry | None:
        """The most recent entry that can still be restored."""
        if self._current is None:
            return None
        return self.get(self._current)

    @property
    def pending(self) -> list[UndoEntry]:
        return [entry for entry in self._entries.values() if not self._expired(entry)]

    def get(self, entry_id: str) -> UndoEntry | None:
        """Return a live entry by id."""
        entry = self._entries.get(entry_id)
        if entry is None or self._expired(entry):
            return None
        return entry

    def push(self, log: MealLog, window_seconds: float) -> UndoEntry:
        """Hold a copy of a deleted log for window_seconds."""
        entry = UndoEntry(
            log=log.model_copy(deep=True),
            expires_at=self.clock() + timedelta(seconds=window_seconds),
        )
        self._entries[entry.id] = entry
        self._current = entry.id
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            loop = None
        if loop is not None:
            self._timers[entry.id] = loop.call_later(
                window_seconds, self._finalize, entry.id
            )
        return entry

    def restore(self, entry: UndoEntry) -> MealLog | None:
        """Take back a deleted log; None when the window already passed."""
        live = self._entries.get(entry.id)
        if live is None:
            return None
        if self._expired(live):
            self._finalize(entry.id)
            return None
        self._drop(entry.id)
        return live.log

    def dismiss(self, entry: UndoEntry) -> None:
        """Finalize a delete before its window ends."""
        self._finalize(entry.id)

    def clear(self) -> None:
        """Finalize everything, e.g. when the active identity changes."""
        for entry_id in list(self._entries):
            self._finalize(entry_id)

    def _expired(self, entry: UndoEntry) -> bool:
        return self.clock() >= entry.expires_at

    def _finalize(self, entry_id: str) -> None:
        entry = self._drop(entry_id)
        if entry is not None:
            _logger.info("Delete of meal log %s is final", entry.log.id)

    def _drop(self, entry_id: str) -> UndoEntry | None:
        timer = self._timers.pop(entry_id, None)
        if timer is not None:
            timer.cancel()
        if self._current == entry_id:
            self._current = None
        return self._entries.pop(entry_id, None)
