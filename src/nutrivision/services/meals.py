"""Meal log store with optimistic local and remote writes."""

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import TYPE_CHECKING, Protocol
from uuid import uuid4

from nutrivision.domain.errors import (
    DuplicateLogError,
    InvariantViolation,
    LogNotFoundError,
    SyncFailure,
    SyncOperation,
)
from nutrivision.domain.meals import MealLog
from nutrivision.services.local_store import (
    LocalStore,
    read_logs,
    sort_logs,
    write_logs,
)
from nutrivision.services.macros import macros_close, sum_items
from nutrivision.services.sync import RemoteSyncQueue
from nutrivision.services.undo import UndoEntry, UndoLedger

if TYPE_CHECKING:
    from nutrivision.services.migration import MigrationCoordinator

_logger = logging.getLogger(__name__)

MAX_SYNC_FAILURES = 50


class MealLogRepository(Protocol):
    """Remote persistence interface for meal logs, keyed by log id."""

    def list_meal_logs(self, user_id: str) -> list[MealLog]:
        """Return every meal log of a user."""

    def upsert_meal_log(self, user_id: str, log: MealLog) -> None:
        """Create or replace a meal log and its items."""

    def delete_meal_log(self, user_id: str, log_id: str) -> None:
        """Delete a meal log and its items."""


class LogSource(str, Enum):
    """Which persistence filled the in-memory collection."""

    LOCAL = "local"
    REMOTE = "remote"


@dataclass
class LogStore:
    """Authoritative in-memory meal logs for the active identity.

    Every mutation lands in memory and in the local store before returning.
    Remote writes are queued per log id and never roll the local state back;
    their failures are recorded as sync notices.
    """

    local_store: LocalStore
    remote: MealLogRepository | None = None
    migration: "MigrationCoordinator | None" = None
    undo_ledger: UndoLedger = field(default_factory=UndoLedger)
    undo_window_seconds: float = 5.0
    on_sync_failure: Callable[[SyncFailure], None] | None = None
    _logs: list[MealLog] = field(default_factory=list, init=False)
    _identity: str | None = field(default=None, init=False)
    _local_owner: str | None = field(default=None, init=False)
    _source: LogSource | None = field(default=None, init=False)
    _sync_failures: list[SyncFailure] = field(default_factory=list, init=False)
    _queue: RemoteSyncQueue = field(init=False)

    def __post_init__(self) -> None:
        self._queue = RemoteSyncQueue(on_failure=self.record_failure)

    @property
    def logs(self) -> tuple[MealLog, ...]:
        """Logs ordered newest first."""
        return tuple(self._logs)

    @property
    def identity(self) -> str | None:
        return self._identity

    @property
    def source(self) -> LogSource | None:
        return self._source

    @property
    def is_ready(self) -> bool:
        return self._source is not None

    @property
    def sync_failures(self) -> list[SyncFailure]:
        return list(self._sync_failures)

    def clear_sync_failures(self) -> None:
        self._sync_failures.clear()

    def get(self, log_id: str) -> MealLog | None:
        """Return a log by id."""
        index = self._index_of(log_id)
        return None if index is None else self._logs[index]

    async def load(self, identity: str | None) -> LogSource:
        """Fill the collection for an identity from exactly one source.

        Anonymous local logs are migrated on every sign-in until a run
        completes; the remote copy only replaces that identity's own cache.
        """
        await self._queue.drain()
        self.undo_ledger.clear()
        self._identity = identity
        self._source = None
        if identity is None or self.remote is None:
            return self._install_local(None)
        try:
            remote_logs = await asyncio.to_thread(self.remote.list_meal_logs, identity)
        except Exception as exc:
            _logger.warning("Falling back to local meal logs: %s", exc)
            self._record_fetch_failure(exc)
            return self._install_local(identity)
        if self.migration is not None and read_logs(self.local_store):
            result = await self.migration.run(identity)
            if not result.complete:
                return self._install_local(None)
            try:
                remote_logs = await asyncio.to_thread(
                    self.remote.list_meal_logs, identity
                )
            except Exception as exc:
                _logger.warning("Reload after migration failed: %s", exc)
                self._record_fetch_failure(exc)
                remote_logs = sort_logs([*result.migrated, *remote_logs])
        return self._install_remote(remote_logs)

    def commit(self, log: MealLog) -> None:
        """Add a new log; local is written before returning, remote later."""
        _check_totals(log)
        if self._index_of(log.id) is not None:
            raise DuplicateLogError(f"Meal log {log.id} already exists")
        self._insert_sorted(log)
        self._persist_local()
        self._push_upsert(log)

    def update(self, log: MealLog) -> None:
        """Replace the log with the same id."""
        _check_totals(log)
        index = self._index_of(log.id)
        if index is None:
            raise LogNotFoundError(log.id)
        del self._logs[index]
        self._insert_sorted(log)
        self._persist_local()
        self._push_upsert(log)

    def delete(self, log_id: str) -> UndoEntry | None:
        """Remove a log and keep a restorable copy for the undo window."""
        index = self._index_of(log_id)
        if index is None:
            return None
        log = self._logs.pop(index)
        self._persist_local()
        self._push_delete(log_id)
        return self.undo_ledger.push(log, self.undo_window_seconds)

    def restore(self, entry: UndoEntry) -> MealLog | None:
        """Put a deleted log back; None when the undo window has passed."""
        log = self.undo_ledger.restore(entry)
        if log is None:
            return None
        if self._index_of(log.id) is not None:
            _logger.warning("Meal log %s already present; skipping restore", log.id)
            return None
        self._insert_sorted(log)
        self._persist_local()
        self._push_upsert(log)
        return log

    def duplicate(self, log_id: str) -> MealLog:
        """Log an existing meal again under a new id and the current time."""
        original = self.get(log_id)
        if original is None:
            raise LogNotFoundError(log_id)
        copy = original.model_copy(
            update={
                "id": str(uuid4()),
                "timestamp": int(datetime.now(tz=UTC).timestamp() * 1000),
            }
        )
        self.commit(copy)
        return copy

    async def drain(self) -> None:
        """Wait for queued remote operations to finish."""
        await self._queue.drain()

    def _install_local(self, owner: str | None) -> LogSource:
        self._logs = _consistent(read_logs(self.local_store, owner))
        self._local_owner = owner
        self._source = LogSource.LOCAL
        _logger.info("Loaded %s meal logs from local store", len(self._logs))
        return self._source

    def _install_remote(self, logs: list[MealLog]) -> LogSource:
        cached = {log.id: log for log in read_logs(self.local_store, self._identity)}
        installed: list[MealLog] = []
        repairs: list[MealLog] = []
        for log in sort_logs(logs):
            if _totals_match(log):
                installed.append(log)
                continue
            local_copy = cached.get(log.id)
            if local_copy is not None and _totals_match(local_copy):
                _logger.warning("Remote meal log %s is incomplete; re-sending", log.id)
                installed.append(local_copy)
                repairs.append(local_copy)
            else:
                _logger.warning("Dropping meal log %s with stale totals", log.id)
        self._logs = sort_logs(installed)
        self._local_owner = self._identity
        self._persist_local()
        self._source = LogSource.REMOTE
        for log in repairs:
            self._push_upsert(log)
        _logger.info("Loaded %s meal logs from remote store", len(self._logs))
        return self._source

    def _record_fetch_failure(self, exc: Exception) -> None:
        self.record_failure(
            SyncFailure(operation=SyncOperation.FETCH, log_id=None, message=str(exc))
        )

    def _persist_local(self) -> None:
        write_logs(self.local_store, self._logs, owner=self._local_owner)

    def _push_upsert(self, log: MealLog) -> None:
        remote, user_id = self.remote, self._identity
        if remote is None or user_id is None:
            return
        self._queue.submit(
            log.id,
            SyncOperation.UPSERT,
            lambda: remote.upsert_meal_log(user_id, log),
        )

    def _push_delete(self, log_id: str) -> None:
        remote, user_id = self.remote, self._identity
        if remote is None or user_id is None:
            return
        self._queue.submit(
            log_id,
            SyncOperation.DELETE,
            lambda: remote.delete_meal_log(user_id, log_id),
        )

    def record_failure(self, failure: SyncFailure) -> None:
        """Keep a sync notice; only the most recent ones are retained."""
        self._sync_failures.append(failure)
        del self._sync_failures[:-MAX_SYNC_FAILURES]
        if self.on_sync_failure is not None:
            self.on_sync_failure(failure)

    def _insert_sorted(self, log: MealLog) -> None:
        position = next(
            (
                index
                for index, existing in enumerate(self._logs)
                if existing.timestamp <= log.timestamp
            ),
            len(self._logs),
        )
        self._logs.insert(position, log)

    def _index_of(self, log_id: str) -> int | None:
        for index, log in enumerate(self._logs):
            if log.id == log_id:
                return index
        return None


def _totals_match(log: MealLog) -> bool:
    return macros_close(log.total_macros, sum_items(log.items))


def _consistent(logs: list[MealLog]) -> list[MealLog]:
    """Drop stored logs whose totals no longer match their items."""
    kept: list[MealLog] = []
    for log in logs:
        if _totals_match(log):
            kept.append(log)
        else:
            _logger.warning("Dropping meal log %s with stale totals", log.id)
    return kept


def _check_totals(log: MealLog) -> None:
    expected = sum_items(log.items)
    if not macros_close(log.total_macros, expected):
        raise InvariantViolation(
            f"Meal log {log.id} totals {log.total_macros} do not match items {expected}"
        )
