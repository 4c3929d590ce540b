"""Per-key serialization of fire-and-forget remote operations."""

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field

from nutrivision.domain.errors import SyncFailure, SyncOperation

_logger = logging.getLogger(__name__)


@dataclass
class RemoteSyncQueue:
    """Runs blocking remote calls in worker threads, one at a time per key.

    A delete submitted after an upsert for the same log id always reaches the
    remote store after it, whatever the network timing.
    """

    on_failure: Callable[[SyncFailure], None] | None = None
    _tails: dict[str, "asyncio.Task[None]"] = field(default_factory=dict, init=False)

    @property
    def pending(self) -> int:
        return len(self._tails)

    def submit(
        self,
        key: str,
        operation: SyncOperation,
        func: Callable[[], None],
    ) -> "asyncio.Task[None]":
        """Schedule func after every earlier operation for the same key."""
        previous = self._tails.get(key)
        task = asyncio.get_running_loop().create_task(
            self._run(previous, key, operation, func)
        )
        self._tails[key] = task
        task.add_done_callback(lambda done: self._forget(key, done))
        return task

    async def drain(self) -> None:
        """Wait until every submitted operation has finished."""
        while self._tails:
            await asyncio.gather(*self._tails.values(), return_exceptions=True)

    async def _run(
        self,
        previous: "asyncio.Task[None] | None",
        key: str,
        operation: SyncOperation,
        func: Callable[[], None],
    ) -> None:
        if previous is not None:
            await asyncio.wait([previous])
        try:
            await asyncio.to_thread(func)
        except Exception as exc:
            _logger.warning(
                "Remote %s failed for %s: %s", operation.value, key, exc
            )
            if self.on_failure is not None:
                self.on_failure(
                    SyncFailure(operation=operation, log_id=key, message=str(exc))
                )

    def _forget(self, key: str, task: "asyncio.Task[None]") -> None:
        if self._tails.get(key) is task:
            del self._tails[key]
