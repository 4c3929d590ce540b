"""Analysis job state machine for photo-based logging."""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Protocol
from uuid import uuid4

from nutrivision.domain.errors import (
    AnalysisBusyError,
    AnalysisError,
    AnalyzerError,
    FailureReason,
    InvalidTransitionError,
)
from nutrivision.domain.meals import AiProvider, FoodItem, Macros, MealLog, MealType
from nutrivision.services.macros import resize_item, sum_items

_logger = logging.getLogger(__name__)


class AnalyzerClient(Protocol):
    """Interface for the AI food analyzer."""

    async def analyze(self, image_bytes: bytes, provider: AiProvider) -> list[FoodItem]:
        """Detect food items in an image."""

    async def correct(
        self,
        image_bytes: bytes,
        current_items: list[FoodItem],
        instruction: str,
        provider: AiProvider,
    ) -> list[FoodItem]:
        """Re-derive food items from user feedback."""

    async def search(self, query: str, provider: AiProvider) -> list[FoodItem]:
        """Look up food items by name for manual entry."""


class LogSink(Protocol):
    """Receiver of committed meal logs."""

    def commit(self, log: MealLog) -> None:
        """Store a newly committed meal log."""


class AnalysisStatus(str, Enum):
    """States of an analysis job."""

    ANALYZING = "analyzing"
    COMPLETE = "complete"
    ERROR = "error"


class JobExit(str, Enum):
    """How a job left the state machine."""

    DISMISSED = "dismissed"
    COMMITTED = "committed"


@dataclass(frozen=True)
class FoodItemPatch:
    """User edits to a draft item; None leaves a field unchanged."""

    name: str | None = None
    serving_size: str | None = None
    macros: Macros | None = None
    micros: dict[str, float] | None = None


def _now_millis() -> int:
    return int(datetime.now(tz=UTC).timestamp() * 1000)


@dataclass
class AnalysisJob:
    """One captured image's trip through analysis, correction and commit.

    Every analyzer call captures the job's generation token; cancel() bumps
    the token, so a result that arrives afterwards is discarded instead of
    overwriting the draft.
    """

    image_bytes: bytes
    analyzer: AnalyzerClient
    log_store: LogSink
    provider: AiProvider = AiProvider.OPENAI
    timeout_seconds: float | None = 60.0
    image_ref: str | None = None
    id: str = field(default_factory=lambda: str(uuid4()))
    created_at: int = field(default_factory=_now_millis)
    _status: AnalysisStatus = field(default=AnalysisStatus.ANALYZING, init=False)
    _draft: list[FoodItem] = field(default_factory=list, init=False)
    _last_error: FailureReason | None = field(default=None, init=False)
    _exit: JobExit | None = field(default=None, init=False)
    _started: bool = field(default=False, init=False)
    _generation: int = field(default=0, init=False, repr=False)
    _call: "asyncio.Future[list[FoodItem]] | None" = field(
        default=None, init=False, repr=False
    )

    @property
    def status(self) -> AnalysisStatus:
        return self._status

    @property
    def draft_items(self) -> tuple[FoodItem, ...]:
        return tuple(self._draft)

    @property
    def last_error(self) -> FailureReason | None:
        return self._last_error

    @property
    def exit(self) -> JobExit | None:
        return self._exit

    @property
    def is_open(self) -> bool:
        """True until the job is dismissed or committed."""
        return self._exit is None

    @property
    def in_flight(self) -> bool:
        return self._call is not None

    async def start(self) -> AnalysisStatus:
        """Run the initial analysis of the captured image."""
        self._ensure_open()
        if self._started:
            raise InvalidTransitionError("Analysis already started")
        self._started = True
        return await self._analyze()

    async def retry(self) -> AnalysisStatus:
        """Re-run analysis on the same image after a failure."""
        self._ensure_open()
        self._ensure_idle()
        if self._status is not AnalysisStatus.ERROR:
            raise InvalidTransitionError(f"Cannot retry from {self._status.value}")
        return await self._analyze()

    async def correct(self, instruction: str) -> tuple[FoodItem, ...]:
        """Ask the analyzer to revise the draft; all-or-nothing."""
        self._ensure_editable()
        text = instruction.strip()
        if not text:
            raise ValueError("Correction instruction is empty")
        current = list(self._draft)
        result = await self._call_analyzer(
            lambda: self.analyzer.correct(
                self.image_bytes, current, text, self.provider
            )
        )
        if result is None:
            return self.draft_items
        if isinstance(result, FailureReason) or not result:
            reason = (
                result
                if isinstance(result, FailureReason)
                else FailureReason.NO_ITEMS_DETECTED
            )
            self._last_error = reason
            raise AnalysisError(reason)
        self._draft = result
        self._last_error = None
        return self.draft_items

    def edit_item(self, index: int, patch: FoodItemPatch) -> FoodItem:
        """Apply user edits to one draft item.

        Only a serving size change recomputes anything: the item's macros are
        rescaled when the unit is unchanged. Explicit macros in the patch win.
        """
        self._ensure_editable()
        item = self._draft[self._check_index(index)]
        if patch.serving_size is not None:
            item = resize_item(item, patch.serving_size)
        updates: dict[str, object] = {}
        if patch.name is not None:
            updates["name"] = patch.name
        if patch.macros is not None:
            updates["macros"] = patch.macros
        if patch.micros is not None:
            updates["micros"] = patch.micros
        if updates:
            item = FoodItem.model_validate({**dict(item), **updates})
        self._draft[index] = item
        return item

    def add_item(self, item: FoodItem | None = None) -> int:
        """Append an item (blank by default) and return its index."""
        self._ensure_editable()
        self._draft.append(item or FoodItem())
        return len(self._draft) - 1

    def remove_item(self, index: int) -> FoodItem:
        """Remove and return a draft item."""
        self._ensure_editable()
        return self._draft.pop(self._check_index(index))

    def cancel(self) -> None:
        """Abandon any in-flight call and discard the job."""
        if self._exit is not None:
            return
        self._generation += 1
        if self._call is not None:
            self._call.cancel()
            self._call = None
        self._exit = JobExit.DISMISSED

    def commit(self, meal_type: MealType, note: str | None = None) -> MealLog:
        """Turn the draft into a meal log and hand it to the log store."""
        self._ensure_editable()
        if not self._draft:
            raise InvalidTransitionError("Cannot commit an empty draft")
        items = tuple(self._draft)
        log = MealLog(
            id=self.id,
            timestamp=self.created_at,
            image_ref=self.image_ref,
            items=items,
            total_macros=sum_items(items),
            meal_type=meal_type,
            note=(note or "").strip() or None,
        )
        self.log_store.commit(log)
        self._exit = JobExit.COMMITTED
        return log

    async def _analyze(self) -> AnalysisStatus:
        self._status = AnalysisStatus.ANALYZING
        self._last_error = None
        if not self.image_bytes:
            self._fail(FailureReason.INVALID_IMAGE)
            return self._status
        result = await self._call_analyzer(
            lambda: self.analyzer.analyze(self.image_bytes, self.provider)
        )
        if result is None:
            return self._status
        if isinstance(result, FailureReason):
            self._fail(result)
        elif not result:
            self._fail(FailureReason.NO_ITEMS_DETECTED)
        else:
            self._draft = result
            self._status = AnalysisStatus.COMPLETE
        return self._status

    async def _call_analyzer(
        self, call: Callable[[], Awaitable[list[FoodItem]]]
    ) -> list[FoodItem] | FailureReason | None:
        """Run one bounded analyzer call; None means the result is stale."""
        token = self._generation
        task = asyncio.ensure_future(self._bounded(call))
        self._call = task
        try:
            items = await task
        except asyncio.CancelledError:
            current = asyncio.current_task()
            if current is not None and current.cancelling():
                raise
            return None
        except TimeoutError:
            result: list[FoodItem] | FailureReason = FailureReason.TIMEOUT
        except AnalyzerError as exc:
            result = exc.reason
        except Exception:
            _logger.exception("Analyzer call failed for job %s", self.id)
            result = FailureReason.ANALYZER_ERROR
        else:
            result = list(items)
        finally:
            if self._call is task:
                self._call = None
        if token != self._generation:
            _logger.info("Discarding stale analyzer result for job %s", self.id)
            return None
        return result

    async def _bounded(
        self, call: Callable[[], Awaitable[list[FoodItem]]]
    ) -> list[FoodItem]:
        return await asyncio.wait_for(call(), timeout=self.timeout_seconds)

    def _fail(self, reason: FailureReason) -> None:
        self._status = AnalysisStatus.ERROR
        self._last_error = reason
        _logger.info("Analysis job %s failed: %s", self.id, reason.value)

    def _ensure_open(self) -> None:
        if self._exit is not None:
            raise InvalidTransitionError(f"Job already {self._exit.value}")

    def _ensure_idle(self) -> None:
        if self._call is not None:
            raise AnalysisBusyError("An analyzer call is already in flight")

    def _ensure_editable(self) -> None:
        self._ensure_open()
        self._ensure_idle()
        if self._status is not AnalysisStatus.COMPLETE:
            raise InvalidTransitionError(
                f"Draft is not editable while {self._status.value}"
            )

    def _check_index(self, index: int) -> int:
        if not 0 <= index < len(self._draft):
            raise IndexError(f"No draft item at index {index}")
        return index


@dataclass
class AnalysisSession:
    """Holds the single live analysis job of a user session."""

    analyzer: AnalyzerClient
    log_store: LogSink
    timeout_seconds: float | None = 60.0
    provider: AiProvider = AiProvider.OPENAI
    _current: AnalysisJob | None = field(default=None, init=False)

    @property
    def current(self) -> AnalysisJob | None:
        return self._current

    def require_job(self) -> AnalysisJob:
        """Return the current job or raise LookupError."""
        if self._current is None:
            raise LookupError("No analysis in progress")
        return self._current

    async def capture(
        self, image_bytes: bytes, image_ref: str | None = None
    ) -> AnalysisJob:
        """Start analyzing a new image, replacing any unresolved job."""
        previous = self._current
        if previous is not None and previous.is_open:
            _logger.info("Replacing unresolved analysis job %s", previous.id)
            previous.cancel()
        job = AnalysisJob(
            image_bytes=image_bytes,
            analyzer=self.analyzer,
            log_store=self.log_store,
            provider=self.provider,
            timeout_seconds=self.timeout_seconds,
            image_ref=image_ref,
        )
        self._current = job
        await job.start()
        return job

    def dismiss(self) -> None:
        """Discard the current job, if any."""
        if self._current is not None:
            self._current.cancel()
            self._current = None

    def commit(self, meal_type: MealType, note: str | None = None) -> MealLog:
        """Commit the current job's draft."""
        log = self.require_job().commit(meal_type, note)
        self._current = None
        return log

    async def search(self, query: str) -> list[FoodItem]:
        """Look up foods for manual entry."""
        try:
            return await self.analyzer.search(query, self.provider)
        except AnalyzerError as exc:
            raise AnalysisError(exc.reason) from exc
        except Exception as exc:
            _logger.exception("Food search failed for %r", query)
            raise AnalysisError(FailureReason.ANALYZER_ERROR) from exc
