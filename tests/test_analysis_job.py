"""Tests for the analysis job state machine."""

import asyncio

import pytest

from nutrivision.domain.errors import (
    AnalysisBusyError,
    AnalysisError,
    AnalyzerError,
    FailureReason,
    InvalidTransitionError,
)
from nutrivision.domain.meals import Macros, MealLog, MealType
from nutrivision.services.analysis import (
    AnalysisJob,
    AnalysisSession,
    AnalysisStatus,
    FoodItemPatch,
    JobExit,
)
from nutrivision.services.macros import macros_close, sum_items
from nutrivision.services.meals import LogStore
from tests.conftest import JPEG_BYTES, FakeAnalyzer, make_item, make_log


class RecordingSink:
    def __init__(self) -> None:
        self.logs: list[MealLog] = []

    def commit(self, log: MealLog) -> None:
        self.logs.append(log)


def _job(
    analyzer: FakeAnalyzer, sink: RecordingSink | None = None, **kwargs
) -> AnalysisJob:
    return AnalysisJob(
        image_bytes=JPEG_BYTES,
        analyzer=analyzer,
        log_store=sink or RecordingSink(),
        **kwargs,
    )


def test_start_completes_with_items() -> None:
    analyzer = FakeAnalyzer(results=[[make_item("Rice"), make_item("Beans")]])
    job = _job(analyzer)

    status = asyncio.run(job.start())

    assert status is AnalysisStatus.COMPLETE
    assert [item.name for item in job.draft_items] == ["Rice", "Beans"]
    assert job.last_error is None


def test_start_with_no_items_fails() -> None:
    job = _job(FakeAnalyzer(results=[[]]))

    asyncio.run(job.start())

    assert job.status is AnalysisStatus.ERROR
    assert job.last_error is FailureReason.NO_ITEMS_DETECTED


def test_empty_image_fails_without_calling_analyzer() -> None:
    analyzer = FakeAnalyzer(results=[[make_item()]])
    job = AnalysisJob(image_bytes=b"", analyzer=analyzer, log_store=RecordingSink())

    asyncio.run(job.start())

    assert job.last_error is FailureReason.INVALID_IMAGE
    assert analyzer.calls == []


def test_analyzer_error_reason_is_kept() -> None:
    analyzer = FakeAnalyzer(results=[AnalyzerError(FailureReason.RATE_LIMITED)])
    job = _job(analyzer)

    asyncio.run(job.start())

    assert job.status is AnalysisStatus.ERROR
    assert job.last_error is FailureReason.RATE_LIMITED


def test_unexpected_exception_maps_to_analyzer_error() -> None:
    job = _job(FakeAnalyzer(results=[RuntimeError("boom")]))

    asyncio.run(job.start())

    assert job.last_error is FailureReason.ANALYZER_ERROR


def test_timeout_fails_job() -> None:
    async def run() -> AnalysisJob:
        analyzer = FakeAnalyzer(results=[[make_item()]], gate=asyncio.Event())
        job = _job(analyzer, timeout_seconds=0.01)
        await job.start()
        return job

    job = asyncio.run(run())

    assert job.status is AnalysisStatus.ERROR
    assert job.last_error is FailureReason.TIMEOUT


def test_start_twice_is_rejected() -> None:
    async def run() -> None:
        job = _job(FakeAnalyzer(results=[[make_item()]]))
        await job.start()
        with pytest.raises(InvalidTransitionError):
            await job.start()

    asyncio.run(run())


def test_retry_after_error_recovers() -> None:
    async def run() -> AnalysisJob:
        analyzer = FakeAnalyzer(
            results=[AnalyzerError(FailureReason.UNAVAILABLE), [make_item("Soup")]]
        )
        job = _job(analyzer)
        await job.start()
        assert job.status is AnalysisStatus.ERROR
        await job.retry()
        return job

    job = asyncio.run(run())

    assert job.status is AnalysisStatus.COMPLETE
    assert job.draft_items[0].name == "Soup"
    assert job.last_error is None


def test_retry_from_complete_is_rejected() -> None:
    async def run() -> None:
        job = _job(FakeAnalyzer(results=[[make_item()]]))
        await job.start()
        with pytest.raises(InvalidTransitionError):
            await job.retry()

    asyncio.run(run())


def test_cancel_during_analysis_discards_late_result() -> None:
    async def run() -> tuple[AnalysisJob, RecordingSink]:
        gate = asyncio.Event()
        analyzer = FakeAnalyzer(results=[[make_item("Late")]], gate=gate)
        sink = RecordingSink()
        job = _job(analyzer, sink)
        task = asyncio.create_task(job.start())
        await asyncio.sleep(0)
        assert job.in_flight
        job.cancel()
        gate.set()
        await task
        return job, sink

    job, sink = asyncio.run(run())

    assert job.exit is JobExit.DISMISSED
    assert job.draft_items == ()
    assert sink.logs == []


def test_correct_replaces_draft_on_success() -> None:
    async def run() -> AnalysisJob:
        analyzer = FakeAnalyzer(results=[[make_item("Pasta")], [make_item("Rice")]])
        job = _job(analyzer)
        await job.start()
        await job.correct("this is rice, not pasta")
        return job

    job = asyncio.run(run())

    assert [item.name for item in job.draft_items] == ["Rice"]
    assert job.status is AnalysisStatus.COMPLETE


@pytest.mark.parametrize(
    "failure",
    [[], AnalyzerError(FailureReason.INVALID_RESPONSE), RuntimeError("boom")],
)
def test_failed_correction_keeps_draft(failure: object) -> None:
    async def run() -> tuple[AnalysisJob, AnalysisError]:
        analyzer = FakeAnalyzer(results=[[make_item("Pasta")], failure])
        job = _job(analyzer)
        await job.start()
        with pytest.raises(AnalysisError) as excinfo:
            await job.correct("add a salad")
        return job, excinfo.value

    job, error = asyncio.run(run())

    assert [item.name for item in job.draft_items] == ["Pasta"]
    assert job.status is AnalysisStatus.COMPLETE
    assert job.last_error is error.reason


def test_blank_correction_is_rejected() -> None:
    async def run() -> None:
        job = _job(FakeAnalyzer(results=[[make_item()]]))
        await job.start()
        with pytest.raises(ValueError):
            await job.correct("   ")

    asyncio.run(run())


def test_operations_while_correction_in_flight_are_rejected() -> None:
    async def run() -> AnalysisJob:
        gate = asyncio.Event()
        analyzer = FakeAnalyzer(results=[[make_item("Pasta")], [make_item("Rice")]])
        job = _job(analyzer)
        await job.start()
        analyzer.gate = gate
        task = asyncio.create_task(job.correct("it is rice"))
        await asyncio.sleep(0)
        with pytest.raises(AnalysisBusyError):
            await job.correct("it is bread")
        with pytest.raises(AnalysisBusyError):
            job.commit(MealType.LUNCH)
        with pytest.raises(AnalysisBusyError):
            job.add_item()
        gate.set()
        await task
        return job

    job = asyncio.run(run())

    assert [item.name for item in job.draft_items] == ["Rice"]


def test_cancel_during_correction_keeps_old_result_out() -> None:
    async def run() -> AnalysisJob:
        gate = asyncio.Event()
        analyzer = FakeAnalyzer(results=[[make_item("Pasta")], [make_item("Rice")]])
        job = _job(analyzer)
        await job.start()
        analyzer.gate = gate
        task = asyncio.create_task(job.correct("it is rice"))
        await asyncio.sleep(0)
        job.cancel()
        gate.set()
        await task
        return job

    job = asyncio.run(run())

    assert job.exit is JobExit.DISMISSED
    assert [item.name for item in job.draft_items] == ["Pasta"]


def test_edit_serving_rescales_and_explicit_macros_win() -> None:
    async def run() -> AnalysisJob:
        rice = make_item("Rice", calories=130, serving_size="100g")
        job = _job(FakeAnalyzer(results=[[rice]]))
        await job.start()
        job.edit_item(0, FoodItemPatch(serving_size="200g"))
        assert job.draft_items[0].macros.calories == pytest.approx(260)
        job.edit_item(0, FoodItemPatch(name="Brown rice", macros=Macros(calories=250)))
        return job

    job = asyncio.run(run())

    item = job.draft_items[0]
    assert item.name == "Brown rice"
    assert item.serving_size == "200g"
    assert item.macros == Macros(calories=250)


def test_add_and_remove_items() -> None:
    async def run() -> AnalysisJob:
        job = _job(FakeAnalyzer(results=[[make_item("Rice")]]))
        await job.start()
        index = job.add_item()
        assert index == 1
        assert job.draft_items[1].serving_size == "1 serving"
        job.remove_item(0)
        with pytest.raises(IndexError):
            job.remove_item(5)
        return job

    job = asyncio.run(run())

    assert len(job.draft_items) == 1
    assert job.draft_items[0].macros == Macros()


def test_commit_builds_log_with_matching_totals() -> None:
    async def run() -> tuple[AnalysisJob, RecordingSink, MealLog]:
        sink = RecordingSink()
        job = _job(
            FakeAnalyzer(results=[[make_item("Rice"), make_item("Egg", calories=78)]]),
            sink,
            image_ref="photos/1.jpg",
        )
        await job.start()
        log = job.commit(MealType.DINNER, note="  tasty ")
        return job, sink, log

    job, sink, log = asyncio.run(run())

    assert sink.logs == [log]
    assert log.id == job.id
    assert log.timestamp == job.created_at
    assert log.image_ref == "photos/1.jpg"
    assert log.meal_type is MealType.DINNER
    assert log.note == "tasty"
    assert macros_close(log.total_macros, sum_items(log.items))
    assert job.exit is JobExit.COMMITTED
    with pytest.raises(InvalidTransitionError):
        job.commit(MealType.DINNER)


def test_commit_of_empty_draft_is_rejected() -> None:
    async def run() -> None:
        job = _job(FakeAnalyzer(results=[[make_item()]]))
        await job.start()
        job.remove_item(0)
        with pytest.raises(InvalidTransitionError):
            job.commit(MealType.SNACK)

    asyncio.run(run())


def test_session_capture_replaces_unresolved_job() -> None:
    async def run() -> tuple[AnalysisSession, object, object]:
        gate = asyncio.Event()
        analyzer = FakeAnalyzer(results=[[make_item("First")]], gate=gate)
        sink = RecordingSink()
        session = AnalysisSession(analyzer=analyzer, log_store=sink)
        first_task = asyncio.create_task(session.capture(JPEG_BYTES))
        while not analyzer.calls:
            await asyncio.sleep(0)
        first = session.current
        analyzer.gate = None
        analyzer.results.append([make_item("Second")])
        second = await session.capture(JPEG_BYTES)
        gate.set()
        await first_task
        return session, first, second

    session, first, second = asyncio.run(run())

    assert first.exit is JobExit.DISMISSED
    assert session.current is second
    assert [item.name for item in second.draft_items] == ["Second"]


def test_session_commit_clears_current() -> None:
    async def run() -> tuple[AnalysisSession, RecordingSink]:
        sink = RecordingSink()
        session = AnalysisSession(
            analyzer=FakeAnalyzer(results=[[make_item()]]), log_store=sink
        )
        await session.capture(JPEG_BYTES)
        session.commit(MealType.BREAKFAST)
        return session, sink

    session, sink = asyncio.run(run())

    assert session.current is None
    assert len(sink.logs) == 1
    with pytest.raises(LookupError):
        session.require_job()


def test_banana_snack_lands_first_in_the_log(local_store) -> None:
    banana = make_item(
        "Banana", calories=89, protein=1.1, carbs=23, fat=0.3, serving_size="1 medium"
    )

    async def run() -> tuple[LogStore, MealLog]:
        log_store = LogStore(local_store=local_store)
        await log_store.load(None)
        log_store.commit(make_log(1_000))
        session = AnalysisSession(
            analyzer=FakeAnalyzer(results=[[banana]]), log_store=log_store
        )
        await session.capture(JPEG_BYTES)
        return log_store, session.commit(MealType.SNACK)

    log_store, log = asyncio.run(run())

    assert log.total_macros == Macros(calories=89, protein=1.1, carbs=23, fat=0.3)
    assert log_store.logs[0] == log
    assert log.meal_type is MealType.SNACK
