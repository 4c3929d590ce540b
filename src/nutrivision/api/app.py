"""FastAPI application factory."""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Literal

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.responses import JSONResponse

from nutrivision.api.models import (
    AddItemRequest,
    CommitRequest,
    CorrectionRequest,
    ItemPatchRequest,
    LogUpdateRequest,
    RestoreRequest,
    SavedMealRequest,
    SessionRequest,
)
from nutrivision.app_logging import configure_logging
from nutrivision.containers import AppContainer
from nutrivision.domain.errors import (
    AnalysisError,
    InvalidTransitionError,
    InvariantViolation,
    LogNotFoundError,
)
from nutrivision.domain.meals import FoodItem, MealLog, UserSettings
from nutrivision.services.analysis import AnalysisJob, FoodItemPatch
from nutrivision.services.macros import sum_items
from nutrivision.services.stats import goal_progress
from nutrivision.services.undo import UndoEntry

_UNPROCESSABLE = 422


def create_app(container: AppContainer) -> FastAPI:  # noqa: PLR0915
    """Create a FastAPI app configured with dependencies."""
    configure_logging()
    logger = logging.getLogger(__name__)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        await app.state.container.account_service.sign_in(None)
        yield
        await app.state.container.close_resources()

    app = FastAPI(lifespan=lifespan)
    app.state.container = container

    @app.exception_handler(InvalidTransitionError)
    async def invalid_transition(
        _request: Request, exc: InvalidTransitionError
    ) -> JSONResponse:
        return JSONResponse(
            status_code=status.HTTP_409_CONFLICT, content={"detail": str(exc)}
        )

    @app.exception_handler(AnalysisError)
    async def analysis_failed(_request: Request, exc: AnalysisError) -> JSONResponse:
        return JSONResponse(
            status_code=_UNPROCESSABLE, content={"reason": exc.reason.value}
        )

    @app.exception_handler(InvariantViolation)
    async def invariant_violated(
        _request: Request, exc: InvariantViolation
    ) -> JSONResponse:
        logger.warning("Rejected request: %s", exc)
        return JSONResponse(status_code=_UNPROCESSABLE, content={"detail": str(exc)})

    @app.exception_handler(LookupError)
    async def not_found(_request: Request, exc: LookupError) -> JSONResponse:
        return JSONResponse(
            status_code=status.HTTP_404_NOT_FOUND, content={"detail": str(exc)}
        )

    @app.get("/health")
    async def health() -> dict[str, str]:
        """Simple health check endpoint."""
        return {"status": "ok"}

    @app.post("/session")
    async def sign_in(body: SessionRequest, request: Request) -> dict[str, object]:
        """Switch the active identity and load its data."""
        state_container: AppContainer = request.app.state.container
        source = await state_container.account_service.sign_in(body.identity)
        return {
            "identity": body.identity,
            "source": source.value,
            "logCount": len(state_container.log_store.logs),
            "settings": state_container.user_settings_service.settings.to_json(),
        }

    @app.post("/analysis")
    async def capture(
        request: Request, image_ref: str | None = None
    ) -> dict[str, object]:
        """Analyze the raw image in the request body."""
        state_container: AppContainer = request.app.state.container
        image_bytes = await request.body()
        job = await state_container.analysis_session.capture(image_bytes, image_ref)
        return _job_view(job)

    @app.get("/analysis")
    async def current_analysis(request: Request) -> dict[str, object]:
        """Return the analysis in progress."""
        state_container: AppContainer = request.app.state.container
        return _job_view(state_container.analysis_session.require_job())

    @app.post("/analysis/retry")
    async def retry_analysis(request: Request) -> dict[str, object]:
        """Re-run a failed analysis."""
        state_container: AppContainer = request.app.state.container
        job = state_container.analysis_session.require_job()
        await job.retry()
        return _job_view(job)

    @app.post("/analysis/correct")
    async def correct_analysis(
        body: CorrectionRequest, request: Request
    ) -> dict[str, object]:
        """Apply a free-text correction to the draft."""
        state_container: AppContainer = request.app.state.container
        job = state_container.analysis_session.require_job()
        try:
            await job.correct(body.instruction)
        except ValueError as exc:
            raise HTTPException(status_code=_UNPROCESSABLE, detail=str(exc)) from exc
        return _job_view(job)

    @app.post("/analysis/items")
    async def add_item(body: AddItemRequest, request: Request) -> dict[str, object]:
        """Append an item to the draft."""
        state_container: AppContainer = request.app.state.container
        job = state_container.analysis_session.require_job()
        index = job.add_item(body.item)
        return {"index": index, "analysis": _job_view(job)}

    @app.patch("/analysis/items/{index}")
    async def edit_item(
        index: int, body: ItemPatchRequest, request: Request
    ) -> dict[str, object]:
        """Edit one draft item."""
        state_container: AppContainer = request.app.state.container
        job = state_container.analysis_session.require_job()
        job.edit_item(
            index,
            FoodItemPatch(
                name=body.name,
                serving_size=body.serving_size,
                macros=body.macros,
                micros=body.micros,
            ),
        )
        return _job_view(job)

    @app.delete("/analysis/items/{index}")
    async def remove_item(index: int, request: Request) -> dict[str, object]:
        """Remove one draft item."""
        state_container: AppContainer = request.app.state.container
        job = state_container.analysis_session.require_job()
        job.remove_item(index)
        return _job_view(job)

    @app.post("/analysis/commit", status_code=status.HTTP_201_CREATED)
    async def commit_analysis(
        body: CommitRequest, request: Request
    ) -> dict[str, object]:
        """Turn the draft into a meal log."""
        state_container: AppContainer = request.app.state.container
        log = state_container.analysis_session.commit(body.meal_type, body.note)
        return log.to_json()

    @app.delete("/analysis")
    async def dismiss_analysis(request: Request) -> dict[str, str]:
        """Discard the analysis in progress."""
        state_container: AppContainer = request.app.state.container
        state_container.analysis_session.dismiss()
        return {"status": "dismissed"}

    @app.get("/foods/search")
    async def search_foods(q: str, request: Request) -> dict[str, object]:
        """Look foods up by name for manual entry."""
        state_container: AppContainer = request.app.state.container
        items = await state_container.analysis_session.search(q)
        return {"items": [item.to_json() for item in items]}

    @app.get("/logs")
    async def list_logs(request: Request) -> dict[str, object]:
        """Return committed logs newest first and pending sync notices."""
        state_container: AppContainer = request.app.state.container
        log_store = state_container.log_store
        return {
            "logs": [log.to_json() for log in log_store.logs],
            "source": log_store.source.value if log_store.source else None,
            "syncFailures": [
                {
                    "operation": failure.operation.value,
                    "logId": failure.log_id,
                    "message": failure.message,
                }
                for failure in log_store.sync_failures
            ],
        }

    @app.put("/logs/{log_id}")
    async def update_log(
        log_id: str, body: LogUpdateRequest, request: Request
    ) -> dict[str, object]:
        """Replace a log's items, slot and note."""
        state_container: AppContainer = request.app.state.container
        existing = state_container.log_store.get(log_id)
        if existing is None:
            raise LogNotFoundError(log_id)
        updated = MealLog(
            id=existing.id,
            timestamp=existing.timestamp,
            image_ref=existing.image_ref,
            items=tuple(body.items),
            total_macros=sum_items(body.items),
            meal_type=body.meal_type,
            note=(body.note or "").strip() or None,
        )
        state_container.log_store.update(updated)
        return updated.to_json()

    @app.delete("/logs/{log_id}")
    async def delete_log(log_id: str, request: Request) -> dict[str, object]:
        """Delete a log; it can be restored until the undo window ends."""
        state_container: AppContainer = request.app.state.container
        entry = state_container.log_store.delete(log_id)
        if entry is None:
            raise LogNotFoundError(log_id)
        return {"undo": _undo_view(entry)}

    @app.post("/logs/{log_id}/duplicate", status_code=status.HTTP_201_CREATED)
    async def duplicate_log(log_id: str, request: Request) -> dict[str, object]:
        """Log the same meal again now."""
        state_container: AppContainer = request.app.state.container
        return state_container.log_store.duplicate(log_id).to_json()

    @app.post("/undo/restore")
    async def restore_log(body: RestoreRequest, request: Request) -> dict[str, object]:
        """Bring back a deleted log if its undo window is still open."""
        state_container: AppContainer = request.app.state.container
        entry = state_container.undo_ledger.get(body.undo_id)
        restored = (
            state_container.log_store.restore(entry) if entry is not None else None
        )
        if restored is None:
            return {"restored": False}
        return {"restored": True, "log": restored.to_json()}

    @app.get("/stats/today")
    async def stats_today(request: Request, tz: str = "UTC") -> dict[str, object]:
        """Return today's totals and progress towards the daily goals."""
        state_container: AppContainer = request.app.state.container
        totals = state_container.stats_service.get_today(tz)
        progress = goal_progress(
            totals.macros, state_container.user_settings_service.settings
        )
        return {
            "day": totals.day.isoformat(),
            "mealCount": totals.meal_count,
            "totals": totals.macros.to_json(),
            "progress": {
                "calories": progress.calories,
                "protein": progress.protein,
                "carbs": progress.carbs,
                "fat": progress.fat,
            },
            "goalsReached": progress.reached(),
        }

    @app.get("/saved-meals")
    async def list_saved_meals(
        request: Request,
        order: Literal["created", "most_used", "recent"] = "created",
        limit: int = 5,
    ) -> dict[str, object]:
        """Return saved meal templates."""
        service = request.app.state.container.saved_meal_service
        if order == "most_used":
            meals = service.most_used(limit)
        elif order == "recent":
            meals = service.recent(limit)
        else:
            meals = service.list_meals()
        return {"meals": [meal.to_json() for meal in meals]}

    @app.post("/saved-meals", status_code=status.HTTP_201_CREATED)
    async def create_saved_meal(
        body: SavedMealRequest, request: Request
    ) -> dict[str, object]:
        """Save a reusable meal template."""
        service = request.app.state.container.saved_meal_service
        try:
            meal = service.save_meal(body.name, body.items, body.emoji)
        except ValueError as exc:
            raise HTTPException(status_code=_UNPROCESSABLE, detail=str(exc)) from exc
        return meal.to_json()

    @app.delete("/saved-meals/{meal_id}")
    async def delete_saved_meal(meal_id: str, request: Request) -> dict[str, str]:
        """Forget a saved meal template."""
        service = request.app.state.container.saved_meal_service
        if not service.delete_meal(meal_id):
            raise KeyError(meal_id)
        return {"status": "deleted"}

    @app.post("/saved-meals/{meal_id}/log", status_code=status.HTTP_201_CREATED)
    async def log_saved_meal(
        meal_id: str, body: CommitRequest, request: Request
    ) -> dict[str, object]:
        """Log a saved meal now."""
        service = request.app.state.container.saved_meal_service
        return service.log_meal(meal_id, body.meal_type, body.note).to_json()

    @app.get("/favorites")
    async def list_favorites(
        request: Request, order: Literal["added", "usage"] = "added"
    ) -> dict[str, object]:
        """Return favorite foods."""
        service = request.app.state.container.favorites_service
        favorites = service.by_usage() if order == "usage" else service.list_favorites()
        return {"favorites": [favorite.to_json() for favorite in favorites]}

    @app.post("/favorites")
    async def add_favorite(body: FoodItem, request: Request) -> dict[str, object]:
        """Star a food; starring a known name returns the existing entry."""
        service = request.app.state.container.favorites_service
        try:
            favorite = service.add(body)
        except ValueError as exc:
            raise HTTPException(status_code=_UNPROCESSABLE, detail=str(exc)) from exc
        return favorite.to_json()

    @app.delete("/favorites/{favorite_id}")
    async def remove_favorite(favorite_id: str, request: Request) -> dict[str, str]:
        """Unstar a food."""
        service = request.app.state.container.favorites_service
        if not service.remove(favorite_id):
            raise KeyError(favorite_id)
        return {"status": "deleted"}

    @app.post("/analysis/items/favorites/{favorite_id}")
    async def add_favorite_item(
        favorite_id: str, request: Request
    ) -> dict[str, object]:
        """Append a favorite food to the draft and count the use."""
        state_container: AppContainer = request.app.state.container
        job = state_container.analysis_session.require_job()
        favorite = state_container.favorites_service.get(favorite_id)
        if favorite is None:
            raise KeyError(favorite_id)
        index = job.add_item(favorite.as_food_item())
        state_container.favorites_service.mark_used(favorite_id)
        return {"index": index, "analysis": _job_view(job)}

    @app.get("/settings")
    async def get_settings(request: Request) -> dict[str, object]:
        """Return the active user's settings."""
        state_container: AppContainer = request.app.state.container
        return state_container.user_settings_service.settings.to_json()

    @app.put("/settings")
    async def put_settings(body: UserSettings, request: Request) -> dict[str, object]:
        """Replace the active user's settings."""
        state_container: AppContainer = request.app.state.container
        saved = await state_container.account_service.update_settings(body)
        return saved.to_json()

    return app


def _job_view(job: AnalysisJob) -> dict[str, object]:
    return {
        "id": job.id,
        "status": job.status.value,
        "exit": job.exit.value if job.exit else None,
        "createdAt": job.created_at,
        "imageRef": job.image_ref,
        "draftItems": [item.to_json() for item in job.draft_items],
        "draftTotals": sum_items(job.draft_items).to_json(),
        "lastError": job.last_error.value if job.last_error else None,
    }


def _undo_view(entry: UndoEntry) -> dict[str, object]:
    return {
        "id": entry.id,
        "logId": entry.log.id,
        "expiresAt": entry.expires_at.isoformat(),
    }
