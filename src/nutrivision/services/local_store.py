"""Layout of the on-device key/value store."""

import logging
from collections.abc import Iterable
from typing import Protocol

from pydantic import ValidationError

from nutrivision.domain.meals import MealLog

LOGS_KEY = "logs"
USER_LOGS_KEY = "user_logs"
SETTINGS_KEY = "settings"
SAVED_MEALS_KEY = "saved_meals"
FAVORITES_KEY = "favorites"

_logger = logging.getLogger(__name__)


class LocalStore(Protocol):
    """Synchronous key to JSON value store that works offline."""

    def get(self, key: str) -> object | None:
        """Return the stored value or None."""

    def set(self, key: str, value: object) -> None:
        """Store a JSON-compatible value."""

    def remove(self, key: str) -> None:
        """Delete a key if present."""


def read_logs(store: LocalStore, owner: str | None = None) -> list[MealLog]:
    """Return one owner's logs newest first, skipping unreadable entries.

    Anonymous logs (owner None) live under `logs`; each signed-in identity
    has its own cached copy inside `user_logs`.
    """
    if owner is None:
        raw = store.get(LOGS_KEY)
    else:
        caches = store.get(USER_LOGS_KEY)
        raw = caches.get(owner) if isinstance(caches, dict) else None
    if not isinstance(raw, list):
        return []
    logs: list[MealLog] = []
    for entry in raw:
        try:
            logs.append(MealLog.model_validate(entry))
        except ValidationError as exc:
            _logger.warning("Skipping unreadable local meal log: %s", exc)
    return sort_logs(logs)


def write_logs(
    store: LocalStore, logs: Iterable[MealLog], owner: str | None = None
) -> None:
    """Persist one owner's whole log collection, leaving other owners alone."""
    payload = [log.to_json() for log in logs]
    if owner is None:
        store.set(LOGS_KEY, payload)
        return
    caches = store.get(USER_LOGS_KEY)
    if not isinstance(caches, dict):
        caches = {}
    caches[owner] = payload
    store.set(USER_LOGS_KEY, caches)


def clear_logs(store: LocalStore, owner: str | None = None) -> None:
    if owner is None:
        store.remove(LOGS_KEY)
        return
    caches = store.get(USER_LOGS_KEY)
    if isinstance(caches, dict) and caches.pop(owner, None) is not None:
        store.set(USER_LOGS_KEY, caches)


def sort_logs(logs: Iterable[MealLog]) -> list[MealLog]:
    """Drop repeated ids (first wins) and order by timestamp descending."""
    seen: set[str] = set()
    unique: list[MealLog] = []
    for log in logs:
        if log.id in seen:
            _logger.warning("Dropping duplicate meal log %s", log.id)
            continue
        seen.add(log.id)
        unique.append(log)
    return sorted(unique, key=lambda log: log.timestamp, reverse=True)
