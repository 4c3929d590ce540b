"""User settings service."""

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Protocol

from pydantic import ValidationError

from nutrivision.domain.errors import SyncFailure, SyncOperation
from nutrivision.domain.meals import UserSettings
from nutrivision.services.local_store import SETTINGS_KEY, LocalStore

_logger = logging.getLogger(__name__)


class UserSettingsRepository(Protocol):
    """Remote persistence interface for user settings."""

    def get_settings(self, user_id: str) -> UserSettings | None:
        """Return the user's settings if stored."""

    def save_settings(self, user_id: str, settings: UserSettings) -> None:
        """Persist the user's settings."""


@dataclass
class UserSettingsService:
    """Daily goals and preferences, kept locally and mirrored remotely."""

    local_store: LocalStore
    repository: UserSettingsRepository | None = None
    on_sync_failure: Callable[[SyncFailure], None] | None = None
    _settings: UserSettings = field(default_factory=UserSettings, init=False)

    @property
    def settings(self) -> UserSettings:
        return self._settings

    def read_local(self) -> UserSettings | None:
        """Return locally stored settings; missing fields take defaults."""
        raw = self.local_store.get(SETTINGS_KEY)
        if not isinstance(raw, dict):
            return None
        try:
            return UserSettings.model_validate(raw)
        except ValidationError as exc:
            _logger.warning("Ignoring unreadable local settings: %s", exc)
            return None

    async def load(self, identity: str | None) -> UserSettings:
        """Load settings, preferring the remote record when signed in."""
        if identity is not None and self.repository is not None:
            try:
                remote = await asyncio.to_thread(self.repository.get_settings, identity)
            except Exception as exc:
                remote = None
                self._report(exc)
            if remote is not None:
                self._settings = remote
                self.local_store.set(SETTINGS_KEY, remote.to_json())
                return remote
        self._settings = self.read_local() or UserSettings()
        return self._settings

    async def save(self, identity: str | None, settings: UserSettings) -> UserSettings:
        """Store settings locally, then remotely when signed in."""
        self._settings = settings
        self.local_store.set(SETTINGS_KEY, settings.to_json())
        if identity is not None and self.repository is not None:
            try:
                await asyncio.to_thread(
                    self.repository.save_settings, identity, settings
                )
            except Exception as exc:
                self._report(exc)
        return settings

    def _report(self, exc: Exception) -> None:
        _logger.warning("Remote settings sync failed: %s", exc)
        if self.on_sync_failure is not None:
            self.on_sync_failure(
                SyncFailure(
                    operation=SyncOperation.SETTINGS, log_id=None, message=str(exc)
                )
            )
