"""Active identity and the per-user state that follows it."""

import logging
from dataclasses import dataclass

from nutrivision.domain.meals import UserSettings
from nutrivision.services.analysis import AnalysisSession
from nutrivision.services.meals import LogSource, LogStore
from nutrivision.services.user_settings import UserSettingsService

_logger = logging.getLogger(__name__)


@dataclass
class AccountService:
    """Switches identity and keeps settings, logs and analysis in step."""

    log_store: LogStore
    settings_service: UserSettingsService
    analysis_session: AnalysisSession

    @property
    def identity(self) -> str | None:
        return self.log_store.identity

    async def sign_in(self, identity: str | None) -> LogSource:
        """Load everything for identity; None means signed out."""
        self.analysis_session.dismiss()
        self.log_store.clear_sync_failures()
        settings = await self.settings_service.load(identity)
        self.analysis_session.provider = settings.ai_provider
        source = await self.log_store.load(identity)
        _logger.info(
            "Session ready for %s (%s logs from %s)",
            identity or "anonymous",
            len(self.log_store.logs),
            source.value,
        )
        return source

    async def update_settings(self, settings: UserSettings) -> UserSettings:
        """Save settings and switch the analysis provider."""
        saved = await self.settings_service.save(self.identity, settings)
        self.analysis_session.provider = saved.ai_provider
        return saved
