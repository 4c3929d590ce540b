"""Supabase repository for user settings."""

from dataclasses import dataclass
from datetime import UTC, datetime

from supabase import Client

from nutrivision.domain.meals import UserSettings
from nutrivision.services.user_settings import UserSettingsRepository


@dataclass
class SupabaseUserSettingsRepository(UserSettingsRepository):
    """Settings stored on the user's `profiles` row."""

    client: Client

    def get_settings(self, user_id: str) -> UserSettings | None:
        """Return the stored settings for a user."""
        response = (
            self.client.table("profiles")
            .select(
                "daily_calorie_goal, daily_protein_goal, daily_carb_goal, "
                "daily_fat_goal, ai_provider"
            )
            .eq("id", user_id)
            .limit(1)
            .execute()
        )
        if not response.data:
            return None
        row = response.data[0]
        defaults = UserSettings()
        return UserSettings(
            daily_calorie_goal=row.get("daily_calorie_goal")
            or defaults.daily_calorie_goal,
            daily_protein_goal=row.get("daily_protein_goal")
            or defaults.daily_protein_goal,
            daily_carb_goal=row.get("daily_carb_goal") or defaults.daily_carb_goal,
            daily_fat_goal=row.get("daily_fat_goal") or defaults.daily_fat_goal,
            ai_provider=row.get("ai_provider") or defaults.ai_provider,
        )

    def save_settings(self, user_id: str, settings: UserSettings) -> None:
        """Create or update the user's profile goals."""
        self.client.table("profiles").upsert(
            {
                "id": user_id,
                "daily_calorie_goal": settings.daily_calorie_goal,
                "daily_protein_goal": settings.daily_protein_goal,
                "daily_carb_goal": settings.daily_carb_goal,
                "daily_fat_goal": settings.daily_fat_goal,
                "ai_provider": settings.ai_provider.value,
                "updated_at": datetime.now(tz=UTC).isoformat(),
            },
            on_conflict="id",
        ).execute()
