"""Statistics over the in-memory meal log."""

from dataclasses import dataclass
from datetime import date, datetime, timedelta
from zoneinfo import ZoneInfo

from nutrivision.domain.meals import Macros, MealLog, UserSettings
from nutrivision.services.macros import sum_macros
from nutrivision.services.meals import LogStore


@dataclass(frozen=True)
class DailyTotals:
    """Macros eaten on one local calendar day."""

    day: date
    macros: Macros
    meal_count: int


@dataclass(frozen=True)
class PeriodSummary:
    """Aggregated totals for a run of days."""

    daily: list[DailyTotals]
    average: Macros


@dataclass(frozen=True)
class GoalProgress:
    """Percent of each daily goal reached."""

    calories: int
    protein: int
    carbs: int
    fat: int

    def reached(self) -> list[str]:
        """Names of goals at or above 100%."""
        return [
            name
            for name, percent in (
                ("calories", self.calories),
                ("protein", self.protein),
                ("carbs", self.carbs),
                ("fat", self.fat),
            )
            if percent >= 100
        ]


@dataclass
class StatsService:
    """Computes daily and weekly totals in the user's timezone."""

    log_store: LogStore

    def get_day(self, day: date, timezone_name: str = "UTC") -> DailyTotals:
        """Return totals for a calendar day."""
        return _aggregate_day(day, self.log_store.logs, ZoneInfo(timezone_name))

    def get_today(
        self, timezone_name: str = "UTC", now: datetime | None = None
    ) -> DailyTotals:
        """Return today's totals."""
        tz = ZoneInfo(timezone_name)
        current = (now or datetime.now(tz=tz)).astimezone(tz)
        return _aggregate_day(current.date(), self.log_store.logs, tz)

    def get_week(
        self, timezone_name: str = "UTC", now: datetime | None = None
    ) -> PeriodSummary:
        """Return the last seven days, oldest first, with daily averages."""
        tz = ZoneInfo(timezone_name)
        current = (now or datetime.now(tz=tz)).astimezone(tz)
        days = [current.date() - timedelta(days=offset) for offset in range(6, -1, -1)]
        daily = [_aggregate_day(day, self.log_store.logs, tz) for day in days]
        total = sum_macros(entry.macros for entry in daily)
        count = len(daily)
        return PeriodSummary(
            daily=daily,
            average=Macros(
                calories=total.calories / count,
                protein=total.protein / count,
                carbs=total.carbs / count,
                fat=total.fat / count,
            ),
        )


def goal_progress(totals: Macros, settings: UserSettings) -> GoalProgress:
    """Return rounded percent of each goal reached."""
    return GoalProgress(
        calories=_percent(totals.calories, settings.daily_calorie_goal),
        protein=_percent(totals.protein, settings.daily_protein_goal),
        carbs=_percent(totals.carbs, settings.daily_carb_goal),
        fat=_percent(totals.fat, settings.daily_fat_goal),
    )


def _percent(value: float, goal: float) -> int:
    if goal <= 0:
        return 0
    return round(value / goal * 100)


def _aggregate_day(day: date, logs: tuple[MealLog, ...], tz: ZoneInfo) -> DailyTotals:
    matching = [
        log
        for log in logs
        if datetime.fromtimestamp(log.timestamp / 1000, tz=tz).date() == day
    ]
    return DailyTotals(
        day=day,
        macros=sum_macros(log.total_macros for log in matching),
        meal_count=len(matching),
    )
