"""Supabase repository for meal logs."""

from dataclasses import dataclass

from supabase import Client

from nutrivision.domain.meals import FoodItem, Macros, MealLog
from nutrivision.services.meals import MealLogRepository

_MICRO_COLUMNS = {
    "fiber": "fiber",
    "sugar": "sugar",
    "vitaminA": "vitamin_a",
    "vitaminC": "vitamin_c",
    "vitaminD": "vitamin_d",
    "vitaminE": "vitamin_e",
    "vitaminK": "vitamin_k",
    "vitaminB6": "vitamin_b6",
    "vitaminB12": "vitamin_b12",
    "folate": "folate",
    "calcium": "calcium",
    "iron": "iron",
    "magnesium": "magnesium",
    "potassium": "potassium",
    "sodium": "sodium",
    "zinc": "zinc",
    "saturatedFat": "saturated_fat",
    "transFat": "trans_fat",
    "cholesterol": "cholesterol",
    "omega3": "omega3",
    "omega6": "omega6",
}

_LOG_COLUMNS = (
    "id, timestamp, meal_type, image_url, total_calories, total_protein, "
    "total_carbs, total_fat, note"
)


@dataclass
class SupabaseMealLogRepository(MealLogRepository):
    """Supabase implementation over `meal_logs` and `food_items`.

    Items have no identity of their own: an upsert replaces the log row and
    rewrites all of its item rows.
    """

    client: Client

    def list_meal_logs(self, user_id: str) -> list[MealLog]:
        """Return a user's meal logs, newest first."""
        response = (
            self.client.table("meal_logs")
            .select(_LOG_COLUMNS)
            .eq("user_id", user_id)
            .order("timestamp", desc=True)
            .execute()
        )
        rows = response.data or []
        if not rows:
            return []
        items_response = (
            self.client.table("food_items")
            .select("*")
            .in_("meal_log_id", [row["id"] for row in rows])
            .order("id", desc=False)
            .execute()
        )
        items_by_log: dict[str, list[FoodItem]] = {}
        for item_row in items_response.data or []:
            items_by_log.setdefault(str(item_row["meal_log_id"]), []).append(
                _parse_item(item_row)
            )
        return [_parse_log(row, items_by_log.get(str(row["id"]), [])) for row in rows]

    def upsert_meal_log(self, user_id: str, log: MealLog) -> None:
        """Create or replace a meal log and its items."""
        response = (
            self.client.table("meal_logs")
            .upsert(
                {
                    "id": log.id,
                    "user_id": user_id,
                    "timestamp": log.timestamp,
                    "meal_type": log.meal_type.value,
                    "image_url": log.image_ref,
                    "total_calories": log.total_macros.calories,
                    "total_protein": log.total_macros.protein,
                    "total_carbs": log.total_macros.carbs,
                    "total_fat": log.total_macros.fat,
                    "note": log.note,
                },
                on_conflict="id",
            )
            .execute()
        )
        if not response.data:
            raise RuntimeError(f"Failed to upsert meal log {log.id}")
        self.client.table("food_items").delete().eq("meal_log_id", log.id).execute()
        if log.items:
            self.client.table("food_items").insert(
                [_item_row(log.id, item) for item in log.items]
            ).execute()

    def delete_meal_log(self, user_id: str, log_id: str) -> None:
        """Delete a meal log and its items."""
        self.client.table("food_items").delete().eq("meal_log_id", log_id).execute()
        self.client.table("meal_logs").delete().eq("id", log_id).eq(
            "user_id", user_id
        ).execute()


def _item_row(log_id: str, item: FoodItem) -> dict[str, object]:
    row: dict[str, object] = {
        "meal_log_id": log_id,
        "name": item.name,
        "serving_size": item.serving_size,
        "calories": item.macros.calories,
        "protein": item.macros.protein,
        "carbs": item.macros.carbs,
        "fat": item.macros.fat,
    }
    for name, amount in (item.micros or {}).items():
        row[_MICRO_COLUMNS[name]] = amount
    return row


def _parse_item(row: dict[str, object]) -> FoodItem:
    micros = {
        name: row[column]
        for name, column in _MICRO_COLUMNS.items()
        if row.get(column) is not None
    }
    return FoodItem(
        name=str(row.get("name") or ""),
        serving_size=str(row.get("serving_size") or "1 serving"),
        macros=Macros(
            calories=float(row.get("calories") or 0.0),
            protein=float(row.get("protein") or 0.0),
            carbs=float(row.get("carbs") or 0.0),
            fat=float(row.get("fat") or 0.0),
        ),
        micros={name: float(value) for name, value in micros.items()},
    )


def _parse_log(row: dict[str, object], items: list[FoodItem]) -> MealLog:
    return MealLog(
        id=str(row["id"]),
        timestamp=int(row["timestamp"]),
        image_ref=row.get("image_url"),
        items=tuple(items),
        total_macros=Macros(
            calories=float(row.get("total_calories") or 0.0),
            protein=float(row.get("total_protein") or 0.0),
            carbs=float(row.get("total_carbs") or 0.0),
            fat=float(row.get("total_fat") or 0.0),
        ),
        meal_type=row.get("meal_type") or "snack",
        note=row.get("note"),
    )
