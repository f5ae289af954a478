"""Category taxonomy and daily time budgets, stored over built-in defaults."""

from __future__ import annotations

import asyncio
import copy
import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Protocol

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, SQLModel

from attention_budget.errors import StoreError
from attention_budget.storage.common import build_sqlite_engine, utc_now
from attention_budget.storage.sqlmodel_models import SettingRow

logger = logging.getLogger(__name__)

TAXONOMY_KEY = "ingredient_categories"
BUDGETS_KEY = "budgets"


@dataclass(slots=True)
class CategoryBudget:
    """Daily allotment in minutes for one category and its subcategories."""

    total_minutes: float
    subcategories: dict[str, float] = field(default_factory=dict)

    @property
    def total_seconds(self) -> float:
        return self.total_minutes * 60.0

    def subcategory_seconds(self, subcategory: str) -> float:
        return self.subcategories.get(subcategory, 0.0) * 60.0

    def to_dict(self) -> dict[str, Any]:
        return {"total": self.total_minutes, "subcategories": dict(self.subcategories)}

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> CategoryBudget:
        return cls(
            total_minutes=float(payload.get("total", 0)),
            subcategories={
                str(name): float(minutes)
                for name, minutes in payload.get("subcategories", {}).items()
            },
        )


Budgets = dict[str, CategoryBudget]

DEFAULT_TAXONOMY: dict[str, list[str]] = {
    "Education": [
        "News, politics, and social concern",
        "Learning and education",
    ],
    "Entertainment": [
        "Celebrities, sports, and culture",
        "Humor and amusement",
    ],
    "Emotion": [
        "Controversy and clickbait",
        "Anxiety and fear",
    ],
}

DEFAULT_BUDGETS: Budgets = {
    "Education": CategoryBudget(
        total_minutes=60,
        subcategories={
            "News, politics, and social concern": 40,
            "Learning and education": 20,
        },
    ),
    "Entertainment": CategoryBudget(
        total_minutes=30,
        subcategories={
            "Celebrities, sports, and culture": 15,
            "Humor and amusement": 15,
        },
    ),
    "Emotion": CategoryBudget(
        total_minutes=15,
        subcategories={
            "Controversy and clickbait": 5,
            "Anxiety and fear": 10,
        },
    ),
}


class BudgetProvider(Protocol):
    """Read-only source of the taxonomy and daily budgets."""

    async def get_budgets(self) -> Budgets:
        """Return per-category budgets."""

    async def get_taxonomy(self) -> dict[str, list[str]]:
        """Return category -> subcategory names."""


class StaticBudgetProvider:
    """In-memory provider, mostly for simulations."""

    def __init__(
        self,
        budgets: Budgets | None = None,
        taxonomy: dict[str, list[str]] | None = None,
    ) -> None:
        self._budgets = copy.deepcopy(DEFAULT_BUDGETS if budgets is None else budgets)
        self._taxonomy = copy.deepcopy(DEFAULT_TAXONOMY if taxonomy is None else taxonomy)

    async def get_budgets(self) -> Budgets:
        return copy.deepcopy(self._budgets)

    async def get_taxonomy(self) -> dict[str, list[str]]:
        return copy.deepcopy(self._taxonomy)


class SettingsRepository:
    """Budget provider persisting user overrides in the ``settings`` table."""

    def __init__(self, db_path: Path, *, busy_timeout_ms: int = 5_000) -> None:
        self.db_path = db_path
        self.engine = build_sqlite_engine(db_path=db_path, busy_timeout_ms=busy_timeout_ms)

    def init_schema(self) -> None:
        SQLModel.metadata.create_all(self.engine)

    def close(self) -> None:
        self.engine.dispose()

    async def get_taxonomy(self) -> dict[str, list[str]]:
        stored = await self._read(TAXONOMY_KEY)
        merged = copy.deepcopy(DEFAULT_TAXONOMY)
        if stored:
            merged.update({str(name): list(subs) for name, subs in stored.items()})
        return merged

    async def get_budgets(self) -> Budgets:
        stored = await self._read(BUDGETS_KEY)
        merged = copy.deepcopy(DEFAULT_BUDGETS)
        if stored:
            merged.update(
                {str(name): CategoryBudget.from_dict(raw) for name, raw in stored.items()},
            )
        return merged

    async def set_category_budget(
        self,
        category: str,
        minutes: float,
        subcategories: dict[str, float] | None = None,
    ) -> None:
        if minutes < 0:
            raise ValueError("Budget minutes must be >= 0.")
        budgets = await self.get_budgets()
        current = budgets.get(category)
        if subcategories is None:
            subcategories = dict(current.subcategories) if current is not None else {}
        budgets[category] = CategoryBudget(total_minutes=minutes, subcategories=subcategories)
        await self._write_budgets(budgets)
        logger.info("Set %s budget to %s minutes", category, minutes)

    async def set_subcategory_budget(self, category: str, subcategory: str, minutes: float) -> None:
        if minutes < 0:
            raise ValueError("Budget minutes must be >= 0.")
        budgets = await self.get_budgets()
        current = budgets.get(category) or CategoryBudget(total_minutes=0)
        current.subcategories[subcategory] = minutes
        budgets[category] = current
        await self._write_budgets(budgets)
        logger.info("Set %s/%s budget to %s minutes", category, subcategory, minutes)

    async def reset_to_defaults(self) -> None:
        await self._write(TAXONOMY_KEY, copy.deepcopy(DEFAULT_TAXONOMY))
        await self._write_budgets(copy.deepcopy(DEFAULT_BUDGETS))
        logger.info("Settings reset to defaults")

    async def _write_budgets(self, budgets: Budgets) -> None:
        await self._write(BUDGETS_KEY, {name: budget.to_dict() for name, budget in budgets.items()})

    async def _read(self, key: str) -> Any:
        def _get() -> Any:
            with Session(self.engine) as session:
                row = session.get(SettingRow, key)
                return None if row is None else json.loads(row.value_json)

        try:
            return await asyncio.to_thread(_get)
        except SQLAlchemyError as error:
            logger.error("Failed to read setting %s: %s", key, error)
            raise StoreError(f"Failed to read setting {key}: {error}") from error

    async def _write(self, key: str, value: Any) -> None:
        def _set() -> None:
            with Session(self.engine) as session:
                row = session.get(SettingRow, key)
                payload = json.dumps(value, ensure_ascii=False, sort_keys=True)
                if row is None:
                    row = SettingRow(key=key, value_json=payload, updated_at=utc_now())
                else:
                    row.value_json = payload
                    row.updated_at = utc_now()
                session.add(row)
                session.commit()

        try:
            await asyncio.to_thread(_set)
        except SQLAlchemyError as error:
            logger.error("Failed to write setting %s: %s", key, error)
            raise StoreError(f"Failed to write setting {key}: {error}") from error
