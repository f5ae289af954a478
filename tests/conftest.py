"""Shared test fixtures."""

from __future__ import annotations

import time
from pathlib import Path

import pytest

from attention_budget.budgets import SettingsRepository
from attention_budget.storage.repository import PostRepository


class FakeClock:
    """Manually advanced epoch-milliseconds clock."""

    def __init__(self, start: float | None = None) -> None:
        self.now = time.time() * 1000.0 if start is None else start

    def __call__(self) -> float:
        return self.now

    def advance(self, ms: float) -> None:
        self.now += ms


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "attention.db"


@pytest.fixture()
def repository(db_path: Path, clock: FakeClock):
    repo = PostRepository(db_path, clock=clock)
    repo.init_schema()
    yield repo
    repo.close()


@pytest.fixture()
def settings_repository(db_path: Path, repository: PostRepository):
    repo = SettingsRepository(db_path)
    repo.init_schema()
    yield repo
    repo.close()
