"""Shared fixtures: deterministic clock and ids, memory-backed store."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from compliance_tracker.config import Settings
from compliance_tracker.models.identity import SequentialIdFactory
from compliance_tracker.models.schemas import Requirement
from compliance_tracker.persistence.slice_repository import InMemorySliceRepository
from compliance_tracker.store.store import DashboardStore

T0 = datetime(2024, 1, 1, 9, 0, tzinfo=timezone.utc)


class FakeClock:
    """Returns T0, T0+1s, T0+2s, ... on successive calls."""

    def __init__(self, start: datetime = T0):
        self.now = start

    def __call__(self) -> datetime:
        current = self.now
        self.now += timedelta(seconds=1)
        return current


def make_requirement(req_id: str, **fields) -> Requirement:
    data = {"title": f"Requirement {req_id}", "category": "technical", **fields}
    return Requirement(id=req_id, created_at=T0, updated_at=T0, **data)


@pytest.fixture
def settings() -> Settings:
    return Settings(_env_file=None, storage_backend="memory")


@pytest.fixture
def repository() -> InMemorySliceRepository:
    return InMemorySliceRepository()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(repository, settings, clock):
    s = DashboardStore(repository, settings=settings, clock=clock, id_factory=SequentialIdFactory())
    yield s
    s.close()
