from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from snippet_review.services.repository import ContributionRepository
from snippet_review.services.store import InMemoryContributionStore


class FakeClock:
    def __init__(self, start: datetime) -> None:
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs: float) -> None:
        self.current = self.current + timedelta(**kwargs)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def store(clock: FakeClock) -> InMemoryContributionStore:
    return InMemoryContributionStore(clock=clock)


@pytest.fixture
def repository(store: InMemoryContributionStore) -> ContributionRepository:
    return ContributionRepository(store)
