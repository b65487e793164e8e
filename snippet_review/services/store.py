from __future__ import annotations

from collections.abc import Callable, Sequence
from datetime import datetime, timedelta, timezone
from typing import Any, Protocol

from snippet_review.core.errors import RepositoryConflictError, RepositoryUnavailableError
from snippet_review.core.query import ParamStyle
from snippet_review.schemas.contributions import Contribution
from snippet_review.schemas.users import User, UserUpsert
from snippet_review.services.dedupe import (
    DEFAULT_CANDIDATE_LIMIT,
    DEFAULT_DEDUPE_WINDOW,
    select_similar,
    sort_by_recency,
)


class ContributionStore(Protocol):
    """Storage backend contract. Methods raise on failure; the repository decides what callers see."""

    paramstyle: ParamStyle

    async def init(self) -> None: ...

    async def close(self) -> None: ...

    async def get_contributions(self) -> list[Contribution]: ...

    async def get_contribution(self, contribution_id: int) -> Contribution | None: ...

    async def update_status(
        self,
        contribution_id: int,
        status: str,
        *,
        expected_status: str | None = None,
    ) -> bool: ...

    async def create_contribution(
        self,
        username: str,
        filename: str,
        line_number: int | None,
        code: str,
        status: str = "pending",
    ) -> int: ...

    async def get_similar_contributions(
        self,
        username: str,
        filename: str,
        normalized_code: str,
        *,
        window: timedelta = DEFAULT_DEDUPE_WINDOW,
        limit: int = DEFAULT_CANDIDATE_LIMIT,
    ) -> list[Contribution]: ...

    async def create_or_update_user(self, user: UserUpsert) -> User: ...

    async def get_user_by_username(self, username: str) -> User | None: ...

    async def get_user_by_id(self, user_id: str) -> User | None: ...

    async def query(self, raw_query: str, params: Sequence[Any] | None = None) -> list[dict[str, Any]]: ...


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class InMemoryContributionStore:
    """Process-local store for tests and local runs without a database."""

    paramstyle: ParamStyle = "qmark"

    def __init__(self, clock: Callable[[], datetime] = utcnow) -> None:
        self.clock = clock
        self.contributions: dict[int, dict[str, Any]] = {}
        self.users: dict[str, dict[str, Any]] = {}
        self._next_id = 1
        self.initialized = False

    async def init(self) -> None:
        self.initialized = True

    async def close(self) -> None:
        return None

    async def get_contributions(self) -> list[Contribution]:
        return sort_by_recency(Contribution(**row) for row in self.contributions.values())

    async def get_contribution(self, contribution_id: int) -> Contribution | None:
        row = self.contributions.get(contribution_id)
        return Contribution(**row) if row else None

    async def update_status(
        self,
        contribution_id: int,
        status: str,
        *,
        expected_status: str | None = None,
    ) -> bool:
        row = self.contributions.get(contribution_id)
        if row is None:
            return False
        if expected_status is not None and row["status"] != expected_status:
            return False
        row["status"] = status
        return True

    async def create_contribution(
        self,
        username: str,
        filename: str,
        line_number: int | None,
        code: str,
        status: str = "pending",
    ) -> int:
        contribution_id = self._next_id
        self._next_id += 1
        self.contributions[contribution_id] = {
            "id": contribution_id,
            "username": username,
            "filename": filename,
            "line_number": line_number,
            "code": code,
            "status": status,
            "created_at": self.clock(),
        }
        return contribution_id

    async def get_similar_contributions(
        self,
        username: str,
        filename: str,
        normalized_code: str,
        *,
        window: timedelta = DEFAULT_DEDUPE_WINDOW,
        limit: int = DEFAULT_CANDIDATE_LIMIT,
    ) -> list[Contribution]:
        return select_similar(
            (Contribution(**row) for row in self.contributions.values()),
            username=username,
            filename=filename,
            normalized_code=normalized_code,
            now=self.clock(),
            window=window,
            limit=limit,
        )

    async def create_or_update_user(self, user: UserUpsert) -> User:
        for existing_id, row in self.users.items():
            if existing_id != user.id and row["username"] == user.username:
                raise RepositoryConflictError(f"username already taken: {user.username}")

        existing = self.users.get(user.id)
        created_at = existing["created_at"] if existing else self.clock()
        self.users[user.id] = {**user.model_dump(), "created_at": created_at}
        return User(**self.users[user.id])

    async def get_user_by_username(self, username: str) -> User | None:
        row = next((row for row in self.users.values() if row["username"] == username), None)
        return User(**row) if row else None

    async def get_user_by_id(self, user_id: str) -> User | None:
        row = self.users.get(user_id)
        return User(**row) if row else None

    async def query(self, raw_query: str, params: Sequence[Any] | None = None) -> list[dict[str, Any]]:
        raise RepositoryUnavailableError("raw queries require a SQL-backed store")
