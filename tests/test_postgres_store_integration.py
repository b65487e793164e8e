from __future__ import annotations

import asyncio
import os
from collections.abc import Coroutine
from typing import Any, TypeVar

import asyncpg  # type: ignore[import-untyped]
import pytest

from snippet_review.core.errors import RepositoryConflictError
from snippet_review.schemas.users import UserUpsert
from snippet_review.services.postgres_store import PostgresContributionStore
from snippet_review.services.repository import ContributionRepository

T = TypeVar("T")


@pytest.fixture(scope="session")
def database_url() -> str:
    url = os.getenv("SR_DATABASE_URL") or os.getenv("DATABASE_URL")
    if not url:
        pytest.skip("integration tests require SR_DATABASE_URL or DATABASE_URL")
    return url


@pytest.fixture(autouse=True)
def reset_tables(database_url: str) -> None:
    _run(_reset(database_url))


def test_contribution_lifecycle_round_trip(database_url: str) -> None:
    async def scenario(repository: ContributionRepository) -> None:
        contribution_id = await repository.create_contribution("alice", "main.ts", 10, "const x = 1")

        listed = await repository.get_contributions()
        assert listed.ok
        assert [row.id for row in listed.value] == [contribution_id]
        assert listed.value[0].status == "pending"

        updated = await repository.update_status(contribution_id, "accepted")
        assert updated.value is not None and updated.value.status == "accepted"

        with pytest.raises(RepositoryConflictError):
            await repository.update_status(contribution_id, "pending")

        fetched = await repository.get_contribution(contribution_id)
        assert fetched.value is not None and fetched.value.status == "accepted"

    _run(_with_repository(database_url, scenario))


def test_similar_contributions_use_sql_normalization(database_url: str) -> None:
    async def scenario(repository: ContributionRepository) -> None:
        await repository.create_contribution("alice", "main.ts", 1, "if (a) {\n  return b;\n}")
        await repository.create_contribution("alice", "main.ts", 2, "100% done_ok")

        similar = await repository.get_similar_contributions("alice", "main.ts", "IF (a) {\r  return b;")
        assert similar.ok
        assert len(similar.value) == 1

        assert await repository.has_recent_duplicate("alice", "main.ts", "100% done_")
        assert not await repository.has_recent_duplicate("alice", "main.ts", "1%")
        assert not await repository.has_recent_duplicate("alice", "main.ts", "100_ done")
        assert not await repository.has_recent_duplicate("bob", "main.ts", "if (a)")

    _run(_with_repository(database_url, scenario))


def test_similar_contributions_respect_window(database_url: str) -> None:
    async def scenario(repository: ContributionRepository) -> None:
        contribution_id = await repository.create_contribution("alice", "main.ts", 1, "const x = 1")
        await repository.query(
            "update contributions set created_at = now() - interval '61 minutes' where id = ?",
            [contribution_id],
        )
        assert not await repository.has_recent_duplicate("alice", "main.ts", "const x = 1")

        await repository.query(
            "update contributions set created_at = now() - interval '59 minutes' where id = ?",
            [contribution_id],
        )
        assert await repository.has_recent_duplicate("alice", "main.ts", "const x = 1")

    _run(_with_repository(database_url, scenario))


def test_user_upsert_keeps_single_row(database_url: str) -> None:
    async def scenario(repository: ContributionRepository) -> None:
        await repository.create_or_update_user(_user("alice"))
        await repository.create_or_update_user(_user("alice_renamed"))

        rows = await repository.query("select id, username from users where id = ?", ["u1"])
        assert rows == [{"id": "u1", "username": "alice_renamed"}]

        by_username = await repository.get_user_by_username("alice_renamed")
        assert by_username.value is not None and by_username.value.id == "u1"

    _run(_with_repository(database_url, scenario))



def test_init_is_idempotent_and_keeps_existing_rows(database_url: str) -> None:
    async def scenario(repository: ContributionRepository) -> None:
        contribution_id = await repository.create_contribution("alice", "main.ts", 3, "const x = 1")
        await repository.create_or_update_user(_user("alice"))

        assert await repository.init() is True
        assert repository.last_init_error is None

        fetched = await repository.get_contribution(contribution_id)
        assert fetched.value is not None and fetched.value.code == "const x = 1"
        user = await repository.get_user_by_id("u1")
        assert user.value is not None and user.value.username == "alice"

    _run(_with_repository(database_url, scenario))


async def _with_repository(database_url: str, scenario) -> None:
    store = PostgresContributionStore(database_url=database_url, min_pool_size=1, max_pool_size=2)
    await store.open()
    repository = ContributionRepository(store)
    try:
        assert await repository.init() is True
        await scenario(repository)
    finally:
        await repository.close()


async def _reset(database_url: str) -> None:
    conn = await asyncpg.connect(database_url)
    try:
        await conn.execute("drop table if exists contributions")
        await conn.execute("drop table if exists users")
    finally:
        await conn.close()


def _user(username: str) -> UserUpsert:
    return UserUpsert(
        id="u1",
        username=username,
        access_token="access",
        refresh_token="refresh",
        token_expires_at=1_700_000_000_000,
    )


def _run(coro: Coroutine[Any, Any, T]) -> T:
    return asyncio.run(coro)
