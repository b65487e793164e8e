from __future__ import annotations

import logging
from collections.abc import Sequence
from datetime import timedelta
from typing import Any

import asyncpg  # type: ignore[import-untyped]

from snippet_review.core.errors import RepositoryUnavailableError
from snippet_review.core.query import ParamStyle, translate_placeholders
from snippet_review.schemas.contributions import Contribution
from snippet_review.schemas.users import User, UserUpsert
from snippet_review.services.dedupe import (
    DEFAULT_CANDIDATE_LIMIT,
    DEFAULT_DEDUPE_WINDOW,
    SQL_NORMALIZED_CODE_EXPR,
    like_prefix_pattern,
)

logger = logging.getLogger(__name__)

CREATE_CONTRIBUTIONS_TABLE = """
create table if not exists contributions (
  id serial primary key,
  username text not null,
  filename text not null,
  line_number integer null,
  code text not null,
  status text default 'pending',
  created_at timestamp default current_timestamp
)
"""

CREATE_USERS_TABLE = """
create table if not exists users (
  id text primary key,
  username text unique not null,
  is_channel_owner boolean default false,
  access_token text not null,
  refresh_token text not null,
  token_expires_at bigint not null,
  created_at timestamp default current_timestamp
)
"""

SCHEMA_STATEMENTS = (CREATE_CONTRIBUTIONS_TABLE, CREATE_USERS_TABLE)

_CONTRIBUTION_COLUMNS = "id, username, filename, line_number, code, status, created_at"
_USER_COLUMNS = "id, username, is_channel_owner, access_token, refresh_token, token_expires_at, created_at"


class PostgresContributionStore:
    paramstyle: ParamStyle = "numeric"

    def __init__(
        self,
        database_url: str | None,
        min_pool_size: int = 1,
        max_pool_size: int = 10,
        command_timeout: float = 15.0,
        pool: asyncpg.Pool | None = None,
    ) -> None:
        self.database_url = database_url
        self.min_pool_size = min_pool_size
        self.max_pool_size = max_pool_size
        self.command_timeout = command_timeout
        self._pool = pool

    async def open(self) -> None:
        if self._pool is not None:
            return
        if not self.database_url:
            raise RepositoryUnavailableError("SR_DATABASE_URL is required")

        logger.info("opening postgres pool min_size=%s max_size=%s", self.min_pool_size, self.max_pool_size)
        try:
            self._pool = await asyncpg.create_pool(
                dsn=self.database_url,
                min_size=self.min_pool_size,
                max_size=self.max_pool_size,
                command_timeout=self.command_timeout,
            )
        except Exception as exc:  # pragma: no cover - depends on environment
            raise RepositoryUnavailableError("database unavailable") from exc

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None

    async def init(self) -> None:
        pool = self._get_pool()
        async with pool.acquire() as conn:
            for statement in SCHEMA_STATEMENTS:
                await conn.execute(statement)

    async def get_contributions(self) -> list[Contribution]:
        pool = self._get_pool()
        rows = await pool.fetch(
            f"""
            select {_CONTRIBUTION_COLUMNS}
            from contributions
            order by created_at desc, id desc
            """
        )
        return [self._contribution_from_row(row) for row in rows]

    async def get_contribution(self, contribution_id: int) -> Contribution | None:
        pool = self._get_pool()
        row = await pool.fetchrow(
            f"select {_CONTRIBUTION_COLUMNS} from contributions where id = $1",
            contribution_id,
        )
        return self._contribution_from_row(row) if row else None

    async def update_status(
        self,
        contribution_id: int,
        status: str,
        *,
        expected_status: str | None = None,
    ) -> bool:
        pool = self._get_pool()
        if expected_status is None:
            result = await pool.execute(
                "update contributions set status = $2 where id = $1",
                contribution_id,
                status,
            )
        else:
            result = await pool.execute(
                "update contributions set status = $2 where id = $1 and status = $3",
                contribution_id,
                status,
                expected_status,
            )
        return self._affected_rows(result) > 0

    async def create_contribution(
        self,
        username: str,
        filename: str,
        line_number: int | None,
        code: str,
        status: str = "pending",
    ) -> int:
        pool = self._get_pool()
        contribution_id = await pool.fetchval(
            """
            insert into contributions (username, filename, line_number, code, status)
            values ($1, $2, $3, $4, $5)
            returning id
            """,
            username,
            filename,
            line_number,
            code,
            status,
        )
        return int(contribution_id)

    async def get_similar_contributions(
        self,
        username: str,
        filename: str,
        normalized_code: str,
        *,
        window: timedelta = DEFAULT_DEDUPE_WINDOW,
        limit: int = DEFAULT_CANDIDATE_LIMIT,
    ) -> list[Contribution]:
        pool = self._get_pool()
        rows = await pool.fetch(
            f"""
            select {_CONTRIBUTION_COLUMNS}
            from contributions
            where username = $1
              and filename = $2
              and {SQL_NORMALIZED_CODE_EXPR} ilike $3 escape '\\'
              and created_at > now() - $4::interval
            order by created_at desc, id desc
            limit $5
            """,
            username,
            filename,
            like_prefix_pattern(normalized_code),
            window,
            max(0, limit),
        )
        return [self._contribution_from_row(row) for row in rows]

    async def create_or_update_user(self, user: UserUpsert) -> User:
        pool = self._get_pool()
        row = await pool.fetchrow(
            f"""
            insert into users (id, username, is_channel_owner, access_token, refresh_token, token_expires_at)
            values ($1, $2, $3, $4, $5, $6)
            on conflict (id) do update set
              username = excluded.username,
              is_channel_owner = excluded.is_channel_owner,
              access_token = excluded.access_token,
              refresh_token = excluded.refresh_token,
              token_expires_at = excluded.token_expires_at
            returning {_USER_COLUMNS}
            """,
            user.id,
            user.username,
            user.is_channel_owner,
            user.access_token,
            user.refresh_token,
            user.token_expires_at,
        )
        return self._user_from_row(row)

    async def get_user_by_username(self, username: str) -> User | None:
        pool = self._get_pool()
        row = await pool.fetchrow(f"select {_USER_COLUMNS} from users where username = $1", username)
        return self._user_from_row(row) if row else None

    async def get_user_by_id(self, user_id: str) -> User | None:
        pool = self._get_pool()
        row = await pool.fetchrow(f"select {_USER_COLUMNS} from users where id = $1", user_id)
        return self._user_from_row(row) if row else None

    async def query(self, raw_query: str, params: Sequence[Any] | None = None) -> list[dict[str, Any]]:
        pool = self._get_pool()
        native_query, values = translate_placeholders(raw_query, params, self.paramstyle)
        rows = await pool.fetch(native_query, *values)
        return [dict(row) for row in rows]

    def _get_pool(self) -> asyncpg.Pool:
        if self._pool is None:
            raise RepositoryUnavailableError("postgres store is not open")
        return self._pool

    @staticmethod
    def _affected_rows(status_line: str) -> int:
        # asyncpg returns the command tag, e.g. "UPDATE 1".
        try:
            return int(status_line.rsplit(" ", 1)[-1])
        except (AttributeError, ValueError):
            return 0

    @staticmethod
    def _contribution_from_row(row: asyncpg.Record) -> Contribution:
        return Contribution(
            id=int(row["id"]),
            username=row["username"],
            filename=row["filename"],
            line_number=row["line_number"],
            code=row["code"],
            status=row["status"] or "pending",
            created_at=row["created_at"],
        )

    @staticmethod
    def _user_from_row(row: asyncpg.Record) -> User:
        return User(
            id=row["id"],
            username=row["username"],
            is_channel_owner=bool(row["is_channel_owner"]),
            access_token=row["access_token"],
            refresh_token=row["refresh_token"],
            token_expires_at=int(row["token_expires_at"]),
            created_at=row["created_at"],
        )
