from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Awaitable, Callable, Sequence
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Generic, TypeVar

from opentelemetry import trace

from snippet_review.core.config import Settings, get_settings
from snippet_review.core.errors import (
    RepositoryConflictError,
    RepositoryError,
    RepositoryInitError,
    RepositoryReadError,
    RepositoryValidationError,
    RepositoryWriteError,
)
from snippet_review.schemas.contributions import Contribution, ReviewQueue, SubmissionResult
from snippet_review.schemas.users import User, UserUpsert
from snippet_review.services.credentials import CredentialStore
from snippet_review.services.dedupe import DEFAULT_CANDIDATE_LIMIT, DEFAULT_DEDUPE_WINDOW, normalize_code
from snippet_review.services.postgres_store import PostgresContributionStore
from snippet_review.services.review import (
    INITIAL_STATUS,
    partition_by_review_state,
    validate_status,
    validate_status_transition,
)
from snippet_review.services.store import ContributionStore

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

T = TypeVar("T")


@dataclass(slots=True)
class StoreResult(Generic[T]):
    """Outcome of a read-side call: the value, or a fallback plus the error that caused it."""

    value: T
    error: RepositoryError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


class ContributionRepository:
    """Contribution and credential persistence with the read/write error split.

    Reads never raise: failures are logged and come back as a ``StoreResult``
    holding an empty or absent value. Writes (create, upsert, raw query)
    are logged and re-raised as ``RepositoryWriteError``.

    The duplicate check in ``submit_contribution`` and the insert that follows
    are separate statements, so two concurrent submissions can both pass the
    check. Submissions are human-paced, so that gap is accepted.
    """

    def __init__(
        self,
        store: ContributionStore,
        *,
        dedupe_window: timedelta = DEFAULT_DEDUPE_WINDOW,
        dedupe_limit: int = DEFAULT_CANDIDATE_LIMIT,
    ) -> None:
        self.store = store
        self.credentials = CredentialStore(store)
        self.dedupe_window = dedupe_window
        self.dedupe_limit = max(1, dedupe_limit)
        self.last_init_error: RepositoryInitError | None = None

    async def init(self) -> bool:
        with tracer.start_as_current_span("repository.init"):
            try:
                await self.store.init()
            except Exception as exc:
                # Another process may be creating the same tables; carry on degraded.
                error = RepositoryInitError("failed to initialize contribution tables")
                error.__cause__ = exc
                self.last_init_error = error
                logger.exception("failed to initialize contribution tables")
                return False
            self.last_init_error = None
            return True

    async def close(self) -> None:
        await self.store.close()

    async def get_contributions(self) -> StoreResult[list[Contribution]]:
        return await self._read("get_contributions", self.store.get_contributions, [])

    async def get_contribution(self, contribution_id: int) -> StoreResult[Contribution | None]:
        return await self._read(
            "get_contribution",
            lambda: self.store.get_contribution(contribution_id),
            None,
        )

    async def get_review_queue(self) -> StoreResult[ReviewQueue]:
        result = await self.get_contributions()
        return StoreResult(value=partition_by_review_state(result.value), error=result.error)

    async def create_contribution(
        self,
        username: str,
        filename: str,
        line_number: int | None,
        code: str,
        status: str = INITIAL_STATUS,
    ) -> int:
        self._validate_submission(username=username, filename=filename, line_number=line_number, code=code)
        if validate_status(status) != INITIAL_STATUS:
            raise RepositoryValidationError("contributions must be created with status pending")

        logger.info("creating contribution username=%s filename=%s", username, filename)
        contribution_id = await self._write(
            "create_contribution",
            lambda: self.store.create_contribution(username, filename, line_number, code, status),
        )
        logger.info("contribution saved id=%s", contribution_id)
        return contribution_id

    async def submit_contribution(
        self,
        username: str,
        filename: str,
        line_number: int | None,
        code: str,
    ) -> SubmissionResult:
        self._validate_submission(username=username, filename=filename, line_number=line_number, code=code)

        similar = await self.get_similar_contributions(username, filename, code)
        if not similar.ok:
            logger.warning(
                "duplicate check unavailable for username=%s filename=%s; inserting without it",
                username,
                filename,
            )
        if similar.value:
            logger.info(
                "suppressed duplicate submission username=%s filename=%s matches=%s",
                username,
                filename,
                [row.id for row in similar.value],
            )
            return SubmissionResult(created=False, duplicates=similar.value)

        contribution_id = await self.create_contribution(username, filename, line_number, code)
        return SubmissionResult(created=True, contribution_id=contribution_id)

    async def update_status(self, contribution_id: int, status: str) -> StoreResult[Contribution | None]:
        validate_status(status)

        current = await self.get_contribution(contribution_id)
        if not current.ok or current.value is None:
            return current

        from_status = current.value.status
        if not validate_status_transition(from_status=from_status, to_status=status):
            return current

        with tracer.start_as_current_span("repository.update_status"):
            try:
                applied = await self.store.update_status(contribution_id, status, expected_status=from_status)
            except Exception as exc:
                logger.exception("failed to update status id=%s status=%s", contribution_id, status)
                error = RepositoryWriteError("update_status failed")
                error.__cause__ = exc
                return StoreResult(value=None, error=error)

        if not applied:
            raise RepositoryConflictError(f"contribution {contribution_id} changed status concurrently")

        logger.info("contribution status changed id=%s %s -> %s", contribution_id, from_status, status)
        return await self.get_contribution(contribution_id)

    async def get_similar_contributions(
        self,
        username: str,
        filename: str,
        code: str,
    ) -> StoreResult[list[Contribution]]:
        """Recent near-duplicates of ``code`` for this user and file.

        Blank code is never treated as a duplicate of anything: an empty prefix
        would otherwise match every recent row, so no store lookup is made.
        """
        normalized = normalize_code(code)
        if not normalized.strip():
            return StoreResult(value=[])
        return await self._read(
            "get_similar_contributions",
            lambda: self.store.get_similar_contributions(
                username,
                filename,
                normalized,
                window=self.dedupe_window,
                limit=self.dedupe_limit,
            ),
            [],
        )

    async def has_recent_duplicate(self, username: str, filename: str, code: str) -> bool:
        result = await self.get_similar_contributions(username, filename, code)
        return bool(result.value)

    async def create_or_update_user(self, user: UserUpsert) -> User:
        return await self._write("create_or_update_user", lambda: self.credentials.upsert(user))

    async def get_user_by_username(self, username: str) -> StoreResult[User | None]:
        return await self._read(
            "get_user_by_username",
            lambda: self.credentials.get_by_username(username),
            None,
        )

    async def get_user_by_id(self, user_id: str) -> StoreResult[User | None]:
        return await self._read("get_user_by_id", lambda: self.credentials.get_by_id(user_id), None)

    async def query(self, raw_query: str, params: Sequence[Any] | None = None) -> list[dict[str, Any]]:
        return await self._write("query", lambda: self.store.query(raw_query, params))

    async def _read(self, operation: str, call: Callable[[], Awaitable[T]], fallback: T) -> StoreResult[T]:
        with tracer.start_as_current_span(f"repository.{operation}"):
            try:
                return StoreResult(value=await call())
            except Exception as exc:
                logger.warning("read failed operation=%s error=%s", operation, exc, exc_info=True)
                error = RepositoryReadError(f"{operation} failed")
                error.__cause__ = exc
                return StoreResult(value=fallback, error=error)

    async def _write(self, operation: str, call: Callable[[], Awaitable[T]]) -> T:
        with tracer.start_as_current_span(f"repository.{operation}"):
            try:
                return await call()
            except RepositoryValidationError:
                raise
            except Exception as exc:
                logger.exception("write failed operation=%s", operation)
                raise RepositoryWriteError(f"{operation} failed: {exc}") from exc

    @staticmethod
    def _validate_submission(*, username: str, filename: str, line_number: int | None, code: str) -> None:
        if not username or not username.strip():
            raise RepositoryValidationError("username must be a non-empty string")
        if not filename or not filename.strip():
            raise RepositoryValidationError("filename must be a non-empty string")
        if not code or not code.strip():
            raise RepositoryValidationError("code must be a non-empty string")
        if line_number is not None and (isinstance(line_number, bool) or line_number < 0):
            raise RepositoryValidationError("line_number must be a non-negative integer")


def build_postgres_store(settings: Settings) -> PostgresContributionStore:
    return PostgresContributionStore(
        database_url=settings.database_url,
        min_pool_size=settings.database_pool_min_size,
        max_pool_size=settings.database_pool_max_size,
        command_timeout=settings.database_command_timeout_seconds,
    )


def build_repository(
    settings: Settings | None = None,
    store: ContributionStore | None = None,
) -> ContributionRepository:
    settings = settings or get_settings()
    store = store or build_postgres_store(settings)
    return ContributionRepository(
        store,
        dedupe_window=timedelta(minutes=max(1, settings.dedupe_window_minutes)),
        dedupe_limit=settings.dedupe_candidate_limit,
    )


@asynccontextmanager
async def open_repository(settings: Settings | None = None) -> AsyncIterator[ContributionRepository]:
    settings = settings or get_settings()
    store = build_postgres_store(settings)
    await store.open()
    repository = build_repository(settings, store)
    try:
        await repository.init()
        yield repository
    finally:
        await repository.close()
