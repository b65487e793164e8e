from __future__ import annotations

import time

from snippet_review.core.errors import RepositoryValidationError
from snippet_review.schemas.users import User, UserUpsert
from snippet_review.services.store import ContributionStore


class CredentialStore:
    """Per-user OAuth token rows. Upserts always overwrite every mutable field."""

    def __init__(self, store: ContributionStore) -> None:
        self.store = store

    async def upsert(self, user: UserUpsert) -> User:
        return await self.store.create_or_update_user(self.validate(user))

    async def get_by_username(self, username: str) -> User | None:
        return await self.store.get_user_by_username(username)

    async def get_by_id(self, user_id: str) -> User | None:
        return await self.store.get_user_by_id(user_id)

    @staticmethod
    def validate(user: UserUpsert) -> UserUpsert:
        for field_name in ("id", "username", "access_token", "refresh_token"):
            value = getattr(user, field_name)
            if not value or not value.strip():
                raise RepositoryValidationError(f"{field_name} must be a non-empty string")
        if user.token_expires_at < 0:
            raise RepositoryValidationError("token_expires_at must be a non-negative epoch millisecond value")
        return user


def is_token_expired(user: User | UserUpsert, *, now_ms: int | None = None, skew_seconds: int = 0) -> bool:
    current_ms = now_ms if now_ms is not None else int(time.time() * 1000)
    return current_ms + max(0, skew_seconds) * 1000 >= user.token_expires_at
