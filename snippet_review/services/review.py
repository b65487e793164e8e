from __future__ import annotations

from collections.abc import Iterable

from snippet_review.core.errors import RepositoryConflictError, RepositoryValidationError
from snippet_review.schemas.contributions import Contribution, ReviewQueue

INITIAL_STATUS = "pending"
CONTRIBUTION_STATUSES = {"pending", "accepted", "rejected"}
TERMINAL_STATUSES = {"accepted", "rejected"}

_ALLOWED_TRANSITIONS = {
    "pending": {"accepted", "rejected"},
    "accepted": set(),
    "rejected": set(),
}


def validate_status(status: str) -> str:
    if status not in CONTRIBUTION_STATUSES:
        raise RepositoryValidationError("status must be one of: pending, accepted, rejected")
    return status


def validate_status_transition(*, from_status: str, to_status: str) -> bool:
    """Return True when a write is needed, False for a same-status no-op."""
    validate_status(to_status)
    if to_status == from_status:
        return False
    if is_terminal(from_status):
        raise RepositoryConflictError(
            f"invalid status transition: {from_status} -> {to_status} (contribution already reviewed)"
        )
    allowed = _ALLOWED_TRANSITIONS.get(from_status)
    if not allowed or to_status not in allowed:
        raise RepositoryConflictError(f"invalid status transition: {from_status} -> {to_status}")
    return True


def is_terminal(status: str) -> bool:
    return status in TERMINAL_STATUSES


def partition_by_review_state(rows: Iterable[Contribution]) -> ReviewQueue:
    queue = ReviewQueue()
    for row in rows:
        if row.status == INITIAL_STATUS:
            queue.pending.append(row)
        else:
            queue.reviewed.append(row)
    return queue
