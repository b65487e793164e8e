class RepositoryError(Exception):
    """Base repository error."""


class RepositoryUnavailableError(RepositoryError):
    """Raised when the database is unavailable or not configured."""


class RepositoryValidationError(RepositoryError):
    """Raised when payload validation fails before persistence."""


class RepositoryConflictError(RepositoryError):
    """Raised when an operation violates status transition rules."""


class RepositoryInitError(RepositoryError):
    """Schema bootstrap failed. Logged and recorded, never raised to callers."""


class RepositoryReadError(RepositoryError):
    """A read path failed. Carried inside a StoreResult instead of being raised."""


class RepositoryWriteError(RepositoryError):
    """A create, upsert or raw query failed. Always raised to the caller."""


class QueryTranslationError(RepositoryValidationError):
    """Raised when placeholder markers and parameters disagree."""
