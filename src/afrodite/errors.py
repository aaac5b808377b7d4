"""Error types shared by the cache, storage and HTTP layers.

Every error that can reach a client carries the ``code`` and
``status_code`` used to build the ``{"error": {...}}`` envelope.
"""

from __future__ import annotations


class AfroditeError(Exception):
    code: str = "INTERNAL_ERROR"
    status_code: int = 500
    message: str = "Internal server error."

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.message)
        if message is not None:
            self.message = message


class NotCached(AfroditeError):
    """The requested account or resource has no cache entry yet.

    Internal signal only: the coordinator falls back to the database.
    """

    code = "NOT_CACHED"
    message = "Data is not in cache."


class DatabaseError(AfroditeError):
    code = "DATABASE_ERROR"
    status_code = 503
    message = "Storage is temporarily unavailable."


class InvalidSession(AfroditeError):
    """The session id does not match the account's current iterator cursor.

    Never sent as an HTTP error: the iterator routes answer with an empty
    page flagged ``error_invalid_iterator_session_id``.
    """

    code = "INVALID_ITERATOR_SESSION"
    message = "Iterator session is unknown or expired. Reset the iterator."


class ApiLimitReached(AfroditeError):
    code = "API_LIMIT_REACHED"
    status_code = 429
    message = "Daily API limit reached."


class DataResetInProgress(AfroditeError):
    code = "DATA_RESET_IN_PROGRESS"
    status_code = 503
    message = "Backend data reset is in progress."


class UnknownResource(AfroditeError):
    code = "UNKNOWN_RESOURCE"
    status_code = 404
    message = "Unknown resource kind."


class CacheInvariantError(RuntimeError):
    """Raised when the cache is used in a way the write path never should."""


class AlreadyLiked(AfroditeError):
    code = "ALREADY_LIKED"
    status_code = 409
    message = "Like already sent."
