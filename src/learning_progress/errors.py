"""Error types raised by the progress engine."""


class ProgressError(Exception):
    """Base class for all engine errors."""


class DataValidationError(ProgressError):
    """Activity or session data is malformed. Never retried."""


class TransientStoreError(ProgressError):
    """The store could not complete an operation; safe to retry."""


class ConcurrencyConflict(TransientStoreError):
    """A transaction lost against a concurrent writer and must be re-run."""

    def __init__(self, collection: str, key: str):
        super().__init__(f"Concurrent modification of {collection}/{key}")
        self.collection = collection
        self.key = key


class SessionStateError(ProgressError):
    """A session lifecycle method was called in the wrong state."""


class RetryExhaustedError(ProgressError):
    """An operation kept failing after every retry attempt.

    Args:
        operation: Name of the wrapped operation.
        attempts: Number of attempts made.
        last_error: The error raised by the final attempt.
    """

    def __init__(self, operation: str, attempts: int, last_error: BaseException):
        super().__init__(
            f"{operation} failed after {attempts} attempts: {last_error}"
        )
        self.operation = operation
        self.attempts = attempts
        self.last_error = last_error


class SessionNotFoundError(ProgressError):
    """No in-progress session is registered under the given id."""
