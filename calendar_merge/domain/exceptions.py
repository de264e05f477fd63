"""Custom exception hierarchy for the calendar merge engine.

Following error taxonomy: retryable, non-retryable, validation, not-found.
"""


class CalendarMergeError(Exception):
    """Base exception for all application errors."""

    pass


class RetryableError(CalendarMergeError):
    """Errors that can be retried (network issues, temporary failures)."""

    pass


class NonRetryableError(CalendarMergeError):
    """Errors that should not be retried (validation, lookup, logic errors)."""

    pass


class ValidationError(NonRetryableError):
    """Data validation errors and merge preconditions that do not hold."""

    pass


class NotFoundError(NonRetryableError):
    """Referenced user or event does not exist."""

    pass


class PersistenceError(NonRetryableError):
    """Atomic merge write (insert + delete + audit) could not be committed."""

    pass


class RepositoryError(RetryableError):
    """Database/storage errors."""

    pass


class LLMAPIError(RetryableError):
    """LLM API communication errors."""

    pass


class SummarizationError(RetryableError):
    """Summary text could not be produced."""

    pass
