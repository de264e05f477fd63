"""Correlation ids for merge invocations and worker tasks."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from uuid import uuid4

from calendar_merge.config.logging_config import bind_context, unbind_context

CORRELATION_ID_KEY = "correlation_id"


def new_correlation_id() -> str:
    return uuid4().hex


@contextmanager
def correlation_scope(existing_id: str | None = None, **fields: str) -> Iterator[str]:
    """Bind a correlation id, plus any extra fields, to log entries in scope.

    Args:
        existing_id: Id to reuse (e.g. the task id of a worker job)
        **fields: Extra context such as ``user_id``

    Yields:
        The bound correlation id

    Example:
        >>> with correlation_scope(user_id="u-1") as correlation_id:
        ...     logger.info("merge_started")
    """
    correlation_id = existing_id or new_correlation_id()
    bound = {CORRELATION_ID_KEY: correlation_id, **fields}
    bind_context(**bound)
    try:
        yield correlation_id
    finally:
        unbind_context(*bound)


__all__ = ["CORRELATION_ID_KEY", "correlation_scope", "new_correlation_id"]
