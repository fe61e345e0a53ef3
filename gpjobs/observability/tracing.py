"""Context scopes that tag every log entry of a job run."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from uuid import uuid4

import structlog

from gpjobs.config.logging_config import bind_context, unbind_context

CORRELATION_ID_KEY = "correlation_id"
JOB_ID_KEY = "job_id"
OPERATION_KEY = "operation"


def current_correlation_id() -> str | None:
    value = structlog.contextvars.get_contextvars().get(CORRELATION_ID_KEY)
    return str(value) if value is not None else None


@contextmanager
def correlation_scope(existing_id: str | None = None) -> Iterator[str]:
    """Bind a correlation id for the duration of the block.

    Without ``existing_id`` an id already bound by an enclosing scope is
    reused, so a run started inside a caller's scope keeps the caller's id.
    Only an id bound here is removed on exit.
    """
    inherited = current_correlation_id()
    correlation_id = existing_id or inherited or uuid4().hex
    if correlation_id == inherited:
        yield correlation_id
        return

    bind_context(**{CORRELATION_ID_KEY: correlation_id})
    try:
        yield correlation_id
    finally:
        if inherited is None:
            unbind_context(CORRELATION_ID_KEY)
        else:
            bind_context(**{CORRELATION_ID_KEY: inherited})


@contextmanager
def job_scope(
    operation: str | None = None, job_id: str | None = None
) -> Iterator[None]:
    """Bind the operation and/or job id to every log entry in the block."""
    bound: dict[str, str] = {}
    if operation is not None:
        bound[OPERATION_KEY] = operation
    if job_id is not None:
        bound[JOB_ID_KEY] = job_id
    bind_context(**bound)
    try:
        yield
    finally:
        unbind_context(*bound)


__all__ = [
    "CORRELATION_ID_KEY",
    "JOB_ID_KEY",
    "OPERATION_KEY",
    "correlation_scope",
    "current_correlation_id",
    "job_scope",
]
