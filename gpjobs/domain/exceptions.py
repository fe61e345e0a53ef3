"""Custom exception hierarchy for remote geoprocessing jobs.

Following error taxonomy: retryable (transport), non-retryable (protocol,
validation), terminal job outcomes and extraction-time errors.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from gpjobs.domain.models import JobHandle


class GeoprocessingError(Exception):
    """Base exception for all gpjobs errors."""

    pass


class RetryableError(GeoprocessingError):
    """Errors that can be retried (network issues, temporary failures)."""

    pass


class NonRetryableError(GeoprocessingError):
    """Errors that should not be retried (contract violations, job outcomes)."""

    pass


class TransportError(RetryableError):
    """Network or connection failure talking to the job service."""

    pass


class ValidationError(NonRetryableError):
    """Invalid local input, rejected before anything is sent."""

    pass


class ProtocolError(NonRetryableError):
    """Response could not be understood (missing job id, unknown status, bad body)."""

    pass


class RemoteServiceError(ProtocolError):
    """Service answered with an embedded error payload instead of a result."""

    def __init__(self, code: int, message: str, *, action: str = "") -> None:
        """Initialize with the remote error code and message."""
        self.code = code
        self.message = message
        self.action = action
        prefix = f"{action}: " if action else ""
        super().__init__(f"{prefix}remote service error {code}: {message}")


class JobError(NonRetryableError):
    """A job reached an outcome other than success."""

    def __init__(self, message: str, *, job_id: str | None = None) -> None:
        self.job_id = job_id
        super().__init__(message)


class JobFailedError(JobError):
    """Remote job finished with status Failed."""

    def __init__(self, messages: list[str], *, job_id: str | None = None) -> None:
        """Initialize with the diagnostic messages reported by the service."""
        self.messages = list(messages)
        detail = "; ".join(self.messages) if self.messages else "no messages"
        super().__init__(f"Job {job_id} failed: {detail}", job_id=job_id)


class JobCancelledError(JobError):
    """Remote job finished with status Cancelled."""

    def __init__(self, *, job_id: str | None = None) -> None:
        super().__init__(f"Job {job_id} was cancelled", job_id=job_id)


class JobTimedOutError(JobError):
    """Polling stopped locally before the job reached a terminal status.

    The remote job may still be running; its state is unknown to the caller.
    """

    def __init__(
        self,
        *,
        last_known: JobHandle,
        elapsed_seconds: float,
        max_total_wait: float,
    ) -> None:
        """Initialize with the last observed handle and timing details."""
        self.last_known = last_known
        self.elapsed_seconds = elapsed_seconds
        self.max_total_wait = max_total_wait
        super().__init__(
            f"Job {last_known.job_id} did not finish within {max_total_wait:.3f}s "
            f"(last seen {last_known.status.value}); remote state is unknown",
            job_id=last_known.job_id,
        )


class ExtractionError(NonRetryableError):
    """Result parameter could not be produced in the requested shape."""

    pass


class MissingResultError(ExtractionError):
    """Requested result parameter is not available on the handle."""

    def __init__(
        self, parameter_name: str, *, job_id: str | None = None, reason: str = ""
    ) -> None:
        self.parameter_name = parameter_name
        self.job_id = job_id
        suffix = f" ({reason})" if reason else ""
        super().__init__(
            f"Result parameter '{parameter_name}' not available "
            f"for job {job_id}{suffix}"
        )


class TypeMismatchError(ExtractionError):
    """Result value cannot be converted to the requested type."""

    def __init__(self, parameter_name: str, target: object, detail: str) -> None:
        self.parameter_name = parameter_name
        self.target = target
        super().__init__(
            f"Result parameter '{parameter_name}' cannot be converted to "
            f"{getattr(target, '__name__', target)}: {detail}"
        )
