"""Domain models for remote geoprocessing jobs.

All models use Pydantic v2 for validation; handles and policies are frozen
so every poll or cancel produces a new value instead of mutating one.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import Any, Generic, TypeAlias, TypeVar

from pydantic import BaseModel, ConfigDict, Field, model_validator

from gpjobs.domain.exceptions import JobError

# JSON-compatible payload: null, bool, number, string, array or object.
Value: TypeAlias = Any

T = TypeVar("T")


class JobStatus(StrEnum):
    """Lifecycle states of a remote job."""

    SUBMITTED = "submitted"
    EXECUTING = "executing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLING = "cancelling"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        """Return True once no further transition is valid."""
        return self in _TERMINAL_STATUSES

    @property
    def rank(self) -> int:
        """Position along Submitted → Executing → Cancelling → terminal."""
        return _STATUS_RANK[self]


_TERMINAL_STATUSES = frozenset(
    {JobStatus.SUCCEEDED, JobStatus.FAILED, JobStatus.CANCELLED}
)

_STATUS_RANK: dict[JobStatus, int] = {
    JobStatus.SUBMITTED: 0,
    JobStatus.EXECUTING: 1,
    JobStatus.CANCELLING: 2,
    JobStatus.SUCCEEDED: 3,
    JobStatus.FAILED: 3,
    JobStatus.CANCELLED: 3,
}


class MessageType(StrEnum):
    """Diagnostic message severities reported by the job service."""

    INFORMATIVE = "informative"
    WARNING = "warning"
    ERROR = "error"
    EMPTY = "empty"
    ABORT = "abort"


class JobMessage(BaseModel):
    """Single diagnostic message attached to a job."""

    model_config = ConfigDict(frozen=True)

    type: str = Field(default=MessageType.INFORMATIVE.value)
    description: str = Field(default="")


class JobProgress(BaseModel):
    """Progress block reported by newer servers while a job executes."""

    model_config = ConfigDict(frozen=True)

    type: str = Field(default="default", description="'default' or 'step'")
    message: str = Field(default="")
    percent: float | None = Field(default=None)


class ResultReference(BaseModel):
    """Pointer to a result parameter that may not be fetched yet."""

    model_config = ConfigDict(frozen=True)

    name: str
    param_url: str | None = None
    data_type: str | None = None
    value: Value = None
    materialized: bool = False


class ResultParameter(BaseModel):
    """Materialized result parameter with its generic value."""

    model_config = ConfigDict(frozen=True)

    name: str
    value: Value = None
    data_type: str | None = None


class JobHandle(BaseModel):
    """Caller-owned snapshot of a remote job.

    Created by submission and replaced wholesale by each poll.
    """

    model_config = ConfigDict(frozen=True)

    job_id: str = Field(..., min_length=1)
    operation: str = Field(..., min_length=1)
    status: JobStatus
    messages: tuple[JobMessage, ...] = ()
    results: dict[str, ResultReference] = Field(default_factory=dict)
    progress: JobProgress | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @property
    def message_texts(self) -> list[str]:
        """Descriptions of all diagnostic messages, in server order."""
        return [message.description for message in self.messages]

    def with_status(self, status: JobStatus) -> JobHandle:
        return self.model_copy(update={"status": status})


class ExecuteResult(BaseModel):
    """Outputs of a synchronous task execution."""

    model_config = ConfigDict(frozen=True)

    results: dict[str, ResultParameter] = Field(default_factory=dict)
    messages: tuple[JobMessage, ...] = ()


class PollingPolicy(BaseModel):
    """Backoff rule for status polling, in seconds.

    Delays start at ``initial_delay``, grow by ``backoff_multiplier`` and are
    capped at ``max_delay``; polling gives up after ``max_total_wait``.
    ``jitter_ratio`` randomly shortens each sleep by up to that fraction.
    """

    model_config = ConfigDict(frozen=True)

    initial_delay: float = Field(default=1.0, gt=0)
    max_delay: float = Field(default=30.0, gt=0)
    backoff_multiplier: float = Field(default=2.0, gt=1)
    max_total_wait: float = Field(default=600.0, gt=0)
    jitter_ratio: float = Field(default=0.0, ge=0, lt=1)

    @model_validator(mode="after")
    def _check_bounds(self) -> PollingPolicy:
        if self.initial_delay > self.max_delay:
            msg = "initial_delay must not exceed max_delay"
            raise ValueError(msg)
        if self.max_total_wait < self.initial_delay:
            msg = "max_total_wait must be at least initial_delay"
            raise ValueError(msg)
        return self


class OutcomeKind(StrEnum):
    """How a poll-and-extract sequence ended."""

    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    TIMED_OUT = "timed_out"


@dataclass(frozen=True)
class JobOutcome(Generic[T]):
    """Final result of running a job: a typed value or a terminal failure."""

    kind: OutcomeKind
    handle: JobHandle
    value: T | None = None
    error: JobError | None = None

    @property
    def ok(self) -> bool:
        return self.kind is OutcomeKind.COMPLETED

    @property
    def messages(self) -> list[str]:
        return self.handle.message_texts

    def unwrap(self) -> T:
        """Return the completed value or raise the error behind the outcome."""

        if self.error is not None:
            raise self.error
        return self.value  # type: ignore[return-value]


__all__ = [
    "ExecuteResult",
    "JobHandle",
    "JobMessage",
    "JobOutcome",
    "JobProgress",
    "JobStatus",
    "MessageType",
    "OutcomeKind",
    "PollingPolicy",
    "ResultParameter",
    "ResultReference",
    "Value",
]
