"""Client-side engine for remote geoprocessing jobs."""

from gpjobs.domain.exceptions import (
    ExtractionError,
    GeoprocessingError,
    JobCancelledError,
    JobError,
    JobFailedError,
    JobTimedOutError,
    MissingResultError,
    NonRetryableError,
    ProtocolError,
    RemoteServiceError,
    RetryableError,
    TransportError,
    TypeMismatchError,
    ValidationError,
)
from gpjobs.domain.models import (
    ExecuteResult,
    JobHandle,
    JobMessage,
    JobOutcome,
    JobStatus,
    OutcomeKind,
    PollingPolicy,
    ResultParameter,
)
from gpjobs.use_cases.cancel_job import CancellationController
from gpjobs.use_cases.extract_result import ResultExtractor
from gpjobs.use_cases.poll_job import JobStatusPoller
from gpjobs.use_cases.run_job import GeoprocessingJobRunner
from gpjobs.use_cases.submit_job import JobSubmitter

__version__ = "0.1.0"

__all__ = [
    "CancellationController",
    "ExecuteResult",
    "ExtractionError",
    "GeoprocessingError",
    "GeoprocessingJobRunner",
    "JobCancelledError",
    "JobError",
    "JobFailedError",
    "JobHandle",
    "JobMessage",
    "JobOutcome",
    "JobStatus",
    "JobStatusPoller",
    "JobSubmitter",
    "JobTimedOutError",
    "MissingResultError",
    "NonRetryableError",
    "OutcomeKind",
    "PollingPolicy",
    "ProtocolError",
    "RemoteServiceError",
    "ResultExtractor",
    "ResultParameter",
    "RetryableError",
    "TransportError",
    "TypeMismatchError",
    "ValidationError",
]
