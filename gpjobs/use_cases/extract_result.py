"""Extract result use case.

Turns a result parameter of a finished job into a caller-requested type.
Extraction reads what the handle already carries and makes at most one
request to materialize a value that was not fetched yet; it never polls.
"""

from __future__ import annotations

from typing import Any, TypeVar, overload

from gpjobs.config.logging_config import get_logger
from gpjobs.domain.exceptions import MissingResultError
from gpjobs.domain.models import ExecuteResult, JobHandle, JobStatus, ResultParameter
from gpjobs.ports.transport import TransportPort
from gpjobs.services.error_translator import error_for_terminal, parse_result_parameter
from gpjobs.services.value_converter import convert_value
from gpjobs.use_cases.poll_job import job_path

logger = get_logger(__name__)

T = TypeVar("T")


class ResultExtractor:
    """Reads typed result values from terminal job handles."""

    def __init__(self, transport: TransportPort) -> None:
        self._transport = transport

    def materialize(self, handle: JobHandle, name: str) -> ResultParameter:
        """Return the generic value of a result parameter.

        Args:
            handle: Terminal handle of a succeeded job
            name: Result parameter name

        Returns:
            The parameter with its untyped value

        Raises:
            JobFailedError: The job failed
            JobCancelledError: The job was cancelled
            MissingResultError: The job has not succeeded or has no such output
            TransportError: Fetching the value failed
            ProtocolError: The value response was malformed
        """
        error = error_for_terminal(handle)
        if error is not None:
            raise error
        if handle.status is not JobStatus.SUCCEEDED:
            raise MissingResultError(
                name,
                job_id=handle.job_id,
                reason=f"job is {handle.status.value}, not succeeded",
            )

        reference = handle.results.get(name)
        if reference is None:
            raise MissingResultError(
                name,
                job_id=handle.job_id,
                reason=f"available: {', '.join(sorted(handle.results)) or 'none'}",
            )

        if reference.materialized:
            return ResultParameter(
                name=name, value=reference.value, data_type=reference.data_type
            )

        suffix = reference.param_url or f"results/{name}"
        payload = self._transport.request("GET", job_path(handle, suffix))
        parameter = parse_result_parameter(payload, name=name)
        logger.info(
            "job_result_materialized",
            job_id=handle.job_id,
            parameter=name,
            data_type=parameter.data_type or reference.data_type,
        )
        if parameter.data_type is None and reference.data_type is not None:
            parameter = parameter.model_copy(update={"data_type": reference.data_type})
        return parameter

    @overload
    def extract(self, handle: JobHandle, name: str, target: type[T]) -> T: ...

    @overload
    def extract(self, handle: JobHandle, name: str, target: Any) -> Any: ...

    def extract(self, handle: JobHandle, name: str, target: Any) -> Any:
        """Return a result parameter converted to ``target``.

        Raises:
            TypeMismatchError: The value does not fit ``target``
            (plus everything ``materialize`` raises)
        """
        parameter = self.materialize(handle, name)
        return convert_value(parameter.value, target, name=name)

    @staticmethod
    def extract_from_execute(result: ExecuteResult, name: str, target: Any) -> Any:
        """Convert an output of a synchronous execution to ``target``."""
        parameter = result.results.get(name)
        if parameter is None:
            raise MissingResultError(
                name,
                reason=f"available: {', '.join(sorted(result.results)) or 'none'}",
            )
        return convert_value(parameter.value, target, name=name)


__all__ = ["ResultExtractor"]
