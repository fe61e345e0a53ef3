"""Translation of loosely-typed service payloads into handles and typed errors.

Every remote body passes through this module exactly once; the rest of the
package only ever sees ``JobHandle``/``ResultParameter`` values or an error
from ``gpjobs.domain.exceptions``.
"""

from __future__ import annotations

from typing import Any, Final

from pydantic import ValidationError as PydanticValidationError

from gpjobs.config.logging_config import get_logger
from gpjobs.domain.exceptions import (
    GeoprocessingError,
    JobCancelledError,
    JobError,
    JobFailedError,
    JobTimedOutError,
    ProtocolError,
    RemoteServiceError,
    TransportError,
)
from gpjobs.domain.models import (
    ExecuteResult,
    JobHandle,
    JobMessage,
    JobOutcome,
    JobProgress,
    JobStatus,
    MessageType,
    OutcomeKind,
    ResultParameter,
    ResultReference,
    Value,
)

logger = get_logger(__name__)

STATUS_PREFIX: Final[str] = "esrijob"
MESSAGE_TYPE_PREFIX: Final[str] = "esrijobmessagetype"
UNKNOWN_ERROR_CODE: Final[int] = -1
RETRYABLE_HTTP_STATUSES: Final[frozenset[int]] = frozenset({408, 429})
HTTP_SERVER_ERROR_MIN: Final[int] = 500

# Full remote vocabulary folded onto the six lifecycle states.
_STATUS_ALIASES: Final[dict[str, JobStatus]] = {
    "new": JobStatus.SUBMITTED,
    "submitting": JobStatus.SUBMITTED,
    "submitted": JobStatus.SUBMITTED,
    "waiting": JobStatus.SUBMITTED,
    "executing": JobStatus.EXECUTING,
    "succeeded": JobStatus.SUCCEEDED,
    "failed": JobStatus.FAILED,
    "timedout": JobStatus.FAILED,
    "cancelling": JobStatus.CANCELLING,
    "deleting": JobStatus.CANCELLING,
    "cancelled": JobStatus.CANCELLED,
    "canceled": JobStatus.CANCELLED,
    "deleted": JobStatus.CANCELLED,
}

_MESSAGE_TYPES: Final[frozenset[str]] = frozenset(item.value for item in MessageType)


def parse_status(raw: object) -> JobStatus:
    """Map a wire status string such as ``esriJobExecuting`` to ``JobStatus``.

    Raises:
        ProtocolError: If the value is missing or not a known status.
    """
    if not isinstance(raw, str) or not raw.strip():
        raise ProtocolError(f"Job status missing or not a string: {raw!r}")

    key = raw.strip().lower()
    if key.startswith(STATUS_PREFIX):
        key = key[len(STATUS_PREFIX) :]

    status = _STATUS_ALIASES.get(key)
    if status is None:
        logger.warning("job_status_unrecognized", status=raw)
        raise ProtocolError(f"Unrecognized job status: {raw!r}")
    return status


def _message_type(raw: object) -> str:
    if not isinstance(raw, str) or not raw:
        return MessageType.INFORMATIVE.value
    key = raw.lower()
    if key.startswith(MESSAGE_TYPE_PREFIX):
        key = key[len(MESSAGE_TYPE_PREFIX) :]
    return key if key in _MESSAGE_TYPES else raw


def parse_messages(raw: object) -> tuple[JobMessage, ...]:
    """Parse the optional ordered list of diagnostic messages."""
    if raw is None:
        return ()
    if not isinstance(raw, list):
        raise ProtocolError(f"Job messages must be a list, got {type(raw).__name__}")

    messages: list[JobMessage] = []
    for item in raw:
        if isinstance(item, str):
            messages.append(JobMessage(description=item))
        elif isinstance(item, dict):
            messages.append(
                JobMessage(
                    type=_message_type(item.get("type")),
                    description=str(item.get("description") or ""),
                )
            )
        else:
            raise ProtocolError(f"Unexpected job message entry: {item!r}")
    return tuple(messages)


def _parse_progress(raw: object) -> JobProgress | None:
    if not isinstance(raw, dict):
        return None
    percent = raw.get("percent")
    return JobProgress(
        type=str(raw.get("type") or "default"),
        message=str(raw.get("message") or ""),
        percent=(
            float(percent)
            if isinstance(percent, int | float) and not isinstance(percent, bool)
            else None
        ),
    )


def check_remote_error(payload: dict[str, Any], action: str) -> None:
    """Raise ``RemoteServiceError`` when the body carries an error payload.

    Handles both ``{"error": {"code": 400, "message": ...}}`` and
    ``{"success": false, "error": {"message": ...}}`` shapes.
    """
    error = payload.get("error")
    if error is None:
        return

    code = UNKNOWN_ERROR_CODE
    if isinstance(error, dict):
        message = str(error.get("message") or "unspecified error")
        details = error.get("details")
        if isinstance(details, list) and details:
            message = f"{message} ({'; '.join(str(detail) for detail in details)})"
        try:
            code = int(error.get("code", UNKNOWN_ERROR_CODE))
        except (TypeError, ValueError):
            code = UNKNOWN_ERROR_CODE
    else:
        message = str(error)

    logger.error("remote_service_error", action=action, code=code, message=message)
    raise RemoteServiceError(code, message, action=action)


def _require_object(payload: object, action: str) -> dict[str, Any]:
    if not isinstance(payload, dict):
        raise ProtocolError(
            f"{action}: expected a JSON object, got {type(payload).__name__}"
        )
    return payload


def _parse_result_reference(name: str, raw: object) -> ResultReference:
    if not isinstance(raw, dict):
        raise ProtocolError(f"Result reference for '{name}' is not an object")
    param_url = raw.get("paramUrl")
    data_type = raw.get("dataType")
    return ResultReference(
        name=name,
        param_url=param_url if isinstance(param_url, str) and param_url else None,
        data_type=data_type if isinstance(data_type, str) else None,
        value=raw.get("value"),
        materialized="value" in raw,
    )


def parse_job_handle(
    payload: object, *, operation: str, action: str = "job_status"
) -> JobHandle:
    """Build a ``JobHandle`` from a submit, status or cancel response.

    Unknown fields are ignored. A missing job id is always an error.

    Raises:
        RemoteServiceError: If the body carries an error payload.
        ProtocolError: If the body cannot be read as a job description.
    """
    body = _require_object(payload, action)
    check_remote_error(body, action)

    job_id = body.get("jobId") or body.get("jobID")
    if not isinstance(job_id, str) or not job_id.strip():
        raise ProtocolError(f"{action}: response has no job id")

    status = parse_status(body.get("jobStatus") or body.get("status"))

    raw_results = body.get("results")
    if raw_results is None:
        raw_results = {}
    if not isinstance(raw_results, dict):
        raise ProtocolError(f"{action}: job results must be an object")

    try:
        return JobHandle(
            job_id=job_id,
            operation=operation,
            status=status,
            messages=parse_messages(body.get("messages")),
            results={
                name: _parse_result_reference(name, raw)
                for name, raw in raw_results.items()
            },
            progress=_parse_progress(body.get("progress")),
        )
    except PydanticValidationError as exc:
        raise ProtocolError(f"{action}: invalid job description: {exc}") from exc


def parse_result_parameter(
    payload: object, *, name: str, action: str = "job_result"
) -> ResultParameter:
    """Parse a single result-parameter response body."""
    body = _require_object(payload, action)
    check_remote_error(body, action)

    if "value" not in body:
        raise ProtocolError(f"{action}: result parameter '{name}' has no value")

    data_type = body.get("dataType")
    return ResultParameter(
        name=str(body.get("paramName") or name),
        value=body["value"],
        data_type=data_type if isinstance(data_type, str) else None,
    )


def parse_execute_result(
    payload: object, *, action: str = "execute"
) -> ExecuteResult:
    """Parse the body of a synchronous execution."""
    body = _require_object(payload, action)
    check_remote_error(body, action)

    raw_results = body.get("results") or []
    if not isinstance(raw_results, list):
        raise ProtocolError(f"{action}: results must be a list")

    results: dict[str, ResultParameter] = {}
    for entry in raw_results:
        if not isinstance(entry, dict):
            raise ProtocolError(f"{action}: unexpected result entry {entry!r}")
        name = entry.get("paramName")
        if not isinstance(name, str) or not name:
            raise ProtocolError(f"{action}: result entry without paramName")
        results[name] = parse_result_parameter(entry, name=name, action=action)

    return ExecuteResult(
        results=results, messages=parse_messages(body.get("messages"))
    )


def error_for_http_status(
    status_code: int, action: str, body: str = ""
) -> GeoprocessingError:
    """Classify a non-success HTTP status as transport or protocol failure."""
    preview = body[:200]
    if (
        status_code >= HTTP_SERVER_ERROR_MIN
        or status_code in RETRYABLE_HTTP_STATUSES
    ):
        return TransportError(f"{action}: HTTP {status_code}: {preview}")
    return ProtocolError(f"{action}: HTTP {status_code}: {preview}")


def failure_messages(handle: JobHandle) -> list[str]:
    """Error-level messages of a handle, or all messages when none are errors."""
    errors = [
        message.description
        for message in handle.messages
        if message.type in {MessageType.ERROR.value, MessageType.ABORT.value}
    ]
    return errors or handle.message_texts


def error_for_terminal(handle: JobHandle) -> JobError | None:
    """Return the error a terminal, unsuccessful handle stands for."""
    if handle.status is JobStatus.FAILED:
        return JobFailedError(failure_messages(handle), job_id=handle.job_id)
    if handle.status is JobStatus.CANCELLED:
        return JobCancelledError(job_id=handle.job_id)
    return None


def outcome_for(handle: JobHandle, value: Value = None) -> JobOutcome[Any]:
    """Wrap a terminal handle (and extracted value) into a ``JobOutcome``."""
    if handle.status is JobStatus.SUCCEEDED:
        return JobOutcome(kind=OutcomeKind.COMPLETED, handle=handle, value=value)

    error = error_for_terminal(handle)
    if error is None:
        raise ProtocolError(
            f"Job {handle.job_id} is not terminal (status {handle.status.value})"
        )
    kind = (
        OutcomeKind.FAILED
        if handle.status is JobStatus.FAILED
        else OutcomeKind.CANCELLED
    )
    return JobOutcome(kind=kind, handle=handle, error=error)


def timed_out_outcome(error: JobTimedOutError) -> JobOutcome[Any]:
    """Outcome for a poll that stopped locally; remote state stays unknown."""
    return JobOutcome(kind=OutcomeKind.TIMED_OUT, handle=error.last_known, error=error)


__all__ = [
    "check_remote_error",
    "error_for_http_status",
    "error_for_terminal",
    "failure_messages",
    "outcome_for",
    "parse_execute_result",
    "parse_job_handle",
    "parse_messages",
    "parse_result_parameter",
    "parse_status",
    "timed_out_outcome",
]
