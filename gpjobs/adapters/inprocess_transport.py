"""In-process geoprocessing service for development and testing.

Serves the same routes and JSON shapes as a remote job service
(``submitJob``, ``jobs/{id}``, ``cancel``, ``messages``, ``results``,
``execute``) while running task handlers on worker threads.
"""

from __future__ import annotations

import json
import re
import threading
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any, Final, Protocol
from uuid import uuid4

from gpjobs.config.logging_config import get_logger
from gpjobs.domain.exceptions import ProtocolError
from gpjobs.domain.models import JobStatus, MessageType, Value
from gpjobs.ports.transport import TransportPort

logger = get_logger(__name__)


class JobReporter(Protocol):
    def update(
        self, *, progress: float | None = None, message: str | None = None
    ) -> None: ...

    def warn(self, message: str) -> None: ...

    @property
    def cancel_requested(self) -> bool: ...

    def check_cancelled(self) -> None: ...


TaskHandler = Callable[[dict[str, Value], JobReporter], dict[str, Value]]


class TaskCancelled(Exception):
    """Raised inside a handler to stop work after a cancel request."""


ERROR_CODE_BAD_REQUEST: Final[int] = 400
ERROR_CODE_SERVER: Final[int] = 500

_WIRE_STATUS: Final[dict[JobStatus, str]] = {
    JobStatus.SUBMITTED: "esriJobSubmitted",
    JobStatus.EXECUTING: "esriJobExecuting",
    JobStatus.SUCCEEDED: "esriJobSucceeded",
    JobStatus.FAILED: "esriJobFailed",
    JobStatus.CANCELLING: "esriJobCancelling",
    JobStatus.CANCELLED: "esriJobCancelled",
}

_WIRE_MESSAGE_TYPE: Final[dict[str, str]] = {
    MessageType.INFORMATIVE.value: "esriJobMessageTypeInformative",
    MessageType.WARNING.value: "esriJobMessageTypeWarning",
    MessageType.ERROR.value: "esriJobMessageTypeError",
    MessageType.ABORT.value: "esriJobMessageTypeAbort",
}

_ROUTE: Final[re.Pattern[str]] = re.compile(
    r"^(?P<operation>[^/]+)/"
    r"(?:(?P<action>submitJob|execute)"
    r"|jobs/(?P<job_id>[^/]+)"
    r"(?:/(?P<sub>cancel|messages|results/(?P<result>[^/]+)))?)$"
)


def decode_parameters(params: Mapping[str, str]) -> dict[str, Value]:
    """Decode flat wire parameters back into JSON values.

    Values that are not valid JSON are kept as plain strings. The wire form
    of the string ``"123"`` equals that of the number ``123``, so such strings
    reach handlers as numbers (likewise ``"true"``, ``"null"``); handlers that
    need text must convert back.
    """

    decoded: dict[str, Value] = {}
    for key, raw in params.items():
        if key in {"f", "token"}:
            continue
        try:
            decoded[key] = json.loads(raw)
        except ValueError:
            decoded[key] = raw
    return decoded


def _error_payload(code: int, message: str) -> dict[str, Any]:
    return {"error": {"code": code, "message": message, "details": []}}


@dataclass
class JobProgressReporter:
    """Mutable view exposed to task handlers for progress updates."""

    job_id: str
    _service: InProcessGeoprocessingService

    def update(
        self, *, progress: float | None = None, message: str | None = None
    ) -> None:
        """Record progress (0..1) and/or an informative message."""

        self._service._update_job(self.job_id, progress=progress, message=message)

    def warn(self, message: str) -> None:
        self._service._add_message(self.job_id, MessageType.WARNING.value, message)

    @property
    def cancel_requested(self) -> bool:
        return self._service._cancel_requested(self.job_id)

    def check_cancelled(self) -> None:
        """Raise ``TaskCancelled`` once a cancel request has arrived."""

        if self.cancel_requested:
            raise TaskCancelled(self.job_id)


@dataclass
class JobRecord:
    """Internal representation of a submitted job."""

    operation: str
    params: dict[str, Value]
    status: JobStatus = field(default=JobStatus.SUBMITTED)
    progress: float | None = field(default=None)
    progress_message: str = field(default="")
    messages: list[tuple[str, str]] = field(default_factory=list)
    submitted_at: float = field(default_factory=time.time)
    started_at: float | None = field(default=None)
    finished_at: float | None = field(default=None)
    results: dict[str, Value] = field(default_factory=dict)
    cancel_requested: bool = field(default=False)
    done: threading.Event = field(default_factory=threading.Event)


class InProcessGeoprocessingService(TransportPort):
    """Transport that executes tasks locally on worker threads.

    Status transitions follow a remote service: Submitted → Executing →
    Succeeded/Failed, or Cancelling → Cancelled after a cancel request.
    Terminal statuses never change.
    """

    def __init__(self, handlers: dict[str, TaskHandler]):
        if not handlers:
            raise ValueError("handlers must not be empty")
        self._handlers = handlers
        self._jobs: dict[str, JobRecord] = {}
        self._lock = threading.RLock()

    # TransportPort ----------------------------------------------------

    def request(
        self, method: str, path: str, params: Mapping[str, str] | None = None
    ) -> dict[str, Any]:
        match = _ROUTE.match(path.strip("/"))
        if match is None:
            raise ProtocolError(f"{method} {path}: HTTP 404: no such route")

        operation = match["operation"]
        if operation not in self._handlers:
            return _error_payload(
                ERROR_CODE_BAD_REQUEST, f"Unable to find task '{operation}'"
            )

        verb = method.upper()
        action = match["action"]
        if action == "submitJob" and verb == "POST":
            return self._submit(operation, decode_parameters(params or {}))
        if action == "execute" and verb == "POST":
            return self._execute(operation, decode_parameters(params or {}))
        if action is not None:
            raise ProtocolError(f"{method} {path}: HTTP 405: method not allowed")

        job_id = match["job_id"]
        sub = match["sub"]
        with self._lock:
            record = self._jobs.get(job_id)
            if record is None or record.operation != operation:
                return _error_payload(
                    ERROR_CODE_BAD_REQUEST, f"Job '{job_id}' not found"
                )
            if sub is None:
                return self._status_payload(job_id, record)
            if sub == "cancel" and verb == "POST":
                return self._cancel(job_id, record)
            if sub == "messages":
                return {"jobId": job_id, "messages": self._wire_messages(record)}
            if match["result"] is not None:
                return self._result_payload(job_id, record, match["result"])
        raise ProtocolError(f"{method} {path}: HTTP 405: method not allowed")

    # Test and development helpers ------------------------------------

    def wait(self, job_id: str, timeout: float | None = None) -> bool:
        """Block until the job's handler has finished."""

        with self._lock:
            record = self._jobs.get(job_id)
            if record is None:
                raise KeyError(f"Unknown job_id: {job_id}")
        return record.done.wait(timeout)

    def job_ids(self) -> list[str]:
        with self._lock:
            return list(self._jobs)

    # Internal helpers -------------------------------------------------

    def _submit(self, operation: str, params: dict[str, Value]) -> dict[str, Any]:
        job_id = f"j{uuid4().hex}"
        record = JobRecord(operation=operation, params=params)
        with self._lock:
            self._jobs[job_id] = record

        logger.info("inprocess_job_accepted", job_id=job_id, operation=operation)

        thread = threading.Thread(
            target=self._execute_job,
            args=(job_id, self._handlers[operation]),
            daemon=True,
        )
        thread.start()
        return {"jobId": job_id, "jobStatus": _WIRE_STATUS[JobStatus.SUBMITTED]}

    def _execute(self, operation: str, params: dict[str, Value]) -> dict[str, Any]:
        job_id = f"x{uuid4().hex}"
        record = JobRecord(operation=operation, params=params)
        reporter = JobProgressReporter(job_id=job_id, _service=self)
        with self._lock:
            self._jobs[job_id] = record
        try:
            results = self._handlers[operation](dict(params), reporter)
        except Exception as exc:  # noqa: BLE001
            logger.exception("inprocess_execute_failed", operation=operation)
            return _error_payload(ERROR_CODE_SERVER, str(exc))
        finally:
            with self._lock:
                self._jobs.pop(job_id, None)

        return {
            "results": [
                {"paramName": name, "value": value} for name, value in results.items()
            ],
            "messages": self._wire_messages(record),
        }

    def _execute_job(self, job_id: str, handler: TaskHandler) -> None:
        with self._lock:
            record = self._jobs[job_id]
            if record.cancel_requested:
                self._finish(record, JobStatus.CANCELLED)
                return
            record.status = JobStatus.EXECUTING
            record.started_at = time.time()
            params = dict(record.params)

        reporter = JobProgressReporter(job_id=job_id, _service=self)
        try:
            results = handler(params, reporter)
        except TaskCancelled:
            with self._lock:
                self._finish(record, JobStatus.CANCELLED)
            logger.info("inprocess_job_cancelled", job_id=job_id)
        except Exception as exc:  # noqa: BLE001
            logger.exception("inprocess_job_failed", job_id=job_id)
            with self._lock:
                record.messages.append((MessageType.ERROR.value, str(exc)))
                self._finish(record, JobStatus.FAILED)
        else:
            with self._lock:
                if record.cancel_requested:
                    self._finish(record, JobStatus.CANCELLED)
                else:
                    record.results = dict(results)
                    record.progress = 1.0
                    self._finish(record, JobStatus.SUCCEEDED)
            logger.info(
                "inprocess_job_completed",
                job_id=job_id,
                operation=record.operation,
                status=record.status.value,
            )

    def _finish(self, record: JobRecord, status: JobStatus) -> None:
        record.status = status
        record.finished_at = time.time()
        record.done.set()

    def _cancel(self, job_id: str, record: JobRecord) -> dict[str, Any]:
        if record.status.is_terminal:
            return _error_payload(
                ERROR_CODE_BAD_REQUEST,
                f"Job '{job_id}' already finished ({record.status.value})",
            )
        record.cancel_requested = True
        record.status = JobStatus.CANCELLING
        logger.info("inprocess_job_cancel_received", job_id=job_id)
        return {"jobId": job_id, "jobStatus": _WIRE_STATUS[record.status]}

    def _cancel_requested(self, job_id: str) -> bool:
        with self._lock:
            record = self._jobs.get(job_id)
            return record is not None and record.cancel_requested

    def _update_job(
        self, job_id: str, *, progress: float | None, message: str | None
    ) -> None:
        with self._lock:
            record = self._jobs.get(job_id)
            if record is None:
                return
            if progress is not None:
                record.progress = max(0.0, min(progress, 1.0))
            if message is not None:
                record.progress_message = message
                record.messages.append((MessageType.INFORMATIVE.value, message))

    def _add_message(self, job_id: str, message_type: str, message: str) -> None:
        with self._lock:
            record = self._jobs.get(job_id)
            if record is not None:
                record.messages.append((message_type, message))

    def _wire_messages(self, record: JobRecord) -> list[dict[str, str]]:
        return [
            {"type": _WIRE_MESSAGE_TYPE[kind], "description": text}
            for kind, text in record.messages
        ]

    def _status_payload(self, job_id: str, record: JobRecord) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "jobId": job_id,
            "jobStatus": _WIRE_STATUS[record.status],
            "messages": self._wire_messages(record),
            "results": {},
            "inputs": {},
        }
        if record.status is JobStatus.SUCCEEDED:
            payload["results"] = {
                name: {"paramUrl": f"results/{name}"} for name in record.results
            }
        if record.progress is not None and not record.status.is_terminal:
            payload["progress"] = {
                "type": "default",
                "message": record.progress_message,
                "percent": round(record.progress * 100, 2),
            }
        return payload

    def _result_payload(
        self, job_id: str, record: JobRecord, name: str
    ) -> dict[str, Any]:
        if record.status is not JobStatus.SUCCEEDED or name not in record.results:
            return _error_payload(
                ERROR_CODE_BAD_REQUEST,
                f"Result parameter '{name}' not available for job '{job_id}'",
            )
        return {"paramName": name, "value": record.results[name]}


__all__ = [
    "InProcessGeoprocessingService",
    "JobProgressReporter",
    "TaskCancelled",
    "TaskHandler",
    "decode_parameters",
]
