"""Pytest configuration and shared fixtures."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

import pytest

from gpjobs.domain.models import JobHandle, JobStatus, ResultReference
from gpjobs.use_cases.poll_job import JobStatusPoller

OPERATION = "Foo"
JOB_ID = "j1"
STATUS_PATH = f"{OPERATION}/jobs/{JOB_ID}"

_WIRE_NAMES = {
    JobStatus.SUBMITTED: "esriJobSubmitted",
    JobStatus.EXECUTING: "esriJobExecuting",
    JobStatus.SUCCEEDED: "esriJobSucceeded",
    JobStatus.FAILED: "esriJobFailed",
    JobStatus.CANCELLING: "esriJobCancelling",
    JobStatus.CANCELLED: "esriJobCancelled",
}


class FakeClock:
    """Monotonic clock that only moves when ``sleep`` is called."""

    def __init__(self, start: float = 0.0, tick: float = 0.0) -> None:
        self.now = start
        self.tick = tick
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        current = self.now
        self.now += self.tick
        return current

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


class ScriptedTransport:
    """Transport returning scripted bodies (or raising scripted errors).

    The last scripted item of a route is repeated once the others are used up.
    """

    def __init__(self) -> None:
        self.calls: list[tuple[str, str, dict[str, str]]] = []
        self._routes: dict[tuple[str, str], list[Any]] = {}

    def script(self, method: str, path: str, *responses: Any) -> ScriptedTransport:
        self._routes.setdefault((method, path), []).extend(responses)
        return self

    def request(
        self, method: str, path: str, params: Mapping[str, str] | None = None
    ) -> dict[str, Any]:
        self.calls.append((method, path, dict(params or {})))
        queue = self._routes.get((method, path))
        if not queue:
            raise AssertionError(f"unexpected request {method} {path}")
        item = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(item, BaseException):
            raise item
        return item

    def count(self, method: str, path: str) -> int:
        return sum(1 for call in self.calls if call[0] == method and call[1] == path)


def status_body(
    status: JobStatus, job_id: str = JOB_ID, **extra: Any
) -> dict[str, Any]:
    """Status response body as the service would send it."""

    return {"jobId": job_id, "jobStatus": _WIRE_NAMES[status], **extra}


def make_handle(
    status: JobStatus = JobStatus.SUBMITTED,
    *,
    job_id: str = JOB_ID,
    operation: str = OPERATION,
    results: dict[str, ResultReference] | None = None,
    **extra: Any,
) -> JobHandle:
    return JobHandle(
        job_id=job_id,
        operation=operation,
        status=status,
        results=results or {},
        **extra,
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def transport() -> ScriptedTransport:
    return ScriptedTransport()


@pytest.fixture
def poller(transport: ScriptedTransport, clock: FakeClock) -> JobStatusPoller:
    return JobStatusPoller(transport, sleep=clock.sleep, clock=clock)
