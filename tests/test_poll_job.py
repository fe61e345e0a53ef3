"""Tests for status polling: backoff, timeout, retries and ordering."""

from __future__ import annotations

import random
import time

import pytest
from structlog.testing import capture_logs

from gpjobs.domain.exceptions import (
    JobTimedOutError,
    ProtocolError,
    RemoteServiceError,
    TransportError,
)
from gpjobs.domain.models import JobStatus, PollingPolicy
from gpjobs.use_cases.poll_job import JobStatusPoller
from tests.conftest import (
    STATUS_PATH,
    FakeClock,
    ScriptedTransport,
    make_handle,
    status_body,
)

FAST_POLICY = PollingPolicy(
    initial_delay=0.01, max_delay=0.1, backoff_multiplier=2, max_total_wait=1.0
)


def test_polls_with_growing_delays_until_succeeded(
    transport: ScriptedTransport, clock: FakeClock, poller: JobStatusPoller
) -> None:
    transport.script(
        "GET",
        STATUS_PATH,
        status_body(JobStatus.EXECUTING),
        status_body(JobStatus.EXECUTING),
        status_body(JobStatus.SUCCEEDED),
    )

    handle = poller.poll_until_terminal(make_handle(), FAST_POLICY)

    assert handle.status is JobStatus.SUCCEEDED
    assert clock.sleeps == pytest.approx([0.01, 0.02])
    assert transport.count("GET", STATUS_PATH) == 3


def test_terminal_handle_is_returned_without_request(
    transport: ScriptedTransport, poller: JobStatusPoller
) -> None:
    for status in (JobStatus.SUCCEEDED, JobStatus.FAILED, JobStatus.CANCELLED):
        handle = make_handle(status)
        assert poller.poll_until_terminal(handle, FAST_POLICY) is handle

    assert transport.calls == []


def test_times_out_when_job_never_finishes(
    transport: ScriptedTransport, clock: FakeClock, poller: JobStatusPoller
) -> None:
    transport.script("GET", STATUS_PATH, status_body(JobStatus.EXECUTING))
    policy = PollingPolicy(initial_delay=0.01, max_delay=0.1, max_total_wait=0.05)

    with pytest.raises(JobTimedOutError) as exc_info:
        poller.poll_until_terminal(make_handle(), policy)

    error = exc_info.value
    assert error.last_known.status is JobStatus.EXECUTING
    assert error.elapsed_seconds == pytest.approx(0.05)
    assert error.max_total_wait == 0.05
    assert "remote state is unknown" in str(error)
    # The final sleep is clamped so the last poll lands on the deadline.
    assert sum(clock.sleeps) == pytest.approx(0.05)
    assert all(sleep <= 0.1 for sleep in clock.sleeps)
    assert transport.count("GET", STATUS_PATH) == len(clock.sleeps) + 1


@pytest.mark.slow
def test_timeout_is_bounded_in_real_time() -> None:
    transport = ScriptedTransport().script(
        "GET", STATUS_PATH, status_body(JobStatus.EXECUTING)
    )
    poller = JobStatusPoller(transport)
    policy = PollingPolicy(initial_delay=0.01, max_delay=0.1, max_total_wait=0.05)

    started = time.monotonic()
    with pytest.raises(JobTimedOutError):
        poller.poll_until_terminal(make_handle(), policy)
    elapsed = time.monotonic() - started

    assert 0.049 <= elapsed < 0.5


def test_at_least_one_poll_even_when_budget_is_already_spent(
    transport: ScriptedTransport,
) -> None:
    # Every clock read advances far past the ceiling, as after a slow request.
    slow_clock = FakeClock(tick=10.0)
    poller = JobStatusPoller(transport, sleep=slow_clock.sleep, clock=slow_clock)
    transport.script("GET", STATUS_PATH, status_body(JobStatus.EXECUTING))
    policy = PollingPolicy(initial_delay=1.0, max_delay=1.0, max_total_wait=1.0)

    with pytest.raises(JobTimedOutError):
        poller.poll_until_terminal(make_handle(), policy)

    assert transport.count("GET", STATUS_PATH) == 1
    assert slow_clock.sleeps == []


def test_terminal_status_wins_over_expired_budget(
    transport: ScriptedTransport,
) -> None:
    slow_clock = FakeClock(tick=10.0)
    poller = JobStatusPoller(transport, sleep=slow_clock.sleep, clock=slow_clock)
    transport.script("GET", STATUS_PATH, status_body(JobStatus.SUCCEEDED))

    handle = poller.poll_until_terminal(make_handle(), FAST_POLICY)

    assert handle.status is JobStatus.SUCCEEDED


def test_transport_failures_are_retried_inline(
    transport: ScriptedTransport, clock: FakeClock, poller: JobStatusPoller
) -> None:
    transport.script(
        "GET",
        STATUS_PATH,
        TransportError("reset"),
        TransportError("reset"),
        status_body(JobStatus.SUCCEEDED),
    )

    handle = poller.poll_until_terminal(make_handle(), FAST_POLICY)

    assert handle.status is JobStatus.SUCCEEDED
    assert transport.count("GET", STATUS_PATH) == 3
    assert clock.sleeps == []


def test_transport_retries_are_bounded(
    transport: ScriptedTransport, poller: JobStatusPoller
) -> None:
    transport.script("GET", STATUS_PATH, TransportError("down"))

    with capture_logs() as logs, pytest.raises(TransportError):
        poller.poll_until_terminal(make_handle(), FAST_POLICY)

    assert transport.count("GET", STATUS_PATH) == 3
    events = [entry["event"] for entry in logs]
    assert events.count("job_poll_transport_retry") == 2
    assert "job_poll_transport_exhausted" in events


def test_retry_pause_does_not_consume_backoff_schedule(
    transport: ScriptedTransport, clock: FakeClock
) -> None:
    poller = JobStatusPoller(
        transport, sleep=clock.sleep, clock=clock, transport_retry_pause=0.5
    )
    policy = PollingPolicy(initial_delay=1.0, max_delay=8.0, max_total_wait=60.0)
    transport.script(
        "GET",
        STATUS_PATH,
        TransportError("reset"),
        status_body(JobStatus.EXECUTING),
        TransportError("reset"),
        status_body(JobStatus.EXECUTING),
        status_body(JobStatus.SUCCEEDED),
    )

    handle = poller.poll_until_terminal(make_handle(), policy)

    assert handle.status is JobStatus.SUCCEEDED
    assert clock.sleeps == pytest.approx([0.5, 1.0, 0.5, 2.0])


def test_protocol_errors_are_not_retried(
    transport: ScriptedTransport, poller: JobStatusPoller
) -> None:
    transport.script(
        "GET",
        STATUS_PATH,
        status_body(JobStatus.EXECUTING),
        {"jobId": "j1", "jobStatus": "esriJobOnVacation"},
        status_body(JobStatus.SUCCEEDED),
    )

    with pytest.raises(ProtocolError):
        poller.poll_until_terminal(make_handle(), FAST_POLICY)

    assert transport.count("GET", STATUS_PATH) == 2


def test_remote_error_during_poll_propagates(
    transport: ScriptedTransport, poller: JobStatusPoller
) -> None:
    transport.script(
        "GET", STATUS_PATH, {"error": {"code": 404, "message": "Job not found"}}
    )

    with pytest.raises(RemoteServiceError):
        poller.poll_until_terminal(make_handle(), FAST_POLICY)

    assert transport.count("GET", STATUS_PATH) == 1


def test_status_regression_is_not_reported(
    transport: ScriptedTransport, poller: JobStatusPoller
) -> None:
    transport.script(
        "GET",
        STATUS_PATH,
        status_body(JobStatus.EXECUTING),
        status_body(JobStatus.SUBMITTED),
    )
    policy = PollingPolicy(initial_delay=0.01, max_delay=0.01, max_total_wait=0.03)

    with capture_logs() as logs, pytest.raises(JobTimedOutError) as exc_info:
        poller.poll_until_terminal(make_handle(), policy)

    assert exc_info.value.last_known.status is JobStatus.EXECUTING
    assert any(entry["event"] == "job_status_regressed" for entry in logs)


def test_cancelling_is_kept_until_terminal(
    transport: ScriptedTransport, poller: JobStatusPoller
) -> None:
    transport.script(
        "GET",
        STATUS_PATH,
        status_body(JobStatus.EXECUTING),
        status_body(JobStatus.CANCELLED),
    )

    handle = poller.poll_until_terminal(
        make_handle(JobStatus.CANCELLING), FAST_POLICY
    )

    assert handle.status is JobStatus.CANCELLED


def test_poll_replaces_handle_with_fresh_messages(
    transport: ScriptedTransport, poller: JobStatusPoller
) -> None:
    transport.script(
        "GET",
        STATUS_PATH,
        status_body(
            JobStatus.FAILED,
            messages=[{"type": "esriJobMessageTypeError", "description": "Boom"}],
        ),
    )
    original = make_handle(JobStatus.EXECUTING)

    handle = poller.poll_until_terminal(original, FAST_POLICY)

    assert handle is not original
    assert original.status is JobStatus.EXECUTING
    assert handle.status is JobStatus.FAILED
    assert handle.message_texts == ["Boom"]


def test_jitter_shortens_sleeps(
    transport: ScriptedTransport, clock: FakeClock
) -> None:
    poller = JobStatusPoller(
        transport, sleep=clock.sleep, clock=clock, rng=random.Random(3)
    )
    policy = PollingPolicy(
        initial_delay=1.0, max_delay=4.0, max_total_wait=100.0, jitter_ratio=0.5
    )
    transport.script(
        "GET",
        STATUS_PATH,
        status_body(JobStatus.EXECUTING),
        status_body(JobStatus.EXECUTING),
        status_body(JobStatus.EXECUTING),
        status_body(JobStatus.SUCCEEDED),
    )

    poller.poll_until_terminal(make_handle(), policy)

    for sleep, base in zip(clock.sleeps, [1.0, 2.0, 4.0], strict=True):
        assert base * 0.5 <= sleep <= base


def test_fetch_status_is_a_single_poll(
    transport: ScriptedTransport, poller: JobStatusPoller
) -> None:
    transport.script("GET", STATUS_PATH, status_body(JobStatus.EXECUTING))

    handle = poller.fetch_status(make_handle())

    assert handle.status is JobStatus.EXECUTING
    assert transport.count("GET", STATUS_PATH) == 1


def test_fetch_messages(transport: ScriptedTransport, poller: JobStatusPoller) -> None:
    transport.script(
        "GET",
        f"{STATUS_PATH}/messages",
        {
            "jobId": "j1",
            "messages": [
                {"type": "esriJobMessageTypeInformative", "description": "Started"},
                {"type": "esriJobMessageTypeWarning", "description": "Slow"},
            ],
        },
    )

    messages = poller.fetch_messages(make_handle(JobStatus.EXECUTING))

    assert [message.description for message in messages] == ["Started", "Slow"]
    assert messages[1].type == "warning"


def test_invalid_retry_settings_are_rejected(transport: ScriptedTransport) -> None:
    with pytest.raises(ValueError):
        JobStatusPoller(transport, max_transport_attempts=0)
    with pytest.raises(ValueError):
        JobStatusPoller(transport, transport_retry_pause=-1.0)
