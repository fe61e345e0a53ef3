"""Poll job use case.

Repeatedly fetches the status of a remote job, backing off between
requests, until the job is terminal or the local time budget runs out.
"""

from __future__ import annotations

import random
import time
from collections.abc import Callable
from typing import Final

from gpjobs.config.logging_config import get_logger
from gpjobs.domain.exceptions import JobTimedOutError, TransportError
from gpjobs.domain.models import JobHandle, JobMessage, PollingPolicy
from gpjobs.observability.metrics import (
    JOB_WAIT_SECONDS,
    POLL_TIMEOUTS_TOTAL,
    STATUS_POLLS_TOTAL,
    TERMINAL_STATUSES_TOTAL,
    TRANSPORT_RETRIES_TOTAL,
)
from gpjobs.ports.transport import TransportPort
from gpjobs.services.backoff import jittered, next_delay
from gpjobs.services.error_translator import (
    check_remote_error,
    parse_job_handle,
    parse_messages,
)

logger = get_logger(__name__)

DEFAULT_MAX_TRANSPORT_ATTEMPTS: Final[int] = 3
DEFAULT_TRANSPORT_RETRY_PAUSE: Final[float] = 0.0
# Float tolerance when comparing elapsed time with the ceiling.
_CLOCK_EPSILON: Final[float] = 1e-9


def job_path(handle: JobHandle, suffix: str = "") -> str:
    """Service-relative path of a job resource."""
    path = f"{handle.operation}/jobs/{handle.job_id}"
    return f"{path}/{suffix.lstrip('/')}" if suffix else path


class JobStatusPoller:
    """Drives a job handle to a terminal status.

    Each call is an independent sequential loop; nothing is shared between
    jobs, and a handle must not be polled from two call sites at once.
    """

    def __init__(
        self,
        transport: TransportPort,
        *,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
        max_transport_attempts: int = DEFAULT_MAX_TRANSPORT_ATTEMPTS,
        transport_retry_pause: float = DEFAULT_TRANSPORT_RETRY_PAUSE,
        rng: random.Random | None = None,
    ) -> None:
        if max_transport_attempts < 1:
            raise ValueError("max_transport_attempts must be at least 1")
        if transport_retry_pause < 0:
            raise ValueError("transport_retry_pause must not be negative")
        self._transport = transport
        self._sleep = sleep
        self._clock = clock
        self._max_transport_attempts = max_transport_attempts
        self._transport_retry_pause = transport_retry_pause
        self._rng = rng

    def fetch_status(self, handle: JobHandle) -> JobHandle:
        """Fetch the current status once, retrying transport failures inline.

        Raises:
            TransportError: After ``max_transport_attempts`` failed attempts
            ProtocolError: Immediately, on any malformed or error response
        """
        attempt = 0
        while True:
            attempt += 1
            try:
                payload = self._transport.request("GET", job_path(handle))
            except TransportError as exc:
                if attempt >= self._max_transport_attempts:
                    logger.error(
                        "job_poll_transport_exhausted",
                        job_id=handle.job_id,
                        attempts=attempt,
                        error=str(exc),
                    )
                    raise
                TRANSPORT_RETRIES_TOTAL.labels(operation=handle.operation).inc()
                logger.warning(
                    "job_poll_transport_retry",
                    job_id=handle.job_id,
                    attempt=attempt,
                    max_attempts=self._max_transport_attempts,
                    error=str(exc),
                )
                if self._transport_retry_pause > 0:
                    self._sleep(self._transport_retry_pause)
                continue

            fresh = parse_job_handle(payload, operation=handle.operation)
            STATUS_POLLS_TOTAL.labels(
                operation=handle.operation, status=fresh.status.value
            ).inc()
            return fresh

    def fetch_messages(self, handle: JobHandle) -> list[JobMessage]:
        """Fetch the job's diagnostic messages without touching its status."""
        payload = self._transport.request("GET", job_path(handle, "messages"))
        check_remote_error(payload, "job_messages")
        messages = list(parse_messages(payload.get("messages")))
        logger.debug(
            "job_messages_fetched", job_id=handle.job_id, message_count=len(messages)
        )
        return messages

    def _observe(self, previous: JobHandle, fresh: JobHandle) -> JobHandle:
        if fresh.is_terminal or fresh.status.rank >= previous.status.rank:
            return fresh
        logger.warning(
            "job_status_regressed",
            job_id=previous.job_id,
            previous_status=previous.status.value,
            reported_status=fresh.status.value,
        )
        return fresh.with_status(previous.status)

    def poll_until_terminal(
        self, handle: JobHandle, policy: PollingPolicy | None = None
    ) -> JobHandle:
        """Poll until the job reaches Succeeded, Failed or Cancelled.

        Args:
            handle: Last known handle of the job
            policy: Backoff and timeout rule (defaults to ``PollingPolicy()``)

        Returns:
            The terminal handle. A handle that is already terminal is
            returned without any request.

        Raises:
            JobTimedOutError: The ceiling elapsed first; remote state is unknown
            TransportError: A poll exhausted its transport retries
            ProtocolError: Malformed response, unknown status or remote error
        """
        if handle.is_terminal:
            return handle

        policy = policy or PollingPolicy()
        delay = policy.initial_delay
        start = self._clock()
        current = handle
        polls = 0

        while True:
            current = self._observe(current, self.fetch_status(current))
            polls += 1
            elapsed = self._clock() - start
            logger.debug(
                "job_status_polled",
                job_id=current.job_id,
                status=current.status.value,
                poll=polls,
                elapsed_seconds=round(elapsed, 3),
            )

            if current.is_terminal:
                TERMINAL_STATUSES_TOTAL.labels(
                    operation=current.operation, status=current.status.value
                ).inc()
                JOB_WAIT_SECONDS.labels(operation=current.operation).observe(elapsed)
                logger.info(
                    "job_reached_terminal_status",
                    job_id=current.job_id,
                    status=current.status.value,
                    polls=polls,
                    elapsed_seconds=round(elapsed, 3),
                )
                return current

            remaining = policy.max_total_wait - elapsed
            if remaining <= _CLOCK_EPSILON:
                POLL_TIMEOUTS_TOTAL.labels(operation=current.operation).inc()
                JOB_WAIT_SECONDS.labels(operation=current.operation).observe(elapsed)
                logger.warning(
                    "job_poll_timed_out",
                    job_id=current.job_id,
                    last_status=current.status.value,
                    polls=polls,
                    elapsed_seconds=round(elapsed, 3),
                    max_total_wait=policy.max_total_wait,
                )
                raise JobTimedOutError(
                    last_known=current,
                    elapsed_seconds=elapsed,
                    max_total_wait=policy.max_total_wait,
                )

            self._sleep(jittered(min(delay, remaining), policy, self._rng))
            delay = next_delay(policy, delay)


__all__ = ["JobStatusPoller", "job_path"]
