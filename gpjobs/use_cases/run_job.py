"""Run job use case.

Composes submit → poll → (cancel) → extract for callers that want a single
call per job, while exposing each step for manual control.
"""

from __future__ import annotations

import random
import time
from collections.abc import Callable, Mapping
from typing import Any, TypeVar

from gpjobs.adapters.http_transport import RequestsTransport
from gpjobs.config.logging_config import get_logger, setup_logging
from gpjobs.config.settings import Settings
from gpjobs.domain.exceptions import (
    GeoprocessingError,
    JobTimedOutError,
    ValidationError,
)
from gpjobs.domain.models import (
    JobHandle,
    JobOutcome,
    JobStatus,
    PollingPolicy,
    Value,
)
from gpjobs.observability.metrics import ensure_metrics_exporter
from gpjobs.observability.tracing import correlation_scope, job_scope
from gpjobs.ports.transport import TransportPort
from gpjobs.services.error_translator import outcome_for, timed_out_outcome
from gpjobs.use_cases.cancel_job import CancellationController
from gpjobs.use_cases.extract_result import ResultExtractor
from gpjobs.use_cases.poll_job import (
    DEFAULT_MAX_TRANSPORT_ATTEMPTS,
    DEFAULT_TRANSPORT_RETRY_PAUSE,
    JobStatusPoller,
)
from gpjobs.use_cases.submit_job import JobSubmitter

logger = get_logger(__name__)

T = TypeVar("T")


class GeoprocessingJobRunner:
    """Single entry point for running remote jobs end to end.

    Example:
        >>> runner = GeoprocessingJobRunner.from_settings(get_settings())
        >>> outcome = runner.run("SummarizeElevation", {"InputFeatures": fs},
        ...                      "OutputSummary", dict)
        >>> outcome.unwrap()
    """

    def __init__(
        self,
        transport: TransportPort,
        *,
        policy: PollingPolicy | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
        max_transport_attempts: int = DEFAULT_MAX_TRANSPORT_ATTEMPTS,
        transport_retry_pause: float = DEFAULT_TRANSPORT_RETRY_PAUSE,
        rng: random.Random | None = None,
    ) -> None:
        self.transport = transport
        self.policy = policy or PollingPolicy()
        self.submitter = JobSubmitter(transport)
        self.poller = JobStatusPoller(
            transport,
            sleep=sleep,
            clock=clock,
            max_transport_attempts=max_transport_attempts,
            transport_retry_pause=transport_retry_pause,
            rng=rng,
        )
        self.canceller = CancellationController(transport, self.poller)
        self.extractor = ResultExtractor(transport)

    @classmethod
    def from_settings(
        cls, settings: Settings, *, configure_logging: bool = False
    ) -> GeoprocessingJobRunner:
        """Build a runner talking HTTP to ``settings.service_url``.

        With ``configure_logging`` the process logging is set up from
        ``settings.log_level`` and ``settings.json_logs`` first.

        Raises:
            ValidationError: If no service URL is configured
        """
        if not settings.service_url:
            raise ValidationError("service_url is not configured")

        if configure_logging:
            setup_logging(settings.log_level, settings.json_logs)

        if settings.metrics_port is not None:
            ensure_metrics_exporter(settings.metrics_port)

        transport = RequestsTransport(
            settings.service_url,
            token=settings.arcgis_api_key,
            timeout=settings.request_timeout_seconds,
        )
        return cls(
            transport,
            policy=settings.polling_policy(),
            max_transport_attempts=settings.transport_max_attempts,
            transport_retry_pause=settings.transport_retry_pause_seconds,
        )

    def _cancel_quietly(self, handle: JobHandle) -> bool:
        """Best-effort cancel after a timeout; failures only get logged."""
        try:
            self.canceller.request_cancel(handle)
        except GeoprocessingError as exc:
            logger.warning(
                "job_run_cancel_failed",
                error_type=type(exc).__name__,
                error=str(exc),
            )
            return False
        return True

    def run(
        self,
        operation: str,
        parameters: Mapping[str, Value],
        result_name: str,
        target: type[T] | Any,
        policy: PollingPolicy | None = None,
        cancel_on_timeout: bool = False,
    ) -> JobOutcome[T]:
        """Submit a job, wait for it and extract one typed result.

        Args:
            operation: Task name on the service
            parameters: Named input values
            result_name: Output parameter to extract on success
            target: Type the output is converted to
            policy: Polling rule for this run (defaults to the runner's)
            cancel_on_timeout: Ask the service to stop the job when the local
                time budget runs out. A failed cancel is logged and the
                ``timed_out`` outcome is still returned.

        Returns:
            ``completed`` with the value, or ``failed``/``cancelled``/
            ``timed_out`` with the matching error and the last known handle

        Raises:
            ValidationError: Invalid input, nothing was sent
            TransportError: The service could not be reached
            ProtocolError: The service answered with something unreadable
            ExtractionError: The job succeeded but the output is missing or
                has the wrong type
        """
        with correlation_scope(), job_scope(operation):
            handle = self.submitter.submit(operation, parameters)
            logger.info("job_run_started", job_id=handle.job_id)

            with job_scope(job_id=handle.job_id):
                try:
                    handle = self.poller.poll_until_terminal(
                        handle, policy or self.policy
                    )
                except JobTimedOutError as exc:
                    cancel_sent = cancel_on_timeout and self._cancel_quietly(
                        exc.last_known
                    )
                    logger.warning(
                        "job_run_timed_out",
                        last_status=exc.last_known.status.value,
                        cancel_requested=cancel_sent,
                    )
                    return timed_out_outcome(exc)

                if handle.status is not JobStatus.SUCCEEDED:
                    outcome: JobOutcome[Any] = outcome_for(handle)
                    logger.info(
                        "job_run_finished",
                        outcome=outcome.kind.value,
                        messages=outcome.messages,
                    )
                    return outcome

                value = self.extractor.extract(handle, result_name, target)
                logger.info("job_run_finished", outcome="completed")
                return outcome_for(handle, value)


__all__ = ["GeoprocessingJobRunner"]
