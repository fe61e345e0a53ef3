"""Cancel job use case."""

from __future__ import annotations

from gpjobs.config.logging_config import get_logger
from gpjobs.domain.exceptions import ProtocolError
from gpjobs.domain.models import JobHandle, JobStatus
from gpjobs.observability.metrics import CANCEL_REQUESTS_TOTAL
from gpjobs.ports.transport import TransportPort
from gpjobs.services.error_translator import check_remote_error
from gpjobs.use_cases.poll_job import JobStatusPoller, job_path

logger = get_logger(__name__)


class CancellationController:
    """Asks the service to stop a job.

    Cancellation is cooperative: the request never changes the caller's
    handle, and only a later poll shows whether the job reached Cancelled,
    Succeeded or Failed.
    """

    def __init__(
        self, transport: TransportPort, poller: JobStatusPoller | None = None
    ) -> None:
        self._transport = transport
        self._poller = poller or JobStatusPoller(transport)

    def request_cancel(self, handle: JobHandle) -> None:
        """Request cancellation of a job.

        Does nothing when the handle is already terminal or Cancelling, so it
        can be called any number of times. When the service rejects the
        request, a fresh status check decides: a job that has meanwhile
        finished makes the call a no-op, otherwise the rejection is raised.

        Raises:
            TransportError: The cancel request could not be delivered
            ProtocolError: The service rejected the cancel and the job is
                still running
        """
        if handle.is_terminal or handle.status is JobStatus.CANCELLING:
            CANCEL_REQUESTS_TOTAL.labels(
                operation=handle.operation, result="skipped"
            ).inc()
            logger.debug(
                "job_cancel_skipped",
                job_id=handle.job_id,
                status=handle.status.value,
            )
            return

        try:
            payload = self._transport.request("POST", job_path(handle, "cancel"))
            check_remote_error(payload, "cancel_job")
        except ProtocolError as exc:
            current = self._poller.fetch_status(handle)
            if current.is_terminal:
                CANCEL_REQUESTS_TOTAL.labels(
                    operation=handle.operation, result="already_terminal"
                ).inc()
                logger.info(
                    "job_cancel_not_needed",
                    job_id=handle.job_id,
                    status=current.status.value,
                    error=str(exc),
                )
                return
            CANCEL_REQUESTS_TOTAL.labels(
                operation=handle.operation, result="rejected"
            ).inc()
            logger.error(
                "job_cancel_rejected",
                job_id=handle.job_id,
                status=current.status.value,
                error=str(exc),
            )
            raise

        CANCEL_REQUESTS_TOTAL.labels(operation=handle.operation, result="sent").inc()
        logger.info(
            "job_cancel_requested",
            job_id=handle.job_id,
            reported_status=payload.get("jobStatus"),
        )


__all__ = ["CancellationController"]
