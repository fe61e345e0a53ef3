"""Prometheus metrics for job submission, polling and cancellation.

Metrics are registered on import; the HTTP exporter only starts when
``ensure_metrics_exporter`` is called (``Settings.metrics_port``).
"""

from __future__ import annotations

import threading
from typing import Final

from prometheus_client import Counter, Histogram, start_http_server

from gpjobs.config.logging_config import get_logger

logger = get_logger(__name__)

JOBS_SUBMITTED_TOTAL: Final[Counter] = Counter(
    "gpjobs_jobs_submitted_total",
    "Total number of remote jobs submitted",
    labelnames=("operation",),
)

STATUS_POLLS_TOTAL: Final[Counter] = Counter(
    "gpjobs_status_polls_total",
    "Total number of job status requests, by observed status",
    labelnames=("operation", "status"),
)

TRANSPORT_RETRIES_TOTAL: Final[Counter] = Counter(
    "gpjobs_transport_retries_total",
    "Status requests retried after a transport failure",
    labelnames=("operation",),
)

TERMINAL_STATUSES_TOTAL: Final[Counter] = Counter(
    "gpjobs_terminal_statuses_total",
    "Jobs observed reaching a terminal status",
    labelnames=("operation", "status"),
)

POLL_TIMEOUTS_TOTAL: Final[Counter] = Counter(
    "gpjobs_poll_timeouts_total",
    "Polls abandoned locally before the job reached a terminal status",
    labelnames=("operation",),
)

CANCEL_REQUESTS_TOTAL: Final[Counter] = Counter(
    "gpjobs_cancel_requests_total",
    "Cancellation requests, by result",
    labelnames=("operation", "result"),
)

JOB_WAIT_SECONDS: Final[Histogram] = Histogram(
    "gpjobs_job_wait_seconds",
    "Time spent polling a job until it stopped",
    labelnames=("operation",),
    buckets=(1, 5, 15, 30, 60, 120, 300, 600, 1800, 3600),
)

_EXPORTER_LOCK = threading.Lock()
_EXPORTER_PORT: int | None = None


def ensure_metrics_exporter(port: int) -> None:
    """Start Prometheus HTTP exporter once per process."""

    global _EXPORTER_PORT
    with _EXPORTER_LOCK:
        if _EXPORTER_PORT is not None:
            if _EXPORTER_PORT != port:
                logger.warning(
                    "metrics_exporter_already_running",
                    port=_EXPORTER_PORT,
                    requested_port=port,
                )
            return

        try:
            start_http_server(port)
        except OSError as exc:
            logger.error(
                "metrics_exporter_start_failed",
                port=port,
                error=str(exc),
            )
            raise

        _EXPORTER_PORT = port
        logger.info("metrics_exporter_started", port=port)


__all__ = [
    "CANCEL_REQUESTS_TOTAL",
    "JOBS_SUBMITTED_TOTAL",
    "JOB_WAIT_SECONDS",
    "POLL_TIMEOUTS_TOTAL",
    "STATUS_POLLS_TOTAL",
    "TERMINAL_STATUSES_TOTAL",
    "TRANSPORT_RETRIES_TOTAL",
    "ensure_metrics_exporter",
]
