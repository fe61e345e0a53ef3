"""Submit job use case.

Encodes caller parameters into the flat wire format and starts a remote
job (``submitJob``) or runs a task synchronously (``execute``).
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from typing import Final

from gpjobs.config.logging_config import get_logger
from gpjobs.domain.exceptions import ValidationError
from gpjobs.domain.models import ExecuteResult, JobHandle, Value
from gpjobs.observability.metrics import JOBS_SUBMITTED_TOTAL
from gpjobs.ports.transport import TransportPort
from gpjobs.services.error_translator import parse_execute_result, parse_job_handle

logger = get_logger(__name__)

RESERVED_PARAMETER_NAMES: Final[frozenset[str]] = frozenset({"f", "token"})


def encode_parameters(parameters: Mapping[str, Value]) -> dict[str, str]:
    """Flatten parameters for the wire.

    Strings are sent verbatim; every other value is JSON-encoded.

    Raises:
        ValidationError: On empty or reserved names, or values that are not
            JSON-serializable
    """
    encoded: dict[str, str] = {}
    for name, value in parameters.items():
        if not isinstance(name, str) or not name.strip():
            raise ValidationError(f"Parameter names must be non-empty strings: {name!r}")
        if name in RESERVED_PARAMETER_NAMES:
            raise ValidationError(f"Parameter name '{name}' is reserved")
        if isinstance(value, str):
            encoded[name] = value
            continue
        try:
            encoded[name] = json.dumps(value)
        except (TypeError, ValueError) as exc:
            raise ValidationError(
                f"Parameter '{name}' is not JSON-serializable: {exc}"
            ) from exc
    return encoded


def _require_operation(operation: str) -> str:
    if not isinstance(operation, str):
        raise ValidationError(f"operation name must be a string: {operation!r}")
    name = operation.strip().strip("/")
    if not name:
        raise ValidationError("operation name must not be empty")
    if "/" in name or name != name.strip():
        raise ValidationError(f"invalid operation name: {operation!r}")
    return name


class JobSubmitter:
    """Starts remote jobs. Submission is never retried."""

    def __init__(self, transport: TransportPort) -> None:
        self._transport = transport

    def submit(self, operation: str, parameters: Mapping[str, Value]) -> JobHandle:
        """Start a remote job.

        Args:
            operation: Task name on the service
            parameters: Named input values

        Returns:
            Handle carrying the job id and the status reported by the service

        Raises:
            ValidationError: Invalid operation name or parameters (nothing sent)
            TransportError: Network failure
            ProtocolError: Malformed response or embedded remote error
        """
        operation = _require_operation(operation)
        encoded = encode_parameters(parameters)

        payload = self._transport.request("POST", f"{operation}/submitJob", encoded)
        handle = parse_job_handle(payload, operation=operation, action="submit_job")

        JOBS_SUBMITTED_TOTAL.labels(operation=operation).inc()
        logger.info(
            "job_submitted",
            operation=operation,
            job_id=handle.job_id,
            status=handle.status.value,
            parameter_count=len(encoded),
        )
        return handle

    def execute(
        self, operation: str, parameters: Mapping[str, Value]
    ) -> ExecuteResult:
        """Run a synchronous task and return its outputs."""
        operation = _require_operation(operation)
        encoded = encode_parameters(parameters)

        payload = self._transport.request("POST", f"{operation}/execute", encoded)
        result = parse_execute_result(payload, action="execute")

        logger.info(
            "task_executed",
            operation=operation,
            result_names=sorted(result.results),
        )
        return result


__all__ = ["JobSubmitter", "RESERVED_PARAMETER_NAMES", "encode_parameters"]
