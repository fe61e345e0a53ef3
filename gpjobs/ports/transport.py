"""Port definition for the authenticated request/response transport."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class TransportPort(Protocol):
    """Interface for sending requests to a geoprocessing service."""

    def request(
        self, method: str, path: str, params: Mapping[str, str] | None = None
    ) -> dict[str, Any]:
        """Send an authenticated request and return the parsed JSON object.

        Args:
            method: HTTP verb ("GET" or "POST").
            path: Path relative to the service root, e.g. "Task/submitJob".
            params: Flat key/value parameters (query string or form body).

        Returns:
            Parsed response body.

        Raises:
            TransportError: On network or server-side availability failures.
            ProtocolError: When the body is not a JSON object.
        """


__all__ = ["TransportPort"]
