"""requests-based transport for ArcGIS-style geoprocessing services."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any, Final

import requests
from pydantic import SecretStr

from gpjobs.config.logging_config import get_logger
from gpjobs.domain.exceptions import ProtocolError, TransportError, ValidationError
from gpjobs.ports.transport import TransportPort
from gpjobs.services.error_translator import error_for_http_status

logger = get_logger(__name__)

FORMAT_PARAM: Final[str] = "f"
FORMAT_JSON: Final[str] = "json"
TOKEN_PARAM: Final[str] = "token"
DEFAULT_TIMEOUT_SECONDS: Final[float] = 30.0
_ALLOWED_METHODS: Final[frozenset[str]] = frozenset({"GET", "POST"})


class RequestsTransport(TransportPort):
    """Authenticated JSON transport backed by a ``requests.Session``.

    Every request carries ``f=json`` and, when configured, the ``token``.
    GET parameters go into the query string, POST parameters into the
    form-encoded body.
    """

    def __init__(
        self,
        service_url: str,
        *,
        token: SecretStr | str | None = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        session: requests.Session | None = None,
    ) -> None:
        """Initialize the transport.

        Args:
            service_url: Root URL of the service (ending in ``GPServer``)
            token: API key or token appended to every request
            timeout: Per-request timeout in seconds
            session: Optional pre-configured session (retries, proxies...)

        Raises:
            ValidationError: If ``service_url`` is empty
        """
        if not service_url or not service_url.strip():
            raise ValidationError("service_url must not be empty")
        self._base_url = service_url.strip().rstrip("/")
        self._token = token.get_secret_value() if isinstance(token, SecretStr) else token
        self._timeout = timeout
        self._session = session or requests.Session()

    @property
    def base_url(self) -> str:
        return self._base_url

    def url_for(self, path: str) -> str:
        """Join a service-relative path onto the base URL."""
        return f"{self._base_url}/{path.lstrip('/')}"

    def request(
        self, method: str, path: str, params: Mapping[str, str] | None = None
    ) -> dict[str, Any]:
        verb = method.upper()
        if verb not in _ALLOWED_METHODS:
            raise ValidationError(f"Unsupported HTTP method: {method}")

        payload: dict[str, str] = dict(params or {})
        payload[FORMAT_PARAM] = FORMAT_JSON
        if self._token:
            payload[TOKEN_PARAM] = self._token

        url = self.url_for(path)
        action = f"{verb} {path}"
        try:
            if verb == "GET":
                response = self._session.request(
                    verb, url, params=payload, timeout=self._timeout
                )
            else:
                response = self._session.request(
                    verb, url, data=payload, timeout=self._timeout
                )
        except requests.RequestException as exc:
            logger.warning("transport_request_failed", action=action, error=str(exc))
            raise TransportError(f"{action}: {exc}") from exc

        if not response.ok:
            logger.warning(
                "transport_http_error",
                action=action,
                status_code=response.status_code,
            )
            raise error_for_http_status(response.status_code, action, response.text)

        try:
            body = response.json()
        except ValueError as exc:
            raise ProtocolError(f"{action}: response is not valid JSON") from exc

        if not isinstance(body, dict):
            raise ProtocolError(
                f"{action}: expected a JSON object, got {type(body).__name__}"
            )

        logger.debug("transport_request_completed", action=action)
        return body

    def close(self) -> None:
        self._session.close()


__all__ = ["RequestsTransport"]
