"""structlog setup for gpjobs.

Every module logs snake_case events (``job_submitted``, ``job_status_polled``,
``job_poll_transport_retry`` ...) through ``get_logger(__name__)``. Service
tokens travel in query strings, so they can surface inside exception text;
``redact_secrets`` masks them before any renderer sees the event.
"""

import logging
import re
import sys
from typing import Any, Final

import structlog
from structlog.types import EventDict, Processor

APP_NAME: Final[str] = "gpjobs"
REDACTED: Final[str] = "***"

SECRET_KEYS: Final[frozenset[str]] = frozenset(
    {"token", "arcgis_api_key", "api_key", "password"}
)
_TOKEN_IN_TEXT: Final[re.Pattern[str]] = re.compile(
    r"(?P<key>\b(?:token|api_key)=)[^&\s'\"]+", re.IGNORECASE
)

# requests/urllib3 log full URLs (query string included) at DEBUG
_QUIET_LOGGERS: Final[tuple[str, ...]] = ("urllib3", "requests")


def add_app_context(
    logger: logging.Logger, method_name: str, event_dict: EventDict
) -> EventDict:
    event_dict["app"] = APP_NAME
    return event_dict


def redact_secrets(
    logger: logging.Logger, method_name: str, event_dict: EventDict
) -> EventDict:
    """Mask secret-named fields and ``token=...`` fragments in string values."""
    for key, value in event_dict.items():
        if key in SECRET_KEYS and value is not None:
            event_dict[key] = REDACTED
        elif isinstance(value, str) and "=" in value:
            event_dict[key] = _TOKEN_IN_TEXT.sub(rf"\g<key>{REDACTED}", value)
    return event_dict


def build_processors(json_logs: bool) -> list[Processor]:
    """Processor chain shared by console and JSON output."""
    processors: list[Processor] = [
        structlog.stdlib.filter_by_level,
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        add_app_context,
    ]
    if json_logs:
        processors.append(structlog.processors.format_exc_info)
        processors.append(redact_secrets)
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(redact_secrets)
        processors.append(structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty()))
    return processors


def setup_logging(log_level: str = "INFO", json_logs: bool = False) -> None:
    """Configure stdlib logging and structlog for the process.

    Args:
        log_level: DEBUG, INFO, WARNING, ERROR or CRITICAL
        json_logs: Render one JSON object per line instead of console output

    Example:
        >>> settings = get_settings()
        >>> setup_logging(settings.log_level, settings.json_logs)
    """
    level = getattr(logging, log_level.upper(), logging.INFO)
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)
    logging.getLogger().setLevel(level)
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

    structlog.configure(
        processors=build_processors(json_logs),
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Return a structlog logger named after the calling module."""
    return structlog.get_logger(name)  # type: ignore[no-any-return]


def bind_context(**kwargs: Any) -> None:
    """Bind key/values to every later log entry of the current context."""
    structlog.contextvars.bind_contextvars(**kwargs)


def unbind_context(*keys: str) -> None:
    structlog.contextvars.unbind_contextvars(*keys)


__all__ = [
    "bind_context",
    "build_processors",
    "get_logger",
    "redact_secrets",
    "setup_logging",
    "unbind_context",
]
