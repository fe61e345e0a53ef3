"""Engine settings: secrets from the environment, defaults from YAML.

``ARCGIS_API_KEY`` (or ``.env``) supplies the service token. Service URL,
polling, transport, logging and metrics defaults live in
``config/main.yaml`` plus any other ``config/*.yaml``; each file is checked
against ``config/schemas/<stem>.schema.json`` before it is merged.
"""

import json
from pathlib import Path
from typing import Any, Final, cast

import yaml
from jsonschema import ValidationError as JSONSchemaValidationError
from jsonschema import validate
from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

from gpjobs.config.logging_config import get_logger
from gpjobs.domain.models import PollingPolicy

DEFAULT_CONFIG_DIR: Final[Path] = Path("config")
MAIN_CONFIG_FILE: Final[str] = "main.yaml"
SCHEMA_SUFFIX: Final[str] = ".schema.json"

POLL_INITIAL_DELAY_SECONDS_DEFAULT: Final[float] = 1.0
POLL_MAX_DELAY_SECONDS_DEFAULT: Final[float] = 30.0
POLL_BACKOFF_MULTIPLIER_DEFAULT: Final[float] = 2.0
POLL_MAX_TOTAL_WAIT_SECONDS_DEFAULT: Final[float] = 600.0
TRANSPORT_MAX_ATTEMPTS_DEFAULT: Final[int] = 3
TRANSPORT_RETRY_PAUSE_SECONDS_DEFAULT: Final[float] = 0.5
REQUEST_TIMEOUT_SECONDS_DEFAULT: Final[float] = 30.0

logger = cast(Any, get_logger(__name__))


def deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Return ``base`` updated by ``override``; nested sections merge, lists replace."""
    merged = dict(base)
    for key, value in override.items():
        current = merged.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            merged[key] = deep_merge(current, value)
        else:
            merged[key] = value
    return merged


def load_schema(schema_name: str, config_dir: Path = DEFAULT_CONFIG_DIR) -> dict[str, Any]:
    """Read ``<config_dir>/schemas/<schema_name>.schema.json``.

    A missing or unreadable schema yields ``{}``, which disables validation
    for that file.
    """
    schema_path = config_dir / "schemas" / f"{schema_name}{SCHEMA_SUFFIX}"
    if not schema_path.is_file():
        return {}

    try:
        return cast(dict[str, Any], json.loads(schema_path.read_text(encoding="utf-8")))
    except (json.JSONDecodeError, OSError) as exc:
        logger.warning("config_schema_unreadable", schema=schema_name, error=str(exc))
        return {}


def validate_config_section(
    config: dict[str, Any],
    schema_name: str,
    file_path: str = "",
    config_dir: Path = DEFAULT_CONFIG_DIR,
) -> None:
    """Check one parsed YAML file against its schema.

    Raises:
        ValueError: Naming the schema, the file and the first violation
    """
    schema = load_schema(schema_name, config_dir)
    if not schema:
        return

    try:
        validate(instance=config, schema=schema)
    except JSONSchemaValidationError as exc:
        where = f" (file: {file_path})" if file_path else ""
        location = "/".join(str(part) for part in exc.absolute_path) or "<root>"
        raise ValueError(
            f"Config validation failed for {schema_name}{where} at {location}: "
            f"{exc.message}"
        ) from exc
    logger.debug("config_section_valid", schema=schema_name)


def _load_yaml_file(path: Path, config_dir: Path) -> dict[str, Any]:
    try:
        loaded = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except (yaml.YAMLError, OSError) as exc:
        logger.warning("config_file_unreadable", path=str(path), error=str(exc))
        return {}

    if not isinstance(loaded, dict):
        raise ValueError(f"Config file must contain a mapping: {path}")

    validate_config_section(loaded, path.stem, str(path), config_dir)
    return loaded


def load_all_configs(config_dir: Path = DEFAULT_CONFIG_DIR) -> dict[str, Any]:
    """Merge ``main.yaml`` and then the other ``*.yaml`` files in name order.

    Later files win. A missing directory gives an empty mapping.
    """
    if not config_dir.is_dir():
        return {}

    main_path = config_dir / MAIN_CONFIG_FILE
    extra_files = sorted(
        path for path in config_dir.glob("*.yaml") if path.name != MAIN_CONFIG_FILE
    )
    files = ([main_path] if main_path.is_file() else []) + extra_files

    merged: dict[str, Any] = {}
    for path in files:
        merged = deep_merge(merged, _load_yaml_file(path, config_dir))

    logger.debug("config_loaded", files=[path.name for path in files])
    return merged


class Settings(BaseSettings):
    """Runtime configuration of the job engine.

    Precedence: explicit keyword arguments and environment variables, then
    YAML sections (service, polling, transport, logging, metrics), then the
    field defaults.
    """

    model_config = SettingsConfigDict(
        env_file=".env" if Path(".env").exists() else None,
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # === SECRETS (from environment / .env) ===

    arcgis_api_key: SecretStr | None = Field(
        default=None, description="API key or token appended to every request"
    )

    # === NON-SENSITIVE CONFIG (from config/*.yaml or defaults) ===

    service_url: str | None = Field(
        default=None,
        description="Root URL of the geoprocessing service (…/GPServer)",
    )
    request_timeout_seconds: float = Field(
        default=REQUEST_TIMEOUT_SECONDS_DEFAULT,
        gt=0,
        description="Per-request network timeout",
    )

    poll_initial_delay_seconds: float = Field(
        default=POLL_INITIAL_DELAY_SECONDS_DEFAULT, gt=0
    )
    poll_max_delay_seconds: float = Field(default=POLL_MAX_DELAY_SECONDS_DEFAULT, gt=0)
    poll_backoff_multiplier: float = Field(default=POLL_BACKOFF_MULTIPLIER_DEFAULT, gt=1)
    poll_max_total_wait_seconds: float = Field(
        default=POLL_MAX_TOTAL_WAIT_SECONDS_DEFAULT, gt=0
    )
    poll_jitter_ratio: float = Field(
        default=0.0,
        ge=0,
        lt=1,
        description="Random fraction by which each poll sleep may be shortened",
    )

    transport_max_attempts: int = Field(
        default=TRANSPORT_MAX_ATTEMPTS_DEFAULT,
        ge=1,
        description="Status request attempts per poll before a TransportError",
    )
    transport_retry_pause_seconds: float = Field(
        default=TRANSPORT_RETRY_PAUSE_SECONDS_DEFAULT,
        ge=0,
        description="Pause between inline status retries",
    )

    # Observability
    log_level: str = Field(default="INFO", description="Logging level")
    json_logs: bool = Field(default=False, description="Render logs as JSON")
    metrics_port: int | None = Field(
        default=None, description="Start a Prometheus exporter on this port"
    )

    def __init__(self, config_dir: Path = DEFAULT_CONFIG_DIR, **data: Any):
        """Read the environment, then fill unset fields from ``config_dir``."""
        config = load_all_configs(config_dir)

        super().__init__(**data)
        self._apply_yaml_defaults(config)

    def _apply_yaml_defaults(self, config: dict[str, Any]) -> None:
        explicit = set(self.model_fields_set)

        def _assign(field_name: str, value: Any) -> None:
            if value is None:
                return
            if field_name in explicit:
                return

            object.__setattr__(self, field_name, value)
            self.model_fields_set.add(field_name)

        service_config = config.get("service") or {}
        _assign("service_url", service_config.get("url"))
        _assign("request_timeout_seconds", service_config.get("request_timeout_seconds"))

        polling_config = config.get("polling") or {}
        _assign("poll_initial_delay_seconds", polling_config.get("initial_delay_seconds"))
        _assign("poll_max_delay_seconds", polling_config.get("max_delay_seconds"))
        _assign("poll_backoff_multiplier", polling_config.get("backoff_multiplier"))
        _assign("poll_max_total_wait_seconds", polling_config.get("max_total_wait_seconds"))
        _assign("poll_jitter_ratio", polling_config.get("jitter_ratio"))

        transport_config = config.get("transport") or {}
        _assign("transport_max_attempts", transport_config.get("max_attempts"))
        _assign(
            "transport_retry_pause_seconds",
            transport_config.get("retry_pause_seconds"),
        )

        logging_config = config.get("logging") or {}
        _assign("log_level", logging_config.get("level"))
        _assign("json_logs", logging_config.get("json"))

        metrics_config = config.get("metrics") or {}
        _assign("metrics_port", metrics_config.get("port"))

    def polling_policy(self) -> PollingPolicy:
        """Build the default polling policy from configuration.

        Raises:
            pydantic.ValidationError: If the configured bounds are inconsistent
        """
        return PollingPolicy(
            initial_delay=self.poll_initial_delay_seconds,
            max_delay=self.poll_max_delay_seconds,
            backoff_multiplier=self.poll_backoff_multiplier,
            max_total_wait=self.poll_max_total_wait_seconds,
            jitter_ratio=self.poll_jitter_ratio,
        )


_settings: Settings | None = None


def get_settings() -> Settings:
    """Process-wide settings, read from the working directory on first use."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings
