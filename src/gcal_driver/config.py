"""Driver configuration loading and validation.

Reads ``gcal.toml``, resolves ``${VAR}`` references from the environment and
returns a validated :class:`DriverConfig` dataclass.  When no file is used,
:meth:`DriverConfig.from_env` builds the same structure from environment
variables.
"""

from __future__ import annotations

import os
import re
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from gcal_driver.db import db_params_from_env

DEFAULT_CONFIG_FILENAME = "gcal.toml"
DEFAULT_APPLICATION_NAME = "Calendar (Google driver)"
DEFAULT_DB_NAME = "roundcube"

ENV_CLIENT_ID = "GOOGLE_OAUTH_CLIENT_ID"
ENV_CLIENT_SECRET = "GOOGLE_OAUTH_CLIENT_SECRET"
ENV_HOST_URL = "GCAL_HOST_URL"
ENV_DB_NAME = "GCAL_DB_NAME"

# Pattern matching ${VAR_NAME}; supports alphanumeric + underscore variable names.
_ENV_VAR_PATTERN = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}")
_TABLE_PREFIX_PATTERN = re.compile(r"^[A-Za-z0-9_]*$")


class ConfigError(Exception):
    """Raised when driver configuration is missing, malformed, or invalid."""


@dataclass
class GoogleConfig:
    """OAuth client settings from the [google] section.

    Either credential may be empty; the driver then stays disabled.
    """

    client_id: str = ""
    client_secret: str = ""
    application_name: str = DEFAULT_APPLICATION_NAME

    @property
    def configured(self) -> bool:
        return bool(self.client_id and self.client_secret)

    def __repr__(self) -> str:
        return (
            f"GoogleConfig(client_id={self.client_id!r}, "
            f"client_secret={'***' if self.client_secret else ''!r}, "
            f"application_name={self.application_name!r})"
        )


@dataclass
class HostConfig:
    """Host application settings from the [host] section."""

    url: str = "http://localhost/"


@dataclass
class DbConfig:
    """Database settings from the [db] section."""

    name: str = DEFAULT_DB_NAME
    table_prefix: str = ""
    host: str = "localhost"
    port: int = 5432
    user: str = "postgres"
    password: str = "postgres"
    ssl: str | None = None


@dataclass
class LoggingConfig:
    """Logging configuration from the [logging] section."""

    level: str = "INFO"
    format: str = "text"  # "text" or "json"
    file: str | None = None


@dataclass
class DriverConfig:
    """Parsed driver configuration."""

    google: GoogleConfig = field(default_factory=GoogleConfig)
    host: HostConfig = field(default_factory=HostConfig)
    db: DbConfig = field(default_factory=DbConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @classmethod
    def from_env(cls) -> DriverConfig:
        """Build a configuration from environment variables only."""
        params = db_params_from_env()
        return cls(
            google=GoogleConfig(
                client_id=os.environ.get(ENV_CLIENT_ID, "").strip(),
                client_secret=os.environ.get(ENV_CLIENT_SECRET, "").strip(),
            ),
            host=HostConfig(url=os.environ.get(ENV_HOST_URL, HostConfig.url).strip()),
            db=DbConfig(
                name=os.environ.get(ENV_DB_NAME, DEFAULT_DB_NAME).strip() or DEFAULT_DB_NAME,
                host=str(params["host"]),
                port=int(params["port"]),
                user=str(params["user"]),
                password=str(params["password"]),
                ssl=params["ssl"] if isinstance(params["ssl"], str) else None,
            ),
        )


def resolve_env_vars(value: Any) -> Any:
    """Recursively resolve ``${VAR_NAME}`` references in config values.

    Walks dicts, lists, and strings.  Non-string leaf values (int, bool,
    float, None) are returned unchanged.

    Raises
    ------
    ConfigError
        If a referenced environment variable is not set.
    """
    if isinstance(value, dict):
        return {k: resolve_env_vars(v) for k, v in value.items()}

    if isinstance(value, list):
        return [resolve_env_vars(item) for item in value]

    if isinstance(value, str):
        return _resolve_string(value)

    return value


def _resolve_string(s: str) -> str:
    """Replace all ``${VAR_NAME}`` occurrences in *s* with env var values.

    Collects all missing variable names and reports them in a single error.
    """
    missing: list[str] = []

    def _replace(match: re.Match) -> str:
        var_name = match.group(1)
        env_value = os.environ.get(var_name)
        if env_value is None:
            missing.append(var_name)
            return match.group(0)
        return env_value

    result = _ENV_VAR_PATTERN.sub(_replace, s)

    if missing:
        vars_str = ", ".join(missing)
        raise ConfigError(
            f"Unresolved environment variable(s) in config value: {vars_str} (original: {s!r})"
        )

    return result


def _section(data: dict[str, Any], name: str) -> dict[str, Any]:
    section = data.get(name, {})
    if not isinstance(section, dict):
        raise ConfigError(f"[{name}] must be a table")
    return section


def _parse_db(section: dict[str, Any]) -> DbConfig:
    params = db_params_from_env()
    name = str(section.get("name", DEFAULT_DB_NAME)).strip()
    if not name:
        raise ConfigError("db.name must be a non-empty string")

    table_prefix = str(section.get("table_prefix", "")).strip()
    if _TABLE_PREFIX_PATTERN.fullmatch(table_prefix) is None:
        raise ConfigError(
            f"Invalid db.table_prefix: {table_prefix!r}. Expected letters, digits or underscores."
        )

    port_raw = section.get("port", params["port"])
    try:
        port = int(port_raw)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"db.port must be an integer, got {port_raw!r}") from exc

    ssl_raw = section.get("ssl", params["ssl"])
    return DbConfig(
        name=name,
        table_prefix=table_prefix,
        host=str(section.get("host", params["host"])),
        port=port,
        user=str(section.get("user", params["user"])),
        password=str(section.get("password", params["password"])),
        ssl=str(ssl_raw) if ssl_raw else None,
    )


def load_config(path: Path) -> DriverConfig:
    """Load and validate a driver config file.

    Parameters
    ----------
    path:
        Either the TOML file itself or a directory containing ``gcal.toml``.

    Raises
    ------
    ConfigError
        If the file is missing, contains invalid TOML, or has invalid values.
    """
    toml_path = path / DEFAULT_CONFIG_FILENAME if path.is_dir() else path

    if not toml_path.exists():
        raise ConfigError(f"Config file not found: {toml_path}")

    try:
        data = tomllib.loads(toml_path.read_bytes().decode())
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"Invalid TOML in {toml_path}: {exc}") from exc

    data = resolve_env_vars(data)

    google_section = _section(data, "google")
    google = GoogleConfig(
        client_id=str(google_section.get("client_id", "")).strip(),
        client_secret=str(google_section.get("client_secret", "")).strip(),
        application_name=str(
            google_section.get("application_name", DEFAULT_APPLICATION_NAME)
        ).strip()
        or DEFAULT_APPLICATION_NAME,
    )

    host_section = _section(data, "host")
    host_url = str(host_section.get("url", HostConfig.url)).strip()
    if not host_url.startswith(("http://", "https://")):
        raise ConfigError(f"host.url must be an absolute http(s) URL, got {host_url!r}")

    logging_section = _section(data, "logging")
    log_level = str(logging_section.get("level", "INFO")).upper()
    log_format = str(logging_section.get("format", "text")).lower()
    if log_format not in ("text", "json"):
        raise ConfigError(f"logging.format must be 'text' or 'json', got {log_format!r}")
    log_file = logging_section.get("file")

    return DriverConfig(
        google=google,
        host=HostConfig(url=host_url),
        db=_parse_db(_section(data, "db")),
        logging=LoggingConfig(
            level=log_level,
            format=log_format,
            file=str(log_file) if log_file else None,
        ),
    )
