"""Configuration layering: CLI overrides, environment, .env, config.toml, defaults."""

from __future__ import annotations

import logging
import os
from enum import Enum
from pathlib import Path
from typing import Mapping

import tomllib
from dotenv import dotenv_values
from pydantic import BaseModel, ConfigDict, Field, SecretStr, ValidationError, field_validator

from .errors import ConfigurationError

LOG = logging.getLogger(__name__)

CONFIG_FILE = Path.home() / ".config" / "pgprovision" / "config.toml"
ENV_FILE = Path(".env")

DEFAULT_TIMEOUT_MS = 10_000
MAX_IDENTIFIER_BYTES = 63

# Field name -> environment variable.
ENV_VARS: Mapping[str, str] = {
    "host": "DB_HOST",
    "port": "DB_PORT",
    "user": "DB_USER",
    "target_database": "DB_NAME",
    "admin_database": "DB_ADMIN_NAME",
    "tls_mode": "DB_TLS",
    "timeout_ms": "DB_TIMEOUT_MS",
}
PASSWORD_ENV_VARS = ("DB_PASSWORD", "PGPASSWORD")
PASSWORD_FILE_ENV_VAR = "DB_PASSWORD_FILE"


class TlsMode(str, Enum):
    """How the database connection negotiates TLS."""

    OFF = "off"
    ALLOW_INSECURE = "allow-insecure"


class ToolConfig(BaseModel):
    """Shape of the ``[connection]`` table in config.toml."""

    host: str = "localhost"
    port: int = 5432
    user: str = "postgres"
    admin_database: str = "postgres"
    database: str | None = None
    tls: TlsMode = TlsMode.OFF
    timeout_ms: int = DEFAULT_TIMEOUT_MS
    password_file: Path | None = None


class ConnectionConfig(BaseModel):
    """Immutable connection settings for a single invocation."""

    model_config = ConfigDict(frozen=True)

    host: str = Field(min_length=1)
    port: int = Field(ge=1, le=65535)
    user: str = Field(min_length=1)
    credential: SecretStr = SecretStr("")
    admin_database: str = "postgres"
    target_database: str | None = None
    tls_mode: TlsMode = TlsMode.OFF
    timeout_ms: int = Field(default=DEFAULT_TIMEOUT_MS, gt=0)

    @field_validator("admin_database", "target_database")
    @classmethod
    def _check_database_name(cls, value: str | None) -> str | None:
        if value is None:
            return value
        if not value:
            raise ValueError("database name must not be empty")
        if "\x00" in value:
            raise ValueError("database name must not contain NUL bytes")
        if len(value.encode("utf-8")) > MAX_IDENTIFIER_BYTES:
            raise ValueError(f"database name exceeds {MAX_IDENTIFIER_BYTES} bytes")
        return value

    @property
    def timeout(self) -> float:
        """Timeout in seconds, as asyncio and asyncpg expect it."""

        return self.timeout_ms / 1000

    def secret(self) -> str:
        return self.credential.get_secret_value()

    def require_target(self) -> str:
        """Return the target database or raise if none was configured."""

        if not self.target_database:
            raise ConfigurationError("A target database is required (--database or DB_NAME).")
        return self.target_database


def load_config(path: Path | None = None) -> ToolConfig:
    """Load config.toml; fall back to defaults if missing or unreadable."""

    config_path = path or CONFIG_FILE
    try:
        data = _read_config_file(config_path)
    except FileNotFoundError:
        return ToolConfig()
    except (tomllib.TOMLDecodeError, OSError) as exc:
        LOG.warning("Ignoring unreadable config file %s: %s", config_path, exc)
        return ToolConfig()
    try:
        return ToolConfig(**data)
    except ValidationError as exc:
        LOG.warning("Ignoring invalid config file %s: %s", config_path, _format_errors(exc))
        return ToolConfig()


def load_environment(env_file: Path | None = None, environ: Mapping[str, str] | None = None) -> dict[str, str]:
    """Merge a dotenv file under the real environment (real values win)."""

    merged: dict[str, str] = {}
    dotenv_path = env_file or ENV_FILE
    if dotenv_path.is_file():
        try:
            values = dotenv_values(dotenv_path)
        except (OSError, UnicodeDecodeError) as exc:
            raise ConfigurationError(f"Cannot read env file {dotenv_path}: {exc}") from exc
        for key, value in values.items():
            if value is not None:
                merged[key] = value
    elif env_file is not None:
        raise ConfigurationError(f"Env file not found: {env_file}")
    merged.update(os.environ if environ is None else environ)
    return merged


def read_credential(
    env: Mapping[str, str],
    *,
    password_file: Path | None = None,
    file_config: ToolConfig | None = None,
) -> str | None:
    """Resolve the credential from a secret file or the environment."""

    if password_file is not None:
        return _read_secret_file(password_file)
    env_file = env.get(PASSWORD_FILE_ENV_VAR)
    if env_file:
        return _read_secret_file(Path(env_file))
    for name in PASSWORD_ENV_VARS:
        value = env.get(name)
        if value:
            return value
    if file_config is not None and file_config.password_file is not None:
        return _read_secret_file(file_config.password_file.expanduser())
    return None


def resolve_connection_config(
    overrides: Mapping[str, object] | None = None,
    *,
    env: Mapping[str, str] | None = None,
    file_config: ToolConfig | None = None,
    require_credential: bool = True,
) -> ConnectionConfig:
    """Build a ConnectionConfig from every configuration layer.

    ``overrides`` holds CLI values keyed by ConnectionConfig field name (plus
    ``password_file``); ``None`` entries are treated as unset.
    """

    overrides = {key: value for key, value in (overrides or {}).items() if value is not None}
    env = load_environment() if env is None else env
    base = file_config or ToolConfig()
    values: dict[str, object] = {
        "host": base.host,
        "port": base.port,
        "user": base.user,
        "admin_database": base.admin_database,
        "target_database": base.database,
        "tls_mode": base.tls,
        "timeout_ms": base.timeout_ms,
    }
    for field, var in ENV_VARS.items():
        raw = env.get(var)
        if raw:
            values[field] = raw
    password_file = overrides.pop("password_file", None)
    values.update(overrides)

    credential: str | None = None
    if require_credential:
        credential = read_credential(
            env,
            password_file=Path(str(password_file)) if password_file is not None else None,
            file_config=base,
        )
        if credential is None:
            raise ConfigurationError(
                "No database credential found: set DB_PASSWORD or DB_PASSWORD_FILE, or pass --password-file."
            )
    values["credential"] = SecretStr(credential or "")
    try:
        return ConnectionConfig(**values)
    except ValidationError as exc:
        raise ConfigurationError(_format_errors(exc)) from None


def _read_secret_file(path: Path) -> str:
    try:
        content = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigurationError(f"Cannot read password file {path}: {exc.strerror or exc}") from None
    secret = content.rstrip("\r\n")
    if not secret:
        raise ConfigurationError(f"Password file {path} is empty.")
    return secret


def _format_errors(exc: ValidationError) -> str:
    parts: list[str] = []
    for error in exc.errors(include_url=False, include_input=False):
        location = ".".join(str(item) for item in error.get("loc", ())) or "config"
        parts.append(f"{location}: {error.get('msg', 'invalid value')}")
    return "; ".join(parts)


def _read_config_file(path: Path) -> dict[str, object]:
    with path.open("rb") as handle:
        raw = tomllib.load(handle)
    data: dict[str, object] = {}
    section = raw.get("connection") if isinstance(raw, dict) else None
    if not isinstance(section, dict):
        return data
    for key in ("host", "user", "admin_database", "database", "tls"):
        value = section.get(key)
        if isinstance(value, str):
            data[key] = value
    for key in ("port", "timeout_ms"):
        value = section.get(key)
        if isinstance(value, int) and not isinstance(value, bool):
            data[key] = value
    password_file = section.get("password_file")
    if isinstance(password_file, str):
        data["password_file"] = Path(password_file)
    return data


__all__ = [
    "CONFIG_FILE",
    "ConnectionConfig",
    "DEFAULT_TIMEOUT_MS",
    "TlsMode",
    "ToolConfig",
    "load_config",
    "load_environment",
    "read_credential",
    "resolve_connection_config",
]
