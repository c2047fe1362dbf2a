"""Application configuration model using pydantic-settings."""

from __future__ import annotations

import json
import os
import re
from enum import StrEnum
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

APPSETTINGS_ENV_VAR = "DATAVERSE_APPSETTINGS"
DEFAULT_APPSETTINGS_PATH = "appsettings.json"


class DeletionMode(StrEnum):
    """How a batch of records is removed from the service."""

    BULK = "bulk"
    ASYNC_JOB = "async_job"
    PER_RECORD = "per_record"


class ClientSettings(BaseModel):
    """Connection tuning handed to the HTTP client at construction time."""

    model_config = ConfigDict(frozen=True)

    api_version: str = "9.2"
    timeout_seconds: float = 120.0
    max_connections: int = 100
    enable_affinity_cookie: bool = False


class DriverSettings(BaseModel):
    """Batch driver tuning, built once and shared by every batch.

    max_parallelism of None defers to the service's recommended value.
    """

    model_config = ConfigDict(frozen=True)

    max_parallelism: int | None = None
    progress_every: int = 10
    delete_job_name: str = "Deleting records created by bulkops"
    deletion_mode: DeletionMode | None = None
    use_elastic: bool = False


class Config(BaseSettings):
    """Application configuration loaded from environment variables and .env file."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    connection_string: str | None = None
    number_of_records: int = 100
    use_elastic: bool = False
    bypass_custom_plugin_execution: bool = False
    table_schema_name: str = "sample_Example"
    request_tag: str = "ParallelCreateUpdate"
    max_parallelism: int | None = None
    log_level: str = "INFO"
    api_version: str = "9.2"
    request_timeout_seconds: float = 120.0
    max_connections: int = 100
    enable_affinity_cookie: bool = False
    job_poll_interval_seconds: float = 5.0
    job_poll_max_attempts: int = 120
    deletion_mode: DeletionMode | None = None

    @field_validator("number_of_records")
    @classmethod
    def validate_number_of_records(cls, value: int) -> int:
        """Number of records must be between 1 and 100000."""
        if value < 1 or value > 100_000:
            msg = "number_of_records must be between 1 and 100000"
            raise ValueError(msg)
        return value

    @field_validator("max_parallelism")
    @classmethod
    def validate_max_parallelism(cls, value: int | None) -> int | None:
        """Max parallelism, when set, must be at least 1."""
        if value is not None and value < 1:
            msg = "max_parallelism must be at least 1"
            raise ValueError(msg)
        return value

    @field_validator("table_schema_name")
    @classmethod
    def validate_table_schema_name(cls, value: str) -> str:
        """Schema name must carry a publisher prefix, e.g. sample_Example."""
        if not re.fullmatch(r"[A-Za-z][A-Za-z0-9]*_[A-Za-z0-9_]+", value):
            msg = "table_schema_name must match pattern <prefix>_<Name>"
            raise ValueError(msg)
        return value

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, value: str) -> str:
        """Log level must be a valid Python logging level."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        upper_value = value.upper()
        if upper_value not in valid_levels:
            msg = f"log_level must be one of {', '.join(sorted(valid_levels))}"
            raise ValueError(msg)
        return upper_value

    @field_validator("max_connections")
    @classmethod
    def validate_max_connections(cls, value: int) -> int:
        """Connection pool size must be between 1 and 65000."""
        if value < 1 or value > 65_000:
            msg = "max_connections must be between 1 and 65000"
            raise ValueError(msg)
        return value

    @field_validator("job_poll_interval_seconds", "request_timeout_seconds")
    @classmethod
    def validate_positive_seconds(cls, value: float) -> float:
        """Intervals and timeouts must be positive."""
        if value <= 0:
            msg = "value must be greater than 0"
            raise ValueError(msg)
        return value

    @field_validator("job_poll_max_attempts")
    @classmethod
    def validate_job_poll_max_attempts(cls, value: int) -> int:
        """Job poll budget must be at least 1."""
        if value < 1:
            msg = "job_poll_max_attempts must be at least 1"
            raise ValueError(msg)
        return value

    @property
    def table_logical_name(self) -> str:
        return self.table_schema_name.lower()

    def client_settings(self) -> ClientSettings:
        """Build the immutable HTTP client settings from this configuration."""
        return ClientSettings(
            api_version=self.api_version,
            timeout_seconds=self.request_timeout_seconds,
            max_connections=self.max_connections,
            enable_affinity_cookie=self.enable_affinity_cookie,
        )

    def driver_settings(self) -> DriverSettings:
        """Build the immutable batch driver settings from this configuration."""
        return DriverSettings(
            max_parallelism=self.max_parallelism,
            delete_job_name=f"Deleting records created by {self.request_tag} sample.",
            deletion_mode=self.deletion_mode,
            use_elastic=self.use_elastic,
        )

    def with_overrides(self, **overrides: Any) -> Config:
        """Return a copy with overrides applied, running every field validator again."""
        return type(self).model_validate({**self.model_dump(), **overrides})

    @classmethod
    def from_appsettings(cls, path: str | None = None) -> Config:
        """Load configuration, layering an appsettings JSON file over the environment.

        The file path comes from the argument, then DATAVERSE_APPSETTINGS, then
        ./appsettings.json. Only the default file may be absent; an explicitly
        named file that does not exist raises FileNotFoundError. Values found in
        the file take precedence over environment variables.
        """
        explicit_path = path or os.environ.get(APPSETTINGS_ENV_VAR)
        settings_path = Path(explicit_path or DEFAULT_APPSETTINGS_PATH)
        if not settings_path.is_file():
            if explicit_path:
                msg = f"settings file not found: {settings_path}"
                raise FileNotFoundError(msg)
            return cls()
        return cls(**_read_appsettings(settings_path))


def _to_snake_case(name: str) -> str:
    return re.sub(r"(?<!^)(?=[A-Z])", "_", name).lower()


def _read_appsettings(path: Path) -> dict[str, Any]:
    """Flatten an appsettings file into Config keyword arguments."""
    with path.open(encoding="utf-8") as handle:
        data = json.load(handle)

    overrides: dict[str, Any] = {}
    connection_strings = data.get("ConnectionStrings") or {}
    if connection_strings.get("default"):
        overrides["connection_string"] = connection_strings["default"]

    for key, value in (data.get("Settings") or {}).items():
        overrides[_to_snake_case(key)] = value
    return overrides
