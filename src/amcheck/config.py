"""Configuration management for amcheck.

Settings come from, in order of precedence: explicit arguments, environment
variables with the ``AMCHECK_`` prefix (``__`` separates nested keys), a
``.env`` file, and finally ``settings/<environment>.toml``. The TOML file is
where the matcher sets and handlers normally live.
"""

from __future__ import annotations

import os
from enum import Enum
from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    TomlConfigSettingsSource,
)

from amcheck.exceptions import ConfigurationError
from amcheck.models import FilterCondition, Handler

ENVIRONMENT_VARIABLE = "AMCHECK_ENVIRONMENT"
SETTINGS_DIR_VARIABLE = "AMCHECK_SETTINGS_DIR"

LOG_LEVELS = ("TRACE", "DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class Environment(str, Enum):
    """The runtime environment the checks run in."""

    TEST = "test"
    PROD = "prod"

    @classmethod
    def parse(cls, value: str) -> Environment:
        """Parse an environment name; ``production`` is accepted for ``prod``.

        Raises:
            ConfigurationError: If the name is not a supported environment.
        """
        normalized = value.strip().lower()
        if normalized == "production":
            normalized = "prod"
        try:
            return cls(normalized)
        except ValueError:
            raise ConfigurationError(
                f"{value} is not a supported environment. Use either `test` or `prod`."
            ) from None


def get_environment() -> Environment:
    """Detect the running environment, defaulting to ``prod``."""
    return Environment.parse(os.environ.get(ENVIRONMENT_VARIABLE, "prod"))


def settings_file(environment: Environment | None = None) -> Path:
    """Return the TOML file holding the settings for ``environment``."""
    environment = environment or get_environment()
    settings_dir = Path(os.environ.get(SETTINGS_DIR_VARIABLE, "settings"))
    return settings_dir / f"{environment.value}.toml"


class Settings(BaseSettings):
    """Application settings with environment variable and TOML support.

    All settings can be overridden via environment variables with
    the AMCHECK_ prefix (e.g., AMCHECK_IMAP_SERVER).
    """

    model_config = SettingsConfigDict(
        env_prefix="AMCHECK_",
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # IMAP Configuration
    imap_server: str = Field(
        default="",
        description="IMAP server host name",
    )
    imap_port: int = Field(
        default=993,
        description="IMAP over TLS port",
    )
    login: str = Field(
        default="",
        description="IMAP login name",
    )
    password: SecretStr = Field(
        default=SecretStr(""),
        description="IMAP password",
    )

    environment: Environment = Field(
        default=Environment.PROD,
        description=(
            "Runtime environment. In `test`, TLS certificates are not verified "
            "and the move phase scans all mail since 2000."
        ),
    )

    # Mailbox handling
    storage_mailbox: str = Field(
        default="amcheck_storage",
        description="Mailbox that the move phase fills and the check phase reads",
    )
    move_days_back: int = Field(
        default=60,
        ge=0,
        description="How many days of INBOX mail the move phase looks at",
    )
    check_fetch_limit: int = Field(
        default=2000,
        ge=1,
        description="Maximum number of most recent stored mails the check phase loads",
    )
    alert_detail_limit: int = Field(
        default=9,
        ge=0,
        description="Maximum number of mails described individually per alert",
    )

    # Rules
    matcher_sets: list[list[FilterCondition]] = Field(
        default_factory=list,
        description="Mail matching any of these sets is moved to storage",
    )
    handlers: list[Handler] = Field(
        default_factory=list,
        description="Named rule-sets evaluated against the storage mailbox",
    )

    # Application Configuration
    log_level: str = Field(
        default="INFO",
        description="Logging level (TRACE, DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )
    log_format: Literal["logfmt", "console", "json"] = Field(
        default="logfmt",
        description="Log line renderer",
    )

    @field_validator("environment", mode="before")
    @classmethod
    def _parse_environment(cls, value: object) -> object:
        if isinstance(value, str):
            try:
                return Environment.parse(value)
            except ConfigurationError as exc:
                raise ValueError(str(exc)) from exc
        return value

    @field_validator("log_level")
    @classmethod
    def _check_log_level(cls, value: str) -> str:
        level = value.upper()
        if level not in LOG_LEVELS:
            raise ValueError(f"log_level must be one of {', '.join(LOG_LEVELS)}")
        return level

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            file_secret_settings,
            TomlConfigSettingsSource(settings_cls, toml_file=settings_file()),
        )


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings.

    Returns:
        Settings: Application settings instance.
    """
    return Settings()
