"""Application settings using Pydantic Settings for environment-based configuration."""

from functools import lru_cache
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

PROGRAM_NAME = "link-relay"


def default_basedir() -> Path:
    """Return ``~/.link-relay``."""
    return Path.home() / f".{PROGRAM_NAME}"


class Settings(BaseSettings):
    """
    Central configuration for the link-relay daemon.

    All settings can be overridden via environment variables prefixed with
    LINKRELAY_ (e.g., LINKRELAY_POLL_TIMEOUT_SECONDS=30). Command-line options
    take precedence over both.
    """

    model_config = SettingsConfigDict(
        env_prefix="LINKRELAY_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Environment
    environment: Literal["development", "staging", "production"] = "development"
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"

    # Daemon
    basedir: Path = Field(default_factory=default_basedir)
    daemon: bool = False
    poll_timeout_seconds: float = Field(default=60.0, gt=0)
    stop_attempts: int = Field(default=120, ge=1)
    stop_poll_seconds: float = Field(default=0.25, gt=0)

    # Source stream
    source_url: str | None = None
    source_username: str | None = None
    source_password: str | None = None
    stream_keyword: str | None = None
    max_activities_per_bucket: int | None = Field(default=None, ge=1)

    # Destination feed
    destination_url: str | None = None
    destination_username: str | None = None
    destination_password: str | None = None
    provenance_tag: str = PROGRAM_NAME

    # Expanders
    bitly_access_token: str | None = None
    shortener_domains: list[str] = Field(
        default_factory=lambda: [
            "t.co",
            "tinyurl.com",
            "goo.gl",
            "ow.ly",
            "is.gd",
            "buff.ly",
            "tiny.cc",
        ]
    )
    fallback_expander: bool = False
    expander_max_retries: int = Field(default=3, ge=0, le=10)
    http_timeout_seconds: float = Field(default=10.0, gt=0)

    # Pipeline
    worker_concurrency: int = Field(default=32, ge=1, le=512)
    cache_max_entries: int = Field(default=50_000, ge=1)
    cache_save_every_buckets: int = Field(default=10, ge=1)

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment == "production"

    @property
    def source_configured(self) -> bool:
        """Check if a real source stream is configured."""
        return self.source_url is not None

    @property
    def destination_configured(self) -> bool:
        """Check if a real destination feed is configured."""
        return self.destination_url is not None

    @property
    def bitly_configured(self) -> bool:
        """Check if the bitly API is configured."""
        return self.bitly_access_token is not None

    @property
    def log_path(self) -> Path:
        return self.basedir / f"{PROGRAM_NAME}.log"

    @property
    def lock_path(self) -> Path:
        return self.basedir / f"{PROGRAM_NAME}.lock"

    @property
    def state_path(self) -> Path:
        return self.basedir / "state.yml"

    @property
    def credentials_path(self) -> Path:
        return self.basedir / "credentials.yml"


CREDENTIAL_FIELDS = frozenset(
    {
        "source_username",
        "source_password",
        "destination_username",
        "destination_password",
        "bitly_access_token",
    }
)


def read_credentials(path: Path) -> dict[str, str]:
    """
    Read provider credentials from a YAML file.

    A missing or unreadable file yields no credentials; unknown keys are
    ignored.
    """
    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError):
        return {}
    if not isinstance(data, dict):
        return {}
    return {k: str(v) for k, v in data.items() if k in CREDENTIAL_FIELDS and v is not None}


def resolve_settings(base: Settings, overrides: dict[str, Any]) -> Settings:
    """
    Layer the credentials file and command-line overrides on top of ``base``.

    Precedence: command line, then ``<basedir>/credentials.yml``, then the
    environment. None-valued overrides are treated as not given. The base
    directory is made absolute, since a detached relay changes into it.
    """
    given = {k: v for k, v in overrides.items() if v is not None}
    basedir = Path(given.get("basedir", base.basedir)).expanduser().resolve()
    given["basedir"] = basedir
    merged = {**read_credentials(basedir / "credentials.yml"), **given}
    return Settings.model_validate({**base.model_dump(), **merged})


@lru_cache
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses lru_cache to ensure settings are loaded only once.
    Clear cache with get_settings.cache_clear() if needed.
    """
    return Settings()
