"""Configuration management using pydantic-settings.

Every value can be overridden through the environment (``AMPLINK_*``),
an ``.env``/``.env.local`` file, or by passing a ``Settings`` instance to
the client explicitly.

Usage:
    from amplink.client.config import settings
    print(settings.base_url)

    custom = Settings(base_url="http://agents.internal:4096", idle_timeout=15)
"""

import logging
from typing import Self
from urllib.parse import urlparse

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

_LOCAL_HOSTS = {"localhost", "127.0.0.1", "::1"}


class Settings(BaseSettings):
    """Client settings loaded from environment variables.

    Field names are accepted as constructor keywords; environment variables
    use the ``AMPLINK_`` prefix.
    """

    model_config = SettingsConfigDict(
        env_file=(".env", ".env.local"),
        extra="ignore",
        populate_by_name=True,
    )

    @model_validator(mode="after")
    def warn_unauthenticated_remote(self) -> Self:
        """Warn when talking to a non-local service without an API key."""
        host = urlparse(self.base_url).hostname or ""
        if not self.api_key and host not in _LOCAL_HOSTS:
            logger.warning(
                "No AMPLINK_API_KEY set for remote service %s", self.base_url
            )
        if self.backoff_max < self.backoff_min:
            raise ValueError("backoff_max must be >= backoff_min")
        return self

    # ==========================================================================
    # SERVICE
    # ==========================================================================

    base_url: str = Field(
        default="http://localhost:4096",
        validation_alias="AMPLINK_BASE_URL",
        description="Base URL of the agent-session service",
    )

    api_key: str | None = Field(
        default=None,
        validation_alias="AMPLINK_API_KEY",
        description="Bearer token sent with every request (None = no auth)",
    )

    default_bundle: str = Field(
        default="foundation",
        validation_alias="AMPLINK_BUNDLE",
        description="Bundle used when a session config does not name one",
    )

    # ==========================================================================
    # TIMEOUTS
    # ==========================================================================

    request_timeout: float = Field(
        default=30.0,
        gt=0,
        validation_alias="AMPLINK_REQUEST_TIMEOUT",
        description="Timeout for unary requests in seconds",
    )

    connect_timeout: float = Field(
        default=10.0,
        gt=0,
        validation_alias="AMPLINK_CONNECT_TIMEOUT",
        description="Timeout for establishing a connection in seconds",
    )

    idle_timeout: float = Field(
        default=60.0,
        gt=0,
        validation_alias="AMPLINK_IDLE_TIMEOUT",
        description="Max seconds without bytes (heartbeats included) on a stream",
    )

    # ==========================================================================
    # RETRY / RECONNECT
    # ==========================================================================

    connect_max_attempts: int = Field(
        default=3,
        ge=1,
        validation_alias="AMPLINK_CONNECT_MAX_ATTEMPTS",
        description="Connection attempts before a connect error surfaces",
    )

    resume_max_attempts: int = Field(
        default=3,
        ge=0,
        validation_alias="AMPLINK_RESUME_MAX_ATTEMPTS",
        description="Reconnects allowed per stream after a mid-stream drop",
    )

    backoff_min: float = Field(
        default=0.5,
        ge=0,
        validation_alias="AMPLINK_BACKOFF_MIN",
        description="Initial backoff between attempts in seconds",
    )

    backoff_max: float = Field(
        default=10.0,
        ge=0,
        validation_alias="AMPLINK_BACKOFF_MAX",
        description="Backoff ceiling in seconds",
    )


# Singleton instance
settings = Settings()
