"""Ingestion configuration loaded from environment variables.

Uses pydantic-settings so every field can be overridden via env vars.
Each concern has its own prefix; :class:`IngestConfig` nests them.
"""

from __future__ import annotations

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings


class ImapConfig(BaseSettings):
    """IMAP account shared by every monitored mailbox."""

    model_config = {"env_prefix": "IMAP_"}

    host: str = Field(default="imap.gmail.com", description="IMAP server hostname")
    port: int = Field(default=993, description="IMAP server port")
    use_ssl: bool = Field(default=True, description="Use SSL/TLS connection")
    username: str = Field(description="IMAP login username")
    password: SecretStr = Field(description="IMAP login password")
    timeout_seconds: float = Field(
        default=30.0,
        description="Socket timeout for IMAP commands",
    )


class BackoffConfig(BaseSettings):
    """Reconnect backoff: delay(n) = min(cap_ms, base_ms * 2**n)."""

    model_config = {"env_prefix": "BACKOFF_"}

    base_ms: int = Field(default=1000, ge=0, description="Delay before the first reconnect")
    cap_ms: int = Field(default=300_000, ge=0, description="Upper bound for any reconnect delay")
    alert_after_attempts: int = Field(
        default=3,
        description="Failed attempts after which reconnects are logged at error level",
    )


class PollerConfig(BaseSettings):
    """Polling schedule and session housekeeping."""

    model_config = {"env_prefix": "POLL_"}

    interval_seconds: float = Field(default=60.0, gt=0, description="Seconds between poll cycles")
    keepalive_interval_seconds: float = Field(
        default=180.0,
        gt=0,
        description="Seconds between NOOP health checks on a connected session",
    )
    suppression_retention_seconds: float | None = Field(
        default=None,
        description="Evict delivered identifiers older than this (None keeps them forever)",
    )
    shutdown_grace_seconds: float = Field(
        default=30.0,
        description="How long stop() waits for an in-flight poll cycle",
    )


class RetryConfig(BaseSettings):
    """In-place retry for mark-seen, driven by Tenacity."""

    model_config = {"env_prefix": "RETRY_"}

    max_attempts: int = Field(default=3, description="Maximum STORE attempts per message")
    initial_wait_seconds: float = Field(default=0.5, description="Initial backoff wait in seconds")
    max_wait_seconds: float = Field(default=5.0, description="Maximum backoff wait in seconds")
    multiplier: float = Field(default=2.0, description="Exponential backoff multiplier")


class IngestConfig(BaseSettings):
    """Root configuration for an ingestion process.

    Nested configs are populated from their own env-var prefixes.
    """

    model_config = {"env_prefix": "INGEST_"}

    name: str = Field(default="cardwatch-email", description="Process name used in logs")
    mailboxes: list[str] = Field(
        default_factory=lambda: ["三菱東京UFJ銀行", "三井住友カード"],
        description="Mailbox folders to monitor, one per card provider",
    )
    timezone: str = Field(
        default="Asia/Tokyo",
        description="Zone in which provider notification timestamps are written",
    )
    health_port: int = Field(default=8080, description="Port for health probe endpoints")
    log_json: bool = Field(default=True, description="Emit JSON log lines")
    log_level: str = Field(default="INFO", description="Root log level")

    imap: ImapConfig = Field(default_factory=ImapConfig)
    backoff: BackoffConfig = Field(default_factory=BackoffConfig)
    poller: PollerConfig = Field(default_factory=PollerConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
