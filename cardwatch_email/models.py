"""Data models shared by the ingestion pipeline."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class ConnectionState(str, Enum):
    """Lifecycle of one mailbox session."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"


class SessionEventKind(str, Enum):
    """Transition notifications published by :class:`SessionManager`."""

    CONNECTED = "connected"
    CONNECTION_LOST = "connection_lost"
    RECONNECTED = "reconnected"
    STOPPED = "stopped"


class CardProvider(str, Enum):
    """Card companies whose notification format is understood."""

    MUFG = "MUFG"  # 三菱UFJ銀行 (debit)
    SMBC = "SMBC"  # 三井住友カード


@dataclass(frozen=True)
class SessionEvent:
    kind: SessionEventKind
    mailbox: str
    state: ConnectionState
    attempt: int = 0


@dataclass(frozen=True)
class ParsedMessage:
    """A fetched message reduced to what detection and extraction need.

    ``decode_error`` is set (and ``plain_text_body`` is empty) when the
    payload could not be decoded.
    """

    identifier: str
    mailbox: str
    subject: str
    sender_address: str
    plain_text_body: str
    received_at: datetime
    decode_error: str | None = None


class UsageRecord(BaseModel):
    """One card usage extracted from a notification email.

    Ownership passes to the ``on_usage`` consumer; the pipeline keeps no
    reference after delivery.
    """

    model_config = ConfigDict(frozen=True)

    provider_id: CardProvider = Field(description="Provider whose extractor produced the record")
    card_label: str = Field(default="", description="Card name as written in the email")
    used_at: datetime = Field(description="Usage timestamp, timezone-aware")
    amount_minor_units: int = Field(
        default=0,
        ge=0,
        description="Amount in minor currency units (JPY has none, so yen)",
    )
    merchant_label: str = Field(default="", description="Where the card was used")
    low_confidence: bool = Field(
        default=False,
        description="True when used_at could not be parsed and 'now' was substituted",
    )
    defaulted_fields: tuple[str, ...] = Field(
        default=(),
        description="Fields that fell back to their default value",
    )
    message_identifier: str | None = Field(default=None, description="Protocol UID of the source")
    mailbox: str | None = Field(default=None, description="Mailbox the source was read from")


@dataclass
class CycleResult:
    """Counters for one poll cycle."""

    listed: int = 0
    delivered: int = 0
    undetected: int = 0
    skipped: int = 0
    failed: int = 0
    decode_failures: int = 0
    ran: bool = True


class MailboxStatus(BaseModel):
    """Runtime view of one mailbox worker, served by ``/health``."""

    mailbox: str
    state: ConnectionState
    reconnect_attempts: int = 0
    last_poll_at: datetime | None = None
    delivered: int = 0
    undetected: int = 0
    suppressed: int = 0


class HealthStatus(BaseModel):
    service_name: str
    running: bool
    uptime_seconds: float
    mailboxes: list[MailboxStatus] = Field(default_factory=list)
