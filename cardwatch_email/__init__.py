"""Card-usage email ingestion.

Public API re-exported here for convenience::

    from cardwatch_email import IngestConfig, IngestionService, UsageRecord
"""

from .config import BackoffConfig, ImapConfig, IngestConfig, PollerConfig, RetryConfig
from .decoder import BodyDecoder
from .errors import (
    ConfigurationError,
    IngestError,
    MarkSeenError,
    NotConnectedError,
    TransientConnectionError,
)
from .fetcher import MessageFetcher
from .health import create_health_app
from .imap_client import AsyncImapClient
from .logging import setup_logging
from .models import (
    CardProvider,
    ConnectionState,
    CycleResult,
    HealthStatus,
    MailboxStatus,
    ParsedMessage,
    SessionEvent,
    SessionEventKind,
    UsageRecord,
)
from .poller import Poller
from .providers import FieldExtractor, ProviderDetector, ProviderSignature
from .retry import BackoffPolicy, with_retry
from .service import IngestionService
from .session import SessionManager
from .suppression import SuppressionSet

__all__ = [
    "AsyncImapClient",
    "BackoffConfig",
    "BackoffPolicy",
    "BodyDecoder",
    "CardProvider",
    "ConfigurationError",
    "ConnectionState",
    "CycleResult",
    "FieldExtractor",
    "HealthStatus",
    "ImapConfig",
    "IngestConfig",
    "IngestError",
    "IngestionService",
    "MailboxStatus",
    "MarkSeenError",
    "MessageFetcher",
    "NotConnectedError",
    "ParsedMessage",
    "PollerConfig",
    "Poller",
    "ProviderDetector",
    "ProviderSignature",
    "RetryConfig",
    "SessionEvent",
    "SessionEventKind",
    "SessionManager",
    "SuppressionSet",
    "TransientConnectionError",
    "UsageRecord",
    "create_health_app",
    "setup_logging",
    "with_retry",
]
