"""Exceptions raised by the ingestion pipeline.

Only conditions that change control flow are exceptions.  Decode
failures, extraction defaults, fetch misses and undetected providers
are reported as values (see :mod:`cardwatch_email.models`).
"""

from __future__ import annotations


class IngestError(Exception):
    """Base class for every error raised by this package."""


class ConfigurationError(IngestError):
    """The service was used incorrectly (double start, unknown mailbox, ...)."""


class TransientConnectionError(IngestError):
    """Connect, login, select or an active-session command failed.

    Always recovered by the session's reconnect loop; never surfaced to
    consumers.
    """

    def __init__(self, message: str, *, mailbox: str | None = None) -> None:
        super().__init__(message)
        self.mailbox = mailbox


class NotConnectedError(IngestError):
    """A protocol operation was requested while the session is not Connected."""

    def __init__(self, mailbox: str) -> None:
        super().__init__(f"mailbox {mailbox!r} is not connected")
        self.mailbox = mailbox


class MarkSeenError(IngestError):
    """The server refused to set ``\\Seen`` on a message."""

    def __init__(self, identifier: str, response: str) -> None:
        super().__init__(f"STORE \\Seen failed for UID {identifier}: {response}")
        self.identifier = identifier
        self.response = response
