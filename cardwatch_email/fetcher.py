"""MessageFetcher: list, fetch and mark-seen on a session's live connection."""

from __future__ import annotations

import structlog

from .config import RetryConfig
from .errors import MarkSeenError
from .retry import with_retry
from .session import SessionManager


class MessageFetcher:
    """Message operations for one mailbox.

    Every call borrows the connection from its :class:`SessionManager` and
    raises :class:`NotConnectedError` unless the session is CONNECTED.
    Only ``mark_seen`` retries in place; fetch failures are left to the
    poller's next cycle.
    """

    def __init__(
        self,
        session: SessionManager,
        retry_config: RetryConfig | None = None,
        *,
        logger: structlog.typing.BindableLogger | None = None,
    ) -> None:
        self._session = session
        self._log = (logger or structlog.get_logger()).bind(mailbox=session.mailbox)
        retry_config = retry_config or RetryConfig()
        self._store_seen = with_retry(
            retry_config, retryable_exceptions=(MarkSeenError,)
        )(self._store_seen_once)

    async def list_unseen(self) -> list[str]:
        async with self._session.connection() as client:
            return await client.search_unseen()

    async def fetch(self, identifier: str) -> bytes | None:
        """Raw RFC 822 payload, or None if the message no longer exists."""
        async with self._session.connection() as client:
            raw = await client.fetch(identifier)
        if raw is None:
            self._log.info("message_not_found", uid=identifier)
        return raw

    async def mark_seen(self, identifier: str) -> None:
        await self._store_seen(identifier)

    async def _store_seen_once(self, identifier: str) -> None:
        async with self._session.connection() as client:
            try:
                await client.store_seen(identifier)
            except MarkSeenError as exc:
                self._log.warning("mark_seen_refused", uid=identifier, response=exc.response)
                raise
