"""Tests for cardwatch_email.fetcher."""

from __future__ import annotations

import pytest
import pytest_asyncio

from cardwatch_email.config import RetryConfig
from cardwatch_email.errors import MarkSeenError, NotConnectedError, TransientConnectionError
from cardwatch_email.fetcher import MessageFetcher
from cardwatch_email.models import ConnectionState
from cardwatch_email.retry import BackoffPolicy
from cardwatch_email.session import SessionManager
from tests.conftest import ClientFactory, make_client


@pytest_asyncio.fixture
async def connected():
    """A connected session whose single client is programmable."""
    client = make_client(unseen=["3", "7"], messages={"7": b"raw-7"})
    session = SessionManager(
        "INBOX",
        ClientFactory(client),
        backoff=BackoffPolicy(base_ms=60_000, cap_ms=60_000),
        keepalive_interval_seconds=3600,
    )
    await session.connect()
    yield session, client
    await session.stop()


class TestMessageFetcher:
    @pytest.mark.asyncio
    async def test_list_unseen(self, connected, retry_config: RetryConfig):
        session, _ = connected
        assert await MessageFetcher(session, retry_config).list_unseen() == ["3", "7"]

    @pytest.mark.asyncio
    async def test_fetch(self, connected, retry_config: RetryConfig):
        session, _ = connected
        fetcher = MessageFetcher(session, retry_config)
        assert await fetcher.fetch("7") == b"raw-7"
        assert await fetcher.fetch("3") is None

    @pytest.mark.asyncio
    async def test_requires_connected_session(self, retry_config: RetryConfig):
        session = SessionManager("INBOX", ClientFactory())
        fetcher = MessageFetcher(session, retry_config)
        with pytest.raises(NotConnectedError):
            await fetcher.list_unseen()
        with pytest.raises(NotConnectedError):
            await fetcher.fetch("1")
        with pytest.raises(NotConnectedError):
            await fetcher.mark_seen("1")

    @pytest.mark.asyncio
    async def test_mark_seen_retried_in_place(self, connected, retry_config: RetryConfig):
        session, client = connected
        client.store_seen.side_effect = [MarkSeenError("7", "NO try again"), None]
        await MessageFetcher(session, retry_config).mark_seen("7")
        assert client.store_seen.await_count == 2

    @pytest.mark.asyncio
    async def test_mark_seen_gives_up(self, connected, retry_config: RetryConfig):
        session, client = connected
        client.store_seen.side_effect = MarkSeenError("7", "NO read-only")
        with pytest.raises(MarkSeenError):
            await MessageFetcher(session, retry_config).mark_seen("7")
        assert client.store_seen.await_count == retry_config.max_attempts
        assert session.state is ConnectionState.CONNECTED

    @pytest.mark.asyncio
    async def test_connection_failure_not_retried_and_marks_lost(
        self, connected, retry_config: RetryConfig
    ):
        session, client = connected
        client.search_unseen.side_effect = TransientConnectionError("socket closed")
        with pytest.raises(TransientConnectionError):
            await MessageFetcher(session, retry_config).list_unseen()
        assert session.state is ConnectionState.RECONNECTING
        assert client.search_unseen.await_count == 1
