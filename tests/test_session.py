"""Tests for cardwatch_email.session."""

from __future__ import annotations

import asyncio

import pytest
from structlog.testing import capture_logs

from cardwatch_email.errors import (
    ConfigurationError,
    NotConnectedError,
    TransientConnectionError,
)
from cardwatch_email.models import ConnectionState, SessionEvent, SessionEventKind
from cardwatch_email.retry import BackoffPolicy
from cardwatch_email.session import SessionManager
from tests.conftest import ClientFactory, make_client

FAST = BackoffPolicy(base_ms=10, cap_ms=40)


def _session(factory: ClientFactory, **kwargs) -> SessionManager:
    kwargs.setdefault("backoff", FAST)
    kwargs.setdefault("keepalive_interval_seconds", 3600)
    return SessionManager("三井住友カード", factory, **kwargs)


async def _next_event(session: SessionManager, timeout: float = 2.0) -> SessionEvent:
    return await asyncio.wait_for(session.events.get(), timeout=timeout)


def _refused() -> TransientConnectionError:
    return TransientConnectionError("connection refused")


class TestSessionConnect:
    @pytest.mark.asyncio
    async def test_connect_success(self):
        factory = ClientFactory()
        session = _session(factory)
        await session.connect()
        try:
            assert session.state is ConnectionState.CONNECTED
            assert session.attempt == 0
            event = await _next_event(session)
            assert event.kind is SessionEventKind.CONNECTED
            assert event.mailbox == "三井住友カード"
            factory.created[0].connect.assert_awaited_once_with("三井住友カード")
        finally:
            await session.stop()

    @pytest.mark.asyncio
    async def test_connect_twice_is_misuse(self):
        session = _session(ClientFactory())
        await session.connect()
        try:
            with pytest.raises(ConfigurationError):
                await session.connect()
        finally:
            await session.stop()

    @pytest.mark.asyncio
    async def test_failed_connect_raises_and_keeps_retrying(self):
        factory = ClientFactory(make_client(connect_error=_refused()))
        session = _session(factory)
        with pytest.raises(TransientConnectionError) as excinfo:
            await session.connect()
        try:
            assert excinfo.value.mailbox == "三井住友カード"
            assert session.state in (ConnectionState.RECONNECTING, ConnectionState.CONNECTING)

            lost = await _next_event(session)
            assert lost.kind is SessionEventKind.CONNECTION_LOST
            reconnected = await _next_event(session)
            assert reconnected.kind is SessionEventKind.RECONNECTED
            assert session.state is ConnectionState.CONNECTED
            assert len(factory.created) == 2
        finally:
            await session.stop()


class TestSessionReconnect:
    @pytest.mark.asyncio
    async def test_attempts_reset_after_reconnect(self):
        factory = ClientFactory(*(make_client(connect_error=_refused()) for _ in range(3)))
        session = _session(factory)
        with pytest.raises(TransientConnectionError):
            await session.connect()
        try:
            assert (await _next_event(session)).kind is SessionEventKind.CONNECTION_LOST
            event = await _next_event(session)
            assert event.kind is SessionEventKind.RECONNECTED
            assert event.attempt == 0
            assert session.attempt == 0
            assert len(factory.created) == 4
        finally:
            await session.stop()

    @pytest.mark.asyncio
    async def test_repeated_failures_logged_at_error(self):
        with capture_logs() as logs:
            factory = ClientFactory(*(make_client(connect_error=_refused()) for _ in range(4)))
            session = _session(factory, alert_after_attempts=3)
            with pytest.raises(TransientConnectionError):
                await session.connect()
            try:
                await _next_event(session)
                assert (await _next_event(session)).kind is SessionEventKind.RECONNECTED
            finally:
                await session.stop()

        alerts = [e for e in logs if e["event"] == "reconnect_attempts_exceeded"]
        assert alerts
        assert all(e["log_level"] == "error" for e in alerts)
        assert {e["attempt"] for e in alerts} == {3, 4}

    @pytest.mark.asyncio
    async def test_backoff_delays_follow_policy(self):
        with capture_logs() as logs:
            factory = ClientFactory(*(make_client(connect_error=_refused()) for _ in range(3)))
            session = _session(factory, alert_after_attempts=100)
            with pytest.raises(TransientConnectionError):
                await session.connect()
            try:
                await _next_event(session)
                await _next_event(session)
            finally:
                await session.stop()

        scheduled = [e for e in logs if e["event"] == "reconnect_scheduled"]
        assert [(e["attempt"], e["delay_seconds"]) for e in scheduled] == [
            (1, 0.02),
            (2, 0.04),
            (3, 0.04),
        ]

    @pytest.mark.asyncio
    async def test_mark_lost_from_connected(self):
        factory = ClientFactory()
        session = _session(factory)
        await session.connect()
        try:
            await _next_event(session)
            session.mark_lost("NOOP failed")
            assert session.state is ConnectionState.RECONNECTING
            lost = await _next_event(session)
            assert lost.kind is SessionEventKind.CONNECTION_LOST
            assert (await _next_event(session)).kind is SessionEventKind.RECONNECTED
            factory.created[0].disconnect.assert_awaited()
        finally:
            await session.stop()

    @pytest.mark.asyncio
    async def test_mark_lost_ignored_when_not_connected(self):
        session = _session(ClientFactory())
        session.mark_lost("whatever")
        assert session.state is ConnectionState.DISCONNECTED
        assert session.events.empty()


class TestSessionConnection:
    @pytest.mark.asyncio
    async def test_not_connected(self):
        session = _session(ClientFactory())
        with pytest.raises(NotConnectedError):
            async with session.connection():
                pass

    @pytest.mark.asyncio
    async def test_transient_error_inside_block_marks_lost(self):
        factory = ClientFactory()
        session = _session(factory, backoff=BackoffPolicy(base_ms=60_000, cap_ms=60_000))
        await session.connect()
        try:
            await _next_event(session)
            with pytest.raises(TransientConnectionError):
                async with session.connection() as client:
                    assert client is factory.created[0]
                    raise TransientConnectionError("socket error")
            assert session.state is ConnectionState.RECONNECTING
            assert (await _next_event(session)).kind is SessionEventKind.CONNECTION_LOST
            with pytest.raises(NotConnectedError):
                async with session.connection():
                    pass
        finally:
            await session.stop()

    @pytest.mark.asyncio
    async def test_keepalive_failure_triggers_reconnect(self):
        first = make_client()
        first.noop.side_effect = TransientConnectionError("NOOP returned BYE")
        factory = ClientFactory(first)
        session = _session(factory, keepalive_interval_seconds=0.01)
        await session.connect()
        try:
            assert (await _next_event(session)).kind is SessionEventKind.CONNECTED
            assert (await _next_event(session)).kind is SessionEventKind.CONNECTION_LOST
            assert (await _next_event(session)).kind is SessionEventKind.RECONNECTED
            first.noop.assert_awaited()
        finally:
            await session.stop()


class TestSessionStop:
    @pytest.mark.asyncio
    async def test_stop_disconnects(self):
        factory = ClientFactory()
        session = _session(factory)
        await session.connect()
        await _next_event(session)
        await session.stop()
        assert session.state is ConnectionState.DISCONNECTED
        assert (await _next_event(session)).kind is SessionEventKind.STOPPED
        factory.created[0].disconnect.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_stop_cancels_pending_backoff(self):
        factory = ClientFactory(make_client(connect_error=_refused()))
        session = _session(factory, backoff=BackoffPolicy(base_ms=60_000, cap_ms=60_000))
        with pytest.raises(TransientConnectionError):
            await session.connect()

        await asyncio.wait_for(session.stop(), timeout=1.0)
        assert session.state is ConnectionState.DISCONNECTED
        assert (await _next_event(session)).kind is SessionEventKind.CONNECTION_LOST
        assert (await _next_event(session)).kind is SessionEventKind.STOPPED
        await asyncio.sleep(0.05)
        assert len(factory.created) == 1

    @pytest.mark.asyncio
    async def test_stop_during_failing_first_connect_ends_disconnected(self):
        gate = asyncio.Event()

        async def slow_refusal(mailbox: str) -> None:
            await gate.wait()
            raise _refused()

        client = make_client()
        client.connect.side_effect = slow_refusal
        factory = ClientFactory(client)
        session = _session(factory)

        connecting = asyncio.create_task(session.connect())
        await asyncio.sleep(0.01)
        assert session.state is ConnectionState.CONNECTING
        await session.stop()
        gate.set()
        with pytest.raises(TransientConnectionError):
            await connecting

        await asyncio.sleep(0.05)
        assert session.state is ConnectionState.DISCONNECTED
        assert (await _next_event(session)).kind is SessionEventKind.STOPPED
        assert session.events.empty()
        assert len(factory.created) == 1

    @pytest.mark.asyncio
    async def test_stop_when_never_started(self):
        session = _session(ClientFactory())
        await session.stop()
        assert session.state is ConnectionState.DISCONNECTED
        assert session.events.empty()

    @pytest.mark.asyncio
    async def test_can_connect_again_after_stop(self):
        factory = ClientFactory()
        session = _session(factory)
        await session.connect()
        await session.stop()
        await session.connect()
        try:
            assert session.state is ConnectionState.CONNECTED
            assert len(factory.created) == 2
        finally:
            await session.stop()
