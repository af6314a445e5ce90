"""SessionManager: owns one mailbox's IMAP connection and its state machine.

Transitions::

    DISCONNECTED --connect()--> CONNECTING --ok--> CONNECTED
    CONNECTING --fail--> RECONNECTING --backoff elapsed--> CONNECTING
    CONNECTED --error / failed NOOP--> RECONNECTING
    any --stop()--> DISCONNECTED

Every transition that matters to the poller is published as a
:class:`SessionEvent` on :attr:`SessionManager.events`; the mailbox
worker consumes that queue.  ``connection_lost`` is published once per
outage and ``reconnected`` when the outage ends.
"""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import AsyncIterator, Callable

import structlog

from .errors import ConfigurationError, NotConnectedError, TransientConnectionError
from .imap_client import AsyncImapClient
from .models import ConnectionState, SessionEvent, SessionEventKind
from .retry import BackoffPolicy


class SessionManager:
    def __init__(
        self,
        mailbox: str,
        client_factory: Callable[[], AsyncImapClient],
        *,
        backoff: BackoffPolicy | None = None,
        keepalive_interval_seconds: float = 180.0,
        alert_after_attempts: int = 3,
        logger: structlog.typing.BindableLogger | None = None,
    ) -> None:
        self.mailbox = mailbox
        self._client_factory = client_factory
        self._backoff = backoff or BackoffPolicy()
        self._keepalive_interval = keepalive_interval_seconds
        self._alert_after_attempts = alert_after_attempts
        self._log = (logger or structlog.get_logger()).bind(mailbox=mailbox)

        self._state = ConnectionState.DISCONNECTED
        self._attempt = 0
        self._client: AsyncImapClient | None = None
        self._io_lock = asyncio.Lock()
        self._stopped = asyncio.Event()
        self._reconnect_task: asyncio.Task[None] | None = None
        self._keepalive_task: asyncio.Task[None] | None = None
        self.events: asyncio.Queue[SessionEvent] = asyncio.Queue()

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def attempt(self) -> int:
        """Failed connect attempts since the last successful connect."""
        return self._attempt

    @property
    def selected_mailbox(self) -> str | None:
        return self._client.mailbox if self._client is not None else None

    # ------------------------------------------------------------------
    # Public lifecycle
    # ------------------------------------------------------------------

    async def connect(self) -> None:
        """Start the state machine with one immediate connect attempt.

        On failure the session is left RECONNECTING (retries run in the
        background) and the :class:`TransientConnectionError` is raised.
        """
        if self._state is not ConnectionState.DISCONNECTED:
            raise ConfigurationError(f"session for {self.mailbox!r} is already {self._state.value}")
        self._stopped.clear()
        self._attempt = 0

        try:
            connected = await self._attempt_connect()
        except TransientConnectionError as exc:
            if self._stopped.is_set():
                self._log.info("imap_connect_abandoned", error=str(exc))
                self._set_state(ConnectionState.DISCONNECTED)
                raise
            self._attempt += 1
            self._log.warning("imap_connect_failed", error=str(exc), attempt=self._attempt)
            self._enter_reconnecting(notify=True)
            raise
        if connected:
            self._publish(SessionEventKind.CONNECTED)

    def mark_lost(self, reason: str) -> None:
        """Report a failure on a CONNECTED session.  No-op in any other state."""
        if self._state is not ConnectionState.CONNECTED:
            return
        self._log.warning("imap_connection_lost", reason=reason)
        self._cancel_keepalive()
        self._enter_reconnecting(notify=True)

    async def stop(self) -> None:
        """Cancel pending reconnects, close the connection, go DISCONNECTED.

        A connect attempt already in flight finishes (bounded by the socket
        timeout) and its connection is closed straight away.
        """
        self._stopped.set()
        keepalive = self._cancel_keepalive()
        if keepalive is not None:
            with contextlib.suppress(asyncio.CancelledError):
                await keepalive
        if self._reconnect_task is not None:
            await self._reconnect_task
            self._reconnect_task = None
        await self._drop_client()

        was_running = self._state is not ConnectionState.DISCONNECTED
        self._set_state(ConnectionState.DISCONNECTED)
        self._attempt = 0
        if was_running:
            self._publish(SessionEventKind.STOPPED)

    @contextlib.asynccontextmanager
    async def connection(self) -> AsyncIterator[AsyncImapClient]:
        """Exclusive access to the live client.

        Raises :class:`NotConnectedError` unless CONNECTED.  A
        :class:`TransientConnectionError` raised inside the block marks the
        session lost before propagating.
        """
        if self._state is not ConnectionState.CONNECTED:
            raise NotConnectedError(self.mailbox)
        async with self._io_lock:
            client = self._client
            if self._state is not ConnectionState.CONNECTED or client is None:
                raise NotConnectedError(self.mailbox)
            try:
                yield client
            except TransientConnectionError as exc:
                self.mark_lost(str(exc))
                raise

    # ------------------------------------------------------------------
    # State machine internals
    # ------------------------------------------------------------------

    async def _attempt_connect(self) -> bool:
        """One CONNECTING pass.  False if stop() arrived meanwhile."""
        self._set_state(ConnectionState.CONNECTING)
        client = self._client_factory()
        try:
            await client.connect(self.mailbox)
        except TransientConnectionError as exc:
            raise TransientConnectionError(str(exc), mailbox=self.mailbox) from exc

        if self._stopped.is_set():
            await client.disconnect()
            return False

        self._client = client
        self._attempt = 0
        self._set_state(ConnectionState.CONNECTED)
        self._keepalive_task = asyncio.create_task(
            self._keepalive_loop(), name=f"keepalive:{self.mailbox}"
        )
        return True

    def _enter_reconnecting(self, *, notify: bool) -> None:
        self._set_state(ConnectionState.RECONNECTING)
        if notify:
            self._publish(SessionEventKind.CONNECTION_LOST)
        if self._reconnect_task is None or self._reconnect_task.done():
            self._reconnect_task = asyncio.create_task(
                self._reconnect_loop(), name=f"reconnect:{self.mailbox}"
            )

    async def _reconnect_loop(self) -> None:
        while not self._stopped.is_set():
            delay = self._backoff.delay_seconds(self._attempt)
            log = self._log.bind(attempt=self._attempt, delay_seconds=delay)
            if self._attempt >= self._alert_after_attempts:
                log.error("reconnect_attempts_exceeded")
            else:
                log.info("reconnect_scheduled")

            if await self._wait_for_stop(delay):
                return

            await self._drop_client()
            try:
                connected = await self._attempt_connect()
            except TransientConnectionError as exc:
                self._attempt += 1
                self._log.warning("reconnect_failed", error=str(exc), attempt=self._attempt)
                self._set_state(ConnectionState.RECONNECTING)
                continue

            if connected:
                self._log.info("imap_reconnected")
                self._publish(SessionEventKind.RECONNECTED)
            return

    async def _wait_for_stop(self, timeout: float) -> bool:
        try:
            await asyncio.wait_for(self._stopped.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            return False
        return True

    async def _keepalive_loop(self) -> None:
        while True:
            await asyncio.sleep(self._keepalive_interval)
            try:
                async with self.connection() as client:
                    await client.noop()
            except NotConnectedError:
                return
            except TransientConnectionError:
                # connection() has already marked the session lost
                return
            self._log.debug("imap_keepalive_ok")

    def _cancel_keepalive(self) -> asyncio.Task[None] | None:
        task, self._keepalive_task = self._keepalive_task, None
        if task is None or task is asyncio.current_task():
            return None
        task.cancel()
        return task

    async def _drop_client(self) -> None:
        async with self._io_lock:
            client, self._client = self._client, None
        if client is not None:
            await client.disconnect()

    def _set_state(self, state: ConnectionState) -> None:
        if state is not self._state:
            self._log.debug("session_state_changed", old=self._state.value, new=state.value)
            self._state = state

    def _publish(self, kind: SessionEventKind) -> None:
        self.events.put_nowait(
            SessionEvent(kind=kind, mailbox=self.mailbox, state=self._state, attempt=self._attempt)
        )
