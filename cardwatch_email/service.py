"""IngestionService: start and stop per-mailbox ingestion workers."""

from __future__ import annotations

import asyncio
import contextlib
import time
from collections.abc import Callable
from dataclasses import dataclass, field

import structlog

from .config import IngestConfig
from .decoder import BodyDecoder
from .errors import ConfigurationError, TransientConnectionError
from .fetcher import MessageFetcher
from .imap_client import AsyncImapClient
from .models import MailboxStatus, SessionEventKind
from .poller import Poller, UndetectedCallback, UsageCallback
from .providers import ProviderDetector
from .retry import BackoffPolicy
from .session import SessionManager
from .suppression import SuppressionSet


@dataclass
class MailboxWorker:
    """Everything one monitored mailbox owns.  Nothing here is shared."""

    mailbox: str
    session: SessionManager
    poller: Poller
    suppression: SuppressionSet
    supervisor: asyncio.Task[None] | None = field(default=None, repr=False)


class IngestionService:
    """Façade over the ingestion pipeline.

    Each :meth:`start` call builds one :class:`SessionManager`,
    :class:`Poller` and :class:`SuppressionSet` for the mailbox, plus a
    supervisor task that pauses the poller on ``connection_lost`` and
    resumes it, with one immediate cycle, on ``connected`` and
    ``reconnected``.  The provider detector and decoder are shared; both
    are read-only after construction.
    """

    def __init__(
        self,
        config: IngestConfig,
        *,
        client_factory: Callable[[], AsyncImapClient] | None = None,
        detector: ProviderDetector | None = None,
        decoder: BodyDecoder | None = None,
        logger: structlog.typing.BindableLogger | None = None,
    ) -> None:
        self.config = config
        self.start_time: float = time.monotonic()
        self._client_factory = client_factory or (lambda: AsyncImapClient(config.imap))
        self._detector = detector or ProviderDetector(timezone=config.timezone)
        self._decoder = decoder or BodyDecoder()
        self._log = logger or structlog.get_logger()
        self._workers: dict[str, MailboxWorker] = {}

    @property
    def mailboxes(self) -> list[str]:
        return list(self._workers)

    @property
    def running(self) -> bool:
        return bool(self._workers)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(
        self,
        mailbox: str,
        on_usage: UsageCallback,
        on_undetected: UndetectedCallback | None = None,
    ) -> None:
        """Begin monitoring *mailbox*.

        A failed first connect does not raise: the session keeps retrying
        with backoff and polling starts once it connects.  Raises
        :class:`ConfigurationError` if the mailbox is already started.
        """
        if mailbox in self._workers:
            raise ConfigurationError(f"mailbox {mailbox!r} is already started")

        log = self._log.bind(mailbox=mailbox)
        session = SessionManager(
            mailbox,
            self._client_factory,
            backoff=BackoffPolicy.from_config(self.config.backoff),
            keepalive_interval_seconds=self.config.poller.keepalive_interval_seconds,
            alert_after_attempts=self.config.backoff.alert_after_attempts,
            logger=log,
        )
        suppression = SuppressionSet(
            retention_seconds=self.config.poller.suppression_retention_seconds
        )
        poller = Poller(
            mailbox,
            session,
            MessageFetcher(session, self.config.retry, logger=log),
            self._decoder,
            self._detector,
            suppression,
            on_usage,
            on_undetected,
            interval_seconds=self.config.poller.interval_seconds,
            logger=log,
        )
        worker = MailboxWorker(mailbox, session, poller, suppression)
        self._workers[mailbox] = worker

        worker.supervisor = asyncio.create_task(
            self._supervise(worker, log), name=f"supervisor:{mailbox}"
        )
        poller.start()
        log.info("mailbox_starting")
        try:
            await session.connect()
        except TransientConnectionError as exc:
            log.warning("mailbox_start_degraded", error=str(exc))

    async def start_all(
        self,
        on_usage: UsageCallback,
        on_undetected: UndetectedCallback | None = None,
    ) -> None:
        """Start every mailbox listed in the configuration."""
        for mailbox in self.config.mailboxes:
            await self.start(mailbox, on_usage, on_undetected)

    async def stop(self, mailbox: str | None = None) -> None:
        """Stop one mailbox, or all of them when *mailbox* is None.

        Raises :class:`ConfigurationError` for a mailbox that is not running.
        """
        if mailbox is None:
            names = list(self._workers)
        elif mailbox not in self._workers:
            raise ConfigurationError(f"mailbox {mailbox!r} is not started")
        else:
            names = [mailbox]

        workers = [self._workers.pop(name) for name in names]
        await asyncio.gather(*(self._stop_worker(w) for w in workers))

    async def _stop_worker(self, worker: MailboxWorker) -> None:
        log = self._log.bind(mailbox=worker.mailbox)
        await worker.poller.stop(self.config.poller.shutdown_grace_seconds)
        await worker.session.stop()
        if worker.supervisor is not None:
            worker.supervisor.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await worker.supervisor
        worker.suppression.clear()
        log.info("mailbox_stopped")

    async def _supervise(self, worker: MailboxWorker, log: structlog.typing.BindableLogger) -> None:
        while True:
            event = await worker.session.events.get()
            log.debug("session_event", kind=event.kind.value, attempt=event.attempt)
            if event.kind is SessionEventKind.CONNECTION_LOST:
                worker.poller.pause()
            elif event.kind in (SessionEventKind.CONNECTED, SessionEventKind.RECONNECTED):
                worker.poller.resume(immediate=True)
            elif event.kind is SessionEventKind.STOPPED:
                return

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def status(self) -> list[MailboxStatus]:
        return [
            MailboxStatus(
                mailbox=w.mailbox,
                state=w.session.state,
                reconnect_attempts=w.session.attempt,
                last_poll_at=w.poller.last_cycle_at,
                delivered=w.poller.total_delivered,
                undetected=w.poller.total_undetected,
                suppressed=len(w.suppression),
            )
            for w in self._workers.values()
        ]
