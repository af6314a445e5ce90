"""Poller: periodic unseen-message scans for one mailbox."""

from __future__ import annotations

import asyncio
import contextlib
import inspect
from collections.abc import Awaitable, Callable
from dataclasses import asdict
from datetime import datetime, timezone

import structlog

from .decoder import BodyDecoder
from .errors import MarkSeenError, NotConnectedError, TransientConnectionError
from .fetcher import MessageFetcher
from .models import ConnectionState, CycleResult, ParsedMessage, UsageRecord
from .providers import ProviderDetector
from .session import SessionManager
from .suppression import SuppressionSet

UsageCallback = Callable[[UsageRecord], Awaitable[None] | None]
UndetectedCallback = Callable[[ParsedMessage], Awaitable[None] | None]


async def _call(callback: Callable[..., object], arg: object) -> None:
    result = callback(arg)
    if inspect.isawaitable(result):
        await result


class Poller:
    """Drives unseen messages through decode, detect, extract and deliver.

    The schedule starts paused; the mailbox supervisor resumes it once the
    session is connected and pauses it again while the session reconnects.
    Cycles never overlap: a cycle requested while one is running is
    skipped.
    """

    def __init__(
        self,
        mailbox: str,
        session: SessionManager,
        fetcher: MessageFetcher,
        decoder: BodyDecoder,
        detector: ProviderDetector,
        suppression: SuppressionSet,
        on_usage: UsageCallback,
        on_undetected: UndetectedCallback | None = None,
        *,
        interval_seconds: float = 60.0,
        logger: structlog.typing.BindableLogger | None = None,
    ) -> None:
        self.mailbox = mailbox
        self._session = session
        self._fetcher = fetcher
        self._decoder = decoder
        self._detector = detector
        self._suppression = suppression
        self._on_usage = on_usage
        self._on_undetected = on_undetected
        self._interval = interval_seconds
        self._log = (logger or structlog.get_logger()).bind(mailbox=mailbox)

        self._busy = asyncio.Lock()
        self._running = asyncio.Event()
        self._wake = asyncio.Event()
        self._stopping = False
        self._task: asyncio.Task[None] | None = None

        self.last_cycle_at: datetime | None = None
        self.total_delivered = 0
        self.total_undetected = 0

    @property
    def paused(self) -> bool:
        return not self._running.is_set()

    # ------------------------------------------------------------------
    # Schedule
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Launch the schedule task (initially paused)."""
        if self._task is None:
            self._stopping = False
            self._task = asyncio.create_task(self.run_forever(), name=f"poller:{self.mailbox}")

    def pause(self) -> None:
        if self._running.is_set():
            self._log.info("poller_paused")
        self._running.clear()

    def resume(self, *, immediate: bool = True) -> None:
        """Re-enable the schedule; with *immediate*, run a cycle right away."""
        self._log.info("poller_resumed", immediate=immediate)
        self._running.set()
        if immediate:
            self._wake.set()

    async def run_forever(self) -> None:
        while not self._stopping:
            await self._running.wait()
            if self._stopping:
                break
            self._wake.clear()
            try:
                await self.run_once()
            except Exception:
                self._log.exception("poll_cycle_error")
            with contextlib.suppress(asyncio.TimeoutError):
                await asyncio.wait_for(self._wake.wait(), timeout=self._interval)

    async def stop(self, grace_seconds: float = 30.0) -> None:
        """Stop scheduling; let an in-flight cycle finish within *grace_seconds*."""
        self._stopping = True
        self._running.set()
        self._wake.set()
        task, self._task = self._task, None
        if task is None:
            return
        if self._busy.locked():
            try:
                await asyncio.wait_for(self._wait_idle(), timeout=grace_seconds)
            except asyncio.TimeoutError:
                self._log.warning("poll_cycle_cancelled", grace_seconds=grace_seconds)
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    async def _wait_idle(self) -> None:
        async with self._busy:
            pass

    # ------------------------------------------------------------------
    # One cycle
    # ------------------------------------------------------------------

    async def run_once(self) -> CycleResult:
        """Scan the mailbox once.  Returns ``ran=False`` if the cycle was skipped."""
        if self._busy.locked():
            self._log.debug("poll_cycle_skipped", reason="busy")
            return CycleResult(ran=False)
        async with self._busy:
            if self._session.state is not ConnectionState.CONNECTED:
                self._log.debug("poll_cycle_skipped", reason=self._session.state.value)
                return CycleResult(ran=False)
            result = await self._cycle()
        self.last_cycle_at = datetime.now(timezone.utc)
        self.total_delivered += result.delivered
        self.total_undetected += result.undetected
        self._log.info("poll_cycle_complete", **asdict(result))
        return result

    async def _cycle(self) -> CycleResult:
        result = CycleResult()
        evicted = self._suppression.evict_expired()
        if evicted:
            self._log.debug("suppression_evicted", count=evicted)

        try:
            identifiers = await self._fetcher.list_unseen()
        except (NotConnectedError, TransientConnectionError) as exc:
            self._log.warning("poll_cycle_aborted", stage="list", error=str(exc))
            return result
        result.listed = len(identifiers)

        for identifier in identifiers:
            if self._stopping:
                break
            try:
                if identifier in self._suppression:
                    # Listed as unseen, so the earlier STORE did not take
                    result.skipped += 1
                    await self._mark_seen(identifier, self._log.bind(uid=identifier))
                    continue
                await self._process(identifier, result)
            except (NotConnectedError, TransientConnectionError) as exc:
                self._log.warning("poll_cycle_aborted", stage="message", uid=identifier, error=str(exc))
                break
        return result

    async def _process(self, identifier: str, result: CycleResult) -> None:
        log = self._log.bind(uid=identifier)

        raw = await self._fetcher.fetch(identifier)
        if raw is None:
            result.skipped += 1
            return

        message = self._decoder.decode(raw, identifier=identifier, mailbox=self.mailbox)
        if message.decode_error is not None:
            result.decode_failures += 1
            log.warning("message_decode_failed", error=message.decode_error)

        provider = self._detector.detect(message)
        if provider is None:
            result.undetected += 1
            log.info("provider_undetected", sender=message.sender_address, subject=message.subject)
            if self._on_undetected is not None:
                try:
                    await _call(self._on_undetected, message)
                except Exception:
                    log.exception("undetected_callback_failed")
            # Consumed either way so it is not reprocessed every cycle
            self._suppression.add(identifier)
            await self._mark_seen(identifier, log)
            return

        record = self._detector.extractor_for(provider).extract(message.plain_text_body)
        record = record.model_copy(update={"message_identifier": identifier, "mailbox": self.mailbox})
        try:
            await _call(self._on_usage, record)
        except Exception:
            result.failed += 1
            log.exception("usage_consumer_failed", provider=provider.value)
            return

        self._suppression.add(identifier)
        result.delivered += 1
        log.info(
            "usage_delivered",
            provider=provider.value,
            amount=record.amount_minor_units,
            low_confidence=record.low_confidence,
        )
        await self._mark_seen(identifier, log)

    async def _mark_seen(self, identifier: str, log: structlog.typing.BindableLogger) -> None:
        try:
            await self._fetcher.mark_seen(identifier)
        except MarkSeenError as exc:
            # Stays suppressed and unconfirmed; the next listing retries the STORE
            log.error("mark_seen_failed", error=str(exc))
            return
        self._suppression.confirm_seen(identifier)
