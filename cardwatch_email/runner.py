"""Process runner: logging, signals, health server and every mailbox worker."""

from __future__ import annotations

import asyncio
import signal

import structlog
import uvicorn

from .config import IngestConfig
from .health import create_health_app
from .logging import setup_logging
from .models import ParsedMessage, UsageRecord
from .poller import UndetectedCallback, UsageCallback
from .service import IngestionService

logger = structlog.get_logger()


def install_signal_handlers(shutdown_event: asyncio.Event) -> None:
    """Set *shutdown_event* on SIGTERM or SIGINT.

    Must be called from the running event loop.  Repeated signals are
    harmless; the runner stops the mailboxes once.
    """
    loop = asyncio.get_running_loop()

    def _handle(sig: signal.Signals) -> None:
        logger.info("shutdown_signal_received", signal=sig.name)
        shutdown_event.set()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, _handle, sig)


def log_usage(record: UsageRecord) -> None:
    """Default consumer: emit the record as a ``usage_recorded`` log event."""
    logger.info("usage_recorded", **record.model_dump(mode="json"))


def log_undetected(message: ParsedMessage) -> None:
    logger.warning(
        "usage_provider_undetected",
        mailbox=message.mailbox,
        uid=message.identifier,
        sender=message.sender_address,
        subject=message.subject,
    )


async def _run_health_server(service: IngestionService, shutdown_event: asyncio.Event) -> None:
    app = create_health_app(service)
    config = uvicorn.Config(
        app,
        host="0.0.0.0",
        port=service.config.health_port,
        log_level="warning",
    )
    server = uvicorn.Server(config)

    serve_task = asyncio.create_task(server.serve())
    await shutdown_event.wait()
    server.should_exit = True
    await serve_task


async def run(
    config: IngestConfig,
    *,
    on_usage: UsageCallback = log_usage,
    on_undetected: UndetectedCallback | None = log_undetected,
    service: IngestionService | None = None,
) -> None:
    """Start every configured mailbox and serve health probes until signalled."""
    setup_logging(json=config.log_json, level=config.log_level)
    shutdown_event = asyncio.Event()
    install_signal_handlers(shutdown_event)

    service = service or IngestionService(config)
    logger.info("service_starting", service=config.name, mailboxes=config.mailboxes)

    try:
        await service.start_all(on_usage, on_undetected)
        async with asyncio.TaskGroup() as tg:
            tg.create_task(_run_health_server(service, shutdown_event))
    except* Exception:
        logger.exception("service_task_group_error", service=config.name)
    finally:
        await service.stop()
        logger.info("service_stopped", service=config.name)
