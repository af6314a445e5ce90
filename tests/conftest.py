"""Shared test fixtures for the cardwatch_email test suite."""

from __future__ import annotations

from email.message import EmailMessage
from unittest.mock import AsyncMock

import pytest

from cardwatch_email.config import (
    BackoffConfig,
    ImapConfig,
    IngestConfig,
    PollerConfig,
    RetryConfig,
)
from cardwatch_email.imap_client import AsyncImapClient


@pytest.fixture
def imap_config() -> ImapConfig:
    return ImapConfig(
        host="imap.test.com",
        port=993,
        use_ssl=True,
        username="testuser",
        password="testpass",
    )


@pytest.fixture
def retry_config() -> RetryConfig:
    return RetryConfig(
        max_attempts=3,
        initial_wait_seconds=0,
        max_wait_seconds=0,
        multiplier=2.0,
    )


@pytest.fixture
def ingest_config(imap_config: ImapConfig, retry_config: RetryConfig) -> IngestConfig:
    return IngestConfig(
        name="cardwatch-test",
        mailboxes=["三井住友カード"],
        health_port=18080,
        imap=imap_config,
        backoff=BackoffConfig(base_ms=10, cap_ms=40),
        poller=PollerConfig(
            interval_seconds=3600,
            keepalive_interval_seconds=3600,
            shutdown_grace_seconds=1,
        ),
        retry=retry_config,
    )


# ------------------------------------------------------------------
# Fake IMAP clients
# ------------------------------------------------------------------


def make_client(
    *,
    connect_error: Exception | None = None,
    unseen: list[str] | None = None,
    messages: dict[str, bytes] | None = None,
) -> AsyncMock:
    """An ``AsyncImapClient`` stand-in with programmed responses."""
    client = AsyncMock(spec=AsyncImapClient)
    client.connect.side_effect = connect_error
    client.search_unseen.return_value = list(unseen or [])
    stored = dict(messages or {})
    client.fetch.side_effect = lambda uid: stored.get(uid)
    return client


class ClientFactory:
    """Hands out programmed clients in order; extras connect cleanly."""

    def __init__(self, *clients: AsyncMock) -> None:
        self._pending = list(clients)
        self.created: list[AsyncMock] = []

    def __call__(self) -> AsyncMock:
        client = self._pending.pop(0) if self._pending else make_client()
        self.created.append(client)
        return client


# ------------------------------------------------------------------
# Sample EML builders
# ------------------------------------------------------------------

MUFG_BODY = (
    "カード名称　：　Ｄ　三菱ＵＦＪ－ＪＣＢデビット\n"
    "デビットカード取引確認メール\n"
    "\n"
    "【ご利用日時(日本時間)】　2025年5月10日 15:30:00\n"
    "【ご利用金額】　1,500円\n"
    "【ご利用先】　コンビニ\n"
    "【カード番号末尾4桁】 1234"
)

SMBC_BODY = (
    "三井住友カード 様\n"
    "\n"
    "三井住友カードの利用のお知らせ\n"
    "ご利用日時：2025/05/10 15:30 スーパーマーケット 2,468円"
)


def _build_plain_email(
    *,
    subject: str = "Test Subject",
    from_addr: str = "sender@example.com",
    to_addr: str = "recipient@example.com",
    body: str = "Hello, World!",
    charset: str = "utf-8",
    cte: str | None = None,
) -> bytes:
    """Build a single-part text/plain email as raw bytes."""
    msg = EmailMessage()
    msg["Subject"] = subject
    msg["From"] = from_addr
    msg["To"] = to_addr
    msg["Message-ID"] = "<test-001@example.com>"
    msg["Date"] = "Sat, 10 May 2025 15:31:00 +0900"
    msg.set_content(body, charset=charset, cte=cte)
    return msg.as_bytes()


def _build_html_email(*, body_html: str, from_addr: str = "sender@example.com") -> bytes:
    msg = EmailMessage()
    msg["Subject"] = "HTML Email"
    msg["From"] = from_addr
    msg["To"] = "recipient@example.com"
    msg["Date"] = "Sat, 10 May 2025 15:31:00 +0900"
    msg.set_content(body_html, subtype="html")
    return msg.as_bytes()


def _build_alternative_email(*, body_text: str, body_html: str) -> bytes:
    msg = EmailMessage()
    msg["Subject"] = "Multipart Email"
    msg["From"] = "sender@example.com"
    msg["To"] = "recipient@example.com"
    msg["Date"] = "Sat, 10 May 2025 15:31:00 +0900"
    msg.set_content(body_text)
    msg.add_alternative(body_html, subtype="html")
    msg.add_attachment(b"%PDF-1.4 fake", maintype="application", subtype="pdf", filename="a.pdf")
    return msg.as_bytes()


def build_mufg_email() -> bytes:
    return _build_plain_email(
        subject="【三菱UFJ銀行】デビットカードご利用のお知らせ",
        from_addr="三菱UFJ銀行 <debit@bk.mufg.jp>",
        body=MUFG_BODY,
    )


def build_smbc_email() -> bytes:
    return _build_plain_email(
        subject="ご利用のお知らせ【三井住友カード】",
        from_addr="三井住友カード <statement@vpass.ne.jp>",
        body=SMBC_BODY,
    )


def build_unknown_email() -> bytes:
    return _build_plain_email(
        subject="Weekly newsletter",
        from_addr="news@example.org",
        body="Nothing to see here.",
    )


@pytest.fixture
def mufg_eml_bytes() -> bytes:
    return build_mufg_email()


@pytest.fixture
def smbc_eml_bytes() -> bytes:
    return build_smbc_email()


@pytest.fixture
def unknown_eml_bytes() -> bytes:
    return build_unknown_email()
