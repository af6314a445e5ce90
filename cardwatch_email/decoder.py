"""BodyDecoder: raw RFC 822 bytes to a :class:`ParsedMessage` with plain text.

Card notifications arrive base64 or quoted-printable encoded, in UTF-8,
ISO-2022-JP or Shift_JIS, and some providers send HTML only.  The decoder
reverses the transfer encoding, converts to ``str`` and flattens HTML,
keeping line breaks because the extractors match line by line.
"""

from __future__ import annotations

import email
import email.policy
import email.utils
import re
from datetime import datetime, timezone
from email.message import Message

import structlog
from bs4 import BeautifulSoup

from .models import ParsedMessage

logger = structlog.get_logger()

# Tried in order when the declared charset is missing, unknown or wrong.
_FALLBACK_CHARSETS = ("utf-8", "iso-2022-jp", "cp932", "euc-jp")

# Elements after which a line break is inserted when flattening HTML.
_BLOCK_TAGS = (
    "p", "div", "tr", "li", "table", "h1", "h2", "h3", "h4", "h5", "h6",
    "blockquote", "pre", "section", "article", "header", "footer",
)

_TRAILING_SPACE = re.compile(r"[ \t\u00a0]+$", re.MULTILINE)
_BLANK_RUNS = re.compile(r"\n{3,}")


class BodyDecoder:
    """Stateless decoder.  Never raises on malformed input."""

    def decode(self, raw_bytes: bytes, *, identifier: str = "", mailbox: str = "") -> ParsedMessage:
        try:
            msg = email.message_from_bytes(raw_bytes, policy=email.policy.default)
            subject = str(msg.get("Subject", "") or "")
            sender_address = _sender_address(msg.get("From", ""))
            received_at = _parse_date(msg.get("Date"))
        except Exception as exc:
            logger.warning("message_headers_undecodable", uid=identifier, error=str(exc))
            return ParsedMessage(
                identifier=identifier,
                mailbox=mailbox,
                subject="",
                sender_address="",
                plain_text_body="",
                received_at=datetime.now(timezone.utc),
                decode_error=str(exc),
            )

        decode_error: str | None = None
        try:
            body = self._extract_body(msg)
        except Exception as exc:
            logger.warning("message_body_undecodable", uid=identifier, error=str(exc))
            body = ""
            decode_error = str(exc)

        return ParsedMessage(
            identifier=identifier,
            mailbox=mailbox,
            subject=subject,
            sender_address=sender_address,
            plain_text_body=body,
            received_at=received_at,
            decode_error=decode_error,
        )

    def _extract_body(self, msg: Message) -> str:
        """Pick the body part and return it as normalised plain text.

        HTML wins over plain text when both exist.
        """
        body_text: str | None = None
        body_html: str | None = None

        for part in msg.walk():
            if part.get_content_maintype() == "multipart":
                continue
            if "attachment" in str(part.get("Content-Disposition", "")):
                continue

            content_type = part.get_content_type()
            if content_type == "text/plain" and body_text is None:
                body_text = _part_text(part)
            elif content_type == "text/html" and body_html is None:
                body_html = _part_text(part)

        if body_html is not None:
            return html_to_text(body_html)
        if body_text is not None:
            return normalize_text(body_text)
        return ""


def html_to_text(html: str) -> str:
    """Strip markup, turning ``<br>`` and block ends into newlines."""
    soup = BeautifulSoup(html, "html.parser")
    for tag in soup(["script", "style", "head"]):
        tag.decompose()
    for br in soup.find_all("br"):
        br.replace_with("\n")
    for block in soup.find_all(_BLOCK_TAGS):
        block.append("\n")
    return normalize_text(soup.get_text())


def normalize_text(text: str) -> str:
    text = text.replace("\r\n", "\n").replace("\r", "\n").replace("\u00a0", " ")
    text = _TRAILING_SPACE.sub("", text)
    text = _BLANK_RUNS.sub("\n\n", text)
    return text.strip("\n")


def _part_text(part: Message) -> str:
    """Decode one leaf part, falling back through common Japanese charsets.

    ``get_content`` decodes with ``errors="replace"``, so a mislabelled
    part shows up as U+FFFD rather than an exception.
    """
    declared = part.get_content_charset()
    if declared:
        try:
            content = part.get_content()
        except LookupError:
            content = None
        if isinstance(content, str) and "\ufffd" not in content:
            return content

    payload = part.get_payload(decode=True) or b""
    fallbacks = list(_FALLBACK_CHARSETS)
    if b"\x1b$" in payload:
        # JIS escape sequences are plain ASCII and would pass as UTF-8
        fallbacks.insert(0, "iso-2022-jp")
    candidates = list(dict.fromkeys(([declared] if declared else []) + fallbacks))
    for charset in candidates:
        try:
            return payload.decode(charset)
        except (LookupError, UnicodeDecodeError):
            continue
    return payload.decode("utf-8", errors="replace")


def _sender_address(header_value: object) -> str:
    _, addr = email.utils.parseaddr(str(header_value or ""))
    return addr.lower()


def _parse_date(header_value: object) -> datetime:
    if header_value:
        try:
            return email.utils.parsedate_to_datetime(str(header_value))
        except (TypeError, ValueError):
            pass
    return datetime.now(timezone.utc)
