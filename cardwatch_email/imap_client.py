"""Async IMAP client wrapping stdlib imaplib with asyncio.to_thread."""

from __future__ import annotations

import asyncio
import imaplib
import re
from collections.abc import Callable
from typing import TypeVar

import structlog
from imapclient import imap_utf7

from .config import ImapConfig
from .errors import MarkSeenError, TransientConnectionError

logger = structlog.get_logger()

T = TypeVar("T")

_LIST_LINE = re.compile(rb'^\((?P<flags>[^)]*)\) (?P<delim>"(?:[^"\\]|\\.)*"|NIL) (?P<name>.*)$')


class AsyncImapClient:
    """Async-friendly IMAP client for one mailbox.

    All blocking ``imaplib`` operations are wrapped with
    ``asyncio.to_thread()``.  Socket, TLS and protocol failures surface
    as :class:`TransientConnectionError`.  The client is not safe for
    concurrent use; callers serialise access (see ``SessionManager``).
    """

    def __init__(self, config: ImapConfig) -> None:
        self._config = config
        self._conn: imaplib.IMAP4_SSL | imaplib.IMAP4 | None = None
        self._mailbox: str | None = None

    @property
    def mailbox(self) -> str | None:
        """Server path of the selected mailbox, once connected."""
        return self._mailbox

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def connect(self, mailbox: str) -> str:
        """Connect, login, resolve and select *mailbox*.  Returns the server path."""
        try:
            self._mailbox = await self._run(self._connect_sync, mailbox)
        except TransientConnectionError:
            await self.disconnect()
            raise
        logger.info(
            "imap_connected",
            host=self._config.host,
            mailbox=self._mailbox,
        )
        return self._mailbox

    def _connect_sync(self, mailbox: str) -> str:
        if self._config.use_ssl:
            self._conn = imaplib.IMAP4_SSL(
                self._config.host, self._config.port, timeout=self._config.timeout_seconds
            )
        else:
            self._conn = imaplib.IMAP4(
                self._config.host, self._config.port, timeout=self._config.timeout_seconds
            )
        self._conn.login(self._config.username, self._config.password.get_secret_value())

        status, data = self._conn.list()
        names = parse_list_response(data) if status == "OK" else []
        target = resolve_mailbox(names, mailbox) or mailbox
        if target != mailbox:
            logger.info("imap_mailbox_resolved", requested=mailbox, path=target)

        status, data = self._conn.select(quote_mailbox(target))
        if status != "OK":
            raise imaplib.IMAP4.error(f"SELECT {target} failed: {_text(data)}")
        return target

    async def disconnect(self) -> None:
        """Close mailbox and logout.  Errors are ignored; the socket is dropped."""
        if self._conn is not None:
            await asyncio.to_thread(self._disconnect_sync)
            self._conn = None
            logger.info("imap_disconnected", mailbox=self._mailbox)

    def _disconnect_sync(self) -> None:
        assert self._conn is not None
        try:
            self._conn.close()
        except (imaplib.IMAP4.error, OSError):
            pass
        try:
            self._conn.logout()
        except (imaplib.IMAP4.error, OSError):
            pass

    async def noop(self) -> None:
        """Health check; raises :class:`TransientConnectionError` on failure."""
        status, data = await self._run(self._require().noop)
        if status != "OK":
            raise TransientConnectionError(f"NOOP returned {status}: {_text(data)}", mailbox=self._mailbox)

    # ------------------------------------------------------------------
    # Message operations
    # ------------------------------------------------------------------

    async def search_unseen(self) -> list[str]:
        """UIDs of messages without ``\\Seen``, in server order."""
        status, data = await self._run(self._require().uid, "SEARCH", None, "UNSEEN")
        if status != "OK":
            raise TransientConnectionError(f"SEARCH returned {status}: {_text(data)}", mailbox=self._mailbox)
        if not data or not data[0]:
            return []
        return [uid.decode() for uid in data[0].split()]

    async def fetch(self, uid: str) -> bytes | None:
        """Full RFC 822 source for *uid*, or None if the message is gone.

        Uses ``BODY.PEEK[]`` so fetching does not set ``\\Seen``.
        """
        status, data = await self._run(self._require().uid, "FETCH", uid, "(BODY.PEEK[])")
        if status != "OK" or not data:
            return None
        for item in data:
            if isinstance(item, tuple) and len(item) >= 2:
                return item[1]
        return None

    async def store_seen(self, uid: str) -> None:
        """Set ``\\Seen`` on *uid*; raises :class:`MarkSeenError` if refused."""
        try:
            status, data = await self._run(
                self._require().uid, "STORE", uid, "+FLAGS", "(\\Seen)", protocol_errors=False
            )
        except imaplib.IMAP4.error as exc:
            raise MarkSeenError(uid, str(exc)) from exc
        if status != "OK":
            raise MarkSeenError(uid, f"{status} {_text(data)}")

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _require(self) -> imaplib.IMAP4:
        if self._conn is None:
            raise TransientConnectionError("IMAP connection is closed", mailbox=self._mailbox)
        return self._conn

    async def _run(self, fn: Callable[..., T], *args: object, protocol_errors: bool = True) -> T:
        """Run *fn* in a thread, mapping connection failures.

        With ``protocol_errors=False`` only ``abort`` and socket errors are
        mapped; other ``IMAP4.error`` (BAD responses) propagate unchanged.
        """
        try:
            return await asyncio.to_thread(fn, *args)
        except imaplib.IMAP4.abort as exc:
            raise TransientConnectionError(f"connection aborted: {exc}", mailbox=self._mailbox) from exc
        except imaplib.IMAP4.error as exc:
            if not protocol_errors:
                raise
            raise TransientConnectionError(str(exc), mailbox=self._mailbox) from exc
        except OSError as exc:
            raise TransientConnectionError(f"socket error: {exc}", mailbox=self._mailbox) from exc


# ----------------------------------------------------------------------
# Mailbox names
# ----------------------------------------------------------------------


def quote_mailbox(name: str) -> str:
    """Modified UTF-7 encode and quote a mailbox name for SELECT."""
    encoded = imap_utf7.encode(name).decode("ascii")
    return '"' + encoded.replace("\\", "\\\\").replace('"', '\\"') + '"'


def parse_list_response(data: list) -> list[tuple[str, str | None]]:
    """Turn LIST response lines into ``(decoded_path, delimiter)`` pairs."""
    names: list[tuple[str, str | None]] = []
    for item in data:
        if item is None:
            continue
        if isinstance(item, tuple):
            # Literal form: (b'(\\HasNoChildren) "/" {12}', b'literal name')
            line, literal = item[0], item[1]
            match = _LIST_LINE.match(line)
            raw_name = literal
        else:
            match = _LIST_LINE.match(item)
            raw_name = match.group("name") if match else None
        if match is None or raw_name is None:
            continue

        delim_raw = match.group("delim")
        delim = None if delim_raw == b"NIL" else _unquote(delim_raw).decode()
        names.append((imap_utf7.decode(_unquote(raw_name)), delim))
    return names


def resolve_mailbox(names: list[tuple[str, str | None]], requested: str) -> str | None:
    """Find the server path for *requested*.

    Exact match on the full path or the leaf name wins; otherwise the first
    path containing *requested* case-insensitively.  None if nothing fits.
    """
    for path, delim in names:
        leaf = path.rsplit(delim, 1)[-1] if delim else path
        if requested in (path, leaf):
            return path
    needle = requested.lower()
    for path, _ in names:
        if needle in path.lower():
            return path
    return None


def _unquote(value: bytes) -> bytes:
    value = value.strip()
    if len(value) >= 2 and value[:1] == b'"' and value[-1:] == b'"':
        return value[1:-1].replace(b'\\"', b'"').replace(b"\\\\", b"\\")
    return value


def _text(data: object) -> str:
    if isinstance(data, list) and data and isinstance(data[0], bytes):
        return data[0].decode(errors="replace")
    return str(data)
