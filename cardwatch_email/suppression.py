"""In-memory record of message identifiers already delivered to the consumer."""

from __future__ import annotations

import time
from collections.abc import Callable


class SuppressionSet:
    """Tracks delivered identifiers for one mailbox session.

    An identifier added here is never handed to the consumer again for the
    lifetime of the process.  Entries start unconfirmed and become confirmed
    once the server accepts the ``\\Seen`` flag.  With ``retention_seconds``
    set, :meth:`evict_expired` drops confirmed entries older than the
    window; unconfirmed ones are kept, since the server still lists them.

    Owned by a single mailbox worker; not safe for concurrent use.
    """

    def __init__(
        self,
        *,
        retention_seconds: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._entries: dict[str, float] = {}
        self._unconfirmed: set[str] = set()
        self._retention_seconds = retention_seconds
        self._clock = clock

    def __contains__(self, identifier: object) -> bool:
        return identifier in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def add(self, identifier: str) -> None:
        """Record *identifier* as delivered (first recorded time wins)."""
        if identifier not in self._entries:
            self._entries[identifier] = self._clock()
            self._unconfirmed.add(identifier)

    def confirm_seen(self, identifier: str) -> None:
        """Note that the server flagged *identifier* ``\\Seen``."""
        self._unconfirmed.discard(identifier)

    def is_confirmed(self, identifier: str) -> bool:
        return identifier in self._entries and identifier not in self._unconfirmed

    def recorded_at(self, identifier: str) -> float | None:
        return self._entries.get(identifier)

    def evict_expired(self) -> int:
        """Drop confirmed entries older than the retention window.  Returns the count."""
        if self._retention_seconds is None:
            return 0
        cutoff = self._clock() - self._retention_seconds
        expired = [
            key
            for key, at in self._entries.items()
            if at < cutoff and key not in self._unconfirmed
        ]
        for key in expired:
            del self._entries[key]
        return len(expired)

    def clear(self) -> None:
        self._entries.clear()
        self._unconfirmed.clear()
