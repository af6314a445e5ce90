"""Abstract base class for per-provider field extractors."""

from __future__ import annotations

import re
from abc import ABC, abstractmethod
from datetime import datetime, tzinfo
from zoneinfo import ZoneInfo

import structlog

from ..models import CardProvider, UsageRecord

logger = structlog.get_logger()

# Provider-local formats seen in notification bodies, most specific first.
TIMESTAMP_FORMATS = (
    "%Y年%m月%d日 %H:%M:%S",
    "%Y年%m月%d日 %H:%M",
    "%Y年%m月%d日",
    "%Y/%m/%d %H:%M:%S",
    "%Y/%m/%d %H:%M",
    "%Y/%m/%d",
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%d %H:%M",
)

_WHITESPACE = re.compile(r"\s+")


def parse_amount(text: str | None) -> int | None:
    """``"1,500"`` -> 1500.  Full-width digits and commas are accepted.

    Returns None when *text* holds no parsable non-negative integer.
    """
    if not text:
        return None
    digits = text.replace(",", "").replace("，", "").strip()
    if not digits.isdecimal():
        return None
    return int(digits)


def parse_timestamp(text: str | None, tz: tzinfo) -> datetime | None:
    """Parse a provider-local timestamp into an aware datetime in *tz*."""
    if not text:
        return None
    cleaned = _WHITESPACE.sub(" ", text).strip()
    for fmt in TIMESTAMP_FORMATS:
        try:
            return datetime.strptime(cleaned, fmt).replace(tzinfo=tz)
        except ValueError:
            continue
    return None


def search(pattern: re.Pattern[str], text: str, group: int | str = 1) -> str | None:
    match = pattern.search(text)
    if match is None:
        return None
    value = match.group(group)
    return value.strip() if value is not None else None


class FieldExtractor(ABC):
    """Turn a provider's plain-text notification into a :class:`UsageRecord`.

    Subclasses only locate the raw field strings; :meth:`extract` applies
    the shared defaulting rules so every provider degrades the same way:
    missing text fields become their default label, an unparsable amount
    becomes 0 and an unparsable timestamp becomes "now" with
    ``low_confidence`` set.
    """

    #: Fallbacks for missing text fields.
    default_card_label: str = ""
    default_merchant_label: str = ""

    def __init__(self, timezone: str | tzinfo = "Asia/Tokyo") -> None:
        self._tz = ZoneInfo(timezone) if isinstance(timezone, str) else timezone

    @property
    @abstractmethod
    def provider(self) -> CardProvider:
        """The provider this extractor handles."""

    @abstractmethod
    def find_fields(self, text: str) -> dict[str, str | None]:
        """Return raw ``card``, ``timestamp``, ``amount`` and ``merchant`` strings.

        Synchronous and pure; a field that cannot be located is None.
        """

    def extract(self, text: str) -> UsageRecord:
        raw = self.find_fields(text)
        defaulted: list[str] = []
        log = logger.bind(provider=self.provider.value)

        card_label = raw.get("card") or None
        if card_label is None:
            card_label = self.default_card_label
            defaulted.append("card_label")

        merchant_label = raw.get("merchant") or None
        if merchant_label is None:
            merchant_label = self.default_merchant_label
            defaulted.append("merchant_label")

        amount = parse_amount(raw.get("amount"))
        if amount is None:
            amount = 0
            defaulted.append("amount_minor_units")

        used_at = parse_timestamp(raw.get("timestamp"), self._tz)
        low_confidence = used_at is None
        if used_at is None:
            log.warning("usage_timestamp_unparsable", raw_timestamp=raw.get("timestamp"))
            used_at = datetime.now(self._tz)
            defaulted.append("used_at")

        log.debug(
            "usage_fields_extracted",
            card_label=card_label,
            used_at=used_at.isoformat(),
            amount=amount,
            merchant_label=merchant_label,
            defaulted=defaulted,
        )
        return UsageRecord(
            provider_id=self.provider,
            card_label=card_label,
            used_at=used_at,
            amount_minor_units=amount,
            merchant_label=merchant_label,
            low_confidence=low_confidence,
            defaulted_fields=tuple(defaulted),
        )
