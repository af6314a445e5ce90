"""三井住友カード (SMBC) credit card usage notifications.

The usage is a single line: timestamp, merchant and amount separated by
spaces::

    ご利用日時：2025/05/10 15:30 スーパーマーケット 2,468円
"""

from __future__ import annotations

import re

from ..models import CardProvider
from .base import FieldExtractor, search

_CARD = re.compile(r"^[^\S\n]*(.+のカード)[^\S\n]*様", re.MULTILINE)
_USAGE_LINE = re.compile(r"ご利用日時[：:][^\S\n]*([^\n]*)")
_TIMESTAMP = re.compile(r"^(\d{4}/\d{1,2}/\d{1,2}(?:[^\S\n]+\d{1,2}:\d{2}(?::\d{2})?)?)")
_MERCHANT_AMOUNT = re.compile(r"^(?P<merchant>.*?)[^\S\n]*(?P<amount>[\d,，]+)[^\S\n]*円")


class SmbcExtractor(FieldExtractor):
    default_card_label = "三井住友カード"
    default_merchant_label = "不明"

    @property
    def provider(self) -> CardProvider:
        return CardProvider.SMBC

    def find_fields(self, text: str) -> dict[str, str | None]:
        fields: dict[str, str | None] = {
            "card": search(_CARD, text),
            "timestamp": None,
            "amount": None,
            "merchant": None,
        }

        line = search(_USAGE_LINE, text)
        if not line:
            return fields

        # A malformed timestamp is left in place and ends up in the merchant.
        rest = line
        timestamp = _TIMESTAMP.match(line)
        if timestamp is not None:
            fields["timestamp"] = timestamp.group(1)
            rest = line[timestamp.end():]

        usage = _MERCHANT_AMOUNT.match(rest.strip())
        if usage is not None:
            fields["merchant"] = usage.group("merchant").strip() or None
            fields["amount"] = usage.group("amount")
        return fields
