"""三菱UFJ銀行 (MUFG) debit card usage notifications.

Body layout::

    カード名称　：　Ｄ　三菱ＵＦＪ－ＪＣＢデビット
    【ご利用日時(日本時間)】　2025年5月10日 15:30:00
    【ご利用金額】　1,500円
    【ご利用先】　コンビニ
"""

from __future__ import annotations

import re

from ..models import CardProvider
from .base import FieldExtractor, search

# [^\S\n] is "whitespace except newline" (includes the ideographic space).
_CARD = re.compile(r"カード名称[^\S\n]*[：:][^\S\n]*([^\n]+)")
_TIMESTAMP = re.compile(r"【ご利用日時(?:\(日本時間\)|（日本時間）)?】[^\S\n]*([\d年月日/:\- ]+)")
_AMOUNT = re.compile(r"【ご利用金額】\s*([\d,，]+)\s*円")
_MERCHANT = re.compile(r"【ご利用先】[^\S\n]*([^。\n]+)")


class MufgExtractor(FieldExtractor):
    @property
    def provider(self) -> CardProvider:
        return CardProvider.MUFG

    def find_fields(self, text: str) -> dict[str, str | None]:
        return {
            "card": search(_CARD, text),
            "timestamp": search(_TIMESTAMP, text),
            "amount": search(_AMOUNT, text),
            "merchant": search(_MERCHANT, text),
        }
