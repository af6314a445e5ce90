"""Compiled-in provider signature table.

Order matters: signatures can overlap (both providers use 利用 in
subjects), and the first match wins.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass

from ..models import CardProvider
from .base import FieldExtractor
from .mufg import MufgExtractor
from .smbc import SmbcExtractor


@dataclass(frozen=True)
class ProviderSignature:
    """How to recognise one provider's notifications and who parses them."""

    provider_id: CardProvider
    sender_domains: tuple[str, ...]
    subject_keywords: tuple[str, ...]
    body_keywords: tuple[str, ...]
    extractor_factory: Callable[[str], FieldExtractor]

    def matches_sender(self, sender_address: str) -> bool:
        """True if the address's domain is, or is a subdomain of, a listed domain."""
        _, _, domain = sender_address.lower().rpartition("@")
        if not domain:
            return False
        return any(
            domain == pattern or domain.endswith("." + pattern)
            for pattern in self.sender_domains
        )

    def matches_keywords(self, subject: str, body: str) -> bool:
        return any(k in subject for k in self.subject_keywords) and any(
            k in body for k in self.body_keywords
        )


DEFAULT_SIGNATURES: tuple[ProviderSignature, ...] = (
    ProviderSignature(
        provider_id=CardProvider.MUFG,
        sender_domains=("mufg.jp", "bk.mufg.jp"),
        subject_keywords=("UFJ", "利用"),
        body_keywords=("三菱", "UFJ", "デビット"),
        extractor_factory=MufgExtractor,
    ),
    ProviderSignature(
        provider_id=CardProvider.SMBC,
        sender_domains=("vpass.ne.jp", "smbc-card.com", "smbc.co.jp"),
        subject_keywords=("三井住友", "利用"),
        body_keywords=("三井住友", "SMBC", "クレジット"),
        extractor_factory=SmbcExtractor,
    ),
)
