"""ProviderDetector: classify a decoded message by card provider."""

from __future__ import annotations

from collections.abc import Sequence
from datetime import tzinfo

import structlog

from ..models import CardProvider, ParsedMessage
from .base import FieldExtractor
from .signatures import DEFAULT_SIGNATURES, ProviderSignature

logger = structlog.get_logger()


class ProviderDetector:
    """Walks the signature table in priority order.

    A signature matches when the sender domain matches, or when both the
    subject and the body contain one of its keywords.  Extractors are
    built once per detector and shared by every message it classifies.
    """

    def __init__(
        self,
        signatures: Sequence[ProviderSignature] = DEFAULT_SIGNATURES,
        *,
        timezone: str | tzinfo = "Asia/Tokyo",
    ) -> None:
        self._signatures = tuple(signatures)
        self._extractors: dict[CardProvider, FieldExtractor] = {
            sig.provider_id: sig.extractor_factory(timezone) for sig in self._signatures
        }

    @property
    def supported_providers(self) -> list[CardProvider]:
        return [sig.provider_id for sig in self._signatures]

    def detect(self, message: ParsedMessage) -> CardProvider | None:
        """Return the first matching provider, or None if nothing matches."""
        for sig in self._signatures:
            from_match = sig.matches_sender(message.sender_address)
            keyword_match = sig.matches_keywords(message.subject, message.plain_text_body)
            if from_match or keyword_match:
                logger.debug(
                    "provider_detected",
                    provider=sig.provider_id.value,
                    uid=message.identifier,
                    from_match=from_match,
                    keyword_match=keyword_match,
                )
                return sig.provider_id
        return None

    def extractor_for(self, provider: CardProvider) -> FieldExtractor:
        return self._extractors[provider]
