"""Provider detection and per-provider field extraction."""

from .base import FieldExtractor, parse_amount, parse_timestamp
from .detector import ProviderDetector
from .mufg import MufgExtractor
from .signatures import DEFAULT_SIGNATURES, ProviderSignature
from .smbc import SmbcExtractor

__all__ = [
    "DEFAULT_SIGNATURES",
    "FieldExtractor",
    "MufgExtractor",
    "ProviderDetector",
    "ProviderSignature",
    "SmbcExtractor",
    "parse_amount",
    "parse_timestamp",
]
