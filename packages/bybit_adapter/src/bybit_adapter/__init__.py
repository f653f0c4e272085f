"""Bybit-specific adapter for the trade ledger sync.

This package provides:
- Normalization of Bybit execution, order and transaction records to RawEvents
- Paginated REST client for account history and venue-reported P&L
- Per-key rate limiting shared across fetch threads
"""

from bybit_adapter.normalizer import BybitNormalizer, NormalizationResult, instrument_key
from bybit_adapter.rest_client import BybitApiError, BybitRestClient
from bybit_adapter.rate_limiter import RateLimiter, RateLimitConfig

__all__ = [
    "BybitNormalizer",
    "NormalizationResult",
    "instrument_key",
    "BybitApiError",
    "BybitRestClient",
    "RateLimiter",
    "RateLimitConfig",
]
