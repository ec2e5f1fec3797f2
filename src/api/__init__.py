"""Polymarket public API clients."""
from .clob import ClobPublicClient, ResolutionLookupError, ResolutionStatus
from .gamma import GammaClient, MarketInfo

__all__ = [
    "ClobPublicClient",
    "ResolutionLookupError",
    "ResolutionStatus",
    "GammaClient",
    "MarketInfo",
]
