"""Orderbook management module."""

from .book import (
    BookDepth,
    BookSide,
    MarketBook,
    OrderBookSnapshot,
    PriceLevel,
    TokenBook,
    normalize_levels,
)

__all__ = [
    "BookDepth",
    "BookSide",
    "MarketBook",
    "OrderBookSnapshot",
    "PriceLevel",
    "TokenBook",
    "normalize_levels",
]
