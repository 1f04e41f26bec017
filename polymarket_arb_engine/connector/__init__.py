"""Polymarket connectors: collaborator protocols, live adapters and the paper exchange."""

from .auth import AuthManager
from .ctf import CTFTokenClient
from .paper import PaperExchange
from .rest_client import PolymarketRestClient
from .types import (
    BookEvent,
    BookUpdate,
    MarketFilter,
    MarketInfo,
    MarketSource,
    OnChainResult,
    OrderBookSource,
    OrderClient,
    OrderRequest,
    OrderResult,
    OrderSide,
    OrderStatus,
    OrderType,
    PositionSnapshot,
    PriceChange,
    TokenClient,
)
from .ws_client import PolymarketWebSocketClient

__all__ = [
    "AuthManager",
    "BookEvent",
    "BookUpdate",
    "CTFTokenClient",
    "MarketFilter",
    "MarketInfo",
    "MarketSource",
    "OnChainResult",
    "OrderBookSource",
    "OrderClient",
    "OrderRequest",
    "OrderResult",
    "OrderSide",
    "OrderStatus",
    "OrderType",
    "PaperExchange",
    "PolymarketRestClient",
    "PolymarketWebSocketClient",
    "PositionSnapshot",
    "PriceChange",
    "TokenClient",
]
