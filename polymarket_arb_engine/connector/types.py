"""
Collaborator contracts for the arbitrage core.

The engine only talks to these protocols. PolymarketRestClient and
PolymarketWebSocketClient implement the market, book and order side against
the live API; PaperExchange implements all of them in memory.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import AsyncIterator, Optional, Protocol, Union, runtime_checkable

from ..orderbook import OrderBookSnapshot


class OrderSide(Enum):
    BUY = "BUY"
    SELL = "SELL"


class OrderType(Enum):
    """GTC rests; FOK fills fully or not at all; FAK is immediate-or-cancel."""
    GTC = "GTC"
    FOK = "FOK"
    FAK = "FAK"


class OrderStatus(Enum):
    FILLED = "filled"
    PARTIAL = "partial"
    REJECTED = "rejected"
    CANCELLED = "cancelled"
    OPEN = "open"


@dataclass
class MarketFilter:
    """Universe filter passed to the metadata source."""
    min_volume_24h: Decimal = Decimal("0")
    limit: int = 100
    active_only: bool = True


@dataclass
class MarketInfo:
    """Market metadata as returned by the metadata source."""
    condition_id: str
    yes_token_id: str
    no_token_id: str
    question: str = ""
    volume_24h: Decimal = Decimal("0")
    active: bool = True
    closed: bool = False
    resolved: bool = False
    tick_size: str = "0.01"
    neg_risk: bool = False

    @property
    def token_ids(self) -> list[str]:
        return [self.yes_token_id, self.no_token_id]


@dataclass
class OrderRequest:
    """A single order leg."""
    token_id: str
    side: OrderSide
    price: Decimal
    size: Decimal
    order_type: OrderType = OrderType.FOK
    tick_size: str = "0.01"
    neg_risk: bool = False


@dataclass
class OrderResult:
    """What came back from the order client."""
    order_id: str
    status: OrderStatus
    filled_size: Decimal = Decimal("0")
    avg_price: Optional[Decimal] = None
    error: Optional[str] = None

    @property
    def is_filled(self) -> bool:
        return self.status == OrderStatus.FILLED


@dataclass
class PositionSnapshot:
    """
    Balances relevant to one market. Read fresh for every decision.
    """
    usdc_balance: Decimal
    yes_tokens: Decimal
    no_tokens: Decimal
    condition_id: str = ""

    @property
    def paired_tokens(self) -> Decimal:
        """YES/NO pairs that could be merged into USDC at par."""
        return min(self.yes_tokens, self.no_tokens)

    @property
    def imbalance(self) -> Decimal:
        return abs(self.yes_tokens - self.no_tokens)

    @property
    def total_value(self) -> Decimal:
        return self.usdc_balance + self.paired_tokens

    @property
    def usdc_ratio(self) -> Optional[Decimal]:
        """USDC share of capital, None when there is no capital at all."""
        total = self.total_value
        if total <= 0:
            return None
        return self.usdc_balance / total

    @property
    def is_empty(self) -> bool:
        return self.yes_tokens <= 0 and self.no_tokens <= 0


@dataclass
class BookUpdate:
    """Full book snapshot event, already normalized."""
    snapshot: OrderBookSnapshot
    market: str = ""

    @property
    def asset_id(self) -> str:
        return self.snapshot.token_id


@dataclass
class PriceChange:
    """Single level delta. side BUY touches bids, SELL touches asks."""
    asset_id: str
    price: Decimal
    size: Decimal
    side: str
    market: str = ""
    timestamp: int = 0


BookEvent = Union[BookUpdate, PriceChange]


@dataclass
class OnChainResult:
    """Amount moved by a split, merge or redeem."""
    operation: str
    amount: Decimal
    tx_hash: Optional[str] = None
    details: dict = field(default_factory=dict)


@runtime_checkable
class MarketSource(Protocol):
    """Market metadata."""

    async def list_markets(self, market_filter: MarketFilter) -> list[MarketInfo]:
        ...

    async def get_market(self, condition_id: str) -> MarketInfo:
        ...


@runtime_checkable
class OrderBookSource(Protocol):
    """Book snapshots and the delta stream, both normalized before delivery."""

    async def get_order_book(self, token_id: str) -> OrderBookSnapshot:
        ...

    def stream(self, token_ids: list[str]) -> AsyncIterator[BookEvent]:
        ...


@runtime_checkable
class OrderClient(Protocol):
    """Signs and submits orders."""

    async def place_order(self, request: OrderRequest) -> OrderResult:
        ...


@runtime_checkable
class TokenClient(Protocol):
    """Conditional token operations and balances."""

    async def split(self, condition_id: str, amount: Decimal) -> OnChainResult:
        ...

    async def merge(self, condition_id: str, token_ids: list[str], amount: Decimal) -> OnChainResult:
        ...

    async def redeem(self, condition_id: str, token_ids: list[str]) -> OnChainResult:
        ...

    async def get_balances(self, market: MarketInfo) -> PositionSnapshot:
        ...
