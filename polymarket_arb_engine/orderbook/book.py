"""
In-memory orderbook management with delta updates.
Maintains synchronized YES/NO books for complement arbitrage detection.

Raw feeds do not agree on level ordering (the CLOB sends bids worst-first),
so every payload is normalized on ingestion: bids best-first descending,
asks best-first ascending, one entry per price.
"""

from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any, Iterable, Optional

from sortedcontainers import SortedDict

from ..errors import InvalidInputError


@dataclass
class PriceLevel:
    """Single price level with size."""
    price: Decimal
    size: Decimal

    def __post_init__(self):
        if not isinstance(self.price, Decimal):
            self.price = Decimal(str(self.price))
        if not isinstance(self.size, Decimal):
            self.size = Decimal(str(self.size))


def _level_tuple(raw: Any) -> tuple[Decimal, Decimal]:
    """Accept (price, size) pairs, PriceLevels or {"price", "size"} dicts."""
    try:
        if isinstance(raw, PriceLevel):
            return raw.price, raw.size
        if isinstance(raw, dict):
            return Decimal(str(raw["price"])), Decimal(str(raw["size"]))
        price, size = raw
        return Decimal(str(price)), Decimal(str(size))
    except (KeyError, TypeError, ValueError, InvalidOperation) as e:
        raise InvalidInputError(f"Malformed book level: {raw!r}") from e


def normalize_levels(raw_levels: Iterable[Any], is_bid: bool) -> list[PriceLevel]:
    """
    Normalize one side of a raw book payload.

    Sizes at a repeated price are summed, empty levels dropped, and the result
    ordered best-first: descending for bids, ascending for asks.
    """
    aggregated: dict[Decimal, Decimal] = {}
    for raw in raw_levels or []:
        price, size = _level_tuple(raw)
        if size <= 0:
            continue
        aggregated[price] = aggregated.get(price, Decimal("0")) + size

    ordered = sorted(aggregated.items(), key=lambda kv: kv[0], reverse=is_bid)
    return [PriceLevel(price, size) for price, size in ordered]


@dataclass
class BookDepth:
    """Size resting at the best level of each of the four book sides."""
    bid_yes: Optional[Decimal] = None
    ask_yes: Optional[Decimal] = None
    bid_no: Optional[Decimal] = None
    ask_no: Optional[Decimal] = None


@dataclass
class OrderBookSnapshot:
    """Normalized full-book snapshot for one token."""
    token_id: str
    bids: list[PriceLevel]
    asks: list[PriceLevel]
    timestamp: int = 0
    hash: str = ""

    @classmethod
    def from_raw(
        cls,
        token_id: str,
        bids: Iterable[Any],
        asks: Iterable[Any],
        timestamp: int = 0,
        book_hash: str = "",
    ) -> "OrderBookSnapshot":
        """Build a snapshot from a raw payload in any level order."""
        return cls(
            token_id=token_id,
            bids=normalize_levels(bids, is_bid=True),
            asks=normalize_levels(asks, is_bid=False),
            timestamp=timestamp,
            hash=book_hash,
        )

    @property
    def best_bid(self) -> Optional[PriceLevel]:
        return self.bids[0] if self.bids else None

    @property
    def best_ask(self) -> Optional[PriceLevel]:
        return self.asks[0] if self.asks else None


@dataclass
class BookSide:
    """One side of an orderbook (bids or asks)."""
    is_bid: bool
    levels: SortedDict = field(init=False)

    def __post_init__(self):
        # Bids sorted descending (highest first), asks ascending (lowest first)
        if self.is_bid:
            self.levels = SortedDict(lambda x: -x)
        else:
            self.levels = SortedDict()

    def update(self, price: Decimal, size: Decimal) -> None:
        """Update a price level. Size of 0 removes the level."""
        if size <= 0:
            self.levels.pop(price, None)
        else:
            self.levels[price] = size

    def set_snapshot(self, levels: list[PriceLevel]) -> None:
        """Replace all levels with a snapshot."""
        self.levels.clear()
        for level in levels:
            if level.size > 0:
                self.levels[level.price] = level.size

    @property
    def best(self) -> Optional[PriceLevel]:
        """Get best price level."""
        if not self.levels:
            return None
        price = self.levels.keys()[0]
        return PriceLevel(price, self.levels[price])

    @property
    def best_price(self) -> Optional[Decimal]:
        if not self.levels:
            return None
        return self.levels.keys()[0]

    @property
    def best_size(self) -> Optional[Decimal]:
        if not self.levels:
            return None
        return self.levels[self.levels.keys()[0]]

    def __len__(self) -> int:
        return len(self.levels)


@dataclass
class TokenBook:
    """Orderbook for a single token (YES or NO)."""
    token_id: str
    bids: BookSide = field(default_factory=lambda: BookSide(is_bid=True))
    asks: BookSide = field(default_factory=lambda: BookSide(is_bid=False))
    hash: str = ""
    has_snapshot: bool = False

    def update_level(self, side: str, price: Decimal, size: Decimal) -> None:
        """Update a single price level. BUY updates bids, SELL updates asks."""
        if side.upper() == "BUY":
            self.bids.update(price, size)
        else:
            self.asks.update(price, size)

    def set_snapshot(self, snapshot: OrderBookSnapshot) -> None:
        """Set full book snapshot."""
        self.bids.set_snapshot(snapshot.bids)
        self.asks.set_snapshot(snapshot.asks)
        self.hash = snapshot.hash
        self.has_snapshot = True

    @property
    def best_bid(self) -> Optional[Decimal]:
        return self.bids.best_price

    @property
    def best_ask(self) -> Optional[Decimal]:
        return self.asks.best_price


@dataclass
class MarketBook:
    """
    Combined YES/NO orderbook for a binary market.
    Tracks both sides for complement arbitrage detection.
    """
    condition_id: str
    yes_token_id: str
    no_token_id: str
    yes_book: TokenBook = field(default_factory=lambda: TokenBook(""))
    no_book: TokenBook = field(default_factory=lambda: TokenBook(""))

    def __post_init__(self):
        self.yes_book = TokenBook(self.yes_token_id)
        self.no_book = TokenBook(self.no_token_id)

    def _book_for(self, token_id: str) -> Optional[TokenBook]:
        if token_id == self.yes_token_id:
            return self.yes_book
        if token_id == self.no_token_id:
            return self.no_book
        return None

    def apply_snapshot(self, snapshot: OrderBookSnapshot) -> bool:
        """Apply a full snapshot. Returns False for foreign tokens."""
        book = self._book_for(snapshot.token_id)
        if book is None:
            return False
        book.set_snapshot(snapshot)
        return True

    def apply_price_change(
        self,
        token_id: str,
        side: str,
        price: Decimal,
        size: Decimal,
    ) -> bool:
        """Apply a single level delta. Returns False for foreign tokens."""
        book = self._book_for(token_id)
        if book is None:
            return False
        book.update_level(side, price, size)
        return True

    def best_prices(self) -> tuple[Optional[Decimal], Optional[Decimal], Optional[Decimal], Optional[Decimal]]:
        """(bid_yes, ask_yes, bid_no, ask_no)"""
        return (
            self.yes_book.best_bid,
            self.yes_book.best_ask,
            self.no_book.best_bid,
            self.no_book.best_ask,
        )

    def best_depth(self) -> BookDepth:
        return BookDepth(
            bid_yes=self.yes_book.bids.best_size,
            ask_yes=self.yes_book.asks.best_size,
            bid_no=self.no_book.bids.best_size,
            ask_no=self.no_book.asks.best_size,
        )

    @property
    def is_ready(self) -> bool:
        """Both books have received a full snapshot."""
        return self.yes_book.has_snapshot and self.no_book.has_snapshot
