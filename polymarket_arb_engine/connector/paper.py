"""
Paper exchange.

In-memory implementation of every collaborator protocol (markets, books,
orders, conditional tokens) for dry runs and tests. Orders fill against the
stored books, including complement liquidity the way the CLOB matches a YES
buy against a NO bid, but never consume it.
"""

import asyncio
import time
import uuid
from dataclasses import dataclass, field
from decimal import Decimal
from typing import AsyncIterator, Optional

from ..errors import OnChainError, TransientFetchError
from ..orderbook import OrderBookSnapshot, PriceLevel
from .types import (
    BookEvent,
    BookUpdate,
    MarketFilter,
    MarketInfo,
    OnChainResult,
    OrderRequest,
    OrderResult,
    OrderSide,
    OrderStatus,
    OrderType,
    PositionSnapshot,
    PriceChange,
)

ONE = Decimal("1")
ZERO = Decimal("0")

_CLOSE = object()


@dataclass
class PaperOrder:
    """An order the paper exchange has seen, with what it returned."""
    request: OrderRequest
    result: OrderResult
    timestamp: float = field(default_factory=time.time)


class PaperExchange:
    """
    Simulated Polymarket for one wallet.

    Features:
    - Books set directly, pushed to open streams as snapshots or deltas
    - FOK / FAK / GTC fills against direct and mirrored liquidity
    - Per-token fill ratio and rejection hooks for partial-fill scenarios
    - Split, merge and redeem moving USDC and tokens at par
    - Injected failures per operation name
    """

    def __init__(
        self,
        usdc_balance: Decimal = ZERO,
        latency_ms: float = 0.0,
    ):
        self.latency_ms = latency_ms

        self.usdc_balance = Decimal(str(usdc_balance))
        self._tokens: dict[str, Decimal] = {}
        self._markets: dict[str, MarketInfo] = {}
        self._complements: dict[str, str] = {}
        self._books: dict[str, OrderBookSnapshot] = {}
        self._winners: dict[str, str] = {}
        self._subscribers: list[asyncio.Queue] = []

        self.orders: list[PaperOrder] = []
        self.calls: list[tuple] = []
        self.fill_ratios: dict[str, Decimal] = {}
        self.rejections: dict[str, str] = {}
        self.failures: dict[str, Exception] = {}

    # === Setup ===

    def add_market(self, market: MarketInfo) -> None:
        self._markets[market.condition_id] = market
        self._complements[market.yes_token_id] = market.no_token_id
        self._complements[market.no_token_id] = market.yes_token_id

    def resolve_market(self, condition_id: str, winning_token_id: str) -> None:
        market = self._markets[condition_id]
        market.resolved = True
        market.closed = True
        market.active = False
        self._winners[condition_id] = winning_token_id

    def set_book(self, token_id: str, bids: list, asks: list) -> OrderBookSnapshot:
        """Replace a token's book and push it to open streams as a snapshot."""
        snapshot = OrderBookSnapshot.from_raw(
            token_id,
            bids,
            asks,
            timestamp=int(time.time() * 1000),
        )
        self._books[token_id] = snapshot
        self._publish(BookUpdate(snapshot=snapshot))
        return snapshot

    def push_price_change(self, token_id: str, side: str, price, size) -> None:
        """Apply a single-level delta and push it to open streams."""
        price = Decimal(str(price))
        size = Decimal(str(size))
        current = self._books.get(token_id) or OrderBookSnapshot(token_id=token_id, bids=[], asks=[])
        is_bid = side.upper() == "BUY"
        levels = {level.price: level.size for level in (current.bids if is_bid else current.asks)}
        if size <= 0:
            levels.pop(price, None)
        else:
            levels[price] = size
        raw = list(levels.items())
        self._books[token_id] = OrderBookSnapshot.from_raw(
            token_id,
            raw if is_bid else current.bids,
            current.asks if is_bid else raw,
            timestamp=int(time.time() * 1000),
        )
        self._publish(PriceChange(asset_id=token_id, price=price, size=size, side=side.upper()))

    def set_balances(self, usdc: Optional[Decimal] = None, **tokens) -> None:
        if usdc is not None:
            self.usdc_balance = Decimal(str(usdc))
        for token_id, amount in tokens.items():
            self._tokens[token_id] = Decimal(str(amount))

    def token_balance(self, token_id: str) -> Decimal:
        return self._tokens.get(token_id, ZERO)

    def fail(self, operation: str, error: Exception) -> None:
        """Make every later call to `operation` raise `error`."""
        self.failures[operation] = error

    def close_streams(self) -> None:
        """End every open stream, as a dropped connection would."""
        for queue in list(self._subscribers):
            queue.put_nowait(_CLOSE)

    def _check_failure(self, operation: str) -> None:
        error = self.failures.get(operation)
        if error is not None:
            raise error

    async def _latency(self) -> None:
        if self.latency_ms > 0:
            await asyncio.sleep(self.latency_ms / 1000.0)

    def _publish(self, event: BookEvent) -> None:
        for queue in self._subscribers:
            queue.put_nowait(event)

    # === MarketSource ===

    async def list_markets(self, market_filter: MarketFilter) -> list[MarketInfo]:
        self.calls.append(("list_markets", market_filter))
        self._check_failure("list_markets")
        await self._latency()
        markets = [
            m for m in self._markets.values()
            if m.volume_24h >= market_filter.min_volume_24h
            and (not market_filter.active_only or (m.active and not m.closed))
        ]
        return markets[:market_filter.limit]

    async def get_market(self, condition_id: str) -> MarketInfo:
        self.calls.append(("get_market", condition_id))
        self._check_failure("get_market")
        market = self._markets.get(condition_id)
        if market is None:
            raise TransientFetchError(f"Unknown market {condition_id}", resource="market")
        return market

    # === OrderBookSource ===

    async def get_order_book(self, token_id: str) -> OrderBookSnapshot:
        self.calls.append(("get_order_book", token_id))
        self._check_failure("get_order_book")
        await self._latency()
        book = self._books.get(token_id)
        if book is None:
            raise TransientFetchError(f"No book for {token_id}", resource=f"book:{token_id}")
        return book

    async def stream(self, token_ids: list[str]) -> AsyncIterator[BookEvent]:
        """Current snapshots first, then every pushed change for these tokens."""
        self._check_failure("stream")
        queue: asyncio.Queue = asyncio.Queue()
        self._subscribers.append(queue)
        wanted = set(token_ids)
        try:
            for token_id in token_ids:
                book = self._books.get(token_id)
                if book is not None:
                    yield BookUpdate(snapshot=book)
            while True:
                event = await queue.get()
                if event is _CLOSE:
                    return
                if event.asset_id in wanted:
                    yield event
        finally:
            self._subscribers.remove(queue)

    # === OrderClient ===

    def _liquidity(self, token_id: str, side: OrderSide) -> list[PriceLevel]:
        """
        Levels a taker on `side` can hit, best first. A YES buy also matches
        NO bids at 1 - price, a YES sell also matches NO asks at 1 - price.
        """
        book = self._books.get(token_id)
        complement = self._books.get(self._complements.get(token_id, ""))
        merged: dict[Decimal, Decimal] = {}

        if side is OrderSide.BUY:
            direct = book.asks if book else []
            mirrored = complement.bids if complement else []
        else:
            direct = book.bids if book else []
            mirrored = complement.asks if complement else []

        for level in direct:
            merged[level.price] = merged.get(level.price, ZERO) + level.size
        for level in mirrored:
            price = ONE - level.price
            merged[price] = merged.get(price, ZERO) + level.size

        return sorted(
            (PriceLevel(price, size) for price, size in merged.items()),
            key=lambda lvl: lvl.price,
            reverse=side is OrderSide.SELL,
        )

    def _match(self, request: OrderRequest) -> tuple[Decimal, Decimal]:
        """Fillable size and cost at or better than the limit price."""
        remaining = request.size
        filled = ZERO
        cost = ZERO
        for level in self._liquidity(request.token_id, request.side):
            crosses = (
                level.price <= request.price
                if request.side is OrderSide.BUY
                else level.price >= request.price
            )
            if not crosses or remaining <= 0:
                break
            take = min(level.size, remaining)
            filled += take
            cost += take * level.price
            remaining -= take
        return filled, cost

    async def place_order(self, request: OrderRequest) -> OrderResult:
        self.calls.append(("place_order", request))
        self._check_failure("place_order")
        await self._latency()

        order_id = str(uuid.uuid4())

        def _record(result: OrderResult) -> OrderResult:
            self.orders.append(PaperOrder(request=request, result=result))
            return result

        reason = self.rejections.get(request.token_id)
        if reason is not None:
            return _record(OrderResult(order_id=order_id, status=OrderStatus.REJECTED, error=reason))

        filled, cost = self._match(request)
        ratio = self.fill_ratios.get(request.token_id)
        if ratio is not None and filled > 0:
            scaled = (request.size * ratio).quantize(Decimal("0.01"))
            if scaled < filled:
                cost = cost * scaled / filled
                filled = scaled

        if request.order_type is OrderType.FOK and filled < request.size:
            return _record(OrderResult(order_id=order_id, status=OrderStatus.CANCELLED))

        if request.side is OrderSide.BUY:
            if cost > self.usdc_balance:
                return _record(OrderResult(
                    order_id=order_id,
                    status=OrderStatus.REJECTED,
                    error="not enough balance",
                ))
            self.usdc_balance -= cost
            self._tokens[request.token_id] = self.token_balance(request.token_id) + filled
        else:
            if filled > self.token_balance(request.token_id):
                return _record(OrderResult(
                    order_id=order_id,
                    status=OrderStatus.REJECTED,
                    error="not enough balance",
                ))
            self.usdc_balance += cost
            self._tokens[request.token_id] = self.token_balance(request.token_id) - filled

        if filled <= 0:
            status = OrderStatus.OPEN if request.order_type is OrderType.GTC else OrderStatus.CANCELLED
        elif filled < request.size:
            status = OrderStatus.PARTIAL
        else:
            status = OrderStatus.FILLED

        return _record(OrderResult(
            order_id=order_id,
            status=status,
            filled_size=filled,
            avg_price=(cost / filled) if filled > 0 else None,
        ))

    # === TokenClient ===

    def _market_tokens(self, condition_id: str) -> tuple[str, str]:
        market = self._markets.get(condition_id)
        if market is None:
            raise OnChainError(f"Unknown condition {condition_id}", condition_id=condition_id)
        return market.yes_token_id, market.no_token_id

    async def split(self, condition_id: str, amount: Decimal) -> OnChainResult:
        self.calls.append(("split", condition_id, amount))
        self._check_failure("split")
        yes_id, no_id = self._market_tokens(condition_id)
        if amount > self.usdc_balance:
            raise OnChainError("Insufficient USDC to split", operation="split", condition_id=condition_id)
        self.usdc_balance -= amount
        self._tokens[yes_id] = self.token_balance(yes_id) + amount
        self._tokens[no_id] = self.token_balance(no_id) + amount
        return OnChainResult(operation="split", amount=amount, tx_hash=f"0x{uuid.uuid4().hex}")

    async def merge(self, condition_id: str, token_ids: list[str], amount: Decimal) -> OnChainResult:
        self.calls.append(("merge", condition_id, amount))
        self._check_failure("merge")
        if condition_id in self._winners:
            raise OnChainError("Condition already resolved", operation="merge", condition_id=condition_id)
        yes_id, no_id = self._market_tokens(condition_id)
        if amount > min(self.token_balance(yes_id), self.token_balance(no_id)):
            raise OnChainError("Insufficient pairs to merge", operation="merge", condition_id=condition_id)
        self._tokens[yes_id] -= amount
        self._tokens[no_id] -= amount
        self.usdc_balance += amount
        return OnChainResult(operation="merge", amount=amount, tx_hash=f"0x{uuid.uuid4().hex}")

    async def redeem(self, condition_id: str, token_ids: list[str]) -> OnChainResult:
        self.calls.append(("redeem", condition_id))
        self._check_failure("redeem")
        winner = self._winners.get(condition_id)
        if winner is None:
            raise OnChainError("Condition not resolved", operation="redeem", condition_id=condition_id)
        payout = self.token_balance(winner)
        for token_id in self._market_tokens(condition_id):
            self._tokens[token_id] = ZERO
        self.usdc_balance += payout
        return OnChainResult(operation="redeem", amount=payout, tx_hash=f"0x{uuid.uuid4().hex}")

    async def get_balances(self, market: MarketInfo) -> PositionSnapshot:
        self.calls.append(("get_balances", market.condition_id))
        self._check_failure("get_balances")
        return PositionSnapshot(
            usdc_balance=self.usdc_balance,
            yes_tokens=self.token_balance(market.yes_token_id),
            no_tokens=self.token_balance(market.no_token_id),
            condition_id=market.condition_id,
        )

    def call_names(self) -> list[str]:
        return [call[0] for call in self.calls]
