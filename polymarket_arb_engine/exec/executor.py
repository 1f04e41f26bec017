"""
Two-leg execution engine for complement arbitrage.
Handles paired order placement, partial fills, and corrective unwinds.
"""

import asyncio
import time
import uuid
from dataclasses import dataclass, field
from decimal import ROUND_DOWN, Decimal
from enum import Enum
from typing import Optional, TYPE_CHECKING

from ..connector.retry import retry_with_backoff
from ..connector.types import (
    MarketInfo,
    OrderRequest,
    OrderResult,
    OrderSide,
    OrderStatus,
    OrderType,
    PositionSnapshot,
)
from ..errors import ExecutionFailure, TransientFetchError
from ..signals import ArbitrageOpportunity, OpportunityKind
from ..signals.parity_detector import SIZE_QUANTUM

if TYPE_CHECKING:
    from ..config import TradingConfig
    from ..connector.types import OrderBookSource, OrderClient, TokenClient
    from ..monitor import Logger


class LegStatus(Enum):
    """Status of a single leg."""
    PENDING = "pending"
    SUBMITTED = "submitted"
    PARTIAL = "partial"
    FILLED = "filled"
    CANCELLED = "cancelled"
    FAILED = "failed"


class ExecutionStatus(Enum):
    """Status of a paired execution."""
    COMPLETE = "complete"
    PARTIAL = "partial"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass
class LegOrder:
    """Single leg of a paired trade."""
    leg_id: str
    token_id: str
    side: OrderSide
    price: Decimal
    size: Decimal
    order_id: Optional[str] = None
    filled_size: Decimal = Decimal("0")
    avg_price: Optional[Decimal] = None
    status: LegStatus = LegStatus.PENDING
    error: Optional[str] = None
    submitted_at: Optional[float] = None
    filled_at: Optional[float] = None

    @property
    def fill_price(self) -> Decimal:
        return self.avg_price if self.avg_price is not None else self.price

    @property
    def failed(self) -> bool:
        return self.status == LegStatus.FAILED


@dataclass
class ExecutionResult:
    """Result of one paired execution attempt."""
    execution_id: str
    condition_id: str
    kind: OpportunityKind
    yes_leg: Optional[LegOrder]
    no_leg: Optional[LegOrder]
    status: ExecutionStatus
    success: bool = False
    profit: Decimal = Decimal("0")
    correction_applied: bool = False
    correction_size: Decimal = Decimal("0")
    merged_size: Decimal = Decimal("0")
    created_at: float = field(default_factory=time.time)
    completed_at: Optional[float] = None
    error: Optional[str] = None

    @property
    def filled_yes_size(self) -> Decimal:
        return self.yes_leg.filled_size if self.yes_leg else Decimal("0")

    @property
    def filled_no_size(self) -> Decimal:
        return self.no_leg.filled_size if self.no_leg else Decimal("0")

    @property
    def matched_size(self) -> Decimal:
        return min(self.filled_yes_size, self.filled_no_size)

    @property
    def imbalance(self) -> Decimal:
        return abs(self.filled_yes_size - self.filled_no_size)

    @property
    def notional(self) -> Decimal:
        total = Decimal("0")
        for leg in (self.yes_leg, self.no_leg):
            if leg is not None:
                total += leg.fill_price * leg.filled_size
        return total

    @property
    def skipped(self) -> bool:
        return self.status == ExecutionStatus.SKIPPED

    def to_dict(self) -> dict:
        return {
            "execution_id": self.execution_id,
            "condition_id": self.condition_id,
            "kind": self.kind.value,
            "status": self.status.value,
            "success": self.success,
            "profit": str(self.profit),
            "filled_yes_size": str(self.filled_yes_size),
            "filled_no_size": str(self.filled_no_size),
            "correction_applied": self.correction_applied,
            "merged_size": str(self.merged_size),
            "error": self.error,
        }


class ExecutionEngine:
    """
    Executes paired YES/NO orders for complement arbitrage.

    Key principles:
    1. Both legs are sized equally, capped by depth x safety factor and by capital
    2. Legs are immediate (FOK/FAK) and bounded by a timeout
    3. A fill difference above the imbalance threshold is sold off immediately
    4. Balance-affecting work happens under the shared wallet lock
    """

    def __init__(
        self,
        order_client: "OrderClient",
        token_client: "TokenClient",
        book_source: "OrderBookSource",
        trading_config: "TradingConfig",
        wallet_lock: Optional[asyncio.Lock] = None,
        logger: Optional["Logger"] = None,
    ):
        self.orders = order_client
        self.tokens = token_client
        self.books = book_source
        self.trading = trading_config
        self.wallet_lock = wallet_lock or asyncio.Lock()
        self.logger = logger

        self._in_flight: set[str] = set()

    def is_executing(self, condition_id: Optional[str] = None) -> bool:
        """Whether an execution is in flight (for a market, or at all)."""
        if condition_id is None:
            return bool(self._in_flight)
        return condition_id in self._in_flight

    @property
    def min_trade_size(self) -> Decimal:
        return Decimal(str(self.trading.min_trade_size))

    @property
    def max_trade_size(self) -> Decimal:
        return Decimal(str(self.trading.max_trade_size))

    def plan_size(
        self,
        opportunity: ArbitrageOpportunity,
        snapshot: PositionSnapshot,
    ) -> Decimal:
        """
        Pair count to trade: visible depth (already safety-scaled), the max
        trade size, and what the wallet can fund.
        """
        size = opportunity.tradable_size
        if size is None:
            size = self.max_trade_size
        size = min(size, self.max_trade_size)

        if opportunity.kind is OpportunityKind.LONG:
            cost = opportunity.legs.yes_price + opportunity.legs.no_price
            if cost > 0:
                size = min(size, snapshot.usdc_balance / cost)
        elif opportunity.kind is OpportunityKind.SHORT:
            size = min(size, snapshot.paired_tokens)

        if size <= 0:
            return Decimal("0")
        return size.quantize(SIZE_QUANTUM, rounding=ROUND_DOWN)

    async def execute(
        self,
        market: MarketInfo,
        opportunity: ArbitrageOpportunity,
    ) -> ExecutionResult:
        """
        Execute an opportunity against both books.

        Never raises for trading problems: failures are reported in the result.
        """
        execution_id = str(uuid.uuid4())
        condition_id = market.condition_id

        if not opportunity.is_actionable:
            return self._skipped(execution_id, condition_id, opportunity.kind, "no_opportunity")

        if condition_id in self._in_flight:
            return self._skipped(execution_id, condition_id, opportunity.kind, "execution_in_flight")

        self._in_flight.add(condition_id)
        try:
            async with self.wallet_lock:
                return await self._execute_locked(execution_id, market, opportunity)
        finally:
            self._in_flight.discard(condition_id)

    async def _execute_locked(
        self,
        execution_id: str,
        market: MarketInfo,
        opportunity: ArbitrageOpportunity,
    ) -> ExecutionResult:
        condition_id = market.condition_id
        kind = opportunity.kind

        try:
            snapshot = await retry_with_backoff(
                self.tokens.get_balances,
                market,
                timeout=self.trading.order_timeout_seconds,
                resource="balances",
                logger=self.logger,
            )
        except TransientFetchError as e:
            return self._skipped(execution_id, condition_id, kind, f"balance_read_failed: {e}")

        size = self.plan_size(opportunity, snapshot)
        if size < self.min_trade_size:
            if self.logger:
                self.logger.debug(
                    "execution_skipped_size",
                    condition_id=condition_id,
                    kind=kind.value,
                    size=str(size),
                    min_trade_size=str(self.min_trade_size),
                )
            return self._skipped(execution_id, condition_id, kind, "size_below_minimum")

        side = OrderSide.BUY if kind is OpportunityKind.LONG else OrderSide.SELL
        yes_leg = LegOrder(
            leg_id=f"{execution_id}-yes",
            token_id=market.yes_token_id,
            side=side,
            price=opportunity.legs.yes_price,
            size=size,
        )
        no_leg = LegOrder(
            leg_id=f"{execution_id}-no",
            token_id=market.no_token_id,
            side=side,
            price=opportunity.legs.no_price,
            size=size,
        )

        result = ExecutionResult(
            execution_id=execution_id,
            condition_id=condition_id,
            kind=kind,
            yes_leg=yes_leg,
            no_leg=no_leg,
            status=ExecutionStatus.FAILED,
        )

        # Submit both legs concurrently; _submit_leg never raises
        await asyncio.gather(
            self._submit_leg(yes_leg, market),
            self._submit_leg(no_leg, market),
        )

        result.profit = self._pair_profit(result)

        if result.imbalance > 0:
            await self._correct_imbalance(result, market)

        if kind is OpportunityKind.LONG and self.trading.auto_merge_long and result.matched_size > 0:
            await self._merge_pairs(result, market)

        if yes_leg.status == LegStatus.FILLED and no_leg.status == LegStatus.FILLED:
            result.status = ExecutionStatus.COMPLETE
        elif result.matched_size > 0:
            result.status = ExecutionStatus.PARTIAL
        else:
            result.status = ExecutionStatus.FAILED

        leg_errors = [leg.error for leg in (yes_leg, no_leg) if leg.failed]
        result.success = result.matched_size > 0 and not leg_errors
        if leg_errors:
            result.error = "; ".join(e for e in leg_errors if e)
        elif result.matched_size <= 0 and result.error is None:
            result.error = "no_fill"

        result.completed_at = time.time()

        if self.logger:
            if result.success:
                self.logger.execution_complete(
                    execution_id=execution_id,
                    condition_id=condition_id,
                    kind=kind.value,
                    status=result.status.value,
                    filled_yes=str(result.filled_yes_size),
                    filled_no=str(result.filled_no_size),
                    profit=str(result.profit),
                    correction_applied=result.correction_applied,
                )
            else:
                self.logger.execution_failed(
                    execution_id=execution_id,
                    condition_id=condition_id,
                    error=result.error or "unknown",
                )

        return result

    async def _submit_leg(self, leg: LegOrder, market: MarketInfo) -> None:
        """Submit a single leg. Failures are recorded on the leg."""
        request = OrderRequest(
            token_id=leg.token_id,
            side=leg.side,
            price=leg.price,
            size=leg.size,
            order_type=OrderType(self.trading.order_type.upper()),
            tick_size=market.tick_size,
            neg_risk=market.neg_risk,
        )

        leg.status = LegStatus.SUBMITTED
        leg.submitted_at = time.time()

        try:
            order = await asyncio.wait_for(
                self.orders.place_order(request),
                timeout=self.trading.order_timeout_seconds,
            )
        except asyncio.TimeoutError:
            leg.status = LegStatus.FAILED
            leg.error = f"order timed out after {self.trading.order_timeout_seconds}s"
            return
        except Exception as e:
            leg.status = LegStatus.FAILED
            leg.error = str(e) or repr(e)
            return

        leg.order_id = order.order_id
        leg.filled_size = min(order.filled_size, leg.size)
        leg.avg_price = order.avg_price

        if order.status == OrderStatus.REJECTED:
            leg.status = LegStatus.FAILED
            leg.error = order.error or "order rejected"
        elif leg.filled_size >= leg.size:
            leg.status = LegStatus.FILLED
            leg.filled_at = time.time()
        elif leg.filled_size > 0:
            leg.status = LegStatus.PARTIAL
            leg.filled_at = time.time()
        else:
            leg.status = LegStatus.CANCELLED

    @staticmethod
    def _pair_profit(result: ExecutionResult) -> Decimal:
        """Locked-in profit on matched pairs at actual fill prices."""
        matched = result.matched_size
        if matched <= 0:
            return Decimal("0")
        pair_price = result.yes_leg.fill_price + result.no_leg.fill_price
        if result.kind is OpportunityKind.LONG:
            return matched * (Decimal("1") - pair_price)
        return matched * (pair_price - Decimal("1"))

    async def _correct_imbalance(self, result: ExecutionResult, market: MarketInfo) -> None:
        """
        Sell the unhedged side. After a long the excess is the larger fill;
        after a short it is the inventory left unsold on the smaller fill.
        """
        diff = result.imbalance
        threshold = Decimal(str(self.trading.imbalance_threshold))

        if diff <= threshold or not self.trading.auto_fix_imbalance:
            if self.logger:
                self.logger.warning(
                    "imbalance_left_open",
                    execution_id=result.execution_id,
                    filled_yes=str(result.filled_yes_size),
                    filled_no=str(result.filled_no_size),
                    threshold=str(threshold),
                )
            return

        yes_larger = result.filled_yes_size > result.filled_no_size
        if result.kind is OpportunityKind.LONG:
            excess_leg = result.yes_leg if yes_larger else result.no_leg
        else:
            excess_leg = result.no_leg if yes_larger else result.yes_leg

        if self.logger:
            self.logger.warning(
                "correcting_imbalance",
                execution_id=result.execution_id,
                token_id=excess_leg.token_id,
                size=str(diff),
            )

        try:
            order = await self.sell_at_best_bid(market, excess_leg.token_id, diff)
        except Exception as e:
            result.error = f"correction failed: {e}"
            if self.logger:
                self.logger.error(
                    "correction_failed",
                    execution_id=result.execution_id,
                    error=str(e),
                )
            return

        if order.status == OrderStatus.REJECTED:
            result.error = f"correction rejected: {order.error or 'unknown'}"
            return

        result.correction_applied = True
        result.correction_size = order.filled_size
        if result.kind is OpportunityKind.LONG and order.avg_price is not None:
            # Realized loss/gain on the excess bought above what it sold for
            result.profit += order.filled_size * (order.avg_price - excess_leg.fill_price)

    async def _merge_pairs(self, result: ExecutionResult, market: MarketInfo) -> None:
        """Turn matched long pairs back into USDC."""
        try:
            merged = await self.tokens.merge(market.condition_id, market.token_ids, result.matched_size)
            result.merged_size = merged.amount
        except Exception as e:
            # Pairs stay in inventory; the rebalancer or clearer can merge later
            result.error = f"merge failed: {e!r}"
            if self.logger:
                self.logger.error(
                    "post_trade_merge_failed",
                    execution_id=result.execution_id,
                    condition_id=market.condition_id,
                    error=repr(e),
                )

    async def best_bid(self, token_id: str) -> Optional[Decimal]:
        """Fresh best bid for a token (read retried)."""
        book = await retry_with_backoff(
            self.books.get_order_book,
            token_id,
            timeout=self.trading.order_timeout_seconds,
            resource=f"book:{token_id}",
            logger=self.logger,
        )
        level = book.best_bid
        return level.price if level else None

    async def sell_at_best_bid(
        self,
        market: MarketInfo,
        token_id: str,
        size: Decimal,
    ) -> OrderResult:
        """
        Immediate-or-cancel sell at the current best bid.
        Callers must already hold the wallet lock.
        """
        bid = await self.best_bid(token_id)
        if bid is None or bid <= 0:
            raise ExecutionFailure(f"No bid available for {token_id}", token_id=token_id)

        request = OrderRequest(
            token_id=token_id,
            side=OrderSide.SELL,
            price=bid,
            size=size,
            order_type=OrderType.FAK,
            tick_size=market.tick_size,
            neg_risk=market.neg_risk,
        )
        try:
            order = await asyncio.wait_for(
                self.orders.place_order(request),
                timeout=self.trading.order_timeout_seconds,
            )
        except asyncio.TimeoutError as e:
            raise ExecutionFailure(f"Sell of {token_id} timed out", token_id=token_id) from e

        if order.avg_price is None and order.filled_size > 0:
            order.avg_price = bid
        return order

    @staticmethod
    def _skipped(
        execution_id: str,
        condition_id: str,
        kind: OpportunityKind,
        reason: str,
    ) -> ExecutionResult:
        return ExecutionResult(
            execution_id=execution_id,
            condition_id=condition_id,
            kind=kind,
            yes_leg=None,
            no_leg=None,
            status=ExecutionStatus.SKIPPED,
            error=reason,
            completed_at=time.time(),
        )
