"""
Position clearer: turns a market's inventory back into USDC.

Trading market: merge min(yes, no) pairs at par, then sell the unmatched
remainder at the best bid. Resolved market: redeem only; merging is no longer
possible once the condition has reported payouts.
"""

import asyncio
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Optional, TYPE_CHECKING

from ..connector.retry import retry_with_backoff
from ..connector.types import MarketInfo, OrderStatus, PositionSnapshot
from ..errors import TransientFetchError

if TYPE_CHECKING:
    from ..config import TradingConfig
    from ..connector.types import TokenClient
    from ..exec import ExecutionEngine
    from ..monitor import Logger


class ClearActionType(Enum):
    MERGE = "merge"
    SELL = "sell"
    REDEEM = "redeem"


@dataclass
class ClearAction:
    """One step taken (or, on a dry run, planned) while clearing."""
    action_type: ClearActionType
    amount: Decimal
    usdc: Decimal = Decimal("0")
    token_id: Optional[str] = None
    success: bool = True
    planned: bool = False
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "action": self.action_type.value,
            "amount": str(self.amount),
            "usdc": str(self.usdc),
            "token_id": self.token_id,
            "success": self.success,
            "planned": self.planned,
            "error": self.error,
        }


@dataclass
class ClearPositionResult:
    """What clearing one market recovered. Errors carry partial totals."""
    condition_id: str
    resolved: bool
    actions: list[ClearAction] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    usdc_recovered: Decimal = Decimal("0")
    executed: bool = True

    @property
    def success(self) -> bool:
        return not self.errors

    def to_dict(self) -> dict:
        return {
            "condition_id": self.condition_id,
            "resolved": self.resolved,
            "executed": self.executed,
            "usdc_recovered": str(self.usdc_recovered),
            "actions": [a.to_dict() for a in self.actions],
            "errors": list(self.errors),
        }


class PositionClearer:
    """Clears inventory under the shared wallet lock."""

    def __init__(
        self,
        token_client: "TokenClient",
        engine: "ExecutionEngine",
        trading_config: "TradingConfig",
        wallet_lock: Optional[asyncio.Lock] = None,
        logger: Optional["Logger"] = None,
    ):
        self.tokens = token_client
        self.engine = engine
        self.trading = trading_config
        self.wallet_lock = wallet_lock or engine.wallet_lock
        self.logger = logger

    async def clear(
        self,
        market: MarketInfo,
        resolved: Optional[bool] = None,
        execute: bool = True,
    ) -> ClearPositionResult:
        """
        Clear one market.

        resolved defaults to the market's own flag. With execute=False the
        actions are planned from current balances and nothing is sent.
        """
        if resolved is None:
            resolved = market.resolved

        result = ClearPositionResult(
            condition_id=market.condition_id,
            resolved=resolved,
            executed=execute,
        )

        async with self.wallet_lock:
            try:
                snapshot = await retry_with_backoff(
                    self.tokens.get_balances,
                    market,
                    timeout=self.trading.order_timeout_seconds,
                    resource="balances",
                    logger=self.logger,
                )
            except TransientFetchError as e:
                result.errors.append(f"balance read failed: {e}")
                return result

            if snapshot.is_empty:
                return result

            if resolved:
                await self._redeem(market, snapshot, result, execute)
            else:
                await self._merge_and_sell(market, snapshot, result, execute)

        if self.logger:
            self.logger.info(
                "positions_cleared" if execute else "positions_clear_planned",
                condition_id=market.condition_id,
                resolved=resolved,
                usdc_recovered=str(result.usdc_recovered),
                actions=len(result.actions),
                errors=result.errors,
            )
        return result

    async def clear_all(
        self,
        markets: list[MarketInfo],
        execute: bool = True,
    ) -> list[ClearPositionResult]:
        """Clear markets one after another; a failure never stops the rest."""
        results = []
        for market in markets:
            results.append(await self.clear(market, execute=execute))
        return results

    async def _redeem(
        self,
        market: MarketInfo,
        snapshot: PositionSnapshot,
        result: ClearPositionResult,
        execute: bool,
    ) -> None:
        held = snapshot.yes_tokens + snapshot.no_tokens
        action = ClearAction(action_type=ClearActionType.REDEEM, amount=held, planned=not execute)
        result.actions.append(action)
        if not execute:
            return

        try:
            moved = await self.tokens.redeem(market.condition_id, market.token_ids)
        except Exception as e:
            self._fail(action, result, "redeem", e)
            return

        action.usdc = moved.amount
        result.usdc_recovered += moved.amount

    async def _merge_and_sell(
        self,
        market: MarketInfo,
        snapshot: PositionSnapshot,
        result: ClearPositionResult,
        execute: bool,
    ) -> None:
        pairs = snapshot.paired_tokens
        if pairs > 0:
            action = ClearAction(
                action_type=ClearActionType.MERGE,
                amount=pairs,
                usdc=pairs,
                planned=not execute,
            )
            result.actions.append(action)
            if execute:
                try:
                    moved = await self.tokens.merge(market.condition_id, market.token_ids, pairs)
                    action.usdc = moved.amount
                    result.usdc_recovered += moved.amount
                except Exception as e:
                    action.usdc = Decimal("0")
                    self._fail(action, result, "merge", e)

        for token_id, held in (
            (market.yes_token_id, snapshot.yes_tokens),
            (market.no_token_id, snapshot.no_tokens),
        ):
            remainder = held - pairs
            if remainder > 0:
                await self._sell_remainder(market, token_id, remainder, result, execute)

    async def _sell_remainder(
        self,
        market: MarketInfo,
        token_id: str,
        size: Decimal,
        result: ClearPositionResult,
        execute: bool,
    ) -> None:
        action = ClearAction(
            action_type=ClearActionType.SELL,
            amount=size,
            token_id=token_id,
            planned=not execute,
        )
        result.actions.append(action)

        if not execute:
            try:
                bid = await self.engine.best_bid(token_id)
            except TransientFetchError as e:
                action.error = str(e)
                return
            action.usdc = size * bid if bid is not None else Decimal("0")
            return

        try:
            order = await self.engine.sell_at_best_bid(market, token_id, size)
        except Exception as e:
            self._fail(action, result, "sell", e)
            return

        if order.status == OrderStatus.REJECTED:
            self._fail(action, result, "sell", order.error or "rejected")
            return

        proceeds = order.filled_size * (order.avg_price or Decimal("0"))
        action.amount = order.filled_size
        action.usdc = proceeds
        result.usdc_recovered += proceeds
        if order.filled_size < size:
            result.errors.append(f"sell {token_id}: filled {order.filled_size} of {size}")

    def _fail(self, action: ClearAction, result: ClearPositionResult, step: str, error) -> None:
        message = str(error) or repr(error)
        action.success = False
        action.error = message
        result.errors.append(f"{step} failed: {message}")
        if self.logger:
            self.logger.error(
                "clear_action_failed",
                condition_id=result.condition_id,
                step=step,
                error=message,
            )
