"""
Capital rebalancer.

Keeps the wallet able to take either branch of the arbitrage: enough USDC to
buy pairs (long) and enough paired inventory to sell them (short). Paired
tokens are valued at par, since a YES+NO pair always merges into 1 USDC.

    usdc_ratio = usdc / (usdc + min(yes, no))

Below min_usdc_ratio pairs are merged, above max_usdc_ratio USDC is split,
each sized to land on target_usdc_ratio.
"""

import asyncio
import time
from dataclasses import dataclass, field
from decimal import ROUND_DOWN, Decimal
from enum import Enum
from typing import Callable, Optional, TYPE_CHECKING

from ..connector.retry import retry_with_backoff
from ..connector.types import MarketInfo, OrderStatus, PositionSnapshot
from ..errors import TransientFetchError
from ..signals.parity_detector import SIZE_QUANTUM

if TYPE_CHECKING:
    from ..config import RebalancerConfig, TradingConfig
    from ..connector.types import TokenClient
    from ..exec import ExecutionEngine
    from ..monitor import Logger


class RebalanceAction(Enum):
    NONE = "none"
    MERGE = "merge"
    SPLIT = "split"
    SELL_EXCESS = "sell_excess"


@dataclass
class RebalanceResult:
    """Outcome of one rebalance check."""
    action: RebalanceAction
    amount: Decimal = Decimal("0")
    success: bool = True
    reason: str = ""
    usdc_ratio: Optional[Decimal] = None
    token_id: Optional[str] = None
    error: Optional[str] = None
    timestamp: float = field(default_factory=time.time)

    @property
    def acted(self) -> bool:
        return self.action is not RebalanceAction.NONE

    def to_dict(self) -> dict:
        return {
            "action": self.action.value,
            "amount": str(self.amount),
            "success": self.success,
            "reason": self.reason,
            "usdc_ratio": str(self.usdc_ratio) if self.usdc_ratio is not None else None,
            "token_id": self.token_id,
            "error": self.error,
            "timestamp": self.timestamp,
        }


class Rebalancer:
    """
    Periodic split/merge and imbalance correction for one market.

    The tick runs every rebalance_interval_seconds; an action is taken at most
    once per rebalance_cooldown_seconds, counted from the previous action
    whether or not it succeeded.
    """

    def __init__(
        self,
        market: MarketInfo,
        token_client: "TokenClient",
        engine: "ExecutionEngine",
        config: "RebalancerConfig",
        trading_config: "TradingConfig",
        wallet_lock: Optional[asyncio.Lock] = None,
        on_result: Optional[Callable[[RebalanceResult], None]] = None,
        clock: Callable[[], float] = time.monotonic,
        logger: Optional["Logger"] = None,
    ):
        self.market = market
        self.tokens = token_client
        self.engine = engine
        self.config = config
        self.trading = trading_config
        self.wallet_lock = wallet_lock or engine.wallet_lock
        self.on_result = on_result
        self.clock = clock
        self.logger = logger

        self._last_action_at: Optional[float] = None
        self._task: Optional[asyncio.Task] = None
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    def cooldown_remaining(self) -> float:
        if self._last_action_at is None:
            return 0.0
        elapsed = self.clock() - self._last_action_at
        return max(0.0, self.config.rebalance_cooldown_seconds - elapsed)

    def start(self) -> None:
        if self._running or not self.config.enabled:
            return
        self._running = True
        self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        self._running = False
        if self._task is not None:
            self._task.cancel()
            await asyncio.gather(self._task, return_exceptions=True)
            self._task = None

    async def _run(self) -> None:
        while self._running:
            try:
                result = await self.check_and_rebalance()
                if result.acted and self.on_result is not None:
                    self.on_result(result)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                if self.logger:
                    self.logger.error(
                        "rebalance_tick_error",
                        condition_id=self.market.condition_id,
                        error=repr(e),
                    )
            await asyncio.sleep(self.config.rebalance_interval_seconds)

    async def check_and_rebalance(self) -> RebalanceResult:
        """One check: read balances and take at most one action."""
        if self.cooldown_remaining() > 0:
            return RebalanceResult(action=RebalanceAction.NONE, reason="cooldown")

        async with self.wallet_lock:
            # An overlapping check may have acted while this one waited
            if self.cooldown_remaining() > 0:
                return RebalanceResult(action=RebalanceAction.NONE, reason="cooldown")

            try:
                snapshot = await retry_with_backoff(
                    self.tokens.get_balances,
                    self.market,
                    timeout=self.trading.order_timeout_seconds,
                    resource="balances",
                    logger=self.logger,
                )
            except TransientFetchError as e:
                return RebalanceResult(
                    action=RebalanceAction.NONE,
                    success=False,
                    reason="balance_read_failed",
                    error=str(e),
                )

            # Unhedged exposure comes before capital mix
            result = await self._fix_imbalance(snapshot)
            if result is None:
                result = await self._rebalance_ratio(snapshot)
            if result.acted:
                self._last_action_at = self.clock()

        if result.acted and self.logger:
            self.logger.rebalance_action(
                condition_id=self.market.condition_id,
                action=result.action.value,
                amount=str(result.amount),
                usdc_ratio=str(result.usdc_ratio) if result.usdc_ratio is not None else None,
                success=result.success,
            )
        return result

    def plan_ratio_action(self, snapshot: PositionSnapshot) -> tuple[RebalanceAction, Decimal, str]:
        """Which ratio action the snapshot calls for and how large."""
        ratio = snapshot.usdc_ratio
        if ratio is None:
            return RebalanceAction.NONE, Decimal("0"), "no_capital"

        min_ratio = Decimal(str(self.config.min_usdc_ratio))
        target = Decimal(str(self.config.target_usdc_ratio))
        max_ratio = Decimal(str(self.config.max_usdc_ratio))
        total = snapshot.total_value

        if ratio < min_ratio:
            action = RebalanceAction.MERGE
            amount = min(target * total - snapshot.usdc_balance, snapshot.paired_tokens)
        elif ratio > max_ratio:
            action = RebalanceAction.SPLIT
            amount = min(snapshot.usdc_balance - target * total, snapshot.usdc_balance)
        else:
            return RebalanceAction.NONE, Decimal("0"), "within_band"

        amount = max(amount, Decimal("0")).quantize(SIZE_QUANTUM, rounding=ROUND_DOWN)
        if amount < Decimal(str(self.trading.min_trade_size)):
            return RebalanceAction.NONE, amount, "below_min_trade_size"
        return action, amount, f"usdc_ratio {ratio:.4f} outside [{min_ratio}, {max_ratio}]"

    async def _rebalance_ratio(self, snapshot: PositionSnapshot) -> RebalanceResult:
        action, amount, reason = self.plan_ratio_action(snapshot)
        ratio = snapshot.usdc_ratio
        if action is RebalanceAction.NONE:
            return RebalanceResult(action=action, amount=amount, reason=reason, usdc_ratio=ratio)

        result = RebalanceResult(action=action, amount=amount, reason=reason, usdc_ratio=ratio)
        try:
            # No outer timeout: the lock is held until the transaction settles,
            # bounded by the token client's receipt timeout
            if action is RebalanceAction.MERGE:
                moved = await self.tokens.merge(self.market.condition_id, self.market.token_ids, amount)
            else:
                moved = await self.tokens.split(self.market.condition_id, amount)
            result.amount = moved.amount
        except Exception as e:
            result.success = False
            result.error = str(e) or repr(e)
            if self.logger:
                self.logger.error(
                    "rebalance_failed",
                    condition_id=self.market.condition_id,
                    action=action.value,
                    amount=str(amount),
                    error=result.error,
                )
        return result

    async def _fix_imbalance(self, snapshot: PositionSnapshot) -> Optional[RebalanceResult]:
        """Sell the excess side. None when there is nothing to correct."""
        threshold = Decimal(str(self.config.imbalance_threshold))
        excess = snapshot.imbalance
        if excess <= threshold:
            return None
        if self.engine.is_executing(self.market.condition_id):
            return None

        excess = excess.quantize(SIZE_QUANTUM, rounding=ROUND_DOWN)
        if excess < Decimal(str(self.trading.min_trade_size)):
            return None

        token_id = (
            self.market.yes_token_id
            if snapshot.yes_tokens > snapshot.no_tokens
            else self.market.no_token_id
        )
        result = RebalanceResult(
            action=RebalanceAction.SELL_EXCESS,
            amount=excess,
            reason=f"imbalance {excess} > {threshold}",
            usdc_ratio=snapshot.usdc_ratio,
            token_id=token_id,
        )
        try:
            order = await self.engine.sell_at_best_bid(self.market, token_id, excess)
        except Exception as e:
            result.success = False
            result.error = str(e) or repr(e)
            return result

        if order.status == OrderStatus.REJECTED or order.filled_size <= 0:
            result.success = False
            result.error = order.error or "no fill"
        result.amount = order.filled_size
        return result
