"""
Complement arbitrage detector.

Long:  buy YES + buy NO for less than 1, merge the pair back into 1 USDC.
Short: sell YES + sell NO (from split inventory) for more than 1.
"""

import time
from dataclasses import dataclass
from decimal import ROUND_DOWN, Decimal
from enum import Enum
from typing import Optional, TYPE_CHECKING

from ..errors import InvalidInputError
from .effective_price import ONE, ZERO, EffectivePrices, calculate_effective_prices

if TYPE_CHECKING:
    from ..connector.types import PositionSnapshot
    from ..orderbook import BookDepth, MarketBook

SIZE_QUANTUM = Decimal("0.01")


class OpportunityKind(Enum):
    """Classification of a market at one instant."""
    LONG = "long"
    SHORT = "short"
    NONE = "none"


@dataclass(frozen=True)
class ArbitrageLegs:
    """Limit prices for the two legs."""
    yes_price: Decimal
    no_price: Decimal


@dataclass(frozen=True)
class ArbitrageOpportunity:
    """
    Result of one detection call. Immutable, never persisted.

    profit is a fraction of notional per pair; tradable_size is None when no
    depth was supplied.
    """
    kind: OpportunityKind
    profit: Decimal
    tradable_size: Optional[Decimal]
    legs: Optional[ArbitrageLegs]
    prices: EffectivePrices
    condition_id: str = ""
    timestamp: float = 0.0

    @property
    def is_actionable(self) -> bool:
        return self.kind is not OpportunityKind.NONE

    def to_dict(self) -> dict:
        return {
            "kind": self.kind.value,
            "condition_id": self.condition_id,
            "profit": str(self.profit),
            "tradable_size": str(self.tradable_size) if self.tradable_size is not None else None,
            "yes_price": str(self.legs.yes_price) if self.legs else None,
            "no_price": str(self.legs.no_price) if self.legs else None,
            "timestamp": self.timestamp,
        }


@dataclass(frozen=True)
class TradingCapacity:
    """Which branches the wallet can fund right now."""
    can_long: bool = True
    can_short: bool = True

    @classmethod
    def from_snapshot(
        cls,
        snapshot: "PositionSnapshot",
        min_trade_size: Decimal = ZERO,
    ) -> "TradingCapacity":
        """Long needs USDC; short needs paired YES/NO inventory."""
        return cls(
            can_long=snapshot.usdc_balance > ZERO,
            can_short=snapshot.paired_tokens > ZERO and snapshot.paired_tokens >= min_trade_size,
        )


def _leg_depth(
    mirrored: bool,
    direct_size: Optional[Decimal],
    mirror_size: Optional[Decimal],
) -> Decimal:
    size = mirror_size if mirrored else direct_size
    return size if size is not None else ZERO


class ArbitrageDetector:
    """
    Classifies effective prices as long, short or no opportunity.

    Long is checked before short. Under full mirror correction the two profits
    are algebraically equal (1 - buy_yes - buy_no == sell_yes + sell_no - 1), so
    for a fully quoted book the branch is really decided by capacity: a wallet
    without USDC but holding pairs gets the short.
    """

    def __init__(
        self,
        safety_factor: Decimal = Decimal("0.8"),
        max_trade_size: Optional[Decimal] = None,
    ):
        if not ZERO < safety_factor <= ONE:
            raise InvalidInputError(f"safety_factor must be in (0, 1], got {safety_factor}")
        self.safety_factor = safety_factor
        self.max_trade_size = max_trade_size

    def detect(
        self,
        prices: EffectivePrices,
        min_profit: Decimal,
        depth: Optional["BookDepth"] = None,
        capacity: Optional[TradingCapacity] = None,
        condition_id: str = "",
    ) -> ArbitrageOpportunity:
        """Classify one set of effective prices."""
        if min_profit < ZERO:
            raise InvalidInputError(f"min_profit cannot be negative, got {min_profit}")

        capacity = capacity or TradingCapacity()
        now = time.time()

        long_cost = prices.long_cost
        if capacity.can_long and long_cost is not None:
            profit = ONE - long_cost
            if profit >= min_profit:
                size = None
                if depth is not None:
                    size = min(
                        _leg_depth(prices.buy_yes_mirrored, depth.ask_yes, depth.bid_no),
                        _leg_depth(prices.buy_no_mirrored, depth.ask_no, depth.bid_yes),
                    )
                return ArbitrageOpportunity(
                    kind=OpportunityKind.LONG,
                    profit=profit,
                    tradable_size=self._scale(size),
                    legs=ArbitrageLegs(yes_price=prices.buy_yes, no_price=prices.buy_no),
                    prices=prices,
                    condition_id=condition_id,
                    timestamp=now,
                )

        short_proceeds = prices.short_proceeds
        if capacity.can_short and short_proceeds is not None:
            profit = short_proceeds - ONE
            if profit >= min_profit:
                size = None
                if depth is not None:
                    size = min(
                        _leg_depth(prices.sell_yes_mirrored, depth.bid_yes, depth.ask_no),
                        _leg_depth(prices.sell_no_mirrored, depth.bid_no, depth.ask_yes),
                    )
                return ArbitrageOpportunity(
                    kind=OpportunityKind.SHORT,
                    profit=profit,
                    tradable_size=self._scale(size),
                    legs=ArbitrageLegs(yes_price=prices.sell_yes, no_price=prices.sell_no),
                    prices=prices,
                    condition_id=condition_id,
                    timestamp=now,
                )

        # Report the better of the two (negative) margins for ranking
        margins = [m for m in (
            ONE - long_cost if long_cost is not None else None,
            short_proceeds - ONE if short_proceeds is not None else None,
        ) if m is not None]

        return ArbitrageOpportunity(
            kind=OpportunityKind.NONE,
            profit=max(margins) if margins else ZERO,
            tradable_size=ZERO,
            legs=None,
            prices=prices,
            condition_id=condition_id,
            timestamp=now,
        )

    def check_market(
        self,
        market: "MarketBook",
        min_profit: Decimal,
        capacity: Optional[TradingCapacity] = None,
    ) -> ArbitrageOpportunity:
        """Run detection on the live top of book of a market."""
        bid_yes, ask_yes, bid_no, ask_no = market.best_prices()
        prices = calculate_effective_prices(bid_yes, ask_yes, bid_no, ask_no)
        return self.detect(
            prices,
            min_profit,
            depth=market.best_depth(),
            capacity=capacity,
            condition_id=market.condition_id,
        )

    def _scale(self, size: Optional[Decimal]) -> Optional[Decimal]:
        """Apply safety factor and max trade size to raw depth."""
        if size is None:
            return None
        scaled = size * self.safety_factor
        if self.max_trade_size is not None:
            scaled = min(scaled, self.max_trade_size)
        return scaled.quantize(SIZE_QUANTUM, rounding=ROUND_DOWN)
