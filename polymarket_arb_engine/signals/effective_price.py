"""
Mirror-corrected effective prices for a YES/NO market.

Buying YES at P is the same trade as selling NO at 1 - P, so both books carry
the same liquidity. The best executable price for each of the four actions is
the better of the direct quote and the mirrored quote from the other book.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from ..errors import InvalidInputError

ONE = Decimal("1")
ZERO = Decimal("0")


@dataclass(frozen=True)
class EffectivePrices:
    """
    Best executable prices after the mirror substitution.

    A value is None only when both the direct and the mirrored quote are absent.
    """
    buy_yes: Optional[Decimal]
    buy_no: Optional[Decimal]
    sell_yes: Optional[Decimal]
    sell_no: Optional[Decimal]

    # Which quote backs each price: True when the mirrored book won.
    buy_yes_mirrored: bool = False
    buy_no_mirrored: bool = False
    sell_yes_mirrored: bool = False
    sell_no_mirrored: bool = False

    @property
    def long_cost(self) -> Optional[Decimal]:
        """Cost of one YES + one NO."""
        if self.buy_yes is None or self.buy_no is None:
            return None
        return self.buy_yes + self.buy_no

    @property
    def short_proceeds(self) -> Optional[Decimal]:
        """Proceeds of selling one YES + one NO."""
        if self.sell_yes is None or self.sell_no is None:
            return None
        return self.sell_yes + self.sell_no


def _validate(name: str, price: Optional[Decimal]) -> Optional[Decimal]:
    if price is None:
        return None
    if not isinstance(price, Decimal):
        try:
            price = Decimal(str(price))
        except ArithmeticError as e:
            raise InvalidInputError(f"{name} is not a number: {price!r}") from e
    if not price.is_finite() or price < ZERO or price > ONE:
        raise InvalidInputError(
            f"{name} must be a probability in [0, 1], got {price}",
            details={"field": name, "value": str(price)},
        )
    return price


def _best_buy(direct: Optional[Decimal], mirror_bid: Optional[Decimal]) -> tuple[Optional[Decimal], bool]:
    """min(direct ask, 1 - other bid); an absent quote never wins."""
    mirrored = ONE - mirror_bid if mirror_bid is not None else None
    if direct is None:
        return mirrored, mirrored is not None
    if mirrored is None or direct <= mirrored:
        return direct, False
    return mirrored, True


def _best_sell(direct: Optional[Decimal], mirror_ask: Optional[Decimal]) -> tuple[Optional[Decimal], bool]:
    """max(direct bid, 1 - other ask); an absent quote never wins."""
    mirrored = ONE - mirror_ask if mirror_ask is not None else None
    if direct is None:
        return mirrored, mirrored is not None
    if mirrored is None or direct >= mirrored:
        return direct, False
    return mirrored, True


def calculate_effective_prices(
    bid_yes: Optional[Decimal],
    ask_yes: Optional[Decimal],
    bid_no: Optional[Decimal],
    ask_no: Optional[Decimal],
) -> EffectivePrices:
    """
    Convert raw best bid/ask of both books into effective prices.

        buy_yes  = min(ask_yes, 1 - bid_no)
        buy_no   = min(ask_no,  1 - bid_yes)
        sell_yes = max(bid_yes, 1 - ask_no)
        sell_no  = max(bid_no,  1 - ask_yes)

    Raises InvalidInputError for prices outside [0, 1].
    """
    bid_yes = _validate("bid_yes", bid_yes)
    ask_yes = _validate("ask_yes", ask_yes)
    bid_no = _validate("bid_no", bid_no)
    ask_no = _validate("ask_no", ask_no)

    buy_yes, buy_yes_mirrored = _best_buy(ask_yes, bid_no)
    buy_no, buy_no_mirrored = _best_buy(ask_no, bid_yes)
    sell_yes, sell_yes_mirrored = _best_sell(bid_yes, ask_no)
    sell_no, sell_no_mirrored = _best_sell(bid_no, ask_yes)

    return EffectivePrices(
        buy_yes=buy_yes,
        buy_no=buy_no,
        sell_yes=sell_yes,
        sell_no=sell_no,
        buy_yes_mirrored=buy_yes_mirrored,
        buy_no_mirrored=buy_no_mirrored,
        sell_yes_mirrored=sell_yes_mirrored,
        sell_no_mirrored=sell_no_mirrored,
    )
