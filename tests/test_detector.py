"""Tests for ArbitrageDetector classification and sizing."""

from decimal import Decimal

import pytest

from polymarket_arb_engine.connector import PositionSnapshot
from polymarket_arb_engine.errors import InvalidInputError
from polymarket_arb_engine.orderbook import BookDepth, MarketBook, OrderBookSnapshot
from polymarket_arb_engine.signals import (
    ArbitrageDetector,
    OpportunityKind,
    TradingCapacity,
    calculate_effective_prices,
)

D = Decimal
MIN_PROFIT = D("0.005")


@pytest.fixture
def detector():
    return ArbitrageDetector(safety_factor=D("0.8"), max_trade_size=D("100"))


@pytest.fixture
def cheap_pair():
    """ask YES 0.40, bid NO 0.55, ask NO 0.58, bid YES 0.45: pair costs 0.95."""
    return calculate_effective_prices(D("0.45"), D("0.40"), D("0.55"), D("0.58"))


def test_long_detected(detector, cheap_pair):
    opp = detector.detect(cheap_pair, MIN_PROFIT)

    assert opp.kind is OpportunityKind.LONG
    assert opp.profit == D("0.05")
    assert opp.legs.yes_price == D("0.40")
    assert opp.legs.no_price == D("0.55")
    assert opp.tradable_size is None
    assert opp.is_actionable


def test_short_when_wallet_cannot_go_long(detector, cheap_pair):
    opp = detector.detect(cheap_pair, MIN_PROFIT, capacity=TradingCapacity(can_long=False))

    assert opp.kind is OpportunityKind.SHORT
    assert opp.profit == D("0.05")
    assert opp.legs.yes_price == D("0.45")
    assert opp.legs.no_price == D("0.60")


def test_long_wins_tie_when_both_are_fundable(detector, cheap_pair):
    opp = detector.detect(cheap_pair, MIN_PROFIT, capacity=TradingCapacity())
    assert opp.kind is OpportunityKind.LONG


def test_no_capacity_means_no_opportunity(detector, cheap_pair):
    opp = detector.detect(
        cheap_pair, MIN_PROFIT, capacity=TradingCapacity(can_long=False, can_short=False)
    )
    assert opp.kind is OpportunityKind.NONE
    assert opp.legs is None


def test_wide_asks_with_crossing_bids_are_not_an_opportunity(detector):
    # Raw asks look absurd but the mirrored bids put the pair at 1.01
    prices = calculate_effective_prices(D("0.50"), D("0.999"), D("0.49"), D("0.999"))
    opp = detector.detect(prices, MIN_PROFIT)

    assert opp.kind is OpportunityKind.NONE
    assert opp.profit == D("-0.01")
    assert opp.tradable_size == D("0")


def test_profit_equal_to_threshold_qualifies(detector):
    prices = calculate_effective_prices(None, D("0.495"), None, D("0.50"))
    opp = detector.detect(prices, D("0.005"))
    assert opp.kind is OpportunityKind.LONG


def test_profit_below_threshold_does_not_qualify(detector, cheap_pair):
    opp = detector.detect(cheap_pair, D("0.06"))
    assert opp.kind is OpportunityKind.NONE
    assert opp.profit == D("0.05")


def test_negative_threshold_rejected(detector, cheap_pair):
    with pytest.raises(InvalidInputError):
        detector.detect(cheap_pair, D("-0.01"))


def test_invalid_safety_factor_rejected():
    with pytest.raises(InvalidInputError):
        ArbitrageDetector(safety_factor=D("0"))
    with pytest.raises(InvalidInputError):
        ArbitrageDetector(safety_factor=D("1.5"))


def test_size_uses_depth_behind_each_winning_quote(detector, cheap_pair):
    # buy YES is direct (ask_yes depth); buy NO is mirrored (bid_yes depth)
    depth = BookDepth(bid_yes=D("30"), ask_yes=D("500"), bid_no=D("999"), ask_no=D("999"))
    opp = detector.detect(cheap_pair, MIN_PROFIT, depth=depth)

    assert opp.tradable_size == D("24.00")  # 30 * 0.8


def test_size_capped_by_max_trade_size(detector, cheap_pair):
    depth = BookDepth(bid_yes=D("1000"), ask_yes=D("1000"), bid_no=D("1000"), ask_no=D("1000"))
    opp = detector.detect(cheap_pair, MIN_PROFIT, depth=depth)

    assert opp.tradable_size == D("100")


def test_size_rounds_down_to_cents(detector, cheap_pair):
    depth = BookDepth(bid_yes=D("12.345"), ask_yes=D("500"))
    opp = detector.detect(cheap_pair, MIN_PROFIT, depth=depth)

    assert opp.tradable_size == D("9.87")  # 9.876 rounded down


def test_capacity_from_balances():
    funded = TradingCapacity.from_snapshot(PositionSnapshot(D("100"), D("0"), D("0")))
    assert funded.can_long and not funded.can_short

    inventory = TradingCapacity.from_snapshot(
        PositionSnapshot(D("0"), D("20"), D("8")), min_trade_size=D("5")
    )
    assert not inventory.can_long and inventory.can_short

    dust = TradingCapacity.from_snapshot(
        PositionSnapshot(D("0"), D("3"), D("3")), min_trade_size=D("5")
    )
    assert not dust.can_short


def test_check_market_reads_live_book(detector):
    book = MarketBook(condition_id="0xabc", yes_token_id="y", no_token_id="n")
    book.apply_snapshot(OrderBookSnapshot.from_raw("y", [("0.38", "100")], [("0.40", "50")]))
    book.apply_snapshot(OrderBookSnapshot.from_raw("n", [("0.55", "100")], [("0.57", "40")]))

    opp = detector.check_market(book, MIN_PROFIT)

    assert opp.kind is OpportunityKind.LONG
    assert opp.condition_id == "0xabc"
    assert opp.profit == D("0.03")
    assert opp.tradable_size == D("32.00")  # min(50, 40) * 0.8

    data = opp.to_dict()
    assert data["kind"] == "long"
    assert data["yes_price"] == "0.40"
