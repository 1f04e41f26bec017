"""Tests for two-leg execution against the paper exchange."""

import asyncio
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest

from polymarket_arb_engine.connector import OrderResult, OrderStatus, PositionSnapshot
from polymarket_arb_engine.errors import ExecutionFailure
from polymarket_arb_engine.exec import ExecutionEngine, ExecutionStatus, LegStatus
from polymarket_arb_engine.orderbook import MarketBook
from polymarket_arb_engine.signals import (
    ArbitrageDetector,
    OpportunityKind,
    TradingCapacity,
    calculate_effective_prices,
)

from .helpers import NO_TOKEN, YES_TOKEN

D = Decimal


async def _detect(exchange, market, capacity=None):
    book = MarketBook(market.condition_id, market.yes_token_id, market.no_token_id)
    for token_id in market.token_ids:
        book.apply_snapshot(await exchange.get_order_book(token_id))
    detector = ArbitrageDetector(safety_factor=D("0.8"), max_trade_size=D("100"))
    return detector.check_market(book, D("0.005"), capacity)


async def test_complete_long_merges_pairs(long_books, engine, market):
    opp = await _detect(long_books, market)
    assert opp.kind is OpportunityKind.LONG

    result = await engine.execute(market, opp)

    assert result.status is ExecutionStatus.COMPLETE
    assert result.success
    assert result.filled_yes_size == D("80")
    assert result.filled_no_size == D("80")
    assert result.profit == D("2.40")  # 80 pairs * (1 - 0.97)
    assert result.merged_size == D("80")
    # Bought 80 pairs for 77.60, merged back for 80
    assert long_books.usdc_balance == D("1002.40")
    assert long_books.token_balance(YES_TOKEN) == 0
    assert long_books.token_balance(NO_TOKEN) == 0
    assert not engine.is_executing()


async def test_long_without_auto_merge_keeps_pairs(long_books, engine, market, trading_config):
    trading_config.auto_merge_long = False
    opp = await _detect(long_books, market)

    result = await engine.execute(market, opp)

    assert result.merged_size == 0
    assert "merge" not in long_books.call_names()
    assert long_books.token_balance(YES_TOKEN) == D("80")


async def test_size_limited_by_usdc(long_books, engine, market):
    long_books.set_balances(usdc=D("19.40"))
    opp = await _detect(long_books, market)

    result = await engine.execute(market, opp)

    assert result.filled_yes_size == D("20")  # 19.40 / 0.97


async def test_size_below_minimum_is_skipped(long_books, engine, market):
    long_books.set_balances(usdc=D("3"))
    opp = await _detect(long_books, market)

    result = await engine.execute(market, opp)

    assert result.status is ExecutionStatus.SKIPPED
    assert result.error == "size_below_minimum"
    assert "place_order" not in long_books.call_names()


async def test_partial_fill_sells_excess(long_books, engine, market, trading_config):
    trading_config.order_type = "FAK"
    long_books.fill_ratios[NO_TOKEN] = D("0.5")
    opp = await _detect(long_books, market)

    result = await engine.execute(market, opp)

    assert result.no_leg.status is LegStatus.PARTIAL
    assert result.status is ExecutionStatus.PARTIAL
    assert result.correction_applied
    assert result.correction_size == D("40")
    sells = [o for o in long_books.orders if o.request.side.value == "SELL"]
    assert len(sells) == 1
    assert sells[0].request.token_id == YES_TOKEN
    # 40 matched pairs merged, 40 excess YES sold: nothing left open
    assert long_books.token_balance(YES_TOKEN) == 0
    assert long_books.token_balance(NO_TOKEN) == 0


async def test_small_imbalance_left_open(long_books, engine, market, trading_config):
    trading_config.order_type = "FAK"
    trading_config.auto_merge_long = False
    long_books.fill_ratios[NO_TOKEN] = D("0.95")  # 76 of 80
    opp = await _detect(long_books, market)

    result = await engine.execute(market, opp)

    assert result.imbalance == D("4")
    assert not result.correction_applied
    assert long_books.token_balance(YES_TOKEN) == D("80")


async def test_rejected_leg_fails_and_unwinds(long_books, engine, market):
    long_books.rejections[NO_TOKEN] = "market not tradable"
    opp = await _detect(long_books, market)

    result = await engine.execute(market, opp)

    assert result.status is ExecutionStatus.FAILED
    assert not result.success
    assert result.no_leg.failed
    assert "market not tradable" in result.error
    assert result.correction_applied
    assert long_books.token_balance(YES_TOKEN) == 0


async def test_fok_leg_cancelled_when_liquidity_moves(long_books, engine, market):
    opp = await _detect(long_books, market)
    # NO ask lifts before the order lands
    long_books.set_book(NO_TOKEN, bids=[("0.55", "100")], asks=[("0.70", "100")])

    result = await engine.execute(market, opp)

    assert result.no_leg.status is LegStatus.CANCELLED
    assert result.yes_leg.status is LegStatus.FILLED
    assert result.status is ExecutionStatus.FAILED
    assert result.error == "no_fill"
    assert result.correction_applied
    assert long_books.token_balance(YES_TOKEN) == 0


async def test_order_exception_recorded_on_leg(long_books, engine, market):
    long_books.fail("place_order", ConnectionError("socket closed"))
    opp = await _detect(long_books, market)

    result = await engine.execute(market, opp)

    assert result.status is ExecutionStatus.FAILED
    assert result.yes_leg.failed and result.no_leg.failed
    assert "socket closed" in result.error


async def test_short_sells_split_inventory(long_books, engine, market):
    long_books.set_balances(usdc=D("0"), **{YES_TOKEN: "50", NO_TOKEN: "50"})
    opp = await _detect(long_books, market, TradingCapacity(can_long=False, can_short=True))
    assert opp.kind is OpportunityKind.SHORT

    result = await engine.execute(market, opp)

    assert result.status is ExecutionStatus.COMPLETE
    assert result.filled_yes_size == D("50")
    assert result.profit == D("1.50")  # 50 * (0.43 + 0.60 - 1)
    assert long_books.usdc_balance == D("51.50")
    assert "merge" not in long_books.call_names()


async def test_no_opportunity_is_skipped(flat_books, engine, market):
    opp = await _detect(flat_books, market)

    result = await engine.execute(market, opp)

    assert result.skipped
    assert result.error == "no_opportunity"


async def test_concurrent_execution_on_same_market_is_skipped(long_books, engine, market):
    opp = await _detect(long_books, market)
    gate = asyncio.Event()
    original = long_books.place_order

    async def slow_place(request):
        await gate.wait()
        return await original(request)

    long_books.place_order = slow_place
    first = asyncio.create_task(engine.execute(market, opp))
    await asyncio.sleep(0.01)

    second = await engine.execute(market, opp)
    gate.set()
    await first

    assert second.skipped
    assert second.error == "execution_in_flight"


async def test_sell_at_best_bid_without_bid_raises(exchange, engine, market):
    exchange.set_book(YES_TOKEN, bids=[], asks=[("0.60", "10")])
    exchange.set_book(NO_TOKEN, bids=[], asks=[])

    with pytest.raises(ExecutionFailure):
        await engine.sell_at_best_bid(market, YES_TOKEN, D("5"))


async def test_order_timeout_marks_leg_failed(long_books, market, trading_config, logger):
    trading_config.order_timeout_seconds = 0.05

    async def hang(request):
        await asyncio.sleep(10)

    orders = AsyncMock()
    orders.place_order.side_effect = hang
    engine = ExecutionEngine(orders, long_books, long_books, trading_config, logger=logger)
    opp = await _detect(long_books, market)

    result = await engine.execute(market, opp)

    assert result.status is ExecutionStatus.FAILED
    assert "timed out" in result.yes_leg.error


def test_plan_size_caps(engine, market):
    prices = calculate_effective_prices(D("0.38"), D("0.40"), D("0.55"), D("0.57"))
    opp = ArbitrageDetector().detect(prices, D("0.005"))  # no depth: size unknown

    size = engine.plan_size(opp, PositionSnapshot(D("1000"), D("0"), D("0")))
    assert size == D("100")  # max_trade_size

    size = engine.plan_size(opp, PositionSnapshot(D("9.70"), D("0"), D("0")))
    assert size == D("10")


def test_order_result_filled_flag():
    assert OrderResult(order_id="x", status=OrderStatus.FILLED).is_filled
    assert not OrderResult(order_id="x", status=OrderStatus.PARTIAL).is_filled
