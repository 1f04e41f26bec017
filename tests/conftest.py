"""
Shared fixtures: one binary market on a paper exchange with a funded wallet.
"""

import asyncio
import io
from decimal import Decimal

import pytest

from polymarket_arb_engine.config import RebalancerConfig, TradingConfig
from polymarket_arb_engine.connector import MarketInfo, PaperExchange
from polymarket_arb_engine.exec import ExecutionEngine
from polymarket_arb_engine.monitor import Logger

from .helpers import CONDITION_ID, NO_TOKEN, YES_TOKEN


@pytest.fixture
def market():
    """Binary market with enough volume to pass the default scan filter."""
    return MarketInfo(
        condition_id=CONDITION_ID,
        yes_token_id=YES_TOKEN,
        no_token_id=NO_TOKEN,
        question="Will it rain in Lisbon tomorrow?",
        volume_24h=Decimal("25000"),
    )


@pytest.fixture
def exchange(market):
    """Paper exchange holding the market and 1000 USDC."""
    paper = PaperExchange(usdc_balance=Decimal("1000"))
    paper.add_market(market)
    return paper


@pytest.fixture
def long_books(exchange):
    """
    YES 0.38/0.40, NO 0.55/0.57, 100 shares everywhere.

    buy YES 0.40 + buy NO 0.57 = 0.97 (3% long); the mirrored bids give
    sell YES 0.43 + sell NO 0.60 = 1.03 for the short.
    """
    exchange.set_book(YES_TOKEN, bids=[("0.38", "100")], asks=[("0.40", "100")])
    exchange.set_book(NO_TOKEN, bids=[("0.55", "100")], asks=[("0.57", "100")])
    return exchange


@pytest.fixture
def flat_books(exchange):
    """Books whose pair costs more than 1 to buy and fetches less than 1 to sell."""
    exchange.set_book(YES_TOKEN, bids=[("0.44", "100")], asks=[("0.56", "100")])
    exchange.set_book(NO_TOKEN, bids=[("0.44", "100")], asks=[("0.56", "100")])
    return exchange


@pytest.fixture
def log_stream():
    return io.StringIO()


@pytest.fixture
def logger(log_stream):
    return Logger(name="arb_engine_test", level="DEBUG", stream=log_stream)


@pytest.fixture
def trading_config():
    return TradingConfig(order_timeout_seconds=2.0, onchain_timeout_seconds=2.0)


@pytest.fixture
def rebalancer_config():
    return RebalancerConfig(rebalance_interval_seconds=0.01, rebalance_cooldown_seconds=60.0)


@pytest.fixture
def engine(exchange, trading_config, logger):
    return ExecutionEngine(
        order_client=exchange,
        token_client=exchange,
        book_source=exchange,
        trading_config=trading_config,
        wallet_lock=asyncio.Lock(),
        logger=logger,
    )


@pytest.fixture
def fake_clock():
    """Manually advanced monotonic clock."""

    class FakeClock:
        def __init__(self):
            self.now = 1000.0

        def __call__(self) -> float:
            return self.now

        def advance(self, seconds: float) -> None:
            self.now += seconds

    return FakeClock()

