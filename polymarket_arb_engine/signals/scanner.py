"""
Market scanner: runs the detector across a filtered universe of markets.

Scanning is read-only, so it may run while a market is being monitored.
"""

import asyncio
import time
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional, TYPE_CHECKING

from ..connector.retry import retry_with_backoff
from ..connector.types import MarketFilter, MarketInfo
from ..orderbook import BookDepth, OrderBookSnapshot
from .effective_price import calculate_effective_prices
from .parity_detector import ArbitrageDetector, ArbitrageOpportunity, OpportunityKind

if TYPE_CHECKING:
    from ..connector.types import MarketSource, OrderBookSource
    from ..monitor import Logger


@dataclass
class ScanResult:
    """One market and how it classified at scan time."""
    market: MarketInfo
    opportunity: ArbitrageOpportunity

    @property
    def is_actionable(self) -> bool:
        return self.opportunity.is_actionable

    def to_dict(self) -> dict:
        data = self.opportunity.to_dict()
        data["question"] = self.market.question
        data["volume_24h"] = str(self.market.volume_24h)
        return data


def rank_results(results: list[ScanResult]) -> list[ScanResult]:
    """Descending profit, with `none` entries after every opportunity."""
    return sorted(
        results,
        key=lambda r: (
            r.opportunity.kind is OpportunityKind.NONE,
            -r.opportunity.profit,
        ),
    )


class MarketScanner:
    """Pulls candidate markets, fetches both books, classifies, ranks."""

    def __init__(
        self,
        market_source: "MarketSource",
        book_source: "OrderBookSource",
        detector: ArbitrageDetector,
        max_concurrency: int = 8,
        fetch_timeout_seconds: float = 10.0,
        max_retries: int = 2,
        logger: Optional["Logger"] = None,
    ):
        self.markets = market_source
        self.books = book_source
        self.detector = detector
        self.max_concurrency = max_concurrency
        self.fetch_timeout = fetch_timeout_seconds
        self.max_retries = max_retries
        self.logger = logger

    async def scan(
        self,
        market_filter: MarketFilter,
        min_profit: Decimal,
    ) -> list[ScanResult]:
        """
        Classify every market passing the filter.

        A market whose books cannot be fetched is logged and left out; it never
        aborts the scan. Failure to list markets at all is raised.
        """
        started = time.time()
        candidates = await retry_with_backoff(
            self.markets.list_markets,
            market_filter,
            max_retries=self.max_retries,
            timeout=self.fetch_timeout,
            resource="markets",
            logger=self.logger,
        )

        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def _bounded(market: MarketInfo) -> Optional[ScanResult]:
            async with semaphore:
                return await self._scan_market(market, min_profit)

        outcomes = await asyncio.gather(*(_bounded(m) for m in candidates))
        results = rank_results([r for r in outcomes if r is not None])

        if self.logger:
            self.logger.info(
                "scan_complete",
                candidates=len(candidates),
                classified=len(results),
                opportunities=sum(1 for r in results if r.is_actionable),
                elapsed_ms=round((time.time() - started) * 1000, 1),
            )

        return results

    async def _scan_market(
        self,
        market: MarketInfo,
        min_profit: Decimal,
    ) -> Optional[ScanResult]:
        try:
            yes_book, no_book = await asyncio.gather(
                self._fetch_book(market.yes_token_id),
                self._fetch_book(market.no_token_id),
            )
            return ScanResult(
                market=market,
                opportunity=self.classify(market, yes_book, no_book, min_profit),
            )
        except Exception as e:
            if self.logger:
                self.logger.warning(
                    "scan_market_failed",
                    condition_id=market.condition_id,
                    error=repr(e),
                )
            return None

    async def _fetch_book(self, token_id: str) -> OrderBookSnapshot:
        return await retry_with_backoff(
            self.books.get_order_book,
            token_id,
            max_retries=self.max_retries,
            timeout=self.fetch_timeout,
            resource=f"book:{token_id}",
            logger=self.logger,
        )

    def classify(
        self,
        market: MarketInfo,
        yes_book: OrderBookSnapshot,
        no_book: OrderBookSnapshot,
        min_profit: Decimal,
    ) -> ArbitrageOpportunity:
        """Detector run over two book snapshots."""
        yes_bid, yes_ask = yes_book.best_bid, yes_book.best_ask
        no_bid, no_ask = no_book.best_bid, no_book.best_ask

        prices = calculate_effective_prices(
            yes_bid.price if yes_bid else None,
            yes_ask.price if yes_ask else None,
            no_bid.price if no_bid else None,
            no_ask.price if no_ask else None,
        )
        depth = BookDepth(
            bid_yes=yes_bid.size if yes_bid else None,
            ask_yes=yes_ask.size if yes_ask else None,
            bid_no=no_bid.size if no_bid else None,
            ask_no=no_ask.size if no_ask else None,
        )
        return self.detector.detect(
            prices,
            min_profit,
            depth=depth,
            condition_id=market.condition_id,
        )
