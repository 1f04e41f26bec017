"""
Arbitrage orchestration.
Owns the components for one wallet and exposes scan, start/stop, clearing and
the event stream.
"""

import asyncio
import signal
import time
from decimal import Decimal
from typing import Any, Callable, Optional, TYPE_CHECKING

from .config import Config, MarketConfig, load_config_from_env
from .connector import (
    AuthManager,
    CTFTokenClient,
    MarketFilter,
    MarketInfo,
    PolymarketRestClient,
    PolymarketWebSocketClient,
)
from .connector.retry import retry_with_backoff
from .errors import EngineStateError, InvalidInputError
from .exec import ExecutionEngine, ExecutionResult, LiveMonitor, MonitorState
from .monitor import EventEmitter, Logger, MetricsCollector
from .monitor import events
from .orderbook import MarketBook
from .positions import ClearPositionResult, PositionClearer, RebalanceResult, Rebalancer
from .signals import ArbitrageDetector, ArbitrageOpportunity, MarketScanner, ScanResult

if TYPE_CHECKING:
    from .connector.types import MarketSource, OrderBookSource, OrderClient, TokenClient


class ArbitrageOrchestrator:
    """
    Complement arbitrage engine for one wallet.

    Flow:
    1. scan_markets() ranks markets by current arbitrage margin
    2. start(market) monitors one market's books and, with auto_execute,
       executes qualifying opportunities one at a time
    3. The rebalancer keeps USDC and paired inventory in band meanwhile
    4. stop() tears both down and, with clear_on_stop, clears the market's
       inventory; clear_positions() does the same on demand

    At most one market is monitored at a time. Run statistics belong to this
    instance and are reset on every start().
    """

    def __init__(
        self,
        config: Config,
        market_source: "MarketSource",
        book_source: "OrderBookSource",
        order_client: "OrderClient",
        token_client: Optional["TokenClient"] = None,
        logger: Optional[Logger] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        errors = config.validate()
        if errors:
            raise InvalidInputError(f"Configuration errors: {errors}", details={"errors": errors})

        self.config = config
        self.markets = market_source
        self.books = book_source
        self.orders = order_client
        self.tokens = token_client
        self.clock = clock

        self.logger = logger or Logger(
            name="arb_engine",
            level=config.log_level,
            log_file=config.log_file,
        )
        self.events = EventEmitter(logger=self.logger)
        self.metrics = MetricsCollector()
        self.wallet_lock = asyncio.Lock()

        trading = config.trading
        self.detector = ArbitrageDetector(
            safety_factor=Decimal(str(trading.safety_factor)),
            max_trade_size=Decimal(str(trading.max_trade_size)),
        )
        self.scanner = MarketScanner(
            market_source=market_source,
            book_source=book_source,
            detector=self.detector,
            max_concurrency=config.scanner.max_concurrency,
            fetch_timeout_seconds=config.connection.rest_timeout_seconds,
            max_retries=config.connection.max_retries,
            logger=self.logger,
        )
        self.engine = ExecutionEngine(
            order_client=order_client,
            token_client=token_client,
            book_source=book_source,
            trading_config=trading,
            wallet_lock=self.wallet_lock,
            logger=self.logger,
        )
        self.clearer = PositionClearer(
            token_client=token_client,
            engine=self.engine,
            trading_config=trading,
            wallet_lock=self.wallet_lock,
            logger=self.logger,
        )

        self.monitor: Optional[LiveMonitor] = None
        self.rebalancer: Optional[Rebalancer] = None
        self._lifecycle_lock = asyncio.Lock()
        self._background: set[asyncio.Task] = set()

    # === Events ===

    def on(self, event: str, callback: Callable[[Any], Any]) -> None:
        """Register a listener for started, stopped, opportunity, execution,
        rebalance, error or orderbook_update."""
        if event not in events.EVENT_NAMES:
            raise InvalidInputError(f"Unknown event: {event}")
        self.events.on(event, callback)

    def off(self, event: str, callback: Callable[[Any], Any]) -> None:
        self.events.off(event, callback)

    # === Lifecycle ===

    @property
    def state(self) -> MonitorState:
        if self.monitor is None:
            return MonitorState.IDLE
        return self.monitor.state

    @property
    def is_monitoring(self) -> bool:
        return self.state in (MonitorState.MONITORING, MonitorState.EXECUTING)

    @property
    def active_market(self) -> Optional[MarketInfo]:
        return self.monitor.market if self.is_monitoring else None

    def _require_tokens(self) -> None:
        if self.tokens is None:
            raise EngineStateError("No token client configured; trading is unavailable")

    def _market_filter(self) -> MarketFilter:
        return MarketFilter(
            min_volume_24h=Decimal(str(self.config.scanner.min_volume_24h)),
            limit=self.config.scanner.limit,
        )

    @property
    def min_profit(self) -> Decimal:
        return Decimal(str(self.config.trading.profit_threshold))

    async def scan_markets(self, market_filter: Optional[MarketFilter] = None) -> list[ScanResult]:
        """Every market passing the filter with its classification, best first."""
        return await self.scanner.scan(market_filter or self._market_filter(), self.min_profit)

    async def start(self, market: MarketInfo) -> None:
        """Begin monitoring one market. Raises if already monitoring."""
        self._require_tokens()
        async with self._lifecycle_lock:
            if self.is_monitoring:
                raise EngineStateError(
                    f"Already monitoring {self.monitor.market.condition_id}; stop() first"
                )

            self.metrics.reset_session()
            monitor = LiveMonitor(
                market=market,
                book_source=self.books,
                detector=self.detector,
                engine=self.engine,
                trading_config=self.config.trading,
                token_client=self.tokens,
                on_opportunity=self._on_opportunity,
                on_execution=self._on_execution,
                on_book_update=self._on_book_update,
                on_dropped=self._on_dropped,
                on_error=self._on_error,
                reconnect_delay_seconds=float(self.config.connection.ws_reconnect_delay_seconds),
                logger=self.logger,
            )
            try:
                await monitor.start()
            except Exception as e:
                self._on_error(e)
                raise

            self.monitor = monitor
            self.rebalancer = Rebalancer(
                market=market,
                token_client=self.tokens,
                engine=self.engine,
                config=self.config.rebalancer,
                trading_config=self.config.trading,
                wallet_lock=self.wallet_lock,
                on_result=self._on_rebalance,
                clock=self.clock,
                logger=self.logger,
            )
            self.rebalancer.start()

            self.logger.startup({
                "condition_id": market.condition_id,
                "question": market.question,
                "profit_threshold": str(self.min_profit),
                "auto_execute": self.config.trading.auto_execute,
                "rebalancer": self.config.rebalancer.enabled,
            })
            self.events.emit(events.STARTED, {"market": market})

    async def stop(self) -> None:
        """
        Stop monitoring and rebalancing. No execution starts after this
        returns; one already in flight is allowed to finish first. With
        clear_on_stop the market's remaining inventory is then cleared.
        """
        async with self._lifecycle_lock:
            if self.monitor is None or self.monitor.state is MonitorState.STOPPED:
                return

            market = self.monitor.market
            if self.rebalancer is not None:
                await self.rebalancer.stop()
            await self.monitor.stop()

            for task in list(self._background):
                task.cancel()
            if self._background:
                await asyncio.gather(*self._background, return_exceptions=True)

            if self.config.trading.clear_on_stop:
                await self._clear_on_stop(market)

            self.logger.shutdown()
            self.events.emit(events.STOPPED, {"market": market, "stats": self.get_stats()})
            await self.events.drain()

    async def find_and_start(self, market_filter: Optional[MarketFilter] = None) -> Optional[ScanResult]:
        """Scan, then start on the best actionable market. None if there is none."""
        results = await self.scan_markets(market_filter)
        best = next((r for r in results if r.is_actionable), None)
        if best is None:
            self.logger.info("no_opportunity_found", scanned=len(results))
            return None

        self.logger.info(
            "best_opportunity_selected",
            condition_id=best.market.condition_id,
            kind=best.opportunity.kind.value,
            profit=str(best.opportunity.profit),
        )
        await self.start(best.market)
        return best

    # === Positions ===

    async def resolve_market(self, market_config: MarketConfig) -> MarketInfo:
        """Metadata for a configured market; falls back to the configured ids."""
        try:
            return await retry_with_backoff(
                self.markets.get_market,
                market_config.condition_id,
                max_retries=self.config.connection.max_retries,
                timeout=self.config.connection.rest_timeout_seconds,
                resource="market",
                logger=self.logger,
            )
        except Exception as e:
            self.logger.warning(
                "market_metadata_unavailable",
                condition_id=market_config.condition_id,
                error=repr(e),
            )
            return MarketInfo(
                condition_id=market_config.condition_id,
                yes_token_id=market_config.yes_token_id,
                no_token_id=market_config.no_token_id,
                question=market_config.name,
                tick_size=market_config.tick_size,
                neg_risk=market_config.neg_risk,
            )

    async def clear_positions(
        self,
        markets: Optional[list[MarketInfo]] = None,
        execute: bool = True,
    ) -> list[ClearPositionResult]:
        """
        Clear inventory in the given markets; by default the active market,
        or the configured markets when idle. execute=False only plans.
        """
        self._require_tokens()
        if markets is None:
            if self.active_market is not None:
                markets = [self.active_market]
            else:
                markets = [await self.resolve_market(m) for m in self.config.markets]

        results = await self.clearer.clear_all(markets, execute=execute)
        if execute:
            self.metrics.record_recovered(sum((r.usdc_recovered for r in results), Decimal("0")))
        for result in results:
            if result.errors:
                self.events.emit(events.ERROR, result)
        return results

    async def _clear_on_stop(self, market: MarketInfo) -> None:
        # stop() must always complete; failures surface as error events
        try:
            results = await self.clear_positions([market])
        except Exception as e:
            self.logger.error("clear_on_stop_failed", condition_id=market.condition_id, error=repr(e))
            self.events.emit(events.ERROR, e)
            return
        self.logger.info(
            "inventory_cleared_on_stop",
            condition_id=market.condition_id,
            usdc_recovered=str(sum((r.usdc_recovered for r in results), Decimal("0"))),
        )

    async def rebalance_now(self) -> RebalanceResult:
        """One rebalance check outside the timer (still subject to cooldown)."""
        if self.rebalancer is None or not self.is_monitoring:
            raise EngineStateError("rebalance_now requires an active market")
        result = await self.rebalancer.check_and_rebalance()
        if result.acted:
            self._on_rebalance(result)
        return result

    # === Introspection ===

    def check_opportunity(self) -> Optional[ArbitrageOpportunity]:
        """Classification of the active market's live books, or None."""
        if not self.is_monitoring:
            return None
        return self.monitor.check_opportunity()

    def get_stats(self) -> dict:
        stats = self.metrics.get_session_metrics()
        stats["state"] = self.state.value
        market = self.monitor.market if self.monitor is not None else None
        stats["condition_id"] = market.condition_id if market else None
        stats["rebalance_cooldown_remaining"] = (
            self.rebalancer.cooldown_remaining() if self.rebalancer is not None else 0.0
        )
        return stats

    # === Component callbacks ===

    def _on_opportunity(self, opportunity: ArbitrageOpportunity) -> None:
        self.metrics.record_opportunity()
        legs = opportunity.legs
        self.logger.opportunity_detected(
            condition_id=opportunity.condition_id,
            kind=opportunity.kind.value,
            profit=str(opportunity.profit),
            yes_price=str(legs.yes_price) if legs else "",
            no_price=str(legs.no_price) if legs else "",
            size=str(opportunity.tradable_size),
        )
        self.events.emit(events.OPPORTUNITY, opportunity)

    def _on_execution(self, result: ExecutionResult) -> None:
        self.metrics.record_execution(result)
        self.events.emit(events.EXECUTION, result)

    def _on_book_update(self, book: MarketBook) -> None:
        self.events.emit(events.ORDERBOOK_UPDATE, book)

    def _on_dropped(self, opportunity: ArbitrageOpportunity) -> None:
        self.metrics.record_dropped_trigger()
        self.logger.debug(
            "trigger_dropped",
            condition_id=opportunity.condition_id,
            profit=str(opportunity.profit),
        )

    def _on_error(self, error: Exception) -> None:
        self.metrics.record_stream_error()
        self.events.emit(events.ERROR, error)

    def _on_rebalance(self, result: RebalanceResult) -> None:
        self.metrics.record_rebalance(result)
        self.events.emit(events.REBALANCE, result)
        if self.monitor is not None and self.is_monitoring:
            task = asyncio.ensure_future(self.monitor.refresh_capacity())
            self._background.add(task)
            task.add_done_callback(self._background.discard)


def build_orchestrator(config: Config, logger: Optional[Logger] = None) -> ArbitrageOrchestrator:
    """Wire the live Polymarket adapters. Without a wallet key only scanning works."""
    logger = logger or Logger(name="arb_engine", level=config.log_level, log_file=config.log_file)
    auth = AuthManager.from_config(config) if config.private_key else None

    rest_client = PolymarketRestClient(
        auth_manager=auth,
        base_url=config.connection.clob_rest_url,
        gamma_url=config.connection.gamma_api_url,
        timeout_seconds=config.connection.rest_timeout_seconds,
        max_retries=config.connection.max_retries,
        retry_backoff_base=config.connection.retry_backoff_base,
        signature_type=config.signature_type,
    )
    ws_client = PolymarketWebSocketClient(
        rest_client=rest_client,
        ws_url=config.connection.clob_ws_url,
        ping_interval=config.connection.ws_ping_interval_seconds,
        logger=logger,
    )
    token_client = None
    if config.private_key:
        token_client = CTFTokenClient(
            private_key=config.private_key,
            connection=config.connection,
            receipt_timeout_seconds=config.trading.onchain_timeout_seconds,
            logger=logger,
        )

    return ArbitrageOrchestrator(
        config=config,
        market_source=rest_client,
        book_source=ws_client,
        order_client=rest_client,
        token_client=token_client,
        logger=logger,
    )


async def close_orchestrator(orchestrator: ArbitrageOrchestrator) -> None:
    close = getattr(orchestrator.markets, "close", None)
    if close is not None:
        await close()


async def run_bot(config: Optional[Config] = None) -> Optional[ScanResult]:
    """Find the best market, monitor it until SIGINT/SIGTERM, then stop."""
    config = config or load_config_from_env()
    orchestrator = build_orchestrator(config)

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop_event.set)

    try:
        await orchestrator.orders.ensure_api_credentials()
        selected = await orchestrator.find_and_start()
        if selected is None:
            return None
        await stop_event.wait()
        return selected
    finally:
        await orchestrator.stop()
        orchestrator.logger.info("final_stats", **orchestrator.get_stats())
        await close_orchestrator(orchestrator)
