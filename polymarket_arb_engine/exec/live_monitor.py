"""
Live monitor for one market.

Book events are pumped from the subscription into a queue and applied by a
single consumer task, which re-runs detection on every update. Execution runs
as its own task; while it is in flight, further qualifying updates are
dropped (never replayed) so at most one execution per market exists.

    idle -> monitoring -> executing -> monitoring ... -> stopped
"""

import asyncio
from decimal import Decimal
from enum import Enum
from typing import Any, Callable, Optional, TYPE_CHECKING

from ..connector.retry import retry_with_backoff
from ..connector.types import BookUpdate, MarketInfo, PriceChange
from ..errors import EngineStateError, InvalidInputError
from ..orderbook import MarketBook
from ..signals import ArbitrageOpportunity, TradingCapacity

if TYPE_CHECKING:
    from ..config import TradingConfig
    from ..connector.types import OrderBookSource, TokenClient
    from ..monitor import Logger
    from ..signals import ArbitrageDetector
    from .executor import ExecutionEngine, ExecutionResult


class MonitorState(Enum):
    IDLE = "idle"
    MONITORING = "monitoring"
    EXECUTING = "executing"
    STOPPED = "stopped"


def _noop(*_: Any) -> None:
    return None


# Queued behind whatever the dead stream delivered, so older snapshots still
# waiting in the queue do not count towards the resync
_STREAM_LOST = object()


class LiveMonitor:
    """Subscribes to one market's books and drives detection and execution."""

    def __init__(
        self,
        market: MarketInfo,
        book_source: "OrderBookSource",
        detector: "ArbitrageDetector",
        engine: "ExecutionEngine",
        trading_config: "TradingConfig",
        token_client: Optional["TokenClient"] = None,
        on_opportunity: Callable[[ArbitrageOpportunity], None] = _noop,
        on_execution: Callable[["ExecutionResult"], None] = _noop,
        on_book_update: Callable[[MarketBook], None] = _noop,
        on_dropped: Callable[[ArbitrageOpportunity], None] = _noop,
        on_error: Callable[[Exception], None] = _noop,
        reconnect_delay_seconds: float = 1.0,
        max_reconnect_delay_seconds: float = 30.0,
        logger: Optional["Logger"] = None,
    ):
        self.market = market
        self.books = book_source
        self.detector = detector
        self.engine = engine
        self.trading = trading_config
        self.tokens = token_client
        self.logger = logger

        self._on_opportunity = on_opportunity
        self._on_execution = on_execution
        self._on_book_update = on_book_update
        self._on_dropped = on_dropped
        self._on_error = on_error

        self.reconnect_delay = reconnect_delay_seconds
        self.max_reconnect_delay = max_reconnect_delay_seconds

        self.book = MarketBook(
            condition_id=market.condition_id,
            yes_token_id=market.yes_token_id,
            no_token_id=market.no_token_id,
        )
        self.capacity: Optional[TradingCapacity] = None

        self._state = MonitorState.IDLE
        self._paused = False
        self._resynced: set[str] = set()
        self._queue: asyncio.Queue = asyncio.Queue()
        self._pump_task: Optional[asyncio.Task] = None
        self._consumer_task: Optional[asyncio.Task] = None
        self._exec_task: Optional[asyncio.Task] = None

    @property
    def state(self) -> MonitorState:
        return self._state

    @property
    def is_paused(self) -> bool:
        """Execution is paused until the book is re-synced after a stream error."""
        return self._paused

    @property
    def min_profit(self) -> Decimal:
        return Decimal(str(self.trading.profit_threshold))

    async def start(self) -> None:
        """Load both snapshots, subscribe, and begin monitoring."""
        if self._state is not MonitorState.IDLE:
            raise EngineStateError(f"Monitor already {self._state.value}")

        for token_id in self.market.token_ids:
            snapshot = await retry_with_backoff(
                self.books.get_order_book,
                token_id,
                timeout=self.trading.order_timeout_seconds,
                resource=f"book:{token_id}",
                logger=self.logger,
            )
            self.book.apply_snapshot(snapshot)

        await self.refresh_capacity()

        self._state = MonitorState.MONITORING
        self._consumer_task = asyncio.create_task(self._consume())
        self._pump_task = asyncio.create_task(self._pump())

        if self.logger:
            self.logger.info(
                "monitor_started",
                condition_id=self.market.condition_id,
                auto_execute=self.trading.auto_execute,
            )

    async def stop(self) -> None:
        """
        Stop monitoring. From the moment this is called no new execution is
        triggered; an execution already in flight is allowed to finish.
        """
        if self._state is MonitorState.STOPPED:
            return
        self._state = MonitorState.STOPPED

        tasks = [t for t in (self._pump_task, self._consumer_task) if t is not None]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

        if self._exec_task is not None and not self._exec_task.done():
            await asyncio.gather(self._exec_task, return_exceptions=True)

        if self.logger:
            self.logger.info("monitor_stopped", condition_id=self.market.condition_id)

    async def refresh_capacity(self) -> None:
        """Re-read balances to decide which branches are fundable."""
        if self.tokens is None:
            return
        try:
            snapshot = await retry_with_backoff(
                self.tokens.get_balances,
                self.market,
                timeout=self.trading.order_timeout_seconds,
                resource="balances",
                logger=self.logger,
            )
        except Exception as e:
            if self.logger:
                self.logger.warning(
                    "capacity_refresh_failed",
                    condition_id=self.market.condition_id,
                    error=repr(e),
                )
            return
        self.capacity = TradingCapacity.from_snapshot(
            snapshot, Decimal(str(self.trading.min_trade_size))
        )

    def pause_for_resync(self) -> None:
        """Hold execution until fresh snapshots of both tokens arrive."""
        self._paused = True
        self._resynced.clear()

    def check_opportunity(self) -> Optional[ArbitrageOpportunity]:
        """Classify the current book without triggering anything."""
        if not self.book.is_ready:
            return None
        return self.detector.check_market(self.book, self.min_profit, self.capacity)

    async def _pump(self) -> None:
        """Feed subscription events into the queue, reconnecting on failure."""
        delay = self.reconnect_delay
        while self._state is not MonitorState.STOPPED:
            try:
                async for event in self.books.stream(self.market.token_ids):
                    await self._queue.put(event)
                    delay = self.reconnect_delay
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self.pause_for_resync()
                self._queue.put_nowait(_STREAM_LOST)
                self._on_error(e)
                if self.logger:
                    self.logger.warning(
                        "book_stream_error",
                        condition_id=self.market.condition_id,
                        error=repr(e),
                        retry_in=delay,
                    )
            if self._state is MonitorState.STOPPED:
                break
            await asyncio.sleep(delay)
            delay = min(delay * 2, self.max_reconnect_delay)

    async def _consume(self) -> None:
        while True:
            event = await self._queue.get()
            try:
                self.handle_event(event)
            except Exception as e:
                self._on_error(e)
                if self.logger:
                    self.logger.error(
                        "book_event_error",
                        condition_id=self.market.condition_id,
                        error=repr(e),
                    )
            finally:
                self._queue.task_done()

    def handle_event(self, event: Any) -> None:
        """Apply one book event and re-run detection."""
        if self._state is MonitorState.STOPPED:
            return

        if event is _STREAM_LOST:
            self.pause_for_resync()
            return

        if isinstance(event, BookUpdate):
            if not self.book.apply_snapshot(event.snapshot):
                return
            if self._paused:
                self._mark_resynced(event.asset_id)
        elif isinstance(event, PriceChange):
            if not self.book.apply_price_change(event.asset_id, event.side, event.price, event.size):
                return
        else:
            return

        self._on_book_update(self.book)

        if not self.book.is_ready:
            return

        try:
            opportunity = self.detector.check_market(self.book, self.min_profit, self.capacity)
        except InvalidInputError as e:
            self._on_error(e)
            return

        if not opportunity.is_actionable:
            return

        self._on_opportunity(opportunity)

        if not self.trading.auto_execute or self._paused:
            return

        if self._state is MonitorState.EXECUTING:
            self._on_dropped(opportunity)
            return

        self._state = MonitorState.EXECUTING
        self._exec_task = asyncio.create_task(self._run_execution(opportunity))

    def _mark_resynced(self, token_id: str) -> None:
        self._resynced.add(token_id)
        if not self._resynced.issuperset(self.market.token_ids):
            return
        self._paused = False
        if self.logger:
            self.logger.info("book_resynced", condition_id=self.market.condition_id)

    async def _run_execution(self, opportunity: ArbitrageOpportunity) -> None:
        result = None
        try:
            result = await self.engine.execute(self.market, opportunity)
        except Exception as e:
            self._on_error(e)
            if self.logger:
                self.logger.error(
                    "execution_error",
                    condition_id=self.market.condition_id,
                    error=repr(e),
                )
        finally:
            if self._state is MonitorState.EXECUTING:
                self._state = MonitorState.MONITORING

        if result is not None:
            self._on_execution(result)
            if not result.skipped:
                await self.refresh_capacity()
