"""Tests for the live monitor: single-flight execution and lifecycle."""

import asyncio
from decimal import Decimal

import pytest

from polymarket_arb_engine.connector import BookUpdate, PriceChange
from polymarket_arb_engine.errors import EngineStateError
from polymarket_arb_engine.exec import ExecutionResult, ExecutionStatus, LiveMonitor, MonitorState
from polymarket_arb_engine.orderbook import OrderBookSnapshot
from polymarket_arb_engine.signals import ArbitrageDetector, OpportunityKind

from .helpers import NO_TOKEN, YES_TOKEN, wait_until

D = Decimal


class GatedEngine:
    """Stands in for ExecutionEngine; each execute() blocks until released."""

    def __init__(self):
        self.gate = asyncio.Event()
        self.calls = []

    async def execute(self, market, opportunity):
        self.calls.append(opportunity)
        await self.gate.wait()
        return ExecutionResult(
            execution_id=f"exec-{len(self.calls)}",
            condition_id=market.condition_id,
            kind=opportunity.kind,
            yes_leg=None,
            no_leg=None,
            status=ExecutionStatus.COMPLETE,
            success=True,
        )


@pytest.fixture
def gated_engine():
    return GatedEngine()


@pytest.fixture
def recorder():
    return {"opportunities": [], "executions": [], "dropped": [], "errors": [], "updates": 0}


@pytest.fixture
async def make_monitor(exchange, market, trading_config, logger, recorder):
    created = []

    def _make(engine, auto_execute=True):
        trading_config.auto_execute = auto_execute

        def _count_update(_book):
            recorder["updates"] += 1

        monitor = LiveMonitor(
            market=market,
            book_source=exchange,
            detector=ArbitrageDetector(max_trade_size=D("100")),
            engine=engine,
            trading_config=trading_config,
            token_client=exchange,
            on_opportunity=recorder["opportunities"].append,
            on_execution=recorder["executions"].append,
            on_book_update=_count_update,
            on_dropped=recorder["dropped"].append,
            on_error=recorder["errors"].append,
            reconnect_delay_seconds=0.01,
            max_reconnect_delay_seconds=0.05,
            logger=logger,
        )
        created.append(monitor)
        return monitor

    yield _make

    for monitor in created:
        await monitor.stop()


async def test_trigger_during_execution_is_dropped(long_books, make_monitor, gated_engine, recorder):
    monitor = make_monitor(gated_engine)
    await monitor.start()

    await wait_until(lambda: monitor.state is MonitorState.EXECUTING)
    long_books.push_price_change(YES_TOKEN, "SELL", "0.39", "20")
    # The NO snapshot and this change both arrive mid-execution
    await wait_until(lambda: len(recorder["dropped"]) >= 2)

    gated_engine.gate.set()
    await wait_until(lambda: monitor.state is MonitorState.MONITORING)

    # Dropped triggers are never replayed
    assert len(gated_engine.calls) == 1
    assert len(recorder["executions"]) == 1
    await monitor.stop()


async def test_stop_blocks_new_triggers_and_waits_for_inflight(long_books, make_monitor, gated_engine, recorder):
    monitor = make_monitor(gated_engine)
    await monitor.start()
    await wait_until(lambda: monitor.state is MonitorState.EXECUTING)

    stopping = asyncio.create_task(monitor.stop())
    await asyncio.sleep(0.05)

    assert monitor.state is MonitorState.STOPPED
    assert not stopping.done()

    # Nothing applied after stop triggers an execution
    monitor.handle_event(BookUpdate(snapshot=OrderBookSnapshot.from_raw(
        YES_TOKEN, [("0.10", "100")], [("0.20", "100")]
    )))

    gated_engine.gate.set()
    await stopping

    assert len(gated_engine.calls) == 1
    assert len(recorder["executions"]) == 1
    assert monitor.state is MonitorState.STOPPED


async def test_monitor_only_mode_never_executes(long_books, make_monitor, gated_engine, recorder):
    monitor = make_monitor(gated_engine, auto_execute=False)
    await monitor.start()

    await wait_until(lambda: len(recorder["opportunities"]) >= 2)

    assert gated_engine.calls == []
    assert recorder["opportunities"][0].kind is OpportunityKind.LONG
    assert monitor.check_opportunity().kind is OpportunityKind.LONG
    await monitor.stop()


async def test_price_changes_drive_detection(flat_books, make_monitor, gated_engine, recorder):
    monitor = make_monitor(gated_engine, auto_execute=False)
    await monitor.start()
    await wait_until(lambda: recorder["updates"] >= 2)
    assert recorder["opportunities"] == []

    # A cheap YES ask opens a long: 0.30 + 0.56 = 0.86
    flat_books.push_price_change(YES_TOKEN, "SELL", "0.30", "50")
    await wait_until(lambda: len(recorder["opportunities"]) == 1)

    opp = recorder["opportunities"][0]
    assert opp.kind is OpportunityKind.LONG
    assert opp.legs.yes_price == D("0.30")
    await monitor.stop()


async def test_capacity_routes_to_short(long_books, make_monitor, gated_engine, recorder):
    long_books.set_balances(usdc=D("0"), **{YES_TOKEN: "40", NO_TOKEN: "40"})
    monitor = make_monitor(gated_engine, auto_execute=False)
    await monitor.start()

    assert monitor.capacity.can_short and not monitor.capacity.can_long
    assert monitor.check_opportunity().kind is OpportunityKind.SHORT
    await monitor.stop()


async def test_stream_error_pauses_until_resync(long_books, make_monitor, gated_engine, recorder):
    monitor = make_monitor(gated_engine, auto_execute=False)
    await monitor.start()
    await wait_until(lambda: recorder["updates"] >= 2)

    long_books.fail("stream", ConnectionError("ws dropped"))
    long_books.close_streams()
    await wait_until(lambda: monitor.is_paused)
    assert any(isinstance(e, ConnectionError) for e in recorder["errors"])

    del long_books.failures["stream"]
    # Reconnect delivers fresh snapshots, which lift the pause
    await wait_until(lambda: not monitor.is_paused)
    await monitor.stop()


async def test_resync_waits_for_both_books(long_books, make_monitor, gated_engine, recorder):
    gated_engine.gate.set()
    monitor = make_monitor(gated_engine)
    monitor.pause_for_resync()

    monitor.handle_event(BookUpdate(snapshot=await long_books.get_order_book(YES_TOKEN)))
    # Same token again still leaves NO stale
    monitor.handle_event(BookUpdate(snapshot=await long_books.get_order_book(YES_TOKEN)))
    assert monitor.is_paused

    monitor.handle_event(BookUpdate(snapshot=await long_books.get_order_book(NO_TOKEN)))
    assert not monitor.is_paused

    await wait_until(lambda: len(recorder["executions"]) >= 1)
    assert len(gated_engine.calls) == 1


async def test_price_changes_do_not_lift_pause(long_books, make_monitor, gated_engine, recorder):
    monitor = make_monitor(gated_engine)
    monitor.pause_for_resync()

    monitor.handle_event(PriceChange(asset_id=NO_TOKEN, price=D("0.56"), size=D("4"), side="BUY"))
    monitor.handle_event(BookUpdate(snapshot=await long_books.get_order_book(YES_TOKEN)))

    assert monitor.is_paused
    assert gated_engine.calls == []


async def test_start_twice_raises(long_books, make_monitor, gated_engine):
    monitor = make_monitor(gated_engine, auto_execute=False)
    await monitor.start()

    with pytest.raises(EngineStateError):
        await monitor.start()
    await monitor.stop()


async def test_real_engine_executes_once_and_refreshes_capacity(long_books, make_monitor, engine, recorder):
    monitor = make_monitor(engine)
    await monitor.start()

    await wait_until(lambda: len(recorder["executions"]) >= 1)
    await wait_until(lambda: monitor.state is MonitorState.MONITORING)

    result = recorder["executions"][0]
    assert result.success
    assert result.kind is OpportunityKind.LONG
    assert long_books.usdc_balance > D("1000")
    await monitor.stop()
