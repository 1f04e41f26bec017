"""
Run statistics for the arbitrage loop.

One MetricsCollector per orchestrator instance; nothing here is module-global,
so two orchestrators in one process never share counters.
"""

import time
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from ..exec import ExecutionResult
    from ..positions import RebalanceResult


@dataclass
class RunStats:
    """Counters and timestamps for one run."""
    start_time: float = field(default_factory=time.time)

    # Detection
    opportunities_seen: int = 0
    triggers_dropped: int = 0  # qualifying updates that arrived mid-execution

    # Execution
    executions_attempted: int = 0
    executions_succeeded: int = 0
    executions_failed: int = 0
    executions_skipped: int = 0
    corrections_applied: int = 0

    # P&L
    total_profit: Decimal = Decimal("0")
    total_volume: Decimal = Decimal("0")

    # Capital
    rebalances: int = 0
    usdc_recovered: Decimal = Decimal("0")

    # Connection
    stream_errors: int = 0

    # Timestamps
    last_opportunity_at: Optional[float] = None
    last_execution_at: Optional[float] = None
    last_rebalance_at: Optional[float] = None


class MetricsCollector:
    """Aggregates ExecutionResults and rebalance outcomes into RunStats."""

    def __init__(self):
        self._stats = RunStats()
        self._execution_times: list[float] = []

    @property
    def stats(self) -> RunStats:
        return self._stats

    def record_opportunity(self) -> None:
        self._stats.opportunities_seen += 1
        self._stats.last_opportunity_at = time.time()

    def record_dropped_trigger(self) -> None:
        self._stats.triggers_dropped += 1

    def record_execution(self, result: "ExecutionResult") -> None:
        """Fold one execution result into the running totals."""
        if result.skipped:
            self._stats.executions_skipped += 1
            return

        self._stats.executions_attempted += 1
        self._stats.last_execution_at = result.completed_at or time.time()

        if result.success:
            self._stats.executions_succeeded += 1
        else:
            self._stats.executions_failed += 1

        if result.correction_applied:
            self._stats.corrections_applied += 1

        self._stats.total_profit += result.profit
        self._stats.total_volume += result.notional

        if result.completed_at:
            self._execution_times.append((result.completed_at - result.created_at) * 1000)

    def record_rebalance(self, result: "RebalanceResult") -> None:
        if not result.acted:
            return
        self._stats.rebalances += 1
        self._stats.last_rebalance_at = result.timestamp

    def record_recovered(self, amount: Decimal) -> None:
        self._stats.usdc_recovered += amount

    def record_stream_error(self) -> None:
        self._stats.stream_errors += 1

    @property
    def avg_execution_time_ms(self) -> float:
        if not self._execution_times:
            return 0.0
        return sum(self._execution_times) / len(self._execution_times)

    def get_session_metrics(self) -> dict:
        """Current stats as a JSON-friendly dict."""
        s = self._stats
        return {
            "uptime_seconds": time.time() - s.start_time,
            "opportunities_seen": s.opportunities_seen,
            "triggers_dropped": s.triggers_dropped,
            "executions_attempted": s.executions_attempted,
            "executions_succeeded": s.executions_succeeded,
            "executions_failed": s.executions_failed,
            "executions_skipped": s.executions_skipped,
            "corrections_applied": s.corrections_applied,
            "success_rate": (
                s.executions_succeeded / s.executions_attempted
                if s.executions_attempted > 0 else 0
            ),
            "total_profit": str(s.total_profit),
            "total_volume": str(s.total_volume),
            "rebalances": s.rebalances,
            "usdc_recovered": str(s.usdc_recovered),
            "stream_errors": s.stream_errors,
            "avg_execution_time_ms": self.avg_execution_time_ms,
            "last_opportunity_at": s.last_opportunity_at,
            "last_execution_at": s.last_execution_at,
            "last_rebalance_at": s.last_rebalance_at,
        }

    def reset_session(self) -> None:
        """Reset on explicit restart."""
        self._stats = RunStats()
        self._execution_times = []
