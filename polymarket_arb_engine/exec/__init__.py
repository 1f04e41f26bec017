"""Execution module for dual-leg order management and live monitoring."""

from .executor import ExecutionEngine, ExecutionResult, ExecutionStatus, LegOrder, LegStatus
from .live_monitor import LiveMonitor, MonitorState

__all__ = [
    "ExecutionEngine",
    "ExecutionResult",
    "ExecutionStatus",
    "LegOrder",
    "LegStatus",
    "LiveMonitor",
    "MonitorState",
]
