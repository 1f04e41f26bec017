"""
Structured JSON logging for the arbitrage engine.
All logs are JSON for easy parsing and analysis.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Optional


class JSONFormatter(logging.Formatter):
    """Format log records as JSON."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "event": record.msg,
            "logger": record.name,
        }

        if hasattr(record, "extra_fields"):
            log_data.update(record.extra_fields)

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


class Logger:
    """
    Structured JSON logger.

    All log entries are JSON objects with:
    - timestamp: ISO 8601 UTC timestamp
    - level: Log level
    - event: Event name/type
    - Additional context fields
    """

    def __init__(
        self,
        name: str = "arb_engine",
        level: str = "INFO",
        log_file: Optional[str] = None,
        stream: Any = None,
    ):
        self.logger = logging.getLogger(name)
        self.logger.setLevel(getattr(logging, level.upper()))
        self.logger.handlers = []  # Clear existing handlers
        self.logger.propagate = False

        formatter = JSONFormatter()

        console_handler = logging.StreamHandler(stream or sys.stdout)
        console_handler.setFormatter(formatter)
        self.logger.addHandler(console_handler)

        if log_file:
            file_handler = logging.FileHandler(log_file)
            file_handler.setFormatter(formatter)
            self.logger.addHandler(file_handler)

    def _log(self, level: int, event: str, **kwargs: Any) -> None:
        """Internal log method."""
        if not self.logger.isEnabledFor(level):
            return
        record = self.logger.makeRecord(
            self.logger.name,
            level,
            "",
            0,
            event,
            (),
            None,
        )
        record.extra_fields = kwargs
        self.logger.handle(record)

    def debug(self, event: str, **kwargs: Any) -> None:
        self._log(logging.DEBUG, event, **kwargs)

    def info(self, event: str, **kwargs: Any) -> None:
        self._log(logging.INFO, event, **kwargs)

    def warning(self, event: str, **kwargs: Any) -> None:
        self._log(logging.WARNING, event, **kwargs)

    def error(self, event: str, **kwargs: Any) -> None:
        self._log(logging.ERROR, event, **kwargs)

    # === Convenience methods for common events ===

    def opportunity_detected(
        self,
        condition_id: str,
        kind: str,
        profit: str,
        yes_price: str,
        no_price: str,
        size: str,
    ) -> None:
        """Log a qualifying opportunity."""
        self.info(
            "opportunity_detected",
            condition_id=condition_id,
            kind=kind,
            profit=profit,
            yes_price=yes_price,
            no_price=no_price,
            size=size,
        )

    def execution_complete(
        self,
        execution_id: str,
        condition_id: str,
        kind: str,
        status: str,
        filled_yes: str,
        filled_no: str,
        profit: str,
        correction_applied: bool,
    ) -> None:
        """Log the outcome of a two-leg execution."""
        self.info(
            "execution_complete",
            execution_id=execution_id,
            condition_id=condition_id,
            kind=kind,
            status=status,
            filled_yes=filled_yes,
            filled_no=filled_no,
            profit=profit,
            correction_applied=correction_applied,
        )

    def execution_failed(
        self,
        execution_id: str,
        condition_id: str,
        error: str,
    ) -> None:
        self.error(
            "execution_failed",
            execution_id=execution_id,
            condition_id=condition_id,
            error=error,
        )

    def rebalance_action(
        self,
        condition_id: str,
        action: str,
        amount: str,
        usdc_ratio: Optional[str],
        success: bool,
    ) -> None:
        """Log a split/merge/sell issued by the rebalancer."""
        self.info(
            "rebalance_action",
            condition_id=condition_id,
            action=action,
            amount=amount,
            usdc_ratio=usdc_ratio,
            success=success,
        )

    def ws_connected(self, url: str) -> None:
        self.info("ws_connected", url=url)

    def ws_disconnected(self, reason: str = "") -> None:
        self.warning("ws_disconnected", reason=reason)

    def startup(self, config: dict) -> None:
        """Log engine startup."""
        self.info("engine_startup", config=config)

    def shutdown(self, reason: str = "normal") -> None:
        """Log engine shutdown."""
        self.info("engine_shutdown", reason=reason)
