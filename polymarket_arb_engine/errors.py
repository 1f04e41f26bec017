"""
Exception hierarchy for the arbitrage engine.

Pure calculators raise these synchronously on bad input. I/O-bound components
catch them and report into results or events instead of raising.
"""

from typing import Any, Optional


class ArbitrageError(Exception):
    """Base exception for all engine errors."""

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.details = details or {}


class InvalidInputError(ArbitrageError, ValueError):
    """Malformed prices or configuration, rejected before use."""
    pass


class TransientFetchError(ArbitrageError):
    """A book, metadata or balance read failed (retryable)."""

    def __init__(
        self,
        message: str,
        resource: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ):
        super().__init__(message, details)
        self.resource = resource


class ExecutionFailure(ArbitrageError):
    """An order leg was rejected or timed out."""

    def __init__(
        self,
        message: str,
        token_id: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ):
        super().__init__(message, details)
        self.token_id = token_id


class OnChainError(ArbitrageError):
    """A split, merge or redeem transaction failed. Never retried automatically."""

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        condition_id: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ):
        super().__init__(message, details)
        self.operation = operation
        self.condition_id = condition_id


class EngineStateError(ArbitrageError):
    """Lifecycle call made in the wrong state (e.g. start while monitoring)."""
    pass
