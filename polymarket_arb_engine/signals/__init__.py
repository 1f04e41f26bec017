"""Signals module for arbitrage detection."""

from .effective_price import EffectivePrices, calculate_effective_prices
from .parity_detector import (
    ArbitrageDetector,
    ArbitrageLegs,
    ArbitrageOpportunity,
    OpportunityKind,
    TradingCapacity,
)
from .scanner import MarketScanner, ScanResult, rank_results

__all__ = [
    "ArbitrageDetector",
    "ArbitrageLegs",
    "ArbitrageOpportunity",
    "EffectivePrices",
    "MarketScanner",
    "OpportunityKind",
    "ScanResult",
    "TradingCapacity",
    "calculate_effective_prices",
    "rank_results",
]
