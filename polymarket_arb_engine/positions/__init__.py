"""Positions module for capital rebalancing and inventory clearing."""

from .clearer import ClearAction, ClearActionType, ClearPositionResult, PositionClearer
from .rebalancer import RebalanceAction, RebalanceResult, Rebalancer

__all__ = [
    "ClearAction",
    "ClearActionType",
    "ClearPositionResult",
    "PositionClearer",
    "RebalanceAction",
    "RebalanceResult",
    "Rebalancer",
]
