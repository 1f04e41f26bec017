"""Monitoring module for logging, events and run statistics."""

from .events import EventEmitter
from .logger import Logger
from .metrics import MetricsCollector, RunStats

__all__ = ["EventEmitter", "Logger", "MetricsCollector", "RunStats"]
