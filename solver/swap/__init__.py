"""Swap orchestration: registry, watchers, lock schedulers, redeem executor."""

from .registry import SwapRegistry
from .scheduler import LockScheduler
from .executor import RedeemExecutor
from .watcher import EventWatcher
from .engine import SolverEngine, STATUS_ACCEPTED, STATUS_ALREADY_TRACKING

__all__ = [
    "SwapRegistry",
    "LockScheduler",
    "RedeemExecutor",
    "EventWatcher",
    "SolverEngine",
    "STATUS_ACCEPTED",
    "STATUS_ALREADY_TRACKING",
]
