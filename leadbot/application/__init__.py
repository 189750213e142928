# Application Layer
# =================
# Use cases and orchestration:
# - dispatcher.py: duplicate-safe send of welcome/catalog for one lead
# - processing.py: fetch -> diff -> dispatch cycle and its periodic loop
# - events.py:     read receipts and inbound catalog requests
# - health.py:     operator alerts
# - analytics.py:  dashboard aggregates
# - runtime.py:    wiring of all of the above

from .context import BotContext, SystemHealth
from .dispatch_lock import DispatchLockManager
from .dispatcher import DispatchOutcome, LeadDispatcher
from .processing import CycleResult, CycleState, LeadProcessor
from .runtime import BotRuntime

__all__ = [
    "BotContext",
    "SystemHealth",
    "DispatchLockManager",
    "DispatchOutcome",
    "LeadDispatcher",
    "CycleResult",
    "CycleState",
    "LeadProcessor",
    "BotRuntime",
]
