"""
Runtime Context
===============

Process-wide mutable state shared by the processing cycle, the chat event
handler and the health monitor. Everything here is rebuilt from scratch on
restart; the log files are the only durable state.
"""

from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Deque, Dict, Optional, Set

from .dispatch_lock import DispatchLockManager

MAX_RECENT_ERRORS = 50


def _iso(moment: Optional[datetime]) -> Optional[str]:
    return moment.isoformat(timespec="seconds") if moment else None


@dataclass
class SystemHealth:
    """Counters observed by the health monitor."""

    boot_time: datetime = field(default_factory=datetime.now)
    last_successful_fetch: Optional[datetime] = None
    last_successful_send: Optional[datetime] = None
    consecutive_failures: int = 0
    is_online: bool = False
    # Time of the most recent online/offline transition
    last_online_change: Optional[datetime] = None
    errors: Deque[Dict[str, str]] = field(default_factory=lambda: deque(maxlen=MAX_RECENT_ERRORS))

    def record_error(self, kind: str, message: str, when: Optional[datetime] = None) -> None:
        self.errors.append({
            "type": kind,
            "message": message,
            "timestamp": _iso(when or datetime.now()),
        })

    def to_dict(self) -> dict:
        return {
            "bootTime": _iso(self.boot_time),
            "lastSuccessfulFetch": _iso(self.last_successful_fetch),
            "lastSuccessfulSend": _iso(self.last_successful_send),
            "consecutiveFailures": self.consecutive_failures,
            "isOnline": self.is_online,
            "lastOnlineChange": _iso(self.last_online_change),
            "recentErrors": list(self.errors)[-10:],
        }


@dataclass
class BotContext:
    locks: DispatchLockManager = field(default_factory=DispatchLockManager)
    health: SystemHealth = field(default_factory=SystemHealth)

    # Phones whose "message seen" notification already went out
    notified_seen: Set[str] = field(default_factory=set)

    # Normalized phones of the leads fetched in the latest cycle
    known_lead_phones: Set[str] = field(default_factory=set)

    def reset_notifications(self) -> None:
        self.notified_seen.clear()
