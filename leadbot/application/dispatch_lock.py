"""
Dispatch Lock Manager
=====================

Advisory per-phone locks that keep two sends to the same recipient from
overlapping. Keys are normalized phones. All callers run on the one event
loop, so check-and-insert is atomic as long as nothing is awaited between
them.

    if not locks.try_acquire(phone):
        return  # someone else is already sending to this phone
    try:
        ...
    finally:
        locks.release(phone)
"""

import logging
from contextlib import contextmanager
from typing import FrozenSet, Iterator, Set

from ..domain.phone import normalize_phone

logger = logging.getLogger(__name__)


class DispatchLockManager:

    def __init__(self):
        self._held: Set[str] = set()

    def try_acquire(self, phone: str) -> bool:
        """Take the lock for `phone`. False when it is already held."""
        key = normalize_phone(phone)
        if key in self._held:
            logger.info(f"[CLASH PREVENTION] Already sending messages to {key}, skipping")
            return False
        self._held.add(key)
        return True

    def release(self, phone: str) -> None:
        self._held.discard(normalize_phone(phone))

    def is_held(self, phone: str) -> bool:
        return normalize_phone(phone) in self._held

    def held(self) -> FrozenSet[str]:
        return frozenset(self._held)

    def clear(self) -> None:
        self._held.clear()

    @contextmanager
    def holding(self, phone: str) -> Iterator[bool]:
        """Yield whether the lock was acquired; release it on exit if it was."""
        acquired = self.try_acquire(phone)
        try:
            yield acquired
        finally:
            if acquired:
                self.release(phone)
