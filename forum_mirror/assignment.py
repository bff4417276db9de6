"""
Short-lived per-user state for the assignee picker.

A user picks a developer in one interaction and confirms in another; the pick
is kept here in between and forgotten after ``ttl`` seconds.
"""

from __future__ import annotations

import time
from typing import Callable, Dict, Optional, Tuple

from .config import SELECTION_TTL_SECONDS


class PendingSelections:
    def __init__(self, ttl: float = SELECTION_TTL_SECONDS, clock: Callable[[], float] = time.monotonic) -> None:
        self.ttl = ttl
        self._clock = clock
        self._entries: Dict[Tuple[int, int], Tuple[str, float]] = {}

    def __len__(self) -> int:
        self._purge()
        return len(self._entries)

    def select(self, user_id: int, issue_number: int, login: str) -> None:
        self._purge()
        self._entries[(user_id, issue_number)] = (login, self._clock() + self.ttl)

    def get(self, user_id: int, issue_number: int) -> Optional[str]:
        self._purge()
        entry = self._entries.get((user_id, issue_number))
        return entry[0] if entry else None

    def pop(self, user_id: int, issue_number: int) -> Optional[str]:
        self._purge()
        entry = self._entries.pop((user_id, issue_number), None)
        return entry[0] if entry else None

    def _purge(self) -> None:
        now = self._clock()
        expired = [key for key, (_, expires) in self._entries.items() if expires <= now]
        for key in expired:
            del self._entries[key]
