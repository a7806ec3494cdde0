"""Per-campaign turn serialization.

Each campaign has a single writer: one turn at a time. Different
campaigns hold different locks and run concurrently.
"""

from __future__ import annotations

import threading
from collections.abc import Iterator
from contextlib import contextmanager


class CampaignLockRegistry:
    """Hands out one lock per campaign id."""

    def __init__(self) -> None:
        self._locks: dict[int, threading.Lock] = {}
        self._guard = threading.Lock()

    def lock_for(self, campaign_id: int) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(campaign_id)
            if lock is None:
                lock = self._locks[campaign_id] = threading.Lock()
            return lock

    @contextmanager
    def hold(self, campaign_id: int) -> Iterator[None]:
        """Hold a campaign's lock for the duration of the block."""
        lock = self.lock_for(campaign_id)
        with lock:
            yield

    def is_locked(self, campaign_id: int) -> bool:
        return self.lock_for(campaign_id).locked()


__all__ = [
    "CampaignLockRegistry",
]
