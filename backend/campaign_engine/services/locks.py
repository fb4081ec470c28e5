from __future__ import annotations

import threading
from contextlib import contextmanager

from campaign_engine.errors import CampaignEngineError


class CampaignBusy(CampaignEngineError):
    pass


class CampaignLocks:
    """One lock per campaign id.

    State machine ticks, manual runs and budget aggregator fires for the same
    campaign all go through here, so at most one of them touches a campaign's
    automation state at a time.
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: dict[int, threading.Lock] = {}

    def _lock_for(self, campaign_id: int) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(int(campaign_id))
            if lock is None:
                lock = threading.Lock()
                self._locks[int(campaign_id)] = lock
            return lock

    def is_busy(self, campaign_id: int) -> bool:
        return self._lock_for(campaign_id).locked()

    @contextmanager
    def hold(self, campaign_id: int, *, blocking: bool = True, timeout: float = -1):
        """Raise ``CampaignBusy`` if the lock is not acquired."""
        lock = self._lock_for(campaign_id)
        acquired = lock.acquire(blocking, timeout) if blocking else lock.acquire(False)
        if not acquired:
            raise CampaignBusy(f"campaign {campaign_id} has an evaluation in flight")
        try:
            yield
        finally:
            lock.release()
