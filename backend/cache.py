"""
Write-back cache of tracked documents.

Two maps keyed by tracker id:
- `items`: the latest merged document of every recently updated tracker.
  It doubles as a read-through cache for `DocumentStore.resolve`, so a
  burst of events for one tracker does not hit the database each time.
  Entries leave it once they have not been updated for `cache_ttl_seconds`.
- `pending`: documents changed since the last flush. Only the latest
  state per tracker is kept, so a flush writes each tracker once.

Flushes are debounced. A flush happens on `record()` when the debounce
window has elapsed, or immediately once `items` holds `max_cached_items`
trackers. A flush that opens a window sets a single deadline; an overflow
flush inside an open window leaves that deadline where it is.

All methods run on the consumer thread; nothing here is locked.
"""

import logging
from datetime import datetime, timedelta
from typing import Callable, Dict, Optional

from models import TrackedDocument, utcnow
from persister import BulkPersister
from settings import Settings, settings

logger = logging.getLogger(__name__)


class WriteBackCache:
    def __init__(
        self,
        persister: BulkPersister,
        config: Settings = settings,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.persister = persister
        self.clock = clock
        self.flush_interval = timedelta(seconds=config.flush_interval_seconds)
        self.ttl = timedelta(seconds=config.cache_ttl_seconds)
        self.max_items = config.max_cached_items

        self.items: Dict[str, TrackedDocument] = {}
        self.pending: Dict[str, TrackedDocument] = {}
        self._rearm_at: Optional[datetime] = None

    @property
    def flush_armed(self) -> bool:
        return self._rearm_at is None or self.clock() >= self._rearm_at

    def get(self, tracker_id: str) -> Optional[TrackedDocument]:
        return self.items.get(tracker_id)

    def record(self, tracker_id: str, document: TrackedDocument) -> bool:
        """Buffer the latest document for a tracker; flush if due.

        Returns True when this call flushed.
        """

        self.items[tracker_id] = document
        self.pending[tracker_id] = document

        if self.flush_armed or len(self.items) >= self.max_items:
            self.flush()
            return True
        return False

    def flush(self) -> int:
        """Evict idle items, write every pending document, re-arm the window.

        A flush inside an open window (overflow) keeps the existing deadline.
        """

        window_open = not self.flush_armed
        evicted = self.evict_idle()
        written = self.persister.persist(self.pending)
        self.pending = {}
        if not window_open:
            self._rearm_at = self.clock() + self.flush_interval

        logger.info(
            f"Flushed {written} documents "
            f"(evicted={evicted}, cached={len(self.items)})"
        )
        return written

    def evict_idle(self) -> int:
        """Drop items not updated within the TTL. Pending entries stay."""

        oldest = self.clock() - self.ttl
        stale = [key for key, doc in self.items.items() if doc.updated_at < oldest]
        for key in stale:
            del self.items[key]
        return len(stale)

    def flush_if_due(self) -> int:
        """Flush leftovers once the window has elapsed and nothing else arrived."""

        if self.pending and self.flush_armed:
            return self.flush()
        return 0

    def stats(self) -> dict:
        return {
            "items": len(self.items),
            "pending": len(self.pending),
            "flush_armed": self.flush_armed,
        }
