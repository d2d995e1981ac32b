"""
Service / facade layer.

This module is the single entry point for one step event. It is free of
SQL and of transport code: the consumer hands it a decoded message and
acknowledges once `process_event()` returns.

Key responsibilities:
- drop events that fail admission (bad application or tracker id); every
  other event is folded in, even when parts of it are unusable
- make sure the application's index exists before the first lookup
- resolve, merge and buffer the tracker's document
- expose the idle flush and shutdown hooks used by the consumer loop
"""

import logging
from datetime import datetime
from typing import Any, Callable, Mapping, Optional

from aggregator import DocumentAggregator
from cache import WriteBackCache
from models import EventIn, TrackedDocument, utcnow
from persister import BulkPersister, PersistCancelled
from repo_documents import DocumentRepo
from settings import Settings, settings
from store import DocumentStore, is_admissible

logger = logging.getLogger(__name__)


class TrackingService:
    """Resolve → merge → buffer, one event at a time.

    Example usage:
        svc = TrackingService.build(DocumentRepo())
        svc.process_event({"application": "shop", "tracker_id": "...", ...})
    """

    def __init__(
        self,
        store: DocumentStore,
        aggregator: DocumentAggregator,
        cache: WriteBackCache,
        persister: BulkPersister,
    ):
        self.store = store
        self.aggregator = aggregator
        self.cache = cache
        self.persister = persister

    @classmethod
    def build(
        cls,
        repo: DocumentRepo,
        config: Settings = settings,
        clock: Callable[[], datetime] = utcnow,
    ) -> "TrackingService":
        """Wire a fresh set of components around `repo`."""

        persister = BulkPersister(repo, config)
        cache = WriteBackCache(persister, config, clock=clock)
        store = DocumentStore(repo, cache, clock=clock)
        return cls(store, DocumentAggregator(clock=clock), cache, persister)

    def process_event(self, payload: Mapping[str, Any]) -> Optional[TrackedDocument]:
        """Fold one raw event into its tracker's document.

        Returns the merged document, or None when the event was dropped.
        Database read errors propagate so the transport can redeliver.
        """

        if not is_admissible(payload):
            logger.debug(
                f"Dropping event application={payload.get('application')!r} "
                f"tracker_id={payload.get('tracker_id')!r}"
            )
            return None

        event = EventIn.model_validate(payload)
        step = event.timed_step()
        if event.step is not None and step is None:
            logger.warning(
                f"Step without a usable name/date for {event.tracker_id}, "
                f"logging it without timing: {event.step!r}"
            )

        self.store.ensure_index(event.application)

        document = self.store.resolve(
            event.tracker_id, event.application, event.flow, step
        )
        document = self.aggregator.merge(document, event)
        self.cache.record(event.tracker_id, document)
        return document

    def tick(self) -> int:
        """Idle hook: flush pending documents once the debounce window is over."""
        return self.cache.flush_if_due()

    def stop(self) -> None:
        self.persister.stop()

    def close(self) -> None:
        """Final flush on shutdown. A cancelled flush is logged, not raised."""

        logger.info(f"Closing tracker service: {self.cache.stats()}")
        if not self.cache.pending:
            return
        try:
            self.cache.flush()
        except PersistCancelled:
            logger.error(
                f"Shutdown flush cancelled, {len(self.cache.pending)} documents not written"
            )
