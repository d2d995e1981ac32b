"""
Resolution of a tracker id to its current document.

`DocumentStore.resolve()` looks in the write-back cache first and returns
the cached instance itself, so the caller extends the same object the
cache holds. On a miss it reads the backing index, or builds a fresh
document when the tracker has never been stored. Resolving does not put
anything into the cache; that happens when the merged document is
recorded.

This module also owns the two checks that run before any resolution:
- `is_admissible()`, the only admission control of the pipeline;
- `ensure_index()`, which creates an application's index on first use
  and remembers it for the lifetime of the process.

Read errors from the database are not swallowed here: a failed lookup
must not be mistaken for a tracker that does not exist yet.
"""

import logging
import re
from datetime import datetime
from typing import Any, Callable, Mapping, Optional, Set

from cache import WriteBackCache
from models import StepIn, TrackedDocument, utcnow
from repo_documents import DocumentRepo

logger = logging.getLogger(__name__)

APPLICATION_PATTERN = re.compile(r"^[a-z0-9_]+$")
TRACKER_ID_LENGTH = 32


def is_admissible(payload: Mapping[str, Any]) -> bool:
    """True when the raw event has a valid application and a 32-char tracker id."""

    application = payload.get("application")
    tracker_id = payload.get("tracker_id")
    if not isinstance(application, str) or not APPLICATION_PATTERN.match(application):
        return False
    return isinstance(tracker_id, str) and len(tracker_id) == TRACKER_ID_LENGTH


class DocumentStore:
    """Fetch-or-create of tracked documents.

    Example usage:
        store = DocumentStore(DocumentRepo(), cache)
        store.ensure_index("shop")
        doc = store.resolve(tracker_id, "shop", flow="checkout")
    """

    def __init__(
        self,
        repo: DocumentRepo,
        cache: WriteBackCache,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.repo = repo
        self.cache = cache
        self.clock = clock
        self._ready: Set[str] = set()

    def ensure_index(self, application: str) -> None:
        if application in self._ready:
            return

        index = self.repo.index_name(application)
        if not self.repo.index_exists(index):
            logger.info(f"index {index} not found, creating it")
            self.repo.create_index(index)
            logger.info(f"index {index} created")

        logger.info(f"index {index} initialized")
        self._ready.add(application)

    def resolve(
        self,
        tracker_id: str,
        application: str,
        flow: Optional[str] = None,
        first_step: Optional[StepIn] = None,
    ) -> TrackedDocument:
        cached = self.cache.get(tracker_id)
        if cached is not None:
            return cached

        stored = self.repo.get_by_id(self.repo.index_name(application), tracker_id)

        if stored is None:
            now = self.clock()
            return TrackedDocument(
                application=application,
                flow=flow or "undefined",
                created_at=first_step.date if first_step is not None else now,
                updated_at=now,
            )

        # Older rows may lack steps; the model validators default them.
        return TrackedDocument.model_validate(stored)
