"""
Bulk write-back of pending documents.

`BulkPersister.persist()` turns the pending set into one bulk upsert and
does not return until the backing store has accepted it. A failed write
is logged and the identical batch is sent again after a fixed delay, with
no retry limit: documents are never dropped, and while the store is down
the caller is held here.

The delay is a `threading.Event.wait`, so `stop()` (wired to SIGTERM in
`main.py`) ends the loop early by raising `PersistCancelled`. The caller
keeps its pending set in that case.
"""

import logging
import threading
from typing import Dict, List

import psycopg

from models import TrackedDocument
from repo_documents import BulkAction, DocumentRepo
from settings import Settings, settings

logger = logging.getLogger(__name__)


class PersistCancelled(RuntimeError):
    """Raised when a retry wait is interrupted by `stop()`."""


class BulkPersister:
    def __init__(self, repo: DocumentRepo, config: Settings = settings):
        self.repo = repo
        self.retry_delay = config.retry_delay_seconds
        self._stopping = threading.Event()

    def build_actions(self, documents: Dict[str, TrackedDocument]) -> List[BulkAction]:
        """One upsert per document, routed by the document's own application."""
        return [
            (self.repo.index_name(document.application), tracker_id, document)
            for tracker_id, document in documents.items()
        ]

    def persist(self, documents: Dict[str, TrackedDocument]) -> int:
        if not documents:
            return 0

        actions = self.build_actions(documents)
        attempt = 1
        while True:
            try:
                written = self.repo.bulk_upsert(actions)
                if attempt > 1:
                    logger.info(f"Bulk write succeeded after {attempt} attempts")
                return written
            except psycopg.Error:
                logger.error(
                    f"Bulk write of {len(actions)} documents failed (attempt {attempt})",
                    exc_info=True,
                )
            logger.error("error saving bulk, retrying...")
            if self._stopping.wait(self.retry_delay):
                raise PersistCancelled(
                    f"stopped while retrying a batch of {len(actions)} documents"
                )
            attempt += 1

    def stop(self) -> None:
        self._stopping.set()

    @property
    def stopping(self) -> bool:
        return self._stopping.is_set()
