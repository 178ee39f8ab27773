"""
Background enrichment processor.

Drains the enrichment queue one item at a time: claim the oldest pending
item, summarize and embed its version, write the results back, and record
the outcome on the item. Failures never escape a tick; they are stored on
the queue item for inspection and manual retry.

The processor is a plain object with injected stores and pipeline. It runs
on one daemon thread, woken every `interval` seconds, and a non-blocking
lock makes each tick single-flight.
"""

import logging
import threading
from typing import Optional

from .enrichment_queue import COMPLETED, DEFAULT_RETENTION_DAYS, FAILED, STALE_CLAIM_SECONDS
from .errors import NotFoundError
from .pipeline import EnrichmentPipeline
from .protocol import (
    EmbeddingStoreProtocol,
    EnrichmentQueueProtocol,
    VersionStoreProtocol,
)
from .types import QueueItem

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL = 5.0


class QueueProcessor:
    """
    Single-consumer worker for the enrichment queue.

    Example:
        processor = QueueProcessor(versions, embeddings, queue, pipeline)
        if processor.start():
            ...
            processor.stop()
    """

    def __init__(
        self,
        version_store: VersionStoreProtocol,
        embedding_store: EmbeddingStoreProtocol,
        queue: EnrichmentQueueProtocol,
        pipeline: EnrichmentPipeline,
        *,
        interval: float = DEFAULT_INTERVAL,
        stale_claim_seconds: int = STALE_CLAIM_SECONDS,
        retention_days: int = DEFAULT_RETENTION_DAYS,
    ):
        self._versions = version_store
        self._embeddings = embedding_store
        self._queue = queue
        self._pipeline = pipeline
        self.interval = interval
        self.stale_claim_seconds = stale_claim_seconds
        self.retention_days = retention_days

        self._busy = threading.Lock()
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    @property
    def is_processing(self) -> bool:
        return self._busy.locked()

    def start(self) -> bool:
        """
        Start the background thread.

        Returns False without starting if the pipeline has no provider
        credentials; there is no point polling work that can only fail.
        """
        if not self._pipeline.is_configured():
            logger.error(
                "Enrichment processor not started: no embedding/summarization "
                "provider configured (set OPENAI_API_KEY or edit kitchen.toml)"
            )
            return False
        if self.is_running:
            return True

        self._queue.recover_stale_claims(self.stale_claim_seconds)
        self._queue.cleanup(self.retention_days)

        self._stop.clear()
        self._thread = threading.Thread(
            target=self._run, name="kitchen-processor", daemon=True,
        )
        self._thread.start()
        logger.info("Enrichment processor started (interval %gs)", self.interval)
        return True

    def stop(self, timeout: Optional[float] = 10.0) -> None:
        """Signal the thread to stop and wait for the current item to finish."""
        self._stop.set()
        thread = self._thread
        if thread is not None:
            thread.join(timeout)
            if thread.is_alive():
                logger.warning("Enrichment processor still busy after %ss", timeout)
            else:
                self._thread = None
                logger.info("Enrichment processor stopped")

    def _run(self) -> None:
        # Process immediately, then once per interval
        while not self._stop.is_set():
            try:
                self.process_next()
            except Exception:
                # Queue/store failure outside an item: keep the loop alive
                logger.exception("Enrichment tick failed")
            if self._stop.wait(self.interval):
                break

    def status(self) -> dict:
        return {
            "running": self.is_running,
            "processing": self.is_processing,
            "interval": self.interval,
        }

    # -------------------------------------------------------------------------
    # Work
    # -------------------------------------------------------------------------

    def process_next(self) -> Optional[QueueItem]:
        """
        Process one item if nothing else is in flight.

        Returns:
            The item with its final status, or None if the queue was empty
            or another tick is still running.
        """
        if not self._busy.acquire(blocking=False):
            logger.debug("Enrichment already in progress, skipping tick")
            return None
        try:
            item = self._queue.pop_next()
            if item is None:
                return None
            return self._process(item)
        finally:
            self._busy.release()

    def _process(self, item: QueueItem) -> QueueItem:
        logger.info("Enriching %s %s", item.shortid, item.version_id)
        try:
            self._enrich(item)
        except Exception as e:
            error_msg = f"{type(e).__name__}: {e}"
            self._queue.mark_failed(item.id, error_msg)
            logger.warning("Failed to enrich %s: %s", item.shortid, error_msg)
            item.status, item.error = FAILED, error_msg
            return item

        self._queue.mark_completed(item.id)
        logger.info("Enriched %s", item.shortid)
        item.status, item.error = COMPLETED, None
        return item

    def _enrich(self, item: QueueItem) -> None:
        # Deleted versions are still enriched; history stays searchable on restore
        version = self._versions.get_version(item.version_id, include_deleted=True)
        if version is None:
            raise NotFoundError(f"Version not found: {item.version_id}")

        enrichment = self._pipeline.enrich(version.title, version.content)

        if not self._versions.update_summary(version.id, enrichment.summary):
            raise NotFoundError(f"Version not found: {item.version_id}")

        # Re-read: a newer save may have superseded this version meanwhile
        latest = self._versions.get_version(version.id, include_deleted=True)
        is_current = latest.is_current if latest else False
        self._embeddings.upsert(
            version.id,
            version.recipe_id,
            version.title,
            item.shortid,
            enrichment.vector,
            is_current=is_current,
        )

    def run_until_empty(self, limit: Optional[int] = None) -> dict:
        """
        Process items synchronously until the queue is empty.

        Args:
            limit: Maximum number of items to process

        Returns:
            Dict with: processed (int), failed (int), errors (list)
        """
        result = {"processed": 0, "failed": 0, "errors": []}
        while limit is None or result["processed"] + result["failed"] < limit:
            item = self.process_next()
            if item is None:
                if self.is_processing:
                    # Background thread holds the guard; nothing for us to do
                    logger.debug("Processor busy in another thread")
                break
            if item.status == COMPLETED:
                result["processed"] += 1
            else:
                result["failed"] += 1
                result["errors"].append(f"{item.shortid}: {item.error}")
        return result
