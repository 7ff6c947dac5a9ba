"""Raw batch ingestion worker.

Consumes batches of raw events from a queue and ingests each into the raw
table through the cascade engine, which carries it on to the envelope store
and the five device tables.
"""

import hashlib
import json
import logging
import queue
import threading
import time
from typing import TYPE_CHECKING, Dict, List, Optional

from glassline.contracts import ContractViolation, CascadeStepError
from glassline.pipeline.cascade import CascadeEngine

if TYPE_CHECKING:
    from glassline.schemas import InternalConfig

__all__ = ['BatchProcessor', 'batch_extent_id']

logger = logging.getLogger(__name__)


def batch_extent_id(events: List[dict]) -> str:
    """Content hash of a raw batch, used as its extent id.

    Submitting the same batch twice yields the same id, so the second
    submission is a no-op in the extent ledger.
    """
    payload = json.dumps(events, sort_keys=True, separators=(",", ":"), default=str)
    return "raw:" + hashlib.sha256(payload.encode("utf-8")).hexdigest()[:32]


class BatchProcessor(threading.Thread):
    """Ingests raw event batches through the cascade.

    This worker thread runs in the background, receiving lists of raw events
    from ``input_queue``. ``None`` on the queue signals shutdown.

    **Retries:**

    A failed cascade step is rolled back as a unit, so a batch is simply
    resubmitted with the same extent id, up to ``cascade.retry_attempts``
    times. Contract violations (schema mismatch, missing table or function)
    are not transient and are recorded as failed without retry.

    Example usage (typically called by orchestrator)::

        processor = BatchProcessor(input_queue, engine, config)
        processor.start()
        input_queue.put(events)
        input_queue.put(None)
        processor.join()
        processor.get_stats()
    """

    def __init__(self, input_queue: queue.Queue, engine: CascadeEngine,
                 config: "InternalConfig", name: str = "BatchProcessor",
                 retry_delay: float = 0.5):
        """Initialize processor.

        Parameters
        ----------
        input_queue : queue.Queue
            Batches (lists of raw event dicts). None signals shutdown.
        engine : CascadeEngine
            Engine with the setup script already applied.
        config : InternalConfig
            Fully validated runtime configuration.
        name : str, optional
            Thread name for logging (default: "BatchProcessor").
        retry_delay : float, optional
            Seconds between attempts of a failed batch.
        """
        super().__init__(daemon=True, name=name)

        self.input_queue = input_queue
        self.engine = engine
        self.config = config
        self.raw_table = config.store.tables.raw
        self.retry_attempts = config.cascade.retry_attempts
        self.retry_delay = retry_delay
        self._stop_event = threading.Event()
        self._stats_lock = threading.Lock()

        self.batches_processed = 0
        self.batches_skipped = 0
        self.rows_ingested = 0
        self.cascaded: Dict[str, int] = {}
        self.failures: List[Dict] = []

    def run(self):
        logger.info("Processor started, ingesting into %s", self.raw_table)

        while not self._stop_event.is_set():
            try:
                batch = self.input_queue.get(timeout=1)
            except queue.Empty:
                continue

            try:
                if batch is None:
                    break
                self.process_batch(batch)
            finally:
                self.input_queue.task_done()

        logger.info("Processor stopped")

    def process_batch(self, events: List[dict]) -> Optional[str]:
        """Ingest one batch, retrying failed steps.

        Returns
        -------
        str or None
            Extent id of the batch, or None if it failed every attempt.
        """
        if not events:
            return None

        extent_id = batch_extent_id(events)
        for attempt in range(1, self.retry_attempts + 1):
            try:
                result = self.engine.ingest(self.raw_table, events, extent_id=extent_id)
            except CascadeStepError as exc:
                permanent = isinstance(exc.cause, ContractViolation)
                if permanent or attempt == self.retry_attempts:
                    logger.error("Batch %s failed (attempt %d/%d): %s",
                                 extent_id, attempt, self.retry_attempts, exc.cause)
                    with self._stats_lock:
                        self.failures.append({"extent_id": extent_id, "error": str(exc.cause),
                                              "events": len(events)})
                    return None
                logger.warning("Batch %s failed (attempt %d/%d), retrying: %s",
                               extent_id, attempt, self.retry_attempts, exc.cause)
                time.sleep(self.retry_delay)
                continue

            with self._stats_lock:
                if result.applied:
                    self.batches_processed += 1
                    self.rows_ingested += result.rows
                    for table, count in result.cascaded.items():
                        self.cascaded[table] = self.cascaded.get(table, 0) + count
                else:
                    self.batches_skipped += 1
            return extent_id
        return None

    def stop(self):
        self._stop_event.set()

    def get_stats(self) -> Dict:
        with self._stats_lock:
            return {
                "batches_processed": self.batches_processed,
                "batches_skipped": self.batches_skipped,
                "batches_failed": len(self.failures),
                "rows_ingested": self.rows_ingested,
                "cascaded": dict(self.cascaded),
                "failures": list(self.failures),
            }
