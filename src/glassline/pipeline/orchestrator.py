"""Pipeline orchestration.

Opens the table store, applies the setup script, and feeds raw event files
through the batch processor thread. Manages lifecycle, monitoring, and
graceful shutdown.
"""

import json
import queue
import time
import logging
from pathlib import Path
from typing import TYPE_CHECKING, Dict, Iterable, Iterator, List, Optional

from glassline.pipeline.cascade import CascadeEngine
from glassline.pipeline.control import default_setup_script, run_setup_script
from glassline.pipeline.processor import BatchProcessor
from glassline.setup_directories import get_log_path
from glassline.store import TableStore

if TYPE_CHECKING:
    from glassline.schemas import InternalConfig

__all__ = ['PipelineOrchestrator', 'open_store', 'build_engine', 'read_events', 'iter_batches']

logger = logging.getLogger(__name__)


def open_store(config: "InternalConfig") -> TableStore:
    """Open the table store named by config (under ``output_dirs['store']`` when set)."""
    if config.output_dirs and "store" in config.output_dirs:
        store_dir = Path(config.output_dirs["store"])
    else:
        store_dir = Path(config.base_dir or ".")
    return TableStore(store_dir / config.store.db_filename)


def build_engine(config: "InternalConfig", store: Optional[TableStore] = None,
                 apply_setup: bool = True) -> CascadeEngine:
    """Engine over ``store`` (opened from config if omitted), with the setup script applied.

    Raises
    ------
    SetupError
        If a setup statement fails.
    """
    store = store or open_store(config)
    engine = CascadeEngine(store, max_workers=config.cascade.max_workers)
    if apply_setup:
        run_setup_script(engine, default_setup_script(config))
    return engine


def read_events(path: Path | str) -> Iterator[dict]:
    """Raw events from a JSON-lines file.

    Blank lines are ignored. Lines that are not JSON objects are logged and
    skipped; they never reach the raw table.
    """
    path = Path(path)
    with open(path, "r", encoding="utf-8") as f:
        for lineno, line in enumerate(f, start=1):
            line = line.strip()
            if not line:
                continue
            try:
                event = json.loads(line)
            except json.JSONDecodeError as exc:
                logger.warning("%s:%d: not JSON, skipped (%s)", path.name, lineno, exc.msg)
                continue
            if not isinstance(event, dict):
                logger.warning("%s:%d: not a JSON object, skipped", path.name, lineno)
                continue
            yield {
                "timestamp": event.get("timestamp"),
                "properties": event.get("properties"),
                "data": event.get("data"),
            }


def iter_batches(events: Iterable[dict], batch_size: int) -> Iterator[List[dict]]:
    batch = []
    for event in events:
        batch.append(event)
        if len(batch) >= batch_size:
            yield batch
            batch = []
    if batch:
        yield batch


class PipelineOrchestrator:
    """Runs the live ingestion pipeline.

    This is the main entry point for ingesting raw telemetry. It opens the
    table store, applies the setup script (tables, functions and update
    policies; idempotent), then streams raw event files in batches to a
    :class:`BatchProcessor` thread. Each batch lands in the raw table and
    cascades to the envelope store and the five device tables.

    **Queue Management:**

    The batch queue is bounded by ``cascade.queue_size``; reading files
    blocks when the processor falls behind (backpressure).

    **Logging:**

    All output goes to both console and log file (logs/pipeline_<run_id>.log).
    Log level controlled via config: "DEBUG", "INFO", "WARNING", "ERROR".

    Example usage::

        config = init_runtime_config(args)
        orch = PipelineOrchestrator(config)
        stats = orch.start(["events/2024-03-01.jsonl"])
    """

    def __init__(self, config: "InternalConfig"):
        """Initialize orchestrator.

        Parameters
        ----------
        config : InternalConfig
            Resolved runtime configuration, usually from ``init_runtime_config``.
        """
        self.config = config
        self.batch_queue = queue.Queue(maxsize=config.cascade.queue_size)

        self.store = None
        self.engine = None
        self.processor = None

        self._stopped = False
        self._start_time = None
        self._events_read = 0

    def _setup_logging(self):
        """Configure root logging with file and console handlers."""
        log_level = getattr(logging, self.config.logging.level, logging.INFO)

        output_dirs = self.config.output_dirs or {"logs": str(Path(self.config.base_dir or ".") / "logs")}
        log_path = get_log_path(output_dirs, self.config.run_id)

        formatter = logging.Formatter(
            fmt='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )

        # Clear existing handlers and add new ones
        root = logging.getLogger()
        root.setLevel(log_level)
        for handler in root.handlers[:]:
            root.removeHandler(handler)

        fh = logging.FileHandler(log_path)
        fh.setLevel(log_level)
        fh.setFormatter(formatter)
        root.addHandler(fh)

        ch = logging.StreamHandler()
        ch.setLevel(log_level)
        ch.setFormatter(formatter)
        root.addHandler(ch)

        logger.info("Logging: level=%s, file=%s", self.config.logging.level, log_path)

    def open(self) -> CascadeEngine:
        """Open the store and apply the setup script. Idempotent."""
        if self.engine is None:
            self.store = open_store(self.config)
            self.engine = build_engine(self.config, self.store)
        return self.engine

    def start(self, inputs: Iterable[Path | str], setup_logging: bool = True) -> Dict:
        """Ingest every raw event file in ``inputs`` and stop.

        Blocking. Files are read in order; the processor ingests batches in
        the order they were queued.

        Parameters
        ----------
        inputs : iterable of path
            JSON-lines files of raw events.
        setup_logging : bool, optional
            Configure root logging handlers (default True).

        Returns
        -------
        dict
            Processor statistics (see :meth:`BatchProcessor.get_stats`).
        """
        if setup_logging:
            self._setup_logging()

        logger.info("=" * 60)
        logger.info("Starting glassline ingestion")
        logger.info("=" * 60)

        self._start_time = time.time()

        try:
            self.open()
            self.processor = BatchProcessor(self.batch_queue, self.engine, self.config)
            self.processor.start()
            logger.info("Processor started")

            for path in inputs:
                logger.info("Reading %s", path)
                for batch in iter_batches(read_events(path), self.config.cascade.batch_size):
                    self._events_read += len(batch)
                    self.batch_queue.put(batch)
            self.batch_queue.put(None)
            self.processor.join()
        except KeyboardInterrupt:
            logger.info("Shutdown signal received (Ctrl+C)")
        finally:
            stats = self.stop()
        return stats

    def stop(self) -> Dict:
        """Stop the processor, close the store and log statistics. Safe to call twice."""
        stats = self.processor.get_stats() if self.processor else {}
        if self._stopped:
            return stats
        self._stopped = True

        if self.processor and self.processor.is_alive():
            logger.info("Stopping processor...")
            self.processor.stop()
            self.processor.join(timeout=5)
            if self.processor.is_alive():
                logger.warning("Processor did not stop cleanly")

        elapsed = time.time() - self._start_time if self._start_time else 0
        logger.info("=" * 60)
        logger.info("Pipeline stopped. Runtime: %.1f seconds", elapsed)
        if stats:
            logger.info("Statistics: events=%d, batches=%d, duplicates=%d, failed=%d, cascaded=%s",
                        self._events_read, stats["batches_processed"], stats["batches_skipped"],
                        stats["batches_failed"], stats["cascaded"])
        logger.info("=" * 60)

        if self.store:
            self.store.close()
        return stats
