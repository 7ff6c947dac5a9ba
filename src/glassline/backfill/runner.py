"""Concurrent backfill execution.

Copies a remote mirror's envelope table into the local envelope store one
window at a time. Each window is read from the mirror by ingestion time and
ingested through the cascade with the window's historical creation time, so
the five device tables receive the same rows live data would have produced.
"""

import time
import logging
import threading
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from typing import TYPE_CHECKING, Dict, List, Optional, Sequence

from glassline.backfill.tracker import BackfillTracker
from glassline.backfill.windows import BackfillWindow, generate_windows, parse_instant
from glassline.pipeline.cascade import CascadeEngine
from glassline.store import TableStore

if TYPE_CHECKING:
    from glassline.schemas import InternalConfig

__all__ = ['BackfillRunner', 'WindowResult']

logger = logging.getLogger(__name__)

_POLL_SEC = 0.05


@dataclass
class WindowResult:
    """Outcome of one window: ``completed``, ``skipped`` or ``failed``."""
    window: BackfillWindow
    status: str
    rows: int = 0
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status != "failed"


class BackfillRunner:
    """Dispatches backfill windows on a thread pool.

    Windows are independent: each is one cascade step with its own extent
    id, so a failure in one never touches another, and resubmitting a
    window that already landed writes nothing. A window that does not finish
    within ``backfill.window_timeout_sec`` of being picked up by a worker is
    reported failed and stays failed in the tracker; its worker is not
    interrupted.

    Example usage::

        runner = BackfillRunner(engine, mirror_store, config, tracker)
        results = runner.run()
        if any(not r.ok for r in results):
            results = runner.retry_failed()
    """

    def __init__(self, engine: CascadeEngine, mirror: TableStore, config: "InternalConfig",
                 tracker: Optional[BackfillTracker] = None, table: Optional[str] = None,
                 source_table: Optional[str] = None):
        """Initialize runner.

        Parameters
        ----------
        engine : CascadeEngine
            Local engine with the setup script applied.
        mirror : TableStore
            Store to copy from.
        config : InternalConfig
            Runtime configuration (``backfill`` section).
        tracker : BackfillTracker, optional
            Window state; an in-memory tracker is used if omitted.
        table : str, optional
            Destination table; defaults to the envelope table.
        source_table : str, optional
            Mirror table; defaults to ``table``.
        """
        self.engine = engine
        self.mirror = mirror
        self.config = config
        self.tracker = tracker or BackfillTracker(":memory:")
        self.table = table or config.store.tables.envelopes
        self.source_table = source_table or self.table
        self.max_workers = config.backfill.max_workers
        self.window_timeout = config.backfill.window_timeout_sec

        self._state_lock = threading.Lock()
        self._started: Dict[str, float] = {}
        self._settled = set()
        self._timed_out: Dict[str, WindowResult] = {}

    def plan(self, start=None, end=None) -> List[BackfillWindow]:
        """Windows for ``[start, end]``, defaulting to the configured range.

        Raises
        ------
        ValueError
            If no range is given or configured.
        """
        start = start if start is not None else self.config.backfill.start_time
        end = end if end is not None else self.config.backfill.end_time
        if start is None or end is None:
            raise ValueError("Backfill needs both a start and an end time")
        return generate_windows(start, end)

    def commands(self, windows: Sequence[BackfillWindow]) -> List[str]:
        """Copy commands for ``windows`` as the control surface would run them."""
        cfg = self.config.backfill
        return [
            w.render_command(self.table, cfg.mirror_cluster, cfg.mirror_database,
                             source_table=self.source_table)
            for w in windows
        ]

    def copy_window(self, window: BackfillWindow) -> int:
        """Copy one window. Returns rows appended (0 if it had already landed).

        Raises
        ------
        CascadeStepError
            If the cascade step failed; nothing from this window was written.
        """
        rows = self.mirror.read_ingested_between(
            self.source_table, window.start, window.end, closed=window.closed
        )
        result = self.engine.ingest(
            self.table, rows, extent_id=window.extent_id, creation_time=window.creation_time
        )
        return result.rows

    def _run_window(self, window: BackfillWindow) -> WindowResult:
        with self._state_lock:
            self._started[window.extent_id] = time.monotonic()
        self.tracker.mark_running(self.table, window)
        try:
            rows = self.copy_window(window)
        except Exception as exc:
            return self._settle(WindowResult(window, "failed", error=str(exc)))
        return self._settle(WindowResult(window, "completed", rows=rows))

    def _settle(self, result: WindowResult) -> WindowResult:
        """Record a finished window, unless it already timed out.

        A window reported failed on timeout stays failed in the tracker even
        if its worker finishes later; ``retry_failed()`` then resubmits it.
        """
        window = result.window
        with self._state_lock:
            expired = self._timed_out.get(window.extent_id)
            if expired is not None:
                logger.warning("Backfill window %s finished after its timeout (%s); left failed",
                               window.label, result.status)
                return expired
            if result.ok:
                self.tracker.mark_completed(self.table, window, result.rows)
                logger.info("Backfill window %s (%s): %d rows", window.label, window.day, result.rows)
            else:
                self.tracker.mark_failed(self.table, window, result.error)
                logger.error("Backfill window %s failed: %s", window.label, result.error)
            self._settled.add(window.extent_id)
        return result

    def _expire(self, window: BackfillWindow) -> Optional[WindowResult]:
        """Fail a running window past its deadline. None if it just finished."""
        error = f"timed out after {self.window_timeout}s"
        with self._state_lock:
            if window.extent_id in self._settled:
                return None
            result = WindowResult(window, "failed", error=error)
            self._timed_out[window.extent_id] = result
            self.tracker.mark_failed(self.table, window, error)
        logger.error("Backfill window %s %s", window.label, error)
        return result

    def _next_wait(self, waiting: Dict[Future, BackfillWindow]) -> float:
        """Seconds until the earliest running window's deadline."""
        with self._state_lock:
            starts = [self._started[w.extent_id] for w in waiting.values()
                      if w.extent_id in self._started]
        if not starts:
            # Nothing started yet; poll until a worker picks one up
            return _POLL_SEC
        return max(0.0, min(starts) + self.window_timeout - time.monotonic())

    def run(self, windows: Optional[Sequence[BackfillWindow]] = None) -> List[WindowResult]:
        """Run every window not yet completed.

        Each window's timeout runs from the moment a worker picks it up, so
        windows queued behind slow ones are not penalized.

        Returns
        -------
        list of WindowResult
            One per window, in window order.
        """
        windows = list(windows) if windows is not None else self.plan()
        for window in windows:
            self.tracker.register_window(self.table, window)

        results = {}
        pending = []
        for window in windows:
            if self.tracker.should_process(self.table, window):
                pending.append(window)
            else:
                results[window.extent_id] = WindowResult(window, "skipped")

        logger.info("Backfill %s: %d windows, %d to run, %d workers",
                    self.table, len(windows), len(pending), self.max_workers)

        with self._state_lock:
            self._started = {}
            self._settled = set()
            self._timed_out = {}

        pool = ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="backfill")
        try:
            waiting = {pool.submit(self._run_window, window): window for window in pending}
            while waiting:
                done, _ = wait(waiting, timeout=self._next_wait(waiting),
                               return_when=FIRST_COMPLETED)
                for future in done:
                    window = waiting.pop(future)
                    results[window.extent_id] = future.result()

                now = time.monotonic()
                for future, window in list(waiting.items()):
                    started = self._started.get(window.extent_id)
                    if started is None or now - started < self.window_timeout:
                        continue
                    expired = self._expire(window)
                    if expired is not None:
                        del waiting[future]
                        results[window.extent_id] = expired
        finally:
            # Windows not yet picked up are cancelled; running ones finish
            pool.shutdown(wait=True, cancel_futures=True)

        ordered = [results[w.extent_id] for w in windows]
        failed = [r for r in ordered if not r.ok]
        if failed:
            logger.warning("Backfill finished with %d failed window(s): %s",
                           len(failed), ", ".join(r.window.label for r in failed))
        return ordered


    def failed_windows(self) -> List[BackfillWindow]:
        """Failed windows as recorded by the tracker, rebuilt with identical bounds."""
        return [
            BackfillWindow(
                index=rec["window_index"],
                start=parse_instant(rec["window_start"]),
                end=parse_instant(rec["window_end"]),
                closed=bool(rec["closed"]),
                creation_time=parse_instant(rec["creation_time"]),
            )
            for rec in self.tracker.get_windows(self.table, status="failed")
        ]

    def retry_failed(self) -> List[WindowResult]:
        """Resubmit every failed window with identical parameters."""
        windows = self.failed_windows()
        if not windows:
            logger.info("No failed backfill windows to retry")
            return []
        self.tracker.reset_failed(self.table)
        return self.run(windows)
