"""
Discovery and scheduling of source files.

Three triggers feed one work queue: a startup backlog scan, a live
filesystem watch (debounced), and a periodic poll. A single worker thread
dequeues and processes files one at a time. A claim set keyed by canonical
path makes sure a file is queued or in flight at most once, whichever
trigger saw it first.
"""
import fnmatch
import logging
import queue
import threading
from datetime import datetime, time as dt_time
from pathlib import Path
from typing import Callable, Dict, List, Optional, Set, Union

from dateutil import parser as date_parser
from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

from invoice_transformer.core.models import FileOutcome
from invoice_transformer.core.parsers import invoice_file_generator
from invoice_transformer.processing.lifecycle import InvoiceProcessor
from invoice_transformer.processing.notifications import DailySummary, NotificationDispatcher
from invoice_transformer.processing.stats import ProcessingStats


logger = logging.getLogger(__name__)

DEFAULT_PATTERN = '*.xml'
DEFAULT_POLL_INTERVAL = 5.0
DEFAULT_DEBOUNCE_SECONDS = 0.5


def parse_summary_time(value: str) -> dt_time:
    """Parse a wall-clock time such as ``17:00``"""
    return date_parser.parse(value).time()


class _InputFolderHandler(FileSystemEventHandler):
    """Forwards create and move-into events to the coordinator"""

    def __init__(self, coordinator: "FileCoordinator"):
        super().__init__()
        self.coordinator = coordinator

    def on_created(self, event):
        if not event.is_directory:
            self.coordinator.notify_change(event.src_path)

    def on_moved(self, event):
        if not event.is_directory:
            self.coordinator.notify_change(event.dest_path)


class FileCoordinator:
    """
    Owns the work queue, the claim set, the triggers and the summary check.

    Args:
        processor: Per-file lifecycle runner
        input_dir: Watched folder
        pattern: Glob pattern of source files
        poll_interval: Seconds between safety-net scans
        debounce_seconds: Quiet period after a watch event before queueing
        daily_summary_time: ``HH:MM`` at which the summary is due, or None
        dispatcher: Outbound notification queue
        clock: Source of the current time
        watch: Start a filesystem observer in addition to polling
    """

    _STOP = object()

    def __init__(self,
                 processor: InvoiceProcessor,
                 input_dir: Union[str, Path],
                 pattern: str = DEFAULT_PATTERN,
                 poll_interval: float = DEFAULT_POLL_INTERVAL,
                 debounce_seconds: float = DEFAULT_DEBOUNCE_SECONDS,
                 daily_summary_time: Optional[str] = None,
                 dispatcher: Optional[NotificationDispatcher] = None,
                 clock: Callable[[], datetime] = datetime.now,
                 watch: bool = True):
        self.processor = processor
        self.input_dir = Path(input_dir)
        self.pattern = pattern
        self.poll_interval = poll_interval
        self.debounce_seconds = debounce_seconds
        self.summary_time = parse_summary_time(daily_summary_time) if daily_summary_time else None
        self.dispatcher = dispatcher if dispatcher is not None else processor.dispatcher
        self.clock = clock
        self.watch = watch

        self.input_dir.mkdir(parents=True, exist_ok=True)

        self._queue: "queue.Queue" = queue.Queue()
        self._claims: Set[Path] = set()
        self._claims_lock = threading.Lock()
        self._timers: Dict[Path, threading.Timer] = {}
        self._timers_lock = threading.Lock()
        self._stopping = threading.Event()
        self._worker: Optional[threading.Thread] = None
        self._poller: Optional[threading.Thread] = None
        self._observer = None
        self._last_summary: Optional[datetime] = None

    @property
    def stats(self) -> ProcessingStats:
        return self.processor.stats

    # Claims and queue

    @staticmethod
    def _claim_key(path: Path) -> Path:
        return path.resolve()

    def matches(self, path: Path) -> bool:
        return fnmatch.fnmatch(path.name.lower(), self.pattern.lower())

    def submit(self, path: Union[str, Path]) -> bool:
        """
        Queue a candidate file unless it is already queued or in flight.

        Returns:
            True if the file was claimed and queued
        """
        path = Path(path)
        key = self._claim_key(path)
        with self._claims_lock:
            if key in self._claims:
                logger.debug(f"Already claimed: {path.name}")
                return False
            self._claims.add(key)
        self._queue.put(path)
        logger.debug(f"Queued: {path.name}")
        return True

    def _release(self, path: Path) -> None:
        with self._claims_lock:
            self._claims.discard(self._claim_key(path))

    @property
    def pending_count(self) -> int:
        with self._claims_lock:
            return len(self._claims)

    def _handle(self, path: Path) -> Optional[FileOutcome]:
        try:
            return self.processor.process_file(path)
        except Exception:
            logger.exception(f"Unexpected error while processing {path.name}")
            return None
        finally:
            self._release(path)

    def _work(self) -> None:
        while True:
            item = self._queue.get()
            try:
                if item is self._STOP:
                    return
                if self._stopping.is_set():
                    # Left in the input folder; picked up on the next start
                    self._release(item)
                    continue
                self._handle(item)
            finally:
                self._queue.task_done()

    def process_pending(self) -> List[FileOutcome]:
        """Process everything queued so far on the calling thread"""
        outcomes = []
        while True:
            try:
                item = self._queue.get_nowait()
            except queue.Empty:
                return outcomes
            try:
                if item is not self._STOP:
                    outcome = self._handle(item)
                    if outcome is not None:
                        outcomes.append(outcome)
            finally:
                self._queue.task_done()

    # Triggers

    def scan(self) -> int:
        """Queue every matching file in the input folder"""
        queued = 0
        try:
            for path in invoice_file_generator(self.input_dir, self.pattern):
                if self.submit(path):
                    queued += 1
        except FileNotFoundError:
            logger.error(f"Input folder not found: {self.input_dir}")
        if queued:
            logger.info(f"Found {queued} file(s) to process in {self.input_dir}")
        return queued

    def notify_change(self, src_path: Union[str, Path]) -> None:
        """Watch callback: (re)start the debounce timer for a path"""
        path = Path(src_path)
        if not self.matches(path) or self._stopping.is_set():
            return

        with self._timers_lock:
            existing = self._timers.pop(path, None)
            if existing is not None:
                existing.cancel()
            timer = threading.Timer(self.debounce_seconds, self._debounced_submit, args=(path,))
            timer.daemon = True
            self._timers[path] = timer
            timer.start()

    def _debounced_submit(self, path: Path) -> None:
        with self._timers_lock:
            self._timers.pop(path, None)
        if not self._stopping.is_set() and path.exists():
            self.submit(path)

    def _poll(self) -> None:
        while not self._stopping.wait(self.poll_interval):
            try:
                self.scan()
                self.check_daily_summary()
            except Exception:
                logger.exception("Poll cycle failed")

    # Summary

    def check_daily_summary(self, now: Optional[datetime] = None) -> Optional[DailySummary]:
        """
        Emit the daily summary once the configured time has passed.

        At most one summary per day. Nothing is sent for an idle day.
        """
        if self.summary_time is None:
            return None

        now = now or self.clock()
        due = datetime.combine(now.date(), self.summary_time)
        if now < due:
            return None
        if self._last_summary is not None and self._last_summary >= due:
            return None

        self._last_summary = now
        if not self.stats.snapshot().has_activity:
            logger.debug("No activity since last summary; skipping daily summary")
            return None

        return self._emit_summary(now)

    def _emit_summary(self, now: datetime) -> DailySummary:
        snapshot = self.stats.snapshot_and_reset()
        summary = DailySummary(
            success_count=snapshot.success_count,
            error_count=snapshot.error_count,
            errors=snapshot.errors,
            period_start=snapshot.period_start,
            timestamp=now,
        )
        logger.info(
            f"Daily summary: {summary.success_count} transformed, "
            f"{summary.error_count} failed"
        )
        if self.dispatcher is not None:
            self.dispatcher.publish(summary)
        return summary

    # Lifecycle

    def run_once(self) -> List[FileOutcome]:
        """Process the current backlog synchronously and return the outcomes"""
        if self.dispatcher is not None:
            self.dispatcher.start()
        self.scan()
        return self.process_pending()

    def start(self) -> None:
        """Start the worker, run the backlog scan, then start the triggers"""
        logger.info(f"Watching {self.input_dir} (poll every {self.poll_interval}s)")
        self._stopping.clear()

        if self.dispatcher is not None:
            self.dispatcher.start()

        self._worker = threading.Thread(target=self._work, name='invoice-worker', daemon=True)
        self._worker.start()

        self.scan()

        if self.watch:
            self._observer = Observer()
            self._observer.schedule(_InputFolderHandler(self), str(self.input_dir), recursive=False)
            self._observer.start()

        self._poller = threading.Thread(target=self._poll, name='invoice-poller', daemon=True)
        self._poller.start()

    def stop(self, final_summary: bool = False, timeout: Optional[float] = None) -> None:
        """
        Stop the triggers and the worker.

        The file currently being processed is finished first; queued files
        are left in the input folder.
        """
        logger.info("Stopping invoice transformer")
        self._stopping.set()

        if self._observer is not None:
            self._observer.stop()
            self._observer.join(timeout)
            self._observer = None

        with self._timers_lock:
            for timer in self._timers.values():
                timer.cancel()
            self._timers.clear()

        if self._poller is not None:
            self._poller.join(timeout)
            self._poller = None

        if self._worker is not None:
            self._queue.put(self._STOP)
            self._worker.join(timeout)
            self._worker = None

        if final_summary and self.stats.snapshot().has_activity:
            self._emit_summary(self.clock())

        if self.dispatcher is not None:
            self.dispatcher.close()

    def __enter__(self):
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.stop()
        return False
