"""
Outbound notification events.

Per-file outcomes are published onto a queue consumed by a separate thread,
so a slow or failing notifier can never change how a file was routed.
"""
import logging
import queue
import threading
from datetime import datetime
from typing import List, Optional, Protocol, Union

from pydantic import BaseModel, Field

from invoice_transformer.core.models import ProcessingError
from invoice_transformer.reports.generator import generate_summary_report


logger = logging.getLogger(__name__)


class FileProcessed(BaseModel):
    """A source file was transformed and routed"""
    file_name: str
    output_name: str
    success_count: int
    timestamp: datetime = Field(default_factory=datetime.now)


class FileFailed(BaseModel):
    """A source file was quarantined"""
    file_name: str
    message: str
    detail: Optional[str] = None
    timestamp: datetime = Field(default_factory=datetime.now)


class DailySummary(BaseModel):
    """Counters since the previous summary"""
    success_count: int
    error_count: int
    errors: List[ProcessingError] = []
    period_start: datetime
    timestamp: datetime = Field(default_factory=datetime.now)


NotificationEvent = Union[FileProcessed, FileFailed, DailySummary]


class Notifier(Protocol):
    """Anything that can deliver a notification event"""

    def notify(self, event: NotificationEvent) -> None:
        ...


class LoggingNotifier:
    """Notifier that writes events to the application log"""

    def __init__(self, log: Optional[logging.Logger] = None):
        self.log = log or logging.getLogger('invoice_transformer.notifications')

    def notify(self, event: NotificationEvent) -> None:
        if isinstance(event, FileProcessed):
            self.log.info(f"Processed {event.file_name} -> {event.output_name}")
        elif isinstance(event, FileFailed):
            self.log.error(f"Failed {event.file_name}: {event.message}")
        elif isinstance(event, DailySummary):
            self.log.info("\n" + generate_summary_report(event))


class NotificationDispatcher:
    """
    Queue-backed fan-out to a single notifier.

    publish() only enqueues; a daemon thread delivers. Notifier exceptions
    are logged and dropped.
    """

    _STOP = object()

    def __init__(self, notifier: Optional[Notifier] = None, enabled: bool = True):
        self.notifier = notifier or LoggingNotifier()
        self.enabled = enabled
        self._queue: "queue.Queue" = queue.Queue()
        self._thread: Optional[threading.Thread] = None
        self._lock = threading.Lock()
        self.delivered = 0
        self.failed = 0

    def start(self) -> None:
        with self._lock:
            if self._thread is not None and self._thread.is_alive():
                return
            self._thread = threading.Thread(
                target=self._run, name='notification-dispatcher', daemon=True
            )
            self._thread.start()

    def publish(self, event: NotificationEvent) -> None:
        """Enqueue an event; never raises"""
        if not self.enabled:
            return
        try:
            self._queue.put_nowait(event)
        except Exception as e:
            logger.error(f"Could not queue notification {type(event).__name__}: {e}")

    def _deliver(self, event: NotificationEvent) -> None:
        try:
            self.notifier.notify(event)
            self.delivered += 1
        except Exception:
            self.failed += 1
            logger.exception(f"Notifier failed for {type(event).__name__}")

    def _run(self) -> None:
        while True:
            event = self._queue.get()
            try:
                if event is self._STOP:
                    return
                self._deliver(event)
            finally:
                self._queue.task_done()

    def flush(self) -> None:
        """Deliver everything queued so far on the calling thread"""
        while True:
            try:
                event = self._queue.get_nowait()
            except queue.Empty:
                return
            try:
                if event is not self._STOP:
                    self._deliver(event)
            finally:
                self._queue.task_done()

    def close(self, timeout: float = 5.0) -> None:
        """Drain pending events and stop the delivery thread"""
        thread = self._thread
        if thread is None or not thread.is_alive():
            self.flush()
            return
        self._queue.put(self._STOP)
        thread.join(timeout)
        if thread.is_alive():
            logger.warning("Notification dispatcher did not stop within %.1fs", timeout)
        self._thread = None
