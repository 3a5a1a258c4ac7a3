"""
Success/error counters shared between the worker and the summary check.
"""
import threading
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from invoice_transformer.core.models import ProcessingError


class StatsSnapshot(BaseModel):
    """Point-in-time copy of the counters"""
    success_count: int = 0
    error_count: int = 0
    errors: List[ProcessingError] = []
    period_start: datetime = Field(default_factory=datetime.now)
    taken_at: datetime = Field(default_factory=datetime.now)

    @property
    def total(self) -> int:
        return self.success_count + self.error_count

    @property
    def has_activity(self) -> bool:
        return self.total > 0


class ProcessingStats:
    """
    Thread-safe success/error tallies.

    Written by the per-file outcome handler, read and reset by the daily
    summary check. All access goes through one lock.
    """

    def __init__(self, clock=datetime.now):
        self._clock = clock
        self._lock = threading.Lock()
        self._success_count = 0
        self._errors: List[ProcessingError] = []
        self._period_start = clock()

    def record_success(self) -> int:
        with self._lock:
            self._success_count += 1
            return self._success_count

    def record_error(self, file_name: str, message: str,
                     detail: Optional[str] = None) -> int:
        with self._lock:
            self._errors.append(ProcessingError(
                timestamp=self._clock(),
                file_name=file_name,
                message=message,
                detail=detail,
            ))
            return len(self._errors)

    @property
    def success_count(self) -> int:
        with self._lock:
            return self._success_count

    @property
    def error_count(self) -> int:
        with self._lock:
            return len(self._errors)

    def snapshot(self) -> StatsSnapshot:
        with self._lock:
            return self._snapshot_locked()

    def snapshot_and_reset(self) -> StatsSnapshot:
        """Copy the counters and zero them in one step"""
        with self._lock:
            snapshot = self._snapshot_locked()
            self._success_count = 0
            self._errors = []
            self._period_start = snapshot.taken_at
            return snapshot

    def _snapshot_locked(self) -> StatsSnapshot:
        return StatsSnapshot(
            success_count=self._success_count,
            error_count=len(self._errors),
            errors=list(self._errors),
            period_start=self._period_start,
            taken_at=self._clock(),
        )

    def get_summary(self) -> str:
        """One-line running totals for the log"""
        snapshot = self.snapshot()
        return f"Success: {snapshot.success_count} | Errors: {snapshot.error_count}"
