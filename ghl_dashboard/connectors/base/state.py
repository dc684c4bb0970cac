"""
Sync State Management

Progress and status tracking for sync passes.
"""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field

from ghl_dashboard.kernel.time import utc_now


class SyncStatus(str, Enum):
    IDLE = "idle"
    SYNCING = "syncing"
    COMPLETED = "completed"
    PARTIAL = "partial"
    FAILED = "failed"
    CANCELLED = "cancelled"


class SyncProgress(BaseModel):
    """
    Records merged so far against the expected total.

    `total == 0` means the total is not known yet. Once it is known,
    `current` never exceeds it, and `current` never decreases within a pass.
    """

    current: int = 0
    total: int = 0

    @property
    def total_known(self) -> bool:
        return self.total > 0

    @property
    def fraction(self) -> float | None:
        if not self.total_known:
            return None
        return min(1.0, self.current / self.total)

    def advance(self, count: int) -> None:
        if count <= 0:
            return
        target = self.current + count
        if self.total_known:
            target = min(target, self.total)
        self.current = max(self.current, target)

    def correct_total(self, reported: int | None) -> None:
        """Adopt a provider-reported total; never below what was already merged."""
        if reported is None or reported <= 0:
            return
        self.total = max(reported, self.current)

    def reset(self, total: int = 0) -> None:
        self.current = 0
        self.total = max(total, 0)


class SyncState(BaseModel):
    """Status of the latest sync pass."""

    status: SyncStatus = SyncStatus.IDLE
    progress: SyncProgress = Field(default_factory=SyncProgress)
    pages_fetched: int = 0
    error_message: str | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None

    @property
    def is_running(self) -> bool:
        return self.status == SyncStatus.SYNCING

    @property
    def incomplete(self) -> bool:
        """Whether the snapshot is known to be missing records from the last pass."""
        return self.status in (SyncStatus.PARTIAL, SyncStatus.FAILED, SyncStatus.CANCELLED)

    def mark_started(self, total: int = 0) -> None:
        self.status = SyncStatus.SYNCING
        self.started_at = utc_now()
        self.completed_at = None
        self.error_message = None
        self.pages_fetched = 0
        self.progress.reset(total)

    def mark_completed(self) -> None:
        self.status = SyncStatus.COMPLETED
        self.completed_at = utc_now()
        # Totals that were never reported become whatever the pass actually saw.
        if not self.progress.total_known:
            self.progress.total = self.progress.current

    def mark_partial(self, error: str) -> None:
        self.status = SyncStatus.PARTIAL
        self.completed_at = utc_now()
        self.error_message = error

    def mark_failed(self, error: str) -> None:
        self.status = SyncStatus.FAILED
        self.completed_at = utc_now()
        self.error_message = error

    def mark_cancelled(self) -> None:
        self.status = SyncStatus.CANCELLED
        self.completed_at = utc_now()


class SyncResult(BaseModel):
    """Outcome of one sync pass."""

    status: SyncStatus
    records_synced: int
    pages_fetched: int
    progress: SyncProgress
    error: str | None = None

    @property
    def partial(self) -> bool:
        return self.status == SyncStatus.PARTIAL
