"""Sync run summaries and status models."""

from datetime import datetime
from typing import Optional, List
from pydantic import BaseModel, Field


class ReconciliationSummary(BaseModel):
    """Counts from one reconciliation pass."""
    checked: int = Field(default=0, description="Appointments with an event ID examined")
    events_listed: int = Field(default=0)
    recreated: int = Field(default=0, description="Drifted events recreated in the calendar")
    updated: int = Field(default=0, description="Calendar events moved to match the store")
    drift_skipped: int = Field(default=0, description="Drifted appointments too old to recreate")
    orphans: int = Field(default=0, description="Calendar events with no local record")
    out_of_window: int = Field(default=0, description="Appointments outside the listed range")
    failed: int = Field(default=0)
    errors: List[str] = Field(default_factory=list)

    @property
    def writes(self) -> int:
        return self.recreated + self.updated


class RetrySummary(BaseModel):
    """Counts from the retry-unsynced pass."""
    attempted: int = Field(default=0)
    succeeded: int = Field(default=0)
    failed: int = Field(default=0)
    invalid: int = Field(default=0, description="Skipped for malformed date/time")
    errors: List[str] = Field(default_factory=list)


class SweepSummary(BaseModel):
    """Counts from one deduplication sub-sweep."""
    target: str = Field(..., description="store or calendar")
    groups: int = Field(default=0, description="Duplicate groups found")
    deleted: int = Field(default=0)
    failed: int = Field(default=0)
    errors: List[str] = Field(default_factory=list)


class ImportSummary(BaseModel):
    """Counts from an explicit calendar import."""
    examined: int = Field(default=0)
    imported: int = Field(default=0)
    linked: int = Field(default=0, description="Existing records given the event ID")
    skipped: int = Field(default=0)
    failed: int = Field(default=0, description="Events that could not be stored")
    errors: List[str] = Field(default_factory=list)


class CleanupSummary(BaseModel):
    """Counts from the time-based status transitions."""
    completed: int = Field(default=0)
    archived: int = Field(default=0)
    events_removed: int = Field(default=0, description="Leftover events of cancelled appointments deleted")
    failed: int = Field(default=0)


class CoordinatorStatus(BaseModel):
    """Snapshot of the sync gate for monitoring."""
    running: bool = False
    last_run_at: Optional[datetime] = None
    seconds_since_last_run: Optional[float] = None


class SyncReport(BaseModel):
    """Result of one gated sync entry point."""
    trigger: str = Field(..., description="manual, periodic, startup or cli")
    skipped: bool = Field(default=False, description="Coordinator refused to start")
    ok: bool = Field(default=True)
    error: Optional[str] = Field(default=None)
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    invalid_records: int = Field(default=0)
    reconciliation: Optional[ReconciliationSummary] = None
    retry: Optional[RetrySummary] = None
    store_sweep: Optional[SweepSummary] = None
    calendar_sweep: Optional[SweepSummary] = None
    cleanup: Optional[CleanupSummary] = None
    imported: Optional[ImportSummary] = None

    def to_display_dict(self) -> dict:
        """Convert to a compact dict for logs and the CLI."""
        result = {
            "trigger": self.trigger,
            "status": "skipped" if self.skipped else ("ok" if self.ok else "failed"),
        }
        if self.error:
            result["error"] = self.error
        if self.started_at and self.finished_at:
            result["durationSeconds"] = round((self.finished_at - self.started_at).total_seconds(), 2)
        for name in ("reconciliation", "retry", "store_sweep", "calendar_sweep", "cleanup", "imported"):
            stage = getattr(self, name)
            if stage is not None:
                result[name] = stage.model_dump(exclude={"errors"})
        if self.invalid_records:
            result["invalid_records"] = self.invalid_records
        return result


class StatusReport(BaseModel):
    """Read-only health snapshot of both stores."""
    scheduled: int = 0
    unsynced: int = 0
    store_duplicate_groups: int = 0
    calendar_duplicate_groups: Optional[int] = None
    coordinator: CoordinatorStatus = Field(default_factory=CoordinatorStatus)

    @property
    def is_clean(self) -> bool:
        return self.store_duplicate_groups == 0 and not self.calendar_duplicate_groups
