"""Data models package."""

from .appointment import (
    ACTIVE_STATUSES,
    Appointment,
    AppointmentStatus,
    InsertResult,
    TimeSlot,
)
from .patient import Patient
from .calendar_event import CalendarEvent, EventDetails
from .sync import (
    CleanupSummary,
    CoordinatorStatus,
    ImportSummary,
    ReconciliationSummary,
    RetrySummary,
    StatusReport,
    SweepSummary,
    SyncReport,
)

__all__ = [
    "ACTIVE_STATUSES",
    "Appointment",
    "AppointmentStatus",
    "InsertResult",
    "TimeSlot",
    "Patient",
    "CalendarEvent",
    "EventDetails",
    "CleanupSummary",
    "CoordinatorStatus",
    "ImportSummary",
    "ReconciliationSummary",
    "RetrySummary",
    "StatusReport",
    "SweepSummary",
    "SyncReport",
]
