"""Appointment data models."""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional
from pydantic import BaseModel, Field, field_validator


class AppointmentStatus(str, Enum):
    """Possible appointment statuses."""
    SCHEDULED = "scheduled"
    CONFIRMED = "confirmed"
    PENDING = "pending"
    CANCELLED = "cancelled"
    COMPLETED = "completed"
    ARCHIVED = "archived"


# Statuses that count as a live booking for the one-per-slot rule.
ACTIVE_STATUSES = (
    AppointmentStatus.SCHEDULED,
    AppointmentStatus.CONFIRMED,
    AppointmentStatus.PENDING,
)


class TimeSlot(BaseModel):
    """Represents an available time slot."""
    date: str = Field(..., description="Date in YYYY-MM-DD format")
    time: str = Field(..., description="Time in HH:MM format (24-hour)")
    duration_minutes: int = Field(default=30, description="Slot duration in minutes")
    is_available: bool = Field(default=True, description="Whether slot is available")


class Appointment(BaseModel):
    """Represents a booked appointment."""
    id: Optional[int] = Field(default=None, description="Auto-assigned appointment ID")
    patient_phone: str = Field(..., description="Canonical 10-digit phone number")
    patient_name: Optional[str] = Field(default=None, description="Patient's name")
    date: str = Field(..., description="Appointment date (YYYY-MM-DD)")
    time: str = Field(..., description="Appointment time (HH:MM)")
    duration_minutes: int = Field(default=30, description="Duration in minutes")
    status: AppointmentStatus = Field(default=AppointmentStatus.SCHEDULED)
    google_event_id: Optional[str] = Field(default=None, description="Mirrored calendar event ID")
    created_at: Optional[datetime] = Field(default=None)
    updated_at: Optional[datetime] = Field(default=None)
    notes: Optional[str] = Field(default=None, description="Additional notes")

    @field_validator("created_at", "updated_at")
    @classmethod
    def _assume_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        # Rows written without an offset are UTC.
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    @property
    def slot_key(self) -> tuple[str, str, str]:
        """The (phone, date, time) triple the duplicate rule is keyed on."""
        return (self.patient_phone, self.date, self.time)

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    @property
    def is_synced(self) -> bool:
        return bool(self.google_event_id)

    def to_row(self) -> dict:
        """Column dict for an insert, without server-assigned fields."""
        return {
            "patient_phone": self.patient_phone,
            "patient_name": self.patient_name,
            "date": self.date,
            "time": self.time,
            "duration_minutes": self.duration_minutes,
            "status": AppointmentStatus(self.status).value,
            "google_event_id": self.google_event_id or None,
            "notes": self.notes,
        }

    class Config:
        use_enum_values = True


class InsertResult(BaseModel):
    """Outcome of an idempotent insert."""
    id: int
    existed: bool = False
    appointment: Optional[Appointment] = None
