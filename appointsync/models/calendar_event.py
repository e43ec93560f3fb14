"""Calendar event models mirrored from the external provider."""

from datetime import datetime, timedelta
from typing import Optional
from zoneinfo import ZoneInfo
from pydantic import BaseModel, Field

from .appointment import Appointment


class CalendarEvent(BaseModel):
    """An event as listed by the calendar provider."""
    id: str = Field(..., description="Opaque provider event ID")
    summary: Optional[str] = Field(default=None)
    description: Optional[str] = Field(default=None)
    start: datetime = Field(..., description="Timezone-aware start instant")
    end: datetime = Field(..., description="Timezone-aware end instant")
    status: str = Field(default="confirmed", description="confirmed, tentative or cancelled")
    created: Optional[datetime] = Field(default=None)
    updated: Optional[datetime] = Field(default=None)

    @property
    def duration_minutes(self) -> int:
        return int((self.end - self.start).total_seconds() // 60)

    def local_slot(self, tz: ZoneInfo) -> tuple[str, str]:
        """(YYYY-MM-DD, HH:MM) of the start instant in the given timezone."""
        local = self.start.astimezone(tz)
        return local.strftime("%Y-%m-%d"), local.strftime("%H:%M")


class EventDetails(BaseModel):
    """What the gateway needs to write an appointment into the calendar."""
    patient_name: str = Field(default="Patient")
    patient_phone: str = Field(...)
    date: str = Field(..., description="YYYY-MM-DD")
    time: str = Field(..., description="HH:MM")
    duration_minutes: int = Field(default=30)
    notes: str = Field(default="")

    @classmethod
    def from_appointment(
        cls,
        appointment: Appointment,
        patient_name: Optional[str] = None,
    ) -> "EventDetails":
        """Build details, falling back to the patient record's name."""
        return cls(
            patient_name=appointment.patient_name or patient_name or "Patient",
            patient_phone=appointment.patient_phone,
            date=appointment.date,
            time=appointment.time,
            duration_minutes=appointment.duration_minutes or 30,
            notes=appointment.notes or "",
        )

    def end_after(self, start: datetime) -> datetime:
        return start + timedelta(minutes=self.duration_minutes)
