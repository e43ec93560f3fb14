"""Supabase-backed record store for appointments and patients."""

import logging
from datetime import datetime, timedelta, timezone
from typing import Iterable, Optional, List, Set
from zoneinfo import ZoneInfo
from postgrest.exceptions import APIError
from supabase import create_client, Client

from ..exceptions import StoreError, ValidationError
from ..models import (
    ACTIVE_STATUSES,
    Appointment,
    AppointmentStatus,
    InsertResult,
    Patient,
)
from ..utils.helpers import localize

logger = logging.getLogger(__name__)

UNIQUE_VIOLATION = "23505"


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _status_values(statuses: Iterable) -> List[str]:
    return [AppointmentStatus(s).value for s in statuses]


class RecordStore:
    """Persistent appointment and patient tables.

    The one-active-booking-per-slot rule is enforced by the
    ``appointments_active_slot_key`` partial unique index (see
    ``database/schema.sql``); ``insert_appointment`` turns a violation of
    that index into an idempotent "already existed" result.
    """

    def __init__(self, client: Client):
        self.client = client

    @classmethod
    def from_credentials(cls, url: str, key: str) -> "RecordStore":
        """Initialize Supabase client."""
        store = cls(create_client(url, key))
        logger.info("Supabase client initialized")
        return store

    # ==================== Appointment Queries ====================

    async def list_appointments(
        self,
        statuses: Optional[Iterable] = None,
        phone: Optional[str] = None,
        date: Optional[str] = None,
        time: Optional[str] = None,
    ) -> List[Appointment]:
        """Get appointments matching the filter, oldest first."""
        try:
            query = self.client.table("appointments").select("*")
            if statuses is not None:
                query = query.in_("status", _status_values(statuses))
            if phone:
                query = query.eq("patient_phone", phone)
            if date:
                query = query.eq("date", date)
            if time:
                query = query.eq("time", time)

            response = query.order("created_at", desc=False).order("id", desc=False).execute()
            return [Appointment(**row) for row in response.data]
        except APIError as e:
            logger.error(f"Error fetching appointments: {e}")
            raise StoreError(f"Could not list appointments: {e}") from e

    async def get_appointment(self, appointment_id: int) -> Optional[Appointment]:
        """Get a specific appointment by ID."""
        try:
            response = (
                self.client.table("appointments")
                .select("*")
                .eq("id", appointment_id)
                .limit(1)
                .execute()
            )
            if response.data:
                return Appointment(**response.data[0])
            return None
        except APIError as e:
            logger.error(f"Error fetching appointment {appointment_id}: {e}")
            raise StoreError(f"Could not fetch appointment {appointment_id}: {e}") from e

    async def find_active(self, phone: str, date: str, time: str) -> Optional[Appointment]:
        """Get the live booking holding a (phone, date, time) slot, if any."""
        matches = await self.list_appointments(
            statuses=ACTIVE_STATUSES, phone=phone, date=date, time=time
        )
        return matches[0] if matches else None

    async def referenced_event_ids(self, statuses: Iterable = ACTIVE_STATUSES) -> Set[str]:
        """Event IDs held by records in the given statuses."""
        appointments = await self.list_appointments(statuses=statuses)
        return {a.google_event_id for a in appointments if a.google_event_id}

    # ==================== Appointment Writes ====================

    async def insert_appointment(self, appointment: Appointment) -> InsertResult:
        """
        Insert an appointment unless its slot is already booked.

        Returns:
            InsertResult with ``existed=True`` and the holder's ID when an
            active record already occupies (phone, date, time)

        Raises:
            StoreError: on any other database failure
        """
        existing = await self.find_active(
            appointment.patient_phone, appointment.date, appointment.time
        )
        if existing:
            logger.warning(
                f"Appointment already exists for {appointment.patient_phone} on "
                f"{appointment.date} at {appointment.time} (ID: {existing.id})"
            )
            return InsertResult(id=existing.id, existed=True, appointment=existing)

        now = _now_iso()
        row = appointment.to_row()
        row["created_at"] = now
        row["updated_at"] = now

        try:
            response = self.client.table("appointments").insert(row).execute()
        except APIError as e:
            if e.code == UNIQUE_VIOLATION and "google_event_id" not in (e.message or ""):
                # A concurrent booking took the slot between our check and insert.
                winner = await self.find_active(
                    appointment.patient_phone, appointment.date, appointment.time
                )
                if winner:
                    logger.warning(f"Lost insert race for slot; returning appointment {winner.id}")
                    return InsertResult(id=winner.id, existed=True, appointment=winner)
            logger.error(f"Error creating appointment: {e}")
            raise StoreError(f"Could not insert appointment: {e}") from e

        created = Appointment(**response.data[0])
        logger.info(f"Created appointment {created.id} for {created.patient_phone}")
        return InsertResult(id=created.id, existed=False, appointment=created)

    async def update_appointment(
        self,
        appointment_id: int,
        updates: dict,
    ) -> Optional[Appointment]:
        """Update an appointment."""
        updates = dict(updates)
        if "status" in updates:
            updates["status"] = AppointmentStatus(updates["status"]).value
        updates["updated_at"] = _now_iso()
        try:
            response = (
                self.client.table("appointments")
                .update(updates)
                .eq("id", appointment_id)
                .execute()
            )
            if response.data:
                return Appointment(**response.data[0])
            return None
        except APIError as e:
            logger.error(f"Error updating appointment {appointment_id}: {e}")
            raise StoreError(f"Could not update appointment {appointment_id}: {e}") from e

    async def set_event_id(self, appointment_id: int, event_id: Optional[str]) -> Optional[Appointment]:
        """Point an appointment at its calendar event."""
        return await self.update_appointment(appointment_id, {"google_event_id": event_id})

    async def mark_status(self, appointment_id: int, status: AppointmentStatus) -> Optional[Appointment]:
        """Move an appointment to a new status."""
        return await self.update_appointment(appointment_id, {"status": status})

    async def delete_appointments(self, appointment_ids: List[int]) -> int:
        """Hard-delete appointments; returns how many rows went away."""
        if not appointment_ids:
            return 0
        try:
            response = (
                self.client.table("appointments")
                .delete()
                .in_("id", list(appointment_ids))
                .execute()
            )
            return len(response.data or [])
        except APIError as e:
            logger.error(f"Error deleting appointments {appointment_ids}: {e}")
            raise StoreError(f"Could not delete appointments: {e}") from e

    # ==================== Time-based Transitions ====================

    async def complete_past_appointments(self, now: datetime, tz: ZoneInfo) -> int:
        """Mark scheduled appointments whose end has passed as completed."""
        today = now.astimezone(tz).strftime("%Y-%m-%d")
        scheduled = await self.list_appointments(statuses=[AppointmentStatus.SCHEDULED])

        completed = 0
        for appointment in scheduled:
            if appointment.date > today:
                continue
            try:
                end = localize(appointment.date, appointment.time, tz) + timedelta(
                    minutes=appointment.duration_minutes or 0
                )
            except ValidationError:
                continue
            if end <= now:
                await self.mark_status(appointment.id, AppointmentStatus.COMPLETED)
                completed += 1
        return completed

    async def archive_old_appointments(self, before: datetime) -> int:
        """Archive completed/cancelled appointments created before a cutoff."""
        try:
            response = (
                self.client.table("appointments")
                .update({"status": AppointmentStatus.ARCHIVED.value, "updated_at": _now_iso()})
                .in_("status", [AppointmentStatus.COMPLETED.value, AppointmentStatus.CANCELLED.value])
                .lt("created_at", before.isoformat())
                .execute()
            )
            return len(response.data or [])
        except APIError as e:
            logger.error(f"Error archiving appointments: {e}")
            raise StoreError(f"Could not archive appointments: {e}") from e

    # ==================== Patient Operations ====================

    async def get_patient(self, phone: str) -> Optional[Patient]:
        """Get patient by phone number."""
        try:
            response = self.client.table("patients").select("*").eq("phone", phone).limit(1).execute()
            if response.data:
                return Patient(**response.data[0])
            return None
        except APIError as e:
            logger.error(f"Error fetching patient: {e}")
            raise StoreError(f"Could not fetch patient {phone}: {e}") from e

    async def get_or_create_patient(self, phone: str, name: Optional[str] = None) -> Patient:
        """Create or update patient record."""
        existing = await self.get_patient(phone)
        now = _now_iso()
        try:
            if existing:
                if name and name != existing.name:
                    self.client.table("patients").update(
                        {"name": name, "updated_at": now}
                    ).eq("phone", phone).execute()
                    existing.name = name
                return existing

            response = self.client.table("patients").insert({
                "phone": phone,
                "name": name,
                "created_at": now,
                "updated_at": now,
            }).execute()
            return Patient(**response.data[0])
        except APIError as e:
            if e.code == UNIQUE_VIOLATION:
                patient = await self.get_patient(phone)
                if patient:
                    return patient
            logger.error(f"Error creating/updating patient: {e}")
            raise StoreError(f"Could not save patient {phone}: {e}") from e

    async def patient_name(self, phone: str) -> Optional[str]:
        """Name on file for a phone, used when an appointment row has none."""
        patient = await self.get_patient(phone)
        return patient.name if patient else None
