"""Booking operations used by the conversational layer."""

import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, List, Optional

from ..exceptions import CalendarError, ValidationError
from ..models import ACTIVE_STATUSES, Appointment, AppointmentStatus, EventDetails
from ..utils.helpers import localize, normalize_phone
from .calendar_gateway import CalendarGateway
from .record_store import RecordStore
from .slot_generator import BusyInterval, SlotGenerator

logger = logging.getLogger(__name__)


@dataclass
class BookingResult:
    """Result from a booking operation."""
    success: bool
    data: Any = None
    message: str = ""
    error: Optional[str] = None


class BookingService:
    """
    Book, cancel and reschedule appointments.

    The local record is written first. Calendar failures are logged and
    never fail the operation; the sync engine picks the appointment up on
    its next retry pass.

    Store failures (StoreError) propagate to the caller.
    """

    def __init__(
        self,
        store: RecordStore,
        calendar: CalendarGateway,
        slot_generator: SlotGenerator,
    ):
        self.store = store
        self.calendar = calendar
        self.slots = slot_generator

    async def _details(self, appointment: Appointment) -> EventDetails:
        fallback = None
        if not appointment.patient_name:
            fallback = await self.store.patient_name(appointment.patient_phone)
        return EventDetails.from_appointment(appointment, patient_name=fallback)

    async def _mirror(self, appointment: Appointment) -> Optional[str]:
        """Create the calendar event for an appointment; None when the calendar fails."""
        try:
            event_id = await self.calendar.create_event(await self._details(appointment))
        except CalendarError as e:
            logger.error(f"Calendar sync failed for appointment {appointment.id}, will retry later: {e}")
            return None
        await self.store.set_event_id(appointment.id, event_id)
        return event_id

    async def _busy_intervals(
        self,
        date: str,
        ignore: Optional[Appointment] = None,
    ) -> List[BusyInterval]:
        """
        Busy time on a date from active bookings and calendar events.

        Args:
            date: Date to inspect (YYYY-MM-DD)
            ignore: Appointment whose own record and event are not counted

        Returns:
            List of (start, end) intervals; calendar time is left out when
            the calendar cannot be listed
        """
        day_start = localize(date, "00:00", self.slots.tz)

        busy = []
        for booked in await self.store.list_appointments(statuses=ACTIVE_STATUSES, date=date):
            if ignore is not None and booked.id == ignore.id:
                continue
            try:
                start = localize(booked.date, booked.time, self.slots.tz)
            except ValidationError:
                logger.warning(f"Skipping appointment {booked.id} with unreadable slot {booked.date} {booked.time}")
                continue
            duration = booked.duration_minutes or self.slots.default_slot_duration
            busy.append((start, start + timedelta(minutes=duration)))

        try:
            events = await self.calendar.list_events(day_start, day_start + timedelta(days=1))
        except CalendarError as e:
            logger.warning(f"Calendar unavailable for slot lookup, using local bookings only: {e}")
            return busy

        ignored_event = ignore.google_event_id if ignore is not None else None
        busy.extend((e.start, e.end) for e in events if e.id != ignored_event)
        return busy

    async def _slot_taken(
        self,
        date: str,
        time: str,
        duration_minutes: int,
        ignore: Optional[Appointment] = None,
    ) -> bool:
        start = localize(date, time, self.slots.tz)
        end = start + timedelta(minutes=duration_minutes)
        busy = await self._busy_intervals(date, ignore=ignore)
        return any(start < busy_end and busy_start < end for busy_start, busy_end in busy)

    async def available_slots(self, date: str, duration_minutes: Optional[int] = None) -> BookingResult:
        """Free slots on a date, excluding local bookings and calendar busy time."""
        try:
            busy = await self._busy_intervals(date)
        except ValidationError as e:
            return BookingResult(success=False, error=str(e), message="Invalid date")

        available = self.slots.slots_for_date(date, busy=busy, duration_minutes=duration_minutes)
        return BookingResult(
            success=True,
            data={"slots": [s.model_dump() for s in available], "date": date},
            message=f"Found {len(available)} available slots",
        )

    async def book(
        self,
        phone: str,
        date: str,
        time: str,
        name: Optional[str] = None,
        duration_minutes: Optional[int] = None,
        notes: Optional[str] = None,
    ) -> BookingResult:
        """
        Book an appointment.

        Repeating a booking for the same (phone, date, time) returns the
        existing appointment instead of creating a second one. Any other
        overlapping booking or calendar event makes the slot unavailable.

        Args:
            phone: Patient phone in any common format
            date: Appointment date (YYYY-MM-DD)
            time: Appointment time (HH:MM)
            name: Patient's name
            duration_minutes: Duration in minutes
            notes: Free-text notes

        Returns:
            BookingResult with the appointment and whether it already existed
        """
        try:
            phone = normalize_phone(phone)
        except ValidationError as e:
            return BookingResult(success=False, error=str(e), message="Invalid phone number")

        duration = duration_minutes or self.slots.default_slot_duration
        is_valid, error_msg = self.slots.validate_slot(date, time, duration)
        if not is_valid:
            return BookingResult(success=False, error=error_msg, message="Invalid slot")

        own = await self.store.find_active(phone, date, time)
        if not own and await self._slot_taken(date, time, duration):
            return BookingResult(
                success=False,
                error=f"Slot {date} at {time} is already booked",
                message="Slot unavailable",
            )

        patient = await self.store.get_or_create_patient(phone, name=name)

        result = await self.store.insert_appointment(Appointment(
            patient_phone=phone,
            patient_name=name or patient.name,
            date=date,
            time=time,
            duration_minutes=duration,
            status=AppointmentStatus.SCHEDULED,
            notes=notes,
        ))
        appointment = result.appointment

        event_id = appointment.google_event_id
        if not event_id:
            event_id = await self._mirror(appointment)
            appointment.google_event_id = event_id

        verb = "already existed" if result.existed else "booked"
        return BookingResult(
            success=True,
            data={
                "appointment": appointment.model_dump(),
                "existed": result.existed,
                "calendar_synced": bool(event_id),
            },
            message=f"Appointment {result.id} {verb}",
        )

    async def cancel(self, appointment_id: int) -> BookingResult:
        """Cancel an appointment and remove its calendar event."""
        appointment = await self.store.get_appointment(appointment_id)
        if not appointment:
            return BookingResult(success=False, error=f"Appointment {appointment_id} not found")

        if appointment.status == AppointmentStatus.CANCELLED:
            return BookingResult(success=True, data={"appointment": appointment.model_dump()},
                                 message="Appointment already cancelled")

        updated = await self.store.mark_status(appointment_id, AppointmentStatus.CANCELLED)

        if appointment.google_event_id:
            try:
                await self.calendar.delete_event(appointment.google_event_id)
            except CalendarError as e:
                # Stays linked; cleanup_old_data retries the delete.
                logger.error(f"Failed to delete event {appointment.google_event_id}: {e}")
            else:
                updated = await self.store.set_event_id(appointment_id, None) or updated

        logger.info(f"Cancelled appointment {appointment_id}")
        return BookingResult(
            success=True,
            data={"appointment": (updated or appointment).model_dump()},
            message="Appointment cancelled",
        )

    async def reschedule(
        self,
        appointment_id: int,
        new_date: str,
        new_time: str,
        duration_minutes: Optional[int] = None,
    ) -> BookingResult:
        """Move an appointment in place and push the change to the calendar."""
        current = await self.store.get_appointment(appointment_id)
        if not current:
            return BookingResult(success=False, error=f"Appointment {appointment_id} not found")
        if not current.is_active:
            return BookingResult(success=False, error=f"Appointment {appointment_id} is {current.status}")

        duration = duration_minutes or current.duration_minutes
        is_valid, error_msg = self.slots.validate_slot(new_date, new_time, duration)
        if not is_valid:
            return BookingResult(success=False, error=error_msg, message="Invalid slot")

        if await self._slot_taken(new_date, new_time, duration, ignore=current):
            return BookingResult(
                success=False,
                error=f"Slot {new_date} at {new_time} is already booked",
                message="Slot unavailable",
            )

        updated = await self.store.update_appointment(appointment_id, {
            "date": new_date,
            "time": new_time,
            "duration_minutes": duration,
        })
        if not updated:
            return BookingResult(success=False, error=f"Appointment {appointment_id} not found")

        if updated.google_event_id:
            try:
                await self.calendar.update_event(updated.google_event_id, await self._details(updated))
            except CalendarError as e:
                # Reconciliation pushes the new time (or recreates the event) later.
                logger.error(f"Failed to move event {updated.google_event_id}: {e}")
        else:
            updated.google_event_id = await self._mirror(updated)

        logger.info(f"Rescheduled appointment {appointment_id} to {new_date} {new_time}")
        return BookingResult(
            success=True,
            data={"appointment": updated.model_dump()},
            message="Appointment rescheduled",
        )
