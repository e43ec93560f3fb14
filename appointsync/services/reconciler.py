"""Reconciliation between the record store and the calendar."""

import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional, Tuple

from ..exceptions import CalendarError, ValidationError
from ..models import (
    Appointment,
    AppointmentStatus,
    CalendarEvent,
    EventDetails,
    ReconciliationSummary,
    RetrySummary,
)
from ..utils.helpers import get_zone, localize
from .calendar_gateway import CalendarGateway
from .record_store import RecordStore

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ReconciliationEngine:
    """
    Detects and fixes divergence between scheduled appointments and their
    mirrored calendar events.

    The local record is authoritative for date/time/duration. The engine
    never deletes calendar events and never writes appointment times; it
    only creates missing events, moves mismatched ones, and writes new
    event IDs back to the store.
    """

    def __init__(
        self,
        store: RecordStore,
        calendar: CalendarGateway,
        timezone: str = "Asia/Kolkata",
        forward_days: int = 30,
        lookback_days: int = 1,
        drift_recreate_window: timedelta = timedelta(hours=24),
        time_match_tolerance: timedelta = timedelta(0),
        clock: Callable[[], datetime] = _utcnow,
    ):
        """
        Initialize the engine.

        Args:
            store: Appointment record store
            calendar: Calendar gateway
            timezone: Zone appointment dates/times are expressed in
            forward_days: How far ahead to list calendar events
            lookback_days: How far back to list calendar events
            drift_recreate_window: Max appointment age for recreating a missing event
            time_match_tolerance: Allowed start difference before pushing an update
            clock: Returns the current aware datetime
        """
        self.store = store
        self.calendar = calendar
        self.tz = get_zone(timezone)
        self.forward_days = forward_days
        self.lookback_days = lookback_days
        self.drift_recreate_window = drift_recreate_window
        self.time_match_tolerance = time_match_tolerance
        self._clock = clock

    def sync_window(self) -> Tuple[datetime, datetime]:
        """The [time_min, time_max) range listed from the calendar."""
        now = self._clock()
        return now - timedelta(days=self.lookback_days), now + timedelta(days=self.forward_days)

    async def event_details(self, appointment: Appointment) -> EventDetails:
        """Event details for an appointment, with the patient table as name fallback."""
        fallback = None
        if not appointment.patient_name:
            fallback = await self.store.patient_name(appointment.patient_phone)
        return EventDetails.from_appointment(appointment, patient_name=fallback)

    def times_match(self, appointment: Appointment, event: CalendarEvent) -> bool:
        expected = localize(appointment.date, appointment.time, self.tz)
        return abs(expected - event.start) <= self.time_match_tolerance

    # ==================== Reconciliation ====================

    async def reconcile(self) -> ReconciliationSummary:
        """
        Compare both stores and apply fixes.

        Raises:
            StoreError / CalendarError: only when either side cannot be read
            or an event ID cannot be written back
        """
        appointments = await self.store.list_appointments(statuses=[AppointmentStatus.SCHEDULED])
        linked: Dict[str, Appointment] = {
            a.google_event_id: a for a in appointments if a.google_event_id
        }

        time_min, time_max = self.sync_window()
        events = await self.calendar.list_events(time_min, time_max)
        listed: Dict[str, CalendarEvent] = {e.id: e for e in events}

        summary = ReconciliationSummary(checked=len(linked), events_listed=len(events))
        now = self._clock()

        to_recreate: List[Appointment] = []
        to_update: List[Tuple[Appointment, CalendarEvent]] = []

        for event_id, appointment in linked.items():
            event = listed.get(event_id)

            if event is None:
                try:
                    start = localize(appointment.date, appointment.time, self.tz)
                except ValidationError as e:
                    logger.error(f"Appointment {appointment.id} has invalid date/time: {e}")
                    summary.failed += 1
                    summary.errors.append(f"{appointment.id}: {e}")
                    continue

                if not time_min <= start < time_max:
                    # Not listed because it falls outside the window, not because it is gone.
                    summary.out_of_window += 1
                    continue

                age = self._age(appointment, now)
                if age is not None and age <= self.drift_recreate_window:
                    logger.warning(
                        f"Appointment {appointment.id} ({appointment.patient_phone}) references "
                        f"missing event {event_id}; recreating"
                    )
                    to_recreate.append(appointment)
                else:
                    logger.warning(
                        f"Appointment {appointment.id} references missing event {event_id}; "
                        f"skipping, created {self._hours(age)} hours ago"
                    )
                    summary.drift_skipped += 1
                continue

            try:
                if not self.times_match(appointment, event):
                    to_update.append((appointment, event))
            except ValidationError as e:
                logger.error(f"Appointment {appointment.id} has invalid date/time: {e}")
                summary.failed += 1
                summary.errors.append(f"{appointment.id}: {e}")

        for event_id in listed.keys() - linked.keys():
            # Resolved only by an explicit import, never here.
            logger.info(f"Calendar event {event_id} not found in database")
            summary.orphans += 1

        for appointment in to_recreate:
            await self._recreate(appointment, summary)

        for appointment, event in to_update:
            await self._push_update(appointment, event, summary)

        logger.info(
            f"Reconciliation done: {summary.recreated} recreated, {summary.updated} updated, "
            f"{summary.drift_skipped} drift skipped, {summary.orphans} orphans, {summary.failed} failed"
        )
        return summary

    async def _recreate(self, appointment: Appointment, summary: ReconciliationSummary) -> None:
        try:
            details = await self.event_details(appointment)
            event_id = await self.calendar.create_event(details)
        except (CalendarError, ValidationError) as e:
            logger.error(f"Failed to recreate calendar event for appointment {appointment.id}: {e}")
            summary.failed += 1
            summary.errors.append(f"{appointment.id}: {e}")
            return

        await self.store.set_event_id(appointment.id, event_id)
        summary.recreated += 1
        logger.info(f"Recreated event {event_id} for appointment {appointment.id}")

    async def _push_update(
        self,
        appointment: Appointment,
        event: CalendarEvent,
        summary: ReconciliationSummary,
    ) -> None:
        try:
            details = await self.event_details(appointment)
            await self.calendar.update_event(event.id, details)
        except (CalendarError, ValidationError) as e:
            logger.error(f"Failed to update calendar event {event.id}: {e}")
            summary.failed += 1
            summary.errors.append(f"{event.id}: {e}")
            return

        summary.updated += 1
        logger.info(
            f"Moved event {event.id} to {appointment.date} {appointment.time} "
            f"for appointment {appointment.id}"
        )

    # ==================== Retry Unsynced ====================

    async def retry_unsynced(self) -> RetrySummary:
        """Create calendar events for scheduled appointments that never got one."""
        appointments = await self.store.list_appointments(statuses=[AppointmentStatus.SCHEDULED])
        pending = [a for a in appointments if not a.is_synced]

        summary = RetrySummary()
        if not pending:
            logger.info("No failed appointments to retry sync for")
            return summary

        logger.info(f"Found {len(pending)} appointments that need Google Calendar sync")

        for appointment in pending:
            summary.attempted += 1
            try:
                localize(appointment.date, appointment.time, self.tz)
                details = await self.event_details(appointment)
                event_id = await self.calendar.create_event(details)
            except ValidationError as e:
                logger.error(f"Skipping appointment {appointment.id} with invalid data: {e}")
                summary.invalid += 1
                summary.errors.append(f"{appointment.id}: {e}")
                continue
            except CalendarError as e:
                logger.error(f"Still failed to sync appointment {appointment.id}: {e}")
                summary.failed += 1
                summary.errors.append(f"{appointment.id}: {e}")
                continue

            await self.store.set_event_id(appointment.id, event_id)
            summary.succeeded += 1
            logger.info(f"Synced appointment {appointment.id} to Google Calendar: {event_id}")

        logger.info(f"Retry sync completed: {summary.succeeded} successful, {summary.failed} failed")
        return summary

    # ==================== Helpers ====================

    @staticmethod
    def _age(appointment: Appointment, now: datetime) -> Optional[timedelta]:
        if appointment.created_at is None:
            return None
        return now - appointment.created_at

    @staticmethod
    def _hours(age: Optional[timedelta]) -> str:
        if age is None:
            return "an unknown number of"
        return str(int(age.total_seconds() // 3600))
