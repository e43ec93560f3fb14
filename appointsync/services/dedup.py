"""Duplicate detection and collapse for the record store and the calendar."""

import logging
from collections import OrderedDict
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Tuple

from ..exceptions import CalendarError
from ..models import ACTIVE_STATUSES, Appointment, CalendarEvent, SweepSummary
from ..utils.helpers import get_zone
from .calendar_gateway import CalendarGateway
from .record_store import RecordStore

logger = logging.getLogger(__name__)

SlotKey = Tuple[str, str, str]
EventSlotKey = Tuple[str, str]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _creation_order(appointment: Appointment) -> tuple:
    created = appointment.created_at or datetime.max.replace(tzinfo=timezone.utc)
    return (created, appointment.id or 0)


class DeduplicationSweep:
    """
    Collapses duplicate groups to one canonical item.

    Both sub-sweeps are idempotent: running either twice, or after the
    reconciliation engine has already touched the same records, is safe.
    Run the store sweep first so calendar events of removed duplicates
    become unreferenced members of their slot group.
    """

    def __init__(
        self,
        store: RecordStore,
        calendar: CalendarGateway,
        timezone: str = "Asia/Kolkata",
        forward_days: int = 30,
        lookback_days: int = 1,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.store = store
        self.calendar = calendar
        self.tz = get_zone(timezone)
        self.forward_days = forward_days
        self.lookback_days = lookback_days
        self._clock = clock

    # ==================== Store Sweep ====================

    async def find_store_duplicates(self) -> Dict[SlotKey, List[Appointment]]:
        """Active appointment groups sharing (phone, date, time), oldest first."""
        appointments = await self.store.list_appointments(statuses=ACTIVE_STATUSES)

        groups: Dict[SlotKey, List[Appointment]] = {}
        for appointment in appointments:
            groups.setdefault(appointment.slot_key, []).append(appointment)

        return {
            key: sorted(members, key=_creation_order)
            for key, members in groups.items()
            if len(members) > 1
        }

    async def sweep_store(self) -> SweepSummary:
        """Keep the earliest-created record of each duplicate group; delete the rest."""
        duplicates = await self.find_store_duplicates()
        summary = SweepSummary(target="store", groups=len(duplicates))

        if not duplicates:
            logger.info("No database duplicates found")
            return summary

        logger.info(f"Found {len(duplicates)} duplicate groups in database")

        for (phone, date, time), members in duplicates.items():
            keeper, extras = members[0], members[1:]
            ids = [a.id for a in extras]
            deleted = await self.store.delete_appointments(ids)
            summary.deleted += deleted

            inherited = next((a.google_event_id for a in extras if a.google_event_id), None)
            if inherited and not keeper.google_event_id:
                # Keeper adopts a removed duplicate's event instead of creating a new one.
                await self.store.set_event_id(keeper.id, inherited)

            logger.info(
                f"Deleted {deleted} duplicates for {phone} {date} {time}, kept appointment {keeper.id}"
            )

        logger.info(f"Database cleanup complete: {summary.deleted} duplicates removed")
        return summary

    # ==================== Calendar Sweep ====================

    async def _upcoming_events(self) -> List[CalendarEvent]:
        now = self._clock()
        return await self.calendar.list_events(
            now - timedelta(days=self.lookback_days),
            now + timedelta(days=self.forward_days),
        )

    def group_events(self, events: List[CalendarEvent]) -> Dict[EventSlotKey, List[CalendarEvent]]:
        """Group events by local (date, HH:MM) of their start, keeping listing order."""
        groups: Dict[EventSlotKey, List[CalendarEvent]] = OrderedDict()
        for event in events:
            groups.setdefault(event.local_slot(self.tz), []).append(event)
        return groups

    async def find_calendar_duplicates(self) -> Dict[EventSlotKey, List[CalendarEvent]]:
        """Calendar time slots holding more than one event."""
        groups = self.group_events(await self._upcoming_events())
        return {key: members for key, members in groups.items() if len(members) > 1}

    async def sweep_calendar(self) -> SweepSummary:
        """
        Collapse each multi-event time slot.

        Events referenced by an active store record are valid. All invalid
        events go; of the valid ones only the first listed stays. A slot
        with no valid event keeps its first listed event.
        """
        duplicates = await self.find_calendar_duplicates()
        summary = SweepSummary(target="calendar", groups=len(duplicates))

        if not duplicates:
            logger.info("No calendar duplicates found")
            return summary

        valid_ids = await self.store.referenced_event_ids(ACTIVE_STATUSES)

        for (date, time), events in duplicates.items():
            logger.info(f"Processing {date} {time}: {len(events)} events")

            valid = [e for e in events if e.id in valid_ids]
            invalid = [e for e in events if e.id not in valid_ids]

            if valid:
                doomed = invalid + valid[1:]
            else:
                doomed = events[1:]

            for event in doomed:
                await self._delete(event, summary)

        logger.info(f"Calendar cleanup complete: {summary.deleted} duplicates removed")
        return summary

    async def _delete(self, event: CalendarEvent, summary: SweepSummary) -> None:
        try:
            await self.calendar.delete_event(event.id)
        except CalendarError as e:
            logger.error(f"Failed to delete duplicate event {event.id}: {e}")
            summary.failed += 1
            summary.errors.append(f"{event.id}: {e}")
            return
        # An already-deleted event counts as removed.
        summary.deleted += 1
