"""Gated sync entry points: full sync, reconciliation, maintenance and import."""

import logging
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Optional

from ..exceptions import AppointSyncError, CalendarError, StoreError, ValidationError
from ..models import (
    Appointment,
    AppointmentStatus,
    CalendarEvent,
    CleanupSummary,
    ImportSummary,
    StatusReport,
    SyncReport,
)
from ..utils.helpers import get_zone, parse_event_contact, validate_date, validate_time
from .calendar_gateway import CalendarGateway
from .coordinator import SyncCoordinator
from .dedup import DeduplicationSweep
from .reconciler import ReconciliationEngine
from .record_store import RecordStore

logger = logging.getLogger(__name__)

Stage = Callable[[SyncReport], Awaitable[None]]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CalendarSyncService:
    """
    Entry points shared by manual triggers, the periodic timer and startup.

    Every mutating entry point goes through the coordinator: a refused
    ``start()`` yields a skipped report, and the gate is released in a
    ``finally`` whatever happens inside. Store or calendar read failures end
    the cycle with ``ok=False``; they are retried on the next cycle.
    """

    def __init__(
        self,
        store: RecordStore,
        calendar: CalendarGateway,
        coordinator: SyncCoordinator,
        reconciler: ReconciliationEngine,
        dedup: DeduplicationSweep,
        timezone: str = "Asia/Kolkata",
        archive_after_days: int = 30,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.store = store
        self.calendar = calendar
        self.coordinator = coordinator
        self.reconciler = reconciler
        self.dedup = dedup
        self.tz = get_zone(timezone)
        self.archive_after = timedelta(days=archive_after_days)
        self._clock = clock

    async def _gated(self, trigger: str, stages: Stage) -> SyncReport:
        if not self.coordinator.start():
            logger.info(f"{trigger} sync skipped (blocked by sync coordinator)")
            return SyncReport(trigger=trigger, skipped=True)

        report = SyncReport(trigger=trigger, started_at=self._clock())
        logger.info(f"Starting {trigger} sync")
        try:
            await stages(report)
        except AppointSyncError as e:
            logger.error(f"{trigger} sync failed: {e}")
            report.ok = False
            report.error = str(e)
        finally:
            self.coordinator.stop()
            report.finished_at = self._clock()

        logger.info(f"{trigger} sync finished: {report.to_display_dict()}")
        return report

    # ==================== Entry Points ====================

    async def run_full_sync(self, trigger: str = "manual") -> SyncReport:
        """Validate, reconcile, retry unsynced, sweep both stores, then clean up."""
        async def stages(report: SyncReport) -> None:
            report.invalid_records = await self.validate_records()
            report.reconciliation = await self.reconciler.reconcile()
            report.retry = await self.reconciler.retry_unsynced()
            report.store_sweep = await self.dedup.sweep_store()
            report.calendar_sweep = await self.dedup.sweep_calendar()
            report.cleanup = await self.cleanup_old_data()

        return await self._gated(trigger, stages)

    async def run_reconciliation(self, trigger: str = "manual") -> SyncReport:
        """Reconcile and retry unsynced appointments, without sweeps."""
        async def stages(report: SyncReport) -> None:
            report.reconciliation = await self.reconciler.reconcile()
            report.retry = await self.reconciler.retry_unsynced()

        return await self._gated(trigger, stages)

    async def run_maintenance(
        self,
        trigger: str = "manual",
        store: bool = True,
        calendar: bool = True,
    ) -> SyncReport:
        """Run the deduplication sweeps only."""
        async def stages(report: SyncReport) -> None:
            if store:
                report.store_sweep = await self.dedup.sweep_store()
            if calendar:
                report.calendar_sweep = await self.dedup.sweep_calendar()

        return await self._gated(trigger, stages)

    async def import_calendar_events(
        self,
        time_min: Optional[datetime] = None,
        time_max: Optional[datetime] = None,
        trigger: str = "manual",
    ) -> SyncReport:
        """Turn orphan calendar events into appointments (explicit operation only)."""
        async def stages(report: SyncReport) -> None:
            report.imported = await self._import(time_min, time_max)

        return await self._gated(trigger, stages)

    # ==================== Stages ====================

    async def validate_records(self) -> int:
        """Log scheduled appointments with malformed date/time; return their count."""
        scheduled = await self.store.list_appointments(statuses=[AppointmentStatus.SCHEDULED])
        invalid = 0
        for appointment in scheduled:
            try:
                validate_date(appointment.date)
                validate_time(appointment.time)
            except ValidationError as e:
                invalid += 1
                logger.error(f"Invalid appointment {appointment.id}: {e}")

        if invalid:
            logger.warning(f"Found {invalid} appointments with invalid date/time formats")
        return invalid

    async def cleanup_old_data(self) -> CleanupSummary:
        """
        Time-based housekeeping.

        Deletes calendar events still linked to cancelled appointments,
        completes finished appointments and archives old completed or
        cancelled ones. A failed event delete keeps its link for the next run.
        """
        summary = CleanupSummary()

        cancelled = await self.store.list_appointments(statuses=[AppointmentStatus.CANCELLED])
        for appointment in cancelled:
            if not appointment.google_event_id:
                continue
            try:
                removed = await self.calendar.delete_event(appointment.google_event_id)
            except CalendarError as e:
                logger.error(
                    f"Still failed to delete event {appointment.google_event_id} "
                    f"of cancelled appointment {appointment.id}: {e}"
                )
                summary.failed += 1
                continue
            await self.store.set_event_id(appointment.id, None)
            if removed:
                summary.events_removed += 1

        now = self._clock()
        summary.completed = await self.store.complete_past_appointments(now, self.tz)
        summary.archived = await self.store.archive_old_appointments(now - self.archive_after)
        logger.info(
            f"Removed {summary.events_removed} cancelled events, completed {summary.completed} "
            f"past appointments, archived {summary.archived} old appointments"
        )
        return summary

    async def _import(self, time_min: Optional[datetime], time_max: Optional[datetime]) -> ImportSummary:
        now = self._clock()
        time_min = time_min or now - timedelta(days=90)
        time_max = time_max or now + timedelta(days=365)

        logger.info(f"Pulling Google Calendar events from {time_min.isoformat()} to {time_max.isoformat()}")
        events = await self.calendar.list_events(time_min, time_max)
        known = await self.store.referenced_event_ids(statuses=list(AppointmentStatus))

        summary = ImportSummary()
        for event in events:
            if event.id in known:
                continue
            summary.examined += 1

            name, phone = parse_event_contact(event.description, event.summary)
            if not phone:
                logger.info(f"Skipping calendar event {event.id}: no patient phone in description")
                summary.skipped += 1
                continue

            try:
                await self._import_event(event, name, phone, summary)
            except StoreError as e:
                logger.error(f"Failed to import calendar event {event.id}: {e}")
                summary.failed += 1
                summary.errors.append(f"{event.id}: {e}")

        logger.info(
            f"Import done: {summary.imported} imported, {summary.linked} linked, "
            f"{summary.skipped} skipped, {summary.failed} failed"
        )
        return summary

    async def _import_event(
        self,
        event: CalendarEvent,
        name: Optional[str],
        phone: str,
        summary: ImportSummary,
    ) -> None:
        date, time = event.local_slot(self.tz)
        result = await self.store.insert_appointment(Appointment(
            patient_phone=phone,
            patient_name=name,
            date=date,
            time=time,
            duration_minutes=event.duration_minutes or 30,
            status=AppointmentStatus.SCHEDULED,
            google_event_id=event.id,
            notes=event.description,
        ))

        if not result.existed:
            summary.imported += 1
            logger.info(f"Imported calendar event {event.id} as appointment {result.id}")
        elif not result.appointment.google_event_id:
            await self.store.set_event_id(result.id, event.id)
            summary.linked += 1
            logger.info(f"Linked calendar event {event.id} to appointment {result.id}")
        else:
            # Slot already mirrored by another event; the calendar sweep owns this one.
            summary.skipped += 1

    # ==================== Monitoring ====================

    async def status(self) -> StatusReport:
        """Read-only snapshot; not gated by the coordinator."""
        scheduled = await self.store.list_appointments(statuses=[AppointmentStatus.SCHEDULED])
        store_duplicates = await self.dedup.find_store_duplicates()

        calendar_groups = None
        try:
            calendar_groups = len(await self.dedup.find_calendar_duplicates())
        except CalendarError as e:
            logger.error(f"Calendar check failed: {e}")

        return StatusReport(
            scheduled=len(scheduled),
            unsynced=sum(1 for a in scheduled if not a.is_synced),
            store_duplicate_groups=len(store_duplicates),
            calendar_duplicate_groups=calendar_groups,
            coordinator=self.coordinator.status(),
        )
