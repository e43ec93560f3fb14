"""
Tests for the gated sync entry points
"""

from datetime import timedelta

import pytest

from appointsync.exceptions import AuthExpired, ProviderUnavailable
from appointsync.services.coordinator import SyncCoordinator
from appointsync.services.dedup import DeduplicationSweep
from appointsync.services.reconciler import ReconciliationEngine
from appointsync.services.sync_service import CalendarSyncService


@pytest.fixture
def coordinator(clock):
    return SyncCoordinator(min_interval=timedelta(minutes=5), clock=clock)


@pytest.fixture
def service(store, calendar, coordinator, clock):
    reconciler = ReconciliationEngine(store, calendar, clock=clock)
    dedup = DeduplicationSweep(store, calendar, clock=clock)
    return CalendarSyncService(store, calendar, coordinator, reconciler, dedup, clock=clock)


class TestGating:
    """Coordinator integration"""

    async def test_full_sync_runs_every_stage(self, service):
        report = await service.run_full_sync(trigger="manual")

        assert report.ok and not report.skipped
        assert report.reconciliation is not None
        assert report.retry is not None
        assert report.store_sweep.target == "store"
        assert report.calendar_sweep.target == "calendar"
        assert report.cleanup is not None
        assert report.started_at is not None and report.finished_at is not None

    async def test_second_run_within_interval_is_skipped(self, service, coordinator, clock):
        await service.run_full_sync()
        clock.advance(minutes=2)

        report = await service.run_maintenance()
        assert report.skipped is True
        assert report.to_display_dict()["status"] == "skipped"

        clock.advance(minutes=3)
        assert (await service.run_reconciliation()).skipped is False

    async def test_gate_released_after_failure(self, service, coordinator, calendar, clock):
        calendar.fail_list = AuthExpired("re-authorize")

        report = await service.run_full_sync()

        assert report.ok is False
        assert "re-authorize" in report.error
        assert coordinator.running is False

        calendar.fail_list = None
        clock.advance(minutes=5)
        assert (await service.run_full_sync()).ok is True

    async def test_store_failure_ends_cycle(self, service, fake_db, coordinator):
        fake_db.fail_tables.add("appointments")

        report = await service.run_full_sync()

        assert report.ok is False
        assert report.reconciliation is None
        assert coordinator.running is False

    async def test_skipped_while_running(self, service, coordinator):
        coordinator.start()
        report = await service.import_calendar_events()
        assert report.skipped is True


class TestFullSync:
    """End-to-end behaviour of one cycle"""

    async def test_cycle_repairs_both_sides(self, service, fake_db, calendar, clock):
        # unsynced record
        fake_db.seed_appointment(time="09:00", created_at=clock.now)
        # duplicate pair, each mirrored
        fake_db.seed_appointment(time="10:00", event_id="dup-a", created_at=clock.now - timedelta(hours=1))
        fake_db.seed_appointment(time="10:00", event_id="dup-b", created_at=clock.now)
        calendar.add_event("dup-a", "2025-04-10", "10:00")
        calendar.add_event("dup-b", "2025-04-10", "10:00")
        # stray event sharing the 10:00 slot
        calendar.add_event("stray", "2025-04-10", "10:00")

        report = await service.run_full_sync()

        assert report.ok
        assert report.reconciliation.orphans == 1
        assert report.retry.succeeded == 1
        assert report.store_sweep.deleted == 1
        assert report.calendar_sweep.deleted == 2

        rows = fake_db.appointments()
        assert [r["google_event_id"] for r in rows] == ["new-1", "dup-a"]
        assert sorted(calendar.events) == ["dup-a", "new-1"]

    async def test_invalid_records_are_counted(self, service, fake_db):
        fake_db.seed_appointment(date="10/04/2025")

        report = await service.run_full_sync()
        assert report.invalid_records == 1
        assert report.ok is True

    async def test_cleanup_completes_and_archives(self, service, fake_db, clock):
        fake_db.seed_appointment(date="2025-04-01", time="09:00")
        fake_db.seed_appointment(
            date="2025-02-01", time="09:00", status="cancelled",
            created_at=clock.now - timedelta(days=60),
        )

        summary = await service.cleanup_old_data()
        assert summary.completed == 1
        assert summary.archived == 1

    async def test_cleanup_retries_events_left_by_cancellation(self, service, fake_db, calendar):
        stuck = fake_db.seed_appointment(time="09:00", status="cancelled", event_id="evt-1")
        calendar.add_event("evt-1", "2025-04-10", "09:00")
        fake_db.seed_appointment(time="10:00", status="cancelled", event_id="evt-2")
        calendar.add_event("evt-2", "2025-04-10", "10:00")
        calendar.fail_delete = {"evt-2"}

        summary = await service.cleanup_old_data()

        assert summary.events_removed == 1
        assert summary.failed == 1
        assert sorted(calendar.events) == ["evt-2"]
        assert fake_db.appointments(id=stuck["id"])[0]["google_event_id"] is None
        assert len(fake_db.appointments(google_event_id="evt-2")) == 1

        calendar.fail_delete = set()
        again = await service.cleanup_old_data()
        assert again.events_removed == 1
        assert calendar.events == {}


class TestImport:
    """Explicit import of orphan events"""

    async def test_imports_event_with_phone(self, service, fake_db, calendar):
        calendar.add_event(
            "ext-1", "2025-04-12", "11:00",
            summary="Appointment: Ravi",
            description="Patient: Ravi\nPhone: 919812345678\nNotes: walk-in",
        )
        calendar.add_event("ext-2", "2025-04-12", "12:00", summary="Lunch")

        report = await service.import_calendar_events()

        assert report.imported.imported == 1
        assert report.imported.skipped == 1
        row = fake_db.appointments(google_event_id="ext-1")[0]
        assert row["patient_phone"] == "9812345678"
        assert row["patient_name"] == "Ravi"
        assert (row["date"], row["time"]) == ("2025-04-12", "11:00")

    async def test_links_existing_unsynced_record(self, service, fake_db, calendar):
        row = fake_db.seed_appointment(phone="9812345678", date="2025-04-12", time="11:00")
        calendar.add_event(
            "ext-1", "2025-04-12", "11:00",
            description="Patient: Ravi\nPhone: 919812345678\nNotes: ",
        )

        report = await service.import_calendar_events()

        assert report.imported.linked == 1
        assert fake_db.appointments(id=row["id"])[0]["google_event_id"] == "ext-1"

    async def test_known_events_are_not_reimported(self, service, fake_db, calendar):
        fake_db.seed_appointment(event_id="evt-1")
        calendar.add_event("evt-1", "2025-04-10", "09:00", description="Phone: 919876543210")

        report = await service.import_calendar_events()
        assert report.imported.examined == 0
        assert len(fake_db.appointments()) == 1

    async def test_store_failure_on_one_event_does_not_stop_import(self, service, fake_db, calendar):
        calendar.add_event("ext-1", "2025-04-12", "11:00", description="Patient: Ravi\nPhone: 919812345678\nNotes: ")
        calendar.add_event("ext-2", "2025-04-12", "12:00", description="Patient: Meera\nPhone: 919811111111\nNotes: ")
        # Another writer links ext-1 between the listing and the insert.
        fake_db.before_insert = lambda: fake_db.seed_appointment(
            phone="9800000000", status="archived", event_id="ext-1"
        )

        report = await service.import_calendar_events()

        assert report.ok is True
        assert report.imported.failed == 1
        assert report.imported.imported == 1
        assert fake_db.appointments(google_event_id="ext-2")[0]["patient_phone"] == "9811111111"


class TestStatus:
    """Read-only monitoring"""

    async def test_status_counts(self, service, fake_db, calendar, clock):
        fake_db.seed_appointment(time="09:00")
        fake_db.seed_appointment(time="09:00")
        fake_db.seed_appointment(time="10:00", event_id="e1")
        calendar.add_event("e1", "2025-04-10", "10:00")
        calendar.add_event("e2", "2025-04-10", "10:00")

        status = await service.status()

        assert status.scheduled == 3
        assert status.unsynced == 2
        assert status.store_duplicate_groups == 1
        assert status.calendar_duplicate_groups == 1
        assert status.is_clean is False

    async def test_status_is_not_gated(self, service, coordinator):
        coordinator.start()
        status = await service.status()
        assert status.coordinator.running is True
        assert status.is_clean is True

    async def test_calendar_outage_is_reported_as_unknown(self, service, calendar):
        calendar.fail_list = ProviderUnavailable("down")
        status = await service.status()
        assert status.calendar_duplicate_groups is None
