"""
Main entry point for the appointsync scheduler core.
Runs one-shot sync/maintenance commands or the background sync scheduler.
"""

import argparse
import asyncio
import json
import logging
import signal
from datetime import timedelta
from typing import Optional

from dotenv import load_dotenv, set_key

from config.settings import Settings, get_settings
from .services.booking_service import BookingService
from .services.calendar_gateway import GoogleCalendarGateway
from .services.coordinator import SyncCoordinator
from .services.dedup import DeduplicationSweep
from .services.reconciler import ReconciliationEngine
from .services.record_store import RecordStore
from .services.scheduler import SyncScheduler
from .services.slot_generator import SlotGenerator
from .services.sync_service import CalendarSyncService

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


class SyncWorker:
    """Builds every service once per process from settings."""

    def __init__(self, settings: Optional[Settings] = None):
        """Initialize the worker with services."""
        self.settings = settings or get_settings()
        s = self.settings

        self.store = RecordStore.from_credentials(s.supabase_url, s.supabase_service_role_key)

        self.calendar = GoogleCalendarGateway.from_tokens(
            client_id=s.google_client_id,
            client_secret=s.google_client_secret,
            access_token=s.google_access_token,
            refresh_token=s.google_refresh_token,
            token_uri=s.google_token_uri,
            calendar_id=s.google_calendar_id,
            timezone=s.timezone,
            phone_country_code=s.phone_country_code,
            max_attempts=s.provider_max_attempts,
            on_token_refresh=self._save_tokens,
        )

        # One coordinator per process, shared by every trigger.
        self.coordinator = SyncCoordinator(min_interval=timedelta(minutes=s.sync_min_interval_minutes))

        self.reconciler = ReconciliationEngine(
            self.store,
            self.calendar,
            timezone=s.timezone,
            forward_days=s.sync_forward_days,
            lookback_days=s.sync_lookback_days,
            drift_recreate_window=timedelta(hours=s.drift_recreate_window_hours),
            time_match_tolerance=timedelta(seconds=s.time_match_tolerance_seconds),
        )

        self.dedup = DeduplicationSweep(
            self.store,
            self.calendar,
            timezone=s.timezone,
            forward_days=s.sync_forward_days,
            lookback_days=s.sync_lookback_days,
        )

        self.sync_service = CalendarSyncService(
            self.store,
            self.calendar,
            self.coordinator,
            self.reconciler,
            self.dedup,
            timezone=s.timezone,
            archive_after_days=s.archive_after_days,
        )

        self.slot_generator = SlotGenerator(
            working_hours_start=s.working_hours_start,
            working_hours_end=s.working_hours_end,
            working_days=s.working_days,
            max_advance_booking_days=s.max_advance_booking_days,
            default_slot_duration=s.appointment_duration_minutes,
            timezone=s.timezone,
        )

        self.booking = BookingService(self.store, self.calendar, self.slot_generator)

        logger.info("SyncWorker initialized with all services")

    def _save_tokens(self, access_token: str, refresh_token: Optional[str]) -> None:
        """Persist refreshed OAuth tokens so a restart does not need re-authorization."""
        try:
            set_key(self.settings.env_file_path, "GOOGLE_ACCESS_TOKEN", access_token)
            if refresh_token:
                set_key(self.settings.env_file_path, "GOOGLE_REFRESH_TOKEN", refresh_token)
            logger.info("Tokens saved to .env file")
        except OSError as e:
            logger.error(f"Failed to save refreshed tokens: {e}")

    def create_scheduler(self) -> SyncScheduler:
        return SyncScheduler(
            self.sync_service,
            interval_seconds=self.settings.sync_interval_minutes * 60,
            startup_delay_seconds=self.settings.startup_sync_delay_seconds,
        )


async def serve(worker: SyncWorker) -> None:
    """Run the periodic and startup syncs until SIGINT/SIGTERM."""
    scheduler = worker.create_scheduler()
    stop_event = asyncio.Event()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop_event.set)

    scheduler.start()
    await stop_event.wait()
    logger.info("Shutting down gracefully")
    await scheduler.stop()


async def run_command(worker: SyncWorker, command: str) -> dict:
    """Execute one CLI command and return a printable result."""
    service = worker.sync_service

    if command == "status":
        report = await service.status()
        result = report.model_dump(mode="json")
        result["clean"] = report.is_clean
        return result
    if command == "sync":
        return (await service.run_full_sync(trigger="cli")).to_display_dict()
    if command == "reconcile":
        return (await service.run_reconciliation(trigger="cli")).to_display_dict()
    if command == "clean-db":
        return (await service.run_maintenance(trigger="cli", calendar=False)).to_display_dict()
    if command == "clean-calendar":
        return (await service.run_maintenance(trigger="cli", store=False)).to_display_dict()
    if command == "maintenance":
        return (await service.run_maintenance(trigger="cli")).to_display_dict()
    if command == "import":
        return (await service.import_calendar_events(trigger="cli")).to_display_dict()
    raise ValueError(f"Unknown command: {command}")


COMMANDS = ["status", "sync", "reconcile", "clean-db", "clean-calendar", "maintenance", "import", "serve"]


def main(argv: Optional[list] = None) -> None:
    """Main entry point."""
    # override=True ensures .env values take precedence
    load_dotenv(override=True)

    parser = argparse.ArgumentParser(prog="appointsync", description="Appointment calendar sync")
    parser.add_argument("command", nargs="?", default="serve", choices=COMMANDS)
    args = parser.parse_args(argv)

    worker = SyncWorker()

    if args.command == "serve":
        logger.info("Starting sync scheduler")
        asyncio.run(serve(worker))
        return

    result = asyncio.run(run_command(worker, args.command))
    print(json.dumps(result, indent=2, default=str))


if __name__ == "__main__":
    main()
