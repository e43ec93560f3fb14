"""Services package for storage, calendar and sync integrations."""

from .record_store import RecordStore
from .calendar_gateway import CalendarGateway, GoogleCalendarGateway
from .coordinator import SyncCoordinator
from .reconciler import ReconciliationEngine
from .dedup import DeduplicationSweep
from .sync_service import CalendarSyncService
from .scheduler import SyncScheduler
from .slot_generator import SlotGenerator
from .booking_service import BookingResult, BookingService

__all__ = [
    "RecordStore",
    "CalendarGateway",
    "GoogleCalendarGateway",
    "SyncCoordinator",
    "ReconciliationEngine",
    "DeduplicationSweep",
    "CalendarSyncService",
    "SyncScheduler",
    "SlotGenerator",
    "BookingResult",
    "BookingService",
]
