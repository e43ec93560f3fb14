"""
Shared fixtures: an in-memory Supabase client, an in-memory calendar and a
controllable clock.
"""

import copy
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional, Set
from zoneinfo import ZoneInfo

import pytest
from postgrest.exceptions import APIError

from appointsync.exceptions import NotFound, ProviderUnavailable
from appointsync.models import CalendarEvent, EventDetails
from appointsync.services.calendar_gateway import CalendarGateway
from appointsync.services.record_store import RecordStore
from appointsync.utils.helpers import localize

TZ = "Asia/Kolkata"
ACTIVE = ("scheduled", "confirmed", "pending")


class Clock:
    """Callable clock that tests move by hand."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


# ==================== Fake Supabase ====================


class FakeResponse:
    def __init__(self, data):
        self.data = data


class FakeQuery:
    """Chainable subset of the postgrest query builder."""

    def __init__(self, db: "FakeSupabase", table: str):
        self.db = db
        self.table = table
        self.op = "select"
        self.payload = None
        self.filters: List[Callable[[dict], bool]] = []
        self.orders: List[tuple] = []
        self.max_rows: Optional[int] = None

    def select(self, *_columns):
        self.op = "select"
        return self

    def insert(self, row: dict):
        self.op = "insert"
        self.payload = row
        return self

    def update(self, values: dict):
        self.op = "update"
        self.payload = values
        return self

    def delete(self):
        self.op = "delete"
        return self

    def eq(self, column, value):
        self.filters.append(lambda r: r.get(column) == value)
        return self

    def in_(self, column, values):
        values = list(values)
        self.filters.append(lambda r: r.get(column) in values)
        return self

    def lt(self, column, value):
        self.filters.append(lambda r: r.get(column) is not None and r.get(column) < value)
        return self

    def order(self, column, desc=False):
        self.orders.append((column, desc))
        return self

    def limit(self, n):
        self.max_rows = n
        return self

    def _matches(self) -> List[dict]:
        return [r for r in self.db.tables[self.table] if all(f(r) for f in self.filters)]

    def execute(self) -> FakeResponse:
        self.db.queries.append((self.table, self.op))
        if self.table in self.db.fail_tables:
            raise APIError({"code": "08006", "message": "connection failure"})

        if self.op == "insert":
            return FakeResponse([self.db.insert(self.table, self.payload)])

        if self.op == "update":
            updated = []
            for row in self._matches():
                candidate = {**row, **self.payload}
                self.db.check_unique(self.table, candidate, ignore_id=row["id"])
                row.update(self.payload)
                updated.append(copy.deepcopy(row))
            return FakeResponse(updated)

        if self.op == "delete":
            doomed = self._matches()
            ids = {r["id"] for r in doomed}
            self.db.tables[self.table] = [r for r in self.db.tables[self.table] if r["id"] not in ids]
            return FakeResponse(copy.deepcopy(doomed))

        rows = self._matches()
        for column, desc in reversed(self.orders):
            rows.sort(key=lambda r: (r.get(column) is None, r.get(column) or ""), reverse=desc)
        if self.max_rows is not None:
            rows = rows[: self.max_rows]
        return FakeResponse(copy.deepcopy(rows))


class FakeSupabase:
    """
    In-memory stand-in for the Supabase client.

    Enforces the same uniqueness rules as ``database/schema.sql``: unique
    ``google_event_id`` and one active appointment per (phone, date, time).
    """

    def __init__(self, clock: Clock):
        self.clock = clock
        self.tables: Dict[str, List[dict]] = {"appointments": [], "patients": []}
        self.queries: List[tuple] = []
        self.fail_tables: Set[str] = set()
        self.before_insert: Optional[Callable[[], None]] = None
        self._next_id = 1

    def table(self, name: str) -> FakeQuery:
        return FakeQuery(self, name)

    def check_unique(self, table: str, row: dict, ignore_id=None) -> None:
        others = [r for r in self.tables[table] if r["id"] != ignore_id]
        if table == "patients":
            if any(r["phone"] == row.get("phone") for r in others):
                raise APIError({"code": "23505", "message": 'duplicate key value violates unique constraint "patients_phone_key"'})
            return

        event_id = row.get("google_event_id")
        if event_id and any(r.get("google_event_id") == event_id for r in others):
            raise APIError({"code": "23505", "message": 'duplicate key value violates unique constraint "appointments_google_event_id_key"'})

        if row.get("status") in ACTIVE:
            key = (row.get("patient_phone"), row.get("date"), row.get("time"))
            for r in others:
                if r.get("status") in ACTIVE and (r.get("patient_phone"), r.get("date"), r.get("time")) == key:
                    raise APIError({"code": "23505", "message": 'duplicate key value violates unique constraint "appointments_active_slot_key"'})

    def insert(self, table: str, row: dict, enforce: bool = True) -> dict:
        if self.before_insert is not None:
            hook, self.before_insert = self.before_insert, None
            hook()
        row = dict(row)
        row.setdefault("created_at", self.clock().isoformat())
        row.setdefault("updated_at", row["created_at"])
        if enforce:
            self.check_unique(table, {**row, "id": None})
        row["id"] = self._next_id
        self._next_id += 1
        self.tables[table].append(row)
        return copy.deepcopy(row)

    def seed_appointment(
        self,
        phone: str = "9876543210",
        date: str = "2025-04-10",
        time: str = "09:00",
        status: str = "scheduled",
        event_id: Optional[str] = None,
        created_at: Optional[datetime] = None,
        name: Optional[str] = "Asha",
        duration_minutes: int = 30,
    ) -> dict:
        """Insert a row directly, bypassing constraints (legacy data)."""
        row = {
            "patient_phone": phone,
            "patient_name": name,
            "date": date,
            "time": time,
            "duration_minutes": duration_minutes,
            "status": status,
            "google_event_id": event_id,
            "notes": None,
        }
        if created_at is not None:
            row["created_at"] = created_at.isoformat()
        return self.insert("appointments", row, enforce=False)

    def appointments(self, **match) -> List[dict]:
        return [r for r in self.tables["appointments"] if all(r.get(k) == v for k, v in match.items())]


# ==================== Fake Calendar ====================


class FakeCalendar(CalendarGateway):
    """In-memory calendar that lists events ordered by start, like the provider."""

    def __init__(self, timezone: str = TZ):
        self.tz = ZoneInfo(timezone)
        self.events: Dict[str, CalendarEvent] = {}
        self.created: List[EventDetails] = []
        self.updated: List[tuple] = []
        self.deleted: List[str] = []
        self.fail_list: Optional[Exception] = None
        self.fail_create: Optional[Exception] = None
        self.fail_delete: Set[str] = set()
        self._seq = 0

    def add_event(
        self,
        event_id: str,
        date: str,
        time: str,
        duration_minutes: int = 30,
        summary: Optional[str] = None,
        description: Optional[str] = None,
    ) -> CalendarEvent:
        start = localize(date, time, self.tz)
        event = CalendarEvent(
            id=event_id,
            summary=summary,
            description=description,
            start=start,
            end=start + timedelta(minutes=duration_minutes),
        )
        self.events[event_id] = event
        return event

    @property
    def writes(self) -> int:
        return len(self.created) + len(self.updated) + len(self.deleted)

    async def list_events(self, time_min, time_max):
        if self.fail_list:
            raise self.fail_list
        listed = [e for e in self.events.values() if time_min <= e.start < time_max]
        return sorted(listed, key=lambda e: e.start)

    async def create_event(self, details: EventDetails) -> str:
        if self.fail_create:
            raise self.fail_create
        self._seq += 1
        event_id = f"new-{self._seq}"
        self.add_event(
            event_id,
            details.date,
            details.time,
            details.duration_minutes,
            summary=f"Appointment: {details.patient_name}",
            description=f"Patient: {details.patient_name}\nPhone: 91{details.patient_phone}\nNotes: {details.notes}",
        )
        self.created.append(details)
        return event_id

    async def update_event(self, event_id: str, details: EventDetails) -> None:
        if event_id not in self.events:
            raise NotFound(f"Event {event_id} not found", status=404)
        old = self.events[event_id]
        self.add_event(event_id, details.date, details.time, details.duration_minutes, old.summary, old.description)
        self.updated.append((event_id, details))

    async def delete_event(self, event_id: str) -> bool:
        if event_id in self.fail_delete:
            raise ProviderUnavailable("Calendar provider unavailable (503)", status=503)
        if event_id not in self.events:
            return False
        del self.events[event_id]
        self.deleted.append(event_id)
        return True


# ==================== Fixtures ====================


@pytest.fixture
def clock():
    # Tuesday 2025-04-08 11:30 in Asia/Kolkata
    return Clock(datetime(2025, 4, 8, 6, 0, tzinfo=timezone.utc))


@pytest.fixture
def fake_db(clock):
    return FakeSupabase(clock)


@pytest.fixture
def store(fake_db):
    return RecordStore(fake_db)


@pytest.fixture
def calendar():
    return FakeCalendar()
