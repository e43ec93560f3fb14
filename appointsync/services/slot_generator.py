"""Slot generator for bookable appointment times."""

import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Iterable, List, Optional, Tuple

from ..exceptions import ValidationError
from ..models import TimeSlot
from ..utils.helpers import get_zone, localize, validate_date, validate_time

logger = logging.getLogger(__name__)

BusyInterval = Tuple[datetime, datetime]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SlotGenerator:
    """Generates and validates appointment slots based on configuration."""

    def __init__(
        self,
        working_hours_start: str = "09:00",
        working_hours_end: str = "17:00",
        working_days: Optional[List[int]] = None,
        max_advance_booking_days: int = 30,
        default_slot_duration: int = 30,
        timezone: str = "Asia/Kolkata",
        min_notice_minutes: int = 60,
        clock: Callable[[], datetime] = _utcnow,
    ):
        """
        Initialize slot generator.

        Args:
            working_hours_start: Opening time (HH:MM, 24-hour)
            working_hours_end: Closing time (HH:MM, 24-hour)
            working_days: List of weekday numbers (0=Monday), default Mon-Sat
            max_advance_booking_days: How many days ahead to allow booking
            default_slot_duration: Default slot duration in minutes
            timezone: Clinic timezone
            min_notice_minutes: Same-day slots must start at least this far ahead
            clock: Returns the current aware datetime
        """
        self.working_hours_start = validate_time(working_hours_start)
        self.working_hours_end = validate_time(working_hours_end)
        self.working_days = working_days if working_days is not None else [0, 1, 2, 3, 4, 5]
        self.max_advance_booking_days = max_advance_booking_days
        self.default_slot_duration = default_slot_duration
        self.tz = get_zone(timezone)
        self.min_notice = timedelta(minutes=min_notice_minutes)
        self._clock = clock

    def _day_bounds(self, date: str) -> Tuple[datetime, datetime]:
        return (
            localize(date, self.working_hours_start, self.tz),
            localize(date, self.working_hours_end, self.tz),
        )

    def slots_for_date(
        self,
        date: str,
        booked_times: Optional[Iterable[str]] = None,
        busy: Optional[List[BusyInterval]] = None,
        duration_minutes: Optional[int] = None,
    ) -> List[TimeSlot]:
        """
        Get free slots for a date.

        Args:
            date: Date to check (YYYY-MM-DD)
            booked_times: HH:MM times already held by active appointments
            busy: (start, end) calendar intervals that block a slot on overlap
            duration_minutes: Requested slot duration

        Returns:
            Available TimeSlot objects in time order
        """
        duration = timedelta(minutes=duration_minutes or self.default_slot_duration)
        booked = set(booked_times or [])
        busy = busy or []

        ok, error = self.validate_date(date)
        if not ok:
            logger.info(f"No slots for {date}: {error}")
            return []

        opening, closing = self._day_bounds(date)
        earliest = self._clock() + self.min_notice

        slots = []
        current = opening
        while current + duration <= closing:
            slot_end = current + duration
            time_str = current.strftime("%H:%M")

            overlaps = any(current < b_end and slot_end > b_start for b_start, b_end in busy)
            if current >= earliest and time_str not in booked and not overlaps:
                slots.append(TimeSlot(
                    date=date,
                    time=time_str,
                    duration_minutes=int(duration.total_seconds() // 60),
                ))

            current = slot_end

        return slots

    def validate_date(self, date: str) -> tuple[bool, str]:
        """Check a date is well-formed, a working day, and inside the booking window."""
        try:
            validate_date(date)
        except ValidationError:
            return False, "Invalid date format. Please use YYYY-MM-DD."

        date_obj = datetime.strptime(date, "%Y-%m-%d").date()
        if date_obj.weekday() not in self.working_days:
            return False, "That date is not a working day."

        today = self._clock().astimezone(self.tz).date()
        if date_obj < today:
            return False, "That date is in the past. Please choose a future date."

        max_date = today + timedelta(days=self.max_advance_booking_days)
        if date_obj > max_date:
            return False, f"That's too far in advance. You can book up to {self.max_advance_booking_days} days ahead."

        return True, ""

    def validate_slot(
        self,
        date: str,
        time: str,
        duration_minutes: Optional[int] = None,
    ) -> tuple[bool, str]:
        """
        Validate if a date/time is a valid bookable slot.

        Returns:
            Tuple of (is_valid, error_message)
        """
        ok, error = self.validate_date(date)
        if not ok:
            return ok, error

        try:
            validate_time(time)
        except ValidationError:
            return False, "Invalid time format. Please use HH:MM."

        start = localize(date, time, self.tz)
        end = start + timedelta(minutes=duration_minutes or self.default_slot_duration)
        opening, closing = self._day_bounds(date)

        # Check if within working hours
        if start < opening or end > closing:
            return False, f"That time is outside working hours ({self.working_hours_start} - {self.working_hours_end})."

        # Check if not in the past
        if start <= self._clock():
            return False, "That time is in the past. Please choose a future time."

        return True, ""
