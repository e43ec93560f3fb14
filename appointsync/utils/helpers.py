"""Helper utility functions."""

import re
from datetime import datetime, time as dt_time
from typing import Optional, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError
from dateutil import parser as date_parser

from ..exceptions import ValidationError

DATE_FORMAT = "%Y-%m-%d"
TIME_FORMAT = "%H:%M"

_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_TIME_RE = re.compile(r"^\d{2}:\d{2}$")
_PHONE_LINE_RE = re.compile(r"Phone:[ \t]*\+?([\d -]+)")
_NAME_LINE_RE = re.compile(r"Patient:[ \t]*([^\n]+)")
_SUMMARY_NAME_RE = re.compile(r"Appointment:\s*(.+)")


def normalize_phone(phone: str) -> str:
    """
    Reduce a phone number to its canonical 10-digit form.

    Accepts WhatsApp JIDs ("919876543210@c.us"), numbers with a country
    code, and formatted input ("+91 98765-43210").

    Raises:
        ValidationError: if fewer than 10 digits remain
    """
    local = (phone or "").split("@", 1)[0]
    digits = re.sub(r"\D", "", local)

    if len(digits) < 10:
        raise ValidationError(f"Invalid phone number: {phone!r}")

    return digits[-10:]


def format_phone_for_event(phone: str, country_code: str = "91") -> str:
    """Prefix a 10-digit phone with the country code for event text."""
    if re.fullmatch(r"\d{10}", phone or ""):
        return f"{country_code}{phone}"
    return phone


def validate_date(date: str) -> str:
    """Return the date unchanged if it is a real YYYY-MM-DD date."""
    if not isinstance(date, str) or not _DATE_RE.match(date):
        raise ValidationError(f"Invalid date format: {date!r}. Expected YYYY-MM-DD.")
    try:
        datetime.strptime(date, DATE_FORMAT)
    except ValueError as e:
        raise ValidationError(f"Invalid date: {date!r}") from e
    return date


def validate_time(time: str) -> str:
    """Return the time unchanged if it is a real 24-hour HH:MM time."""
    if not isinstance(time, str) or not _TIME_RE.match(time):
        raise ValidationError(f"Invalid time format: {time!r}. Expected HH:MM.")
    try:
        datetime.strptime(time, TIME_FORMAT)
    except ValueError as e:
        raise ValidationError(f"Invalid time: {time!r}") from e
    return time


def get_zone(timezone_name: str) -> ZoneInfo:
    """Resolve an IANA timezone name."""
    try:
        return ZoneInfo(timezone_name)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise ValidationError(f"Unknown timezone: {timezone_name!r}") from e


def localize(date: str, time: str, tz: ZoneInfo) -> datetime:
    """
    Combine a stored date and time into an aware datetime.

    Args:
        date: YYYY-MM-DD
        time: HH:MM
        tz: Timezone the appointment was booked in

    Returns:
        Timezone-aware datetime

    Raises:
        ValidationError: on malformed date or time
    """
    validate_date(date)
    validate_time(time)
    day = datetime.strptime(date, DATE_FORMAT).date()
    clock = datetime.strptime(time, TIME_FORMAT).time()
    return datetime.combine(day, clock, tzinfo=tz)


def parse_event_time(value: dict, tz: ZoneInfo) -> datetime:
    """
    Parse a provider start/end object into an aware datetime.

    Timed events carry "dateTime" with an offset; all-day events carry
    "date" and are placed at local midnight.
    """
    try:
        if value.get("dateTime"):
            parsed = date_parser.isoparse(value["dateTime"])
            if parsed.tzinfo is None:
                zone = get_zone(value["timeZone"]) if value.get("timeZone") else tz
                parsed = parsed.replace(tzinfo=zone)
            return parsed
        if value.get("date"):
            day = date_parser.isoparse(value["date"]).date()
            return datetime.combine(day, dt_time(0, 0), tzinfo=tz)
    except ValueError as e:
        raise ValidationError(f"Unreadable event time {value!r}: {e}") from e
    raise ValidationError(f"Event time has neither dateTime nor date: {value!r}")


def parse_event_contact(
    description: Optional[str],
    summary: Optional[str] = None,
) -> Tuple[Optional[str], Optional[str]]:
    """
    Recover (name, phone) from event text written by the gateway.

    Returns:
        Tuple of (name, canonical phone); either may be None
    """
    description = description or ""
    name = None
    phone = None

    name_match = _NAME_LINE_RE.search(description)
    if not name_match and summary:
        name_match = _SUMMARY_NAME_RE.search(summary)
    if name_match:
        name = name_match.group(1).strip() or None

    phone_match = _PHONE_LINE_RE.search(description)
    if phone_match:
        try:
            phone = normalize_phone(phone_match.group(1))
        except ValidationError:
            phone = None

    return name, phone
