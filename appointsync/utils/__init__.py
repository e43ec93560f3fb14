"""Utility functions package."""

from .helpers import (
    format_phone_for_event,
    get_zone,
    localize,
    normalize_phone,
    parse_event_contact,
    parse_event_time,
    validate_date,
    validate_time,
)

__all__ = [
    "format_phone_for_event",
    "get_zone",
    "localize",
    "normalize_phone",
    "parse_event_contact",
    "parse_event_time",
    "validate_date",
    "validate_time",
]
