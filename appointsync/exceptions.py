"""Exception hierarchy shared by the store, the calendar gateway and the sync engine."""


class AppointSyncError(Exception):
    """Base class for all appointsync errors."""


class ValidationError(AppointSyncError):
    """Malformed appointment data (bad date, time or phone)."""


class StoreError(AppointSyncError):
    """The record store could not complete a read or write."""


class CalendarError(AppointSyncError):
    """The calendar provider rejected or failed an operation."""

    def __init__(self, message: str, status: int | None = None):
        super().__init__(message)
        self.status = status


class AuthExpired(CalendarError):
    """Credentials are stale and could not be refreshed."""


class NotFound(CalendarError):
    """The event no longer exists in the calendar."""


class ProviderUnavailable(CalendarError):
    """Transient network or quota failure; worth retrying later."""
