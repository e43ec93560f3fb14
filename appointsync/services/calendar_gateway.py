"""Google Calendar gateway: event CRUD with credential refresh and retry."""

import asyncio
import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Callable, List, Optional

import httplib2
from google.auth.exceptions import RefreshError, TransportError
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from ..exceptions import (
    AuthExpired,
    CalendarError,
    NotFound,
    ProviderUnavailable,
    ValidationError,
)
from ..models import CalendarEvent, EventDetails
from ..utils.helpers import (
    format_phone_for_event,
    get_zone,
    localize,
    parse_event_time,
)

logger = logging.getLogger(__name__)

SCOPES = ["https://www.googleapis.com/auth/calendar"]
TRANSIENT_STATUSES = {429, 500, 502, 503, 504}
RATE_LIMIT_REASONS = ("rateLimitExceeded", "userRateLimitExceeded", "quotaExceeded")

TokenCallback = Callable[[str, Optional[str]], None]


class CalendarGateway(ABC):
    """Abstract calendar provider the sync engine talks to."""

    @abstractmethod
    async def list_events(self, time_min: datetime, time_max: datetime) -> List[CalendarEvent]:
        """List live events starting in the window, in provider order."""
        pass

    @abstractmethod
    async def create_event(self, details: EventDetails) -> str:
        """Create an event and return its ID."""
        pass

    @abstractmethod
    async def update_event(self, event_id: str, details: EventDetails) -> None:
        """Rewrite an event's time and text. Raises NotFound if it is gone."""
        pass

    @abstractmethod
    async def delete_event(self, event_id: str) -> bool:
        """Delete an event. Returns False if it was already gone."""
        pass


class GoogleCalendarGateway(CalendarGateway):
    """
    Wraps the Google Calendar v3 events API.

    Error contract:
    - AuthExpired: token could not be refreshed (a 401 is refreshed and
      retried exactly once before this is raised)
    - NotFound: the event ID no longer exists
    - ProviderUnavailable: network/quota failure after bounded retries
    """

    def __init__(
        self,
        credentials: Credentials,
        calendar_id: str = "primary",
        timezone: str = "Asia/Kolkata",
        phone_country_code: str = "91",
        max_attempts: int = 3,
        backoff_multiplier: float = 1.0,
        on_token_refresh: Optional[TokenCallback] = None,
        service: Any = None,
    ):
        """
        Initialize the gateway.

        Args:
            credentials: OAuth credentials holding access + refresh token
            calendar_id: Calendar to read and write
            timezone: IANA zone appointment times are expressed in
            phone_country_code: Prefix for phones written to event text
            max_attempts: Tries per call on transient failures
            backoff_multiplier: Exponential backoff base in seconds
            on_token_refresh: Called with (access_token, refresh_token) after a refresh
            service: Prebuilt discovery resource (tests inject a mock)
        """
        self.credentials = credentials
        self.calendar_id = calendar_id
        self.timezone = timezone
        self.tz = get_zone(timezone)
        self.phone_country_code = phone_country_code
        self.max_attempts = max_attempts
        self.backoff_multiplier = backoff_multiplier
        self.on_token_refresh = on_token_refresh
        self._service = service

    @classmethod
    def from_tokens(
        cls,
        client_id: str,
        client_secret: str,
        access_token: Optional[str],
        refresh_token: Optional[str],
        token_uri: str = "https://oauth2.googleapis.com/token",
        **kwargs,
    ) -> "GoogleCalendarGateway":
        """Build a gateway from a stored OAuth token pair."""
        credentials = Credentials(
            token=access_token,
            refresh_token=refresh_token,
            token_uri=token_uri,
            client_id=client_id,
            client_secret=client_secret,
            scopes=SCOPES,
        )
        return cls(credentials, **kwargs)

    @property
    def service(self):
        if self._service is None:
            self._service = build("calendar", "v3", credentials=self.credentials, cache_discovery=False)
        return self._service

    # ==================== Credentials ====================

    async def ensure_credentials(self) -> None:
        """Refresh the access token if it is missing or expired."""
        if not self.credentials.valid:
            logger.info("Google access token missing or expired, refreshing")
            await self._refresh()

    async def _refresh(self) -> None:
        if not self.credentials.refresh_token:
            raise AuthExpired("No refresh token available; re-authorize Google Calendar")
        try:
            await asyncio.to_thread(self.credentials.refresh, Request())
        except RefreshError as e:
            logger.error(f"Token refresh failed: {e}")
            raise AuthExpired(f"Token refresh failed: {e}") from e
        except TransportError as e:
            logger.error(f"Token refresh could not reach Google: {e}")
            raise ProviderUnavailable(f"Token refresh transport error: {e}") from e

        logger.info("Google OAuth tokens refreshed")
        if self.on_token_refresh:
            self.on_token_refresh(self.credentials.token, self.credentials.refresh_token)

    # ==================== Request Plumbing ====================

    def _translate(self, error: HttpError) -> CalendarError:
        status = error.resp.status
        content = error.content.decode("utf-8", "replace") if isinstance(error.content, bytes) else str(error.content)
        if status in (404, 410):
            return NotFound(f"Event not found ({status})", status=status)
        if status in TRANSIENT_STATUSES or (
            status == 403 and any(reason in content for reason in RATE_LIMIT_REASONS)
        ):
            return ProviderUnavailable(f"Calendar provider unavailable ({status})", status=status)
        return CalendarError(f"Calendar request failed ({status}): {content[:200]}", status=status)

    async def _execute_once(self, make_request: Callable[[], Any], allow_refresh: bool = True) -> Any:
        await self.ensure_credentials()
        try:
            return await asyncio.to_thread(make_request().execute)
        except HttpError as e:
            if e.resp.status == 401:
                if allow_refresh:
                    logger.warning("Calendar rejected access token, refreshing and retrying once")
                    await self._refresh()
                    return await self._execute_once(make_request, allow_refresh=False)
                raise AuthExpired("Calendar rejected refreshed credentials", status=401) from e
            raise self._translate(e) from e
        except (httplib2.HttpLib2Error, OSError) as e:
            raise ProviderUnavailable(f"Network error talking to calendar: {e}") from e

    async def _call(self, label: str, make_request: Callable[[], Any]) -> Any:
        """Run one API request with bounded exponential backoff on transient errors."""
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(multiplier=self.backoff_multiplier, max=10),
            retry=retry_if_exception_type(ProviderUnavailable),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
        result = None
        async for attempt in retrying:
            with attempt:
                result = await self._execute_once(make_request)
        logger.debug(f"Calendar {label} succeeded")
        return result

    # ==================== Payload Conversion ====================

    def build_event_body(self, details: EventDetails) -> dict:
        """Turn appointment details into a Calendar API event body."""
        start = localize(details.date, details.time, self.tz)
        end = details.end_after(start)
        phone = format_phone_for_event(details.patient_phone, self.phone_country_code)

        return {
            "summary": f"Appointment: {details.patient_name}",
            "description": f"Patient: {details.patient_name}\nPhone: {phone}\nNotes: {details.notes}",
            "start": {"dateTime": start.isoformat(), "timeZone": self.timezone},
            "end": {"dateTime": end.isoformat(), "timeZone": self.timezone},
        }

    def to_event(self, item: dict) -> CalendarEvent:
        """Normalize a Calendar API item."""
        if "start" not in item or "end" not in item:
            raise ValidationError(f"Event {item.get('id')} has no start/end")
        return CalendarEvent(
            id=item["id"],
            summary=item.get("summary"),
            description=item.get("description"),
            start=parse_event_time(item["start"], self.tz),
            end=parse_event_time(item["end"], self.tz),
            status=item.get("status", "confirmed"),
            created=item.get("created"),
            updated=item.get("updated"),
        )

    # ==================== Event Operations ====================

    async def list_events(self, time_min: datetime, time_max: datetime) -> List[CalendarEvent]:
        """
        List non-cancelled events starting in [time_min, time_max).

        Events are returned in provider order (start time ascending).
        """
        events: List[CalendarEvent] = []
        page_token: Optional[str] = None

        while True:
            def request(token=page_token):
                return self.service.events().list(
                    calendarId=self.calendar_id,
                    timeMin=time_min.isoformat(),
                    timeMax=time_max.isoformat(),
                    singleEvents=True,
                    orderBy="startTime",
                    maxResults=2500,
                    pageToken=token,
                )

            response = await self._call("list", request)
            for item in response.get("items", []):
                if item.get("status") == "cancelled":
                    continue
                try:
                    events.append(self.to_event(item))
                except ValidationError as e:
                    logger.warning(f"Skipping unreadable calendar event: {e}")

            page_token = response.get("nextPageToken")
            if not page_token:
                break

        logger.info(f"Found {len(events)} events in Google Calendar")
        return events

    async def create_event(self, details: EventDetails) -> str:
        """Create an event and return its ID."""
        body = self.build_event_body(details)
        created = await self._call(
            "insert",
            lambda: self.service.events().insert(calendarId=self.calendar_id, body=body),
        )
        logger.info(f"Google Calendar event created: {created['id']}")
        return created["id"]

    async def update_event(self, event_id: str, details: EventDetails) -> None:
        """Move/rewrite an existing event to match the details."""
        body = self.build_event_body(details)
        await self._call(
            "patch",
            lambda: self.service.events().patch(calendarId=self.calendar_id, eventId=event_id, body=body),
        )
        logger.info(f"Google Calendar event updated: {event_id}")

    async def delete_event(self, event_id: str) -> bool:
        """
        Delete an event.

        Returns:
            True if deleted, False if it was already gone
        """
        try:
            await self._call(
                "delete",
                lambda: self.service.events().delete(calendarId=self.calendar_id, eventId=event_id),
            )
        except NotFound:
            logger.info(f"Calendar event {event_id} already deleted")
            return False
        logger.info(f"Google Calendar event deleted: {event_id}")
        return True
