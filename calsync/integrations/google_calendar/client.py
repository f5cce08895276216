"""
Google Calendar API client.

Wraps the calendar v3 discovery client for the calls the sync engine needs:
primary calendar discovery, windowed event listing with paging, and event
creation. Each call builds its service from the access token it is given, so
no owner credentials are kept between calls.
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

import httplib2
from google.auth.exceptions import TransportError
from google.oauth2.credentials import Credentials
from google_auth_httplib2 import AuthorizedHttp
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from ...concurrency import Deadline
from ...models import NewCalendarEvent, ensure_utc
from ..errors import (
    AccessTokenRejectedError,
    ProviderRequestError,
    TransientProviderError,
)

logger = logging.getLogger(__name__)

# Status codes Google documents as retryable
TRANSIENT_STATUS_CODES = {408, 429, 500, 502, 503, 504}
# Google's upper bound for events.list maxResults
MAX_PAGE_SIZE = 2500


def _rfc3339(value: datetime) -> str:
    return ensure_utc(value).isoformat().replace("+00:00", "Z")


def _execute(request, what: str) -> Dict[str, Any]:
    """Execute a discovery request, translating failures into integration errors."""
    try:
        return request.execute()
    except HttpError as e:
        status = e.resp.status if e.resp is not None else None
        if status == 401:
            raise AccessTokenRejectedError() from e
        if status in TRANSIENT_STATUS_CODES:
            raise TransientProviderError(f"Google returned {status} while {what}") from e
        raise ProviderRequestError(f"Google returned {status} while {what}", status_code=status) from e
    except (TimeoutError, OSError, httplib2.HttpLib2Error, TransportError) as e:
        raise TransientProviderError(f"Network error while {what}: {e}") from e


# --------------------------------------------------------------------------- #
# Google Calendar Client
# --------------------------------------------------------------------------- #

class GoogleCalendarClient:
    """
    Google Calendar v3 client working on explicit access tokens.

    Usage:
        client = GoogleCalendarClient(timeout=30)
        calendar_id = client.get_primary_calendar_id(access_token)
        items = client.list_events(access_token, calendar_id, time_min, time_max)
    """

    API_NAME = "calendar"
    API_VERSION = "v3"

    def __init__(self, timeout: float = 30.0, service_factory: Optional[Callable[[str, float], Any]] = None):
        self._timeout = timeout
        self._service_factory = service_factory or self._build_service

    def _build_service(self, access_token: str, timeout: float):
        creds = Credentials(token=access_token)
        http = AuthorizedHttp(creds, http=httplib2.Http(timeout=timeout))
        return build(
            self.API_NAME,
            self.API_VERSION,
            http=http,
            cache_discovery=False,
            static_discovery=True,
        )

    def _service(self, access_token: str, deadline: Optional[Deadline]):
        timeout = deadline.timeout(self._timeout) if deadline else self._timeout
        return self._service_factory(access_token, timeout)

    # ----------------------------------------------------------------------- #
    # Calendars
    # ----------------------------------------------------------------------- #

    def get_primary_calendar_id(self, access_token: str, deadline: Optional[Deadline] = None) -> Optional[str]:
        """
        Find the id of the account's primary calendar.

        Returns:
            The calendar id or None if the calendar list has no primary entry
        """
        service = self._service(access_token, deadline)
        request = service.calendarList().list()
        while request is not None:
            response = _execute(request, "listing calendars")
            for entry in response.get("items", []):
                if entry.get("primary") is True and entry.get("id"):
                    return entry["id"]
            request = service.calendarList().list_next(request, response)
        return None

    # ----------------------------------------------------------------------- #
    # Events
    # ----------------------------------------------------------------------- #

    def list_events(
        self,
        access_token: str,
        calendar_id: str,
        time_min: datetime,
        time_max: datetime,
        max_results: int = 250,
        deadline: Optional[Deadline] = None,
    ) -> List[Dict[str, Any]]:
        """
        List events in a window, recurring events expanded into occurrences.

        Pages through the results until ``max_results`` items are collected.

        Args:
            access_token: A valid OAuth access token
            calendar_id: Calendar to read
            time_min: Inclusive lower bound of the window
            time_max: Exclusive upper bound of the window
            max_results: Upper bound on returned items
            deadline: Optional run deadline; each page call is capped by it

        Returns:
            Raw event resources ordered by start time
        """
        service = self._service(access_token, deadline)
        request = service.events().list(
            calendarId=calendar_id,
            timeMin=_rfc3339(time_min),
            timeMax=_rfc3339(time_max),
            maxResults=min(max_results, MAX_PAGE_SIZE),
            singleEvents=True,
            orderBy="startTime",
        )

        events: List[Dict[str, Any]] = []
        while request is not None:
            if deadline is not None and deadline.expired():
                raise TransientProviderError("Deadline reached while listing events")
            response = _execute(request, "listing events")
            events.extend(response.get("items", []))
            if len(events) >= max_results:
                if response.get("nextPageToken"):
                    logger.warning(
                        "Event listing for calendar %s truncated at %d items", calendar_id, max_results
                    )
                return events[:max_results]
            request = service.events().list_next(request, response)

        return events

    def create_event(
        self,
        access_token: str,
        calendar_id: str,
        event: NewCalendarEvent,
        deadline: Optional[Deadline] = None,
    ) -> Dict[str, Any]:
        """
        Create an event on the remote calendar.

        Returns:
            The created event resource
        """
        body: Dict[str, Any] = {
            "summary": event.title,
        }
        if event.description:
            body["description"] = event.description
        if event.location:
            body["location"] = event.location

        if event.is_all_day:
            # All-day events use date format (YYYY-MM-DD)
            body["start"] = {"date": ensure_utc(event.start_time).date().isoformat()}
            body["end"] = {"date": ensure_utc(event.end_time).date().isoformat()}
        else:
            body["start"] = {"dateTime": ensure_utc(event.start_time).isoformat()}
            body["end"] = {"dateTime": ensure_utc(event.end_time).isoformat()}

        if event.attendees:
            body["attendees"] = [{"email": email} for email in event.attendees]
        if event.recurrence:
            body["recurrence"] = list(event.recurrence)

        service = self._service(access_token, deadline)
        request = service.events().insert(calendarId=calendar_id, body=body)
        return _execute(request, "creating an event")


# --------------------------------------------------------------------------- #
# Shared Instance Helper
# --------------------------------------------------------------------------- #

def get_calendar_client() -> GoogleCalendarClient:
    """Get a Calendar API client using the configured provider timeout."""
    from ...config import settings

    return GoogleCalendarClient(timeout=settings.provider_timeout_seconds)
