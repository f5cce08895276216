"""
Read-through and write-through event operations.

- ``list_remote_events``: live events from Google, nothing stored
- ``list_mirrored_events``: the local mirror for a window
- ``create_event``: create an event on the owner's Google calendar
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, List, Optional

from ...models import MirroredEvent, NewCalendarEvent, RemoteEvent, ensure_utc, utcnow
from ..errors import NotConnectedError, ProviderRequestError
from ..event_storage import MirroredEventStore, get_event_store
from ..token_storage import IntegrationStore, get_integration_store
from .client import GoogleCalendarClient, get_calendar_client
from .normalize import normalize_remote_event
from .sync import default_window
from .tokens import TokenManager, get_token_manager

logger = logging.getLogger(__name__)


class CalendarEventsService:
    def __init__(
        self,
        tokens: TokenManager,
        calendar: GoogleCalendarClient,
        integrations: IntegrationStore,
        events: MirroredEventStore,
        window_days: int = 7,
        max_results: int = 50,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._tokens = tokens
        self._calendar = calendar
        self._integrations = integrations
        self._events = events
        self._window_days = window_days
        self._max_results = max_results
        self._clock = clock

    def _window(self, time_min: Optional[datetime], time_max: Optional[datetime]) -> tuple[datetime, datetime]:
        default_min, default_max = default_window(self._window_days, self._clock())
        start = ensure_utc(time_min) if time_min else default_min
        end = ensure_utc(time_max) if time_max else default_max
        if start >= end:
            raise ValueError("time_min must be earlier than time_max")
        return start, end

    def _require_integration(self, owner_id: str):
        integration = self._integrations.get(owner_id)
        if integration is None:
            raise NotConnectedError(owner_id)
        return integration

    def list_remote_events(
        self,
        owner_id: str,
        time_min: Optional[datetime] = None,
        time_max: Optional[datetime] = None,
        max_results: Optional[int] = None,
    ) -> List[RemoteEvent]:
        """Fetch events straight from Google; malformed items are dropped."""
        start, end = self._window(time_min, time_max)
        access_token = self._tokens.get_valid_access_token(owner_id)
        integration = self._require_integration(owner_id)

        items = self._calendar.list_events(
            access_token,
            integration.remote_calendar_id,
            start,
            end,
            max_results=max_results or self._max_results,
        )
        return [event for event in map(normalize_remote_event, items) if event is not None]

    def list_mirrored_events(
        self,
        owner_id: str,
        time_min: Optional[datetime] = None,
        time_max: Optional[datetime] = None,
    ) -> List[MirroredEvent]:
        """Mirrored events in the window; empty when the owner never connected."""
        start, end = self._window(time_min, time_max)
        integration = self._integrations.get(owner_id)
        if integration is None:
            return []
        return self._events.list_in_window(integration.id, start, end)

    def create_event(self, owner_id: str, event: NewCalendarEvent) -> RemoteEvent:
        """
        Create an event on the owner's Google calendar.

        The mirror is not written; the next reconcile picks the event up.
        """
        if ensure_utc(event.end_time) < ensure_utc(event.start_time):
            raise ValueError("end_time must not be earlier than start_time")

        access_token = self._tokens.get_valid_access_token(owner_id)
        integration = self._require_integration(owner_id)

        created = self._calendar.create_event(access_token, integration.remote_calendar_id, event)
        normalized = normalize_remote_event(created)
        if normalized is None:
            raise ProviderRequestError("Google returned an incomplete event")

        logger.info("Created event %s for owner %s", normalized.external_event_id, owner_id)
        return normalized


def get_events_service() -> CalendarEventsService:
    from ...config import settings

    return CalendarEventsService(
        get_token_manager(),
        get_calendar_client(),
        get_integration_store(),
        get_event_store(),
        window_days=settings.preview_window_days,
        max_results=settings.preview_max_results,
    )
