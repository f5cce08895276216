"""
Google Calendar integration for calsync.

Provides the OAuth connection flow, token lifecycle, event reconciliation
and connection status.
"""
from .authorization import AuthorizationFlow, get_authorization_flow
from .client import GoogleCalendarClient, get_calendar_client
from .events import CalendarEventsService, get_events_service
from .routes import router
from .status import IntegrationStatusService, get_status_service
from .sync import CalendarSyncEngine, get_sync_engine
from .tokens import TokenManager, get_token_manager

__all__ = [
    "AuthorizationFlow",
    "get_authorization_flow",
    "GoogleCalendarClient",
    "get_calendar_client",
    "CalendarEventsService",
    "get_events_service",
    "IntegrationStatusService",
    "get_status_service",
    "CalendarSyncEngine",
    "get_sync_engine",
    "TokenManager",
    "get_token_manager",
    # API Router
    "router",
]
