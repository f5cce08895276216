"""
Google Calendar integration API routes.
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Query, status
from fastapi.responses import RedirectResponse
from postgrest.exceptions import APIError
from pydantic import BaseModel, Field

from ...auth import User, get_current_user
from ...config import settings
from ...models import MirroredEvent, NewCalendarEvent, RemoteEvent, SyncStats, utcnow
from ..errors import (
    CalendarSyncError,
    NotConnectedError,
    ProviderRequestError,
    ReauthorizationRequiredError,
    SyncDeadlineExceededError,
    SyncInProgressError,
    TransientProviderError,
)
from .authorization import AuthorizationFlow, get_authorization_flow
from .events import CalendarEventsService, get_events_service
from .status import IntegrationStatusService, get_status_service
from .sync import CalendarSyncEngine, default_window, get_sync_engine

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/integrations/calendar", tags=["calendar"])


# --------------------------------------------------------------------------- #
# Request / Response Models
# --------------------------------------------------------------------------- #

class AuthorizationUrlResponse(BaseModel):
    authorization_url: str


class SyncRequest(BaseModel):
    time_min: Optional[datetime] = None
    time_max: Optional[datetime] = None


class SyncResponse(BaseModel):
    stats: SyncStats


class IntegrationSummary(BaseModel):
    id: str
    calendar_id: str
    connected_at: Optional[datetime] = None
    token_expiry: Optional[datetime] = None


class StatusResponse(BaseModel):
    connected: bool
    token_expired: bool
    integration: Optional[IntegrationSummary] = None


class MessageResponse(BaseModel):
    message: str


class RemoteEventsResponse(BaseModel):
    events: List[RemoteEvent] = Field(default_factory=list)


class MirroredEventsResponse(BaseModel):
    events: List[MirroredEvent] = Field(default_factory=list)


# --------------------------------------------------------------------------- #
# Error Translation
# --------------------------------------------------------------------------- #

def _to_http_error(error: Exception) -> HTTPException:
    if isinstance(error, (NotConnectedError, ReauthorizationRequiredError)):
        return HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"message": str(error), "needs_reauth": True},
        )
    if isinstance(error, ValueError):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(error))
    if isinstance(error, SyncInProgressError):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(error))
    if isinstance(error, SyncDeadlineExceededError):
        return HTTPException(
            status_code=status.HTTP_504_GATEWAY_TIMEOUT,
            detail={"message": str(error), "partial_stats": error.stats.model_dump()},
        )
    if isinstance(error, TransientProviderError):
        return HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Google Calendar is temporarily unavailable, please retry later",
        )
    if isinstance(error, ProviderRequestError):
        return HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(error))
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(error))


# --------------------------------------------------------------------------- #
# Authorization
# --------------------------------------------------------------------------- #

@router.get("/begin-authorization", response_model=AuthorizationUrlResponse)
def begin_authorization(
    user: User = Depends(get_current_user),
    flow: AuthorizationFlow = Depends(get_authorization_flow),
):
    """Get the Google consent URL for the current owner."""
    return AuthorizationUrlResponse(authorization_url=flow.begin_authorization(user.id))


@router.get("/authorization-callback")
def authorization_callback(
    code: Optional[str] = Query(default=None),
    state: Optional[str] = Query(default=None),
    error: Optional[str] = Query(default=None),
    flow: AuthorizationFlow = Depends(get_authorization_flow),
):
    """
    OAuth redirect target. Always answers with a redirect into the frontend.

    Example:
    /integrations/calendar/authorization-callback?code=AUTH_CODE&state=OWNER_ID
    """
    if error:
        logger.warning("Google OAuth error: %s", error)
        return RedirectResponse(settings.frontend_redirect(google_error="access_denied"))

    if not code or not state:
        return RedirectResponse(settings.frontend_redirect(google_error="invalid_request"))

    try:
        flow.complete_authorization(code, state)
    except CalendarSyncError as e:
        logger.error("Google callback error for owner %s: %s", state, e)
        return RedirectResponse(settings.frontend_redirect(google_error="connection_failed"))
    except (APIError, ValueError):
        logger.exception("Failed to store Google Calendar connection for owner %s", state)
        return RedirectResponse(settings.frontend_redirect(google_error="connection_failed"))

    return RedirectResponse(settings.frontend_redirect(google_connected="true"))


# --------------------------------------------------------------------------- #
# Sync
# --------------------------------------------------------------------------- #

@router.post("/sync", response_model=SyncResponse)
def sync_calendar(
    request: Optional[SyncRequest] = Body(default=None),
    user: User = Depends(get_current_user),
    engine: CalendarSyncEngine = Depends(get_sync_engine),
):
    """Reconcile mirrored events with Google (default window: the next 30 days)."""
    request = request or SyncRequest()
    default_min, default_max = default_window(settings.sync_window_days, utcnow())

    try:
        stats = engine.reconcile(
            user.id,
            request.time_min or default_min,
            request.time_max or default_max,
        )
    except (CalendarSyncError, ValueError) as e:
        raise _to_http_error(e)

    return SyncResponse(stats=stats)


# --------------------------------------------------------------------------- #
# Status & Disconnect
# --------------------------------------------------------------------------- #

@router.get("/status", response_model=StatusResponse)
def calendar_status(
    user: User = Depends(get_current_user),
    service: IntegrationStatusService = Depends(get_status_service),
):
    """Get Google Calendar connection status."""
    current = service.get_status(user.id)
    integration = None
    if current.integration_id:
        integration = IntegrationSummary(
            id=current.integration_id,
            calendar_id=current.calendar_id,
            connected_at=current.connected_at,
            token_expiry=current.token_expiry,
        )
    return StatusResponse(
        connected=current.connected,
        token_expired=current.token_expired,
        integration=integration,
    )


@router.post("/disconnect", response_model=MessageResponse)
def calendar_disconnect(
    user: User = Depends(get_current_user),
    service: IntegrationStatusService = Depends(get_status_service),
):
    """Disconnect Google Calendar and delete mirrored events."""
    result = service.disconnect(user.id)
    return MessageResponse(message=result.message)


# --------------------------------------------------------------------------- #
# Events
# --------------------------------------------------------------------------- #

@router.get("/events", response_model=RemoteEventsResponse)
def list_remote_events(
    time_min: Optional[datetime] = Query(default=None),
    time_max: Optional[datetime] = Query(default=None),
    max_results: Optional[int] = Query(default=None, ge=1, le=250),
    user: User = Depends(get_current_user),
    service: CalendarEventsService = Depends(get_events_service),
):
    """List events live from Google (default window: the next 7 days)."""
    try:
        events = service.list_remote_events(user.id, time_min, time_max, max_results)
    except (CalendarSyncError, ValueError) as e:
        raise _to_http_error(e)
    return RemoteEventsResponse(events=events)


@router.get("/events/cached", response_model=MirroredEventsResponse)
def list_mirrored_events(
    time_min: Optional[datetime] = Query(default=None),
    time_max: Optional[datetime] = Query(default=None),
    user: User = Depends(get_current_user),
    service: CalendarEventsService = Depends(get_events_service),
):
    """List mirrored events from the local store."""
    try:
        events = service.list_mirrored_events(user.id, time_min, time_max)
    except ValueError as e:
        raise _to_http_error(e)
    return MirroredEventsResponse(events=events)


@router.post("/events", response_model=RemoteEvent, status_code=status.HTTP_201_CREATED)
def create_event(
    event: NewCalendarEvent,
    user: User = Depends(get_current_user),
    service: CalendarEventsService = Depends(get_events_service),
):
    """Create an event on the owner's Google calendar."""
    try:
        return service.create_event(user.id, event)
    except (CalendarSyncError, ValueError) as e:
        raise _to_http_error(e)
