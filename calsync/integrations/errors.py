"""
Exceptions raised by the calendar integration.

Routes translate these into HTTP responses; ``needs_reauth`` tells the caller
whether the owner has to go through the authorization flow again.
"""
from __future__ import annotations

from typing import Optional

from ..models import SyncStats


class CalendarSyncError(Exception):
    """Base class for calendar integration failures."""

    needs_reauth = False


class NotConnectedError(CalendarSyncError):
    """No integration exists for the owner."""

    needs_reauth = True

    def __init__(self, owner_id: str):
        super().__init__("Google Calendar not connected")
        self.owner_id = owner_id


class TokenExchangeError(CalendarSyncError):
    """The authorization code could not be exchanged for a usable token pair."""


class NoPrimaryCalendarError(CalendarSyncError):
    """The authorized account has no primary calendar."""


class ReauthorizationRequiredError(CalendarSyncError):
    """The refresh grant is invalid or revoked; the integration was deactivated."""

    needs_reauth = True

    def __init__(self, owner_id: str, message: str = "Failed to refresh Google token. Please reconnect."):
        super().__init__(message)
        self.owner_id = owner_id


class TransientProviderError(CalendarSyncError):
    """Network failure, timeout, rate limit or 5xx from Google. Safe to retry."""


class ProviderRequestError(CalendarSyncError):
    """Google rejected the request for a reason retrying will not fix."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class AccessTokenRejectedError(ProviderRequestError):
    """The Calendar API answered 401 for an access token we believed valid."""

    def __init__(self, message: str = "Access token rejected by Google"):
        super().__init__(message, status_code=401)


class InvalidGrantError(CalendarSyncError):
    """The token endpoint refused the refresh token."""


class SyncInProgressError(CalendarSyncError):
    """A reconciliation run for this owner is already executing."""

    def __init__(self, owner_id: str):
        super().__init__("Calendar sync already in progress")
        self.owner_id = owner_id


class SyncDeadlineExceededError(CalendarSyncError):
    """The run ran out of time before orphan cleanup; the mirror is partially updated."""

    def __init__(self, stats: SyncStats, stage: str):
        super().__init__(f"Calendar sync deadline exceeded during {stage}")
        self.stats = stats
        self.stage = stage
