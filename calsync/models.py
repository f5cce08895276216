from __future__ import annotations

from datetime import datetime, timezone
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC and convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


# --------------------------------------------------------------------------- #
# Integration - one OAuth connection per owner
# --------------------------------------------------------------------------- #

class Integration(BaseModel):
    """Persisted OAuth credentials and calendar selection for one owner."""

    id: str
    owner_id: str
    access_token: str
    refresh_token: str
    token_expiry: datetime
    remote_calendar_id: str
    is_active: bool = True
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator("token_expiry", "created_at", "updated_at")
    @classmethod
    def _as_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(value) if value is not None else None

    def token_expired(self, now: Optional[datetime] = None) -> bool:
        return (now or utcnow()) >= self.token_expiry

    def __repr__(self) -> str:
        # Tokens stay out of logs and tracebacks
        return (
            f"Integration(id={self.id!r}, owner_id={self.owner_id!r}, "
            f"remote_calendar_id={self.remote_calendar_id!r}, is_active={self.is_active!r})"
        )

    __str__ = __repr__


# --------------------------------------------------------------------------- #
# Calendar events
# --------------------------------------------------------------------------- #

class RemoteEvent(BaseModel):
    """A provider event mapped to the canonical local shape."""

    external_event_id: str
    title: str
    description: Optional[str] = None
    location: Optional[str] = None
    start_time: datetime
    end_time: datetime
    is_all_day: bool = False
    attendees: List[str] = Field(default_factory=list)
    html_link: Optional[str] = None

    def differs_from(self, stored: MirroredEvent) -> bool:
        """Whether writing this event would change the stored mirror row."""
        return (
            self.title != stored.title
            or self.description != stored.description
            or self.location != stored.location
            or self.start_time != stored.start_time
            or self.end_time != stored.end_time
            or self.is_all_day != stored.is_all_day
            or set(self.attendees) != set(stored.attendees)
        )


class MirroredEvent(BaseModel):
    """Local copy of one remote event, keyed by (integration_id, external_event_id)."""

    id: str
    integration_id: str
    external_event_id: str
    title: str
    description: Optional[str] = None
    location: Optional[str] = None
    start_time: datetime
    end_time: datetime
    is_all_day: bool = False
    attendees: List[str] = Field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator("start_time", "end_time", "created_at", "updated_at")
    @classmethod
    def _as_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(value) if value is not None else None

    @field_validator("attendees", mode="before")
    @classmethod
    def _null_attendees(cls, value):
        return value or []


class NewCalendarEvent(BaseModel):
    """Input for creating an event on the remote calendar."""

    title: str = Field(..., min_length=1)
    description: Optional[str] = None
    location: Optional[str] = None
    start_time: datetime
    end_time: datetime
    is_all_day: bool = False
    attendees: List[str] = Field(default_factory=list)
    recurrence: List[str] = Field(default_factory=list, description="RRULE/EXDATE lines")


# --------------------------------------------------------------------------- #
# Results
# --------------------------------------------------------------------------- #

class SyncStats(BaseModel):
    """Counters returned by a reconciliation run."""

    synced: int = 0
    created: int = 0
    updated: int = 0
    deleted: int = 0
    unchanged: int = 0
    skipped: int = 0
    failed: int = 0


class IntegrationStatus(BaseModel):
    connected: bool
    token_expired: bool
    integration_id: Optional[str] = None
    calendar_id: Optional[str] = None
    connected_at: Optional[datetime] = None
    token_expiry: Optional[datetime] = None


class DisconnectResult(BaseModel):
    already_disconnected: bool
    message: str


