"""
Mirrored event storage using Supabase.

Rows in ``mirrored_events`` belong to one integration and are unique on
``(integration_id, external_event_id)``. Every query here is scoped by
integration id.
"""
from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from supabase import Client

from ..models import MirroredEvent, RemoteEvent, ensure_utc, utcnow
from ..supabase_client import get_db

EVENTS_TABLE = "mirrored_events"

# Keeps ``in.(...)`` filters well inside URL length limits
_ID_CHUNK_SIZE = 100


def _chunks(values: List[str], size: int) -> Iterable[List[str]]:
    for start in range(0, len(values), size):
        yield values[start:start + size]


class MirroredEventStore:
    """Event Store: the local mirror of remote calendar events."""

    def __init__(self, db: Optional[Client] = None):
        self._db = db

    @property
    def db(self) -> Client:
        if self._db is None:
            self._db = get_db()
        return self._db

    def _table(self):
        return self.db.table(EVENTS_TABLE)

    def get_by_external_ids(self, integration_id: str, external_ids: Iterable[str]) -> Dict[str, MirroredEvent]:
        """
        Load existing mirror rows for a set of provider event ids.

        Returns:
            Mapping of external_event_id to the stored row
        """
        ids = sorted(set(external_ids))
        found: Dict[str, MirroredEvent] = {}
        for chunk in _chunks(ids, _ID_CHUNK_SIZE):
            result = (
                self._table()
                .select("*")
                .eq("integration_id", integration_id)
                .in_("external_event_id", chunk)
                .execute()
            )
            for row in result.data:
                event = MirroredEvent(**row)
                found[event.external_event_id] = event
        return found

    def list_in_window(self, integration_id: str, time_min: datetime, time_max: datetime) -> List[MirroredEvent]:
        """List mirror rows whose start lies in [time_min, time_max), earliest first."""
        result = (
            self._table()
            .select("*")
            .eq("integration_id", integration_id)
            .gte("start_time", ensure_utc(time_min).isoformat())
            .lt("start_time", ensure_utc(time_max).isoformat())
            .order("start_time")
            .execute()
        )
        return [MirroredEvent(**row) for row in result.data]

    def upsert(self, integration_id: str, event: RemoteEvent) -> MirroredEvent:
        """Insert or update one mirror row keyed by (integration_id, external_event_id)."""
        row: Dict[str, Any] = {
            "integration_id": integration_id,
            "external_event_id": event.external_event_id,
            "title": event.title,
            "description": event.description,
            "location": event.location,
            "start_time": ensure_utc(event.start_time).isoformat(),
            "end_time": ensure_utc(event.end_time).isoformat(),
            "is_all_day": event.is_all_day,
            "attendees": list(event.attendees),
            "updated_at": utcnow().isoformat(),
        }
        result = self._table().upsert(row, on_conflict="integration_id,external_event_id").execute()
        return MirroredEvent(**result.data[0])

    def delete_orphans(
        self,
        integration_id: str,
        time_min: datetime,
        time_max: datetime,
        keep_external_ids: Iterable[str],
    ) -> int:
        """
        Delete rows in [time_min, time_max) whose provider id is not in ``keep_external_ids``.

        Issued as a single bulk delete.

        Returns:
            Number of rows deleted
        """
        query = (
            self._table()
            .delete()
            .eq("integration_id", integration_id)
            .gte("start_time", ensure_utc(time_min).isoformat())
            .lt("start_time", ensure_utc(time_max).isoformat())
        )
        keep = sorted(set(keep_external_ids))
        if keep:
            query = query.not_.in_("external_event_id", keep)

        result = query.execute()
        return len(result.data)


def get_event_store() -> MirroredEventStore:
    """Get an event store bound to the shared Supabase client."""
    return MirroredEventStore()
