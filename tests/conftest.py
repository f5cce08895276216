"""Shared fixtures for the calsync test suite.

Settings are validated when ``calsync.config`` is imported, so the required
environment is set here before any test module imports the package.

``FakeSupabase`` emulates the slice of the supabase-py query builder the
stores use, including the unique keys and the ``ON DELETE CASCADE`` from
``calsync/schema.sql``.
"""

from __future__ import annotations

import json
import os
import threading
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

import pytest

os.environ.setdefault("SUPABASE_URL", "http://localhost:54321")
os.environ.setdefault("SUPABASE_SERVICE_ROLE_KEY", "service-role-key")
os.environ.setdefault("SUPABASE_JWT_SECRET", "test-jwt-secret")
os.environ.setdefault(
    "GOOGLE_CREDENTIALS_JSON",
    json.dumps(
        {
            "web": {
                "client_id": "client-id.apps.googleusercontent.com",
                "client_secret": "client-secret",
                "auth_uri": "https://accounts.google.com/o/oauth2/auth",
                "token_uri": "https://oauth2.googleapis.com/token",
            }
        }
    ),
)

from postgrest.exceptions import APIError  # noqa: E402

from calsync.integrations.errors import AccessTokenRejectedError  # noqa: E402
from calsync.integrations.event_storage import MirroredEventStore  # noqa: E402
from calsync.integrations.google.oauth import TokenGrant  # noqa: E402
from calsync.integrations.token_storage import IntegrationStore  # noqa: E402

UTC = timezone.utc
NOW = datetime(2025, 1, 1, 12, 0, tzinfo=UTC)


# ============================================================================
# Fake Supabase
# ============================================================================

_UNIQUE_KEYS = {
    "calendar_integrations": ("owner_id",),
    "mirrored_events": ("integration_id", "external_event_id"),
}

# child table, foreign key column, parent table
_CASCADES = [("mirrored_events", "integration_id", "calendar_integrations")]


def _coerce(value: Any) -> Any:
    """Compare ISO timestamps as instants, like timestamptz columns do."""
    if isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return value
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)
    return value


class FakeResult:
    def __init__(self, data: list[dict]):
        self.data = data


class FakeQuery:
    def __init__(self, db: FakeSupabase, table: str):
        self._db = db
        self._table = table
        self._op = "select"
        self._payload: Any = None
        self._on_conflict = ""
        self._filters: list[Callable[[dict], bool]] = []
        self._negate_next = False
        self._order: tuple[str, bool] | None = None
        self._limit: int | None = None

    # -- operations ---------------------------------------------------------

    def select(self, *columns: str) -> FakeQuery:
        self._op = "select"
        return self

    def insert(self, payload: dict) -> FakeQuery:
        self._op, self._payload = "insert", payload
        return self

    def upsert(self, payload: dict, on_conflict: str = "") -> FakeQuery:
        self._op, self._payload, self._on_conflict = "upsert", payload, on_conflict
        return self

    def update(self, payload: dict) -> FakeQuery:
        self._op, self._payload = "update", payload
        return self

    def delete(self) -> FakeQuery:
        self._op = "delete"
        return self

    # -- filters ------------------------------------------------------------

    @property
    def not_(self) -> FakeQuery:
        self._negate_next = True
        return self

    def _add(self, predicate: Callable[[dict], bool]) -> FakeQuery:
        if self._negate_next:
            self._negate_next = False
            self._filters.append(lambda row: not predicate(row))
        else:
            self._filters.append(predicate)
        return self

    def eq(self, column: str, value: Any) -> FakeQuery:
        return self._add(lambda row: _coerce(row.get(column)) == _coerce(value))

    def in_(self, column: str, values: list) -> FakeQuery:
        wanted = {_coerce(v) for v in values}
        return self._add(lambda row: _coerce(row.get(column)) in wanted)

    def gte(self, column: str, value: Any) -> FakeQuery:
        return self._add(lambda row: _coerce(row.get(column)) >= _coerce(value))

    def lt(self, column: str, value: Any) -> FakeQuery:
        return self._add(lambda row: _coerce(row.get(column)) < _coerce(value))

    def order(self, column: str, desc: bool = False) -> FakeQuery:
        self._order = (column, desc)
        return self

    def limit(self, count: int) -> FakeQuery:
        self._limit = count
        return self

    # -- execution ----------------------------------------------------------

    def _matching(self) -> list[dict]:
        return [row for row in self._db.rows(self._table) if all(f(row) for f in self._filters)]

    def execute(self) -> FakeResult:
        with self._db.lock:
            handler = getattr(self, f"_execute_{self._op}")
            return FakeResult(handler())

    def _execute_select(self) -> list[dict]:
        rows = self._matching()
        if self._order:
            column, desc = self._order
            rows.sort(key=lambda row: _coerce(row.get(column)), reverse=desc)
        if self._limit is not None:
            rows = rows[: self._limit]
        return [dict(row) for row in rows]

    def _execute_insert(self) -> list[dict]:
        return [dict(self._db.insert_row(self._table, self._payload))]

    def _execute_upsert(self) -> list[dict]:
        self._db.check_upsert_failure(self._table, self._payload)
        keys = tuple(k.strip() for k in self._on_conflict.split(",") if k.strip())
        existing = self._db.find(self._table, {k: self._payload.get(k) for k in keys}) if keys else None
        if existing is None:
            return [dict(self._db.insert_row(self._table, self._payload))]
        existing.update(self._payload)
        return [dict(existing)]

    def _execute_update(self) -> list[dict]:
        rows = self._matching()
        for row in rows:
            row.update(self._payload)
        return [dict(row) for row in rows]

    def _execute_delete(self) -> list[dict]:
        rows = self._matching()
        for row in rows:
            self._db.remove_row(self._table, row)
        return [dict(row) for row in rows]


class FakeSupabase:
    """In-memory stand-in for ``supabase.Client``."""

    def __init__(self) -> None:
        self.lock = threading.RLock()
        self.tables: dict[str, list[dict]] = {name: [] for name in _UNIQUE_KEYS}
        self.fail_upserts_for: set[str] = set()

    def table(self, name: str) -> FakeQuery:
        return FakeQuery(self, name)

    def rows(self, table: str) -> list[dict]:
        return self.tables.setdefault(table, [])

    def find(self, table: str, key: dict) -> dict | None:
        for row in self.rows(table):
            if all(_coerce(row.get(k)) == _coerce(v) for k, v in key.items()):
                return row
        return None

    def insert_row(self, table: str, payload: dict) -> dict:
        unique = _UNIQUE_KEYS.get(table)
        if unique and self.find(table, {k: payload.get(k) for k in unique}) is not None:
            raise APIError(
                {
                    "message": f"duplicate key value violates unique constraint on {table}",
                    "code": "23505",
                    "hint": None,
                    "details": None,
                }
            )
        now = datetime.now(UTC).isoformat()
        row = {"id": str(uuid.uuid4()), "created_at": now, "updated_at": now}
        row.update(payload)
        self.rows(table).append(row)
        return row

    def remove_row(self, table: str, row: dict) -> None:
        self.rows(table).remove(row)
        for child, column, parent in _CASCADES:
            if parent == table:
                for orphan in [r for r in self.rows(child) if r.get(column) == row["id"]]:
                    self.rows(child).remove(orphan)

    def check_upsert_failure(self, table: str, payload: dict) -> None:
        if table == "mirrored_events" and payload.get("external_event_id") in self.fail_upserts_for:
            raise APIError({"message": "simulated write failure", "code": "XX000", "hint": None, "details": None})


# ============================================================================
# Fake Google Clients
# ============================================================================


class FakeOAuthClient:
    """Records calls and returns configurable grants."""

    def __init__(self) -> None:
        self.grant = TokenGrant(
            access_token="initial-access",
            refresh_token="initial-refresh",
            expiry=NOW + timedelta(hours=1),
        )
        self.exchange_error: Exception | None = None
        self.refresh_error: Exception | None = None
        self.refresh_delay: threading.Event | None = None
        self.refresh_calls: list[str] = []
        self.revoked: list[str] = []
        self.revoke_result = True
        self._counter = 0
        self.rotate_refresh_token = False

    def authorization_url(self, state: str) -> str:
        return f"https://accounts.google.com/o/oauth2/auth?client_id=client-id&state={state}&prompt=consent"

    def exchange_code(self, code: str, timeout: float | None = None) -> TokenGrant:
        if self.exchange_error is not None:
            raise self.exchange_error
        return self.grant

    def refresh(self, refresh_token: str, timeout: float | None = None) -> TokenGrant:
        self.refresh_calls.append(refresh_token)
        if self.refresh_delay is not None:
            self.refresh_delay.wait(timeout=5)
        if self.refresh_error is not None:
            raise self.refresh_error
        self._counter += 1
        return TokenGrant(
            access_token=f"refreshed-access-{self._counter}",
            refresh_token=f"rotated-refresh-{self._counter}" if self.rotate_refresh_token else None,
            expiry=NOW + timedelta(hours=2),
        )

    def revoke(self, token: str, timeout: float | None = None) -> bool:
        self.revoked.append(token)
        return self.revoke_result


class FakeCalendarClient:
    """Serves a configurable list of Google event resources."""

    def __init__(self) -> None:
        self.primary_calendar_id: str | None = "owner@example.com"
        self.items: list[dict] = []
        self.list_error: Exception | None = None
        self.rejected_tokens: set[str] = set()
        self.list_calls: list[dict] = []
        self.created: list[tuple[str, Any]] = []
        self.on_list: Callable[[], None] | None = None

    def get_primary_calendar_id(self, access_token: str, deadline=None) -> str | None:
        return self.primary_calendar_id

    def list_events(self, access_token, calendar_id, time_min, time_max, max_results=250, deadline=None):
        self.list_calls.append(
            {
                "access_token": access_token,
                "calendar_id": calendar_id,
                "time_min": time_min,
                "time_max": time_max,
                "max_results": max_results,
            }
        )
        if self.on_list is not None:
            self.on_list()
        if access_token in self.rejected_tokens:
            raise AccessTokenRejectedError()
        if self.list_error is not None:
            raise self.list_error
        return [dict(item) for item in self.items[:max_results]]

    def create_event(self, access_token, calendar_id, event, deadline=None) -> dict:
        self.created.append((calendar_id, event))
        return {
            "id": f"created-{len(self.created)}",
            "summary": event.title,
            "start": {"dateTime": event.start_time.isoformat()},
            "end": {"dateTime": event.end_time.isoformat()},
            "htmlLink": "https://calendar.google.com/event?eid=created",
        }


def google_event(event_id: str, start: datetime, title: str = "Meeting", **extra: Any) -> dict:
    """Build a timed Google event resource lasting one hour."""
    item = {
        "id": event_id,
        "summary": title,
        "start": {"dateTime": start.isoformat()},
        "end": {"dateTime": (start + timedelta(hours=1)).isoformat()},
    }
    item.update(extra)
    return item


# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture
def db() -> FakeSupabase:
    return FakeSupabase()


@pytest.fixture
def integrations(db) -> IntegrationStore:
    return IntegrationStore(db)


@pytest.fixture
def events(db) -> MirroredEventStore:
    return MirroredEventStore(db)


@pytest.fixture
def oauth() -> FakeOAuthClient:
    return FakeOAuthClient()


@pytest.fixture
def calendar() -> FakeCalendarClient:
    return FakeCalendarClient()


@pytest.fixture
def connect(integrations):
    """Store an active integration for an owner."""

    def _connect(owner_id: str = "owner-1", expiry: datetime | None = None, calendar_id: str = "primary"):
        return integrations.upsert(
            owner_id,
            access_token="stored-access",
            refresh_token="stored-refresh",
            token_expiry=expiry or NOW + timedelta(hours=1),
            remote_calendar_id=calendar_id,
        )

    return _connect
