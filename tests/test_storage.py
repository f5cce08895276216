"""Unit tests for the Supabase-backed integration and event stores."""

from __future__ import annotations

from datetime import datetime, timedelta

import pytest
from conftest import NOW, UTC

from calsync.models import RemoteEvent

pytestmark = pytest.mark.unit


def _event(event_id: str, start: datetime, title: str = "Meeting") -> RemoteEvent:
    return RemoteEvent(
        external_event_id=event_id,
        title=title,
        start_time=start,
        end_time=start + timedelta(hours=1),
        attendees=["a@example.com"],
    )


class TestIntegrationStore:
    def test_get_missing_owner_returns_none(self, integrations):
        assert integrations.get("nobody") is None

    def test_upsert_keeps_one_row_per_owner(self, integrations, db, connect):
        first = connect("owner-1")
        second = integrations.upsert(
            "owner-1",
            access_token="new-access",
            refresh_token="new-refresh",
            token_expiry=NOW + timedelta(hours=3),
            remote_calendar_id="other@example.com",
        )

        assert len(db.tables["calendar_integrations"]) == 1
        assert second.id == first.id
        assert second.access_token == "new-access"
        assert second.remote_calendar_id == "other@example.com"

    def test_upsert_reactivates_integration(self, integrations, connect):
        connect("owner-1")
        integrations.deactivate("owner-1")
        assert integrations.get("owner-1").is_active is False

        connect("owner-1")
        assert integrations.get("owner-1").is_active is True

    def test_update_tokens_keeps_refresh_token_unless_rotated(self, integrations, connect):
        connect("owner-1")

        updated = integrations.update_tokens("owner-1", "access-2", NOW + timedelta(hours=2))
        assert updated.access_token == "access-2"
        assert updated.refresh_token == "stored-refresh"
        assert updated.token_expiry == NOW + timedelta(hours=2)

        rotated = integrations.update_tokens("owner-1", "access-3", NOW, refresh_token="refresh-3")
        assert rotated.refresh_token == "refresh-3"

    def test_update_tokens_for_missing_owner_returns_none(self, integrations):
        assert integrations.update_tokens("nobody", "access", NOW) is None

    def test_list_active_skips_deactivated(self, integrations, connect):
        connect("owner-1")
        connect("owner-2")
        integrations.deactivate("owner-2")

        assert [i.owner_id for i in integrations.list_active()] == ["owner-1"]

    def test_delete_reports_whether_a_row_existed(self, integrations, connect):
        connect("owner-1")
        assert integrations.delete("owner-1") is True
        assert integrations.delete("owner-1") is False

    def test_delete_cascades_to_mirrored_events(self, integrations, events, db, connect):
        integration = connect("owner-1")
        events.upsert(integration.id, _event("a", NOW))

        integrations.delete("owner-1")

        assert db.tables["mirrored_events"] == []

    def test_repr_hides_tokens(self, connect):
        integration = connect("owner-1")
        assert "stored-access" not in repr(integration)
        assert "stored-refresh" not in str(integration)


class TestMirroredEventStore:
    def test_upsert_is_keyed_by_integration_and_external_id(self, events, db, connect):
        integration = connect("owner-1")

        events.upsert(integration.id, _event("a", NOW))
        events.upsert(integration.id, _event("a", NOW, title="Renamed"))

        rows = db.tables["mirrored_events"]
        assert len(rows) == 1
        assert rows[0]["title"] == "Renamed"

    def test_same_external_id_in_two_integrations(self, events, db, connect):
        first = connect("owner-1")
        second = connect("owner-2")

        events.upsert(first.id, _event("shared", NOW))
        events.upsert(second.id, _event("shared", NOW))

        assert len(db.tables["mirrored_events"]) == 2

    def test_get_by_external_ids(self, events, connect):
        integration = connect("owner-1")
        events.upsert(integration.id, _event("a", NOW))
        events.upsert(integration.id, _event("b", NOW))

        found = events.get_by_external_ids(integration.id, ["a", "missing"])

        assert set(found) == {"a"}
        assert found["a"].attendees == ["a@example.com"]

    def test_list_in_window_is_half_open_and_ordered(self, events, connect):
        integration = connect("owner-1")
        start = datetime(2025, 1, 1, tzinfo=UTC)
        end = datetime(2025, 1, 31, tzinfo=UTC)
        events.upsert(integration.id, _event("late", datetime(2025, 1, 20, tzinfo=UTC)))
        events.upsert(integration.id, _event("early", start))
        events.upsert(integration.id, _event("at-end", end))

        listed = events.list_in_window(integration.id, start, end)

        assert [e.external_event_id for e in listed] == ["early", "late"]

    def test_delete_orphans_stays_inside_window(self, events, db, connect):
        integration = connect("owner-1")
        start = datetime(2025, 1, 1, tzinfo=UTC)
        end = datetime(2025, 1, 31, tzinfo=UTC)
        events.upsert(integration.id, _event("keep", datetime(2025, 1, 5, tzinfo=UTC)))
        events.upsert(integration.id, _event("orphan", datetime(2025, 1, 10, tzinfo=UTC)))
        events.upsert(integration.id, _event("outside", datetime(2025, 2, 10, tzinfo=UTC)))

        deleted = events.delete_orphans(integration.id, start, end, {"keep"})

        assert deleted == 1
        remaining = {row["external_event_id"] for row in db.tables["mirrored_events"]}
        assert remaining == {"keep", "outside"}

    def test_delete_orphans_with_nothing_to_keep_clears_window(self, events, connect):
        integration = connect("owner-1")
        start = datetime(2025, 1, 1, tzinfo=UTC)
        end = datetime(2025, 1, 31, tzinfo=UTC)
        events.upsert(integration.id, _event("a", datetime(2025, 1, 5, tzinfo=UTC)))

        assert events.delete_orphans(integration.id, start, end, []) == 1
