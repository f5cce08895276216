"""
Reconciliation of the local event mirror against Google Calendar.

A run for one owner and one window ``[time_min, time_max)``:

1. gets a valid access token (refreshing it if needed);
2. fetches every remote occurrence in the window, recurring events expanded;
3. upserts each well-formed event, one at a time, so a bad row only loses
   that row;
4. deletes mirror rows in the window whose provider id was not fetched.

Step 4 only runs after step 3 completed against the fully fetched list. Runs
are exclusive per owner.
"""
from __future__ import annotations

import logging
from datetime import datetime, timedelta
from functools import lru_cache
from typing import Callable, Dict, List, Optional, Set, Tuple, Union

from ...concurrency import Deadline, KeyedGuard
from ...models import Integration, RemoteEvent, SyncStats, ensure_utc, utcnow
from ..errors import (
    AccessTokenRejectedError,
    CalendarSyncError,
    NotConnectedError,
    ReauthorizationRequiredError,
    SyncDeadlineExceededError,
    SyncInProgressError,
    TransientProviderError,
)
from ..event_storage import MirroredEventStore, get_event_store
from ..token_storage import IntegrationStore, get_integration_store
from .client import GoogleCalendarClient, get_calendar_client
from .normalize import normalize_remote_event
from .tokens import TokenManager, get_token_manager

logger = logging.getLogger(__name__)


def default_window(days: int, now: Optional[datetime] = None) -> tuple[datetime, datetime]:
    """The default sync window: now .. now + ``days``."""
    start = now or utcnow()
    return start, start + timedelta(days=days)


class CalendarSyncEngine:
    """
    Event Reconciliation Engine.

    Usage:
        engine = CalendarSyncEngine(tokens, calendar, integrations, events)
        stats = engine.reconcile(owner_id, time_min, time_max)
    """

    def __init__(
        self,
        tokens: TokenManager,
        calendar: GoogleCalendarClient,
        integrations: IntegrationStore,
        events: MirroredEventStore,
        max_events: int = 250,
        deadline_seconds: Optional[float] = 120.0,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._tokens = tokens
        self._calendar = calendar
        self._integrations = integrations
        self._events = events
        self._max_events = max_events
        self._deadline_seconds = deadline_seconds
        self._clock = clock
        self._running = KeyedGuard()

    # ----------------------------------------------------------------------- #
    # Public API
    # ----------------------------------------------------------------------- #

    def reconcile(
        self,
        owner_id: str,
        time_min: datetime,
        time_max: datetime,
        deadline_seconds: Optional[float] = None,
    ) -> SyncStats:
        """
        Reconcile the owner's mirror with Google for ``[time_min, time_max)``.

        Args:
            owner_id: The owner's ID
            time_min: Inclusive window start (naive values are UTC)
            time_max: Exclusive window end
            deadline_seconds: Budget for the whole run; defaults to the
                engine's configured deadline

        Returns:
            Aggregate counters for the run

        Raises:
            ValueError: The window is empty or inverted
            SyncInProgressError: Another run for this owner is executing
            NotConnectedError, ReauthorizationRequiredError: Owner must (re)connect
            TransientProviderError: Google unreachable; nothing was written
            SyncDeadlineExceededError: Out of time before orphan cleanup
        """
        time_min = ensure_utc(time_min)
        time_max = ensure_utc(time_max)
        if time_min >= time_max:
            raise ValueError("time_min must be earlier than time_max")

        deadline = Deadline(deadline_seconds if deadline_seconds is not None else self._deadline_seconds)

        with self._running.hold(owner_id, lambda: SyncInProgressError(owner_id)):
            return self._reconcile(owner_id, time_min, time_max, deadline)

    def reconcile_all_active(
        self,
        time_min: Optional[datetime] = None,
        time_max: Optional[datetime] = None,
        window_days: int = 30,
    ) -> Dict[str, Union[SyncStats, str]]:
        """
        Reconcile every active integration; the entry point for periodic sync.

        A failure for one owner is logged and reported, and does not stop the
        others.

        Returns:
            Mapping of owner id to its stats, or to the error message
        """
        if time_min is None or time_max is None:
            default_min, default_max = default_window(window_days, self._clock())
            time_min = time_min or default_min
            time_max = time_max or default_max

        outcomes: Dict[str, Union[SyncStats, str]] = {}
        for integration in self._integrations.list_active():
            try:
                outcomes[integration.owner_id] = self.reconcile(integration.owner_id, time_min, time_max)
            except CalendarSyncError as e:
                logger.warning("Periodic sync failed for owner %s: %s", integration.owner_id, e)
                outcomes[integration.owner_id] = str(e)
            except Exception as e:
                logger.exception("Periodic sync crashed for owner %s", integration.owner_id)
                outcomes[integration.owner_id] = str(e)
        return outcomes

    # ----------------------------------------------------------------------- #
    # Run
    # ----------------------------------------------------------------------- #

    def _reconcile(self, owner_id: str, time_min: datetime, time_max: datetime, deadline: Deadline) -> SyncStats:
        integration = self._integrations.get(owner_id)
        if integration is None:
            raise NotConnectedError(owner_id)

        stats = SyncStats()
        items = self._fetch(integration, time_min, time_max, deadline, stats)

        fetched_ids: Set[str] = {str(item["id"]) for item in items if item.get("id")}
        events, moved_out = self._normalize(items, time_min, time_max, stats)
        # Rows for events that moved out of the window are stale
        fetched_ids -= moved_out

        self._upsert_all(integration, events, deadline, stats)

        if deadline.expired():
            raise SyncDeadlineExceededError(stats, stage="upsert")

        cleanup_max = time_max
        if len(items) >= self._max_events:
            # Occurrences past the cap were never fetched; only clean up
            # before the last start we actually saw.
            cleanup_max = max((e.start_time for e in events), default=time_min)
            logger.warning("Event cap reached for owner %s; orphan cleanup limited to %s", owner_id, cleanup_max)

        if cleanup_max > time_min:
            stats.deleted = self._events.delete_orphans(integration.id, time_min, cleanup_max, fetched_ids)

        logger.info(
            "Calendar sync for owner %s: synced=%d created=%d updated=%d deleted=%d skipped=%d failed=%d",
            owner_id, stats.synced, stats.created, stats.updated, stats.deleted, stats.skipped, stats.failed,
        )
        return stats

    def _fetch(
        self,
        integration: Integration,
        time_min: datetime,
        time_max: datetime,
        deadline: Deadline,
        stats: SyncStats,
    ) -> List[dict]:
        owner_id = integration.owner_id
        access_token = self._tokens.get_valid_access_token(owner_id)

        try:
            return self._list(access_token, integration, time_min, time_max, deadline, stats)
        except AccessTokenRejectedError:
            logger.info("Google rejected the access token for owner %s; forcing a refresh", owner_id)

        access_token = self._tokens.get_valid_access_token(owner_id, force_refresh=True)
        try:
            return self._list(access_token, integration, time_min, time_max, deadline, stats)
        except AccessTokenRejectedError as e:
            self._tokens.deactivate(owner_id)
            raise ReauthorizationRequiredError(owner_id) from e

    def _list(
        self,
        access_token: str,
        integration: Integration,
        time_min: datetime,
        time_max: datetime,
        deadline: Deadline,
        stats: SyncStats,
    ) -> List[dict]:
        if deadline.expired():
            raise SyncDeadlineExceededError(stats, stage="fetch")
        try:
            return self._calendar.list_events(
                access_token,
                integration.remote_calendar_id,
                time_min,
                time_max,
                max_results=self._max_events,
                deadline=deadline,
            )
        except TransientProviderError as e:
            if deadline.expired():
                raise SyncDeadlineExceededError(stats, stage="fetch") from e
            raise

    @staticmethod
    def _normalize(
        items: List[dict], time_min: datetime, time_max: datetime, stats: SyncStats
    ) -> Tuple[List[RemoteEvent], Set[str]]:
        """Well-formed in-window events, plus the ids of events starting outside the window."""
        events: List[RemoteEvent] = []
        seen: Set[str] = set()
        outside: Set[str] = set()
        for item in items:
            event = normalize_remote_event(item)
            if event is None:
                stats.skipped += 1
                logger.debug("Skipping malformed calendar item %r", item.get("id"))
                continue
            if event.external_event_id in seen:
                stats.skipped += 1
                continue
            seen.add(event.external_event_id)
            if not (time_min <= event.start_time < time_max):
                # Ongoing events starting before the window belong to another run
                stats.skipped += 1
                outside.add(event.external_event_id)
                continue
            events.append(event)
        return events, outside

    def _upsert_all(
        self,
        integration: Integration,
        events: List[RemoteEvent],
        deadline: Deadline,
        stats: SyncStats,
    ) -> None:
        existing = self._events.get_by_external_ids(integration.id, (e.external_event_id for e in events))

        for event in events:
            if deadline.expired():
                raise SyncDeadlineExceededError(stats, stage="upsert")

            stored = existing.get(event.external_event_id)
            if stored is not None and not event.differs_from(stored):
                stats.synced += 1
                stats.unchanged += 1
                continue

            try:
                self._events.upsert(integration.id, event)
            except Exception as e:
                stats.failed += 1
                logger.error("Failed to sync event %s for integration %s: %s", event.external_event_id, integration.id, e)
                continue

            stats.synced += 1
            if stored is None:
                stats.created += 1
            else:
                stats.updated += 1


# --------------------------------------------------------------------------- #
# Shared Instance Helper
# --------------------------------------------------------------------------- #

@lru_cache
def get_sync_engine() -> CalendarSyncEngine:
    """Get the process-wide sync engine (shares the per-owner run guard)."""
    from ...config import settings

    return CalendarSyncEngine(
        get_token_manager(),
        get_calendar_client(),
        get_integration_store(),
        get_event_store(),
        max_events=settings.sync_max_events,
        deadline_seconds=settings.sync_deadline_seconds,
    )
