"""
Credential storage for calendar integrations using Supabase.

Stores one OAuth credential pair and calendar selection per owner in the
``calendar_integrations`` table.
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from supabase import Client

from ..models import Integration, ensure_utc, utcnow
from ..supabase_client import get_db

logger = logging.getLogger(__name__)

INTEGRATIONS_TABLE = "calendar_integrations"


class IntegrationStore:
    """
    Credential Store: read and write ``Integration`` rows, always by owner.

    Usage:
        store = IntegrationStore()
        integration = store.get("owner-uuid")
    """

    def __init__(self, db: Optional[Client] = None):
        self._db = db

    @property
    def db(self) -> Client:
        if self._db is None:
            self._db = get_db()
        return self._db

    def _table(self):
        return self.db.table(INTEGRATIONS_TABLE)

    # ----------------------------------------------------------------------- #
    # Reads
    # ----------------------------------------------------------------------- #

    def get(self, owner_id: str) -> Optional[Integration]:
        """
        Get the integration for an owner.

        Args:
            owner_id: The owner's ID

        Returns:
            The Integration or None if the owner never connected
        """
        result = self._table().select("*").eq("owner_id", owner_id).limit(1).execute()

        if result.data:
            return Integration(**result.data[0])
        return None

    def list_active(self) -> List[Integration]:
        """List every integration that can still be synced."""
        result = self._table().select("*").eq("is_active", True).execute()
        return [Integration(**row) for row in result.data]

    # ----------------------------------------------------------------------- #
    # Writes
    # ----------------------------------------------------------------------- #

    def upsert(
        self,
        owner_id: str,
        access_token: str,
        refresh_token: str,
        token_expiry: datetime,
        remote_calendar_id: str,
    ) -> Integration:
        """
        Create or replace the owner's integration and mark it active.

        Upsert - insert or update on conflict with the owner_id unique key.
        """
        now = utcnow().isoformat()
        result = self._table().upsert({
            "owner_id": owner_id,
            "access_token": access_token,
            "refresh_token": refresh_token,
            "token_expiry": ensure_utc(token_expiry).isoformat(),
            "remote_calendar_id": remote_calendar_id,
            "is_active": True,
            "updated_at": now,
        }, on_conflict="owner_id").execute()

        logger.info("Stored calendar integration for owner %s (calendar %s)", owner_id, remote_calendar_id)
        return Integration(**result.data[0])

    def update_tokens(
        self,
        owner_id: str,
        access_token: str,
        token_expiry: datetime,
        refresh_token: Optional[str] = None,
    ) -> Optional[Integration]:
        """
        Persist a refreshed access token.

        The refresh token is only overwritten when the provider rotated it.

        Returns:
            The updated Integration or None if it was deleted meanwhile
        """
        values: Dict[str, Any] = {
            "access_token": access_token,
            "token_expiry": ensure_utc(token_expiry).isoformat(),
            "updated_at": utcnow().isoformat(),
        }
        if refresh_token:
            values["refresh_token"] = refresh_token

        result = self._table().update(values).eq("owner_id", owner_id).execute()

        if result.data:
            return Integration(**result.data[0])
        return None

    def deactivate(self, owner_id: str) -> None:
        """Mark the integration inactive so the owner is asked to reconnect."""
        self._table().update({
            "is_active": False,
            "updated_at": utcnow().isoformat(),
        }).eq("owner_id", owner_id).execute()
        logger.warning("Deactivated calendar integration for owner %s", owner_id)

    def delete(self, owner_id: str) -> bool:
        """
        Delete the owner's integration. Mirrored events cascade with it.

        Returns:
            True if an integration was deleted, False if it didn't exist
        """
        result = self._table().delete().eq("owner_id", owner_id).execute()

        return len(result.data) > 0


# --------------------------------------------------------------------------- #
# Shared Instance Helper
# --------------------------------------------------------------------------- #

def get_integration_store() -> IntegrationStore:
    """Get an integration store bound to the shared Supabase client."""
    return IntegrationStore()
