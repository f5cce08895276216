"""Connection status and disconnection for calendar integrations."""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable

from ...models import DisconnectResult, IntegrationStatus, utcnow
from ..google.oauth import GoogleOAuthClient, get_oauth_client
from ..token_storage import IntegrationStore, get_integration_store

logger = logging.getLogger(__name__)


class IntegrationStatusService:
    """Status & Disconnection API."""

    def __init__(
        self,
        oauth: GoogleOAuthClient,
        integrations: IntegrationStore,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._oauth = oauth
        self._integrations = integrations
        self._clock = clock

    def get_status(self, owner_id: str) -> IntegrationStatus:
        """
        Report connection state without touching the provider.

        ``token_expired`` compares the stored expiry with the current time;
        no refresh is attempted.
        """
        integration = self._integrations.get(owner_id)
        if integration is None:
            return IntegrationStatus(connected=False, token_expired=False)

        return IntegrationStatus(
            connected=integration.is_active,
            token_expired=integration.token_expired(self._clock()),
            integration_id=integration.id,
            calendar_id=integration.remote_calendar_id,
            connected_at=integration.created_at,
            token_expiry=integration.token_expiry,
        )

    def disconnect(self, owner_id: str) -> DisconnectResult:
        """
        Remove the owner's integration and every mirrored event.

        The refresh token is revoked at Google first, best effort. Calling
        this for an owner without an integration succeeds.
        """
        integration = self._integrations.get(owner_id)
        if integration is not None and integration.is_active:
            if not self._oauth.revoke(integration.refresh_token):
                logger.info("Continuing disconnect for owner %s without Google revocation", owner_id)

        deleted = self._integrations.delete(owner_id)
        if not deleted:
            return DisconnectResult(
                already_disconnected=True,
                message="Google Calendar was already disconnected",
            )

        logger.info("Google Calendar disconnected for owner %s", owner_id)
        return DisconnectResult(
            already_disconnected=False,
            message="Google Calendar disconnected successfully",
        )


def get_status_service() -> IntegrationStatusService:
    return IntegrationStatusService(get_oauth_client(), get_integration_store())
