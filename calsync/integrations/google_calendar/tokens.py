"""
Access token lifecycle for calendar integrations.

Hands out a currently valid access token per owner, refreshing it against
Google when it expired. Refreshes are single-flight per owner: callers racing
on the same expired token share one refresh call and one stored result.
"""
from __future__ import annotations

import logging
from datetime import datetime
from functools import lru_cache
from typing import Callable

from ...concurrency import SingleFlight
from ...models import Integration, utcnow
from ..errors import (
    InvalidGrantError,
    NotConnectedError,
    ReauthorizationRequiredError,
)
from ..google.oauth import GoogleOAuthClient, get_oauth_client
from ..token_storage import IntegrationStore, get_integration_store

logger = logging.getLogger(__name__)


class TokenManager:
    """
    Token Lifecycle Manager.

    Usage:
        tokens = TokenManager(oauth_client, integration_store)
        access_token = tokens.get_valid_access_token(owner_id)
    """

    def __init__(
        self,
        oauth: GoogleOAuthClient,
        integrations: IntegrationStore,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._oauth = oauth
        self._integrations = integrations
        self._clock = clock
        self._refreshes = SingleFlight()

    def get_valid_access_token(self, owner_id: str, force_refresh: bool = False) -> str:
        """
        Get an access token that is valid right now.

        Args:
            owner_id: The owner's ID
            force_refresh: Refresh even if the stored token has not expired
                (used after Google rejected it)

        Returns:
            The access token

        Raises:
            NotConnectedError: The owner has no integration
            ReauthorizationRequiredError: The grant is invalid or revoked
            TransientProviderError: The refresh failed for a retryable reason
        """
        integration = self._load(owner_id)

        if not force_refresh and not integration.token_expired(self._clock()):
            return integration.access_token

        stale_token = integration.access_token
        return self._refreshes.do(owner_id, lambda: self._refresh(owner_id, stale_token))

    def _load(self, owner_id: str) -> Integration:
        integration = self._integrations.get(owner_id)
        if integration is None:
            raise NotConnectedError(owner_id)
        if not integration.is_active:
            raise ReauthorizationRequiredError(owner_id, "Google Calendar connection is inactive. Please reconnect.")
        return integration

    def _refresh(self, owner_id: str, stale_token: str) -> str:
        # Another flight may have finished between our read and this one
        integration = self._load(owner_id)
        if integration.access_token != stale_token and not integration.token_expired(self._clock()):
            return integration.access_token

        logger.info("Refreshing Google access token for owner %s", owner_id)
        try:
            grant = self._oauth.refresh(integration.refresh_token)
        except InvalidGrantError as e:
            logger.warning("Refresh grant rejected for owner %s: %s", owner_id, e)
            self._integrations.deactivate(owner_id)
            raise ReauthorizationRequiredError(owner_id) from e

        updated = self._integrations.update_tokens(
            owner_id,
            access_token=grant.access_token,
            token_expiry=grant.expiry,
            refresh_token=grant.refresh_token,
        )
        if updated is None:
            # Disconnected while the refresh was in flight
            raise NotConnectedError(owner_id)
        return grant.access_token

    def deactivate(self, owner_id: str) -> None:
        """Mark the owner's grant unusable after Google rejected a fresh token."""
        self._integrations.deactivate(owner_id)


# --------------------------------------------------------------------------- #
# Shared Instance Helper
# --------------------------------------------------------------------------- #

@lru_cache
def get_token_manager() -> TokenManager:
    """
    Get the process-wide token manager.

    A single instance is shared so every request joins the same refresh flights.
    """
    return TokenManager(get_oauth_client(), get_integration_store())
