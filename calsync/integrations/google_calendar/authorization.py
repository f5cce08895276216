"""
Authorization flow for connecting a Google Calendar.

``begin_authorization`` sends the owner to Google's consent screen;
``complete_authorization`` handles the callback, stores the tokens and picks
the owner's primary calendar. The OAuth ``state`` carries the owner id.
"""
from __future__ import annotations

import logging
from typing import Optional

from ...models import Integration
from ..errors import NoPrimaryCalendarError, TokenExchangeError
from ..google.oauth import GoogleOAuthClient, get_oauth_client
from ..token_storage import IntegrationStore, get_integration_store
from .client import GoogleCalendarClient, get_calendar_client

logger = logging.getLogger(__name__)


class AuthorizationFlow:
    """Authorization Flow Handler."""

    def __init__(
        self,
        oauth: GoogleOAuthClient,
        calendar: GoogleCalendarClient,
        integrations: IntegrationStore,
    ):
        self._oauth = oauth
        self._calendar = calendar
        self._integrations = integrations

    def begin_authorization(self, owner_id: str) -> str:
        """
        Get the consent URL for an owner.

        Args:
            owner_id: The authenticated owner's ID, echoed back as ``state``

        Returns:
            The authorization URL
        """
        if not owner_id:
            raise ValueError("owner_id is required")
        return self._oauth.authorization_url(state=owner_id)

    def complete_authorization(self, code: Optional[str], state: Optional[str]) -> Integration:
        """
        Finish the OAuth flow for the owner named by ``state``.

        Raises:
            TokenExchangeError: Missing code/state, rejected code, or no refresh token
            NoPrimaryCalendarError: The account has no primary calendar
            TransientProviderError: Google could not be reached

        Returns:
            The stored, active Integration
        """
        if not code or not state:
            raise TokenExchangeError("Authorization callback is missing code or state")

        owner_id = state
        grant = self._oauth.exchange_code(code)
        if not grant.refresh_token:
            raise TokenExchangeError("Failed to get tokens from Google")

        calendar_id = self._calendar.get_primary_calendar_id(grant.access_token)
        if not calendar_id:
            raise NoPrimaryCalendarError("Could not find primary calendar")

        integration = self._integrations.upsert(
            owner_id,
            access_token=grant.access_token,
            refresh_token=grant.refresh_token,
            token_expiry=grant.expiry,
            remote_calendar_id=calendar_id,
        )
        logger.info("Google Calendar connected for owner %s", owner_id)
        return integration


def get_authorization_flow() -> AuthorizationFlow:
    return AuthorizationFlow(get_oauth_client(), get_calendar_client(), get_integration_store())
