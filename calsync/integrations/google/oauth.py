"""
Google OAuth client for calendar integrations.

Provides the authorization-code flow, refresh-token exchange and token
revocation against Google's OAuth endpoints. The client only holds the
process-wide client id/secret; owner tokens are passed in and returned on
every call and never cached here.
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from functools import lru_cache
from typing import Any, Dict, List, Optional

import httpx
import requests
from google.auth.exceptions import RefreshError, TransportError
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import Flow
from oauthlib.oauth2.rfc6749.errors import OAuth2Error

from ...config import settings
from ..errors import (
    InvalidGrantError,
    TokenExchangeError,
    TransientProviderError,
)

logger = logging.getLogger(__name__)

GOOGLE_AUTH_URI = "https://accounts.google.com/o/oauth2/auth"
GOOGLE_TOKEN_URI = "https://oauth2.googleapis.com/token"
GOOGLE_REVOKE_URI = "https://oauth2.googleapis.com/revoke"

# Token endpoint error codes that require the owner to reconnect
GRANT_REJECTIONS = frozenset({"invalid_grant", "unauthorized_client", "invalid_client"})

# Google may answer with a superset of the requested scopes (e.g. "openid")
os.environ.setdefault("OAUTHLIB_RELAX_TOKEN_SCOPE", "1")


# --------------------------------------------------------------------------- #
# Value Types
# --------------------------------------------------------------------------- #

@dataclass(frozen=True)
class OAuthClientCredentials:
    """Process-wide OAuth client registration."""

    client_id: str
    client_secret: str
    redirect_uri: str
    auth_uri: str = GOOGLE_AUTH_URI
    token_uri: str = GOOGLE_TOKEN_URI

    @classmethod
    def from_client_config(cls, config: Dict[str, Any], redirect_uri: str) -> OAuthClientCredentials:
        """
        Build credentials from a downloaded Google client secret document.

        Accepts both ``{"web": {...}}`` and ``{"installed": {...}}`` shapes.
        """
        section = config.get("web") or config.get("installed")
        if not section:
            raise ValueError("Google client config must contain a 'web' or 'installed' section")
        return cls(
            client_id=section["client_id"],
            client_secret=section["client_secret"],
            redirect_uri=redirect_uri,
            auth_uri=section.get("auth_uri", GOOGLE_AUTH_URI),
            token_uri=section.get("token_uri", GOOGLE_TOKEN_URI),
        )

    def to_client_config(self) -> Dict[str, Any]:
        return {
            "web": {
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "auth_uri": self.auth_uri,
                "token_uri": self.token_uri,
                "redirect_uris": [self.redirect_uri],
            }
        }

    def __repr__(self) -> str:
        return f"OAuthClientCredentials(client_id={self.client_id!r}, redirect_uri={self.redirect_uri!r})"


@dataclass(frozen=True)
class TokenGrant:
    """Tokens issued by the token endpoint."""

    access_token: str
    refresh_token: Optional[str]
    expiry: datetime

    def __repr__(self) -> str:
        return f"TokenGrant(expiry={self.expiry.isoformat()}, has_refresh_token={self.refresh_token is not None})"


class _BoundedRequest(Request):
    """google-auth transport that caps every call at a fixed timeout."""

    def __init__(self, timeout: float, session: Optional[requests.Session] = None):
        super().__init__(session=session)
        self._timeout = timeout

    def __call__(self, url, method="GET", body=None, headers=None, timeout=None, **kwargs):
        effective = self._timeout if timeout is None else min(timeout, self._timeout)
        return super().__call__(url, method=method, body=body, headers=headers, timeout=effective, **kwargs)


def _expiry_from(expiry: Optional[datetime], default_lifetime: int) -> datetime:
    # google-auth reports expiry as naive UTC
    if expiry is None:
        return datetime.now(timezone.utc) + timedelta(seconds=default_lifetime)
    if expiry.tzinfo is None:
        return expiry.replace(tzinfo=timezone.utc)
    return expiry.astimezone(timezone.utc)


def _is_invalid_grant(exc: RefreshError) -> bool:
    """Only a structured OAuth error body means the grant itself is dead."""
    if getattr(exc, "retryable", False):
        return False
    response = exc.args[1] if len(exc.args) > 1 else None
    return isinstance(response, dict) and response.get("error") in GRANT_REJECTIONS


# --------------------------------------------------------------------------- #
# OAuth Client
# --------------------------------------------------------------------------- #

class GoogleOAuthClient:
    """
    Stateless Google OAuth client.

    Usage:
        oauth = GoogleOAuthClient(credentials)
        url = oauth.authorization_url(state=owner_id)
        grant = oauth.exchange_code(code)
        refreshed = oauth.refresh(grant.refresh_token)
    """

    SCOPES: List[str] = [
        "https://www.googleapis.com/auth/calendar",
        "https://www.googleapis.com/auth/userinfo.email",
    ]

    def __init__(
        self,
        credentials: OAuthClientCredentials,
        timeout: float = 30.0,
        default_token_lifetime: int = 3600,
    ):
        self._credentials = credentials
        self._timeout = timeout
        self._default_token_lifetime = default_token_lifetime

    @property
    def credentials(self) -> OAuthClientCredentials:
        return self._credentials

    def _flow(self, state: Optional[str] = None) -> Flow:
        return Flow.from_client_config(
            self._credentials.to_client_config(),
            scopes=self.SCOPES,
            redirect_uri=self._credentials.redirect_uri,
            state=state,
            autogenerate_code_verifier=False,
        )

    # ----------------------------------------------------------------------- #
    # Authorization Code Flow
    # ----------------------------------------------------------------------- #

    def authorization_url(self, state: str) -> str:
        """
        Get the consent URL for the owner to visit.

        ``prompt=consent`` makes Google issue a refresh token even when the
        owner authorized this client before.

        Args:
            state: Value echoed back on the callback

        Returns:
            The authorization URL
        """
        auth_url, _ = self._flow(state=state).authorization_url(
            access_type="offline",
            prompt="consent",
        )
        return auth_url

    def exchange_code(self, code: str, timeout: Optional[float] = None) -> TokenGrant:
        """
        Exchange an authorization code for an access/refresh token pair.

        Raises:
            TokenExchangeError: The code was rejected or a token is missing
            TransientProviderError: Network failure or timeout
        """
        flow = self._flow()
        try:
            flow.fetch_token(code=code, timeout=timeout or self._timeout)
        except OAuth2Error as e:
            raise TokenExchangeError(f"Google rejected the authorization code: {e.error}") from e
        except requests.RequestException as e:
            raise TransientProviderError(f"Token exchange request failed: {e}") from e

        creds = flow.credentials
        if not creds.token or not creds.refresh_token:
            raise TokenExchangeError("Failed to get tokens from Google")

        return TokenGrant(
            access_token=creds.token,
            refresh_token=creds.refresh_token,
            expiry=_expiry_from(creds.expiry, self._default_token_lifetime),
        )

    # ----------------------------------------------------------------------- #
    # Refresh & Revoke
    # ----------------------------------------------------------------------- #

    def refresh(self, refresh_token: str, timeout: Optional[float] = None) -> TokenGrant:
        """
        Exchange a refresh token for a new access token.

        Raises:
            InvalidGrantError: The refresh token is invalid or revoked
            TransientProviderError: Network failure, timeout or 5xx
        """
        creds = Credentials(
            token=None,
            refresh_token=refresh_token,
            token_uri=self._credentials.token_uri,
            client_id=self._credentials.client_id,
            client_secret=self._credentials.client_secret,
            scopes=self.SCOPES,
        )
        try:
            creds.refresh(_BoundedRequest(timeout or self._timeout))
        except RefreshError as e:
            if _is_invalid_grant(e):
                raise InvalidGrantError(str(e.args[0]) if e.args else "invalid_grant") from e
            raise TransientProviderError(f"Token refresh failed: {e}") from e
        except TransportError as e:
            raise TransientProviderError(f"Token refresh request failed: {e}") from e

        # Google keeps the refresh token stable unless it rotates it
        rotated = creds.refresh_token if creds.refresh_token and creds.refresh_token != refresh_token else None
        return TokenGrant(
            access_token=creds.token,
            refresh_token=rotated,
            expiry=_expiry_from(creds.expiry, self._default_token_lifetime),
        )

    def revoke(self, token: str, timeout: Optional[float] = None) -> bool:
        """
        Revoke a token at Google. Best effort: failures are logged, not raised.

        Returns:
            True if Google confirmed the revocation
        """
        try:
            response = httpx.post(
                GOOGLE_REVOKE_URI,
                data={"token": token},
                headers={"Content-Type": "application/x-www-form-urlencoded"},
                timeout=timeout or self._timeout,
            )
        except httpx.HTTPError as e:
            logger.warning("Google token revocation request failed: %s", e)
            return False

        if response.status_code != 200:
            logger.warning("Google token revocation returned %s", response.status_code)
            return False
        return True


# --------------------------------------------------------------------------- #
# Shared Instance Helper
# --------------------------------------------------------------------------- #

@lru_cache
def get_oauth_client() -> GoogleOAuthClient:
    """Get the OAuth client configured from settings."""
    return GoogleOAuthClient(
        OAuthClientCredentials.from_client_config(
            settings.google_credentials_dict,
            redirect_uri=settings.google_redirect_uri,
        ),
        timeout=settings.provider_timeout_seconds,
        default_token_lifetime=settings.default_token_lifetime_seconds,
    )
