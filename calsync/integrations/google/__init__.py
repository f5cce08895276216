"""
Google OAuth utilities.

Builds consent URLs, exchanges authorization codes, refreshes and revokes
tokens against Google's OAuth endpoints.
"""
from .oauth import GoogleOAuthClient, OAuthClientCredentials, TokenGrant, get_oauth_client

__all__ = ["GoogleOAuthClient", "OAuthClientCredentials", "TokenGrant", "get_oauth_client"]
