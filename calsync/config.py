"""
Configuration management for the calendar sync service.

Uses Pydantic Settings for type-safe configuration with .env file support.
"""
import json
from pathlib import Path
from functools import lru_cache
from typing import Any, Dict, List, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


_PACKAGE_DIR = Path(__file__).parent


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file."""

    model_config = SettingsConfigDict(
        env_file=_PACKAGE_DIR / ".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Supabase Settings
    supabase_url: str = Field(default="", description="Supabase project URL")
    supabase_service_role_key: str = Field(default="", description="Supabase service role key (for backend)")
    supabase_jwt_secret: str = Field(default="", description="Supabase JWT secret for token verification")

    # Google Credentials (required)
    google_credentials_json: str = Field(
        default="",
        description="Google OAuth client secret as JSON string"
    )

    # API Settings
    backend_url: str = Field(default="http://localhost:8000", description="Public backend URL for OAuth callbacks")
    frontend_url: str = Field(default="http://localhost:3000")
    frontend_account_path: str = Field(default="/home/account")
    cors_origins: List[str] = Field(default_factory=lambda: ["http://localhost:3000", "http://localhost:5173"])
    log_level: str = Field(default="INFO")

    # Provider Settings
    provider_timeout_seconds: float = Field(default=30.0, gt=0)
    default_token_lifetime_seconds: int = Field(default=3600, gt=0)

    # Sync Settings
    sync_deadline_seconds: float = Field(default=120.0, gt=0)
    sync_window_days: int = Field(default=30, gt=0)
    sync_max_events: int = Field(default=250, gt=0)
    preview_window_days: int = Field(default=7, gt=0)
    preview_max_results: int = Field(default=50, gt=0)

    @property
    def google_credentials_dict(self) -> Optional[Dict[str, Any]]:
        """
        Get Google credentials as a dictionary.

        Parses the GOOGLE_CREDENTIALS_JSON environment variable.

        Returns:
            Parsed credentials dictionary or None if not set

        Raises:
            ValueError: If credentials are set but cannot be parsed
        """
        if not self.google_credentials_json:
            return None
        try:
            return json.loads(self.google_credentials_json)
        except json.JSONDecodeError as e:
            raise ValueError(f"Failed to parse GOOGLE_CREDENTIALS_JSON: {e}")

    @property
    def google_redirect_uri(self) -> str:
        """OAuth callback URL registered with Google."""
        return f"{self.backend_url.rstrip('/')}/integrations/calendar/authorization-callback"

    def frontend_redirect(self, **params: str) -> str:
        """Build a redirect URL into the frontend account page."""
        from urllib.parse import urlencode

        url = f"{self.frontend_url.rstrip('/')}{self.frontend_account_path}"
        if params:
            url = f"{url}?{urlencode(params)}"
        return url

    def validate_config(self) -> list[str]:
        """Validate configuration and return list of warnings/errors."""
        issues = []

        if not self.supabase_url:
            issues.append("SUPABASE_URL is not set")

        if not self.supabase_service_role_key:
            issues.append("SUPABASE_SERVICE_ROLE_KEY is not set")

        if not self.supabase_jwt_secret:
            issues.append("SUPABASE_JWT_SECRET is not set")

        try:
            creds = self.google_credentials_dict
            if not creds:
                issues.append(
                    "GOOGLE_CREDENTIALS_JSON is not set. "
                    "Please set the GOOGLE_CREDENTIALS_JSON environment variable."
                )
            elif not ({"web", "installed"} & set(creds)):
                issues.append("GOOGLE_CREDENTIALS_JSON must contain a 'web' or 'installed' client")
        except ValueError as e:
            issues.append(str(e))

        return issues


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    settings = Settings()
    issues = settings.validate_config()

    if issues:
        raise ValueError(f"Invalid configuration: {issues}")

    return settings


settings = get_settings()
