"""
Supabase client initialization for the calendar sync service.

Provides the service-role client used by the credential and event stores.
"""
from __future__ import annotations

from functools import lru_cache

from supabase import create_client, Client

from .config import settings


@lru_cache
def get_supabase_client() -> Client:
    """
    Get a Supabase client with service role key.

    This client bypasses Row Level Security and should only be used
    for backend operations where we've already verified the user.

    Returns:
        Supabase client instance
    """
    return create_client(
        settings.supabase_url,
        settings.supabase_service_role_key,
    )


# Convenience aliases
get_db = get_supabase_client
