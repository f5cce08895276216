"""
Integrations package for calsync.

Storage for integrations and mirrored events lives at this level; each
provider has its own subfolder.
"""
from .errors import (
    CalendarSyncError,
    NotConnectedError,
    ReauthorizationRequiredError,
    SyncInProgressError,
    TransientProviderError,
)
from .event_storage import MirroredEventStore, get_event_store
from .token_storage import IntegrationStore, get_integration_store

__all__ = [
    # Errors
    "CalendarSyncError",
    "NotConnectedError",
    "ReauthorizationRequiredError",
    "SyncInProgressError",
    "TransientProviderError",
    # Storage
    "IntegrationStore",
    "MirroredEventStore",
    "get_integration_store",
    "get_event_store",
]
