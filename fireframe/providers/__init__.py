from fireframe.config import Settings
from fireframe.database.supabase_client import SupabaseClient
from fireframe.providers.base import (
    AuthSession,
    AuthUser,
    ChangeEvent,
    ChangeSubscription,
    ChangeType,
    StorageProvider,
)
from fireframe.providers.supabase_provider import SupabaseProvider


async def create_provider(settings: Settings) -> StorageProvider:
    """Build the backend adapter used for the lifetime of the app."""
    client = await SupabaseClient.get_client()
    return SupabaseProvider(
        client,
        subscribe_timeout=settings.realtime_subscribe_timeout,
        health_table=settings.posts_table,
    )


__all__ = [
    "AuthSession",
    "AuthUser",
    "ChangeEvent",
    "ChangeSubscription",
    "ChangeType",
    "StorageProvider",
    "SupabaseProvider",
    "create_provider",
]
