import asyncio
import logging
from typing import Any, Callable, Dict, List, Optional, Set

from realtime import RealtimeSubscribeStates
from supabase import AsyncClient

from fireframe.core.exceptions import ProviderError
from fireframe.providers.base import (
    AuthSession,
    AuthStateCallback,
    AuthUser,
    ChangeCallback,
    ChangeEvent,
    ChangeSubscription,
    ChangeType,
    StorageProvider,
)

logger = logging.getLogger(__name__)

_FAILED_JOIN_STATES = (
    RealtimeSubscribeStates.CHANNEL_ERROR,
    RealtimeSubscribeStates.TIMED_OUT,
    RealtimeSubscribeStates.CLOSED,
)


def _provider_error(action: str, exc: Exception) -> ProviderError:
    """Wrap an SDK exception, keeping the provider's message and code."""
    message = getattr(exc, "message", None) or str(exc)
    code = getattr(exc, "code", None)
    logger.error(f"Supabase {action} failed: {message}")
    return ProviderError(message, code=str(code) if code else None)


def parse_change_payload(payload: Dict[str, Any]) -> ChangeEvent:
    """Translate a realtime postgres_changes payload into a ChangeEvent.

    Accepts both the Python SDK shape (``{"data": {"type", "record",
    "old_record", ...}}``) and the flat JS shape (``eventType``/``new``/``old``).
    """
    data = payload.get("data", payload)
    event_type = data.get("type") or data.get("eventType")
    return ChangeEvent(
        type=ChangeType(event_type),
        table=data.get("table") or "",
        record=data.get("record") or data.get("new") or {},
        old_record=data.get("old_record") or data.get("old") or {},
        commit_timestamp=data.get("commit_timestamp"),
    )


def _to_auth_user(user) -> AuthUser:
    return AuthUser(
        id=str(user.id),
        email=user.email,
        user_metadata=user.user_metadata or {},
    )


def _to_auth_session(session) -> AuthSession:
    return AuthSession(
        access_token=session.access_token,
        refresh_token=session.refresh_token,
        expires_at=session.expires_at,
        user=_to_auth_user(session.user),
    )


class SupabaseChangeSubscription(ChangeSubscription):
    def __init__(self, client: AsyncClient, channel, table: str):
        self._client = client
        self._channel = channel
        self._table = table
        self._closed = False

    async def unsubscribe(self) -> None:
        if self._closed:
            return
        self._closed = True
        logger.info(f"Unsubscribing from {self._table} real-time updates")
        try:
            await self._client.remove_channel(self._channel)
        except Exception as e:
            raise _provider_error("channel removal", e) from e


class SupabaseProvider(StorageProvider):
    """StorageProvider backed by the supabase AsyncClient."""

    def __init__(
        self,
        client: AsyncClient,
        subscribe_timeout: float = 10.0,
        health_table: str = "posts",
    ):
        self.client = client
        self.subscribe_timeout = subscribe_timeout
        self.health_table = health_table
        self._pending: Set[asyncio.Task] = set()

    # Auth

    async def sign_up(
        self, email: str, password: str, metadata: Optional[Dict[str, Any]] = None
    ) -> Optional[AuthUser]:
        try:
            response = await self.client.auth.sign_up({
                "email": email,
                "password": password,
                "options": {"data": metadata or {}},
            })
        except Exception as e:
            raise _provider_error("sign up", e) from e
        return _to_auth_user(response.user) if response.user else None

    async def sign_in_with_password(self, email: str, password: str) -> AuthSession:
        try:
            response = await self.client.auth.sign_in_with_password({
                "email": email,
                "password": password,
            })
        except Exception as e:
            raise _provider_error("sign in", e) from e
        if not response.session:
            raise ProviderError("Invalid login credentials", code="invalid_credentials")
        return _to_auth_session(response.session)

    async def sign_in_with_oauth(self, provider: str, redirect_to: str) -> str:
        try:
            response = await self.client.auth.sign_in_with_oauth({
                "provider": provider,
                "options": {"redirect_to": redirect_to},
            })
        except Exception as e:
            raise _provider_error("OAuth sign in", e) from e
        return response.url

    async def exchange_code_for_session(self, code: str) -> AuthSession:
        try:
            response = await self.client.auth.exchange_code_for_session({"auth_code": code})
        except Exception as e:
            raise _provider_error("OAuth code exchange", e) from e
        if not response.session:
            raise ProviderError("OAuth code exchange returned no session")
        return _to_auth_session(response.session)

    async def sign_out(self) -> None:
        try:
            await self.client.auth.sign_out()
        except Exception as e:
            raise _provider_error("sign out", e) from e

    async def reset_password_for_email(self, email: str, redirect_to: str) -> None:
        try:
            await self.client.auth.reset_password_for_email(email, {"redirect_to": redirect_to})
        except Exception as e:
            raise _provider_error("password reset", e) from e

    async def get_session(self) -> Optional[AuthSession]:
        try:
            session = await self.client.auth.get_session()
        except Exception as e:
            raise _provider_error("session retrieval", e) from e
        return _to_auth_session(session) if session else None

    def on_auth_state_change(self, callback: AuthStateCallback) -> Callable[[], None]:
        # The SDK notifies synchronously; handlers are async, so each
        # notification becomes a task on the running loop.
        def listener(event, session):
            converted = _to_auth_session(session) if session else None
            task = asyncio.get_running_loop().create_task(callback(str(event), converted))
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)

        subscription = self.client.auth.on_auth_state_change(listener)
        return subscription.unsubscribe

    async def wait_for_auth_events(self) -> None:
        tasks = list(self._pending)
        if not tasks:
            return
        results = await asyncio.gather(*tasks, return_exceptions=True)
        for result in results:
            if isinstance(result, Exception):
                logger.error(f"Auth state handler failed: {result}")

    # Rows

    async def fetch_rows(
        self,
        table: str,
        filters: Optional[Dict[str, Any]] = None,
        order_by: Optional[str] = None,
        descending: bool = True,
    ) -> List[Dict[str, Any]]:
        try:
            query = self.client.table(table).select("*")
            for column, value in (filters or {}).items():
                query = query.eq(column, value)
            if order_by:
                query = query.order(order_by, desc=descending)
            result = await query.execute()
        except Exception as e:
            raise _provider_error(f"select from {table}", e) from e
        return result.data or []

    async def fetch_row(self, table: str, column: str, value: Any) -> Optional[Dict[str, Any]]:
        try:
            result = await self.client.table(table)\
                .select("*")\
                .eq(column, value)\
                .limit(1)\
                .execute()
        except Exception as e:
            raise _provider_error(f"select from {table}", e) from e
        return result.data[0] if result.data else None

    async def insert_row(self, table: str, values: Dict[str, Any]) -> Dict[str, Any]:
        try:
            result = await self.client.table(table).insert(values).execute()
        except Exception as e:
            raise _provider_error(f"insert into {table}", e) from e
        if not result.data:
            raise ProviderError(f"Insert into {table} returned no row")
        return result.data[0]

    async def update_rows(
        self, table: str, values: Dict[str, Any], column: str, value: Any
    ) -> List[Dict[str, Any]]:
        try:
            result = await self.client.table(table)\
                .update(values)\
                .eq(column, value)\
                .execute()
        except Exception as e:
            raise _provider_error(f"update of {table}", e) from e
        return result.data or []

    async def delete_rows(self, table: str, column: str, value: Any) -> List[Dict[str, Any]]:
        try:
            result = await self.client.table(table)\
                .delete()\
                .eq(column, value)\
                .execute()
        except Exception as e:
            raise _provider_error(f"delete from {table}", e) from e
        return result.data or []

    # Objects

    async def upload_object(
        self,
        bucket: str,
        path: str,
        data: bytes,
        content_type: str,
        upsert: bool = False,
    ) -> str:
        try:
            await self.client.storage.from_(bucket).upload(
                path=path,
                file=data,
                file_options={
                    "content-type": content_type,
                    "cache-control": "3600",
                    "upsert": "true" if upsert else "false",
                },
            )
        except Exception as e:
            raise _provider_error(f"upload to {bucket}", e) from e
        return path

    async def get_public_url(self, bucket: str, path: str) -> str:
        try:
            return await self.client.storage.from_(bucket).get_public_url(path)
        except Exception as e:
            raise _provider_error(f"public URL lookup in {bucket}", e) from e

    # Change feed

    async def subscribe_to_changes(
        self,
        table: str,
        callback: ChangeCallback,
        row_filter: Optional[str] = None,
    ) -> ChangeSubscription:
        loop = asyncio.get_running_loop()
        joined: asyncio.Future = loop.create_future()
        channel_name = f"{table}-{row_filter}" if row_filter else table

        def on_status(status, err=None):
            if joined.done():
                if status in _FAILED_JOIN_STATES:
                    # No reconnect: the feed stays down until re-initialised.
                    logger.warning(f"Change feed for {channel_name} dropped: {status} {err or ''}")
                return
            if status == RealtimeSubscribeStates.SUBSCRIBED:
                joined.set_result(True)
            elif status in _FAILED_JOIN_STATES:
                joined.set_exception(
                    ProviderError(f"Could not join change feed for {channel_name}: {err or status}")
                )

        def on_change(payload):
            try:
                event = parse_change_payload(payload)
            except (KeyError, ValueError) as e:
                logger.warning(f"Ignoring unrecognised change payload on {channel_name}: {e}")
                return
            callback(event)

        logger.info(f"Setting up real-time subscription for {channel_name}...")
        channel = self.client.channel(channel_name)
        channel.on_postgres_changes(
            event="*",
            schema="public",
            table=table,
            filter=row_filter,
            callback=on_change,
        )
        try:
            await channel.subscribe(on_status)
            await asyncio.wait_for(joined, timeout=self.subscribe_timeout)
        except ProviderError:
            await self.client.remove_channel(channel)
            raise
        except asyncio.TimeoutError as e:
            await self.client.remove_channel(channel)
            raise ProviderError(f"Timed out joining change feed for {channel_name}") from e
        except Exception as e:
            raise _provider_error(f"subscription to {channel_name}", e) from e
        return SupabaseChangeSubscription(self.client, channel, channel_name)

    # Health

    async def check_connection(self) -> Dict[str, bool]:
        results = {"database": True, "storage": True, "auth": True}
        try:
            await self.client.table(self.health_table).select("id").limit(1).execute()
        except Exception as e:
            logger.error(f"Supabase database check failed: {e}")
            results["database"] = False
        try:
            await self.client.storage.list_buckets()
        except Exception as e:
            logger.error(f"Supabase storage check failed: {e}")
            results["storage"] = False
        try:
            await self.client.auth.get_session()
        except Exception as e:
            logger.error(f"Supabase auth check failed: {e}")
            results["auth"] = False
        return results
