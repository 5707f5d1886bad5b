"""Unit tests for the Supabase adapter against a mocked AsyncClient."""

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest
from realtime import RealtimeSubscribeStates

from fireframe.core.exceptions import ProviderError
from fireframe.providers.base import ChangeType
from fireframe.providers.supabase_provider import SupabaseProvider, parse_change_payload


class APIError(Exception):
    def __init__(self, message, code=None):
        super().__init__(message)
        self.message = message
        self.code = code


def query_returning(data=None, error=None):
    """PostgREST-style builder whose chain ends in an awaitable execute()."""
    builder = MagicMock()
    for method in ("select", "eq", "order", "limit", "insert", "update", "delete"):
        getattr(builder, method).return_value = builder
    if error is not None:
        builder.execute = AsyncMock(side_effect=error)
    else:
        builder.execute = AsyncMock(return_value=SimpleNamespace(data=data))
    return builder


def supabase_user(user_id="u1", email="alice@example.com", metadata=None):
    return SimpleNamespace(id=user_id, email=email, user_metadata=metadata or {})


def supabase_session(user=None):
    return SimpleNamespace(
        access_token="access",
        refresh_token="refresh",
        expires_at=1700000000,
        user=user or supabase_user(),
    )


@pytest.fixture
def client():
    return MagicMock()


@pytest.fixture
def provider(client) -> SupabaseProvider:
    return SupabaseProvider(client, subscribe_timeout=0.05)


class TestParseChangePayload:
    def test_python_sdk_shape(self):
        event = parse_change_payload({"data": {
            "type": "INSERT",
            "table": "posts",
            "record": {"id": "p1"},
            "old_record": None,
            "commit_timestamp": "2024-05-01T12:00:00Z",
        }})

        assert event.type == ChangeType.INSERT
        assert event.table == "posts"
        assert event.record == {"id": "p1"}
        assert event.old_record == {}
        assert event.commit_timestamp.year == 2024

    def test_flat_shape(self):
        event = parse_change_payload({
            "eventType": "DELETE",
            "table": "posts",
            "new": {},
            "old": {"id": "p9"},
        })

        assert event.type == ChangeType.DELETE
        assert event.old_record == {"id": "p9"}

    def test_unknown_type_is_rejected(self):
        with pytest.raises(ValueError):
            parse_change_payload({"data": {"type": "TRUNCATE", "table": "posts"}})


class TestRows:
    @pytest.mark.asyncio
    async def test_fetch_rows_applies_filters_and_order(self, provider, client):
        builder = query_returning([{"id": "p1"}])
        client.table.return_value = builder

        rows = await provider.fetch_rows("posts", {"author_username": "alice"}, order_by="created_at")

        assert rows == [{"id": "p1"}]
        client.table.assert_called_once_with("posts")
        builder.eq.assert_called_once_with("author_username", "alice")
        builder.order.assert_called_once_with("created_at", desc=True)

    @pytest.mark.asyncio
    async def test_fetch_row_missing_returns_none(self, provider, client):
        client.table.return_value = query_returning([])

        assert await provider.fetch_row("users", "id", "ghost") is None

    @pytest.mark.asyncio
    async def test_errors_keep_message_and_code(self, provider, client):
        client.table.return_value = query_returning(
            error=APIError("permission denied for table posts", code="42501")
        )

        with pytest.raises(ProviderError) as exc_info:
            await provider.insert_row("posts", {"caption": "x"})

        assert exc_info.value.message == "permission denied for table posts"
        assert exc_info.value.code == "42501"

    @pytest.mark.asyncio
    async def test_insert_without_returned_row(self, provider, client):
        client.table.return_value = query_returning([])

        with pytest.raises(ProviderError):
            await provider.insert_row("posts", {"caption": "x"})

    @pytest.mark.asyncio
    async def test_update_filters_on_column(self, provider, client):
        builder = query_returning([{"id": "p1", "caption": "new"}])
        client.table.return_value = builder

        rows = await provider.update_rows("posts", {"caption": "new"}, "id", "p1")

        builder.update.assert_called_once_with({"caption": "new"})
        builder.eq.assert_called_once_with("id", "p1")
        assert rows[0]["caption"] == "new"


class TestObjects:
    @pytest.mark.asyncio
    async def test_upload_passes_file_options(self, provider, client):
        bucket = MagicMock()
        bucket.upload = AsyncMock()
        client.storage.from_.return_value = bucket

        path = await provider.upload_object("avatars", "u1/avatar.png", b"img", "image/png", upsert=True)

        assert path == "u1/avatar.png"
        client.storage.from_.assert_called_with("avatars")
        options = bucket.upload.call_args.kwargs["file_options"]
        assert options["content-type"] == "image/png"
        assert options["upsert"] == "true"

    @pytest.mark.asyncio
    async def test_upload_error_is_wrapped(self, provider, client):
        bucket = MagicMock()
        bucket.upload = AsyncMock(side_effect=APIError("The resource already exists", code="409"))
        client.storage.from_.return_value = bucket

        with pytest.raises(ProviderError) as exc_info:
            await provider.upload_object("post-images", "a.png", b"x", "image/png")

        assert exc_info.value.code == "409"

    @pytest.mark.asyncio
    async def test_public_url(self, provider, client):
        bucket = MagicMock()
        bucket.get_public_url = AsyncMock(return_value="https://cdn.test/avatars/u1/avatar.png")
        client.storage.from_.return_value = bucket

        assert await provider.get_public_url("avatars", "u1/avatar.png") == "https://cdn.test/avatars/u1/avatar.png"


class TestAuth:
    @pytest.mark.asyncio
    async def test_sign_in_converts_session(self, provider, client):
        client.auth.sign_in_with_password = AsyncMock(
            return_value=SimpleNamespace(session=supabase_session(), user=supabase_user())
        )

        session = await provider.sign_in_with_password("alice@example.com", "pw")

        assert session.access_token == "access"
        assert session.user.id == "u1"

    @pytest.mark.asyncio
    async def test_sign_in_error_message(self, provider, client):
        client.auth.sign_in_with_password = AsyncMock(side_effect=APIError("Invalid login credentials"))

        with pytest.raises(ProviderError) as exc_info:
            await provider.sign_in_with_password("alice@example.com", "bad")

        assert exc_info.value.message == "Invalid login credentials"

    @pytest.mark.asyncio
    async def test_sign_up_sends_metadata(self, provider, client):
        client.auth.sign_up = AsyncMock(return_value=SimpleNamespace(user=supabase_user(), session=None))

        user = await provider.sign_up("alice@example.com", "pw", {"username": "alice"})

        credentials = client.auth.sign_up.call_args.args[0]
        assert credentials["options"] == {"data": {"username": "alice"}}
        assert user.email == "alice@example.com"

    @pytest.mark.asyncio
    async def test_oauth_returns_url(self, provider, client):
        client.auth.sign_in_with_oauth = AsyncMock(
            return_value=SimpleNamespace(provider="github", url="https://auth.test/authorize")
        )

        url = await provider.sign_in_with_oauth("github", "http://localhost:3000/auth/callback")

        assert url == "https://auth.test/authorize"
        args = client.auth.sign_in_with_oauth.call_args.args[0]
        assert args["options"]["redirect_to"] == "http://localhost:3000/auth/callback"

    @pytest.mark.asyncio
    async def test_auth_listener_runs_async_callback(self, provider, client):
        subscription = MagicMock()
        client.auth.on_auth_state_change.return_value = subscription
        received = []

        async def callback(event, session):
            received.append((event, session.user.id if session else None))

        unsubscribe = provider.on_auth_state_change(callback)
        listener = client.auth.on_auth_state_change.call_args.args[0]
        listener("SIGNED_IN", supabase_session())
        listener("SIGNED_OUT", None)
        await provider.wait_for_auth_events()

        assert received == [("SIGNED_IN", "u1"), ("SIGNED_OUT", None)]
        assert unsubscribe is subscription.unsubscribe

    @pytest.mark.asyncio
    async def test_failing_auth_handler_does_not_break_waiters(self, provider, client):
        client.auth.on_auth_state_change.return_value = MagicMock()

        async def callback(event, session):
            raise RuntimeError("profile lookup exploded")

        provider.on_auth_state_change(callback)
        listener = client.auth.on_auth_state_change.call_args.args[0]
        listener("SIGNED_IN", supabase_session())

        await provider.wait_for_auth_events()

        assert provider._pending == set()


class TestChangeFeed:
    def channel(self, client, status=None):
        channel = MagicMock()
        if status is None:
            channel.subscribe = AsyncMock()
        else:
            channel.subscribe = AsyncMock(side_effect=lambda on_status: on_status(status))
        client.channel.return_value = channel
        client.remove_channel = AsyncMock()
        return channel

    @pytest.mark.asyncio
    async def test_subscribe_delivers_events(self, provider, client):
        channel = self.channel(client, RealtimeSubscribeStates.SUBSCRIBED)
        events = []

        subscription = await provider.subscribe_to_changes("posts", events.append)
        on_change = channel.on_postgres_changes.call_args.kwargs["callback"]
        on_change({"data": {"type": "UPDATE", "table": "posts", "record": {"id": "p1"}}})
        on_change({"data": {"type": "BOGUS", "table": "posts"}})

        assert [e.type for e in events] == [ChangeType.UPDATE]
        assert channel.on_postgres_changes.call_args.kwargs["table"] == "posts"

        await subscription.unsubscribe()
        await subscription.unsubscribe()
        client.remove_channel.assert_awaited_once_with(channel)

    @pytest.mark.asyncio
    async def test_row_filter_is_passed_to_channel(self, provider, client):
        channel = self.channel(client, RealtimeSubscribeStates.SUBSCRIBED)

        await provider.subscribe_to_changes("posts", lambda event: None, row_filter="author_username=eq.alice")

        client.channel.assert_called_once_with("posts-author_username=eq.alice")
        kwargs = channel.on_postgres_changes.call_args.kwargs
        assert kwargs["filter"] == "author_username=eq.alice"
        assert kwargs["event"] == "*"

    @pytest.mark.asyncio
    async def test_channel_error_raises(self, provider, client):
        self.channel(client, RealtimeSubscribeStates.CHANNEL_ERROR)

        with pytest.raises(ProviderError):
            await provider.subscribe_to_changes("posts", lambda event: None)

        client.remove_channel.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_join_timeout_raises(self, provider, client):
        self.channel(client)

        with pytest.raises(ProviderError, match="Timed out"):
            await provider.subscribe_to_changes("posts", lambda event: None)

        client.remove_channel.assert_awaited_once()


class TestCheckConnection:
    @pytest.mark.asyncio
    async def test_reports_each_service(self, provider, client):
        client.table.return_value = query_returning([{"id": "p1"}])
        client.storage.list_buckets = AsyncMock(side_effect=APIError("unauthorized"))
        client.auth.get_session = AsyncMock(return_value=None)

        assert await provider.check_connection() == {"database": True, "storage": False, "auth": True}
