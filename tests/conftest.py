"""Pytest configuration and fixtures."""

import asyncio
import os
import tempfile
from copy import deepcopy
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

# Keep the shared in-memory rate limiter out of the way of the test suite
os.environ["RATE_LIMIT"] = "10000/minute"
os.environ.setdefault(
    "LOCAL_STORAGE_PATH", str(Path(tempfile.mkdtemp()) / "local_storage.json")
)

import pytest

from fireframe.core.exceptions import ProviderError
from fireframe.modules.auth.store import AuthStore
from fireframe.modules.auth.user_cache import UserCache
from fireframe.modules.posts.service import PostService
from fireframe.modules.posts.store import PostStore
from fireframe.modules.users.service import UserService
from fireframe.providers.base import (
    AuthSession,
    AuthUser,
    ChangeEvent,
    ChangeSubscription,
    ChangeType,
    StorageProvider,
)


class FakeSubscription(ChangeSubscription):
    def __init__(
        self,
        provider: "FakeProvider",
        table: str,
        callback: Callable[[ChangeEvent], None],
        row_filter: Optional[str] = None,
    ):
        self.provider = provider
        self.table = table
        self.callback = callback
        self.row_filter = row_filter
        self.active = True

    def matches(self, event: ChangeEvent) -> bool:
        if event.table != self.table:
            return False
        if not self.row_filter:
            return True
        # Only the "column=eq.value" form is used by the app.
        column, _, value = self.row_filter.partition("=eq.")
        row = event.record or event.old_record
        return str(row.get(column)) == value

    async def unsubscribe(self) -> None:
        if self.active:
            self.active = False
            self.provider.subscriptions.remove(self)


class FakeProvider(StorageProvider):
    """In-memory backend: tables, buckets, auth accounts and a change feed.

    ``emit_changes`` makes row writes push change events to subscribers the
    way the realtime feed does. ``fail_on(op)`` makes an operation raise
    ProviderError; ops may be scoped to a table as ``"update:users"``.
    """

    def __init__(self) -> None:
        self.tables: Dict[str, List[Dict[str, Any]]] = {"users": [], "posts": []}
        self.objects: Dict[Tuple[str, str], bytes] = {}
        self.calls: List[str] = []
        self.failures: Dict[str, ProviderError] = {}
        self.subscriptions: List[FakeSubscription] = []
        self.auth_listeners: List[Callable] = []
        self.accounts: Dict[str, Tuple[str, AuthUser]] = {}
        self.oauth_codes: Dict[str, AuthUser] = {}
        self.reset_requests: List[Tuple[str, str]] = []
        self.session: Optional[AuthSession] = None
        self.notify_on_sign_in = True
        self.emit_changes = False
        self.health = {"database": True, "storage": True, "auth": True}
        self._next_id = 1
        self._pending: Set[asyncio.Task] = set()

    # Test helpers

    def fail_on(self, op: str, message: str = "Request failed", code: Optional[str] = None) -> None:
        self.failures[op] = ProviderError(message, code=code)

    def _check(self, op: str, table: Optional[str] = None) -> None:
        self.calls.append(f"{op}:{table}" if table else op)
        for key in (op, f"{op}:{table}"):
            if key in self.failures:
                raise self.failures[key]

    def _new_id(self) -> str:
        value = f"id-{self._next_id}"
        self._next_id += 1
        return value

    def add_account(self, email: str, password: str, username: Optional[str] = None) -> AuthUser:
        user = AuthUser(
            id=self._new_id(),
            email=email,
            user_metadata={"username": username} if username else {},
        )
        self.accounts[email] = (password, user)
        return user

    def emit(self, event: ChangeEvent) -> None:
        for subscription in list(self.subscriptions):
            if subscription.matches(event):
                subscription.callback(event)

    async def _notify(self, event: str, session: Optional[AuthSession]) -> None:
        # Same delivery as the Supabase adapter: one task per listener, run
        # after the triggering call returns.
        loop = asyncio.get_running_loop()
        for listener in list(self.auth_listeners):
            task = loop.create_task(listener(event, session))
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)

    async def _start_session(self, user: AuthUser) -> AuthSession:
        self.session = AuthSession(access_token=f"token-{user.id}", user=user)
        if self.notify_on_sign_in:
            await self._notify("SIGNED_IN", self.session)
        return self.session

    # Auth

    async def sign_up(self, email, password, metadata=None):
        self._check("sign_up")
        if email in self.accounts:
            raise ProviderError("User already registered", code="user_already_exists")
        user = AuthUser(id=self._new_id(), email=email, user_metadata=metadata or {})
        self.accounts[email] = (password, user)
        return user

    async def sign_in_with_password(self, email, password):
        self._check("sign_in")
        account = self.accounts.get(email)
        if account is None or account[0] != password:
            raise ProviderError("Invalid login credentials", code="invalid_credentials")
        return await self._start_session(account[1])

    async def sign_in_with_oauth(self, provider, redirect_to):
        self._check("oauth")
        return f"https://auth.example.test/authorize?provider={provider}&redirect_to={redirect_to}"

    async def exchange_code_for_session(self, code):
        self._check("exchange")
        user = self.oauth_codes.get(code)
        if user is None:
            raise ProviderError("invalid flow state, no valid flow state found", code="flow_state_not_found")
        return await self._start_session(user)

    async def sign_out(self):
        self._check("sign_out")
        self.session = None
        await self._notify("SIGNED_OUT", None)

    async def reset_password_for_email(self, email, redirect_to):
        self._check("reset")
        self.reset_requests.append((email, redirect_to))

    async def get_session(self):
        self._check("get_session")
        return self.session

    def on_auth_state_change(self, callback):
        self.auth_listeners.append(callback)
        return lambda: self.auth_listeners.remove(callback)

    async def wait_for_auth_events(self):
        tasks = list(self._pending)
        if tasks:
            await asyncio.gather(*tasks)

    # Rows

    async def fetch_rows(self, table, filters=None, order_by=None, descending=True):
        self._check("fetch_rows", table)
        rows = [
            deepcopy(row) for row in self.tables.setdefault(table, [])
            if all(row.get(k) == v for k, v in (filters or {}).items())
        ]
        if order_by:
            rows.sort(key=lambda row: row.get(order_by) or "", reverse=descending)
        return rows

    async def fetch_row(self, table, column, value):
        self._check("fetch_row", table)
        for row in self.tables.setdefault(table, []):
            if row.get(column) == value:
                return deepcopy(row)
        return None

    async def insert_row(self, table, values):
        self._check("insert", table)
        row = {"id": self._new_id(), **values}
        self.tables.setdefault(table, []).append(row)
        if self.emit_changes:
            self.emit(ChangeEvent(type=ChangeType.INSERT, table=table, record=deepcopy(row)))
        return deepcopy(row)

    async def update_rows(self, table, values, column, value):
        self._check("update", table)
        updated = []
        for row in self.tables.setdefault(table, []):
            if row.get(column) == value:
                row.update(values)
                updated.append(deepcopy(row))
        if self.emit_changes:
            for row in updated:
                self.emit(ChangeEvent(type=ChangeType.UPDATE, table=table, record=deepcopy(row)))
        return updated

    async def delete_rows(self, table, column, value):
        self._check("delete", table)
        rows = self.tables.setdefault(table, [])
        deleted = [row for row in rows if row.get(column) == value]
        self.tables[table] = [row for row in rows if row.get(column) != value]
        if self.emit_changes:
            for row in deleted:
                self.emit(ChangeEvent(type=ChangeType.DELETE, table=table, old_record=deepcopy(row)))
        return deleted

    # Objects

    async def upload_object(self, bucket, path, data, content_type, upsert=False):
        self._check("upload", bucket)
        if (bucket, path) in self.objects and not upsert:
            raise ProviderError("The resource already exists", code="409")
        self.objects[(bucket, path)] = data
        return path

    async def get_public_url(self, bucket, path):
        self._check("public_url", bucket)
        return f"https://storage.example.test/{bucket}/{path}"

    # Change feed

    async def subscribe_to_changes(self, table, callback, row_filter=None):
        self._check("subscribe", table)
        subscription = FakeSubscription(self, table, callback, row_filter)
        self.subscriptions.append(subscription)
        return subscription

    async def check_connection(self):
        return dict(self.health)


def post_row(post_id: str, created_at: str, username: str = "alice", caption: str = "") -> Dict[str, Any]:
    return {
        "id": post_id,
        "author_username": username,
        "author_avatar_url": f"https://example.test/{username}.png",
        "image_url": f"https://example.test/{post_id}.jpg",
        "caption": caption,
        "likes": 0,
        "comments": 0,
        "created_at": created_at,
    }


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def user_service(provider: FakeProvider) -> UserService:
    return UserService(provider)


@pytest.fixture
def post_service(provider: FakeProvider) -> PostService:
    return PostService(provider)


@pytest.fixture
def post_store(post_service: PostService) -> PostStore:
    return PostStore(post_service)


@pytest.fixture
def user_cache(tmp_path: Path) -> UserCache:
    return UserCache(str(tmp_path / "local_storage.json"))


@pytest.fixture
def auth_store(provider: FakeProvider, user_service: UserService, user_cache: UserCache) -> AuthStore:
    return AuthStore(provider, user_service, cache=user_cache, site_url="http://localhost:3000")
