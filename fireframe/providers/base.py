"""
Storage-provider capability interface.

Everything FireFrame needs from its hosted backend goes through this
interface: authentication, row storage, object storage and the row-level
change feed. One concrete adapter is built at startup (see
``fireframe.providers.create_provider``).
"""

from abc import ABC, abstractmethod
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional

from pydantic import BaseModel


class AuthUser(BaseModel):
    id: str
    email: Optional[str] = None
    user_metadata: Dict[str, Any] = {}


class AuthSession(BaseModel):
    access_token: str
    refresh_token: Optional[str] = None
    expires_at: Optional[int] = None
    user: AuthUser


class ChangeType(str, Enum):
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


class ChangeEvent(BaseModel):
    type: ChangeType
    table: str
    record: Dict[str, Any] = {}
    old_record: Dict[str, Any] = {}
    commit_timestamp: Optional[datetime] = None


AuthStateCallback = Callable[[str, Optional[AuthSession]], Awaitable[None]]
ChangeCallback = Callable[[ChangeEvent], None]


class ChangeSubscription(ABC):
    """Handle for a live change-feed subscription."""

    @abstractmethod
    async def unsubscribe(self) -> None:
        """Release the live connection. Safe to call more than once."""


class StorageProvider(ABC):
    # Auth

    @abstractmethod
    async def sign_up(
        self, email: str, password: str, metadata: Optional[Dict[str, Any]] = None
    ) -> Optional[AuthUser]:
        ...

    @abstractmethod
    async def sign_in_with_password(self, email: str, password: str) -> AuthSession:
        ...

    @abstractmethod
    async def sign_in_with_oauth(self, provider: str, redirect_to: str) -> str:
        """Start an OAuth redirect sign-in and return the provider URL."""

    @abstractmethod
    async def exchange_code_for_session(self, code: str) -> AuthSession:
        ...

    @abstractmethod
    async def sign_out(self) -> None:
        ...

    @abstractmethod
    async def reset_password_for_email(self, email: str, redirect_to: str) -> None:
        ...

    @abstractmethod
    async def get_session(self) -> Optional[AuthSession]:
        ...

    @abstractmethod
    def on_auth_state_change(self, callback: AuthStateCallback) -> Callable[[], None]:
        """Register ``callback(event, session)``; returns an unsubscribe function.

        Callbacks run as tasks on the event loop, after the auth call that
        triggered them has returned.
        """

    @abstractmethod
    async def wait_for_auth_events(self) -> None:
        """Wait until every auth-state callback scheduled so far has finished."""

    # Rows

    @abstractmethod
    async def fetch_rows(
        self,
        table: str,
        filters: Optional[Dict[str, Any]] = None,
        order_by: Optional[str] = None,
        descending: bool = True,
    ) -> List[Dict[str, Any]]:
        ...

    @abstractmethod
    async def fetch_row(self, table: str, column: str, value: Any) -> Optional[Dict[str, Any]]:
        """Return the single matching row, or None when no row matches."""

    @abstractmethod
    async def insert_row(self, table: str, values: Dict[str, Any]) -> Dict[str, Any]:
        ...

    @abstractmethod
    async def update_rows(
        self, table: str, values: Dict[str, Any], column: str, value: Any
    ) -> List[Dict[str, Any]]:
        ...

    @abstractmethod
    async def delete_rows(self, table: str, column: str, value: Any) -> List[Dict[str, Any]]:
        ...

    # Objects

    @abstractmethod
    async def upload_object(
        self,
        bucket: str,
        path: str,
        data: bytes,
        content_type: str,
        upsert: bool = False,
    ) -> str:
        """Store ``data`` at ``path`` and return the stored object path."""

    @abstractmethod
    async def get_public_url(self, bucket: str, path: str) -> str:
        ...

    # Change feed

    @abstractmethod
    async def subscribe_to_changes(
        self,
        table: str,
        callback: ChangeCallback,
        row_filter: Optional[str] = None,
    ) -> ChangeSubscription:
        """Join the change feed for ``table``.

        Returns once the channel is joined; raises ProviderError if it cannot
        be joined. ``row_filter`` uses the PostgREST form ``column=eq.value``.
        """

    # Health

    @abstractmethod
    async def check_connection(self) -> Dict[str, bool]:
        """Report reachability of the database, storage and auth services."""
