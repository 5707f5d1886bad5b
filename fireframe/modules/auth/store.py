"""
Session state for the signed-in FireFrame user.

The store mirrors the provider session and the user's profile row into
``AuthState``. Sign-in does not set the session itself: the provider's
auth-state notification does, by refetching (or provisioning) the profile.
Store methods never raise provider errors; they record the message on
``state.error`` and return it in an ``AuthResult``.
"""

import asyncio
import logging
import mimetypes
from typing import Callable, Optional

from pydantic import BaseModel

from fireframe.core.exceptions import ProviderError
from fireframe.modules.auth.user_cache import UserCache
from fireframe.modules.users.schemas import ProfileUpdate, User
from fireframe.modules.users.service import UserService, minimal_user
from fireframe.providers.base import AuthSession, AuthUser, StorageProvider

logger = logging.getLogger(__name__)


class AuthResult(BaseModel):
    error: Optional[str] = None
    url: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class AuthState(BaseModel):
    user: Optional[User] = None
    session: Optional[AuthSession] = None
    is_authenticated: bool = False
    is_loading: bool = True
    error: Optional[str] = None


class AuthStore:
    def __init__(
        self,
        provider: StorageProvider,
        users: UserService,
        cache: Optional[UserCache] = None,
        site_url: str = "http://localhost:3000",
        avatars_bucket: str = "avatars",
        failsafe_seconds: float = 10.0,
    ):
        self.provider = provider
        self.users = users
        self.cache = cache
        self.site_url = site_url.rstrip("/")
        self.avatars_bucket = avatars_bucket
        self.failsafe_seconds = failsafe_seconds
        self.state = AuthState()
        self._unsubscribe_auth: Optional[Callable[[], None]] = None
        self._failsafe: Optional[asyncio.TimerHandle] = None

    # Setters

    def set_session(self, session: Optional[AuthSession]) -> None:
        self.state.session = session
        self.state.is_authenticated = session is not None

    def set_user(self, user: Optional[User]) -> None:
        self.state.user = user
        self.state.is_authenticated = user is not None
        self.state.is_loading = False
        if self.cache is not None:
            self.cache.save(user)

    def set_loading(self, loading: bool) -> None:
        self.state.is_loading = loading

    def set_error(self, error: Optional[str]) -> None:
        self.state.error = error

    # Lifecycle

    async def initialize(self) -> None:
        """Hydrate the cached user, listen for session changes, load the current session"""
        if self.cache is not None:
            self.state.user = self.cache.load()
        self._unsubscribe_auth = self.provider.on_auth_state_change(self._handle_auth_change)

        try:
            session = await self.provider.get_session()
        except ProviderError as e:
            logger.error(f"Error retrieving session: {e.message}")
            self.state.error = e.message
            session = None

        if session is not None:
            await self._apply_session(session)
        else:
            self.state.is_loading = False

    async def close(self) -> None:
        self._disarm_failsafe()
        unsubscribe, self._unsubscribe_auth = self._unsubscribe_auth, None
        if unsubscribe is not None:
            unsubscribe()

    async def _handle_auth_change(self, event: str, session: Optional[AuthSession]) -> None:
        logger.info(f"Auth state changed: {event}")
        if session is not None:
            await self._apply_session(session)
        else:
            self.set_session(None)
            self.set_user(None)

    async def _apply_session(self, session: AuthSession) -> None:
        user = await self._load_profile(session.user)
        self._disarm_failsafe()
        self.set_session(session)
        self.set_user(user)

    async def _load_profile(self, auth_user: AuthUser) -> Optional[User]:
        try:
            user = await self.users.get_user_by_id(auth_user.id)
        except ProviderError as e:
            self.state.error = e.message
            return None
        if user is not None:
            return user

        logger.info(f"User {auth_user.id} not found in users table, provisioning profile")
        try:
            return await self.users.create_user_profile(auth_user)
        except ProviderError:
            # Keep the session usable even without a stored profile row.
            return minimal_user(auth_user)

    # Failsafe

    def _arm_failsafe(self) -> None:
        self._disarm_failsafe()
        loop = asyncio.get_running_loop()
        self._failsafe = loop.call_later(self.failsafe_seconds, self._release_loading)

    def _disarm_failsafe(self) -> None:
        if self._failsafe is not None:
            self._failsafe.cancel()
            self._failsafe = None

    def _release_loading(self) -> None:
        self._failsafe = None
        if self.state.is_loading:
            logger.warning(
                f"No session after {self.failsafe_seconds}s, releasing loading state"
            )
            self.state.is_loading = False

    # Auth methods

    async def sign_up(self, email: str, password: str, username: str) -> AuthResult:
        logger.info(f"Starting signup for {email} ({username})")
        self.state.is_loading = True
        self.state.error = None
        try:
            await self.provider.sign_up(email, password, {"username": username})
            await self.provider.wait_for_auth_events()
        except ProviderError as e:
            logger.error(f"Signup error: {e.message}")
            self.state.error = e.message
            return AuthResult(error=e.message)
        finally:
            self.state.is_loading = False
        # The profile row is provisioned on the first session notification.
        return AuthResult()

    async def sign_in(self, email: str, password: str) -> AuthResult:
        self.state.is_loading = True
        self.state.error = None
        self._arm_failsafe()
        try:
            await self.provider.sign_in_with_password(email, password)
        except ProviderError as e:
            self._disarm_failsafe()
            self.state.error = e.message
            self.state.is_loading = False
            return AuthResult(error=e.message)
        await self.provider.wait_for_auth_events()
        return AuthResult()

    async def sign_in_with_oauth(self, provider: str) -> AuthResult:
        self.state.is_loading = True
        self.state.error = None
        try:
            url = await self.provider.sign_in_with_oauth(provider, f"{self.site_url}/auth/callback")
        except ProviderError as e:
            self.state.error = e.message
            return AuthResult(error=e.message)
        finally:
            self.state.is_loading = False
        return AuthResult(url=url)

    async def complete_oauth(self, code: str) -> AuthResult:
        self.state.is_loading = True
        self.state.error = None
        self._arm_failsafe()
        try:
            await self.provider.exchange_code_for_session(code)
        except ProviderError as e:
            self._disarm_failsafe()
            self.state.error = e.message
            self.state.is_loading = False
            return AuthResult(error=e.message)
        await self.provider.wait_for_auth_events()
        return AuthResult()

    async def sign_out(self) -> None:
        self.state.is_loading = True
        error = None
        try:
            await self.provider.sign_out()
        except ProviderError as e:
            logger.error(f"Sign out error: {e.message}")
            error = e.message
        await self.provider.wait_for_auth_events()
        self.set_session(None)
        self.set_user(None)
        self.state.error = error

    async def reset_password(self, email: str) -> AuthResult:
        try:
            await self.provider.reset_password_for_email(email, f"{self.site_url}/auth/reset-password")
        except ProviderError as e:
            self.state.error = e.message
            return AuthResult(error=e.message)
        return AuthResult()

    async def update_profile(self, update: ProfileUpdate) -> AuthResult:
        user = self.state.user
        if user is None:
            self.state.error = "No user logged in"
            return AuthResult(error=self.state.error)

        self.state.is_loading = True
        self.state.error = None
        try:
            updated = await self.users.update_user(user.id, update)
        except ProviderError as e:
            self.state.error = e.message
            self.state.is_loading = False
            return AuthResult(error=e.message)

        self.set_user(updated)
        return AuthResult()

    async def upload_avatar(self, data: bytes, filename: str, content_type: str) -> AuthResult:
        """Store the avatar, then point the profile at it.

        The two steps are not atomic: if the profile update fails the uploaded
        object stays in the bucket unreferenced.
        """
        user = self.state.user
        if user is None:
            return AuthResult(error="No user logged in")

        if "." in filename:
            ext = filename.rsplit(".", 1)[-1].lower()
        else:
            ext = (mimetypes.guess_extension(content_type) or ".png").lstrip(".")
        path = f"{user.id}/avatar.{ext}"

        try:
            stored = await self.provider.upload_object(
                self.avatars_bucket, path, data, content_type, upsert=True
            )
            avatar_url = await self.provider.get_public_url(self.avatars_bucket, stored)
        except ProviderError as e:
            return AuthResult(error=e.message)

        result = await self.update_profile(ProfileUpdate(avatar_url=avatar_url))
        if not result.ok:
            return result
        return AuthResult(url=avatar_url)
