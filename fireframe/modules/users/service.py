import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fireframe.core.exceptions import ProviderError
from fireframe.modules.users.schemas import (
    ContactField, Contacts, MessagingContact, ProfileUpdate, User
)
from fireframe.providers.base import AuthUser, StorageProvider

logger = logging.getLogger(__name__)


def row_to_user(row: Dict[str, Any]) -> User:
    """Convert a flat users row to the nested User shape"""
    return User(
        id=str(row["id"]),
        username=row["username"],
        email=row.get("email") or "",
        avatar_url=row.get("avatar_url"),
        bio=row.get("bio"),
        contacts=Contacts(
            website=ContactField(
                value=row.get("website_url") or "",
                is_public=bool(row.get("website_public")),
            ),
            phone=ContactField(
                value=row.get("phone") or "",
                is_public=bool(row.get("phone_public")),
            ),
            messaging=MessagingContact(
                platform=row.get("messaging_platform") or "",
                username=row.get("messaging_username") or "",
                is_public=bool(row.get("messaging_public")),
            ),
        ),
    )


def profile_update_to_row(update: ProfileUpdate) -> Dict[str, Any]:
    """Map app field names to users columns, keeping only fields that were set"""
    fields = update.model_dump(exclude_unset=True)
    row: Dict[str, Any] = {}
    for name in ("username", "avatar_url", "bio"):
        if name in fields:
            row[name] = fields[name]
    if update.contacts is not None:
        contacts = update.contacts
        row["website_url"] = contacts.website.value
        row["website_public"] = contacts.website.is_public
        row["phone"] = contacts.phone.value
        row["phone_public"] = contacts.phone.is_public
        row["messaging_platform"] = contacts.messaging.platform
        row["messaging_username"] = contacts.messaging.username
        row["messaging_public"] = contacts.messaging.is_public
    return row


def default_username(auth_user: AuthUser) -> str:
    metadata_name = (auth_user.user_metadata or {}).get("username")
    if metadata_name:
        return metadata_name
    if auth_user.email:
        return auth_user.email.split("@")[0]
    return "user"


def minimal_user(auth_user: AuthUser) -> User:
    """In-memory profile used when provisioning a row failed"""
    return User(
        id=auth_user.id,
        username=default_username(auth_user),
        email=auth_user.email or "",
    )


class UserService:
    def __init__(self, provider: StorageProvider, table: str = "users"):
        self.provider = provider
        self.table = table

    async def get_user_by_id(self, user_id: str) -> Optional[User]:
        """Get profile by auth id; None when no row exists"""
        try:
            row = await self.provider.fetch_row(self.table, "id", user_id)
        except ProviderError as e:
            logger.error(f"Error fetching user profile {user_id}: {e.message}")
            raise
        return row_to_user(row) if row else None

    async def get_user_by_username(self, username: str) -> Optional[User]:
        try:
            row = await self.provider.fetch_row(self.table, "username", username)
        except ProviderError as e:
            logger.error(f"Error loading profile {username}: {e.message}")
            raise
        return row_to_user(row) if row else None

    async def create_user_profile(self, auth_user: AuthUser) -> User:
        """Provision the minimal profile row for an identity that has none"""
        username = default_username(auth_user)
        logger.info(f"Creating user profile for {auth_user.id} ({username})")
        try:
            row = await self.provider.insert_row(self.table, {
                "id": auth_user.id,
                "username": username,
                "email": auth_user.email,
            })
        except ProviderError as e:
            logger.error(f"Failed to create user profile for {auth_user.id}: {e.message}")
            raise
        return row_to_user(row)

    async def update_user(self, user_id: str, update: ProfileUpdate) -> User:
        """Write a partial profile update and return the stored profile"""
        row = profile_update_to_row(update)
        if not row:
            current = await self.get_user_by_id(user_id)
            if current is None:
                raise ProviderError("User not found", code="USER_NOT_FOUND")
            return current
        values = {**row, "updated_at": datetime.now(timezone.utc).isoformat()}
        try:
            updated = await self.provider.update_rows(self.table, values, "id", user_id)
        except ProviderError as e:
            logger.error(f"Error updating user profile {user_id}: {e.message}")
            raise
        if not updated:
            raise ProviderError("User not found", code="USER_NOT_FOUND")
        return row_to_user(updated[0])


def public_view(user: User) -> User:
    """Copy of ``user`` with non-public contact details blanked"""
    contacts = user.contacts
    return user.model_copy(update={
        "email": "",
        "contacts": Contacts(
            website=contacts.website if contacts.website.is_public else ContactField(),
            phone=contacts.phone if contacts.phone.is_public else ContactField(),
            messaging=contacts.messaging if contacts.messaging.is_public else MessagingContact(),
        ),
    })
