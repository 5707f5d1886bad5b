from pydantic import BaseModel, Field
from typing import Optional


class ContactField(BaseModel):
    value: str = ""
    is_public: bool = False


class MessagingContact(BaseModel):
    platform: str = ""
    username: str = ""
    is_public: bool = False


class Contacts(BaseModel):
    website: ContactField = Field(default_factory=ContactField)
    phone: ContactField = Field(default_factory=ContactField)
    messaging: MessagingContact = Field(default_factory=MessagingContact)


class User(BaseModel):
    id: str
    username: str
    email: str
    avatar_url: Optional[str] = None
    bio: Optional[str] = None
    contacts: Contacts = Field(default_factory=Contacts)


class ProfileUpdate(BaseModel):
    """Partial profile update; only fields that are set are written."""
    username: Optional[str] = Field(None, min_length=1)
    avatar_url: Optional[str] = None
    bio: Optional[str] = None
    contacts: Optional[Contacts] = None
