from pydantic import BaseModel, EmailStr, Field
from typing import Literal, Optional

from fireframe.modules.users.schemas import User

OAuthProvider = Literal["google", "azure", "discord", "facebook"]


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class SignUpRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=6)
    username: str = Field(..., min_length=3, max_length=30, pattern=r"^[A-Za-z0-9_.]+$")


class ResetPasswordRequest(BaseModel):
    email: EmailStr


class OAuthResponse(BaseModel):
    url: str


class AvatarResponse(BaseModel):
    avatar_url: str


class AuthStateResponse(BaseModel):
    user: Optional[User] = None
    is_authenticated: bool
    is_loading: bool
    error: Optional[str] = None
