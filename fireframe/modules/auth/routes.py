from fastapi import APIRouter, Depends, File, HTTPException, UploadFile, status

from fireframe.core.dependencies import get_auth_store, get_current_user
from fireframe.modules.auth.schemas import (
    AuthStateResponse, AvatarResponse, LoginRequest, OAuthProvider, OAuthResponse,
    ResetPasswordRequest, SignUpRequest
)
from fireframe.modules.auth.store import AuthStore
from fireframe.modules.users.schemas import ProfileUpdate, User

router = APIRouter(prefix="/auth", tags=["auth"])


def _state_response(store: AuthStore) -> AuthStateResponse:
    state = store.state
    return AuthStateResponse(
        user=state.user,
        is_authenticated=state.is_authenticated,
        is_loading=state.is_loading,
        error=state.error,
    )


@router.get("/state", response_model=AuthStateResponse)
async def get_state(store: AuthStore = Depends(get_auth_store)):
    """Current session state (for frontend UI)"""
    return _state_response(store)


@router.post("/signup", status_code=201)
async def sign_up(
    sign_up_data: SignUpRequest,
    store: AuthStore = Depends(get_auth_store)
):
    """Register a new user; the profile row is created on first sign-in"""
    result = await store.sign_up(sign_up_data.email, sign_up_data.password, sign_up_data.username)
    if not result.ok:
        raise HTTPException(status_code=400, detail=result.error)
    return {"message": "Check your email to confirm your account"}


@router.post("/login", response_model=AuthStateResponse)
async def login(
    login_data: LoginRequest,
    store: AuthStore = Depends(get_auth_store)
):
    """Sign in with email and password"""
    result = await store.sign_in(login_data.email, login_data.password)
    if not result.ok:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=result.error)
    return _state_response(store)


@router.post("/oauth/{provider}", response_model=OAuthResponse)
async def oauth_login(
    provider: OAuthProvider,
    store: AuthStore = Depends(get_auth_store)
):
    """Start an OAuth sign-in; the client follows the returned URL"""
    result = await store.sign_in_with_oauth(provider)
    if not result.ok:
        raise HTTPException(status_code=400, detail=result.error)
    return OAuthResponse(url=result.url)


@router.get("/callback", response_model=AuthStateResponse)
async def oauth_callback(
    code: str,
    store: AuthStore = Depends(get_auth_store)
):
    """Finish an OAuth sign-in by exchanging the returned code"""
    result = await store.complete_oauth(code)
    if not result.ok:
        raise HTTPException(status_code=400, detail=result.error)
    return _state_response(store)


@router.post("/logout", status_code=200)
async def logout(store: AuthStore = Depends(get_auth_store)):
    """Sign out and clear the cached user"""
    await store.sign_out()
    return {"message": "Logged out successfully"}


@router.post("/reset-password", status_code=200)
async def reset_password(
    request: ResetPasswordRequest,
    store: AuthStore = Depends(get_auth_store)
):
    """Send a password reset link"""
    result = await store.reset_password(request.email)
    if not result.ok:
        raise HTTPException(status_code=400, detail=result.error)
    return {"message": "Password reset email sent"}


@router.patch("/profile", response_model=User)
async def update_profile(
    update: ProfileUpdate,
    current_user: User = Depends(get_current_user),
    store: AuthStore = Depends(get_auth_store)
):
    """Update the signed-in user's profile"""
    result = await store.update_profile(update)
    if not result.ok:
        raise HTTPException(status_code=400, detail=result.error)
    return store.state.user


@router.post("/avatar", response_model=AvatarResponse)
async def upload_avatar(
    file: UploadFile = File(...),
    current_user: User = Depends(get_current_user),
    store: AuthStore = Depends(get_auth_store)
):
    """Upload a new avatar and attach it to the profile"""
    if not (file.content_type or "").startswith("image/"):
        raise HTTPException(status_code=400, detail="Avatar must be an image")
    data = await file.read()
    result = await store.upload_avatar(data, file.filename or "avatar.png", file.content_type)
    if not result.ok:
        raise HTTPException(status_code=400, detail=result.error)
    return AvatarResponse(avatar_url=result.url)
