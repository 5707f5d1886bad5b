"""
Core dependencies: hand the application-state stores to route handlers.

The stores are created in the app lifespan and live on ``app.state``; routes
never reach for module-level singletons.
"""

from fastapi import Depends, HTTPException, Request, status

from fireframe.modules.auth.store import AuthStore
from fireframe.modules.posts.service import PostService
from fireframe.modules.posts.store import PostStore, UserFeeds
from fireframe.modules.users.schemas import User
from fireframe.modules.users.service import UserService


def get_auth_store(request: Request) -> AuthStore:
    return request.app.state.auth_store


def get_post_store(request: Request) -> PostStore:
    return request.app.state.post_store


def get_post_service(request: Request) -> PostService:
    return request.app.state.post_service


def get_user_feeds(request: Request) -> UserFeeds:
    return request.app.state.user_feeds


def get_user_service(request: Request) -> UserService:
    return request.app.state.user_service


def get_current_user(auth_store: AuthStore = Depends(get_auth_store)) -> User:
    """Require an authenticated session with a loaded profile"""
    state = auth_store.state
    if state.session is None or state.user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not signed in"
        )
    return state.user
