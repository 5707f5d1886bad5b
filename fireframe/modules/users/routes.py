from fastapi import APIRouter, Depends, HTTPException, status
from typing import List

from fireframe.core.dependencies import get_auth_store, get_user_feeds, get_user_service
from fireframe.modules.auth.store import AuthStore
from fireframe.modules.posts.schemas import Post
from fireframe.modules.posts.store import UserFeeds
from fireframe.modules.users.schemas import User
from fireframe.modules.users.service import UserService, public_view

router = APIRouter(prefix="/users", tags=["users"])


@router.get("/{username}", response_model=User)
async def get_user(
    username: str,
    service: UserService = Depends(get_user_service),
    auth_store: AuthStore = Depends(get_auth_store)
):
    """Get a profile by username; other users only see public contacts"""
    user = await service.get_user_by_username(username)
    if user is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    viewer = auth_store.state.user
    if viewer is None or viewer.id != user.id:
        return public_view(user)
    return user


@router.get("/{username}/posts", response_model=List[Post])
async def get_user_posts(
    username: str,
    feeds: UserFeeds = Depends(get_user_feeds)
):
    """Posts by one author, newest first, served from a live per-author feed"""
    feed = await feeds.get(username)
    if not feed.is_loaded:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=feed.error)
    return feed.posts
