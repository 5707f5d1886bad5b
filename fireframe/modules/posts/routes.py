from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile, status

from fireframe.core.dependencies import get_current_user, get_post_service, get_post_store
from fireframe.modules.posts.schemas import (
    FeedResponse, NewPost, Post, PostAuthor, PostCreate, PostCreatedResponse, PostUpdate
)
from fireframe.modules.posts.service import PostService, decode_data_url, is_data_url
from fireframe.modules.posts.store import PostStore
from fireframe.modules.users.schemas import User

router = APIRouter(prefix="/posts", tags=["posts"])


def _author_of(user: User) -> PostAuthor:
    # Snapshot: later avatar changes do not touch existing posts.
    return PostAuthor(username=user.username, avatar_url=user.avatar_url)


async def _get_own_post(post_id: str, user: User, service: PostService) -> Post:
    post = await service.get_post(post_id)
    if post is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Post not found")
    if post.author.username != user.username:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Only the author can change this post"
        )
    return post


@router.get("", response_model=FeedResponse)
async def get_feed(store: PostStore = Depends(get_post_store)):
    """The live feed, newest first"""
    state = store.state
    return FeedResponse(
        posts=state.posts,
        is_loading=state.is_loading,
        is_live=state.is_live,
        error=state.error,
    )


@router.get("/{post_id}", response_model=Post)
async def get_post(
    post_id: str,
    store: PostStore = Depends(get_post_store),
    service: PostService = Depends(get_post_service)
):
    """Get one post, from the feed when present"""
    post = store.get_post(post_id) or await service.get_post(post_id)
    if post is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Post not found")
    return post


@router.post("", response_model=PostCreatedResponse, status_code=201)
async def create_post(
    post_data: PostCreate,
    current_user: User = Depends(get_current_user),
    store: PostStore = Depends(get_post_store)
):
    """Create a post from an image URL or an inline data URL"""
    if is_data_url(post_data.image_url):
        decode_data_url(post_data.image_url)
    post_id = await store.add_post(NewPost(
        author=_author_of(current_user),
        image_url=post_data.image_url,
        caption=post_data.caption,
    ))
    if post_id is None:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=store.state.error)
    return PostCreatedResponse(id=post_id, message="Post created; it will appear in the feed shortly")


@router.post("/upload", response_model=PostCreatedResponse, status_code=201)
async def create_post_with_upload(
    file: UploadFile = File(...),
    caption: str = Form(""),
    current_user: User = Depends(get_current_user),
    store: PostStore = Depends(get_post_store),
    service: PostService = Depends(get_post_service)
):
    """Create a post from an uploaded image file"""
    if not (file.content_type or "").startswith("image/"):
        raise HTTPException(status_code=400, detail="Upload must be an image")
    data = await file.read()
    image_url = await service.upload_image(
        data,
        file.filename or "image",
        f"posts/{current_user.username}",
        content_type=file.content_type,
    )
    post_id = await store.add_post(NewPost(
        author=_author_of(current_user),
        image_url=image_url,
        caption=caption,
    ))
    if post_id is None:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=store.state.error)
    return PostCreatedResponse(id=post_id, message="Post created; it will appear in the feed shortly")


@router.patch("/{post_id}", status_code=202)
async def update_post(
    post_id: str,
    post_data: PostUpdate,
    current_user: User = Depends(get_current_user),
    store: PostStore = Depends(get_post_store),
    service: PostService = Depends(get_post_service)
):
    """Change caption or image (author only)"""
    post = await _get_own_post(post_id, current_user, service)
    if post_data.image_url is not None and is_data_url(post_data.image_url):
        decode_data_url(post_data.image_url)
    updated = post.model_copy(update=post_data.model_dump(exclude_none=True))
    if not await store.update_post(updated):
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=store.state.error)
    return {"message": "Post update accepted", "id": post_id}


@router.delete("/{post_id}", status_code=204)
async def delete_post(
    post_id: str,
    current_user: User = Depends(get_current_user),
    store: PostStore = Depends(get_post_store),
    service: PostService = Depends(get_post_service)
):
    """Delete a post (author only)"""
    await _get_own_post(post_id, current_user, service)
    if not await store.delete_post(post_id):
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=store.state.error)
    return None
