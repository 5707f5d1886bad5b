from pydantic import BaseModel, Field
from typing import List, Optional
from datetime import datetime


class PostAuthor(BaseModel):
    username: str
    avatar_url: Optional[str] = None


class Post(BaseModel):
    id: str
    author: PostAuthor
    image_url: str
    caption: str = ""
    likes: int = 0
    comments: int = 0
    created_at: Optional[datetime] = None


class NewPost(BaseModel):
    """A post before it has an id; image_url may be a data: URL"""
    author: PostAuthor
    image_url: str
    caption: str = ""
    likes: int = 0
    comments: int = 0


class PostCreate(BaseModel):
    image_url: str = Field(..., min_length=1)  # http(s) URL or data:<mime>;base64,...
    caption: str = ""


class PostUpdate(BaseModel):
    caption: Optional[str] = None
    image_url: Optional[str] = None


class PostCreatedResponse(BaseModel):
    id: str
    message: str


class FeedResponse(BaseModel):
    posts: List[Post]
    is_loading: bool
    is_live: bool
    error: Optional[str] = None
