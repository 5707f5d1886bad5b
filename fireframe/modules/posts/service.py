import base64
import binascii
import logging
import mimetypes
import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from fireframe.core.exceptions import ProviderError, ValidationError
from fireframe.modules.posts.schemas import NewPost, Post, PostAuthor
from fireframe.providers.base import ChangeCallback, ChangeSubscription, StorageProvider

logger = logging.getLogger(__name__)


def is_data_url(value: str) -> bool:
    return value.startswith("data:")


def decode_data_url(data_url: str) -> Tuple[bytes, str]:
    """Split a ``data:<mime>;base64,<payload>`` URL into bytes and mime type"""
    header, sep, payload = data_url.partition(",")
    if not sep or not header.startswith("data:") or not header.endswith(";base64"):
        raise ValidationError("Image must be a base64 data URL")
    content_type = header[len("data:"):].split(";")[0] or "image/png"
    try:
        data = base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ValidationError(f"Invalid base64 image data: {e}") from e
    if not data:
        raise ValidationError("Image data is empty")
    return data, content_type


def extension_for(content_type: str) -> str:
    ext = mimetypes.guess_extension(content_type) or ".png"
    return ext.lstrip(".")


def row_to_post(row: Dict[str, Any]) -> Post:
    """Convert a flat posts row to the nested Post shape"""
    return Post(
        id=str(row["id"]),
        author=PostAuthor(
            username=row.get("author_username") or "",
            avatar_url=row.get("author_avatar_url"),
        ),
        image_url=row.get("image_url") or "",
        caption=row.get("caption") or "",
        likes=row.get("likes") or 0,
        comments=row.get("comments") or 0,
        created_at=row.get("created_at"),
    )


def new_post_to_row(post: NewPost, image_url: str) -> Dict[str, Any]:
    return {
        "author_username": post.author.username,
        "author_avatar_url": post.author.avatar_url,
        "image_url": image_url,
        "caption": post.caption,
        "likes": post.likes or 0,
        "comments": post.comments or 0,
        "created_at": datetime.now(timezone.utc).isoformat(),
    }


class PostService:
    def __init__(self, provider: StorageProvider, table: str = "posts", bucket: str = "post-images"):
        self.provider = provider
        self.table = table
        self.bucket = bucket

    async def upload_image(
        self,
        data: bytes,
        filename: str,
        path: str,
        content_type: Optional[str] = None,
    ) -> str:
        """Upload an image file and return its public URL"""
        object_path = f"{path}/{int(time.time() * 1000)}_{filename}"
        content_type = content_type or mimetypes.guess_type(filename)[0] or "application/octet-stream"
        try:
            stored = await self.provider.upload_object(self.bucket, object_path, data, content_type)
            public_url = await self.provider.get_public_url(self.bucket, stored)
        except ProviderError as e:
            logger.error(f"Error uploading image to {self.bucket}: {e.message}")
            raise
        logger.info(f"Image uploaded successfully: {public_url}")
        return public_url

    async def upload_base64_image(self, data_url: str, path: str) -> str:
        """Decode an inline data URL, upload it and return its public URL"""
        data, content_type = decode_data_url(data_url)
        object_path = f"{path}/{int(time.time() * 1000)}.{extension_for(content_type)}"
        logger.debug(f"Uploading {len(data)} byte {content_type} image to {object_path}")
        try:
            stored = await self.provider.upload_object(self.bucket, object_path, data, content_type)
            public_url = await self.provider.get_public_url(self.bucket, stored)
        except ProviderError as e:
            logger.error(f"Error uploading base64 image to {self.bucket}: {e.message}")
            raise
        logger.info(f"Base64 image uploaded successfully: {public_url}")
        return public_url

    async def add_post(self, post: NewPost) -> str:
        """Persist a new post and return its id. Inline images are uploaded first."""
        image_url = post.image_url
        if is_data_url(image_url):
            image_url = await self.upload_base64_image(image_url, f"posts/{post.author.username}")
        try:
            row = await self.provider.insert_row(self.table, new_post_to_row(post, image_url))
        except ProviderError as e:
            logger.error(f"Error adding post for {post.author.username}: {e.message}")
            raise
        logger.info(f"Post created successfully with ID: {row['id']}")
        return str(row["id"])

    async def get_all_posts(self) -> List[Post]:
        try:
            rows = await self.provider.fetch_rows(self.table, order_by="created_at", descending=True)
        except ProviderError as e:
            logger.error(f"Error fetching posts: {e.message}")
            raise
        return [row_to_post(row) for row in rows]

    async def get_posts_by_user(self, username: str) -> List[Post]:
        try:
            rows = await self.provider.fetch_rows(
                self.table,
                filters={"author_username": username},
                order_by="created_at",
                descending=True,
            )
        except ProviderError as e:
            logger.error(f"Error fetching posts for {username}: {e.message}")
            raise
        return [row_to_post(row) for row in rows]

    async def get_post(self, post_id: str) -> Optional[Post]:
        try:
            row = await self.provider.fetch_row(self.table, "id", post_id)
        except ProviderError as e:
            logger.error(f"Error fetching post {post_id}: {e.message}")
            raise
        return row_to_post(row) if row else None

    async def update_post(self, post: Post) -> None:
        """Write caption, image and counters. An inline image is uploaded first."""
        image_url = post.image_url
        if is_data_url(image_url):
            image_url = await self.upload_base64_image(image_url, f"posts/{post.author.username}")
        try:
            await self.provider.update_rows(
                self.table,
                {
                    "caption": post.caption,
                    "image_url": image_url,
                    "likes": post.likes,
                    "comments": post.comments,
                    "updated_at": datetime.now(timezone.utc).isoformat(),
                },
                "id",
                post.id,
            )
        except ProviderError as e:
            logger.error(f"Error updating post {post.id}: {e.message}")
            raise

    async def delete_post(self, post_id: str) -> None:
        try:
            await self.provider.delete_rows(self.table, "id", post_id)
        except ProviderError as e:
            logger.error(f"Error deleting post {post_id}: {e.message}")
            raise

    async def subscribe_to_all_posts(self, callback: ChangeCallback) -> ChangeSubscription:
        return await self.provider.subscribe_to_changes(self.table, callback)

    async def subscribe_to_user_posts(self, username: str, callback: ChangeCallback) -> ChangeSubscription:
        """Change feed limited to one author's rows"""
        return await self.provider.subscribe_to_changes(
            self.table, callback, row_filter=f"author_username=eq.{username}"
        )
