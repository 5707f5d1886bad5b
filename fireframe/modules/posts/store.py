"""
In-memory post feed kept in sync with the posts table.

Writes are not applied optimistically: add/update/delete persist through
PostService and the change feed delivers the resulting row event, which
``apply_change`` folds into ``state.posts``. Until that event arrives the
feed shows the previous state.

Inserts are prepended without re-sorting, so display order stays
newest-first only while the feed delivers inserts in creation order.
"""

import asyncio
import logging
from collections import OrderedDict
from typing import Awaitable, Callable, Dict, List, Optional

from pydantic import BaseModel

from fireframe.core.exceptions import AppException
from fireframe.modules.posts.schemas import NewPost, Post
from fireframe.modules.posts.service import PostService, row_to_post
from fireframe.providers.base import ChangeEvent, ChangeSubscription, ChangeType

logger = logging.getLogger(__name__)

Unsubscribe = Callable[[], Awaitable[None]]


class PostState(BaseModel):
    posts: List[Post] = []
    is_loading: bool = False
    is_live: bool = False
    error: Optional[str] = None


class PostStore:
    def __init__(self, service: PostService):
        self.service = service
        self.state = PostState()
        self._subscription: Optional[ChangeSubscription] = None
        self._held_events: Optional[List[ChangeEvent]] = None

    # Setters

    def set_posts(self, posts: List[Post]) -> None:
        self.state.posts = list(posts)

    def set_loading(self, loading: bool) -> None:
        self.state.is_loading = loading

    def set_error(self, error: Optional[str]) -> None:
        self.state.error = error

    # Feed lifecycle

    async def initialize_posts(self) -> Unsubscribe:
        """Join the posts change feed, then load the full feed once.

        A feed joined by an earlier call is released first. Events that
        arrive while the load is in flight are held back and applied on top
        of the loaded list. Returns an async handle that releases this
        subscription and must be awaited when the feed is no longer needed.
        """
        await self.unsubscribe()
        self.state.is_loading = True
        self.state.error = None
        self._held_events = []

        subscription = None
        try:
            subscription = await self.service.subscribe_to_all_posts(self.apply_change)
            self._subscription = subscription
            self.state.is_live = True
        except AppException as e:
            logger.error(f"Error subscribing to post updates: {e.message}")
            self.state.error = "Failed to subscribe to post updates"
            self.state.is_live = False
            logger.info("Falling back to a one-shot post fetch")

        try:
            self.set_posts(await self.service.get_all_posts())
        except AppException as e:
            logger.error(f"Error loading posts: {e.message}")
            self.state.error = "Failed to load posts"
        finally:
            held, self._held_events = self._held_events, None
            for event in held:
                self.apply_change(event)
            self.state.is_loading = False

        return self._release_handle(subscription)

    def _release_handle(self, subscription: Optional[ChangeSubscription]) -> Unsubscribe:
        async def release() -> None:
            if subscription is None:
                return
            if self._subscription is subscription:
                self._subscription = None
                self.state.is_live = False
            await subscription.unsubscribe()

        return release

    async def unsubscribe(self) -> None:
        """Release the current feed subscription, if any"""
        subscription, self._subscription = self._subscription, None
        self.state.is_live = False
        if subscription is not None:
            await subscription.unsubscribe()

    def apply_change(self, event: ChangeEvent) -> None:
        """Fold one change-feed event into the local post list"""
        if event.table and event.table != self.service.table:
            return
        if self._held_events is not None:
            self._held_events.append(event)
            return
        posts = self.state.posts

        if event.type == ChangeType.INSERT:
            post = row_to_post(event.record)
            if any(p.id == post.id for p in posts):
                self.state.posts = [post if p.id == post.id else p for p in posts]
            else:
                self.state.posts = [post, *posts]
        elif event.type == ChangeType.UPDATE:
            post = row_to_post(event.record)
            self.state.posts = [post if p.id == post.id else p for p in posts]
        elif event.type == ChangeType.DELETE:
            post_id = str(event.old_record.get("id"))
            self.state.posts = [p for p in posts if p.id != post_id]
        logger.debug(f"Applied {event.type.value} to feed ({len(self.state.posts)} posts)")

    # Writes

    async def add_post(self, post: NewPost) -> Optional[str]:
        try:
            self.state.is_loading = True
            self.state.error = None
            return await self.service.add_post(post)
        except AppException as e:
            logger.error(f"Error adding post: {e.message}")
            self.state.error = "Failed to add post"
            return None
        finally:
            self.state.is_loading = False

    async def update_post(self, post: Post) -> bool:
        try:
            self.state.is_loading = True
            self.state.error = None
            await self.service.update_post(post)
            return True
        except AppException as e:
            logger.error(f"Error updating post: {e.message}")
            self.state.error = "Failed to update post"
            return False
        finally:
            self.state.is_loading = False

    async def delete_post(self, post_id: str) -> bool:
        try:
            self.state.is_loading = True
            self.state.error = None
            await self.service.delete_post(post_id)
            return True
        except AppException as e:
            logger.error(f"Error deleting post: {e.message}")
            self.state.error = "Failed to delete post"
            return False
        finally:
            self.state.is_loading = False

    def get_post(self, post_id: str) -> Optional[Post]:
        return next((p for p in self.state.posts if p.id == post_id), None)


class UserPostsFeed:
    """Live list of one author's posts.

    Any change event for the author's rows triggers a full refetch of their
    posts rather than a local fold. Events that arrive during a refetch
    trigger one more refetch once it completes.
    """

    def __init__(self, service: PostService, username: str):
        self.service = service
        self.username = username
        self.posts: List[Post] = []
        self.is_loaded = False
        self.is_live = False
        self.error: Optional[str] = None
        self._subscription: Optional[ChangeSubscription] = None
        self._refresh_task: Optional[asyncio.Task] = None
        self._stale = False

    async def start(self) -> None:
        try:
            self._subscription = await self.service.subscribe_to_user_posts(
                self.username, self._on_change
            )
            self.is_live = True
        except AppException as e:
            logger.error(f"Error subscribing to posts by {self.username}: {e.message}")
            self.error = "Failed to subscribe to user posts"
        await self.refresh()

    async def refresh(self) -> None:
        try:
            self.posts = await self.service.get_posts_by_user(self.username)
            self.is_loaded = True
        except AppException as e:
            logger.error(f"Error loading posts by {self.username}: {e.message}")
            self.error = "Failed to load user posts"

    def _on_change(self, event: ChangeEvent) -> None:
        self._stale = True
        if self._refresh_task is None or self._refresh_task.done():
            self._refresh_task = asyncio.get_running_loop().create_task(self._refresh_until_current())

    async def _refresh_until_current(self) -> None:
        while self._stale:
            self._stale = False
            await self.refresh()

    async def settle(self) -> None:
        """Wait for a refetch triggered by the feed, if one is running"""
        if self._refresh_task is not None:
            await self._refresh_task

    async def stop(self) -> None:
        if self._refresh_task is not None and not self._refresh_task.done():
            self._refresh_task.cancel()
        subscription, self._subscription = self._subscription, None
        self.is_live = False
        if subscription is not None:
            logger.info(f"Unsubscribing from {self.username} posts real-time updates")
            await subscription.unsubscribe()


class UserFeeds:
    """Per-author feeds, started on first request and kept live.

    At most ``max_feeds`` are kept; the least recently requested one is
    stopped to make room. A feed that could not join its change feed is
    served once and not kept.
    """

    def __init__(self, service: PostService, max_feeds: int = 50):
        self.service = service
        self.max_feeds = max_feeds
        self._feeds: "OrderedDict[str, UserPostsFeed]" = OrderedDict()

    async def get(self, username: str) -> UserPostsFeed:
        feed = self._feeds.get(username)
        if feed is not None:
            self._feeds.move_to_end(username)
            await feed.settle()
            return feed

        feed = UserPostsFeed(self.service, username)
        await feed.start()
        if not feed.is_live:
            return feed

        self._feeds[username] = feed
        while len(self._feeds) > self.max_feeds:
            _, oldest = self._feeds.popitem(last=False)
            await oldest.stop()
        return feed

    def active(self) -> Dict[str, UserPostsFeed]:
        return dict(self._feeds)

    async def close(self) -> None:
        feeds = list(self._feeds.values())
        self._feeds.clear()
        for feed in feeds:
            await feed.stop()
