import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address

from fireframe.config import settings
from fireframe.core.exceptions import AppException
from fireframe.modules.auth import routes as auth_routes
from fireframe.modules.auth.store import AuthStore
from fireframe.modules.auth.user_cache import UserCache
from fireframe.modules.posts import routes as posts_routes
from fireframe.modules.posts.service import PostService
from fireframe.modules.posts.store import PostStore, UserFeeds
from fireframe.modules.users import routes as users_routes
from fireframe.modules.users.service import UserService
from fireframe.providers import StorageProvider, create_provider

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%Y-%m-%dT%H:%M:%SZ",
)
logger = logging.getLogger(__name__)

limiter = Limiter(key_func=get_remote_address, default_limits=[settings.rate_limit])


class SecurityHeadersMiddleware:
    def __init__(self, app):
        self.app = app

    async def __call__(self, scope, receive, send):
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        async def send_with_headers(message):
            if message["type"] == "http.response.start":
                message.setdefault("headers", [])
                message["headers"].extend([
                    (b"X-Content-Type-Options", b"nosniff"),
                    (b"X-Frame-Options", b"DENY"),
                    (b"X-XSS-Protection", b"1; mode=block"),
                ])
            await send(message)

        await self.app(scope, receive, send_with_headers)


def create_app(provider: Optional[StorageProvider] = None) -> FastAPI:
    """Build the app. ``provider`` replaces the Supabase adapter (tests, tooling)."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Application startup")
        backend = provider or await create_provider(settings)

        user_service = UserService(backend, table=settings.users_table)
        post_service = PostService(
            backend, table=settings.posts_table, bucket=settings.post_images_bucket
        )
        auth_store = AuthStore(
            backend,
            user_service,
            cache=UserCache(settings.local_storage_path, settings.auth_storage_key),
            site_url=settings.site_url,
            avatars_bucket=settings.avatars_bucket,
            failsafe_seconds=settings.sign_in_failsafe_seconds,
        )
        post_store = PostStore(post_service)
        user_feeds = UserFeeds(post_service, max_feeds=settings.max_user_feeds)

        app.state.provider = backend
        app.state.user_service = user_service
        app.state.post_service = post_service
        app.state.auth_store = auth_store
        app.state.post_store = post_store
        app.state.user_feeds = user_feeds

        await auth_store.initialize()
        unsubscribe_posts = await post_store.initialize_posts()
        try:
            yield
        finally:
            logger.info("Application shutdown")
            await unsubscribe_posts()
            await user_feeds.close()
            await auth_store.close()

    app = FastAPI(
        title=settings.app_name,
        debug=settings.debug,
        redirect_slashes=False,
        lifespan=lifespan,
    )
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    app.add_middleware(SlowAPIMiddleware)

    @app.exception_handler(AppException)
    async def app_exception_handler(request: Request, exc: AppException):
        return JSONResponse(
            status_code=exc.status_code,
            content={"detail": exc.message, "code": exc.code},
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        logger.exception("Unhandled exception: %s", exc)
        if settings.is_production:
            return JSONResponse(status_code=500, content={"detail": "Internal server error"})
        return JSONResponse(status_code=500, content={"detail": str(exc)})

    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.get_cors_origins_list(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Include module routes
    app.include_router(auth_routes.router, prefix="/api/v1")
    app.include_router(posts_routes.router, prefix="/api/v1")
    app.include_router(users_routes.router, prefix="/api/v1")

    @app.get("/")
    async def root():
        return {"message": "Welcome to fireframe", "status": "healthy"}

    @app.get("/health")
    @limiter.exempt
    async def health():
        return {"status": "healthy"}

    @app.get("/ready")
    @limiter.exempt
    async def ready(request: Request):
        """Readiness probe: database, storage and auth reachability"""
        checks = await request.app.state.provider.check_connection()
        ready = all(checks.values())
        return JSONResponse(
            status_code=200 if ready else 503,
            content={"status": "ready" if ready else "degraded", "checks": checks},
        )

    return app


app = create_app()
