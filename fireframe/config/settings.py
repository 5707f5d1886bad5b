from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Optional, List

from fireframe.core.exceptions import ConfigurationError


class Settings(BaseSettings):
    # Supabase
    supabase_url: str = ""
    supabase_key: str = ""  # public anon key
    supabase_service_role_key: Optional[str] = None  # Server-side only, never sent to clients
    use_local_supabase: bool = False  # Point at `supabase start` instead of the hosted project
    local_supabase_url: str = "http://127.0.0.1:54321"

    # Tables and buckets
    users_table: str = "users"
    posts_table: str = "posts"
    post_images_bucket: str = "post-images"
    avatars_bucket: str = "avatars"

    # Auth
    site_url: str = "http://localhost:3000"
    sign_in_failsafe_seconds: float = 10.0
    local_storage_path: str = ".fireframe/local_storage.json"
    auth_storage_key: str = "auth-storage"

    # Realtime
    realtime_subscribe_timeout: float = 10.0
    max_user_feeds: int = 50  # Per-author live feeds kept open at once

    # App
    app_name: str = "fireframe"
    debug: bool = False
    environment: str = "development"  # development | staging | production
    log_level: str = "INFO"
    cors_origins: str = "http://localhost:3000,http://localhost:5173,http://127.0.0.1:3000,http://127.0.0.1:5173"
    rate_limit: str = "100/minute"  # slowapi format, e.g. "100/minute"

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def effective_supabase_url(self) -> str:
        if self.use_local_supabase:
            return self.local_supabase_url
        return self.supabase_url

    def get_cors_origins_list(self) -> List[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]

    def validate_required(self) -> None:
        """Raise ConfigurationError when the Supabase URL or anon key is missing."""
        missing = []
        if not self.effective_supabase_url:
            missing.append("SUPABASE_URL")
        if not self.supabase_key:
            missing.append("SUPABASE_KEY")
        if missing:
            raise ConfigurationError(
                f"Missing required environment variable(s): {', '.join(missing)}"
            )

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        env_prefix="",  # No prefix needed
        extra="ignore"
    )


settings = Settings()
