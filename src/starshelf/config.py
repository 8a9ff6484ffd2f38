from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    database_url: str = "sqlite:///./starshelf.db"

    # GitHub REST API
    github_api_url: str = "https://api.github.com"
    github_timeout_seconds: float = 30.0
    github_retry_attempts: int = 3
    github_retry_delay_seconds: float = 2.0
    github_page_delay_seconds: float = 0.5
    github_rate_limit_buffer: int = 100
    github_rate_limit_max_wait_seconds: float = 60.0

    # Star sync
    sync_batch_size: int = 100
    sync_stale_after_minutes: int = 120
    sync_release_fetch_limit: int = 30

    # Release tracking
    release_cache_hours: int = 24
    release_page_size: int = 30
    bulk_fetch_max: int = 50
    bulk_fetch_delay_seconds: float = 1.0
    bulk_fetch_rate_limit_margin: int = 100

    # Scheduler
    scheduler_enabled: bool = True
    scheduler_startup_delay_seconds: float = 30.0
    sync_tick_interval_seconds: float = 60 * 60
    version_tracking_tick_interval_seconds: float = 6 * 60 * 60
    sync_min_interval_hours: int = 24
    sync_failure_backoff_seconds: float = 30 * 60
    sync_auth_failure_backoff_seconds: float = 24 * 60 * 60
    version_tracking_tag: str = "version-tracking"

    user_id: Optional[int] = None  # single-user API; session auth sits in front

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings
