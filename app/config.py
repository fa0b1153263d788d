"""Application configuration"""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings"""

    # Database
    database_url: str = "sqlite:///./issuesync.db"

    # Server
    host: str = "0.0.0.0"
    port: int = 8000

    # Logging
    log_level: str = "INFO"

    # Secret used to derive the key that encrypts stored provider access tokens.
    # Rotating it makes existing connections undecryptable (sync runs fail fast).
    encryption_secret: str = "change-me"

    # Providers
    github_api_url: str = "https://api.github.com"
    bitbucket_api_url: str = "https://api.bitbucket.org/2.0"
    provider_timeout_seconds: float = 30.0

    # Sync
    sync_page_size: int = 100
    # Publish a progress snapshot every N processed records
    sync_progress_interval: int = 10
    sync_max_error_summaries: int = 100

    # Rate-limit backoff (seconds)
    sync_backoff_base_delay: float = 60
    sync_backoff_max_attempts: int = 5
    sync_backoff_max_delay: float = 600
    sync_backoff_jitter: float = 10

    # Finished operations are kept in memory this long before being reaped
    sync_operation_retention_hours: int = 24
    sync_cleanup_interval_minutes: int = 60

    class Config:
        env_file = ".env"
        case_sensitive = False


settings = Settings()
