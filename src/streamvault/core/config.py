"""Configuration management for StreamVault."""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore",
    )

    ENV: str = "local"
    SERVICE_NAME: str = "streamvault"
    SERVICE_VERSION: str = "0.1.0"
    LOG_LEVEL: str = "INFO"

    # Backblaze B2 Configuration
    B2_APPLICATION_KEY_ID: str = ""
    B2_APPLICATION_KEY: str = ""
    B2_BUCKET_ID: str = ""
    B2_BUCKET_NAME: str = ""
    B2_API_URL: str = "https://api.backblazeb2.com"
    B2_REQUEST_TIMEOUT: int = 300  # seconds, covers part uploads
    B2_RETRY_ATTEMPTS: int = 3
    B2_RETRY_BASE_MS: int = 600

    # Upload Configuration
    UPLOAD_MAX_IN_MEMORY_MB: int = 50
    UPLOAD_PART_SIZE_MB: int = 50
    UPLOAD_CONCURRENCY: int = 3
    UPLOAD_PROGRESS_INTERVAL_SECONDS: float = 3.0
    UPLOAD_PROGRESS_PERCENT_STEP: int = 5
    UPLOAD_VIDEO_ONLY: bool = True
    UPLOAD_SPOOL_DIR: str = ""  # Empty = system temp dir

    # Signed URL Configuration
    STREAM_URL_DEFAULT_TTL_SECONDS: int = 600
    STREAM_URL_MIN_TTL_SECONDS: int = 300
    STREAM_URL_MIN_TTL_SECONDS_LOCAL: int = 10
    STREAM_URL_MAX_TTL_SECONDS: int = 86400
    STREAM_URL_REUSE_WINDOW_SECONDS: int = 60
    PROXY_URL_TTL_SECONDS: int = 86400
    PROXY_URL_REFRESH_BEFORE_SECONDS: int = 3600
    PROXY_TIMEOUT_SECONDS: int = 60

    # Catalog Configuration
    CATALOG_DATABASE_URL: str = "sqlite:///./data/storage_catalog.db"
    LIST_MAX_PAGE_SIZE: int = 1000
    FOLDERS_MAX_PAGE_SIZE: int = 200
    CATALOG_MAX_PAGE_SIZE: int = 500

    # Encoder Configuration
    FFMPEG_PATH: str = "ffmpeg"
    FFPROBE_PATH: str = "ffprobe"

    @property
    def is_local(self) -> bool:
        """True when running in local development."""
        return self.ENV == "local"

    @property
    def max_in_memory_bytes(self) -> int:
        """Convert UPLOAD_MAX_IN_MEMORY_MB to bytes."""
        return self.UPLOAD_MAX_IN_MEMORY_MB * 1024 * 1024

    @property
    def part_size_bytes(self) -> int:
        """Convert UPLOAD_PART_SIZE_MB to bytes."""
        return self.UPLOAD_PART_SIZE_MB * 1024 * 1024

    @property
    def retry_base_delay(self) -> float:
        """Convert B2_RETRY_BASE_MS to seconds, never below 100ms."""
        return max(100, self.B2_RETRY_BASE_MS) / 1000

    @property
    def stream_url_min_ttl(self) -> int:
        """Lower bound for client-facing signed URL lifetimes."""
        if self.is_local:
            return self.STREAM_URL_MIN_TTL_SECONDS_LOCAL
        return self.STREAM_URL_MIN_TTL_SECONDS


# Singleton settings instance
settings = Settings()
