"""Application settings and configuration.

This module defines all configuration options for the Media Gate service.
Settings are loaded from environment variables with sensible defaults.
"""

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_VISUAL_CATEGORY_THRESHOLDS: dict[str, float] = {
    "adult": 0.8,
    "racy": 0.9,
    "violence": 0.7,
    "weapon": 0.8,
    "drugs": 0.8,
    "hate_symbol": 0.6,
    "obscene_gesture": 0.6,
}


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Settings can be overridden via environment variables or .env files.
    """

    # Application metadata
    app_name: str = Field(default="Media Gate", alias="APP_NAME")
    app_version: str = Field(default="0.1.0", alias="APP_VERSION")
    debug: bool = Field(default=False, alias="DEBUG")

    # Database configuration
    database_url: str = Field(default="sqlite:///./media_gate.db", alias="DATABASE_URL")
    test_database_url: str | None = Field(default=None, alias="TEST_DATABASE_URL")
    use_testing_database: bool = Field(default=False, alias="USE_TEST_DATABASE")
    sql_debug: bool = Field(default=False, alias="SQL_DEBUG")

    # Worker pool
    worker_count: int = Field(default=4, alias="WORKER_COUNT")
    worker_queue_size: int = Field(default=1000, alias="WORKER_QUEUE_SIZE")

    # Retry policy for durable storage and CDN publishing
    store_retry_max_attempts: int = Field(default=5, alias="STORE_RETRY_MAX_ATTEMPTS")
    publish_retry_max_attempts: int = Field(default=3, alias="PUBLISH_RETRY_MAX_ATTEMPTS")
    retry_base_delay_seconds: float = Field(default=0.5, alias="RETRY_BASE_DELAY_SECONDS")
    retry_max_delay_seconds: float = Field(default=30.0, alias="RETRY_MAX_DELAY_SECONDS")

    # Per-channel analysis timeouts
    visual_analysis_timeout_seconds: float = Field(
        default=240.0,
        alias="VISUAL_ANALYSIS_TIMEOUT_SECONDS",
    )
    transcription_timeout_seconds: float = Field(
        default=180.0,
        alias="TRANSCRIPTION_TIMEOUT_SECONDS",
    )

    # Recovery sweep
    recovery_enabled: bool = Field(default=True, alias="RECOVERY_ENABLED")
    recovery_interval_seconds: float = Field(default=60.0, alias="RECOVERY_INTERVAL_SECONDS")
    recovery_staleness_seconds: float = Field(default=900.0, alias="RECOVERY_STALENESS_SECONDS")
    recovery_max_attempts: int = Field(default=3, alias="RECOVERY_MAX_ATTEMPTS")
    recovery_batch_size: int = Field(default=25, alias="RECOVERY_BATCH_SIZE")

    # Policy thresholds
    text_toxicity_threshold: float = Field(default=0.7, alias="TEXT_TOXICITY_THRESHOLD")
    video_text_toxicity_threshold: float = Field(
        default=0.5,
        alias="VIDEO_TEXT_TOXICITY_THRESHOLD",
    )
    visual_category_thresholds: dict[str, float] = Field(
        default_factory=lambda: dict(DEFAULT_VISUAL_CATEGORY_THRESHOLDS),
        alias="VISUAL_CATEGORY_THRESHOLDS",
    )
    disallowed_pose_flags: list[str] = Field(
        default=["obscene_gesture", "middle_finger"],
        alias="DISALLOWED_POSE_FLAGS",
    )

    # Shared analysis service authentication
    analysis_shared_secret: str | None = Field(default=None, alias="ANALYSIS_SHARED_SECRET")
    analysis_audience: str = Field(default="media-analysis", alias="ANALYSIS_JWT_AUD")
    analysis_token_ttl_seconds: int = Field(default=300, alias="ANALYSIS_TOKEN_TTL_SECONDS")

    # Visual analysis service
    visual_base_url: str = Field(default="http://localhost:8101", alias="VISUAL_BASE_URL")
    visual_api_key: str | None = Field(default=None, alias="VISUAL_API_KEY")
    visual_http_timeout_seconds: float = Field(default=240.0, alias="VISUAL_HTTP_TIMEOUT_SECONDS")

    # Transcription service
    transcription_base_url: str = Field(
        default="http://localhost:8102",
        alias="TRANSCRIPTION_BASE_URL",
    )
    transcription_api_key: str | None = Field(default=None, alias="TRANSCRIPTION_API_KEY")
    transcription_http_timeout_seconds: float = Field(
        default=180.0,
        alias="TRANSCRIPTION_HTTP_TIMEOUT_SECONDS",
    )

    # Durable object store
    object_store_base_url: str = Field(
        default="http://localhost:8103",
        alias="OBJECT_STORE_BASE_URL",
    )
    object_store_bucket: str = Field(default="media-gate-raw", alias="OBJECT_STORE_BUCKET")
    object_store_api_key: str | None = Field(default=None, alias="OBJECT_STORE_API_KEY")
    object_store_http_timeout_seconds: float = Field(
        default=120.0,
        alias="OBJECT_STORE_HTTP_TIMEOUT_SECONDS",
    )

    # CDN / streaming library
    cdn_base_url: str = Field(default="https://video.bunnycdn.com", alias="CDN_BASE_URL")
    cdn_library_id: str = Field(default="local", alias="CDN_LIBRARY_ID")
    cdn_api_key: str | None = Field(default=None, alias="CDN_API_KEY")
    cdn_http_timeout_seconds: float = Field(default=300.0, alias="CDN_HTTP_TIMEOUT_SECONDS")

    # Circuit breaker shared by all service clients
    circuit_failure_threshold: int = Field(default=5, alias="CIRCUIT_FAILURE_THRESHOLD")
    circuit_recovery_seconds: float = Field(default=60.0, alias="CIRCUIT_RECOVERY_SECONDS")

    # CORS configuration for the upload front door
    cors_origins: list[str] = Field(
        default=["*"],
        alias="CORS_ORIGINS",
    )
    cors_allow_credentials: bool = Field(default=True, alias="CORS_ALLOW_CREDENTIALS")
    cors_allow_methods: list[str] = Field(
        default=["GET", "POST", "OPTIONS"],
        alias="CORS_ALLOW_METHODS",
    )
    cors_allow_headers: list[str] = Field(
        default=["*"],
        alias="CORS_ALLOW_HEADERS",
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        validate_assignment=True,
        extra="ignore",
    )

    @field_validator(
        "worker_count",
        "worker_queue_size",
        "store_retry_max_attempts",
        "publish_retry_max_attempts",
        "recovery_max_attempts",
        "recovery_batch_size",
    )
    @classmethod
    def _positive_count(cls, value: int) -> int:
        if value < 1:
            raise ValueError("must be at least 1")
        return value

    @field_validator(
        "retry_base_delay_seconds",
        "visual_analysis_timeout_seconds",
        "transcription_timeout_seconds",
        "recovery_interval_seconds",
        "recovery_staleness_seconds",
    )
    @classmethod
    def _positive_duration(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("must be positive")
        return value

    @field_validator("text_toxicity_threshold", "video_text_toxicity_threshold")
    @classmethod
    def _unit_interval(cls, value: float) -> float:
        if not 0.0 <= value <= 1.0:
            raise ValueError("must be between 0 and 1")
        return value

    @field_validator("visual_category_thresholds")
    @classmethod
    def _category_thresholds(cls, value: dict[str, float]) -> dict[str, float]:
        for category, threshold in value.items():
            if not 0.0 <= threshold <= 1.0:
                raise ValueError(f"threshold for {category!r} must be between 0 and 1")
        return value

    @model_validator(mode="after")
    def _analysis_requests_fit_channel_timeouts(self) -> "Settings":
        if self.visual_http_timeout_seconds > self.visual_analysis_timeout_seconds:
            raise ValueError(
                "VISUAL_HTTP_TIMEOUT_SECONDS must not exceed VISUAL_ANALYSIS_TIMEOUT_SECONDS"
            )
        if self.transcription_http_timeout_seconds > self.transcription_timeout_seconds:
            raise ValueError(
                "TRANSCRIPTION_HTTP_TIMEOUT_SECONDS must not exceed TRANSCRIPTION_TIMEOUT_SECONDS"
            )
        return self

    @model_validator(mode="after")
    def _staleness_exceeds_heartbeat_gap(self) -> "Settings":
        # Workers refresh updated_at before every remote call, so the longest
        # silence is one call plus one backoff sleep, or the analysis fan-out.
        longest_gap = max(
            self.visual_analysis_timeout_seconds,
            self.transcription_timeout_seconds,
            self.object_store_http_timeout_seconds + self.retry_max_delay_seconds,
            self.cdn_http_timeout_seconds + self.retry_max_delay_seconds,
        )
        if self.recovery_staleness_seconds <= longest_gap:
            raise ValueError(
                "RECOVERY_STALENESS_SECONDS must exceed the longest gap between heartbeats"
            )
        return self

    @property
    def database_url_sync(self) -> str:
        """Return a sync-compatible database URL for tooling.

        Converts asyncpg URLs to psycopg for synchronous database operations
        like Alembic migrations.
        """
        url = self.effective_database_url
        if url.startswith("postgresql+asyncpg"):
            return url.replace("postgresql+asyncpg", "postgresql+psycopg", 1)
        return url

    @property
    def effective_database_url(self) -> str:
        """Return the database URL respecting testing overrides."""
        if self.use_testing_database and self.test_database_url:
            return self.test_database_url
        return self.database_url


settings = Settings()
