"""Application settings and configuration.

This module defines all configuration options for the gitdrop service.
Settings are loaded from environment variables with sensible defaults.
"""

from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

MIN_SECRET_LENGTH = 32
MIN_KDF_ITERATIONS = 100_000


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Settings can be overridden via environment variables or .env files.
    """

    # Application metadata
    app_name: str = Field(default="gitdrop", alias="APP_NAME")
    app_version: str = Field(default="0.1.0", alias="APP_VERSION")
    debug: bool = Field(default=False, alias="DEBUG")

    # Credential encryption
    encryption_secret: str = Field(alias="ENCRYPTION_SECRET")
    kdf_iterations: int = Field(default=MIN_KDF_ITERATIONS, alias="KDF_ITERATIONS")

    # Persisted state
    data_dir: Path = Field(default=Path("./data"), alias="DATA_DIR")
    credentials_filename: str = Field(default="user_tokens.json", alias="CREDENTIALS_FILENAME")
    salt_filename: str = Field(default="installation.salt", alias="SALT_FILENAME")

    # Store lock tuning
    lock_timeout_seconds: float = Field(default=5.0, alias="LOCK_TIMEOUT_SECONDS")
    lock_stale_seconds: float = Field(default=5.0, alias="LOCK_STALE_SECONDS")
    lock_retry_delay_seconds: float = Field(default=0.05, alias="LOCK_RETRY_DELAY_SECONDS")
    lock_use_native: bool = Field(default=True, alias="LOCK_USE_NATIVE")

    # Archive bomb bounds
    archive_max_total_bytes: int = Field(
        default=500 * 1024 * 1024, alias="ARCHIVE_MAX_TOTAL_BYTES"
    )
    archive_max_ratio: float = Field(default=100.0, alias="ARCHIVE_MAX_RATIO")
    archive_max_entries: int = Field(default=10_000, alias="ARCHIVE_MAX_ENTRIES")

    # Attachment download bounds
    download_max_bytes: int = Field(default=50 * 1024 * 1024, alias="DOWNLOAD_MAX_BYTES")
    download_timeout_seconds: float = Field(default=60.0, alias="DOWNLOAD_TIMEOUT_SECONDS")

    # Publish pipeline tuning
    publish_batch_size: int = Field(default=5, alias="PUBLISH_BATCH_SIZE")
    publish_max_attempts: int = Field(default=3, alias="PUBLISH_MAX_ATTEMPTS")
    publish_backoff_base_seconds: float = Field(
        default=0.5, alias="PUBLISH_BACKOFF_BASE_SECONDS"
    )
    progress_min_interval_seconds: float = Field(
        default=1.0, alias="PROGRESS_MIN_INTERVAL_SECONDS"
    )

    # Per-identity command throttling
    rate_cooldown_seconds: float = Field(default=2.0, alias="RATE_COOLDOWN_SECONDS")
    rate_window_seconds: float = Field(default=60.0, alias="RATE_WINDOW_SECONDS")
    rate_max_commands: int = Field(default=10, alias="RATE_MAX_COMMANDS")
    rate_sweep_interval_seconds: float = Field(
        default=300.0, alias="RATE_SWEEP_INTERVAL_SECONDS"
    )

    # Source-hosting service
    github_api_url: str = Field(default="https://api.github.com", alias="GITHUB_API_URL")
    github_web_url: str = Field(default="https://github.com", alias="GITHUB_WEB_URL")
    github_http_timeout_seconds: float = Field(
        default=30.0, alias="GITHUB_HTTP_TIMEOUT_SECONDS"
    )

    # Token scope policy
    required_token_scopes: list[str] = Field(
        default=["repo"],
        alias="REQUIRED_TOKEN_SCOPES",
    )
    allow_unscoped_tokens: bool = Field(default=False, alias="ALLOW_UNSCOPED_TOKENS")

    # CORS configuration for web frontend access
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

    @field_validator("encryption_secret")
    @classmethod
    def _check_secret_length(cls, value: str) -> str:
        if len(value) < MIN_SECRET_LENGTH:
            raise ValueError(
                f"ENCRYPTION_SECRET must be at least {MIN_SECRET_LENGTH} characters long"
            )
        return value

    @field_validator("kdf_iterations")
    @classmethod
    def _check_iterations(cls, value: int) -> int:
        if value < MIN_KDF_ITERATIONS:
            raise ValueError(f"KDF_ITERATIONS must be at least {MIN_KDF_ITERATIONS}")
        return value

    @property
    def credentials_path(self) -> Path:
        """Return the location of the encrypted credential map."""
        return self.data_dir / self.credentials_filename

    @property
    def salt_path(self) -> Path:
        """Return the location of the installation salt file."""
        return self.data_dir / self.salt_filename


settings = Settings()  # type: ignore[call-arg]
