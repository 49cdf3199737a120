from pydantic_settings import BaseSettings
from pydantic import ConfigDict, Field
from pathlib import Path


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    database_path: str = Field(default="./data/taskaudit.db", description="SQLite database path")

    # HTTP API
    api_host: str = Field(default="0.0.0.0", description="Host the review API binds to")
    api_port: int = Field(default=8080, description="Port the review API binds to")

    # Classifier
    classifier_backend: str = Field(default="http", description="Classifier backend: 'http' or 'claude'")
    classifier_url: str = Field(default="http://localhost:9000/classify", description="HTTP classifier endpoint")
    classifier_api_key: str = Field(default="", description="Bearer token for the HTTP classifier")
    classifier_timeout: float = Field(default=30.0, description="Classifier call timeout in seconds")
    anthropic_api_key: str = Field(default="", description="Anthropic API key for the Claude classifier")
    claude_model: str = Field(default="claude-sonnet-4-20250514", description="Claude model used for review")

    # Automated review policy
    ai_pass_confidence: float = Field(default=0.7, description="Minimum confidence for an automated pass")
    ai_max_attempts: int = Field(default=2, description="Automated review attempts before final rejection")
    ai_base_delay_seconds: float = Field(default=1.0, description="Base delay between automated review attempts")
    ai_recovery_interval_minutes: int = Field(default=10, description="Interval for rescheduling stalled reviews")

    # Submissions
    dedup_window_days: int = Field(default=30, description="Window in which a reused content hash is a duplicate")
    max_images_per_submission: int = Field(default=9, description="Maximum images on one submission")
    comment_limit_per_author: int = Field(
        default=2,
        description="Approved comments allowed per note URL and author nickname",
    )

    # Ledger
    points_per_unit: int = Field(default=100, description="Initial points-per-currency-unit exchange rate")
    settle_on_manager_approval: bool = Field(
        default=True,
        description="Credit commissions immediately when a manager approves",
    )

    # Continuous note check
    continuous_check_enabled: bool = Field(default=True, description="Enable the daily note survival check")
    continuous_check_days: int = Field(default=7, description="Number of days a settled note is checked")
    continuous_check_reward: int = Field(default=30, description="Reward per surviving day, in points")
    continuous_check_hour: int = Field(default=9, description="Hour of day (Asia/Shanghai) the check runs")

    # Cache
    cache_ttl_seconds: int = Field(default=300, description="Default cache entry lifetime")
    cache_sweep_interval_seconds: int = Field(default=60, description="Interval of the cache eviction sweep")

    model_config = ConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",  # Allow extra fields in .env
    )

    @property
    def db_path(self) -> Path:
        """Return database path as Path object."""
        return Path(self.database_path)

    @property
    def use_claude(self) -> bool:
        """Return True when the Claude classifier is configured."""
        return self.classifier_backend.lower() == "claude"


# Global settings instance
settings = Settings()
