"""Configuration settings loaded from environment variables."""

from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict

LIVE_PAYMENT_BASE_URL = "https://business.mamopay.com"
SANDBOX_PAYMENT_BASE_URL = "https://sandbox.dev.business.mamopay.com"


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = "charter-engine"
    environment: str = "development"

    # Database
    database_url: str = "sqlite+aiosqlite:///./charter.db"

    # Payment provider
    payment_base_url: str = ""
    payment_api_key: str = ""
    payment_currency: str = "AED"
    payment_processing_fee_percentage: int = 4
    payment_method_label: str = "Mamo Pay"

    # Background jobs
    installment_scheduler_hour: int = 9
    installment_scheduler_minute: int = 0
    poll_interval_override_seconds: Optional[int] = None
    link_check_throttle_override_seconds: Optional[int] = None
    cache_cleanup_interval_seconds: int = 60 * 60

    # Notifications
    admin_email: str = "web@bookthatboat.com"
    email_from: str = "noreply@bookthatboat.com"
    resend_api_key: str = ""
    brand_name: str = "Book That Boat"

    # URLs
    frontend_base_url: str = "https://bookthatboat.com"

    # Logging
    log_level: str = "INFO"

    # Health server
    health_host: str = "127.0.0.1"
    health_port: int = 8000

    @property
    def is_production(self) -> bool:
        """Whether the process runs against production services."""
        return self.environment.strip().lower() == "production"

    @property
    def resolved_payment_base_url(self) -> str:
        """Provider base URL, defaulting to sandbox outside production."""
        if self.payment_base_url:
            return self.payment_base_url.rstrip("/")
        return LIVE_PAYMENT_BASE_URL if self.is_production else SANDBOX_PAYMENT_BASE_URL

    @property
    def poll_interval_seconds(self) -> int:
        """Settlement poller period."""
        if self.poll_interval_override_seconds:
            return self.poll_interval_override_seconds
        return 30 * 60 if self.is_production else 15

    @property
    def link_check_throttle_seconds(self) -> int:
        """Minimum gap between two status checks of the same payment link."""
        if self.link_check_throttle_override_seconds:
            return self.link_check_throttle_override_seconds
        return 60 if self.is_production else 20

    @property
    def rate_limit_cooldown_seconds(self) -> int:
        """Cooldown after a 429 without a usable retry-after header."""
        return 60 if self.is_production else 20

    @property
    def auth_cooldown_seconds(self) -> int:
        """Cooldown after the provider rejects our credentials."""
        return 30 * 60 if self.is_production else 60

    @property
    def success_url(self) -> str:
        return f"{self.frontend_base_url.rstrip('/')}/payment-success"

    @property
    def failure_url(self) -> str:
        return f"{self.frontend_base_url.rstrip('/')}/payment-failure"


def load_settings() -> Settings:
    """Load and validate settings from environment."""
    return Settings()
