"""
Application configuration.
Values come from environment variables / the .env file. Trial policy
numbers live here too so ops can tune them without a deploy.
"""
import logging
from pydantic_settings import BaseSettings

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    APP_ENV: str = "development"
    APP_URL: str = "http://localhost:8000"
    DATABASE_URL: str

    # SendGrid Email
    SENDGRID_API_KEY: str = ""
    SENDGRID_FROM_EMAIL: str = "no-reply@kalliky.com"
    SENDGRID_FROM_NAME: str = "Kalliky"

    # Telnyx
    TELNYX_API_KEY: str = ""
    TELNYX_API_BASE: str = "https://api.telnyx.com/v2"
    TELNYX_TIMEOUT_SECONDS: float = 10.0
    TELNYX_DEFAULT_WEBHOOK_URL: str = ""
    TELNYX_DEFAULT_FAILOVER_URL: str = ""

    # Stripe Billing
    STRIPE_API_KEY: str = ""
    STRIPE_WEBHOOK_SECRET: str = ""

    # Shared secret presented by the scheduler in X-Cron-Secret
    CRON_SECRET: str = ""

    # Trial policy
    TRIAL_CALLS_LIMIT: int = 10
    TRIAL_DAYS_LIMIT: int = 15
    TRIAL_WARNING_CALLS_USED: int = 8
    TRIAL_WARNING_DAYS_REMAINING: int = 3
    TRIAL_DELETION_DELAY_DAYS: int = 5
    TRIAL_DELETION_WARNING_DELAY_DAYS: int = 3

    class Config:
        env_file = ".env"

    @property
    def blocked_call_webhook_url(self) -> str:
        return f"{self.APP_URL}/api/v1/telnyx/blocked-call-handler"

    @property
    def blocked_call_failover_url(self) -> str:
        return f"{self.APP_URL}/api/v1/telnyx/blocked-call-failover"

    @property
    def default_webhook_url(self) -> str:
        return self.TELNYX_DEFAULT_WEBHOOK_URL or f"{self.APP_URL}/api/telnyx/webhook"

    @property
    def default_failover_url(self) -> str:
        return self.TELNYX_DEFAULT_FAILOVER_URL or f"{self.APP_URL}/api/telnyx/webhooks"


settings = Settings()

if not settings.CRON_SECRET:
    logger.warning("CRON_SECRET is not set; cron and admin endpoints are disabled.")
