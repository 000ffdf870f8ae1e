"""
Application configuration using pydantic-settings.
All config is validated at startup - fail fast if anything is missing.
"""
from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    # Application
    app_env: str = "development"
    app_host: str = "0.0.0.0"
    app_port: int = 8000
    log_level: str = "INFO"
    app_base_url: str = "http://localhost:8000"

    # Database
    database_url: str
    database_pool_size: int = 20
    database_max_overflow: int = 10

    # Redis (campaign locks, worker heartbeat)
    redis_url: str = "redis://localhost:6379/0"

    # Sentry
    sentry_dsn: str = ""

    # Cron trigger - when set, POST /run-cycle requires "Authorization: Bearer <secret>"
    cron_secret: str = ""

    # Sequence runner
    runner_enabled: bool = True
    runner_poll_interval_seconds: int = 60
    runner_batch_size: int = 50
    runner_claim_lease_seconds: int = 300

    # Delivery pacing
    default_send_timezone: str = "America/Chicago"

    # Enrollment policy: when False, any prior enrollment (even cancelled/failed)
    # blocks re-enrollment in the same campaign
    allow_reenrollment: bool = False

    # Stats
    recent_activity_limit: int = 10

    # Twilio (sms)
    twilio_account_sid: str = ""
    twilio_auth_token: str = ""
    twilio_messaging_service_sid: str = ""
    twilio_from_phone: str = ""

    # SendGrid (email)
    sendgrid_api_key: str = ""
    sendgrid_from_email: str = "marketing@cadence.local"
    sendgrid_from_name: str = "Cadence"

    # WhatsApp Cloud API
    whatsapp_access_token: str = ""
    whatsapp_phone_number_id: str = ""
    whatsapp_api_version: str = "v21.0"
    whatsapp_timeout_seconds: float = 10.0

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


@lru_cache()
def get_settings() -> Settings:
    return Settings()
