"""
Application settings loaded from environment variables.
Uses pydantic-settings for validation and .env file support.
"""
from typing import List

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application configuration settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Database
    database_url: str = Field(
        default="sqlite:///./counselbook.db",
        description="SQLAlchemy connection string (postgresql+psycopg2://... in production)"
    )
    auto_create_tables: bool = Field(
        default=False,
        description="Create tables on startup instead of relying on migrations"
    )

    # JWT (verification only, tokens are issued by the auth service)
    jwt_secret: str = Field(
        default="change-me-in-prod",
        description="Secret key for JWT token verification"
    )
    jwt_algorithm: str = Field(
        default="HS256",
        description="JWT signing algorithm"
    )

    # Payment gateway (Razorpay orders API)
    razorpay_key_id: str = Field(default="", description="Razorpay key id")
    razorpay_key_secret: str = Field(
        default="",
        description="Razorpay key secret, also the HMAC secret for payment signatures"
    )
    razorpay_api_base: str = Field(
        default="https://api.razorpay.com/v1",
        description="Razorpay REST API base URL"
    )
    payment_gateway_timeout_seconds: float = Field(
        default=10.0,
        description="Network timeout for payment gateway calls"
    )
    session_price_amount: int = Field(
        default=50000,  # 500.00 INR in paise
        description="Default session price in the smallest currency unit"
    )
    session_price_currency: str = Field(default="INR", description="Default session currency")

    # Email
    email_provider: str = Field(
        default="console",
        description="Email delivery provider: console or smtp"
    )
    smtp_host: str = Field(default="smtp.gmail.com", description="SMTP server host")
    smtp_port: int = Field(default=587, description="SMTP server port")
    smtp_username: str = Field(default="", description="SMTP username/email")
    smtp_password: str = Field(default="", description="SMTP password/app password")
    smtp_from_email: str = Field(default="", description="From email address")
    smtp_from_name: str = Field(default="Groom", description="From name")

    # Notification queue
    notification_max_attempts: int = Field(
        default=5,
        description="Delivery attempts before a notification task is marked failed"
    )
    notification_retry_base_seconds: int = Field(
        default=30,
        description="Base delay for exponential notification retry backoff"
    )
    notification_retry_max_seconds: int = Field(
        default=3600,
        description="Upper bound for the notification retry delay"
    )
    notification_batch_size: int = Field(
        default=20,
        description="Tasks claimed per worker pass"
    )
    notification_worker_interval_seconds: int = Field(
        default=60,
        description="How often the scheduler drains the notification queue"
    )
    scheduler_enabled: bool = Field(
        default=True,
        description="Start the background scheduler with the API process"
    )

    # Application
    app_name: str = Field(default="Groom Booking Service", description="Application name")
    app_base_url: str = Field(
        default="http://localhost:3000",
        description="Public web app URL, used for meeting links"
    )
    cors_origins: List[str] = Field(
        default=[
            "http://localhost:3000",  # Next.js dev server
            "http://127.0.0.1:3000",
        ],
        description="Allowed CORS origins"
    )
    debug: bool = Field(default=False, description="Debug mode")


# Global settings instance
settings = Settings()
