from pydantic_settings import BaseSettings
from pydantic import field_validator
from decimal import Decimal
from functools import lru_cache
import json


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    DATABASE_URL: str

    # Database Connection Pool Settings
    DB_POOL_SIZE: int = 10
    DB_MAX_OVERFLOW: int = 20
    DB_POOL_TIMEOUT: int = 30
    DB_POOL_RECYCLE: int = 1800

    # JWT Settings
    SECRET_KEY: str
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60 * 24 * 7
    ADMIN_TOKEN_EXPIRE_MINUTES: int = 60 * 24
    DELIVERY_BOY_TOKEN_EXPIRE_MINUTES: int = 60 * 24 * 7
    BCRYPT_ROUNDS: int = 12

    # App Settings
    APP_NAME: str = "MilkCart Backend"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    ENVIRONMENT: str = "development"
    API_PREFIX: str = "/api/v1"

    # CORS - accepts JSON string, comma-separated, or list
    CORS_ORIGINS: list[str] = [
        "http://localhost:3000",
        "http://localhost:5173",
    ]

    # System administrator (not stored in the users table)
    ADMIN_EMAIL: str = "admin@milkcart.in"
    ADMIN_PASSWORD: str = ""

    # Delivery scheduling
    TIMEZONE: str = "Asia/Kolkata"
    ORDER_BOOKING_DAYS: int = 7
    EVENING_DELIVERY_ENABLED: bool = False
    SHIPPING_FEE: Decimal = Decimal("50")

    # Subscriptions
    SUBSCRIPTION_START_WINDOW_DAYS: int = 30

    # UPI payments
    ADMIN_UPI_ID: str = "admin@paytm"
    ADMIN_UPI_NAME: str = "MilkCart Admin"
    PAYMENT_TIMEOUT_MINUTES: int = 30
    QR_CODE_SIZE: int = 256

    # Account security
    EMAIL_VERIFICATION_CODE_EXPIRE_MINUTES: int = 10
    MAX_LOGIN_ATTEMPTS: int = 5
    ACCOUNT_LOCK_MINUTES: int = 120

    # Background jobs
    SCHEDULER_ENABLED: bool = True
    PAYMENT_EXPIRY_SWEEP_MINUTES: int = 5
    SUBSCRIPTION_EXPIRY_HOUR: int = 0

    # Email/SMTP Settings
    SMTP_HOST: str = "smtp.gmail.com"
    SMTP_PORT: int = 587
    SMTP_USER: str = ""
    SMTP_PASSWORD: str = ""
    SMTP_FROM_EMAIL: str = ""  # defaults to SMTP_USER
    SMTP_FROM_NAME: str = "MilkCart"
    SMTP_USE_TLS: bool = True

    @field_validator('CORS_ORIGINS', mode='before')
    @classmethod
    def parse_cors_origins(cls, v):
        if isinstance(v, str):
            try:
                return json.loads(v)
            except json.JSONDecodeError:
                return [origin.strip() for origin in v.split(',')]
        return v

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
