from functools import lru_cache
from typing import Literal, Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Global application settings."""

    # Application
    ENVIRONMENT: Literal["local", "development", "production", "test"] = "local"
    LOG_LEVEL: str = "INFO"
    STORE_NAME: str = "Pottery Store"
    CORS_ORIGINS: list[str] = ["http://localhost:3000"]

    # Database
    DATABASE_URL: str
    DB_POOL_SIZE: int = 10
    DB_MAX_OVERFLOW: int = 10
    DB_POOL_TIMEOUT: int = 30
    DB_POOL_RECYCLE: int = 1800

    # Supabase auth
    # Placeholder secret keeps local/test runs working without credentials.
    SUPABASE_JWT_SECRET: str = "test-jwt-secret"

    # Redis (arq queue + rate limit storage)
    REDIS_URL: str = "redis://localhost:6379/0"
    RATE_LIMIT_ENABLED: bool = True
    RATE_LIMIT_STORAGE_URI: str = "memory://"

    # Razorpay
    RAZORPAY_KEY_ID: str = ""
    RAZORPAY_KEY_SECRET: str = ""
    RAZORPAY_BASE_URL: str = "https://api.razorpay.com/v1"
    STORE_CURRENCY: str = "INR"

    # Shiprocket
    SHIPROCKET_EMAIL: str = ""
    SHIPROCKET_PASSWORD: str = ""
    SHIPROCKET_BASE_URL: str = "https://apiv2.shiprocket.in/v1/external"
    SHIPROCKET_PICKUP_LOCATION: str = "Primary"
    SHIPROCKET_WEBHOOK_TOKEN: Optional[str] = None
    SHIPROCKET_TRACKING_URL: str = "https://www.shiprocket.in/tracking/"

    # Postal lookup (India Post pincode directory)
    POSTAL_LOOKUP_URL: str = "https://api.postalpincode.in"
    CHECKOUT_VERIFY_PINCODE: bool = True

    # Stock and fulfillment
    CART_RESERVATION_MINUTES: int = 0  # 0 = reservations are never auto-released
    FULFILLMENT_MAX_ATTEMPTS: int = 5
    FULFILLMENT_RETRY_MINUTES: int = 10

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    @field_validator("DATABASE_URL")
    @classmethod
    def assemble_db_connection(cls, v: Optional[str]) -> str:
        if isinstance(v, str):
            if v.startswith("postgresql://"):
                return v.replace("postgresql://", "postgresql+psycopg://", 1)
        return v


@lru_cache
def get_settings() -> Settings:
    """
    Return the global settings instance, cached.
    """
    return Settings()
