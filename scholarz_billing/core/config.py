from functools import lru_cache
from pydantic import AnyHttpUrl, Field
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List, Optional


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore", populate_by_name=True)

    app_name: str = "Scholarz Billing API"
    environment: str = Field(default="development", validation_alias="ENVIRONMENT")
    debug: bool = Field(default=False, validation_alias="DEBUG")

    database_url: str = Field(..., validation_alias="DATABASE_URL")
    redis_url: str = Field(..., validation_alias="REDIS_URL")

    # Bearer tokens are issued by the identity service; we only verify them
    jwt_secret_key: Optional[str] = Field(default=None, validation_alias="JWT_SECRET_KEY")
    jwt_algorithm: str = Field(default="HS256", validation_alias="JWT_ALGORITHM")
    jwt_issuer: Optional[str] = Field(default=None, validation_alias="JWT_ISSUER")
    jwt_audience: Optional[str] = Field(default=None, validation_alias="JWT_AUDIENCE")
    jwt_clock_skew_seconds: int = Field(default=30, validation_alias="JWT_CLOCK_SKEW_SECONDS")
    jwt_expire_minutes: int = Field(default=15, validation_alias="JWT_EXPIRE_MINUTES")
    internal_api_token: Optional[str] = Field(default=None, validation_alias="INTERNAL_API_TOKEN")

    cors_origins: List[AnyHttpUrl] = Field(default_factory=list, validation_alias="CORS_ORIGINS")

    # PayPal client id/secret are NOT settings: they are resolved per call (see core.credentials)
    paypal_legacy_config_path: Optional[str] = Field(default=".runtimeconfig.json", validation_alias="PAYPAL_LEGACY_CONFIG_PATH")
    paypal_timeout_seconds: float = Field(default=15.0, validation_alias="PAYPAL_TIMEOUT_SECONDS")
    paypal_brand_name: str = Field(default="Scholarz", validation_alias="PAYPAL_BRAND_NAME")
    paypal_plan_create_attempts: int = Field(default=3, validation_alias="PAYPAL_PLAN_CREATE_ATTEMPTS")
    paypal_plan_backoff_seconds: float = Field(default=0.5, validation_alias="PAYPAL_PLAN_BACKOFF_SECONDS")
    default_return_url: str = Field(default="https://scholarz.co.za/payments/success", validation_alias="PAYMENT_RETURN_URL")
    default_cancel_url: str = Field(default="https://scholarz.co.za/payments/cancelled", validation_alias="PAYMENT_CANCEL_URL")

    plan_status_cache_ttl_seconds: int = Field(default=900, validation_alias="PLAN_STATUS_CACHE_TTL_SECONDS")
    sync_hour_utc: int = Field(default=2, validation_alias="SYNC_HOUR_UTC")
    sync_concurrency: int = Field(default=10, validation_alias="SYNC_CONCURRENCY")


@lru_cache()
def get_settings() -> Settings:
    return Settings()
