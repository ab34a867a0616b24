from __future__ import annotations
import logging
from functools import lru_cache
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    DATABASE_URL: str = "mongodb://localhost:27017"
    DATABASE_NAME: str = "storefront"

    STRIPE_SECRET_KEY: str = ""
    STRIPE_WEBHOOK_SECRET: str = ""
    FRONTEND_URL: str = "http://localhost:3000"

    # Bearer token accepted by the admin endpoints
    ADMIN_API_TOKEN: str = ""
    CORS_ORIGINS: list[str] = ["*"]

    TAX_RATE: float = 0.08
    FREE_SHIPPING_THRESHOLD: float = 50.0
    SHIPPING_FEE: float = 10.0
    CURRENCY: str = "usd"
    SHIPPING_COUNTRIES: list[str] = ["US", "CA"]
    LOW_STOCK_THRESHOLD: int = 10

    LOG_LEVEL: str = "INFO"


@lru_cache
def get_settings() -> Settings:
    return Settings()


settings = get_settings()


def configure_logging(level: str | None = None) -> None:
    logging.basicConfig(
        level=(level or settings.LOG_LEVEL).upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
