from decimal import Decimal
from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    SERVICE_NAME: str = "profit-share-ledger"
    LOG_LEVEL: str = "INFO"

    # Shared secret the payment gateway signs `order_id|payment_id` with
    PAYMENT_KEY_SECRET: str = ""

    ADMIN_SHARE_RATE: Decimal = Decimal("0.5")
    TDS_THRESHOLD: Decimal = Decimal("5000")
    TDS_RATE: Decimal = Decimal("0.10")
    SURCHARGE_THRESHOLD: Decimal = Decimal("50000")
    SURCHARGE_RATE: Decimal = Decimal("0.01")
    REFERRAL_RATE: Decimal = Decimal("0.01")

    MIN_WITHDRAWAL: Decimal = Decimal("1")
    UTR_LENGTH: int = 16
    CLOSURE_DUST_TOLERANCE: Decimal = Decimal("0.5")

    DEFAULT_PAGE_SIZE: int = 20
    # 0 sends emails inline, anything else uses a thread pool of that size
    EMAIL_WORKERS: int = 0


@lru_cache
def get_settings() -> Settings:
    return Settings()


__all__ = ["Settings", "get_settings"]
