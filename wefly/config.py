import json
import os
from decimal import Decimal
from functools import lru_cache
from typing import Dict, List, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field

from wefly.services.pricing import AddonPrice, PriceTable, PricingMode

load_dotenv()

DEFAULT_ALLOWED_ORIGINS = [
    "https://wefly.com.mx",
    "https://www.wefly.com.mx",
    "http://localhost:3000",
    "http://127.0.0.1:3000",
    "http://localhost:5500",
    "http://127.0.0.1:5500",
]

DEFAULT_ADDON_PRICES = {
    "Desayuno en La Cueva": {"price": "600", "mode": "per_passenger"},
    "Video y fotografía": {"price": "1200", "mode": "flat"},
}


def _env_bool(key: str, default: bool) -> bool:
    raw = os.getenv(key)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _env_list(key: str, default: List[str]) -> List[str]:
    raw = os.getenv(key)
    if not raw:
        return list(default)
    return [item.strip() for item in raw.split(",") if item.strip()]


def _parse_addon_prices(raw: Optional[str]) -> Dict[str, AddonPrice]:
    data = json.loads(raw) if raw else DEFAULT_ADDON_PRICES
    return {
        name: AddonPrice(price=Decimal(str(entry["price"])), mode=PricingMode(entry.get("mode", "flat")))
        for name, entry in data.items()
    }


class Settings(BaseModel):
    """Process-wide configuration, built once at startup and passed around."""

    model_config = ConfigDict(frozen=True)

    # Stripe
    STRIPE_SECRET_KEY: Optional[str] = None
    STRIPE_WEBHOOK_SECRET: Optional[str] = None
    CURRENCY: str = "mxn"
    OXXO_ENABLED: bool = True
    OXXO_EXPIRES_AFTER_DAYS: int = 2
    OXXO_FALLBACK_TO_CARD: bool = False

    # Checkout return URLs
    FRONTEND_URL: str = "https://wefly.com.mx"
    SUCCESS_URL_INCLUDE_SESSION_ID: bool = False

    # Pricing
    PRICE_TABLE: PriceTable = Field(default_factory=lambda: PriceTable(addons=_parse_addon_prices(None)))
    CONFIRMATION_PREFIX: str = "WEF"
    PENDING_EXPIRY_MINUTES: int = 4320

    # SendGrid
    SENDGRID_API_KEY: Optional[str] = None
    EMAIL_FROM: str = "reservaciones@wefly.com.mx"
    STAFF_NOTIFICATION_EMAIL: Optional[str] = None
    SENDGRID_TEMPLATE_CUSTOMER_CONFIRMED: Optional[str] = None
    SENDGRID_TEMPLATE_CUSTOMER_FAILED: Optional[str] = None
    SENDGRID_TEMPLATE_STAFF_CONFIRMED: Optional[str] = None
    SENDGRID_TEMPLATE_STAFF_FAILED: Optional[str] = None

    # Staff endpoints
    STAFF_API_TOKEN: Optional[str] = None

    # HTTP / infra
    ALLOWED_ORIGINS: List[str] = Field(default_factory=lambda: list(DEFAULT_ALLOWED_ORIGINS))
    PROVIDER_TIMEOUT_SECONDS: float = 10.0
    DATABASE_URL: str = "sqlite:///./wefly.db"
    LOG_LEVEL: str = "INFO"

    @property
    def success_url(self) -> str:
        url = f"{self.FRONTEND_URL}/?checkout=success"
        if self.SUCCESS_URL_INCLUDE_SESSION_ID:
            url += "&session_id={CHECKOUT_SESSION_ID}"
        return url

    @property
    def cancel_url(self) -> str:
        return f"{self.FRONTEND_URL}/?checkout=cancel"


def load_settings() -> Settings:
    return Settings(
        STRIPE_SECRET_KEY=os.getenv("STRIPE_SECRET_KEY"),
        STRIPE_WEBHOOK_SECRET=os.getenv("STRIPE_WEBHOOK_SECRET"),
        CURRENCY=os.getenv("CURRENCY", "mxn").lower(),
        OXXO_ENABLED=_env_bool("OXXO_ENABLED", True),
        OXXO_EXPIRES_AFTER_DAYS=int(os.getenv("OXXO_EXPIRES_AFTER_DAYS", "2")),
        OXXO_FALLBACK_TO_CARD=_env_bool("OXXO_FALLBACK_TO_CARD", False),
        FRONTEND_URL=os.getenv("FRONTEND_URL", "https://wefly.com.mx").rstrip("/"),
        SUCCESS_URL_INCLUDE_SESSION_ID=_env_bool("SUCCESS_URL_INCLUDE_SESSION_ID", False),
        PRICE_TABLE=PriceTable(
            adult=Decimal(os.getenv("ADULT_PRICE", "2500")),
            child=Decimal(os.getenv("CHILD_PRICE", "2200")),
            addons=_parse_addon_prices(os.getenv("ADDON_PRICES")),
        ),
        CONFIRMATION_PREFIX=os.getenv("CONFIRMATION_PREFIX", "WEF"),
        PENDING_EXPIRY_MINUTES=int(os.getenv("PENDING_EXPIRY_MINUTES", "4320")),
        SENDGRID_API_KEY=os.getenv("SENDGRID_API_KEY"),
        EMAIL_FROM=os.getenv("EMAIL_FROM", "reservaciones@wefly.com.mx"),
        STAFF_NOTIFICATION_EMAIL=os.getenv("STAFF_NOTIFICATION_EMAIL"),
        SENDGRID_TEMPLATE_CUSTOMER_CONFIRMED=os.getenv("SENDGRID_TEMPLATE_CUSTOMER_CONFIRMED"),
        SENDGRID_TEMPLATE_CUSTOMER_FAILED=os.getenv("SENDGRID_TEMPLATE_CUSTOMER_FAILED"),
        SENDGRID_TEMPLATE_STAFF_CONFIRMED=os.getenv("SENDGRID_TEMPLATE_STAFF_CONFIRMED"),
        SENDGRID_TEMPLATE_STAFF_FAILED=os.getenv("SENDGRID_TEMPLATE_STAFF_FAILED"),
        STAFF_API_TOKEN=os.getenv("STAFF_API_TOKEN"),
        ALLOWED_ORIGINS=_env_list("ALLOWED_ORIGINS", DEFAULT_ALLOWED_ORIGINS),
        PROVIDER_TIMEOUT_SECONDS=float(os.getenv("PROVIDER_TIMEOUT_SECONDS", "10")),
        DATABASE_URL=os.getenv("DATABASE_URL", "sqlite:///./wefly.db"),
        LOG_LEVEL=os.getenv("LOG_LEVEL", "INFO").upper(),
    )


@lru_cache
def get_settings() -> Settings:
    return load_settings()
