import os
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from dotenv import load_dotenv


@dataclass
class AppConfig:
    database_url: str
    log_level: str
    store_base_url: str
    currency: str
    free_shipping_threshold: Decimal = Decimal("500000")
    shipping_fee: Decimal = Decimal("30000")

    def get_store_url(self, path: str = "") -> str:
        base = self.store_base_url.rstrip("/")
        return f"{base}/{path.lstrip('/')}" if path else base

    def get_product_url(self, slug: str) -> str:
        return self.get_store_url(f"products/{slug}")

    def get_order_url(self, order_code: str) -> str:
        return self.get_store_url(f"orders/{order_code}/confirmation")


def validate_currency(value: Optional[str]) -> str:
    v = (value or "VND").strip().upper()
    if len(v) != 3:
        raise ValueError("Invalid currency code: expected ISO4217 length 3")
    return v


def _decimal_env(name: str, default: str) -> Decimal:
    raw = os.getenv(name)
    try:
        return Decimal(raw) if raw not in (None, "") else Decimal(default)
    except ArithmeticError:
        raise ValueError(f"{name} must be a number") from None


def load_env() -> AppConfig:
    # .env is a fallback; real environment variables win
    load_dotenv(override=False)
    return AppConfig(
        database_url=os.getenv("DATABASE_URL", "sqlite:///data/store.db"),
        log_level=os.getenv("LOG_LEVEL", "INFO"),
        store_base_url=(os.getenv("BASE_URL") or "http://127.0.0.1:3000").rstrip("/"),
        currency=validate_currency(os.getenv("CURRENCY")),
        free_shipping_threshold=_decimal_env("FREE_SHIPPING_THRESHOLD", "500000"),
        shipping_fee=_decimal_env("SHIPPING_FEE", "30000"),
    )
