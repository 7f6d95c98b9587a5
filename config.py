"""Storefront application settings."""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from common.config import AppConfig, load_env


_DURATION = re.compile(r"^\s*(\d+)\s*([smhd]?)\s*$")
_UNIT_SECONDS = {"": 1, "s": 1, "m": 60, "h": 3600, "d": 86400}


def parse_duration(value: Optional[str], default: int = 24 * 3600) -> int:
    """Parse ``24h`` / ``7d`` / ``30m`` / ``3600`` into seconds."""

    if not value:
        return default
    match = _DURATION.match(value.lower())
    if not match:
        raise ValueError(f"Invalid duration: {value!r}")
    return int(match.group(1)) * _UNIT_SECONDS[match.group(2)]


@dataclass
class VNPayConfig:
    tmn_code: str = ""
    hash_secret: str = ""
    url: str = "https://sandbox.vnpayment.vn/paymentv2/vpcpay.html"
    return_url: str = "http://127.0.0.1:3000/orders/payment/vnpay/callback"


@dataclass
class MoMoConfig:
    partner_code: str = ""
    access_key: str = ""
    secret_key: str = ""
    endpoint: str = "https://test-payment.momo.vn/v2/gateway/api/create"
    return_url: str = "http://127.0.0.1:3000/orders/payment/momo/callback"
    notify_url: str = "http://127.0.0.1:3000/orders/payment/momo/callback"


@dataclass
class MailConfig:
    host: str = "smtp.gmail.com"
    port: int = 587
    user: str = ""
    password: str = ""
    sender: str = ""

    @property
    def enabled(self) -> bool:
        return bool(self.host and self.user and self.password)


@dataclass
class StoreConfig:
    """Everything ``create_app`` needs, loaded from the environment."""

    app: AppConfig
    secret_key: str
    jwt_secret: str
    jwt_expire_seconds: int = 24 * 3600
    vnpay: VNPayConfig = field(default_factory=VNPayConfig)
    momo: MoMoConfig = field(default_factory=MoMoConfig)
    mail: MailConfig = field(default_factory=MailConfig)
    provinces_api_url: str = "https://provinces.open-api.vn/api"
    http_timeout: float = 10.0
    bcrypt_rounds: int = 12
    store_root: Path = field(default_factory=lambda: Path(__file__).resolve().parent)

    @property
    def database_url(self) -> str:
        return self.app.database_url

    @property
    def data_dir(self) -> Path:
        return self.store_root / "data"

    @classmethod
    def load(cls) -> "StoreConfig":
        """Build settings from environment variables (``.env`` honoured)."""

        app_config = load_env()
        secret_key = os.environ.get("SESSION_SECRET", "fashion-store-dev-session")
        jwt_secret = os.environ.get("JWT_SECRET", "fashion-store-dev-jwt")

        config = cls(
            app=app_config,
            secret_key=secret_key,
            jwt_secret=jwt_secret,
            jwt_expire_seconds=parse_duration(os.environ.get("JWT_EXPIRE"), 24 * 3600),
            vnpay=VNPayConfig(
                tmn_code=os.environ.get("VNPAY_TMN_CODE", ""),
                hash_secret=os.environ.get("VNPAY_HASH_SECRET", ""),
                url=os.environ.get("VNPAY_URL", VNPayConfig.url),
                return_url=os.environ.get("VNPAY_RETURN_URL", f"{app_config.store_base_url}/orders/payment/vnpay/callback"),
            ),
            momo=MoMoConfig(
                partner_code=os.environ.get("MOMO_PARTNER_CODE", ""),
                access_key=os.environ.get("MOMO_ACCESS_KEY", ""),
                secret_key=os.environ.get("MOMO_SECRET_KEY", ""),
                endpoint=os.environ.get("MOMO_ENDPOINT", MoMoConfig.endpoint),
                return_url=os.environ.get("MOMO_RETURN_URL", f"{app_config.store_base_url}/orders/payment/momo/callback"),
                notify_url=os.environ.get("MOMO_NOTIFY_URL", f"{app_config.store_base_url}/orders/payment/momo/callback"),
            ),
            mail=MailConfig(
                host=os.environ.get("MAIL_HOST", "smtp.gmail.com"),
                port=int(os.environ.get("MAIL_PORT", "587")),
                user=os.environ.get("MAIL_USER", ""),
                password=os.environ.get("MAIL_PASS", ""),
                sender=os.environ.get("MAIL_FROM", os.environ.get("MAIL_USER", "")),
            ),
            provinces_api_url=os.environ.get("PROVINCES_API_URL", "https://provinces.open-api.vn/api").rstrip("/"),
            http_timeout=float(os.environ.get("HTTP_TIMEOUT", "10")),
            bcrypt_rounds=int(os.environ.get("BCRYPT_ROUNDS", "12")),
        )
        config.data_dir.mkdir(parents=True, exist_ok=True)
        return config
