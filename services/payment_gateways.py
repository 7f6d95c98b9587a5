"""VNPay / MoMo payment adapters and the COD descriptor."""

from __future__ import annotations

import base64
import hashlib
import hmac
from dataclasses import dataclass
from datetime import datetime
from io import BytesIO
from typing import Any, Dict, Mapping, Optional
from urllib.parse import urlencode

import qrcode
import requests
from qrcode.image.pil import PilImage

from common.errors import UpstreamError
from common.services.logging import log_event
from config import MoMoConfig, VNPayConfig


@dataclass
class PaymentResult:
    """Outcome of verifying a provider callback."""

    success: bool
    signature_valid: bool
    order_code: Optional[str] = None
    transaction_id: Optional[str] = None
    amount: Optional[int] = None
    message: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "signature_valid": self.signature_valid,
            "order_code": self.order_code,
            "transaction_id": self.transaction_id,
            "amount": self.amount,
            "message": self.message,
        }


def _invalid_signature() -> PaymentResult:
    return PaymentResult(success=False, signature_valid=False, message="Invalid signature")


def _hmac_hex(secret: str, data: str, digest) -> str:
    return hmac.new(secret.encode("utf-8"), data.encode("utf-8"), digest).hexdigest()


def qr_data_url(content: str) -> str:
    """Render ``content`` as a PNG QR code embedded in a data URL."""

    image = qrcode.make(content, image_factory=PilImage)
    buffer = BytesIO()
    image.save(buffer)
    b64 = base64.b64encode(buffer.getvalue()).decode("ascii")
    return f"data:image/png;base64,{b64}"


def cod_payment() -> Dict[str, str]:
    return {
        "method": "cod",
        "status": "pending",
        "message": "Đơn hàng sẽ được thanh toán khi nhận hàng",
    }


class VNPayGateway:
    """Redirect-based VNPay checkout signed with HMAC-SHA512."""

    version = "2.1.0"

    def __init__(self, config: VNPayConfig) -> None:
        self._config = config

    @staticmethod
    def _sign_data(params: Mapping[str, Any]) -> str:
        return urlencode(sorted((k, str(v)) for k, v in params.items()))

    def sign(self, params: Mapping[str, Any]) -> str:
        return _hmac_hex(self._config.hash_secret, self._sign_data(params), hashlib.sha512)

    def create_payment_url(
        self,
        order: Mapping[str, Any],
        *,
        client_ip: str = "127.0.0.1",
        now: Optional[datetime] = None,
    ) -> Dict[str, str]:
        if not self._config.tmn_code or not self._config.hash_secret:
            raise UpstreamError("VNPay chưa được cấu hình")
        code = order["order_code"]
        params = {
            "vnp_Version": self.version,
            "vnp_Command": "pay",
            "vnp_TmnCode": self._config.tmn_code,
            "vnp_Locale": "vn",
            "vnp_CurrCode": "VND",
            "vnp_TxnRef": code,
            "vnp_OrderInfo": f"Thanh toan don hang {code}",
            "vnp_OrderType": "other",
            "vnp_Amount": int(round(float(order["final_amount"]) * 100)),
            "vnp_ReturnUrl": self._config.return_url,
            "vnp_IpAddr": client_ip or "127.0.0.1",
            "vnp_CreateDate": (now or datetime.now()).strftime("%Y%m%d%H%M%S"),
        }
        query = self._sign_data(params)
        secure_hash = self.sign(params)
        log_event("info", "payment.vnpay_created", order_code=code, amount=params["vnp_Amount"])
        return {
            "method": "vnpay",
            "payment_url": f"{self._config.url}?{query}&vnp_SecureHash={secure_hash}",
            "order_code": code,
        }

    def verify(self, params: Mapping[str, Any]) -> PaymentResult:
        """Recompute the signature over every ``vnp_`` field except the hash fields."""

        supplied = str(params.get("vnp_SecureHash") or "")
        fields = {
            k: v
            for k, v in params.items()
            if k.startswith("vnp_") and k not in ("vnp_SecureHash", "vnp_SecureHashType")
        }
        if not supplied or not fields:
            return _invalid_signature()
        expected = self.sign(fields)
        if not hmac.compare_digest(expected.lower(), supplied.lower()):
            log_event("warning", "payment.vnpay_bad_signature", order_code=fields.get("vnp_TxnRef"))
            return _invalid_signature()
        try:
            amount = int(fields.get("vnp_Amount") or 0) // 100
        except (TypeError, ValueError):
            amount = None
        return PaymentResult(
            success=fields.get("vnp_ResponseCode") == "00",
            signature_valid=True,
            order_code=fields.get("vnp_TxnRef"),
            transaction_id=fields.get("vnp_TransactionNo"),
            amount=amount,
            message=None if fields.get("vnp_ResponseCode") == "00" else "Payment failed",
        )


MOMO_CREATE_FIELDS = (
    "accessKey", "amount", "extraData", "ipnUrl", "orderId", "orderInfo",
    "partnerCode", "redirectUrl", "requestId", "requestType",
)
MOMO_CALLBACK_FIELDS = (
    "accessKey", "amount", "extraData", "message", "orderId", "orderInfo", "orderType",
    "partnerCode", "payType", "requestId", "responseTime", "resultCode", "transId",
)


class MoMoGateway:
    """MoMo ``captureWallet`` checkout signed with HMAC-SHA256."""

    request_type = "captureWallet"

    def __init__(self, config: MoMoConfig, *, timeout: float = 10.0, session: Optional[requests.Session] = None) -> None:
        self._config = config
        self._timeout = timeout
        self._http = session or requests

    def _raw(self, fields, values: Mapping[str, Any]) -> str:
        merged = dict(values)
        merged["accessKey"] = self._config.access_key
        return "&".join(f"{name}={'' if merged.get(name) is None else merged.get(name)}" for name in fields)

    def sign(self, fields, values: Mapping[str, Any]) -> str:
        return _hmac_hex(self._config.secret_key, self._raw(fields, values), hashlib.sha256)

    def create_payment(self, order: Mapping[str, Any]) -> Dict[str, Any]:
        if not self._config.partner_code or not self._config.secret_key:
            raise UpstreamError("MoMo chưa được cấu hình")
        code = order["order_code"]
        body = {
            "partnerCode": self._config.partner_code,
            "accessKey": self._config.access_key,
            "requestId": code,
            "amount": str(int(float(order["final_amount"]))),
            "orderId": code,
            "orderInfo": f"Thanh toán đơn hàng {code}",
            "redirectUrl": self._config.return_url,
            "ipnUrl": self._config.notify_url,
            "extraData": "",
            "requestType": self.request_type,
            "lang": "vi",
        }
        body["signature"] = self.sign(MOMO_CREATE_FIELDS, body)
        try:
            response = self._http.post(self._config.endpoint, json=body, timeout=self._timeout)
            data = response.json()
        except (requests.RequestException, ValueError) as exc:
            log_event("error", "payment.momo_failed", order_code=code, error=str(exc))
            raise UpstreamError("Không thể tạo thanh toán MoMo") from exc
        if data.get("resultCode") != 0 or not data.get("payUrl"):
            log_event("error", "payment.momo_rejected", order_code=code,
                      result_code=data.get("resultCode"), message=data.get("message"))
            raise UpstreamError("Không thể tạo thanh toán MoMo")
        log_event("info", "payment.momo_created", order_code=code)
        return {
            "method": "momo",
            "payment_url": data["payUrl"],
            "deeplink": data.get("deeplink"),
            "qr_code_data_url": qr_data_url(data["payUrl"]),
            "order_code": code,
        }

    def verify(self, payload: Mapping[str, Any]) -> PaymentResult:
        supplied = str(payload.get("signature") or "")
        if not supplied:
            return _invalid_signature()
        expected = self.sign(MOMO_CALLBACK_FIELDS, payload)
        if not hmac.compare_digest(expected.lower(), supplied.lower()):
            log_event("warning", "payment.momo_bad_signature", order_code=payload.get("orderId"))
            return _invalid_signature()
        try:
            amount = int(payload.get("amount"))
        except (TypeError, ValueError):
            amount = None
        success = str(payload.get("resultCode")) == "0"
        return PaymentResult(
            success=success,
            signature_valid=True,
            order_code=payload.get("orderId"),
            transaction_id=str(payload.get("transId")) if payload.get("transId") is not None else None,
            amount=amount,
            message=None if success else payload.get("message") or "Payment failed",
        )
