"""Outbound integrations: payment providers, SMTP and the location API."""

from .email_service import EmailService
from .location_client import LocationClient
from .payment_gateways import MoMoGateway, PaymentResult, VNPayGateway, cod_payment

__all__ = [
    "EmailService",
    "LocationClient",
    "MoMoGateway",
    "PaymentResult",
    "VNPayGateway",
    "cod_payment",
]
