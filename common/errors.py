"""Exception types shared by services and mapped to HTTP responses in ``app.py``."""

from typing import Optional


class NotFoundError(LookupError):
    """Requested record does not exist (404)."""


class AuthError(PermissionError):
    """Authentication (401) or authorization (403) failure."""

    def __init__(self, message: str, status: int = 401) -> None:
        super().__init__(message)
        self.status = status


class EmptyCartError(ValueError):
    pass


class InsufficientStockError(ValueError):
    def __init__(self, message: str, product_id: Optional[int] = None) -> None:
        super().__init__(message)
        self.product_id = product_id


class VoucherError(ValueError):
    """Voucher rejected; ``reason`` is a machine-readable code."""

    def __init__(self, message: str, reason: str) -> None:
        super().__init__(message)
        self.reason = reason


class UpstreamError(RuntimeError):
    """Payment provider or upstream HTTP API failed (502)."""
