from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Integer, Numeric, String, Text, func
from sqlalchemy.orm import relationship
from .base import Base


ORDER_STATUSES = ("pending", "confirmed", "shipping", "delivered", "cancelled")
PAYMENT_STATUSES = ("pending", "paid", "failed")
PAYMENT_METHODS = ("cod", "vnpay", "momo")


class Order(Base):
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    address_id = Column(Integer, ForeignKey("addresses.id", ondelete="SET NULL"), nullable=True)
    order_code = Column(String(32), nullable=False, unique=True)
    # shipping snapshot, survives later address edits
    shipping_name = Column(String(255), nullable=False)
    shipping_phone = Column(String(32), nullable=False)
    shipping_address = Column(String(1024), nullable=False)
    total_amount = Column(Numeric(12, 2), nullable=False)
    shipping_fee = Column(Numeric(12, 2), nullable=False, default=0)
    discount_amount = Column(Numeric(12, 2), nullable=False, default=0)
    voucher_code = Column(String(64), nullable=True)
    final_amount = Column(Numeric(12, 2), nullable=False)
    payment_method = Column(String(16), nullable=False)
    payment_status = Column(String(16), nullable=False, default="pending")
    status = Column(String(16), nullable=False, default="pending")
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.now, server_default=func.now())
    updated_at = Column(DateTime, nullable=False, server_default=func.now(), onupdate=func.now())

    user = relationship("User")
    items = relationship("OrderItem", back_populates="order", cascade="all, delete-orphan", order_by="OrderItem.id")
    payments = relationship("Payment", back_populates="order", cascade="all, delete-orphan", order_by="Payment.id")


class OrderItem(Base):
    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True, autoincrement=True)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = Column(Integer, ForeignKey("products.id", ondelete="SET NULL"), nullable=True)
    variant_id = Column(Integer, ForeignKey("product_variants.id", ondelete="SET NULL"), nullable=True)
    product_name = Column(String(255), nullable=False)
    product_image = Column(String(512), nullable=True)
    variant_label = Column(String(128), nullable=True)
    price = Column(Numeric(12, 2), nullable=False)
    sale_applied = Column(Numeric(12, 2), nullable=False, default=0)
    quantity = Column(Integer, nullable=False)
    subtotal = Column(Numeric(12, 2), nullable=False)

    order = relationship("Order", back_populates="items")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "variant_id": self.variant_id,
            "product_name": self.product_name,
            "product_image": self.product_image,
            "variant_label": self.variant_label,
            "price": float(self.price or 0),
            "sale_applied": float(self.sale_applied or 0),
            "unit_price": float((self.price or 0) - (self.sale_applied or 0)),
            "quantity": self.quantity,
            "subtotal": float(self.subtotal or 0),
        }


class Payment(Base):
    __tablename__ = "payments"

    id = Column(Integer, primary_key=True, autoincrement=True)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    payment_method = Column(String(16), nullable=False)
    amount = Column(Numeric(12, 2), nullable=False)
    status = Column(String(16), nullable=False, default="pending")
    transaction_id = Column(String(128), nullable=True)
    created_at = Column(DateTime, nullable=False, server_default=func.now())
    paid_at = Column(DateTime, nullable=True)

    order = relationship("Order", back_populates="payments")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "payment_method": self.payment_method,
            "amount": float(self.amount or 0),
            "status": self.status,
            "transaction_id": self.transaction_id,
            "paid_at": self.paid_at.isoformat() if self.paid_at else None,
        }
