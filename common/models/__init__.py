"""ORM models; importing this package registers every table on ``Base.metadata``."""

from .base import Base
from .user import User
from .address import Address
from .category import Category
from .sale import Sale
from .product import Product, ProductImage, ProductVariant
from .cart import Cart, CartItem
from .order import Order, OrderItem, Payment
from .voucher import Voucher, VoucherUsage
from .banner import Banner
from .newsletter import NewsletterSubscriber

__all__ = [
    "Base",
    "User",
    "Address",
    "Category",
    "Sale",
    "Product",
    "ProductImage",
    "ProductVariant",
    "Cart",
    "CartItem",
    "Order",
    "OrderItem",
    "Payment",
    "Voucher",
    "VoucherUsage",
    "Banner",
    "NewsletterSubscriber",
]
