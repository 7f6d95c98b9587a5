from datetime import datetime
from typing import Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import joinedload

from ..db.session import get_session
from ..errors import InsufficientStockError, NotFoundError
from ..models.cart import Cart, CartItem
from ..models.product import Product, ProductVariant
from .logging import log_event
from .pricing import ZERO, final_price_for, money


class CartService:
    """Cart operations backed by DB.

    A cart belongs either to a logged-in user or to an anonymous session id.
    Prices are never stored on cart lines; they are resolved from the product,
    its variant surcharge and the currently active sale every time the cart
    is read.
    """

    def __init__(self, session_factory=get_session):
        self._session_factory = session_factory

    # --- cart resolution -------------------------------------------------

    @staticmethod
    def find_cart(session, *, user_id: Optional[int] = None, session_id: Optional[str] = None) -> Optional[Cart]:
        q = session.query(Cart)
        if user_id:
            return q.filter(Cart.user_id == user_id).order_by(Cart.id).first()
        if session_id:
            return q.filter(Cart.session_id == session_id, Cart.user_id.is_(None)).order_by(Cart.id).first()
        raise ValueError("user_id or session_id required")

    def get_or_create_cart(self, session, *, user_id: Optional[int] = None, session_id: Optional[str] = None) -> Cart:
        cart = self.find_cart(session, user_id=user_id, session_id=session_id)
        if cart is None:
            cart = Cart(user_id=user_id or None, session_id=None if user_id else session_id)
            session.add(cart)
            session.flush()
        return cart

    # --- reads -----------------------------------------------------------

    @staticmethod
    def line_view(item: CartItem, now: Optional[datetime] = None) -> Dict:
        line = price_line(item.product, item.variant, item.quantity, now)
        line["id"] = item.id
        return line

    def load_lines(self, session, cart: Cart, now: Optional[datetime] = None) -> List[Dict]:
        items = (
            session.query(CartItem)
            .options(
                joinedload(CartItem.product).joinedload(Product.sale),
                joinedload(CartItem.product).selectinload(Product.images),
                joinedload(CartItem.variant),
            )
            .join(Product, Product.id == CartItem.product_id)
            .filter(CartItem.cart_id == cart.id, Product.is_active.is_(True))
            .order_by(CartItem.id)
            .all()
        )
        return [self.line_view(it, now) for it in items]

    @staticmethod
    def summarize(lines: List[Dict]) -> Dict:
        subtotal = sum((line["subtotal"] for line in lines), ZERO)
        return {
            "items": lines,
            "subtotal": subtotal,
            "item_count": sum(line["quantity"] for line in lines),
        }

    def get_cart(self, *, user_id: Optional[int] = None, session_id: Optional[str] = None) -> Dict:
        with self._session_factory() as session:
            cart = self.find_cart(session, user_id=user_id, session_id=session_id)
            if cart is None:
                return {"cart_id": None, "items": [], "subtotal": 0.0, "item_count": 0}
            summary = self.summarize(self.load_lines(session, cart))
            return {
                "cart_id": cart.id,
                "items": [_jsonable(line) for line in summary["items"]],
                "subtotal": float(summary["subtotal"]),
                "item_count": summary["item_count"],
            }

    def count(self, *, user_id: Optional[int] = None, session_id: Optional[str] = None) -> int:
        if not user_id and not session_id:
            return 0
        with self._session_factory() as session:
            cart = self.find_cart(session, user_id=user_id, session_id=session_id)
            if cart is None:
                return 0
            total = (
                session.query(func.coalesce(func.sum(CartItem.quantity), 0))
                .join(Product, Product.id == CartItem.product_id)
                .filter(CartItem.cart_id == cart.id, Product.is_active.is_(True))
                .scalar()
            )
            return int(total or 0)

    # --- writes ----------------------------------------------------------

    @staticmethod
    def _add_to_cart(session, cart: Cart, product: Product, variant_id: Optional[int], quantity: int) -> CartItem:
        existing = (
            session.query(CartItem)
            .filter(
                CartItem.cart_id == cart.id,
                CartItem.product_id == product.id,
                CartItem.variant_id.is_(None) if variant_id is None else CartItem.variant_id == variant_id,
            )
            .first()
        )
        if existing:
            existing.quantity += quantity
            return existing
        item = CartItem(cart_id=cart.id, product_id=product.id, variant_id=variant_id, quantity=quantity)
        session.add(item)
        return item

    def add_item(
        self,
        *,
        product_id: int,
        quantity: int = 1,
        variant_id: Optional[int] = None,
        user_id: Optional[int] = None,
        session_id: Optional[str] = None,
    ) -> Dict:
        if not product_id:
            raise ValueError("product_id required")
        qnty = int(quantity or 1)
        if qnty <= 0:
            raise ValueError("quantity must be > 0")
        with self._session_factory() as session:
            prod = (
                session.query(Product)
                .filter(Product.id == product_id, Product.is_active.is_(True))
                .first()
            )
            if not prod:
                raise NotFoundError("Sản phẩm không tồn tại")
            if variant_id is not None:
                variant = (
                    session.query(ProductVariant)
                    .filter(ProductVariant.id == variant_id, ProductVariant.product_id == prod.id)
                    .first()
                )
                if not variant:
                    raise ValueError("Phân loại sản phẩm không hợp lệ")
            cart = self.get_or_create_cart(session, user_id=user_id, session_id=session_id)
            item = self._add_to_cart(session, cart, prod, variant_id, qnty)
            if item.quantity > int(prod.stock_quantity or 0):
                raise InsufficientStockError("Sản phẩm không đủ số lượng trong kho", prod.id)
            session.flush()
            return {"status": "added", "item_id": item.id, "quantity": item.quantity}

    def _owned_item(self, session, item_id: int, user_id: Optional[int], session_id: Optional[str]) -> CartItem:
        cart = self.find_cart(session, user_id=user_id, session_id=session_id)
        item = None
        if cart is not None:
            item = (
                session.query(CartItem)
                .filter(CartItem.id == item_id, CartItem.cart_id == cart.id)
                .first()
            )
        if item is None:
            raise NotFoundError("Không tìm thấy sản phẩm trong giỏ hàng")
        return item

    def update_quantity(
        self,
        *,
        item_id: int,
        quantity: int,
        user_id: Optional[int] = None,
        session_id: Optional[str] = None,
    ) -> Dict:
        """Set the line quantity; zero or less removes the line."""
        qnty = int(quantity)
        with self._session_factory() as session:
            it = self._owned_item(session, item_id, user_id, session_id)
            if qnty <= 0:
                session.delete(it)
                session.flush()
                return {"status": "removed", "item_id": item_id}
            if qnty > int(it.product.stock_quantity or 0):
                raise InsufficientStockError("Sản phẩm không đủ số lượng trong kho", it.product_id)
            it.quantity = qnty
            session.flush()
            return {"status": "updated", "item_id": item_id, "quantity": qnty}

    def remove_item(self, *, item_id: int, user_id: Optional[int] = None, session_id: Optional[str] = None) -> None:
        with self._session_factory() as session:
            it = self._owned_item(session, item_id, user_id, session_id)
            session.delete(it)
            session.flush()

    def clear(self, *, user_id: Optional[int] = None, session_id: Optional[str] = None) -> None:
        with self._session_factory() as session:
            cart = self.find_cart(session, user_id=user_id, session_id=session_id)
            if cart is not None:
                session.query(CartItem).filter(CartItem.cart_id == cart.id).delete(synchronize_session=False)

    def merge_guest_cart(self, *, user_id: int, session_id: Optional[str]) -> int:
        """Move an anonymous session cart into the user's cart; returns lines merged."""
        if not user_id or not session_id:
            return 0
        with self._session_factory() as session:
            guest = self.find_cart(session, session_id=session_id)
            if guest is None:
                return 0
            user_cart = self.get_or_create_cart(session, user_id=user_id)
            merged = 0
            for it in list(guest.items):
                self._add_to_cart(session, user_cart, it.product, it.variant_id, it.quantity)
                session.flush()
                merged += 1
            session.delete(guest)
            session.flush()
            log_event("info", "cart.merged", user_id=user_id, lines=merged)
            return merged


def _jsonable(line: Dict) -> Dict:
    out = dict(line)
    for key in ("product_price", "unit_price", "subtotal"):
        out[key] = float(out[key])
    return out


def price_line(product: Product, variant: Optional[ProductVariant], quantity: int, now: Optional[datetime] = None) -> Dict:
    """Price one product/variant/quantity line at the current sale price."""
    base_price = money(product.price) + (money(variant.additional_price) if variant else ZERO)
    unit_price = final_price_for(product, now, base=base_price)
    return {
        "id": None,
        "product_id": product.id,
        "variant_id": variant.id if variant else None,
        "product_name": product.name,
        "product_slug": product.slug,
        "product_image": product.primary_image_url,
        "size": variant.size if variant else None,
        "color": variant.color if variant else None,
        "product_price": base_price,
        "unit_price": unit_price,
        "quantity": quantity,
        "subtotal": unit_price * quantity,
        "stock_quantity": product.stock_quantity,
    }
