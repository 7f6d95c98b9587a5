from datetime import datetime, timedelta
from decimal import Decimal
from typing import Dict, List, Optional

from sqlalchemy import func, or_
from sqlalchemy.orm import joinedload, selectinload

from ..db.session import get_session
from ..errors import AuthError, EmptyCartError, InsufficientStockError, NotFoundError
from ..models.address import Address
from ..models.cart import CartItem
from ..models.order import ORDER_STATUSES, PAYMENT_METHODS, PAYMENT_STATUSES, Order, OrderItem, Payment
from ..models.product import Product, ProductVariant
from ..models.user import User
from ..utils.dto import to_order_dto
from ..utils.pagination import normalize_paging, page_meta
from .cart_service import CartService, price_line
from .logging import log_event
from .pricing import (
    DEFAULT_SHIPPING_FEE,
    FREE_SHIPPING_THRESHOLD,
    ZERO,
    floor_amount,
    generate_order_code,
    money,
    shipping_fee_for,
)
from .voucher_service import VoucherService


class OrderService:
    """Order creation and retrieval backed by DB.

    Checkout runs in one transaction: the voucher row is locked and
    re-validated, stock is decremented with a conditional UPDATE, usage is
    recorded and the ordered cart lines are removed. Any failure rolls back
    every step.
    """

    def __init__(
        self,
        session_factory=get_session,
        *,
        free_shipping_threshold: Decimal = FREE_SHIPPING_THRESHOLD,
        shipping_fee: Decimal = DEFAULT_SHIPPING_FEE,
    ):
        self._session_factory = session_factory
        self._threshold = money(free_shipping_threshold)
        self._shipping_fee = money(shipping_fee)

    def shipping_fee(self, subtotal) -> Decimal:
        return shipping_fee_for(subtotal, self._threshold, self._shipping_fee)

    # --- checkout --------------------------------------------------------

    def create_order(
        self,
        *,
        user_id: int,
        address_id: int,
        payment_method: str,
        notes: Optional[str] = None,
        voucher_code: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Dict:
        """Create an order from the active lines of the user's cart and remove them.

        Lines whose product was deactivated stay in the cart.
        """
        self._check_method(payment_method)
        with self._session_factory() as session:
            cart = CartService.find_cart(session, user_id=user_id)
            lines = CartService(self._session_factory).load_lines(session, cart, now) if cart is not None else []
            if not lines:
                raise EmptyCartError("Giỏ hàng trống")
            address = self._owned_address(session, user_id, address_id)
            order = self._place(session, user_id, address, lines, payment_method, notes, voucher_code, now)
            ordered = [line["id"] for line in lines]
            session.query(CartItem).filter(CartItem.id.in_(ordered)).delete(synchronize_session=False)
            session.flush()
            return to_order_dto(order)

    def create_buy_now_order(
        self,
        *,
        user_id: int,
        address_id: int,
        product_id: int,
        quantity: int,
        payment_method: str,
        variant_id: Optional[int] = None,
        notes: Optional[str] = None,
        voucher_code: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Dict:
        """Single-product checkout that bypasses (and leaves untouched) the cart."""
        self._check_method(payment_method)
        qty = int(quantity or 0)
        if qty <= 0:
            raise ValueError("quantity must be > 0")
        with self._session_factory() as session:
            product = (
                session.query(Product)
                .options(joinedload(Product.sale), selectinload(Product.images))
                .filter(Product.id == product_id, Product.is_active.is_(True))
                .first()
            )
            if product is None:
                raise NotFoundError("Sản phẩm không tồn tại")
            variant = None
            if variant_id:
                variant = (
                    session.query(ProductVariant)
                    .filter(ProductVariant.id == variant_id, ProductVariant.product_id == product.id)
                    .first()
                )
                if variant is None:
                    raise ValueError("Phân loại sản phẩm không hợp lệ")
            address = self._owned_address(session, user_id, address_id)
            line = price_line(product, variant, qty, now)
            order = self._place(session, user_id, address, [line], payment_method, notes, voucher_code, now)
            return to_order_dto(order)

    @staticmethod
    def _check_method(payment_method: str) -> None:
        if payment_method not in PAYMENT_METHODS:
            raise ValueError("Phương thức thanh toán không hợp lệ")

    @staticmethod
    def _owned_address(session, user_id: int, address_id: int) -> Address:
        address = None
        if address_id:
            address = (
                session.query(Address)
                .filter(Address.id == int(address_id), Address.user_id == user_id)
                .first()
            )
        if address is None:
            raise ValueError("Địa chỉ giao hàng không hợp lệ")
        return address

    def _place(
        self,
        session,
        user_id: int,
        address: Address,
        lines: List[Dict],
        payment_method: str,
        notes: Optional[str],
        voucher_code: Optional[str],
        now: Optional[datetime],
    ) -> Order:
        subtotal = sum((line["subtotal"] for line in lines), ZERO)
        shipping_fee = self.shipping_fee(subtotal)

        voucher = None
        discount = ZERO
        if voucher_code:
            check = VoucherService.check(session, voucher_code, user_id, subtotal, lock=True, now=now)
            check.raise_if_invalid()
            voucher, discount = check.voucher, check.discount_amount

        for line in lines:
            updated = (
                session.query(Product)
                .filter(Product.id == line["product_id"], Product.stock_quantity >= line["quantity"])
                .update(
                    {
                        Product.stock_quantity: Product.stock_quantity - line["quantity"],
                        Product.sold_count: Product.sold_count + line["quantity"],
                    },
                    synchronize_session=False,
                )
            )
            if updated != 1:
                raise InsufficientStockError(
                    f"Sản phẩm {line['product_name']} không đủ số lượng trong kho", line["product_id"]
                )

        final_amount = floor_amount(subtotal + shipping_fee - discount)
        order = Order(
            user_id=user_id,
            address_id=address.id,
            order_code=generate_order_code(),
            shipping_name=address.full_name,
            shipping_phone=address.phone,
            shipping_address=address.one_line(),
            total_amount=subtotal,
            shipping_fee=shipping_fee,
            discount_amount=discount,
            voucher_code=voucher.code if voucher else None,
            final_amount=final_amount,
            payment_method=payment_method,
            payment_status="pending",
            status="pending",
            notes=notes or None,
        )
        session.add(order)
        session.flush()

        for line in lines:
            label = " / ".join(x for x in (line.get("size"), line.get("color")) if x) or None
            session.add(
                OrderItem(
                    order_id=order.id,
                    product_id=line["product_id"],
                    variant_id=line.get("variant_id"),
                    product_name=line["product_name"],
                    product_image=line.get("product_image"),
                    variant_label=label,
                    price=line["product_price"],
                    sale_applied=line["product_price"] - line["unit_price"],
                    quantity=line["quantity"],
                    subtotal=line["subtotal"],
                )
            )
        session.add(Payment(order_id=order.id, payment_method=payment_method, amount=final_amount, status="pending"))

        if voucher is not None:
            VoucherService.record_usage(session, voucher, user_id, order.id, discount)

        session.flush()
        session.refresh(order)
        log_event(
            "info",
            "order.created",
            order_id=order.id,
            order_code=order.order_code,
            items=len(lines),
            subtotal=float(subtotal),
            discount=float(discount),
            final_amount=float(final_amount),
            payment_method=payment_method,
        )
        return order

    # --- reads -----------------------------------------------------------

    @staticmethod
    def _full(session):
        return session.query(Order).options(selectinload(Order.items), selectinload(Order.payments))

    def get_order(self, order_id: int) -> Dict:
        with self._session_factory() as session:
            o = self._full(session).filter(Order.id == order_id).first()
            if not o:
                raise NotFoundError("Không tìm thấy đơn hàng")
            return to_order_dto(o)

    def get_order_by_code(self, order_code: str, *, user_id: Optional[int] = None, is_admin: bool = False) -> Dict:
        """Look up an order; non-admin callers may only read their own orders."""
        with self._session_factory() as session:
            o = self._full(session).filter(Order.order_code == order_code).first()
            if not o:
                raise NotFoundError("Không tìm thấy đơn hàng")
            if not is_admin and user_id is not None and o.user_id != user_id:
                raise AuthError("Access denied", status=403)
            return to_order_dto(o)

    def list_user_orders(self, user_id: int, limit: int = 20, offset: int = 0) -> List[Dict]:
        with self._session_factory() as session:
            rows = (
                self._full(session)
                .filter(Order.user_id == user_id)
                .order_by(Order.created_at.desc(), Order.id.desc())
                .offset(max(int(offset), 0))
                .limit(int(limit))
                .all()
            )
            return [to_order_dto(o) for o in rows]

    def admin_list_orders(
        self,
        *,
        status: Optional[str] = None,
        payment_status: Optional[str] = None,
        search: Optional[str] = None,
        page: int = 1,
        page_size: int = 50,
    ) -> Dict:
        p, ps = normalize_paging(page, page_size, default_size=50)
        with self._session_factory() as session:
            q = session.query(Order).join(User, User.id == Order.user_id)
            if status:
                q = q.filter(Order.status == status)
            if payment_status:
                q = q.filter(Order.payment_status == payment_status)
            if search:
                like = f"%{search}%"
                q = q.filter(or_(Order.order_code.ilike(like), User.full_name.ilike(like), User.email.ilike(like)))
            total = q.count()
            rows = (
                q.options(joinedload(Order.user), selectinload(Order.items))
                .order_by(Order.created_at.desc(), Order.id.desc())
                .offset((p - 1) * ps)
                .limit(ps)
                .all()
            )
            items = []
            for o in rows:
                dto = to_order_dto(o, with_items=False)
                dto["user_name"] = o.user.full_name
                dto["user_email"] = o.user.email
                dto["item_count"] = len(o.items)
                items.append(dto)
            result = {"items": items}
            result.update(page_meta(p, ps, total))
            return result

    # --- status ----------------------------------------------------------

    def update_status(self, order_id: int, status: str) -> Dict:
        if status not in ORDER_STATUSES:
            raise ValueError("Trạng thái đơn hàng không hợp lệ")
        with self._session_factory() as session:
            o = self._full(session).filter(Order.id == order_id).first()
            if not o:
                raise NotFoundError("Không tìm thấy đơn hàng")
            previous = o.status
            o.status = status
            session.flush()
            log_event("info", "order.status_changed", order_id=o.id, from_status=previous, to_status=status)
            return to_order_dto(o)

    def mark_payment(
        self,
        order_code: str,
        status: str,
        *,
        transaction_id: Optional[str] = None,
        amount=None,
    ) -> Dict:
        """Record a provider result on the order and its latest payment row.

        A paid order is never downgraded, and a reported amount that differs
        from the order total marks the payment failed.
        """
        if status not in PAYMENT_STATUSES:
            raise ValueError("invalid payment status")
        with self._session_factory() as session:
            o = self._full(session).filter(Order.order_code == order_code).first()
            if not o:
                raise NotFoundError("Không tìm thấy đơn hàng")
            if o.payment_status == "paid":
                return to_order_dto(o)
            if status == "paid" and amount is not None and money(amount) != money(o.final_amount):
                log_event("warning", "payment.amount_mismatch", order_code=order_code,
                          expected=float(o.final_amount), received=float(money(amount)))
                status = "failed"
            o.payment_status = status
            payment = o.payments[-1] if o.payments else None
            if payment is None:
                payment = Payment(order_id=o.id, payment_method=o.payment_method, amount=o.final_amount)
                session.add(payment)
            payment.status = status
            payment.transaction_id = transaction_id or payment.transaction_id
            if status == "paid":
                payment.paid_at = datetime.now()
            session.flush()
            log_event("info", "payment.updated", order_code=order_code, status=status, transaction_id=transaction_id)
            return to_order_dto(o)

    # --- dashboard -------------------------------------------------------

    def statistics(self, now: Optional[datetime] = None) -> Dict:
        now = now or datetime.now()
        today = now.replace(hour=0, minute=0, second=0, microsecond=0)
        month = today.replace(day=1)
        tomorrow = today + timedelta(days=1)
        with self._session_factory() as session:
            counts = dict(session.query(Order.status, func.count(Order.id)).group_by(Order.status).all())
            revenue = session.query(Order).filter(Order.status != "cancelled")

            def _sum(q) -> float:
                return float(q.with_entities(func.coalesce(func.sum(Order.final_amount), 0)).scalar() or 0)

            return {
                "total_orders": int(sum(counts.values())),
                "pending_orders": int(counts.get("pending", 0)),
                "delivered_orders": int(counts.get("delivered", 0)),
                "cancelled_orders": int(counts.get("cancelled", 0)),
                "total_revenue": _sum(revenue),
                "today_revenue": _sum(revenue.filter(Order.created_at >= today, Order.created_at < tomorrow)),
                "month_revenue": _sum(revenue.filter(Order.created_at >= month, Order.created_at < tomorrow)),
            }
