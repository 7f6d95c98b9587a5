from decimal import Decimal
from urllib.parse import parse_qsl, urlsplit

import pytest

from common.errors import AuthError, EmptyCartError, InsufficientStockError, VoucherError
from common.models import CartItem, Order, Product, Voucher, VoucherUsage
from common.services.cart_service import CartService
from common.services.order_service import OrderService
from config import VNPayConfig
from services.payment_gateways import VNPayGateway


@pytest.fixture
def carts(session_factory):
    return CartService(session_factory)


@pytest.fixture
def orders(session_factory):
    return OrderService(session_factory)


@pytest.fixture
def buyer(make_user, make_address):
    user_id = make_user()
    return user_id, make_address(user_id)


def _stock(session_factory, product_id):
    with session_factory() as session:
        prod = session.get(Product, product_id)
        return prod.stock_quantity, prod.sold_count


def test_order_totals_and_cart_emptied(orders, carts, session_factory, buyer, make_product):
    user_id, address_id = buyer
    a = make_product(price=120000, stock=5, image="/img/a.jpg")
    b = make_product(price=120000, stock=5)
    carts.add_item(product_id=a, quantity=2, user_id=user_id)
    carts.add_item(product_id=b, quantity=2, user_id=user_id)

    order = orders.create_order(user_id=user_id, address_id=address_id, payment_method="cod")

    assert order["total_amount"] == 480000
    assert order["shipping_fee"] == 30000
    assert order["final_amount"] == order["total_amount"] + order["shipping_fee"] - order["discount_amount"]
    assert order["payment_status"] == "pending"
    assert order["shipping_address"].startswith("12 Lê Lợi")
    assert order["items"][0]["product_image"] == "/img/a.jpg"
    assert order["payment"]["amount"] == 510000
    assert carts.get_cart(user_id=user_id)["items"] == []
    assert _stock(session_factory, a) == (3, 2)


def test_free_shipping_over_threshold(orders, carts, buyer, make_product):
    user_id, address_id = buyer
    carts.add_item(product_id=make_product(price=260000), quantity=2, user_id=user_id)
    order = orders.create_order(user_id=user_id, address_id=address_id, payment_method="cod")
    assert order["shipping_fee"] == 0
    assert order["final_amount"] == 520000


def test_empty_cart_rejected_before_any_write(orders, session_factory, buyer):
    user_id, address_id = buyer
    with pytest.raises(EmptyCartError):
        orders.create_order(user_id=user_id, address_id=address_id, payment_method="cod")
    with session_factory() as session:
        assert session.query(Order).count() == 0


def test_insufficient_stock_rolls_back_everything(orders, carts, session_factory, buyer, make_product, make_voucher):
    user_id, address_id = buyer
    plenty = make_product(stock=10)
    scarce = make_product(stock=3)
    make_voucher("GIAM10")
    carts.add_item(product_id=plenty, quantity=2, user_id=user_id)
    carts.add_item(product_id=scarce, quantity=3, user_id=user_id)
    with session_factory() as session:
        session.query(Product).filter(Product.id == scarce).update({Product.stock_quantity: 1})

    with pytest.raises(InsufficientStockError) as exc:
        orders.create_order(user_id=user_id, address_id=address_id, payment_method="cod", voucher_code="GIAM10")

    assert exc.value.product_id == scarce
    assert _stock(session_factory, plenty) == (10, 0)
    with session_factory() as session:
        assert session.query(Order).count() == 0
        assert session.query(CartItem).count() == 2
        assert session.query(Voucher).one().used_count == 0
        assert session.query(VoucherUsage).count() == 0


def test_foreign_address_rejected(orders, carts, buyer, make_user, make_address, make_product):
    user_id, _ = buyer
    other_address = make_address(make_user("khac@example.com"))
    carts.add_item(product_id=make_product(), user_id=user_id)
    with pytest.raises(ValueError):
        orders.create_order(user_id=user_id, address_id=other_address, payment_method="cod")


def test_unknown_payment_method(orders, buyer):
    user_id, address_id = buyer
    with pytest.raises(ValueError):
        orders.create_order(user_id=user_id, address_id=address_id, payment_method="paypal")


def test_buy_now_leaves_cart_alone(orders, carts, session_factory, buyer, make_product):
    user_id, address_id = buyer
    in_cart = make_product()
    carts.add_item(product_id=in_cart, user_id=user_id)
    target = make_product(price=300000, stock=4)

    order = orders.create_buy_now_order(
        user_id=user_id, address_id=address_id, product_id=target, quantity=2, payment_method="vnpay"
    )

    assert order["total_amount"] == 600000
    assert order["shipping_fee"] == 0
    assert [i["product_id"] for i in order["items"]] == [target]
    assert carts.count(user_id=user_id) == 1
    assert _stock(session_factory, target) == (2, 2)


def test_voucher_applied_and_usage_recorded(orders, carts, session_factory, buyer, make_product, make_voucher):
    user_id, address_id = buyer
    make_voucher("GIAM10", max_discount_amount=Decimal("30000"))
    carts.add_item(product_id=make_product(price=200000), quantity=2, user_id=user_id)

    order = orders.create_order(user_id=user_id, address_id=address_id, payment_method="cod", voucher_code="giam10")

    assert order["voucher_code"] == "GIAM10"
    assert order["discount_amount"] == 30000
    assert order["final_amount"] == 400000 + 30000 - 30000
    with session_factory() as session:
        assert session.query(Voucher).one().used_count == 1
        usage = session.query(VoucherUsage).one()
        assert (usage.user_id, usage.order_id) == (user_id, order["id"])


def test_invalid_voucher_blocks_order(orders, carts, session_factory, buyer, make_product, make_voucher):
    user_id, address_id = buyer
    make_voucher("MIN1M", min_order_amount=Decimal("1000000"))
    product_id = make_product()
    carts.add_item(product_id=product_id, user_id=user_id)
    with pytest.raises(VoucherError) as exc:
        orders.create_order(user_id=user_id, address_id=address_id, payment_method="cod", voucher_code="MIN1M")
    assert exc.value.reason == "below_minimum"
    assert _stock(session_factory, product_id) == (10, 0)


def test_order_snapshot_survives_price_change(orders, carts, session_factory, buyer, make_product, make_sale):
    user_id, address_id = buyer
    product_id = make_product(price=100000, sale_id=make_sale("percentage", 20))
    carts.add_item(product_id=product_id, user_id=user_id)
    order = orders.create_order(user_id=user_id, address_id=address_id, payment_method="cod")

    with session_factory() as session:
        prod = session.get(Product, product_id)
        prod.price = Decimal("999000")
        prod.name = "Tên mới"
        prod.sale_id = None

    saved = orders.get_order(order["id"])
    item = saved["items"][0]
    assert item["product_name"] != "Tên mới"
    assert item["price"] == 100000
    assert item["sale_applied"] == 20000
    assert item["subtotal"] == 80000
    assert saved["total_amount"] == 80000


def test_order_by_code_requires_owner(orders, carts, buyer, make_product):
    user_id, address_id = buyer
    carts.add_item(product_id=make_product(), user_id=user_id)
    order = orders.create_order(user_id=user_id, address_id=address_id, payment_method="cod")

    assert orders.get_order_by_code(order["order_code"], user_id=user_id)["id"] == order["id"]
    assert orders.get_order_by_code(order["order_code"], user_id=999, is_admin=True)["id"] == order["id"]
    with pytest.raises(AuthError):
        orders.get_order_by_code(order["order_code"], user_id=999)


def test_mark_payment_checks_amount_and_never_downgrades(orders, carts, buyer, make_product):
    user_id, address_id = buyer
    carts.add_item(product_id=make_product(price=100000), user_id=user_id)
    order = orders.create_order(user_id=user_id, address_id=address_id, payment_method="vnpay")

    mismatched = orders.mark_payment(order["order_code"], "paid", transaction_id="T1", amount=1)
    assert mismatched["payment_status"] == "failed"

    paid = orders.mark_payment(order["order_code"], "paid", transaction_id="T2", amount=order["final_amount"])
    assert paid["payment_status"] == "paid"
    assert paid["payment"]["transaction_id"] == "T2"

    again = orders.mark_payment(order["order_code"], "failed")
    assert again["payment_status"] == "paid"


def test_status_update_validated(orders, carts, buyer, make_product):
    user_id, address_id = buyer
    carts.add_item(product_id=make_product(), user_id=user_id)
    order = orders.create_order(user_id=user_id, address_id=address_id, payment_method="cod")
    assert orders.update_status(order["id"], "shipping")["status"] == "shipping"
    with pytest.raises(ValueError):
        orders.update_status(order["id"], "lost")


def test_statistics_exclude_cancelled(orders, carts, buyer, make_product):
    user_id, address_id = buyer
    product_id = make_product(price=100000)
    carts.add_item(product_id=product_id, user_id=user_id)
    kept = orders.create_order(user_id=user_id, address_id=address_id, payment_method="cod")
    carts.add_item(product_id=product_id, user_id=user_id)
    dropped = orders.create_order(user_id=user_id, address_id=address_id, payment_method="cod")
    orders.update_status(dropped["id"], "cancelled")

    stats = orders.statistics()
    assert stats["total_orders"] == 2
    assert stats["cancelled_orders"] == 1
    assert stats["total_revenue"] == kept["final_amount"]
    assert stats["today_revenue"] == kept["final_amount"]


def test_fractional_sale_price_is_paid_in_whole_dong(orders, carts, buyer, make_product, make_sale):
    user_id, address_id = buyer
    product_id = make_product(price=99999, sale_id=make_sale("percentage", 15))
    carts.add_item(product_id=product_id, user_id=user_id)
    order = orders.create_order(user_id=user_id, address_id=address_id, payment_method="vnpay")
    assert order["final_amount"] == 114999

    gateway = VNPayGateway(VNPayConfig(tmn_code="TMN", hash_secret="secret"))
    params = dict(parse_qsl(urlsplit(gateway.create_payment_url(order)["payment_url"]).query))
    params.pop("vnp_SecureHash")
    params.update({"vnp_ResponseCode": "00", "vnp_TransactionNo": "777"})
    params["vnp_SecureHash"] = gateway.sign(params)
    result = gateway.verify(params)
    assert result.success

    paid = orders.mark_payment(result.order_code, "paid", transaction_id=result.transaction_id, amount=result.amount)
    assert paid["payment_status"] == "paid"


def test_deactivated_cart_line_stays_in_cart(orders, carts, session_factory, buyer, make_product):
    user_id, address_id = buyer
    kept = make_product(price=150000)
    hidden = make_product(price=90000)
    carts.add_item(product_id=kept, user_id=user_id)
    carts.add_item(product_id=hidden, user_id=user_id)
    with session_factory() as session:
        session.get(Product, hidden).is_active = False

    order = orders.create_order(user_id=user_id, address_id=address_id, payment_method="cod")

    assert [item["product_id"] for item in order["items"]] == [kept]
    with session_factory() as session:
        remaining = session.query(CartItem.product_id).all()
        assert [row.product_id for row in remaining] == [hidden]
