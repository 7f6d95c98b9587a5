import pytest

from common.errors import InsufficientStockError, NotFoundError
from common.models import Cart, CartItem
from common.services.cart_service import CartService


@pytest.fixture
def carts(session_factory):
    return CartService(session_factory)


def test_merge_guest_cart_sums_quantities_and_deletes_guest(carts, session_factory, make_user, make_product):
    user_id = make_user()
    product_id = make_product(stock=10)
    carts.add_item(product_id=product_id, quantity=1, user_id=user_id)
    carts.add_item(product_id=product_id, quantity=2, session_id="guest-1")

    merged = carts.merge_guest_cart(user_id=user_id, session_id="guest-1")

    assert merged == 1
    cart = carts.get_cart(user_id=user_id)
    assert [(i["product_id"], i["quantity"]) for i in cart["items"]] == [(product_id, 3)]
    with session_factory() as session:
        assert session.query(Cart).filter(Cart.session_id == "guest-1").count() == 0


def test_merge_without_guest_cart_is_noop(carts, make_user):
    assert carts.merge_guest_cart(user_id=make_user(), session_id="missing") == 0


def test_add_same_product_twice_merges_line(carts, make_product):
    product_id = make_product()
    carts.add_item(product_id=product_id, quantity=1, session_id="s1")
    result = carts.add_item(product_id=product_id, quantity=2, session_id="s1")
    assert result["quantity"] == 3
    assert carts.count(session_id="s1") == 3


def test_add_beyond_stock_is_rejected(carts, make_product, session_factory):
    product_id = make_product(stock=2)
    with pytest.raises(InsufficientStockError):
        carts.add_item(product_id=product_id, quantity=3, session_id="s1")
    with session_factory() as session:
        assert session.query(CartItem).count() == 0


def test_add_unknown_product(carts):
    with pytest.raises(NotFoundError):
        carts.add_item(product_id=999, session_id="s1")


def test_update_to_zero_removes_line(carts, make_product):
    product_id = make_product()
    added = carts.add_item(product_id=product_id, quantity=2, session_id="s1")
    result = carts.update_quantity(item_id=added["item_id"], quantity=0, session_id="s1")
    assert result["status"] == "removed"
    assert carts.get_cart(session_id="s1")["items"] == []


def test_cannot_touch_another_cart_line(carts, make_product):
    product_id = make_product()
    added = carts.add_item(product_id=product_id, session_id="owner")
    with pytest.raises(NotFoundError):
        carts.remove_item(item_id=added["item_id"], session_id="intruder")


def test_cart_lines_use_sale_price(carts, make_product, make_sale):
    sale_id = make_sale("fixed", 30000)
    product_id = make_product(price=150000, sale_id=sale_id)
    carts.add_item(product_id=product_id, quantity=2, session_id="s1")
    cart = carts.get_cart(session_id="s1")
    line = cart["items"][0]
    assert line["product_price"] == 150000
    assert line["unit_price"] == 120000
    assert cart["subtotal"] == 240000
