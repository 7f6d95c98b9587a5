from decimal import Decimal
from urllib.parse import parse_qsl, urlsplit

from sqlalchemy.exc import OperationalError

from common.models import Order, Product
from common.services.auth_service import hash_password
from config import VNPayConfig
from services.payment_gateways import VNPayGateway


def _register(client, email="khach@example.com", password="matkhau123"):
    return client.post(
        "/auth/register",
        json={"email": email, "password": password, "full_name": "Trần Thị B", "phone": "0912345678"},
    )


def _admin_token(app, make_user):
    make_user("admin@example.com", role="admin", password_hash=hash_password("admin123", 4))
    return app.extensions["store_components"]["auth"].login("admin@example.com", "admin123")["token"]


def test_protected_routes_require_token(client):
    assert client.get("/orders/history").status_code == 401
    assert client.get("/admin/").status_code == 401


def test_customer_cannot_open_admin(client):
    assert _register(client).status_code == 201
    response = client.get("/admin/orders")
    assert response.status_code == 403
    assert response.get_json()["error"] == "Access denied. Admin only."


def test_invalid_token_rejected(client):
    response = client.get("/orders/history", headers={"Authorization": "Bearer not-a-jwt"})
    assert response.status_code == 401
    assert response.get_json()["error"] == "Invalid token"


def test_duplicate_registration(client):
    _register(client)
    client.post("/auth/logout")
    response = _register(client)
    assert response.status_code == 400
    assert response.get_json()["error"] == "Email already exists"


def test_wrong_password(client):
    _register(client)
    client.post("/auth/logout")
    response = client.post("/auth/login", json={"email": "khach@example.com", "password": "sai-mat-khau"})
    assert response.status_code == 401


def test_login_merges_guest_cart(client, make_product):
    product_id = make_product(stock=10)
    _register(client)
    client.post("/cart/add", json={"product_id": product_id, "quantity": 1})
    client.post("/auth/logout")

    client.post("/cart/add", json={"product_id": product_id, "quantity": 2})
    assert client.get("/cart/count").get_json()["count"] == 2

    response = client.post("/auth/login", json={"email": "khach@example.com", "password": "matkhau123"})
    assert response.status_code == 200
    cart = client.get("/cart").get_json()
    assert [(i["product_id"], i["quantity"]) for i in cart["items"]] == [(product_id, 3)]


def test_cod_checkout_flow(client, session_factory, make_product):
    product_id = make_product(price=160000, stock=5)
    _register(client)
    address = client.post(
        "/auth/addresses",
        json={"full_name": "Trần Thị B", "phone": "0912345678", "address_line": "5 Hai Bà Trưng",
              "district": "Quận 3", "city": "Hồ Chí Minh"},
    ).get_json()["address"]
    client.post("/cart/add", json={"product_id": product_id, "quantity": 3})

    checkout = client.get("/orders/checkout").get_json()
    assert checkout["cart"]["subtotal"] == 480000
    assert checkout["shipping_fee"] == 30000

    response = client.post("/orders/create", json={"address_id": address["id"], "payment_method": "cod"})
    assert response.status_code == 201
    body = response.get_json()
    code = body["order"]["order_code"]
    assert body["order"]["final_amount"] == 510000
    assert body["payment"]["method"] == "cod"
    assert body["redirect_url"].endswith(f"/orders/{code}/confirmation")

    assert client.get("/cart/count").get_json()["count"] == 0
    assert client.get(body["redirect_url"]).status_code == 200
    assert [o["order_code"] for o in client.get("/orders/history").get_json()["orders"]] == [code]
    with session_factory() as session:
        assert session.get(Product, product_id).stock_quantity == 2


def test_checkout_with_empty_cart_redirects(client):
    _register(client)
    response = client.get("/orders/checkout")
    assert response.status_code == 302
    assert response.headers["Location"].endswith("/cart")


def test_confirmation_hidden_from_other_customers(client, app, make_product):
    product_id = make_product()
    _register(client)
    address = client.post(
        "/auth/addresses",
        json={"full_name": "B", "phone": "0912345678", "address_line": "1 A", "city": "Hà Nội"},
    ).get_json()["address"]
    client.post("/cart/add", json={"product_id": product_id})
    code = client.post("/orders/create", json={"address_id": address["id"], "payment_method": "cod"}).get_json()[
        "order"]["order_code"]
    client.post("/auth/logout")

    other = app.test_client()
    _register(other, email="khac@example.com")
    assert other.get(f"/orders/{code}/confirmation").status_code == 403


def test_validate_voucher_endpoint(client, make_product, make_voucher):
    make_voucher("GIAM10", min_order_amount=Decimal("200000"))
    product_id = make_product(price=150000)
    _register(client)
    client.post("/cart/add", json={"product_id": product_id})

    rejected = client.post("/orders/validate-voucher", json={"code": "GIAM10"})
    assert rejected.status_code == 400
    assert rejected.get_json()["reason"] == "below_minimum"

    accepted = client.post("/orders/validate-voucher", json={"code": "GIAM10", "product_id": product_id, "quantity": 2})
    assert accepted.status_code == 200
    assert accepted.get_json()["discount_amount"] == 30000


def test_vnpay_callback_marks_order_paid(client, app, session_factory, make_product):
    gateway = VNPayGateway(VNPayConfig(tmn_code="TMN", hash_secret="secret"))
    app.extensions["store_components"]["vnpay"] = gateway
    product_id = make_product(price=600000)
    _register(client)
    address = client.post(
        "/auth/addresses",
        json={"full_name": "B", "phone": "0912345678", "address_line": "1 A", "city": "Hà Nội"},
    ).get_json()["address"]
    client.post("/cart/add", json={"product_id": product_id})
    body = client.post("/orders/create", json={"address_id": address["id"], "payment_method": "vnpay"}).get_json()
    code = body["order"]["order_code"]
    assert body["redirect_url"] == body["payment"]["payment_url"]

    params = dict(parse_qsl(urlsplit(body["payment"]["payment_url"]).query))
    params.pop("vnp_SecureHash")
    params.update({"vnp_ResponseCode": "00", "vnp_TransactionNo": "999"})

    forged = dict(params, vnp_SecureHash="0" * 128)
    assert client.get("/orders/payment/vnpay/callback", query_string=forged).status_code == 400

    params["vnp_SecureHash"] = gateway.sign(params)
    response = client.get("/orders/payment/vnpay/callback", query_string=params)
    assert response.status_code == 302
    with session_factory() as session:
        order = session.query(Order).filter(Order.order_code == code).one()
        assert order.payment_status == "paid"


def test_admin_can_update_order_status(client, app, make_user, make_address, make_product):
    customer = make_user()
    address_id = make_address(customer)
    components = app.extensions["store_components"]
    components["cart"].add_item(product_id=make_product(), user_id=customer)
    order = components["orders"].create_order(user_id=customer, address_id=address_id, payment_method="cod")

    token = _admin_token(app, make_user)
    headers = {"Authorization": f"Bearer {token}"}
    response = client.post(f"/admin/orders/{order['id']}/status", json={"status": "confirmed"}, headers=headers)
    assert response.status_code == 200
    assert response.get_json()["order"]["status"] == "confirmed"

    bad = client.post(f"/admin/orders/{order['id']}/status", json={"status": "teleported"}, headers=headers)
    assert bad.status_code == 400

    dashboard = client.get("/admin/", headers=headers).get_json()
    assert dashboard["stats"]["total_orders"] == 1


def test_newsletter_api(client):
    response = client.post("/api/newsletter/subscribe", json={"email": "fan@example.com"})
    assert response.status_code == 201
    assert client.post("/api/newsletter/subscribe", json={"email": "fan@example.com"}).status_code == 400
    status = client.get("/api/newsletter/status", query_string={"email": "fan@example.com"}).get_json()
    assert status["subscribed"] is True


def test_unknown_product_page_is_404(client):
    assert client.get("/products/khong-ton-tai").status_code == 404


def test_bad_price_filter_is_client_error(client):
    response = client.get("/products", query_string={"min_price": "abc"})
    assert response.status_code == 400


def test_catalog_pages_degrade_when_database_fails(client, app, monkeypatch):
    catalog = app.extensions["store_components"]["catalog"]

    def broken(*args, **kwargs):
        raise OperationalError("SELECT 1", {}, Exception("database is locked"))

    for name in ("list_products", "new_products", "best_sellers", "featured_products"):
        monkeypatch.setattr(catalog, name, broken)

    listing = client.get("/products")
    assert listing.status_code == 200
    assert listing.get_json()["items"] == []

    home = client.get("/")
    assert home.status_code == 200
    body = home.get_json()
    assert body["new_products"] == []
    assert body["best_sellers"] == []
    assert body["featured_products"] == []
