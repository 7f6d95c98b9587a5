from datetime import datetime, timedelta
from decimal import Decimal

import pytest

from app import create_app
from common.config import AppConfig
from common.db.session import build_session_factory, init_db
from common.models import Address, Category, Product, ProductImage, Sale, User, Voucher
from config import StoreConfig


@pytest.fixture
def session_factory():
    factory = build_session_factory("sqlite://")
    init_db(factory.engine)
    yield factory
    factory.engine.dispose()


@pytest.fixture
def store_config(tmp_path):
    return StoreConfig(
        app=AppConfig(
            database_url="sqlite://",
            log_level="ERROR",
            store_base_url="http://shop.test",
            currency="VND",
        ),
        secret_key="test-session-secret",
        jwt_secret="test-jwt-secret",
        bcrypt_rounds=4,
        store_root=tmp_path,
    )


@pytest.fixture
def app(store_config, session_factory):
    application = create_app(store_config, session_factory=session_factory)
    application.config["TESTING"] = True
    return application


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def make_user(session_factory):
    def _make(email="khach@example.com", role="customer", full_name="Nguyễn Văn A", password_hash="x"):
        with session_factory() as session:
            user = User(email=email, password=password_hash, full_name=full_name, role=role,
                        is_active=True, email_verified=True)
            session.add(user)
            session.flush()
            return user.id

    return _make


@pytest.fixture
def make_address(session_factory):
    def _make(user_id, **overrides):
        data = dict(full_name="Nguyễn Văn A", phone="0901234567", address_line="12 Lê Lợi",
                    ward="Bến Nghé", district="Quận 1", city="Hồ Chí Minh", is_default=True)
        data.update(overrides)
        with session_factory() as session:
            addr = Address(user_id=user_id, **data)
            session.add(addr)
            session.flush()
            return addr.id

    return _make


@pytest.fixture
def make_product(session_factory):
    counter = {"n": 0}

    def _make(name=None, price=100000, stock=10, sale_id=None, image=None, description=None, sold=0):
        counter["n"] += 1
        name = name or f"Sản phẩm {counter['n']}"
        with session_factory() as session:
            category = session.query(Category).first()
            if category is None:
                category = Category(name="Áo", slug="ao")
                session.add(category)
                session.flush()
            prod = Product(
                name=name,
                slug=f"san-pham-{counter['n']}",
                description=description,
                price=Decimal(str(price)),
                stock_quantity=stock,
                sold_count=sold,
                category_id=category.id,
                sale_id=sale_id,
            )
            session.add(prod)
            session.flush()
            if image:
                session.add(ProductImage(product_id=prod.id, image_url=image, is_primary=True))
            return prod.id

    return _make


@pytest.fixture
def make_sale(session_factory):
    def _make(sale_type="percentage", value=20, active=True, days=7):
        now = datetime.now()
        with session_factory() as session:
            sale = Sale(name="Sale", type=sale_type, value=Decimal(str(value)), is_active=active,
                        start_date=now - timedelta(days=1), end_date=now + timedelta(days=days))
            session.add(sale)
            session.flush()
            return sale.id

    return _make


@pytest.fixture
def make_voucher(session_factory):
    def _make(code="GIAM10", **overrides):
        now = datetime.now()
        data = dict(type="percentage", value=Decimal("10"), min_order_amount=Decimal("0"),
                    max_discount_amount=None, usage_limit=None, used_count=0, user_limit=1,
                    start_date=now - timedelta(days=1), end_date=now + timedelta(days=30), is_active=True)
        data.update(overrides)
        with session_factory() as session:
            voucher = Voucher(code=code, **data)
            session.add(voucher)
            session.flush()
            return voucher.id

    return _make
