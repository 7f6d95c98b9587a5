"""Fashion storefront Flask application."""

from __future__ import annotations

from typing import Optional

from flask import Flask, jsonify, request
from werkzeug.exceptions import HTTPException

from cli import register_commands
from common.db.session import build_session_factory, init_db
from common.errors import AuthError, NotFoundError, UpstreamError
from common.services.address_service import AddressService
from common.services.auth_service import AuthService
from common.services.banner_service import BannerService
from common.services.cart_service import CartService
from common.services.catalog_service import CatalogService
from common.services.category_service import CategoryService
from common.services.logging import configure_logging, log_event
from common.services.newsletter_service import NewsletterService
from common.services.order_service import OrderService
from common.services.sale_service import SaleService
from common.services.user_service import UserService
from common.services.voucher_service import VoucherService
from config import StoreConfig
from routes import admin, api, auth, cart, guards, orders, shop
from services import EmailService, LocationClient, MoMoGateway, VNPayGateway


def _register_error_handlers(app: Flask) -> None:
    @app.errorhandler(AuthError)
    def _auth_error(exc: AuthError):
        return jsonify({"error": str(exc)}), exc.status

    @app.errorhandler(NotFoundError)
    def _not_found(exc: NotFoundError):
        return jsonify({"error": str(exc)}), 404

    @app.errorhandler(ValueError)
    def _client_error(exc: ValueError):
        body = {"error": str(exc)}
        reason = getattr(exc, "reason", None)
        if reason:
            body["reason"] = reason
        return jsonify(body), 400

    @app.errorhandler(UpstreamError)
    def _upstream_error(exc: UpstreamError):
        return jsonify({"error": str(exc)}), 502

    @app.errorhandler(HTTPException)
    def _http_error(exc: HTTPException):
        return jsonify({"error": exc.description}), exc.code

    @app.errorhandler(Exception)
    def _unexpected(exc: Exception):
        log_event("error", "http.unhandled_error", path=request.path, error=repr(exc))
        return jsonify({"error": "Đã có lỗi xảy ra, vui lòng thử lại sau."}), 500


def create_app(config: Optional[StoreConfig] = None, session_factory=None) -> Flask:
    config = config or StoreConfig.load()
    configure_logging(config.app.log_level)
    app = Flask(__name__)
    app.config["SECRET_KEY"] = config.secret_key
    app.config["SESSION_COOKIE_HTTPONLY"] = True
    app.config["SESSION_COOKIE_SAMESITE"] = "Lax"
    app.config["STORE_CONFIG"] = config

    session_factory = session_factory or build_session_factory(config.database_url)
    init_db(session_factory.engine)

    mailer = EmailService(config.mail, config.app.store_base_url, timeout=config.http_timeout)
    components = {
        "catalog": CatalogService(session_factory),
        "categories": CategoryService(session_factory),
        "cart": CartService(session_factory),
        "orders": OrderService(
            session_factory,
            free_shipping_threshold=config.app.free_shipping_threshold,
            shipping_fee=config.app.shipping_fee,
        ),
        "vouchers": VoucherService(session_factory),
        "sales": SaleService(session_factory),
        "banners": BannerService(session_factory),
        "newsletter": NewsletterService(session_factory),
        "users": UserService(session_factory, bcrypt_rounds=config.bcrypt_rounds),
        "addresses": AddressService(session_factory),
        "auth": AuthService(
            session_factory,
            jwt_secret=config.jwt_secret,
            jwt_expire_seconds=config.jwt_expire_seconds,
            notifier=mailer,
            bcrypt_rounds=config.bcrypt_rounds,
        ),
        "mailer": mailer,
        "vnpay": VNPayGateway(config.vnpay),
        "momo": MoMoGateway(config.momo, timeout=config.http_timeout),
        "locations": LocationClient(config.provinces_api_url, timeout=config.http_timeout),
    }
    app.extensions["store_components"] = components
    app.extensions["store_session_factory"] = session_factory

    app.before_request(guards.load_current_user)
    _register_error_handlers(app)

    app.register_blueprint(shop.shop_bp)
    app.register_blueprint(auth.auth_bp)
    app.register_blueprint(cart.cart_bp)
    app.register_blueprint(orders.orders_bp)
    app.register_blueprint(admin.admin_bp)
    app.register_blueprint(api.api_bp)

    register_commands(app)
    return app


def main() -> None:
    app = create_app()
    app.run(host="0.0.0.0", port=3000, debug=False)


if __name__ == "__main__":
    main()
