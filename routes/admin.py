"""Back-office routes: dashboard, catalog, orders, users, banners, sales, vouchers and campaigns."""

from __future__ import annotations

from typing import Any, Dict

from flask import Blueprint, current_app, jsonify, request

from common.services.logging import log_event
from common.utils.validators import optional_int

from .guards import payload, require_admin, require_user


admin_bp = Blueprint("admin", __name__, url_prefix="/admin")


def _components() -> Dict[str, Any]:
    return current_app.extensions["store_components"]


def _truthy(value) -> bool:
    if isinstance(value, bool):
        return value
    return str(value or "").strip().lower() in ("1", "true", "yes", "on")


def _flag_arg(name: str):
    raw = request.args.get(name)
    return None if raw in (None, "") else _truthy(raw)


@admin_bp.before_request
def guard_admin_routes():
    require_admin()


@admin_bp.get("/")
def dashboard():
    c = _components()
    stats = c["orders"].statistics()
    stats.update(
        {
            "total_products": c["catalog"].count_products(),
            "total_customers": c["users"].count(role="customer"),
            "active_vouchers": c["vouchers"].count(is_active=True),
            "newsletter_subscribers": c["newsletter"].count_active(),
        }
    )
    recent = c["orders"].admin_list_orders(page=1, page_size=5)["items"]
    return jsonify({"stats": stats, "recent_orders": recent})


# --- products ------------------------------------------------------------

@admin_bp.get("/products")
def list_products():
    result = _components()["catalog"].admin_list_products(
        search=(request.args.get("search") or "").strip() or None,
        category_id=optional_int(request.args.get("category")),
        page=optional_int(request.args.get("page")) or 1,
        page_size=optional_int(request.args.get("limit")) or 20,
    )
    return jsonify(result)


@admin_bp.post("/products")
def create_product():
    return jsonify({"product": _components()["catalog"].create_product(payload())}), 201


@admin_bp.get("/products/<int:product_id>")
def get_product(product_id: int):
    return jsonify({"product": _components()["catalog"].get_product(product_id, track_view=False)})


@admin_bp.route("/products/<int:product_id>", methods=["PUT", "POST"])
def update_product(product_id: int):
    return jsonify({"product": _components()["catalog"].update_product(product_id, payload())})


@admin_bp.delete("/products/<int:product_id>")
def delete_product(product_id: int):
    _components()["catalog"].delete_product(product_id)
    return jsonify({"success": True})


@admin_bp.post("/products/<int:product_id>/stock")
def update_stock(product_id: int):
    body = payload()
    if body.get("stock_quantity") in (None, ""):
        raise ValueError("stock_quantity is required")
    return jsonify(_components()["catalog"].update_stock(product_id, body["stock_quantity"]))


@admin_bp.get("/products/<int:product_id>/images")
def list_images(product_id: int):
    return jsonify({"images": _components()["catalog"].list_images(product_id)})


@admin_bp.post("/products/<int:product_id>/images")
def add_image(product_id: int):
    body = payload()
    image_url = (body.get("image_url") or "").strip()
    if not image_url:
        raise ValueError("image_url is required")
    image = _components()["catalog"].add_image(
        product_id,
        image_url,
        is_primary=_truthy(body.get("is_primary")),
        display_order=optional_int(body.get("display_order")) or 0,
    )
    return jsonify({"image": image}), 201


@admin_bp.post("/products/<int:product_id>/images/<int:image_id>/primary")
def set_primary_image(product_id: int, image_id: int):
    return jsonify({"image": _components()["catalog"].set_primary_image(product_id, image_id)})


@admin_bp.delete("/products/<int:product_id>/images/<int:image_id>")
def delete_image(product_id: int, image_id: int):
    _components()["catalog"].delete_image(product_id, image_id)
    return jsonify({"success": True})


@admin_bp.post("/products/<int:product_id>/variants")
def add_variant(product_id: int):
    return jsonify({"variant": _components()["catalog"].add_variant(product_id, payload())}), 201


# --- categories ----------------------------------------------------------

@admin_bp.get("/categories")
def list_categories():
    return jsonify({"categories": _components()["categories"].list_categories(include_inactive=True)})


@admin_bp.post("/categories")
def create_category():
    return jsonify({"category": _components()["categories"].create_category(payload())}), 201


@admin_bp.route("/categories/<int:category_id>", methods=["PUT", "POST"])
def update_category(category_id: int):
    return jsonify({"category": _components()["categories"].update_category(category_id, payload())})


@admin_bp.delete("/categories/<int:category_id>")
def delete_category(category_id: int):
    _components()["categories"].delete_category(category_id)
    return jsonify({"success": True})


# --- orders --------------------------------------------------------------

@admin_bp.get("/orders")
def list_orders():
    result = _components()["orders"].admin_list_orders(
        status=request.args.get("status") or None,
        payment_status=request.args.get("payment_status") or None,
        search=(request.args.get("search") or "").strip() or None,
        page=optional_int(request.args.get("page")) or 1,
        page_size=optional_int(request.args.get("limit")) or 50,
    )
    return jsonify(result)


@admin_bp.get("/orders/<int:order_id>")
def order_detail(order_id: int):
    return jsonify({"order": _components()["orders"].get_order(order_id)})


@admin_bp.post("/orders/<int:order_id>/status")
def update_order_status(order_id: int):
    status = (payload().get("status") or "").strip()
    order = _components()["orders"].update_status(order_id, status)
    log_event("info", "admin.order_status", admin_id=require_user()["id"], order_id=order_id, status=status)
    return jsonify({"order": order})


@admin_bp.post("/orders/<int:order_id>/payment-status")
def update_payment_status(order_id: int):
    orders = _components()["orders"]
    order = orders.get_order(order_id)
    status = (payload().get("payment_status") or "").strip()
    return jsonify({"order": orders.mark_payment(order["order_code"], status)})


# --- users ---------------------------------------------------------------

@admin_bp.get("/users")
def list_users():
    users = _components()["users"].list_users(
        role=request.args.get("role") or None,
        search=(request.args.get("search") or "").strip() or None,
    )
    return jsonify({"users": users})


@admin_bp.post("/users/<int:user_id>/status")
def update_user_status(user_id: int):
    body = payload()
    if "is_active" not in body:
        raise ValueError("is_active is required")
    user = _components()["users"].update_status(
        user_id, _truthy(body["is_active"]), acting_user_id=require_user()["id"]
    )
    return jsonify({"user": user})


@admin_bp.post("/users/<int:user_id>/role")
def update_user_role(user_id: int):
    role = (payload().get("role") or "").strip()
    return jsonify({"user": _components()["users"].update_role(user_id, role)})


# --- banners -------------------------------------------------------------

@admin_bp.get("/banners")
def list_banners():
    return jsonify({"banners": _components()["banners"].list_banners()})


@admin_bp.post("/banners")
def create_banner():
    return jsonify({"banner": _components()["banners"].create_banner(payload())}), 201


@admin_bp.route("/banners/<int:banner_id>", methods=["PUT", "POST"])
def update_banner(banner_id: int):
    return jsonify({"banner": _components()["banners"].update_banner(banner_id, payload())})


@admin_bp.delete("/banners/<int:banner_id>")
def delete_banner(banner_id: int):
    _components()["banners"].delete_banner(banner_id)
    return jsonify({"success": True})


# --- sales ---------------------------------------------------------------

@admin_bp.get("/sales")
def list_sales():
    return jsonify({"sales": _components()["sales"].list_sales(active_only=_truthy(request.args.get("active")))})


@admin_bp.post("/sales")
def create_sale():
    return jsonify({"sale": _components()["sales"].create_sale(payload())}), 201


@admin_bp.get("/sales/<int:sale_id>")
def get_sale(sale_id: int):
    return jsonify({"sale": _components()["sales"].get_sale(sale_id)})


@admin_bp.route("/sales/<int:sale_id>", methods=["PUT", "POST"])
def update_sale(sale_id: int):
    return jsonify({"sale": _components()["sales"].update_sale(sale_id, payload())})


@admin_bp.delete("/sales/<int:sale_id>")
def delete_sale(sale_id: int):
    _components()["sales"].delete_sale(sale_id)
    return jsonify({"success": True})


@admin_bp.post("/sales/sync")
def sync_sales():
    sales = _components()["sales"]
    return jsonify({"activated": sales.activate_scheduled(), "deactivated": sales.deactivate_expired()})


# --- vouchers ------------------------------------------------------------

@admin_bp.get("/vouchers")
def list_vouchers():
    vouchers = _components()["vouchers"].list_vouchers(
        is_active=_flag_arg("is_active"),
        search=(request.args.get("search") or "").strip() or None,
    )
    return jsonify({"vouchers": vouchers})


@admin_bp.post("/vouchers")
def create_voucher():
    return jsonify({"voucher": _components()["vouchers"].create_voucher(payload())}), 201


@admin_bp.get("/vouchers/<int:voucher_id>")
def get_voucher(voucher_id: int):
    return jsonify({"voucher": _components()["vouchers"].get_voucher(voucher_id)})


@admin_bp.route("/vouchers/<int:voucher_id>", methods=["PUT", "POST"])
def update_voucher(voucher_id: int):
    return jsonify({"voucher": _components()["vouchers"].update_voucher(voucher_id, payload())})


@admin_bp.post("/vouchers/<int:voucher_id>/status")
def update_voucher_status(voucher_id: int):
    body = payload()
    if "is_active" not in body:
        raise ValueError("is_active is required")
    return jsonify({"voucher": _components()["vouchers"].set_status(voucher_id, _truthy(body["is_active"]))})


@admin_bp.delete("/vouchers/<int:voucher_id>")
def delete_voucher(voucher_id: int):
    _components()["vouchers"].delete_voucher(voucher_id)
    return jsonify({"success": True})


# --- marketing email -----------------------------------------------------

@admin_bp.post("/email/send")
def send_campaign():
    """Broadcast to opted-in customers (``audience=marketing``) or newsletter subscribers."""
    body = payload()
    subject = (body.get("subject") or "").strip()
    content = (body.get("content") or "").strip()
    if not subject or not content:
        raise ValueError("Vui lòng nhập tiêu đề và nội dung email")
    c = _components()
    audience = body.get("audience") or "marketing"
    if audience == "newsletter":
        recipients = c["newsletter"].active_subscribers()
    elif audience == "marketing":
        recipients = c["users"].marketing_list()
    else:
        raise ValueError("audience must be marketing or newsletter")
    result = c["mailer"].send_marketing(recipients, subject, content)
    log_event("info", "admin.campaign", admin_id=require_user()["id"], audience=audience, **result)
    return jsonify(result)
