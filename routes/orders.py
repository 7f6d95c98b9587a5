"""Checkout, buy-now, order pages and payment-provider callbacks."""

from __future__ import annotations

from typing import Any, Dict

from flask import Blueprint, current_app, jsonify, redirect, request, url_for

from common.errors import UpstreamError
from common.services.logging import log_event
from common.utils.validators import ensure_positive_int, optional_int
from services import cod_payment

from .guards import login_required, payload, require_user


orders_bp = Blueprint("orders", __name__, url_prefix="/orders")


def _components() -> Dict[str, Any]:
    return current_app.extensions["store_components"]


def _confirmation_url(order_code: str) -> str:
    return url_for("orders.confirmation", order_code=order_code)


def _start_payment(order: Dict[str, Any]) -> Dict[str, Any]:
    """Hand the new order to its payment provider; a provider failure marks the payment failed."""
    c = _components()
    method = order["payment_method"]
    try:
        if method == "vnpay":
            payment = c["vnpay"].create_payment_url(order, client_ip=request.remote_addr or "127.0.0.1")
        elif method == "momo":
            payment = c["momo"].create_payment(order)
        else:
            payment = cod_payment()
    except UpstreamError:
        c["orders"].mark_payment(order["order_code"], "failed")
        raise
    redirect_url = payment.get("payment_url") if method == "vnpay" else _confirmation_url(order["order_code"])
    return {"order": order, "payment": payment, "redirect_url": redirect_url}


def _notify(order: Dict[str, Any]) -> None:
    user = require_user()
    c = _components()
    profile = c["users"].get_user(user["id"])
    c["mailer"].send_order_confirmation(profile["email"], profile["full_name"], order)


@orders_bp.get("/checkout")
@login_required
def checkout():
    c = _components()
    user_id = require_user()["id"]
    cart = c["cart"].get_cart(user_id=user_id)
    if not cart["items"]:
        return redirect(url_for("cart.view_cart"))
    shipping = float(c["orders"].shipping_fee(cart["subtotal"]))
    return jsonify(
        {
            "cart": cart,
            "shipping_fee": shipping,
            "total": cart["subtotal"] + shipping,
            "addresses": c["addresses"].list_addresses(user_id),
            "vouchers": c["vouchers"].available_for_checkout(),
        }
    )


@orders_bp.post("/create")
@login_required
def create_order():
    body = payload()
    if not body.get("address_id") or not body.get("payment_method"):
        raise ValueError("Address and payment method are required")
    order = _components()["orders"].create_order(
        user_id=require_user()["id"],
        address_id=ensure_positive_int(body.get("address_id"), "address_id"),
        payment_method=body.get("payment_method"),
        notes=body.get("notes"),
        voucher_code=(body.get("voucher_code") or "").strip() or None,
    )
    _notify(order)
    return jsonify(_start_payment(order)), 201


@orders_bp.get("/buy-now/<int:product_id>")
@login_required
def buy_now(product_id: int):
    c = _components()
    product = c["catalog"].get_product(product_id, track_view=False)
    quantity = optional_int(request.args.get("quantity")) or 1
    subtotal = product["final_price"] * quantity
    shipping = float(c["orders"].shipping_fee(subtotal))
    return jsonify(
        {
            "product": product,
            "quantity": quantity,
            "subtotal": subtotal,
            "shipping_fee": shipping,
            "total": subtotal + shipping,
            "addresses": c["addresses"].list_addresses(require_user()["id"]),
            "vouchers": c["vouchers"].available_for_checkout(),
        }
    )


@orders_bp.post("/buy-now/create")
@login_required
def buy_now_create():
    body = payload()
    if not body.get("address_id") or not body.get("payment_method"):
        raise ValueError("Address and payment method are required")
    order = _components()["orders"].create_buy_now_order(
        user_id=require_user()["id"],
        address_id=ensure_positive_int(body.get("address_id"), "address_id"),
        product_id=ensure_positive_int(body.get("product_id"), "product_id"),
        quantity=ensure_positive_int(body.get("quantity") or 1, "quantity"),
        variant_id=optional_int(body.get("variant_id")),
        payment_method=body.get("payment_method"),
        notes=body.get("notes"),
        voucher_code=(body.get("voucher_code") or "").strip() or None,
    )
    _notify(order)
    return jsonify(_start_payment(order)), 201


@orders_bp.post("/validate-voucher")
@login_required
def validate_voucher():
    """Preview a voucher against the cart, or a buy-now line when ``product_id`` is sent."""
    body = payload()
    c = _components()
    user_id = require_user()["id"]
    product_id = optional_int(body.get("product_id"))
    if product_id:
        product = c["catalog"].get_product(product_id, track_view=False)
        subtotal = product["final_price"] * (optional_int(body.get("quantity")) or 1)
    else:
        subtotal = c["cart"].get_cart(user_id=user_id)["subtotal"]
    check = c["vouchers"].validate(body.get("code", ""), user_id, subtotal)
    check.raise_if_invalid()
    result = check.to_dict()
    result["subtotal"] = subtotal
    return jsonify(result)


@orders_bp.get("/<order_code>/confirmation")
@login_required
def confirmation(order_code: str):
    user = require_user()
    order = _components()["orders"].get_order_by_code(
        order_code, user_id=user["id"], is_admin=user.get("role") == "admin"
    )
    return jsonify({"order": order})


@orders_bp.get("/history")
@login_required
def history():
    limit = min(optional_int(request.args.get("limit")) or 20, 100)
    offset = optional_int(request.args.get("offset")) or 0
    orders = _components()["orders"].list_user_orders(require_user()["id"], limit, offset)
    return jsonify({"orders": orders})


def _apply_payment_result(provider: str, result) -> None:
    status = "paid" if result.success else "failed"
    _components()["orders"].mark_payment(
        result.order_code, status, transaction_id=result.transaction_id, amount=result.amount if result.success else None
    )
    log_event("info", f"payment.{provider}_callback", order_code=result.order_code, status=status)


@orders_bp.get("/payment/vnpay/callback")
def vnpay_callback():
    result = _components()["vnpay"].verify(request.args.to_dict())
    if not result.signature_valid:
        return jsonify({"error": "Invalid signature"}), 400
    _apply_payment_result("vnpay", result)
    if result.success:
        return redirect(_confirmation_url(result.order_code))
    return jsonify({"status": "failed", "order_code": result.order_code, "message": "Payment failed. Please try again."})


@orders_bp.route("/payment/momo/callback", methods=["POST", "GET"])
def momo_callback():
    data = request.get_json(silent=True) if request.method == "POST" else None
    if not isinstance(data, dict):
        data = request.values.to_dict()
    result = _components()["momo"].verify(data)
    if not result.signature_valid:
        return jsonify({"error": "Invalid signature"}), 400
    _apply_payment_result("momo", result)
    if request.method == "GET" and result.success:
        return redirect(_confirmation_url(result.order_code))
    return jsonify({"status": "ok" if result.success else "failed", "order_code": result.order_code})
