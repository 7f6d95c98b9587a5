"""Shopping cart endpoints for guests and signed-in customers."""

from __future__ import annotations

from typing import Any, Dict

from flask import Blueprint, current_app, jsonify

from common.utils.validators import ensure_positive_int, optional_int

from .guards import cart_identity, payload


cart_bp = Blueprint("cart", __name__, url_prefix="/cart")


def _components() -> Dict[str, Any]:
    return current_app.extensions["store_components"]


def cart_summary() -> Dict[str, Any]:
    c = _components()
    data = c["cart"].get_cart(**cart_identity())
    shipping = float(c["orders"].shipping_fee(data["subtotal"])) if data["items"] else 0.0
    data["shipping_fee"] = shipping
    data["total"] = data["subtotal"] + shipping
    return data


@cart_bp.get("")
def view_cart():
    return jsonify(cart_summary())


@cart_bp.post("/add")
def add_to_cart():
    body = payload()
    result = _components()["cart"].add_item(
        product_id=ensure_positive_int(body.get("product_id"), "product_id"),
        quantity=ensure_positive_int(body.get("quantity") or 1, "quantity"),
        variant_id=optional_int(body.get("variant_id")),
        **cart_identity(),
    )
    result["cart_count"] = _components()["cart"].count(**cart_identity())
    return jsonify(result)


@cart_bp.post("/update")
def update_cart_item():
    body = payload()
    if body.get("quantity") in (None, ""):
        raise ValueError("quantity required")
    result = _components()["cart"].update_quantity(
        item_id=ensure_positive_int(body.get("item_id"), "item_id"),
        quantity=int(body.get("quantity")),
        **cart_identity(),
    )
    result["cart"] = cart_summary()
    return jsonify(result)


@cart_bp.post("/remove")
def remove_cart_item():
    body = payload()
    _components()["cart"].remove_item(item_id=ensure_positive_int(body.get("item_id"), "item_id"), **cart_identity())
    return jsonify({"status": "removed", "cart": cart_summary()})


@cart_bp.get("/count")
def cart_count():
    return jsonify({"count": _components()["cart"].count(**cart_identity())})
