"""JSON endpoints used by storefront scripts: newsletter signup and the address pickers."""

from __future__ import annotations

from typing import Any, Dict

from flask import Blueprint, current_app, jsonify, request

from .guards import current_user, payload


api_bp = Blueprint("api", __name__, url_prefix="/api")


def _components() -> Dict[str, Any]:
    return current_app.extensions["store_components"]


@api_bp.post("/newsletter/subscribe")
def newsletter_subscribe():
    user = current_user()
    result = _components()["newsletter"].subscribe(
        payload().get("email", ""), user_id=user["id"] if user else None
    )
    message = (
        "Chào mừng bạn quay trở lại!" if result["action"] == "reactivated" else "Đăng ký nhận tin thành công!"
    )
    return jsonify({"success": True, "message": message, **result}), 201


@api_bp.post("/newsletter/unsubscribe")
def newsletter_unsubscribe():
    if not _components()["newsletter"].unsubscribe(payload().get("email", "")):
        return jsonify({"error": "Email không tồn tại trong danh sách"}), 404
    return jsonify({"success": True, "message": "Đã hủy đăng ký nhận tin"})


@api_bp.get("/newsletter/status")
def newsletter_status():
    newsletter = _components()["newsletter"]
    email = (request.args.get("email") or "").strip()
    if email:
        return jsonify({"email": email, "subscribed": newsletter.is_email_subscribed(email)})
    user = current_user()
    if user is None:
        raise ValueError("email is required")
    return jsonify({"user_id": user["id"], "subscribed": newsletter.is_user_subscribed(user["id"])})


@api_bp.get("/locations/provinces")
def provinces():
    return jsonify({"provinces": _components()["locations"].provinces()})


@api_bp.get("/locations/provinces/<int:code>/districts")
def districts(code: int):
    return jsonify({"districts": _components()["locations"].districts(code)})


@api_bp.get("/locations/districts/<int:code>/wards")
def wards(code: int):
    return jsonify({"wards": _components()["locations"].wards(code)})
