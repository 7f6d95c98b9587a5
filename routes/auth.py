"""Account endpoints: register/login/logout, email codes, profile and addresses."""

from __future__ import annotations

from typing import Any, Dict

from flask import Blueprint, current_app, jsonify, session

from .guards import (
    CART_SESSION_KEY,
    TOKEN_COOKIE,
    cart_session_id,
    login_required,
    payload,
    require_user,
)


auth_bp = Blueprint("auth", __name__, url_prefix="/auth")


def _components() -> Dict[str, Any]:
    return current_app.extensions["store_components"]


def _config():
    return current_app.config["STORE_CONFIG"]


def _truthy(value: Any) -> bool:
    return str(value).lower() in ("1", "true", "yes", "on")


def _signed_in_response(user: Dict[str, Any], token: str, status: int = 200):
    """Set the auth cookie and fold the anonymous cart into the user's cart."""
    c = _components()
    guest_sid = cart_session_id(create=False)
    if guest_sid:
        c["cart"].merge_guest_cart(user_id=user["id"], session_id=guest_sid)
        session.pop(CART_SESSION_KEY, None)
    response = jsonify({"user": user, "token": token})
    response.status_code = status
    response.set_cookie(
        TOKEN_COOKIE,
        token,
        max_age=_config().jwt_expire_seconds,
        httponly=True,
        samesite="Lax",
    )
    return response


@auth_bp.post("/register")
def register():
    body = payload()
    c = _components()
    if body.get("confirm_password") is not None and body.get("confirm_password") != body.get("password"):
        raise ValueError("Mật khẩu xác nhận không khớp")
    user = c["auth"].register(
        email=body.get("email", ""),
        password=body.get("password", ""),
        full_name=body.get("full_name", ""),
        phone=body.get("phone"),
        marketing_consent=_truthy(body.get("marketing_consent")),
    )
    c["newsletter"].link_to_user(user["email"], user["id"])
    c["mailer"].send_welcome(user["email"], user["full_name"])
    return _signed_in_response(user, c["auth"].issue_token(user), status=201)


@auth_bp.post("/login")
def login():
    body = payload()
    result = _components()["auth"].login(body.get("email", ""), body.get("password", ""))
    return _signed_in_response(result["user"], result["token"])


@auth_bp.route("/logout", methods=["GET", "POST"])
def logout():
    session.pop(CART_SESSION_KEY, None)
    response = jsonify({"status": "ok"})
    response.delete_cookie(TOKEN_COOKIE)
    return response


@auth_bp.post("/verify-email")
@login_required
def verify_email():
    user = require_user()
    verified = _components()["auth"].verify_email(user["id"], payload().get("code", ""))
    return jsonify({"status": "ok", "user": verified})


@auth_bp.post("/resend-verification")
@login_required
def resend_verification():
    _components()["auth"].resend_verification(require_user()["id"])
    return jsonify({"status": "ok", "message": "Đã gửi lại mã xác thực"})


@auth_bp.post("/forgot-password")
def forgot_password():
    _components()["auth"].request_password_reset(payload().get("email", ""))
    # same answer whether or not the account exists
    return jsonify({"status": "ok", "message": "Nếu email tồn tại, mã đặt lại mật khẩu đã được gửi"})


@auth_bp.post("/reset-password")
def reset_password():
    body = payload()
    _components()["auth"].reset_password(body.get("email", ""), body.get("code", ""), body.get("password", ""))
    return jsonify({"status": "ok", "message": "Đặt lại mật khẩu thành công"})


@auth_bp.get("/profile")
@login_required
def profile():
    c = _components()
    user_id = require_user()["id"]
    return jsonify(
        {
            "user": c["users"].get_user(user_id),
            "addresses": c["addresses"].list_addresses(user_id),
            "newsletter_subscribed": c["newsletter"].is_user_subscribed(user_id),
        }
    )


@auth_bp.post("/profile")
@login_required
def update_profile():
    body = payload()
    allowed = {k: body[k] for k in ("full_name", "phone", "birthday", "avatar_url", "marketing_consent") if k in body}
    if "marketing_consent" in allowed:
        allowed["marketing_consent"] = _truthy(allowed["marketing_consent"])
    user = _components()["users"].update_profile(require_user()["id"], allowed)
    return jsonify({"status": "ok", "user": user})


@auth_bp.post("/change-password")
@login_required
def change_password():
    body = payload()
    if body.get("confirm_password") is not None and body.get("confirm_password") != body.get("new_password"):
        raise ValueError("Mật khẩu xác nhận không khớp")
    _components()["users"].change_password(
        require_user()["id"], body.get("current_password", ""), body.get("new_password", "")
    )
    return jsonify({"status": "ok", "message": "Đổi mật khẩu thành công"})


@auth_bp.get("/addresses")
@login_required
def list_addresses():
    return jsonify({"addresses": _components()["addresses"].list_addresses(require_user()["id"])})


@auth_bp.post("/addresses")
@login_required
def create_address():
    body = payload()
    body["is_default"] = _truthy(body.get("is_default"))
    address = _components()["addresses"].create_address(require_user()["id"], body)
    return jsonify({"status": "ok", "address": address}), 201


@auth_bp.route("/addresses/<int:address_id>", methods=["PUT", "POST"])
@login_required
def update_address(address_id: int):
    body = payload()
    if "is_default" in body:
        body["is_default"] = _truthy(body.get("is_default"))
    address = _components()["addresses"].update_address(address_id, require_user()["id"], body)
    return jsonify({"status": "ok", "address": address})


@auth_bp.post("/addresses/<int:address_id>/default")
@login_required
def set_default_address(address_id: int):
    address = _components()["addresses"].update_address(address_id, require_user()["id"], {"is_default": True})
    return jsonify({"status": "ok", "address": address})


@auth_bp.delete("/addresses/<int:address_id>")
@login_required
def delete_address(address_id: int):
    _components()["addresses"].delete_address(address_id, require_user()["id"])
    return jsonify({"status": "ok"})
