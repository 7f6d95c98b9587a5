"""Request identity: JWT lookup, login/admin gates and the anonymous cart id."""

from __future__ import annotations

from functools import wraps
from typing import Any, Dict, Optional
from uuid import uuid4

from flask import current_app, g, request, session

from common.errors import AuthError


TOKEN_COOKIE = "token"
CART_SESSION_KEY = "cart_session_id"


def _auth_service():
    return current_app.extensions["store_components"]["auth"]


def _token_from_request() -> Optional[str]:
    token = request.cookies.get(TOKEN_COOKIE)
    if token:
        return token
    header = request.headers.get("Authorization", "")
    if header.lower().startswith("bearer "):
        return header[7:].strip() or None
    return None


def load_current_user() -> None:
    """``before_app_request`` hook: populate ``g.user`` (or None) without failing the request."""
    g.user = None
    g.auth_error = None
    token = _token_from_request()
    if not token:
        return
    try:
        g.user = _auth_service().decode_token(token)
    except AuthError as exc:
        g.auth_error = str(exc)


def current_user() -> Optional[Dict[str, Any]]:
    return getattr(g, "user", None)


def require_user() -> Dict[str, Any]:
    user = current_user()
    if user is None:
        raise AuthError(getattr(g, "auth_error", None) or "Access denied. No token provided.", status=401)
    return user


def require_admin() -> Dict[str, Any]:
    user = require_user()
    if user.get("role") != "admin":
        raise AuthError("Access denied. Admin only.", status=403)
    return user


def login_required(view):
    @wraps(view)
    def wrapper(*args, **kwargs):
        require_user()
        return view(*args, **kwargs)

    return wrapper


def cart_session_id(create: bool = True) -> Optional[str]:
    sid = session.get(CART_SESSION_KEY)
    if not sid and create:
        sid = uuid4().hex
        session[CART_SESSION_KEY] = sid
    return sid


def cart_identity() -> Dict[str, Any]:
    user = current_user()
    if user:
        return {"user_id": user["id"], "session_id": None}
    return {"user_id": None, "session_id": cart_session_id()}


def payload() -> Dict[str, Any]:
    """JSON body or form fields, whichever the client sent."""
    data = request.get_json(silent=True)
    if isinstance(data, dict):
        return data
    return request.form.to_dict()
