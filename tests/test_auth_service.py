from datetime import datetime, timedelta, timezone

import jwt
import pytest

from common.errors import AuthError
from common.models import User
from common.services.auth_service import AuthService


class RecordingNotifier:
    def __init__(self):
        self.codes = {}

    def send_verification_code(self, email, full_name, code):
        self.codes[("verify", email)] = code
        return True

    def send_password_reset_code(self, email, full_name, code):
        self.codes[("reset", email)] = code
        return True


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def auth(session_factory, notifier):
    return AuthService(session_factory, jwt_secret="s3cret", jwt_expire_seconds=3600, notifier=notifier, bcrypt_rounds=4)


def _register(auth, email="Khach@Example.com"):
    return auth.register(email=email, password="matkhau123", full_name="Lê Văn C")


def test_register_hashes_password_and_sends_code(auth, notifier, session_factory):
    user = _register(auth)
    assert user["email"] == "khach@example.com"
    assert not user["email_verified"]
    assert len(notifier.codes[("verify", "khach@example.com")]) == 6
    with session_factory() as session:
        assert session.get(User, user["id"]).password != "matkhau123"


def test_register_validation(auth):
    _register(auth)
    with pytest.raises(ValueError, match="Email already exists"):
        _register(auth)
    with pytest.raises(ValueError):
        auth.register(email="x@example.com", password="123", full_name="X")
    with pytest.raises(ValueError):
        auth.register(email="bad-email", password="matkhau123", full_name="X")


def test_login_and_token_round_trip(auth):
    _register(auth)
    result = auth.login("KHACH@example.com", "matkhau123")
    identity = auth.decode_token(result["token"])
    assert identity == {"id": result["user"]["id"], "email": "khach@example.com", "role": "customer"}

    with pytest.raises(AuthError) as exc:
        auth.login("khach@example.com", "sai")
    assert exc.value.status == 401


def test_locked_account_cannot_login(auth, session_factory):
    user = _register(auth)
    with session_factory() as session:
        session.get(User, user["id"]).is_active = False
    with pytest.raises(AuthError) as exc:
        auth.login("khach@example.com", "matkhau123")
    assert exc.value.status == 403


def test_expired_and_foreign_tokens(auth):
    past = datetime.now(timezone.utc) - timedelta(hours=2)
    expired = jwt.encode({"id": 1, "email": "a@b.c", "iat": past, "exp": past + timedelta(hours=1)},
                         "s3cret", algorithm="HS256")
    with pytest.raises(AuthError, match="Token expired"):
        auth.decode_token(expired)
    foreign = jwt.encode({"id": 1, "email": "a@b.c"}, "other-secret", algorithm="HS256")
    with pytest.raises(AuthError, match="Invalid token"):
        auth.decode_token(foreign)


def test_verify_email_with_code(auth, notifier):
    user = _register(auth)
    code = notifier.codes[("verify", user["email"])]
    wrong = "000000" if code != "000000" else "111111"
    with pytest.raises(ValueError):
        auth.verify_email(user["id"], wrong)
    verified = auth.verify_email(user["id"], code)
    assert verified["email_verified"]


def test_password_reset(auth, notifier):
    _register(auth)
    assert not auth.request_password_reset("nobody@example.com")
    assert auth.request_password_reset("khach@example.com")
    code = notifier.codes[("reset", "khach@example.com")]
    auth.reset_password("khach@example.com", code, "matkhaumoi")
    assert auth.login("khach@example.com", "matkhaumoi")["token"]
    with pytest.raises(ValueError):
        auth.reset_password("khach@example.com", code, "matkhaukhac")


def test_create_admin_promotes_existing_user(auth):
    _register(auth)
    admin = auth.create_admin(email="khach@example.com", password="quantri123")
    assert admin["role"] == "admin"
    assert auth.login("khach@example.com", "quantri123")["user"]["role"] == "admin"
