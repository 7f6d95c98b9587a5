"""Account registration, login, JWT issuance and one-time email codes."""

import secrets
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional

import bcrypt
import jwt

from ..db.session import get_session
from ..errors import AuthError, NotFoundError
from ..models.user import User
from ..utils.validators import is_valid_email, normalize_email
from .logging import log_event


CODE_TTL = timedelta(minutes=10)
MIN_PASSWORD_LENGTH = 6


def hash_password(password: str, rounds: int = 12) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds)).decode("utf-8")


def verify_password(password: str, hashed: str) -> bool:
    if not password or not hashed:
        return False
    try:
        return bcrypt.checkpw(password.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        return False


def generate_code() -> str:
    return f"{secrets.randbelow(1_000_000):06d}"


def check_password_strength(password: Optional[str]) -> str:
    if not password or len(password) < MIN_PASSWORD_LENGTH:
        raise ValueError(f"Mật khẩu phải có ít nhất {MIN_PASSWORD_LENGTH} ký tự")
    return password


class AuthService:
    """Credentials and tokens.

    ``notifier`` is any object exposing ``send_verification_code`` and
    ``send_password_reset_code`` (see ``services.email_service``); it is
    optional so the service stays usable without SMTP.
    """

    def __init__(
        self,
        session_factory=get_session,
        *,
        jwt_secret: str,
        jwt_expire_seconds: int = 24 * 3600,
        notifier=None,
        bcrypt_rounds: int = 12,
    ):
        if not jwt_secret:
            raise ValueError("jwt_secret required")
        self._session_factory = session_factory
        self._jwt_secret = jwt_secret
        self._jwt_expire = int(jwt_expire_seconds)
        self._notifier = notifier
        self._rounds = bcrypt_rounds

    # --- tokens ----------------------------------------------------------

    def issue_token(self, user: Dict) -> str:
        now = datetime.now(timezone.utc)
        payload = {
            "id": user["id"],
            "email": user["email"],
            "role": user.get("role") or "customer",
            "iat": now,
            "exp": now + timedelta(seconds=self._jwt_expire),
        }
        return jwt.encode(payload, self._jwt_secret, algorithm="HS256")

    def decode_token(self, token: str) -> Dict:
        try:
            payload = jwt.decode(token, self._jwt_secret, algorithms=["HS256"])
        except jwt.ExpiredSignatureError:
            raise AuthError("Token expired", status=401) from None
        except jwt.InvalidTokenError:
            raise AuthError("Invalid token", status=401) from None
        return {"id": payload.get("id"), "email": payload.get("email"), "role": payload.get("role") or "customer"}

    # --- registration / login -------------------------------------------

    def register(
        self,
        *,
        email: str,
        password: str,
        full_name: str,
        phone: Optional[str] = None,
        marketing_consent: bool = False,
    ) -> Dict:
        addr = normalize_email(email)
        if not is_valid_email(addr):
            raise ValueError("Email không hợp lệ")
        if not (full_name or "").strip():
            raise ValueError("Họ tên không được để trống")
        check_password_strength(password)
        code = generate_code()
        with self._session_factory() as session:
            if session.query(User.id).filter(User.email == addr).first():
                raise ValueError("Email already exists")
            user = User(
                email=addr,
                password=hash_password(password, self._rounds),
                full_name=full_name.strip(),
                phone=(phone or "").strip() or None,
                role="customer",
                is_active=True,
                email_verified=False,
                marketing_consent=bool(marketing_consent),
                verification_code=code,
                verification_expires=datetime.now() + CODE_TTL,
            )
            session.add(user)
            session.flush()
            data = user.to_dict()
        log_event("info", "auth.registered", user_id=data["id"])
        if self._notifier is not None:
            self._notifier.send_verification_code(data["email"], data["full_name"], code)
        return data

    def login(self, email: str, password: str) -> Dict:
        """Return ``{"user": ..., "token": ...}`` or raise ``ValueError``/``AuthError``."""
        addr = normalize_email(email)
        if not addr or not password:
            raise ValueError("Vui lòng nhập email và mật khẩu")
        with self._session_factory() as session:
            user = session.query(User).filter(User.email == addr).first()
            if user is None or not verify_password(password, user.password):
                log_event("warning", "auth.login_failed", email=addr)
                raise AuthError("Email hoặc mật khẩu không đúng", status=401)
            if not user.is_active:
                raise AuthError("Tài khoản đã bị khóa", status=403)
            data = user.to_dict()
        log_event("info", "auth.login", user_id=data["id"])
        return {"user": data, "token": self.issue_token(data)}

    def create_admin(self, *, email: str, password: str, full_name: str = "Administrator") -> Dict:
        """Create or promote an admin account (used by the CLI)."""
        addr = normalize_email(email)
        if not is_valid_email(addr):
            raise ValueError("Email không hợp lệ")
        check_password_strength(password)
        with self._session_factory() as session:
            user = session.query(User).filter(User.email == addr).first()
            if user is None:
                user = User(email=addr, full_name=full_name, marketing_consent=False)
                session.add(user)
            user.password = hash_password(password, self._rounds)
            user.role = "admin"
            user.is_active = True
            user.email_verified = True
            session.flush()
            return user.to_dict()

    # --- email verification ---------------------------------------------

    def verify_email(self, user_id: int, code: str) -> Dict:
        with self._session_factory() as session:
            user = session.get(User, user_id)
            if user is None:
                raise NotFoundError("User not found")
            if user.email_verified:
                return user.to_dict()
            if not self._code_matches(user.verification_code, user.verification_expires, code):
                raise ValueError("Mã xác thực không đúng hoặc đã hết hạn")
            user.email_verified = True
            user.verification_code = None
            user.verification_expires = None
            session.flush()
            return user.to_dict()

    def resend_verification(self, user_id: int) -> None:
        code = generate_code()
        with self._session_factory() as session:
            user = session.get(User, user_id)
            if user is None:
                raise NotFoundError("User not found")
            if user.email_verified:
                raise ValueError("Email đã được xác thực")
            user.verification_code = code
            user.verification_expires = datetime.now() + CODE_TTL
            email, name = user.email, user.full_name
        if self._notifier is not None:
            self._notifier.send_verification_code(email, name, code)

    # --- password reset --------------------------------------------------

    def request_password_reset(self, email: str) -> bool:
        """Issue a reset code; unknown emails return False without revealing it to callers."""
        addr = normalize_email(email)
        code = generate_code()
        with self._session_factory() as session:
            user = session.query(User).filter(User.email == addr, User.is_active.is_(True)).first()
            if user is None:
                return False
            user.reset_code = code
            user.reset_expires = datetime.now() + CODE_TTL
            name = user.full_name
        if self._notifier is not None:
            self._notifier.send_password_reset_code(addr, name, code)
        return True

    def reset_password(self, email: str, code: str, new_password: str) -> None:
        check_password_strength(new_password)
        addr = normalize_email(email)
        with self._session_factory() as session:
            user = session.query(User).filter(User.email == addr).first()
            if user is None or not self._code_matches(user.reset_code, user.reset_expires, code):
                raise ValueError("Mã xác thực không đúng hoặc đã hết hạn")
            user.password = hash_password(new_password, self._rounds)
            user.reset_code = None
            user.reset_expires = None
        log_event("info", "auth.password_reset", email=addr)

    @staticmethod
    def _code_matches(stored: Optional[str], expires: Optional[datetime], supplied: Optional[str]) -> bool:
        if not stored or not supplied or expires is None:
            return False
        if datetime.now() > expires:
            return False
        return secrets.compare_digest(stored, str(supplied).strip())
