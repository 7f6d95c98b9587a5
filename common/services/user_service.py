from typing import Dict, List, Optional

from sqlalchemy import func, or_

from ..db.session import get_session
from ..errors import NotFoundError
from ..models.user import User
from ..utils.validators import PHONE_PATTERN, parse_date
from .auth_service import check_password_strength, hash_password, verify_password
from .logging import log_event


ROLES = ("customer", "admin")


class UserService:
    """Profile maintenance for customers and user administration for staff."""

    def __init__(self, session_factory=get_session, *, bcrypt_rounds: int = 12):
        self._session_factory = session_factory
        self._rounds = bcrypt_rounds

    @staticmethod
    def _get(session, user_id: int, active_only: bool = True) -> User:
        user = session.get(User, user_id)
        if user is None or (active_only and not user.is_active):
            raise NotFoundError("User not found")
        return user

    def get_user(self, user_id: int) -> Dict:
        with self._session_factory() as session:
            return self._get(session, user_id).to_dict()

    def find_by_email(self, email: str) -> Optional[Dict]:
        with self._session_factory() as session:
            user = session.query(User).filter(User.email == (email or "").strip().lower()).first()
            return user.to_dict() if user else None

    def update_profile(self, user_id: int, data: Dict) -> Dict:
        with self._session_factory() as session:
            user = self._get(session, user_id)
            if "full_name" in data:
                name = (data.get("full_name") or "").strip()
                if not name:
                    raise ValueError("Họ tên không được để trống")
                user.full_name = name
            if "phone" in data:
                phone = (data.get("phone") or "").strip() or None
                if phone and not PHONE_PATTERN.match(phone):
                    raise ValueError("Số điện thoại không hợp lệ")
                user.phone = phone
            if "birthday" in data:
                user.birthday = parse_date(data.get("birthday"), "birthday")
            if "avatar_url" in data:
                user.avatar_url = data.get("avatar_url") or None
            if "marketing_consent" in data:
                user.marketing_consent = bool(data.get("marketing_consent"))
            session.flush()
            return user.to_dict()

    def change_password(self, user_id: int, current_password: str, new_password: str) -> None:
        check_password_strength(new_password)
        with self._session_factory() as session:
            user = self._get(session, user_id)
            if not verify_password(current_password, user.password):
                raise ValueError("Mật khẩu hiện tại không đúng")
            user.password = hash_password(new_password, self._rounds)
        log_event("info", "user.password_changed", user_id=user_id)

    def marketing_list(self) -> List[Dict]:
        """Users who opted in, verified their email and are still active."""
        with self._session_factory() as session:
            rows = (
                session.query(User)
                .filter(
                    User.marketing_consent.is_(True),
                    User.email_verified.is_(True),
                    User.is_active.is_(True),
                )
                .order_by(User.id)
                .all()
            )
            return [{"id": u.id, "email": u.email, "full_name": u.full_name} for u in rows]

    # --- admin -----------------------------------------------------------

    def list_users(self, *, role: Optional[str] = None, search: Optional[str] = None) -> List[Dict]:
        with self._session_factory() as session:
            q = session.query(User)
            if role:
                q = q.filter(User.role == role)
            if search:
                like = f"%{search}%"
                q = q.filter(or_(User.email.ilike(like), User.full_name.ilike(like), User.phone.ilike(like)))
            return [u.to_dict() for u in q.order_by(User.created_at.desc(), User.id.desc()).all()]

    def update_status(self, user_id: int, is_active: bool, *, acting_user_id: Optional[int] = None) -> Dict:
        if acting_user_id is not None and int(acting_user_id) == int(user_id) and not is_active:
            raise ValueError("Không thể khóa tài khoản của chính bạn")
        with self._session_factory() as session:
            user = self._get(session, user_id, active_only=False)
            user.is_active = bool(is_active)
            session.flush()
            log_event("info", "user.status_changed", user_id=user_id, is_active=bool(is_active))
            return user.to_dict()

    def update_role(self, user_id: int, role: str) -> Dict:
        if role not in ROLES:
            raise ValueError("role must be customer or admin")
        with self._session_factory() as session:
            user = self._get(session, user_id, active_only=False)
            user.role = role
            session.flush()
            return user.to_dict()

    def count(self, *, role: Optional[str] = None) -> int:
        with self._session_factory() as session:
            q = session.query(func.count(User.id))
            if role:
                q = q.filter(User.role == role)
            return int(q.scalar() or 0)
