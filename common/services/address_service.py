from typing import Dict, List, Optional

from ..db.session import get_session
from ..errors import NotFoundError
from ..models.address import Address
from ..utils.validators import PHONE_PATTERN


REQUIRED_FIELDS = ("full_name", "phone", "address_line", "city")


class AddressService:
    """Shipping addresses; at most one default per user."""

    def __init__(self, session_factory=get_session):
        self._session_factory = session_factory

    @staticmethod
    def _clear_default(session, user_id: int, keep_id: Optional[int] = None) -> None:
        q = session.query(Address).filter(Address.user_id == user_id, Address.is_default.is_(True))
        if keep_id is not None:
            q = q.filter(Address.id != keep_id)
        q.update({Address.is_default: False}, synchronize_session=False)

    @staticmethod
    def _apply(addr: Address, data: Dict, creating: bool) -> None:
        for key in REQUIRED_FIELDS:
            if creating or key in data:
                value = (data.get(key) or "").strip()
                if not value:
                    raise ValueError(f"{key} required")
                setattr(addr, key, value)
        if not PHONE_PATTERN.match(addr.phone):
            raise ValueError("Số điện thoại không hợp lệ")
        for key in ("ward", "district"):
            if creating or key in data:
                setattr(addr, key, (data.get(key) or "").strip() or None)

    def list_addresses(self, user_id: int) -> List[Dict]:
        with self._session_factory() as session:
            rows = (
                session.query(Address)
                .filter(Address.user_id == user_id)
                .order_by(Address.is_default.desc(), Address.created_at.desc(), Address.id.desc())
                .all()
            )
            return [a.to_dict() for a in rows]

    def get_address(self, address_id: int, user_id: int) -> Dict:
        with self._session_factory() as session:
            addr = session.query(Address).filter(Address.id == address_id, Address.user_id == user_id).first()
            if addr is None:
                raise NotFoundError("Không tìm thấy địa chỉ")
            return addr.to_dict()

    def get_default(self, user_id: int) -> Optional[Dict]:
        with self._session_factory() as session:
            addr = (
                session.query(Address)
                .filter(Address.user_id == user_id, Address.is_default.is_(True))
                .first()
            )
            return addr.to_dict() if addr else None

    def create_address(self, user_id: int, data: Dict) -> Dict:
        with self._session_factory() as session:
            addr = Address(user_id=user_id)
            self._apply(addr, data, creating=True)
            has_any = session.query(Address.id).filter(Address.user_id == user_id).first()
            addr.is_default = bool(data.get("is_default")) or not has_any
            if addr.is_default:
                self._clear_default(session, user_id)
            session.add(addr)
            session.flush()
            return addr.to_dict()

    def update_address(self, address_id: int, user_id: int, data: Dict) -> Dict:
        with self._session_factory() as session:
            addr = session.query(Address).filter(Address.id == address_id, Address.user_id == user_id).first()
            if addr is None:
                raise NotFoundError("Không tìm thấy địa chỉ")
            self._apply(addr, data, creating=False)
            if data.get("is_default"):
                self._clear_default(session, user_id, keep_id=addr.id)
                addr.is_default = True
            session.flush()
            return addr.to_dict()

    def delete_address(self, address_id: int, user_id: int) -> None:
        with self._session_factory() as session:
            addr = session.query(Address).filter(Address.id == address_id, Address.user_id == user_id).first()
            if addr is None:
                raise NotFoundError("Không tìm thấy địa chỉ")
            session.delete(addr)
