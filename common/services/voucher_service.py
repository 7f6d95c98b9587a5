"""Voucher eligibility, discount computation and admin management."""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional

from sqlalchemy import func, or_

from ..db.session import get_session
from ..errors import NotFoundError, VoucherError
from ..models.voucher import VOUCHER_TYPES, Voucher, VoucherUsage
from ..utils.validators import parse_datetime
from .logging import log_event
from .pricing import ZERO, floor_amount, money


REJECTIONS = {
    "not_found": "Mã giảm giá không tồn tại",
    "inactive": "Mã giảm giá đã hết hiệu lực",
    "outside_window": "Mã giảm giá không trong thời gian hiệu lực",
    "usage_exhausted": "Mã giảm giá đã hết lượt sử dụng",
    "below_minimum": "Đơn hàng tối thiểu {minimum}đ để sử dụng mã này",
    "user_limit_exhausted": "Bạn đã sử dụng hết lượt cho mã này",
}


@dataclass
class VoucherCheck:
    valid: bool
    reason: Optional[str] = None
    message: Optional[str] = None
    discount_amount: Decimal = ZERO
    voucher: Optional[Voucher] = None

    def raise_if_invalid(self) -> "VoucherCheck":
        if not self.valid:
            raise VoucherError(self.message, self.reason)
        return self

    def to_dict(self) -> Dict:
        out = {"valid": self.valid, "discount_amount": float(self.discount_amount)}
        if self.valid:
            out["voucher"] = self.voucher.to_dict()
        else:
            out["reason"] = self.reason
            out["message"] = self.message
        return out


def normalize_code(code: Optional[str]) -> str:
    return (code or "").strip().upper()


def compute_discount(voucher: Voucher, subtotal) -> Decimal:
    """Whole-currency discount, never larger than the subtotal."""
    amount = money(subtotal)
    if voucher.type == "percentage":
        discount = amount * money(voucher.value) / 100
        if voucher.max_discount_amount is not None:
            discount = min(discount, money(voucher.max_discount_amount))
    else:
        discount = money(voucher.value)
    return floor_amount(min(max(discount, ZERO), amount))


def _reject(reason: str, **fmt) -> VoucherCheck:
    return VoucherCheck(valid=False, reason=reason, message=REJECTIONS[reason].format(**fmt))


class VoucherService:
    def __init__(self, session_factory=get_session):
        self._session_factory = session_factory

    # --- validation ------------------------------------------------------

    @staticmethod
    def check(
        session,
        code: str,
        user_id: Optional[int],
        subtotal,
        *,
        lock: bool = False,
        now: Optional[datetime] = None,
    ) -> VoucherCheck:
        """Evaluate a voucher inside ``session``.

        With ``lock=True`` the voucher row is selected ``FOR UPDATE`` so the
        caller's transaction serialises concurrent redemptions of one code.
        """
        q = session.query(Voucher).filter(Voucher.code == normalize_code(code))
        if lock:
            q = q.with_for_update()
        voucher = q.first()
        if voucher is None:
            return _reject("not_found")
        if not voucher.is_active:
            return _reject("inactive")
        now = now or datetime.now()
        if not (voucher.start_date <= now <= voucher.end_date):
            return _reject("outside_window")
        if voucher.usage_limit is not None and (voucher.used_count or 0) >= voucher.usage_limit:
            return _reject("usage_exhausted")
        if money(subtotal) < money(voucher.min_order_amount):
            return _reject("below_minimum", minimum=f"{int(money(voucher.min_order_amount)):,}")
        if user_id and voucher.user_limit is not None:
            used_by_user = (
                session.query(func.count(VoucherUsage.id))
                .filter(VoucherUsage.voucher_id == voucher.id, VoucherUsage.user_id == user_id)
                .scalar()
            )
            if used_by_user >= voucher.user_limit:
                return _reject("user_limit_exhausted")
        return VoucherCheck(valid=True, discount_amount=compute_discount(voucher, subtotal), voucher=voucher)

    def validate(self, code: str, user_id: Optional[int], subtotal, now: Optional[datetime] = None) -> VoucherCheck:
        with self._session_factory() as session:
            return self.check(session, code, user_id, subtotal, now=now)

    @staticmethod
    def record_usage(session, voucher: Voucher, user_id: Optional[int], order_id: Optional[int], discount) -> None:
        """Insert the usage row and bump ``used_count`` without exceeding the cap."""
        updated = (
            session.query(Voucher)
            .filter(
                Voucher.id == voucher.id,
                or_(Voucher.usage_limit.is_(None), Voucher.used_count < Voucher.usage_limit),
            )
            .update({Voucher.used_count: Voucher.used_count + 1}, synchronize_session=False)
        )
        if updated != 1:
            raise VoucherError(REJECTIONS["usage_exhausted"], "usage_exhausted")
        session.add(
            VoucherUsage(
                voucher_id=voucher.id,
                user_id=user_id,
                order_id=order_id,
                discount_amount=money(discount),
            )
        )
        session.flush()
        session.refresh(voucher)
        log_event("info", "voucher.redeemed", code=voucher.code, user_id=user_id, order_id=order_id, discount=float(discount))

    # --- storefront listing ---------------------------------------------

    def available_for_checkout(self, now: Optional[datetime] = None) -> List[Dict]:
        """Active percentage/fixed vouchers a customer may pick; shipping vouchers excluded."""
        now = now or datetime.now()
        with self._session_factory() as session:
            rows = (
                session.query(Voucher)
                .filter(
                    Voucher.is_active.is_(True),
                    Voucher.start_date <= now,
                    Voucher.end_date >= now,
                    or_(Voucher.usage_limit.is_(None), Voucher.used_count < Voucher.usage_limit),
                )
                .order_by(Voucher.created_at.desc(), Voucher.id.desc())
                .all()
            )
            out = []
            for v in rows:
                code = v.code.lower()
                name = (v.name or "").lower()
                if "ship" in code or "freeship" in name:
                    continue
                out.append(v.to_dict())
            return out

    # --- admin -----------------------------------------------------------

    def list_vouchers(self, *, is_active: Optional[bool] = None, search: Optional[str] = None) -> List[Dict]:
        with self._session_factory() as session:
            q = session.query(Voucher)
            if is_active is not None:
                q = q.filter(Voucher.is_active.is_(bool(is_active)))
            if search:
                like = f"%{search}%"
                q = q.filter(or_(Voucher.code.ilike(like), Voucher.name.ilike(like)))
            return [v.to_dict() for v in q.order_by(Voucher.created_at.desc(), Voucher.id.desc()).all()]

    def get_voucher(self, voucher_id: int) -> Dict:
        with self._session_factory() as session:
            v = session.get(Voucher, voucher_id)
            if v is None:
                raise NotFoundError("Voucher not found")
            return v.to_dict()

    @staticmethod
    def _apply(v: Voucher, data: Dict, creating: bool) -> None:
        if creating or "code" in data:
            code = normalize_code(data.get("code"))
            if not code:
                raise ValueError("code required")
            v.code = code
        if creating or "type" in data:
            vtype = data.get("type")
            if vtype not in VOUCHER_TYPES:
                raise ValueError("type must be percentage or fixed")
            v.type = vtype
        if creating or "value" in data:
            value = money(data.get("value"))
            if value <= 0:
                raise ValueError("value must be > 0")
            if (data.get("type") or v.type) == "percentage" and value > 100:
                raise ValueError("percentage value must be <= 100")
            v.value = value
        for key in ("name", "description"):
            if key in data:
                setattr(v, key, data[key])
        if creating or "min_order_amount" in data:
            v.min_order_amount = money(data.get("min_order_amount") or 0)
        if creating or "max_discount_amount" in data:
            raw = data.get("max_discount_amount")
            v.max_discount_amount = money(raw) if raw not in (None, "") else None
        if creating or "usage_limit" in data:
            raw = data.get("usage_limit")
            v.usage_limit = (int(raw) if raw not in (None, "") else 0) or None  # 0 means unlimited
        if creating or "user_limit" in data:
            raw = data.get("user_limit")
            v.user_limit = max(int(raw), 1) if raw not in (None, "") else 1
        if creating or "start_date" in data:
            v.start_date = parse_datetime(data.get("start_date"), "start_date")
        if creating or "end_date" in data:
            v.end_date = parse_datetime(data.get("end_date"), "end_date")
        if not v.start_date or not v.end_date:
            raise ValueError("start_date and end_date required")
        if v.end_date < v.start_date:
            raise ValueError("end_date must be after start_date")
        if creating or "is_active" in data:
            v.is_active = bool(data.get("is_active", True))

    def create_voucher(self, data: Dict) -> Dict:
        with self._session_factory() as session:
            v = Voucher(used_count=0)
            self._apply(v, data, creating=True)
            if session.query(Voucher.id).filter(Voucher.code == v.code).first():
                raise ValueError("Mã giảm giá đã tồn tại")
            session.add(v)
            session.flush()
            log_event("info", "voucher.created", voucher_id=v.id, code=v.code)
            return v.to_dict()

    def update_voucher(self, voucher_id: int, data: Dict) -> Dict:
        with self._session_factory() as session:
            v = session.get(Voucher, voucher_id)
            if v is None:
                raise NotFoundError("Voucher not found")
            self._apply(v, data, creating=False)
            clash = session.query(Voucher.id).filter(Voucher.code == v.code, Voucher.id != v.id).first()
            if clash:
                raise ValueError("Mã giảm giá đã tồn tại")
            session.flush()
            return v.to_dict()

    def set_status(self, voucher_id: int, is_active: bool) -> Dict:
        with self._session_factory() as session:
            v = session.get(Voucher, voucher_id)
            if v is None:
                raise NotFoundError("Voucher not found")
            v.is_active = bool(is_active)
            session.flush()
            return v.to_dict()

    def delete_voucher(self, voucher_id: int) -> None:
        with self._session_factory() as session:
            v = session.get(Voucher, voucher_id)
            if v is None:
                raise NotFoundError("Voucher not found")
            session.delete(v)

    def count(self, *, is_active: Optional[bool] = None) -> int:
        with self._session_factory() as session:
            q = session.query(func.count(Voucher.id))
            if is_active is not None:
                q = q.filter(Voucher.is_active.is_(bool(is_active)))
            return int(q.scalar() or 0)
