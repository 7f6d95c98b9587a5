from datetime import datetime
from typing import Dict, List, Optional

from ..db.session import get_session
from ..errors import NotFoundError
from ..models.product import Product
from ..models.sale import SALE_TYPES, Sale
from ..utils.validators import parse_datetime
from .logging import log_event
from .pricing import money


class SaleService:
    """Time-windowed product discounts."""

    def __init__(self, session_factory=get_session):
        self._session_factory = session_factory

    def list_sales(self, *, active_only: bool = False) -> List[Dict]:
        with self._session_factory() as session:
            q = session.query(Sale)
            if active_only:
                q = q.filter(Sale.is_active.is_(True))
            return [s.to_dict() for s in q.order_by(Sale.created_at.desc(), Sale.id.desc()).all()]

    def active_sales(self, now: Optional[datetime] = None) -> List[Dict]:
        now = now or datetime.now()
        with self._session_factory() as session:
            rows = (
                session.query(Sale)
                .filter(Sale.is_active.is_(True), Sale.start_date <= now, Sale.end_date >= now)
                .order_by(Sale.end_date.asc())
                .all()
            )
            return [s.to_dict() for s in rows]

    def get_sale(self, sale_id: int) -> Dict:
        with self._session_factory() as session:
            s = session.get(Sale, sale_id)
            if s is None:
                raise NotFoundError("Sale not found")
            data = s.to_dict()
            data["product_ids"] = [pid for (pid,) in session.query(Product.id).filter(Product.sale_id == s.id).all()]
            return data

    @staticmethod
    def _apply(s: Sale, data: Dict, creating: bool) -> None:
        if creating or "name" in data:
            name = (data.get("name") or "").strip()
            if not name:
                raise ValueError("name required")
            s.name = name
        if "description" in data:
            s.description = data.get("description")
        if creating or "type" in data:
            if data.get("type") not in SALE_TYPES:
                raise ValueError("type must be percentage, fixed or bogo")
            s.type = data["type"]
        if creating or "value" in data:
            value = money(data.get("value") or 0)
            if value < 0 or (s.type == "percentage" and value > 100):
                raise ValueError("invalid sale value")
            s.value = value
        if creating or "start_date" in data:
            s.start_date = parse_datetime(data.get("start_date"), "start_date")
        if creating or "end_date" in data:
            s.end_date = parse_datetime(data.get("end_date"), "end_date")
        if not s.start_date or not s.end_date:
            raise ValueError("start_date and end_date required")
        if s.end_date < s.start_date:
            raise ValueError("end_date must be after start_date")
        if creating or "is_active" in data:
            s.is_active = bool(data.get("is_active", True))

    @staticmethod
    def _attach(session, sale: Sale, product_ids) -> None:
        if product_ids is None:
            return
        session.query(Product).filter(Product.sale_id == sale.id).update(
            {Product.sale_id: None}, synchronize_session=False
        )
        ids = [int(pid) for pid in product_ids]
        if ids:
            session.query(Product).filter(Product.id.in_(ids)).update(
                {Product.sale_id: sale.id}, synchronize_session=False
            )

    def create_sale(self, data: Dict) -> Dict:
        with self._session_factory() as session:
            s = Sale()
            self._apply(s, data, creating=True)
            session.add(s)
            session.flush()
            self._attach(session, s, data.get("product_ids"))
            log_event("info", "sale.created", sale_id=s.id, type=s.type)
            return s.to_dict()

    def update_sale(self, sale_id: int, data: Dict) -> Dict:
        with self._session_factory() as session:
            s = session.get(Sale, sale_id)
            if s is None:
                raise NotFoundError("Sale not found")
            self._apply(s, data, creating=False)
            self._attach(session, s, data.get("product_ids"))
            session.flush()
            return s.to_dict()

    def delete_sale(self, sale_id: int) -> None:
        """Soft delete: the sale stops applying but stays for history."""
        with self._session_factory() as session:
            s = session.get(Sale, sale_id)
            if s is None:
                raise NotFoundError("Sale not found")
            s.is_active = False
            # close the window so activate_scheduled never revives it
            now = datetime.now()
            if s.end_date > now:
                s.end_date = now

    def activate_scheduled(self, now: Optional[datetime] = None) -> int:
        now = now or datetime.now()
        with self._session_factory() as session:
            count = (
                session.query(Sale)
                .filter(Sale.is_active.is_(False), Sale.start_date <= now, Sale.end_date >= now)
                .update({Sale.is_active: True}, synchronize_session=False)
            )
        log_event("info", "sale.activated", count=count)
        return count

    def deactivate_expired(self, now: Optional[datetime] = None) -> int:
        now = now or datetime.now()
        with self._session_factory() as session:
            count = (
                session.query(Sale)
                .filter(Sale.is_active.is_(True), Sale.end_date < now)
                .update({Sale.is_active: False}, synchronize_session=False)
            )
        log_event("info", "sale.deactivated", count=count)
        return count
