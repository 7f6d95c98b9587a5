from datetime import datetime
from typing import Dict, List, Optional

from sqlalchemy import or_

from ..db.session import get_session
from ..errors import NotFoundError
from ..models.banner import Banner
from ..utils.validators import parse_datetime


class BannerService:
    def __init__(self, session_factory=get_session):
        self._session_factory = session_factory

    def active_banners(self, now: Optional[datetime] = None) -> List[Dict]:
        """Active banners whose optional start/end window contains ``now``."""
        now = now or datetime.now()
        with self._session_factory() as session:
            rows = (
                session.query(Banner)
                .filter(
                    Banner.is_active.is_(True),
                    or_(Banner.start_date.is_(None), Banner.start_date <= now),
                    or_(Banner.end_date.is_(None), Banner.end_date >= now),
                )
                .order_by(Banner.display_order, Banner.id)
                .all()
            )
            return [b.to_dict() for b in rows]

    def list_banners(self) -> List[Dict]:
        with self._session_factory() as session:
            return [b.to_dict() for b in session.query(Banner).order_by(Banner.display_order, Banner.id).all()]

    def get_banner(self, banner_id: int) -> Dict:
        with self._session_factory() as session:
            b = session.get(Banner, banner_id)
            if b is None:
                raise NotFoundError("Banner not found")
            return b.to_dict()

    @staticmethod
    def _apply(b: Banner, data: Dict, creating: bool) -> None:
        for key in ("title", "image_url"):
            if creating or key in data:
                value = (data.get(key) or "").strip()
                if not value:
                    raise ValueError(f"{key} required")
                setattr(b, key, value)
        for key in ("subtitle", "link_url"):
            if creating or key in data:
                setattr(b, key, data.get(key) or None)
        if creating or "button_text" in data:
            b.button_text = data.get("button_text") or "Xem ngay"
        if creating or "display_order" in data:
            b.display_order = int(data.get("display_order") or 0)
        if creating or "is_active" in data:
            b.is_active = bool(data.get("is_active", True))
        if creating or "start_date" in data:
            b.start_date = parse_datetime(data.get("start_date"), "start_date")
        if creating or "end_date" in data:
            b.end_date = parse_datetime(data.get("end_date"), "end_date")
        if b.start_date and b.end_date and b.end_date < b.start_date:
            raise ValueError("end_date must be after start_date")

    def create_banner(self, data: Dict) -> Dict:
        with self._session_factory() as session:
            b = Banner()
            self._apply(b, data, creating=True)
            session.add(b)
            session.flush()
            return b.to_dict()

    def update_banner(self, banner_id: int, data: Dict) -> Dict:
        with self._session_factory() as session:
            b = session.get(Banner, banner_id)
            if b is None:
                raise NotFoundError("Banner not found")
            self._apply(b, data, creating=False)
            session.flush()
            return b.to_dict()

    def delete_banner(self, banner_id: int) -> None:
        with self._session_factory() as session:
            b = session.get(Banner, banner_id)
            if b is None:
                raise NotFoundError("Banner not found")
            session.delete(b)
