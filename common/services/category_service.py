from typing import Dict, List, Optional

from sqlalchemy import func

from ..db.session import get_session
from ..errors import NotFoundError
from ..models.category import Category
from ..models.product import Product
from ..utils.dto import to_product_dto
from ..utils.validators import slugify


class CategoryService:
    def __init__(self, session_factory=get_session):
        self._session_factory = session_factory

    @staticmethod
    def _with_counts(session, q) -> List[Dict]:
        counts = dict(
            session.query(Product.category_id, func.count(Product.id))
            .filter(Product.is_active.is_(True))
            .group_by(Product.category_id)
            .all()
        )
        out = []
        for c in q.all():
            data = c.to_dict()
            data["product_count"] = int(counts.get(c.id, 0))
            out.append(data)
        return out

    def list_categories(self, *, include_inactive: bool = False) -> List[Dict]:
        with self._session_factory() as session:
            q = session.query(Category)
            if not include_inactive:
                q = q.filter(Category.is_active.is_(True))
            return self._with_counts(session, q.order_by(Category.display_order, Category.name))

    def top_categories(self, limit: int = 3) -> List[Dict]:
        with self._session_factory() as session:
            q = (
                session.query(Category)
                .filter(Category.is_active.is_(True), Category.parent_id.is_(None))
                .order_by(Category.display_order, Category.id)
                .limit(limit)
            )
            return self._with_counts(session, q)

    def get_category(self, category_id: int) -> Dict:
        with self._session_factory() as session:
            c = session.get(Category, category_id)
            if c is None or not c.is_active:
                raise NotFoundError("Danh mục không tồn tại")
            return c.to_dict()

    def get_category_by_slug(self, slug: str) -> Dict:
        with self._session_factory() as session:
            c = session.query(Category).filter(Category.slug == slug, Category.is_active.is_(True)).first()
            if c is None:
                raise NotFoundError("Danh mục không tồn tại")
            return c.to_dict()

    def category_with_products(self, category_id: int, limit: int = 10) -> Dict:
        with self._session_factory() as session:
            c = session.get(Category, category_id)
            if c is None or not c.is_active:
                raise NotFoundError("Danh mục không tồn tại")
            rows = (
                session.query(Product)
                .filter(Product.category_id == c.id, Product.is_active.is_(True))
                .order_by(Product.created_at.desc(), Product.id.desc())
                .limit(limit)
                .all()
            )
            data = c.to_dict()
            data["products"] = [to_product_dto(r) for r in rows]
            return data

    @staticmethod
    def _apply(session, c: Category, data: Dict, creating: bool) -> None:
        if creating or "name" in data:
            name = (data.get("name") or "").strip()
            if not name:
                raise ValueError("name required")
            c.name = name
        if data.get("slug") or creating:
            slug = slugify(data.get("slug") or c.name, unique_suffix=False)
            clash = session.query(Category.id).filter(Category.slug == slug)
            if c.id is not None:
                clash = clash.filter(Category.id != c.id)
            if clash.first():
                raise ValueError("Slug đã tồn tại")
            c.slug = slug
        for key in ("description", "image_url"):
            if key in data:
                setattr(c, key, data.get(key) or None)
        if "parent_id" in data:
            pid: Optional[int] = int(data["parent_id"]) if data.get("parent_id") else None
            if pid is not None and pid == c.id:
                raise ValueError("category cannot be its own parent")
            c.parent_id = pid
        if "display_order" in data:
            c.display_order = int(data.get("display_order") or 0)
        if "is_active" in data:
            c.is_active = bool(data.get("is_active"))

    def create_category(self, data: Dict) -> Dict:
        with self._session_factory() as session:
            c = Category(display_order=0, is_active=True)
            self._apply(session, c, data, creating=True)
            session.add(c)
            session.flush()
            return c.to_dict()

    def update_category(self, category_id: int, data: Dict) -> Dict:
        with self._session_factory() as session:
            c = session.get(Category, category_id)
            if c is None:
                raise NotFoundError("Danh mục không tồn tại")
            self._apply(session, c, data, creating=False)
            session.flush()
            return c.to_dict()

    def delete_category(self, category_id: int) -> None:
        with self._session_factory() as session:
            c = session.get(Category, category_id)
            if c is None:
                raise NotFoundError("Danh mục không tồn tại")
            c.is_active = False
