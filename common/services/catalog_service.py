from datetime import datetime
from typing import Dict, List, Optional

from sqlalchemy import and_, case, func, or_
from sqlalchemy.orm import joinedload, selectinload

from ..db.session import get_session
from ..errors import NotFoundError
from ..models.category import Category
from ..models.product import Product, ProductImage, ProductVariant
from ..models.sale import Sale
from ..utils.dto import to_product_dto
from ..utils.pagination import normalize_paging, page_meta
from ..utils.validators import slugify
from .logging import log_event
from .pricing import money


SORT_FIELDS = {
    "created_at": Product.created_at,
    "price": Product.price,
    "name": Product.name,
    "sold_count": Product.sold_count,
    "view_count": Product.view_count,
}


def _loaded(q):
    return q.options(
        joinedload(Product.sale),
        selectinload(Product.images),
    )


def _sale_running(now: datetime):
    return and_(Sale.is_active.is_(True), Sale.start_date <= now, Sale.end_date >= now)


class CatalogService:
    """Catalog querying and product administration.

    Responsibilities:
    - List/search products with pagination, filters and whitelisted sorting
    - Product detail (images, variants, active sale, final price)
    - Admin product, image, variant and stock maintenance
    """

    def __init__(self, session_factory=get_session):
        self._session_factory = session_factory

    # --- storefront reads ------------------------------------------------

    def list_products(
        self,
        *,
        category_id: Optional[int] = None,
        min_price=None,
        max_price=None,
        search: Optional[str] = None,
        is_featured: bool = False,
        on_sale: bool = False,
        sort_by: str = "created_at",
        sort_order: str = "DESC",
        page: int = 1,
        page_size: int = 12,
        now: Optional[datetime] = None,
    ) -> Dict:
        """Return dict: { items: [ProductDTO], page, page_size, total, total_pages }"""
        p, ps = normalize_paging(page, page_size)
        now = now or datetime.now()
        with self._session_factory() as session:
            q = session.query(Product).filter(Product.is_active.is_(True))
            if category_id:
                q = q.filter(Product.category_id == category_id)
            if min_price not in (None, ""):
                q = q.filter(Product.price >= money(min_price))
            if max_price not in (None, ""):
                q = q.filter(Product.price <= money(max_price))
            if search:
                like = f"%{search}%"
                q = q.filter(or_(Product.name.ilike(like), Product.description.ilike(like), Product.sku.ilike(like)))
            if is_featured:
                q = q.filter(Product.is_featured.is_(True))
            if on_sale:
                q = q.join(Sale, Sale.id == Product.sale_id).filter(_sale_running(now))
            total = q.count()
            column = SORT_FIELDS.get(sort_by, Product.created_at)
            ordering = column.asc() if (sort_order or "").upper() == "ASC" else column.desc()
            rows = _loaded(q).order_by(ordering, Product.id.desc()).offset((p - 1) * ps).limit(ps).all()
            result = {"items": [to_product_dto(r, now) for r in rows]}
            result.update(page_meta(p, ps, total))
            return result

    def _detail(self, session, product: Optional[Product], track_view: bool) -> Dict:
        if product is None or not product.is_active:
            raise NotFoundError("Sản phẩm không tồn tại")
        if track_view:
            session.query(Product).filter(Product.id == product.id).update(
                {Product.view_count: Product.view_count + 1}, synchronize_session=False
            )
        return to_product_dto(product, detail=True)

    def _detail_query(self, session):
        return session.query(Product).options(
            joinedload(Product.sale),
            joinedload(Product.category),
            selectinload(Product.images),
            selectinload(Product.variants),
        )

    def get_product(self, product_id: int, *, track_view: bool = True) -> Dict:
        with self._session_factory() as session:
            product = self._detail_query(session).filter(Product.id == product_id).first()
            return self._detail(session, product, track_view)

    def get_product_by_slug(self, slug: str, *, track_view: bool = True) -> Dict:
        with self._session_factory() as session:
            product = self._detail_query(session).filter(Product.slug == slug).first()
            return self._detail(session, product, track_view)

    def related_products(self, product_id: int, category_id: Optional[int], limit: int = 4) -> List[Dict]:
        if not category_id:
            return []
        with self._session_factory() as session:
            rows = (
                _loaded(session.query(Product))
                .filter(Product.is_active.is_(True), Product.category_id == category_id, Product.id != product_id)
                .order_by(Product.sold_count.desc(), Product.id.desc())
                .limit(limit)
                .all()
            )
            return [to_product_dto(r) for r in rows]

    def search(self, query: str, limit: int = 20) -> List[Dict]:
        """Substring search ranked by relevance, falling back to per-word fuzzy matching."""
        text = (query or "").strip()
        if not text:
            return []
        with self._session_factory() as session:
            like = f"%{text}%"
            prefix = f"{text}%"
            rank = case(
                (Product.name.ilike(prefix), 1),
                (Product.description.ilike(prefix), 2),
                else_=3,
            )
            rows = (
                _loaded(session.query(Product))
                .filter(
                    Product.is_active.is_(True),
                    or_(Product.name.ilike(like), Product.description.ilike(like), Product.sku.ilike(like)),
                )
                .order_by(rank, Product.sold_count.desc(), Product.id.desc())
                .limit(limit)
                .all()
            )
            if rows:
                return [to_product_dto(r) for r in rows]
            return self._fuzzy_search(session, text, limit)

    def _fuzzy_search(self, session, text: str, limit: int) -> List[Dict]:
        words = [w for w in text.lower().split() if len(w) >= 2]
        if words:
            clauses = []
            for w in words:
                clauses.append(Product.name.ilike(f"%{w}%"))
                clauses.append(Product.description.ilike(f"%{w}%"))
            candidates = _loaded(session.query(Product)).filter(Product.is_active.is_(True), or_(*clauses)).all()
            scored = []
            for prod in candidates:
                haystack = f"{prod.name} {prod.description or ''}".lower()
                score = sum(1 for w in words if w in haystack)
                scored.append((score, prod.sold_count or 0, prod))
            scored.sort(key=lambda t: (t[0], t[1]), reverse=True)
            if scored:
                out = []
                for score, _, prod in scored[:limit]:
                    dto = to_product_dto(prod)
                    dto["match_score"] = score
                    out.append(dto)
                return out
        suggestions = (
            _loaded(session.query(Product))
            .filter(Product.is_active.is_(True))
            .order_by(Product.sold_count.desc(), Product.id.desc())
            .limit(min(limit, 8))
            .all()
        )
        out = []
        for prod in suggestions:
            dto = to_product_dto(prod)
            dto["is_suggestion"] = True
            out.append(dto)
        return out

    def _top(self, ordering, limit: int, *extra_filters) -> List[Dict]:
        with self._session_factory() as session:
            rows = (
                _loaded(session.query(Product))
                .filter(Product.is_active.is_(True), *extra_filters)
                .order_by(ordering, Product.id.desc())
                .limit(limit)
                .all()
            )
            return [to_product_dto(r) for r in rows]

    def best_sellers(self, limit: int = 8) -> List[Dict]:
        return self._top(Product.sold_count.desc(), limit)

    def new_products(self, limit: int = 8) -> List[Dict]:
        return self._top(Product.created_at.desc(), limit)

    def featured_products(self, limit: int = 8) -> List[Dict]:
        return self._top(Product.created_at.desc(), limit, Product.is_featured.is_(True))

    # --- admin -----------------------------------------------------------

    def admin_list_products(self, *, search: Optional[str] = None, category_id: Optional[int] = None,
                            include_inactive: bool = True, page: int = 1, page_size: int = 20) -> Dict:
        p, ps = normalize_paging(page, page_size)
        with self._session_factory() as session:
            q = session.query(Product)
            if not include_inactive:
                q = q.filter(Product.is_active.is_(True))
            if category_id:
                q = q.filter(Product.category_id == category_id)
            if search:
                like = f"%{search}%"
                q = q.filter(or_(Product.name.ilike(like), Product.sku.ilike(like)))
            total = q.count()
            rows = _loaded(q).order_by(Product.created_at.desc(), Product.id.desc()).offset((p - 1) * ps).limit(ps).all()
            result = {"items": [to_product_dto(r) for r in rows]}
            result.update(page_meta(p, ps, total))
            return result

    @staticmethod
    def _apply(session, prod: Product, data: Dict, creating: bool) -> None:
        if creating or "name" in data:
            name = (data.get("name") or "").strip()
            if not name:
                raise ValueError("name required")
            prod.name = name
        if creating and not data.get("slug"):
            prod.slug = slugify(prod.name)
        elif data.get("slug"):
            prod.slug = slugify(data["slug"], unique_suffix=False)
        if creating or "price" in data:
            price = money(data.get("price"))
            if price < 0:
                raise ValueError("price must be >= 0")
            prod.price = price
        if "stock_quantity" in data or creating:
            stock = int(data.get("stock_quantity") or 0)
            if stock < 0:
                raise ValueError("stock_quantity must be >= 0")
            prod.stock_quantity = stock
        if "category_id" in data:
            cid = data.get("category_id") or None
            if cid and session.get(Category, int(cid)) is None:
                raise ValueError("category not found")
            prod.category_id = int(cid) if cid else None
        if "sale_id" in data:
            sid = data.get("sale_id") or None
            if sid and session.get(Sale, int(sid)) is None:
                raise ValueError("sale not found")
            prod.sale_id = int(sid) if sid else None
        for key in ("sku", "description"):
            if key in data:
                setattr(prod, key, data.get(key) or None)
        for key in ("is_featured", "is_active"):
            if key in data:
                setattr(prod, key, bool(data.get(key)))

    def create_product(self, data: Dict) -> Dict:
        with self._session_factory() as session:
            prod = Product(sold_count=0, view_count=0, is_active=True, is_featured=bool(data.get("is_featured")))
            self._apply(session, prod, data, creating=True)
            session.add(prod)
            session.flush()
            for idx, url in enumerate(data.get("images") or []):
                session.add(ProductImage(product_id=prod.id, image_url=url, is_primary=idx == 0, display_order=idx))
            for variant in data.get("variants") or []:
                session.add(self._variant(prod.id, variant))
            session.flush()
            session.refresh(prod)
            log_event("info", "product.created", product_id=prod.id, slug=prod.slug)
            return to_product_dto(prod, detail=True)

    def update_product(self, product_id: int, data: Dict) -> Dict:
        with self._session_factory() as session:
            prod = session.get(Product, product_id)
            if prod is None:
                raise NotFoundError("Sản phẩm không tồn tại")
            self._apply(session, prod, data, creating=False)
            session.flush()
            return to_product_dto(prod, detail=True)

    def delete_product(self, product_id: int) -> None:
        """Soft delete; order history keeps pointing at the row."""
        with self._session_factory() as session:
            prod = session.get(Product, product_id)
            if prod is None:
                raise NotFoundError("Sản phẩm không tồn tại")
            prod.is_active = False
            log_event("info", "product.deleted", product_id=product_id)

    def update_stock(self, product_id: int, quantity: int) -> Dict:
        qty = int(quantity)
        if qty < 0:
            raise ValueError("stock_quantity must be >= 0")
        with self._session_factory() as session:
            prod = session.get(Product, product_id)
            if prod is None:
                raise NotFoundError("Sản phẩm không tồn tại")
            prod.stock_quantity = qty
            session.flush()
            return {"id": prod.id, "stock_quantity": prod.stock_quantity}

    # --- images ----------------------------------------------------------

    def list_images(self, product_id: int) -> List[Dict]:
        with self._session_factory() as session:
            rows = (
                session.query(ProductImage)
                .filter(ProductImage.product_id == product_id)
                .order_by(ProductImage.is_primary.desc(), ProductImage.display_order, ProductImage.id)
                .all()
            )
            return [r.to_dict() for r in rows]

    @staticmethod
    def _clear_primary(session, product_id: int) -> None:
        session.query(ProductImage).filter(ProductImage.product_id == product_id).update(
            {ProductImage.is_primary: False}, synchronize_session=False
        )

    def add_image(self, product_id: int, image_url: str, *, is_primary: bool = False, display_order: int = 0) -> Dict:
        if not image_url:
            raise ValueError("image_url required")
        with self._session_factory() as session:
            if session.get(Product, product_id) is None:
                raise NotFoundError("Sản phẩm không tồn tại")
            has_any = session.query(ProductImage.id).filter(ProductImage.product_id == product_id).first()
            primary = bool(is_primary) or not has_any
            if primary:
                self._clear_primary(session, product_id)
            img = ProductImage(product_id=product_id, image_url=image_url, is_primary=primary, display_order=int(display_order or 0))
            session.add(img)
            session.flush()
            return img.to_dict()

    def set_primary_image(self, product_id: int, image_id: int) -> Dict:
        with self._session_factory() as session:
            img = (
                session.query(ProductImage)
                .filter(ProductImage.id == image_id, ProductImage.product_id == product_id)
                .first()
            )
            if img is None:
                raise NotFoundError("Image not found")
            self._clear_primary(session, product_id)
            session.query(ProductImage).filter(ProductImage.id == image_id).update(
                {ProductImage.is_primary: True}, synchronize_session=False
            )
            session.flush()
            session.refresh(img)
            return img.to_dict()

    def delete_image(self, product_id: int, image_id: int) -> None:
        with self._session_factory() as session:
            img = (
                session.query(ProductImage)
                .filter(ProductImage.id == image_id, ProductImage.product_id == product_id)
                .first()
            )
            if img is None:
                raise NotFoundError("Image not found")
            was_primary = bool(img.is_primary)
            session.delete(img)
            session.flush()
            if was_primary:
                successor = (
                    session.query(ProductImage)
                    .filter(ProductImage.product_id == product_id)
                    .order_by(ProductImage.display_order, ProductImage.id)
                    .first()
                )
                if successor is not None:
                    successor.is_primary = True

    # --- variants --------------------------------------------------------

    @staticmethod
    def _variant(product_id: int, data: Dict) -> ProductVariant:
        return ProductVariant(
            product_id=product_id,
            sku=data.get("sku"),
            size=data.get("size"),
            color=data.get("color"),
            additional_price=money(data.get("additional_price") or 0),
        )

    def add_variant(self, product_id: int, data: Dict) -> Dict:
        with self._session_factory() as session:
            if session.get(Product, product_id) is None:
                raise NotFoundError("Sản phẩm không tồn tại")
            variant = self._variant(product_id, data)
            session.add(variant)
            session.flush()
            return variant.to_dict()

    def count_products(self) -> int:
        with self._session_factory() as session:
            return int(session.query(func.count(Product.id)).filter(Product.is_active.is_(True)).scalar() or 0)
