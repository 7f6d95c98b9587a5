"""Storefront catalog pages: home, listing, search, category and product detail."""

from __future__ import annotations

from typing import Any, Callable, Dict, List

from flask import Blueprint, current_app, jsonify, request
from sqlalchemy.exc import SQLAlchemyError

from common.services.logging import log_event
from common.utils.validators import optional_int


shop_bp = Blueprint("shop", __name__)


def _components() -> Dict[str, Any]:
    return current_app.extensions["store_components"]


def _degrade(section: str, loader: Callable[[], Any], fallback: Any) -> Any:
    """Catalog pages render with empty data when the database is unavailable."""
    try:
        return loader()
    except SQLAlchemyError as exc:
        log_event("error", "catalog.degraded", section=section, error=str(exc))
        return fallback


def _bool_arg(name: str) -> bool:
    return request.args.get(name, "").lower() in ("1", "true", "yes", "on")


def _listing_filters() -> Dict[str, Any]:
    return {
        "min_price": request.args.get("min_price") or None,
        "max_price": request.args.get("max_price") or None,
        "search": (request.args.get("search") or "").strip() or None,
        "is_featured": _bool_arg("featured"),
        "on_sale": _bool_arg("on_sale"),
        "sort_by": request.args.get("sort_by", "created_at"),
        "sort_order": request.args.get("sort_order", "DESC"),
        "page": optional_int(request.args.get("page")) or 1,
        "page_size": optional_int(request.args.get("limit")) or 12,
    }


def _empty_page() -> Dict[str, Any]:
    return {"items": [], "page": 1, "page_size": 12, "total": 0, "total_pages": 0}


@shop_bp.get("/")
def home():
    c = _components()
    empty: List[Dict[str, Any]] = []
    return jsonify(
        {
            "banners": _degrade("banners", c["banners"].active_banners, empty),
            "categories": _degrade("categories", lambda: c["categories"].top_categories(3), empty),
            "new_products": _degrade("new_products", lambda: c["catalog"].new_products(8), empty),
            "best_sellers": _degrade("best_sellers", lambda: c["catalog"].best_sellers(8), empty),
            "featured_products": _degrade("featured", lambda: c["catalog"].featured_products(8), empty),
        }
    )


@shop_bp.get("/products")
def product_list():
    c = _components()
    filters = _listing_filters()
    filters["category_id"] = optional_int(request.args.get("category"))
    result = _degrade("products", lambda: c["catalog"].list_products(**filters), _empty_page())
    result["categories"] = _degrade("categories", c["categories"].list_categories, [])
    result["filters"] = {k: v for k, v in filters.items() if k not in ("page", "page_size")}
    return jsonify(result)


@shop_bp.get("/products/search")
def product_search():
    query = (request.args.get("q") or "").strip()
    limit = min(optional_int(request.args.get("limit")) or 20, 50)
    products = _degrade("search", lambda: _components()["catalog"].search(query, limit), [])
    return jsonify({"query": query, "products": products, "count": len(products)})


@shop_bp.get("/products/category/<slug>")
def category_products(slug: str):
    c = _components()
    category = c["categories"].get_category_by_slug(slug)
    filters = _listing_filters()
    filters["category_id"] = category["id"]
    result = _degrade("category_products", lambda: c["catalog"].list_products(**filters), _empty_page())
    result["category"] = category
    return jsonify(result)


@shop_bp.get("/products/<slug>")
def product_detail(slug: str):
    c = _components()
    product = c["catalog"].get_product_by_slug(slug)
    related = _degrade("related", lambda: c["catalog"].related_products(product["id"], product["category_id"]), [])
    return jsonify({"product": product, "related_products": related})
