from datetime import datetime, timedelta

import pytest

from common.errors import NotFoundError
from common.services.catalog_service import CatalogService
from common.services.sale_service import SaleService


@pytest.fixture
def catalog(session_factory):
    return CatalogService(session_factory)


def _primary_flags(catalog, product_id):
    return {img["image_url"]: img["is_primary"] for img in catalog.list_images(product_id)}


def test_primary_image_is_exclusive(catalog, make_product):
    product_id = make_product()
    first = catalog.add_image(product_id, "/img/1.jpg")
    second = catalog.add_image(product_id, "/img/2.jpg")
    assert first["is_primary"] and not second["is_primary"]

    catalog.add_image(product_id, "/img/3.jpg", is_primary=True)
    assert _primary_flags(catalog, product_id) == {"/img/1.jpg": False, "/img/2.jpg": False, "/img/3.jpg": True}

    catalog.set_primary_image(product_id, second["id"])
    flags = _primary_flags(catalog, product_id)
    assert [url for url, primary in flags.items() if primary] == ["/img/2.jpg"]


def test_deleting_primary_image_promotes_another(catalog, make_product):
    product_id = make_product()
    first = catalog.add_image(product_id, "/img/1.jpg")
    catalog.add_image(product_id, "/img/2.jpg")
    catalog.delete_image(product_id, first["id"])
    assert _primary_flags(catalog, product_id) == {"/img/2.jpg": True}


def test_product_detail_counts_views_and_hides_inactive(catalog):
    created = catalog.create_product({"name": "Áo khoác gió", "price": 350000, "stock_quantity": 5,
                                      "images": ["/img/a.jpg", "/img/b.jpg"],
                                      "variants": [{"size": "M", "color": "Xanh"}]})
    assert created["slug"].startswith("ao-khoac-gio")
    assert [img["is_primary"] for img in created["images"]] == [True, False]

    catalog.get_product_by_slug(created["slug"])
    detail = catalog.get_product(created["id"], track_view=False)
    assert detail["view_count"] == 1
    assert detail["variants"][0]["size"] == "M"

    catalog.delete_product(created["id"])
    with pytest.raises(NotFoundError):
        catalog.get_product(created["id"])


def test_listing_filters_and_sorting(catalog, make_product, make_sale):
    cheap = make_product(name="Quần short", price=150000)
    mid = make_product(name="Áo polo", price=300000, sale_id=make_sale("fixed", 50000))
    make_product(name="Áo vest", price=900000)

    by_price = catalog.list_products(sort_by="price", sort_order="ASC")
    assert [p["id"] for p in by_price["items"]][:2] == [cheap, mid]
    assert by_price["total"] == 3

    ranged = catalog.list_products(min_price=200000, max_price=500000)
    assert [p["id"] for p in ranged["items"]] == [mid]

    on_sale = catalog.list_products(on_sale=True)
    assert [p["id"] for p in on_sale["items"]] == [mid]
    assert on_sale["items"][0]["final_price"] == 250000

    # unknown sort keys fall back to newest first
    assert catalog.list_products(sort_by="price; DROP TABLE products")["total"] == 3


def test_search_ranks_name_prefix_first(catalog, make_product):
    make_product(name="Váy maxi", description="Áo choàng đi biển")
    prefix = make_product(name="Áo choàng len")
    results = catalog.search("Áo choàng")
    assert results[0]["id"] == prefix


def test_fuzzy_search_scores_words(catalog, make_product):
    both = make_product(name="jean slim xanh")
    one = make_product(name="jean rach")
    results = catalog.search("xanh jean baggy")
    assert [r["id"] for r in results] == [both, one]
    assert results[0]["match_score"] == 2


def test_search_without_matches_suggests_best_sellers(catalog, make_product):
    popular = make_product(name="Áo thun", sold=50)
    make_product(name="Quần kaki", sold=3)
    results = catalog.search("zzzz")
    assert results[0]["id"] == popular
    assert all(r["is_suggestion"] for r in results)


def test_sale_sync(session_factory):
    sales = SaleService(session_factory)
    now = datetime.now()
    scheduled = sales.create_sale({"name": "Flash", "type": "percentage", "value": 30, "is_active": False,
                                   "start_date": now - timedelta(hours=1), "end_date": now + timedelta(hours=5)})
    expired = sales.create_sale({"name": "Old", "type": "fixed", "value": 10000,
                                 "start_date": now - timedelta(days=5), "end_date": now - timedelta(days=1)})
    assert sales.activate_scheduled(now) == 1
    assert sales.deactivate_expired(now) == 1
    assert sales.get_sale(scheduled["id"])["is_active"]
    assert not sales.get_sale(expired["id"])["is_active"]

    sales.delete_sale(scheduled["id"])
    assert sales.activate_scheduled() == 0
