"""``flask`` sub-commands for schema setup, demo data, sale sync and admin bootstrap."""

from __future__ import annotations

from datetime import datetime, timedelta

import click
from flask import Flask, current_app

from common.db.session import init_db
from common.models import Category


def _components():
    return current_app.extensions["store_components"]


def seed_demo_data(components, session_factory, now=None) -> bool:
    """Insert a small demo catalog; does nothing when categories already exist."""
    now = now or datetime.now()
    with session_factory() as session:
        if session.query(Category.id).first() is not None:
            return False

    categories = components["categories"]
    catalog = components["catalog"]
    ao = categories.create_category({"name": "Áo", "slug": "ao", "display_order": 1})
    quan = categories.create_category({"name": "Quần", "slug": "quan", "display_order": 2})
    vay = categories.create_category({"name": "Váy", "slug": "vay", "display_order": 3})

    products = [
        catalog.create_product({
            "name": "Áo thun cotton basic", "price": 199000, "stock_quantity": 120,
            "category_id": ao["id"], "is_featured": True,
            "images": ["/static/images/products/ao-thun-basic.jpg"],
            "variants": [{"size": "M", "color": "Trắng"}, {"size": "L", "color": "Đen"}],
        }),
        catalog.create_product({
            "name": "Áo sơ mi linen", "price": 459000, "stock_quantity": 40, "category_id": ao["id"],
            "images": ["/static/images/products/so-mi-linen.jpg"],
        }),
        catalog.create_product({
            "name": "Quần jean slim fit", "price": 550000, "stock_quantity": 60, "category_id": quan["id"],
            "images": ["/static/images/products/jean-slim.jpg"],
        }),
        catalog.create_product({
            "name": "Váy hoa nhí", "price": 389000, "stock_quantity": 35, "category_id": vay["id"],
            "is_featured": True, "images": ["/static/images/products/vay-hoa-nhi.jpg"],
        }),
    ]

    components["sales"].create_sale({
        "name": "Khai trương", "type": "percentage", "value": 20,
        "start_date": now - timedelta(days=1), "end_date": now + timedelta(days=30),
        "product_ids": [products[0]["id"], products[3]["id"]],
    })
    components["vouchers"].create_voucher({
        "code": "WELCOME10", "name": "Chào bạn mới", "type": "percentage", "value": 10,
        "max_discount_amount": 50000, "min_order_amount": 200000, "usage_limit": 100, "user_limit": 1,
        "start_date": now - timedelta(days=1), "end_date": now + timedelta(days=90),
    })
    components["vouchers"].create_voucher({
        "code": "GIAM50K", "name": "Giảm 50K", "type": "fixed", "value": 50000,
        "min_order_amount": 500000, "start_date": now - timedelta(days=1), "end_date": now + timedelta(days=30),
    })
    components["banners"].create_banner({
        "title": "Bộ sưu tập mới", "subtitle": "Giảm đến 20% tuần lễ khai trương",
        "image_url": "/static/images/banners/new-collection.jpg", "link_url": "/products",
    })
    return True


def register_commands(app: Flask) -> None:
    @app.cli.command("init-db")
    def init_db_command():
        """Create all tables."""
        init_db(current_app.extensions["store_session_factory"].engine)
        click.echo("Database schema is ready.")

    @app.cli.command("seed")
    def seed_command():
        """Load demo categories, products, a sale, vouchers and a banner."""
        if seed_demo_data(_components(), current_app.extensions["store_session_factory"]):
            click.echo("Demo data inserted.")
        else:
            click.echo("Catalog already has data; nothing to seed.")

    @app.cli.command("sync-sales")
    def sync_sales_command():
        """Activate sales whose window opened and deactivate expired ones."""
        sales = _components()["sales"]
        activated = sales.activate_scheduled()
        deactivated = sales.deactivate_expired()
        click.echo(f"Activated {activated}, deactivated {deactivated} sale(s).")

    @app.cli.command("create-admin")
    @click.option("--email", required=True)
    @click.option("--password", prompt=True, hide_input=True, confirmation_prompt=True)
    @click.option("--name", "full_name", default="Administrator", show_default=True)
    def create_admin_command(email: str, password: str, full_name: str):
        """Create an admin account or promote an existing user."""
        user = _components()["auth"].create_admin(email=email, password=password, full_name=full_name)
        click.echo(f"Admin ready: {user['email']} (id={user['id']})")
