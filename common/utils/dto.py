from datetime import datetime
from typing import Any, Dict, Optional

from ..services.pricing import final_price_for, is_sale_active


def to_product_dto(row: Any, now: Optional[datetime] = None, detail: bool = False) -> Dict:
    sale = getattr(row, "sale", None)
    active = is_sale_active(sale, now)
    dto = {
        "id": row.id,
        "sku": row.sku,
        "name": row.name,
        "slug": row.slug,
        "description": row.description,
        "price": float(row.price or 0),
        "final_price": float(final_price_for(row, now)),
        "on_sale": active,
        "sale": sale.to_dict() if active else None,
        "image_url": row.primary_image_url,
        "category_id": row.category_id,
        "stock_quantity": row.stock_quantity or 0,
        "sold_count": row.sold_count or 0,
        "view_count": row.view_count or 0,
        "is_featured": bool(row.is_featured),
        "is_active": bool(row.is_active),
    }
    if detail:
        dto["images"] = [img.to_dict() for img in row.images]
        dto["variants"] = [v.to_dict() for v in row.variants]
        dto["category"] = row.category.to_dict() if row.category else None
    return dto


def to_order_dto(order: Any, with_items: bool = True) -> Dict:
    dto = {
        "id": order.id,
        "order_code": order.order_code,
        "user_id": order.user_id,
        "address_id": order.address_id,
        "shipping_name": order.shipping_name,
        "shipping_phone": order.shipping_phone,
        "shipping_address": order.shipping_address,
        "total_amount": float(order.total_amount or 0),
        "shipping_fee": float(order.shipping_fee or 0),
        "discount_amount": float(order.discount_amount or 0),
        "voucher_code": order.voucher_code,
        "final_amount": float(order.final_amount or 0),
        "payment_method": order.payment_method,
        "payment_status": order.payment_status,
        "status": order.status,
        "notes": order.notes,
        "created_at": order.created_at.isoformat() if order.created_at else None,
    }
    if with_items:
        dto["items"] = [it.to_dict() for it in order.items]
        dto["payment"] = order.payments[-1].to_dict() if order.payments else None
    return dto
