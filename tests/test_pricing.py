from datetime import datetime, timedelta
from decimal import Decimal
from types import SimpleNamespace

import pytest

from common.services.pricing import (
    calculate_final_price,
    final_price_for,
    generate_order_code,
    is_sale_active,
    money,
    shipping_fee_for,
)


def _sale(sale_type="percentage", value=20, active=True, offset_days=0):
    now = datetime.now()
    return SimpleNamespace(
        type=sale_type,
        value=Decimal(str(value)),
        is_active=active,
        start_date=now - timedelta(days=1) + timedelta(days=offset_days),
        end_date=now + timedelta(days=1) + timedelta(days=offset_days),
    )


def test_percentage_sale_price():
    assert calculate_final_price(Decimal("200000"), "percentage", 25) == Decimal("150000")
    assert calculate_final_price(Decimal("99999"), "percentage", 15) == Decimal("84999")


def test_fixed_sale_price_never_negative():
    assert calculate_final_price(Decimal("200000"), "fixed", 50000) == Decimal("150000")
    assert calculate_final_price(Decimal("40000"), "fixed", 50000) == Decimal("0")


def test_no_sale_returns_price_unchanged():
    assert calculate_final_price(Decimal("199000"), None, None) == Decimal("199000")
    assert calculate_final_price(Decimal("199000"), "bogo", 1) == Decimal("199000")


def test_final_price_only_while_sale_window_open():
    product = SimpleNamespace(price=Decimal("100000"), sale=_sale())
    assert final_price_for(product) == Decimal("80000")

    product.sale = _sale(offset_days=5)
    assert not is_sale_active(product.sale)
    assert final_price_for(product) == Decimal("100000")

    product.sale = _sale(active=False)
    assert final_price_for(product) == Decimal("100000")


def test_final_price_with_variant_surcharge():
    product = SimpleNamespace(price=Decimal("100000"), sale=_sale(value=10))
    assert final_price_for(product, base=Decimal("120000")) == Decimal("108000")


def test_shipping_fee_threshold():
    assert shipping_fee_for(Decimal("480000")) == Decimal("30000")
    assert shipping_fee_for(Decimal("520000")) == Decimal("0")
    assert shipping_fee_for(Decimal("500000")) == Decimal("0")


def test_order_code_format():
    code = generate_order_code()
    assert code.startswith("ORD")
    assert code[3:].isdigit()


def test_money_rejects_garbage():
    with pytest.raises(ValueError):
        money("abc")
    with pytest.raises(ValueError):
        money("nan")
    assert money("120000") == Decimal("120000")
