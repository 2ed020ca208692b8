from decimal import Decimal

import pytest

from storefront.checkout.pricing import (
    format_signed,
    order_summary,
    price_diff,
    round_money,
    subtotal,
    to_decimal,
    to_minor_units,
)


def test_to_decimal_avoids_float_artifacts():
    assert to_decimal(12.3) == Decimal("12.3")
    assert to_decimal("0.1") + to_decimal(0.2) == Decimal("0.3")


@pytest.mark.parametrize("amount,expected", [
    (Decimal("20.00"), 2000),
    (Decimal("118.79"), 11879),
    (0.1, 10),
    ("12.345", 1234),
    ("12.355", 1236),
    (0, 0),
])
def test_to_minor_units(amount, expected):
    assert to_minor_units(amount) == expected


def test_round_money_is_half_even():
    assert round_money("2.345") == Decimal("2.34")
    assert round_money("2.355") == Decimal("2.36")


def test_order_summary_formula(make_item):
    items = [make_item("A", 2, "50.00"), make_item("B", 1, "10.00")]
    summary = order_summary(items, shipping=Decimal("9.99"), tax_rate=Decimal("0.08"))
    assert summary == {
        "subtotal": Decimal("110.00"),
        "shipping": Decimal("9.99"),
        "tax": Decimal("8.80"),
        "total": Decimal("128.79"),
    }


def test_order_summary_total_is_sum_of_rounded_parts(make_item):
    items = [make_item("A", 3, "3.33")]
    summary = order_summary(items, shipping=Decimal("0"), tax_rate=Decimal("0.075"))
    assert summary["subtotal"] == Decimal("9.99")
    assert summary["tax"] == Decimal("0.75")
    assert summary["total"] == summary["subtotal"] + summary["shipping"] + summary["tax"]


def test_subtotal_of_empty_selection_is_zero():
    assert subtotal([]) == Decimal("0.00")


def test_price_diff_and_signed_format():
    assert price_diff("10.00", "12.00") == Decimal("2.00")
    assert format_signed(price_diff("10.00", "12.00")) == "+2.00"
    assert format_signed(price_diff("10.00", "9.50")) == "-0.50"
    assert format_signed(Decimal("0")) == "+0.00"
