from decimal import Decimal

import pytest

from core.settings import PayPalSettings, StripeSettings
from domain.common.exceptions import AmountMismatch, AmountTooSmall, CurrencyNotSupported
from domain.order.entity import OrderItem
from domain.payment.amounts import (
    ensure_minimum,
    format_minor_units,
    normalize_order_amount,
    to_minor_units,
)


ITEMS = [
    OrderItem(product_id="ebook", name="Ebook", unit_price=Decimal("150000"), quantity=2),
    OrderItem(product_id="course", name="Course", unit_price=Decimal("75000.50"), quantity=1),
]


def test_stripe_treats_idr_as_two_decimal():
    amount = normalize_order_amount(
        provider="stripe",
        total=Decimal("375000.50"),
        currency="idr",
        items=ITEMS,
        unit_exponents=StripeSettings().unit_exponents,
    )
    assert amount.currency == "IDR"
    assert amount.exponent == 2
    assert [line.unit_amount for line in amount.lines] == [15000000, 7500050]
    assert amount.total_minor == 37500050
    assert amount.format_minor(amount.total_minor) == "375000.50"


def test_paypal_rejects_idr_by_default():
    with pytest.raises(CurrencyNotSupported) as exc_info:
        normalize_order_amount(
            provider="paypal",
            total=Decimal("375000.50"),
            currency="IDR",
            items=ITEMS,
            unit_exponents=PayPalSettings().unit_exponents,
        )
    assert exc_info.value.details == {"provider": "paypal", "currency": "IDR"}


def test_fractional_amount_in_zero_decimal_currency_is_a_mismatch():
    with pytest.raises(AmountMismatch):
        normalize_order_amount(
            provider="stripe",
            total=Decimal("375000.50"),
            currency="JPY",
            items=ITEMS,
            unit_exponents=StripeSettings().unit_exponents,
        )


def test_lines_must_reconstruct_total():
    with pytest.raises(AmountMismatch) as exc_info:
        normalize_order_amount(
            provider="stripe",
            total=Decimal("375000.00"),
            currency="IDR",
            items=ITEMS,
            unit_exponents=StripeSettings().unit_exponents,
        )
    assert exc_info.value.details["expected_minor"] == 37500000
    assert exc_info.value.details["reconstructed_minor"] == 37500050


def test_to_minor_units_never_rounds():
    assert to_minor_units(Decimal("19.99"), 2) == 1999
    assert to_minor_units(Decimal("500"), 0) == 500
    with pytest.raises(AmountMismatch):
        to_minor_units(Decimal("19.999"), 2)


@pytest.mark.parametrize("minor,exponent,expected", [(1999, 2, "19.99"), (500, 0, "500"), (5, 2, "0.05")])
def test_format_minor_units(minor, exponent, expected):
    assert format_minor_units(minor, exponent) == expected


def test_minimum_is_checked_in_business_units():
    minimums = StripeSettings().minimums
    ensure_minimum("stripe", Decimal("7000"), "IDR", minimums)
    with pytest.raises(AmountTooSmall) as exc_info:
        ensure_minimum("stripe", Decimal("5000"), "IDR", minimums)
    assert exc_info.value.details["minimum"] == "7000"

    # no entry and no default: no minimum
    ensure_minimum("stripe", Decimal("0.01"), "SGD", minimums)
    with pytest.raises(AmountTooSmall):
        ensure_minimum("stripe", Decimal("0.01"), "SGD", minimums, Decimal("1"))
