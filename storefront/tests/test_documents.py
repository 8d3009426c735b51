"""Tests for the receipt and credit note PDFs."""

from datetime import date
from decimal import Decimal

import pytest

from storefront.documents import (
    credit_note_pdf,
    format_rupees,
    invoice_number,
    receipt_pdf,
)
from storefront.tests.factories import OrderItemFactory, PaidOrderFactory


@pytest.mark.parametrize(
    "amount,expected",
    [
        (Decimal("1234.5"), "Rs. 1,234.50"),
        (None, "Rs. 0.00"),
    ],
)
def test_format_rupees(amount, expected):
    assert format_rupees(amount) == expected


def test_invoice_number_is_short_upper_order_id():
    order = PaidOrderFactory.build(order_id="3f2a9c1e-77aa-4c1e-9d4b-0c5e2d6f8a10")

    assert invoice_number(order) == "3F2A9C1E"


def test_receipt_lists_payment_and_items():
    order = PaidOrderFactory.build(
        gateway_payment_id="pay_live_1",
        items=[OrderItemFactory.build(product_name="Honey & Lemon <500g>")],
    )

    document = receipt_pdf(order, "TestStore", gstin="29ABCDE1234F1Z5")

    assert document.startswith(b"%PDF-")
    assert b"%%EOF" in document
    assert b"pay_live_1" in document
    assert b"29ABCDE1234F1Z5" in document


def test_credit_note_shows_deduction_and_credit():
    order = PaidOrderFactory.build(
        refund_id="rfnd_1",
        refund_amount=Decimal("400.00"),
        return_deduction_amount=Decimal("40.00"),
    )

    document = credit_note_pdf(
        order, "CN-2526-00009", "Product return", date(2025, 6, 1), "TestStore"
    )

    assert document.startswith(b"%PDF-")
    assert b"CN-2526-00009" in document
    assert b"Rs. 40.00" in document
    assert b"Rs. 400.00" in document
    assert b"rfnd_1" in document
