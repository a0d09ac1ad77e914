import asyncio
import re

import pytest

from swiftscan.models.cart import CartState
from swiftscan.services.payment import (
    InAppMethod,
    PaymentDetails,
    PaymentMethod,
    PaymentService,
    PaymentValidationError,
)

from .conftest import MILK, WATER


@pytest.fixture
def cart():
    cart = CartState()
    cart.register_cart_scan(MILK)
    cart.register_cart_scan(MILK)
    cart.register_cart_scan(WATER)
    cart.register_cart_scan(WATER)
    return cart


def test_quote_uses_cart_quantity_and_tax_rate(cart, payment_service):
    # nothing bagged yet, the quote is still on declared quantities
    quote = payment_service.quote(cart)
    assert quote["subtotal"] == pytest.approx(12.00)
    assert quote["tax"] == pytest.approx(0.60)
    assert quote["total"] == pytest.approx(12.60)
    assert quote["tax_rate"] == 0.05


def test_from_dict_strips_non_digits():
    details = PaymentDetails.from_dict({
        "method": "app",
        "in_app_method": "card",
        "card_number": "4111 1111-1111 1111",
        "card_cvv": "1a2b3",
    })
    assert details.card_number == "4111111111111111"
    assert details.card_cvv == "123"
    assert details.label == "Card •••• 1111"


def test_from_dict_rejects_unknown_method():
    with pytest.raises(PaymentValidationError):
        PaymentDetails.from_dict({"method": "bitcoin"})


@pytest.mark.parametrize("details, message", [
    (PaymentDetails(), "Card number is required"),
    (PaymentDetails(card_number="1" * 17), "at most 16"),
    (PaymentDetails(card_number="4111", card_expiry="13/30"), "MM/YY"),
    (PaymentDetails(card_number="4111", card_cvv="1234"), "CVV"),
    (PaymentDetails(in_app_method=InAppMethod.UPI), "UPI ID is required"),
])
def test_validation_errors(details, message):
    with pytest.raises(PaymentValidationError, match=message):
        details.validate()


def test_cash_needs_no_details():
    PaymentDetails(method=PaymentMethod.CASH).validate()


def test_card_payment_receipt(cart, payment_service):
    details = PaymentDetails(card_number="4111111111111111", card_expiry="12/29", card_cvv="123")
    receipt = asyncio.run(payment_service.process(cart, details))

    assert re.fullmatch(r"SS-\d{3}-\d{4}", receipt.receipt_id)
    assert receipt.transaction_id.startswith("TXN-")
    assert receipt.payment_method == "Card •••• 1111"
    assert receipt.qr_code is None
    assert [(line.name, line.quantity, line.total) for line in receipt.lines] == [
        ("Organic Milk 1L", 2, 9.0),
        ("Sparkling Water 500ml", 2, 3.0),
    ]
    assert receipt.total == pytest.approx(12.60)
    assert "4111111111111111" not in str(receipt.to_dict())


def test_upi_payment(cart, payment_service):
    details = PaymentDetails(in_app_method=InAppMethod.UPI, upi_id="shopper@okbank")
    receipt = asyncio.run(payment_service.process(cart, details))
    assert receipt.payment_method == "UPI shopper@okbank"


def test_counter_payment_has_qr_code(cart, payment_service):
    receipt = asyncio.run(payment_service.process(cart, PaymentDetails(method=PaymentMethod.CASH)))
    assert receipt.payment_method == "Pay at Counter"
    assert receipt.qr_code.startswith("data:image/png;base64,")


def test_invalid_details_fail_before_delay(cart):
    service = PaymentService(tax_rate=0.05, delay_seconds=60)
    with pytest.raises(PaymentValidationError):
        asyncio.run(service.process(cart, PaymentDetails()))
