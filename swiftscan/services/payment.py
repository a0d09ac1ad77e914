import asyncio
import base64
import logging
import random
import re
import uuid
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from io import BytesIO
from typing import Dict, List, Optional

import qrcode

from ..models.cart import CartState, compute_total

logger = logging.getLogger(__name__)

CARD_NUMBER_MAX_DIGITS = 16
CVV_MAX_DIGITS = 3
EXPIRY_PATTERN = re.compile(r"^(0[1-9]|1[0-2])/\d{2}$")


class PaymentMethod(str, Enum):
    APP = "app"
    CASH = "cash"


class InAppMethod(str, Enum):
    CARD = "card"
    UPI = "upi"


class PaymentValidationError(ValueError):
    pass


@dataclass
class PaymentDetails:
    method: PaymentMethod = PaymentMethod.APP
    in_app_method: InAppMethod = InAppMethod.CARD
    card_number: str = ""
    card_expiry: str = ""
    card_cvv: str = ""
    upi_id: str = ""

    @classmethod
    def from_dict(cls, data: dict) -> "PaymentDetails":
        try:
            method = PaymentMethod(data.get("method", PaymentMethod.APP.value))
            in_app_method = InAppMethod(data.get("in_app_method", InAppMethod.CARD.value))
        except ValueError as e:
            raise PaymentValidationError(str(e)) from e
        return cls(
            method=method,
            in_app_method=in_app_method,
            # non-digits are dropped as the card inputs do
            card_number=re.sub(r"\D", "", str(data.get("card_number", ""))),
            card_expiry=str(data.get("card_expiry", "")).strip(),
            card_cvv=re.sub(r"\D", "", str(data.get("card_cvv", ""))),
            upi_id=str(data.get("upi_id", "")).strip(),
        )

    def validate(self) -> None:
        if self.method == PaymentMethod.CASH:
            return

        if self.in_app_method == InAppMethod.UPI:
            if not self.upi_id:
                raise PaymentValidationError("UPI ID is required")
            return

        if not self.card_number:
            raise PaymentValidationError("Card number is required")
        if len(self.card_number) > CARD_NUMBER_MAX_DIGITS:
            raise PaymentValidationError(f"Card number must be at most {CARD_NUMBER_MAX_DIGITS} digits")
        if self.card_expiry and not EXPIRY_PATTERN.match(self.card_expiry):
            raise PaymentValidationError("Expiry must be MM/YY")
        if len(self.card_cvv) > CVV_MAX_DIGITS:
            raise PaymentValidationError(f"CVV must be at most {CVV_MAX_DIGITS} digits")

    @property
    def label(self) -> str:
        if self.method == PaymentMethod.CASH:
            return "Pay at Counter"
        if self.in_app_method == InAppMethod.UPI:
            return f"UPI {self.upi_id}"
        return f"Card •••• {self.card_number[-4:]}"


@dataclass(frozen=True)
class ReceiptLine:
    name: str
    quantity: int
    unit_price: float
    total: float

    def to_dict(self):
        return {
            "name": self.name,
            "quantity": self.quantity,
            "unit_price": self.unit_price,
            "total": self.total,
        }


@dataclass(frozen=True)
class Receipt:
    receipt_id: str
    transaction_id: str
    payment_method: str
    lines: List[ReceiptLine]
    subtotal: float
    tax: float
    total: float
    paid_at: str
    qr_code: Optional[str] = None

    def to_dict(self):
        return {
            "receipt_id": self.receipt_id,
            "transaction_id": self.transaction_id,
            "payment_method": self.payment_method,
            "lines": [line.to_dict() for line in self.lines],
            "subtotal": self.subtotal,
            "tax": self.tax,
            "total": self.total,
            "paid_at": self.paid_at,
            "qr_code": self.qr_code,
        }


def make_qr_data_url(data: str) -> str:
    qr = qrcode.QRCode(version=1, box_size=10, border=5)
    qr.add_data(data)
    qr.make(fit=True)

    img = qr.make_image(fill_color="black", back_color="white")
    buffer = BytesIO()
    img.save(buffer, format='PNG')
    qr_base64 = base64.b64encode(buffer.getvalue()).decode()
    return f"data:image/png;base64,{qr_base64}"


def new_receipt_id() -> str:
    return f"SS-{random.randint(0, 999):03d}-{random.randint(0, 9999):04d}"


def new_transaction_id() -> str:
    return f"TXN-{uuid.uuid4().hex[:8].upper()}"


class PaymentService:
    """Mocked payment: validates input, waits a fixed delay, always succeeds"""

    def __init__(self, tax_rate: float = 0.05, delay_seconds: float = 2.5):
        self.tax_rate = tax_rate
        self.delay_seconds = delay_seconds

    def quote(self, cart: CartState) -> Dict[str, float]:
        subtotal = compute_total(cart)
        tax = subtotal * self.tax_rate
        return {
            "subtotal": round(subtotal, 2),
            "tax": round(tax, 2),
            "total": round(subtotal + tax, 2),
            "tax_rate": self.tax_rate,
        }

    def counter_qr(self, cart: CartState, transaction_id: str) -> str:
        total = self.quote(cart)["total"]
        return make_qr_data_url(f"PAYMENT|{total:.2f}|{transaction_id}")

    async def process(self, cart: CartState, details: PaymentDetails) -> Receipt:
        details.validate()

        # lines and amounts are taken together, before the delay
        quote = self.quote(cart)
        lines = [
            ReceiptLine(
                name=item.product.name,
                quantity=item.cart_quantity,
                unit_price=item.unit_price,
                total=round(item.subtotal, 2),
            )
            for item in cart.get_items()
        ]
        transaction_id = new_transaction_id()
        qr_code = self.counter_qr(cart, transaction_id) if details.method == PaymentMethod.CASH else None

        logger.info(f"Processing {details.method.value} payment {transaction_id} for ${quote['total']:.2f}")
        await asyncio.sleep(self.delay_seconds)

        receipt = Receipt(
            receipt_id=new_receipt_id(),
            transaction_id=transaction_id,
            payment_method=details.label,
            lines=lines,
            subtotal=quote["subtotal"],
            tax=quote["tax"],
            total=quote["total"],
            paid_at=datetime.now().isoformat(),
            qr_code=qr_code,
        )
        logger.info(f"Payment {transaction_id} completed, receipt #{receipt.receipt_id}")
        return receipt
