# cart.py
import logging
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from .product import Product

logger = logging.getLogger(__name__)

# listener(event, item) where event is "cart", "bag" or "reset"
CartListener = Callable[[str, Optional["LineItem"]], None]


class LineItem:
    """A product in the cart with its declared and bagged quantities"""

    def __init__(self, product: Product):
        self.product = product
        self.cart_quantity = 0
        self.bagged_quantity = 0

    @property
    def id(self) -> str:
        return self.product.id

    @property
    def unit_price(self) -> float:
        return self.product.price

    @property
    def subtotal(self) -> float:
        """Billed on cart quantity, not bagged quantity"""
        return self.unit_price * self.cart_quantity

    @property
    def is_verified(self) -> bool:
        return self.bagged_quantity >= self.cart_quantity

    def to_dict(self) -> Dict:
        return {
            **self.product.to_dict(),
            'cart_quantity': self.cart_quantity,
            'bagged_quantity': self.bagged_quantity,
            'subtotal': round(self.subtotal, 2),
            'is_verified': self.is_verified
        }

    def __str__(self):
        return f"{self.product.name} x{self.cart_quantity} ({self.bagged_quantity} bagged) - ${self.subtotal:.2f}"


@dataclass(frozen=True)
class Verification:
    is_verified: bool
    remaining: int
    total_cart: int
    total_bagged: int

    def to_dict(self) -> Dict:
        return {
            'is_verified': self.is_verified,
            'remaining': self.remaining,
            'total_cart': self.total_cart,
            'total_bagged': self.total_bagged
        }


class CartState:
    """
    Cart reconciliation state for one shopping session.

    Line items are kept in first-add order, one per product id. Only the
    two scan operations mutate quantities, and both keep
    bagged_quantity <= cart_quantity for every item. Derived values
    (verification, total) are recomputed on every call.
    """

    def __init__(self):
        self.items: Dict[str, LineItem] = {}  # product_id -> LineItem
        self._listeners: List[CartListener] = []

    def subscribe(self, listener: CartListener) -> Callable[[], None]:
        """
        Register a listener called after every effective change

        Returns:
            A callable that removes the listener
        """
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self, event: str, item: Optional[LineItem]) -> None:
        # the change is already applied, a failing listener must not undo the scan
        for listener in list(self._listeners):
            try:
                listener(event, item)
            except Exception:
                logger.exception(f"Cart listener failed on {event} event")

    def register_cart_scan(self, product: Product) -> LineItem:
        """Add one unit of product to the cart"""
        item = self.items.get(product.id)
        if item is None:
            item = LineItem(product)
            self.items[product.id] = item
        item.cart_quantity += 1
        self._notify("cart", item)
        return item

    def register_bag_scan(self, product_id: str) -> bool:
        """
        Confirm one unit of product_id as bagged

        Returns:
            True if bagged, False if the product is not in the cart or is
            already fully bagged (the scan is ignored)
        """
        item = self.items.get(product_id)
        if item is None or item.bagged_quantity >= item.cart_quantity:
            return False
        item.bagged_quantity += 1
        self._notify("bag", item)
        return True

    def reset_session(self) -> None:
        """Discard all line items"""
        self.items.clear()
        self._notify("reset", None)

    def get_items(self) -> List[LineItem]:
        return list(self.items.values())

    def get_item(self, product_id: str) -> Optional[LineItem]:
        return self.items.get(product_id)

    def __len__(self):
        """Number of unique products in cart"""
        return len(self.items)

    def __str__(self):
        v = compute_verification(self)
        return f"Cart: {v.total_cart} items ({v.total_bagged} bagged) - Total: ${compute_total(self):.2f}"


def compute_verification(cart: CartState) -> Verification:
    total_cart = sum(item.cart_quantity for item in cart.items.values())
    total_bagged = sum(item.bagged_quantity for item in cart.items.values())
    return Verification(
        is_verified=total_cart > 0 and total_cart == total_bagged,
        remaining=total_cart - total_bagged,
        total_cart=total_cart,
        total_bagged=total_bagged,
    )


def compute_total(cart: CartState) -> float:
    return sum(item.subtotal for item in cart.items.values())
