from .product import Product
from .cart import CartState, LineItem, Verification, compute_total, compute_verification

__all__ = [
    "Product",
    "CartState",
    "LineItem",
    "Verification",
    "compute_total",
    "compute_verification",
]
