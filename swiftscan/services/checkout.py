import logging
from datetime import datetime, timedelta
from enum import Enum
from typing import Dict, Optional

from ..models.cart import CartState, LineItem, compute_total, compute_verification
from ..models.product import Product
from .insights import InsightsService, ShoppingInsight
from .payment import PaymentDetails, PaymentService, Receipt

logger = logging.getLogger(__name__)


class AppView(str, Enum):
    BROWSE = "browse"
    SCAN_CART = "scan_cart"
    SCAN_BAG = "scan_bag"
    CART = "cart"
    CHECKOUT = "checkout"
    SUCCESS = "success"


SCAN_MODES = {"cart": AppView.SCAN_CART, "bag": AppView.SCAN_BAG}


class CheckoutError(Exception):
    pass


class InvalidTransition(CheckoutError):
    pass


class VerificationRequired(CheckoutError):
    def __init__(self, remaining: int):
        self.remaining = remaining
        super().__init__(f"Security verification required: {remaining} items remaining to bag")


class CheckoutSession:
    """
    One shopper's walk through the checkout flow.

    browse -> scan_cart -> cart <-> scan_bag -> checkout -> success -> browse

    The cart itself does not know about this flow. Entering checkout is
    only allowed once every cart unit has been bagged.
    """

    def __init__(self, session_id: str, payment_service: PaymentService):
        self.session_id = session_id
        self.payment_service = payment_service
        self.cart = CartState()
        self.view = AppView.BROWSE
        self.insights: Optional[ShoppingInsight] = None
        self.receipt: Optional[Receipt] = None
        self.processing = False
        self.created_at = datetime.now()
        self.last_updated: Optional[datetime] = None
        self.cart_version = 0
        self.cart.subscribe(self._on_cart_change)

    def _on_cart_change(self, event: str, item: Optional[LineItem]) -> None:
        self.last_updated = datetime.now()
        if event in ("cart", "reset"):
            # recipe and calories depend on what is in the cart
            self.cart_version += 1
            self.insights = None

    def _ensure_open(self) -> None:
        if self.processing:
            raise InvalidTransition("Payment in progress")
        if self.view == AppView.SUCCESS:
            raise InvalidTransition("Payment already completed, start a new session")

    def navigate(self, view: AppView) -> AppView:
        self._ensure_open()
        if view == AppView.CHECKOUT:
            return self.begin_checkout()
        if view == AppView.SUCCESS:
            raise InvalidTransition("Success is only reached by paying")
        self.view = view
        return self.view

    def start_scanning(self, mode: str) -> AppView:
        if mode not in SCAN_MODES:
            raise ValueError(f"Unknown scan mode: {mode}")
        return self.navigate(SCAN_MODES[mode])

    def scan(self, product: Product) -> bool:
        """
        Apply a resolved scan according to the current scan view

        Returns:
            True if the cart changed. A bag scan for an item that is not in
            the cart, or is already fully bagged, changes nothing.
        """
        self._ensure_open()
        if self.view == AppView.SCAN_CART:
            item = self.cart.register_cart_scan(product)
            logger.info(f"[{self.session_id}] cart scan {product.name}, qty {item.cart_quantity}")
            changed = True
        elif self.view == AppView.SCAN_BAG:
            changed = self.cart.register_bag_scan(product.id)
            if changed:
                logger.info(f"[{self.session_id}] bagged {product.name}")
            else:
                logger.info(f"[{self.session_id}] ignored bag scan of {product.name}")
        else:
            raise InvalidTransition(f"Not scanning (current view: {self.view.value})")

        self.view = AppView.CART
        return changed

    def begin_checkout(self) -> AppView:
        self._ensure_open()
        verification = compute_verification(self.cart)
        if not verification.is_verified:
            logger.info(f"[{self.session_id}] checkout refused, {verification.remaining} items not bagged")
            raise VerificationRequired(verification.remaining)
        self.view = AppView.CHECKOUT
        return self.view

    async def pay(self, details: PaymentDetails) -> Receipt:
        if self.view != AppView.CHECKOUT:
            raise InvalidTransition(f"Cannot pay from {self.view.value}")
        verification = compute_verification(self.cart)
        if not verification.is_verified:
            raise VerificationRequired(verification.remaining)

        if self.processing:
            raise InvalidTransition("Payment already in progress")

        self.processing = True
        try:
            self.receipt = await self.payment_service.process(self.cart, details)
        finally:
            self.processing = False
        self.view = AppView.SUCCESS
        return self.receipt

    async def get_insights(self, service: InsightsService) -> Optional[ShoppingInsight]:
        if self.insights is not None or len(self.cart) == 0:
            return self.insights

        version = self.cart_version
        insights = await service.fetch_insights(self.cart.get_items())
        if version != self.cart_version:
            # cart changed while waiting, this answer describes the old cart
            logger.info(f"[{self.session_id}] discarding insights for a stale cart")
            return None

        self.insights = insights
        return self.insights

    def reset(self) -> None:
        if self.processing:
            raise InvalidTransition("Payment in progress")
        self.cart.reset_session()
        self.view = AppView.BROWSE
        self.insights = None
        self.receipt = None
        logger.info(f"[{self.session_id}] session reset")

    def snapshot(self) -> Dict:
        verification = compute_verification(self.cart)
        return {
            "session_id": self.session_id,
            "view": self.view.value,
            "items": [item.to_dict() for item in self.cart.get_items()],
            **verification.to_dict(),
            "total": round(compute_total(self.cart), 2),
            "quote": self.payment_service.quote(self.cart),
            "unique_items": len(self.cart),
            "last_updated": self.last_updated.isoformat() if self.last_updated else None,
            "created_at": self.created_at.isoformat(),
        }


class SessionManager:
    """Checkout sessions keyed by session id"""

    def __init__(self, payment_service: PaymentService):
        self.payment_service = payment_service
        self.sessions: Dict[str, CheckoutSession] = {}
        self.default_session = "default"

    def get_session(self, session_id: str = None) -> CheckoutSession:
        if not session_id:
            session_id = self.default_session

        if session_id not in self.sessions:
            self.sessions[session_id] = CheckoutSession(session_id, self.payment_service)

        return self.sessions[session_id]

    def cleanup_old_sessions(self, max_age_hours: int = 24) -> int:
        """Remove empty sessions older than max_age_hours"""
        cutoff = datetime.now() - timedelta(hours=max_age_hours)
        removed = 0

        for session_id in list(self.sessions.keys()):
            session = self.sessions[session_id]
            if session.created_at < cutoff and len(session.cart) == 0:
                del self.sessions[session_id]
                removed += 1
                logger.info(f"Cleaned up old session: {session_id}")

        return removed
