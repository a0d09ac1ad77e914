import asyncio
from datetime import datetime, timedelta

import pytest

from swiftscan.services.checkout import (
    AppView,
    CheckoutSession,
    InvalidTransition,
    SessionManager,
    VerificationRequired,
)
from swiftscan.services.insights import InsightsService
from swiftscan.services.payment import PaymentDetails, PaymentService

from .conftest import BREAD, INSIGHT_JSON, MILK, WATER, fake_genai_client


@pytest.fixture
def session(payment_service):
    return CheckoutSession("test", payment_service)


def scan(session, mode, product):
    session.start_scanning(mode)
    return session.scan(product)


def test_new_session_is_browsing(session):
    assert session.view == AppView.BROWSE
    snapshot = session.snapshot()
    assert snapshot["items"] == []
    assert snapshot["is_verified"] is False
    assert snapshot["total"] == 0


def test_scan_returns_to_cart_view(session):
    scan(session, "cart", MILK)
    assert session.view == AppView.CART
    assert session.cart.get_item("milk").cart_quantity == 1

    assert scan(session, "bag", MILK) is True
    assert session.view == AppView.CART
    assert session.cart.get_item("milk").bagged_quantity == 1


def test_scan_outside_scan_view_is_rejected(session):
    with pytest.raises(InvalidTransition):
        session.scan(MILK)


def test_unknown_scan_mode(session):
    with pytest.raises(ValueError):
        session.start_scanning("shelf")


def test_ignored_bag_scan_reports_no_change(session):
    scan(session, "cart", MILK)
    assert scan(session, "bag", BREAD) is False
    assert scan(session, "bag", MILK) is True
    assert scan(session, "bag", MILK) is False


def test_checkout_gated_on_verification(session):
    with pytest.raises(VerificationRequired) as exc:
        session.begin_checkout()
    assert exc.value.remaining == 0

    scan(session, "cart", MILK)
    scan(session, "cart", MILK)
    scan(session, "bag", MILK)
    with pytest.raises(VerificationRequired) as exc:
        session.navigate(AppView.CHECKOUT)
    assert exc.value.remaining == 1
    assert session.view == AppView.CART

    scan(session, "bag", MILK)
    assert session.begin_checkout() == AppView.CHECKOUT


def test_pay_requires_checkout_view(session):
    scan(session, "cart", MILK)
    scan(session, "bag", MILK)
    with pytest.raises(InvalidTransition):
        asyncio.run(session.pay(PaymentDetails(card_number="4111111111111111")))


def test_pay_rechecks_gate_after_more_scans(session):
    scan(session, "cart", MILK)
    scan(session, "bag", MILK)
    session.begin_checkout()
    scan(session, "cart", BREAD)
    session.view = AppView.CHECKOUT

    with pytest.raises(VerificationRequired):
        asyncio.run(session.pay(PaymentDetails(card_number="4111111111111111")))


def test_full_flow_and_reset(session):
    scan(session, "cart", MILK)
    scan(session, "cart", WATER)
    scan(session, "bag", WATER)
    scan(session, "bag", MILK)
    session.begin_checkout()

    receipt = asyncio.run(session.pay(PaymentDetails(card_number="4111111111111111")))

    assert session.view == AppView.SUCCESS
    assert session.receipt is receipt
    assert receipt.subtotal == pytest.approx(6.00)
    assert receipt.tax == pytest.approx(0.30)
    assert receipt.total == pytest.approx(6.30)
    assert [line.name for line in receipt.lines] == ["Organic Milk 1L", "Sparkling Water 500ml"]

    with pytest.raises(InvalidTransition):
        session.start_scanning("cart")
    with pytest.raises(InvalidTransition):
        session.navigate(AppView.CART)

    session.reset()
    assert session.view == AppView.BROWSE
    assert session.receipt is None
    assert len(session.cart) == 0
    assert session.snapshot()["total_cart"] == 0


def test_cannot_navigate_to_success(session):
    with pytest.raises(InvalidTransition):
        session.navigate(AppView.SUCCESS)


def test_insights_cached_until_cart_changes(session, insights_service, insights_client):
    _, models = insights_client
    assert asyncio.run(session.get_insights(insights_service)) is None
    assert models.calls == []

    scan(session, "cart", MILK)
    first = asyncio.run(session.get_insights(insights_service))
    assert first.total_calories == 2150
    asyncio.run(session.get_insights(insights_service))
    assert len(models.calls) == 1

    # bagging does not change what is in the cart
    scan(session, "bag", MILK)
    asyncio.run(session.get_insights(insights_service))
    assert len(models.calls) == 1

    scan(session, "cart", BREAD)
    asyncio.run(session.get_insights(insights_service))
    assert len(models.calls) == 2
    assert "Artisan Bread (Qty: 1)" in models.calls[-1]["contents"]


def test_session_manager_default_and_cleanup(payment_service):
    manager = SessionManager(payment_service)
    default = manager.get_session()
    assert manager.get_session(None) is default
    assert manager.get_session("default") is default

    old_empty = manager.get_session("old-empty")
    old_busy = manager.get_session("old-busy")
    old_busy.start_scanning("cart")
    old_busy.scan(MILK)
    for s in (old_empty, old_busy):
        s.created_at = datetime.now() - timedelta(hours=30)

    assert manager.cleanup_old_sessions(24) == 1
    assert "old-empty" not in manager.sessions
    assert "old-busy" in manager.sessions
    assert "default" in manager.sessions


def test_cart_is_frozen_while_payment_is_processing():
    session = CheckoutSession("slow", PaymentService(tax_rate=0.05, delay_seconds=0.05))
    scan(session, "cart", MILK)
    scan(session, "bag", MILK)
    session.begin_checkout()

    async def shop_while_paying():
        paying = asyncio.create_task(session.pay(PaymentDetails(card_number="4111111111111111")))
        await asyncio.sleep(0)
        assert session.processing is True

        with pytest.raises(InvalidTransition):
            session.start_scanning("cart")
        with pytest.raises(InvalidTransition):
            session.scan(BREAD)
        with pytest.raises(InvalidTransition):
            session.navigate(AppView.CART)
        with pytest.raises(InvalidTransition):
            session.reset()
        return await paying

    receipt = asyncio.run(shop_while_paying())

    assert session.view == AppView.SUCCESS
    assert session.processing is False
    assert session.snapshot()["is_verified"] is True
    assert [(line.name, line.total) for line in receipt.lines] == [("Organic Milk 1L", 4.5)]
    assert receipt.subtotal == pytest.approx(4.5)


def test_insights_for_a_stale_cart_are_dropped(session):
    client, models = fake_genai_client(text=INSIGHT_JSON, delay=0.05)
    service = InsightsService(client=client)
    scan(session, "cart", MILK)

    async def scan_during_fetch():
        fetching = asyncio.create_task(session.get_insights(service))
        await asyncio.sleep(0)
        scan(session, "cart", BREAD)
        stale = await fetching
        fresh = await session.get_insights(service)
        return stale, fresh

    stale, fresh = asyncio.run(scan_during_fetch())

    assert stale is None
    assert fresh is not None
    assert session.insights is fresh
    assert len(models.calls) == 2
    assert "Artisan Bread (Qty: 1)" in models.calls[-1]["contents"]
