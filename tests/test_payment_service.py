from datetime import timedelta
from decimal import Decimal

import pytest

from milkcart.core.exceptions import BusinessRuleError, ConflictError, NotFoundError, ValidationError
from milkcart.models import ActorRef, Order
from milkcart.schemas.order import OrderStatusUpdate
from milkcart.services.order_service import OrderService
from milkcart.services.payment_service import PaymentService, build_upi_url
from tests.factories import NOW, make_product, make_user, order_request, reload

ADMIN = ActorRef.system_admin()


@pytest.fixture
async def unpaid(db):
    """A customer with two confirmed orders of 250.00 each."""
    user = await make_user(db)
    product = await make_product(db, name="Buffalo Milk", price="100.00", stock=20)
    service = OrderService(db)
    orders = []
    for _ in range(2):
        order = await service.create_order(user, order_request(product.id), NOW)
        orders.append(
            await service.update_order_status(order.id, OrderStatusUpdate(status="confirmed"), ADMIN, NOW)
        )
    return user, orders


async def payment_statuses(db, orders):
    return [(await reload(db, Order, o.id)).payment_status for o in orders]


def test_upi_url_pays_the_admin_vpa():
    url = build_upi_url(Decimal("500"), "REF1", "Milk orders")

    assert url.startswith("upi://pay?pa=")
    assert "&am=500.00&" in url
    assert "&tr=REF1&" in url
    assert "tn=Milk%20orders" in url
    assert url.endswith("&cu=INR")


class TestCreateSession:
    async def test_bundles_orders(self, db, unpaid):
        user, orders = unpaid

        payment = await PaymentService(db).create_session(user, [o.id for o in orders], NOW)

        assert payment.amount == Decimal("500.00")
        assert payment.payment_id.startswith("PAY-")
        assert payment.reference_number.startswith("REF")
        assert payment.payment_status == "pending"
        assert payment.verification_status == "pending"
        assert payment.expires_at == NOW + timedelta(minutes=30)
        assert payment.qr_code.startswith("data:image/png;base64,")
        assert "am=500.00" in payment.upi_url
        assert {o.id for o in payment.orders} == {o.id for o in orders}

    async def test_unpaid_orders_listed(self, db, unpaid):
        user, orders = unpaid

        listed = await PaymentService(db).list_unpaid_orders(user)

        assert {o.id for o in listed} == {o.id for o in orders}

    async def test_pending_order_not_eligible(self, db):
        user = await make_user(db)
        product = await make_product(db)
        order = await OrderService(db).create_order(user, order_request(product.id), NOW)

        with pytest.raises(BusinessRuleError, match="not eligible"):
            await PaymentService(db).create_session(user, [order.id], NOW)

    async def test_other_customers_orders_not_eligible(self, db, unpaid):
        _, orders = unpaid
        stranger = await make_user(db, email="stranger@milkcart.in")

        with pytest.raises(BusinessRuleError):
            await PaymentService(db).create_session(stranger, [orders[0].id], NOW)

    async def test_empty_order_list(self, db, unpaid):
        user, _ = unpaid

        with pytest.raises(ValidationError):
            await PaymentService(db).create_session(user, [], NOW)

    async def test_order_in_open_session_conflicts(self, db, unpaid):
        user, orders = unpaid
        service = PaymentService(db)
        await service.create_session(user, [orders[0].id], NOW)

        with pytest.raises(ConflictError) as exc_info:
            await service.create_session(user, [o.id for o in orders], NOW)

        assert exc_info.value.details["orders"] == [orders[0].order_number]

    async def test_expired_session_frees_its_orders(self, db, unpaid):
        user, orders = unpaid
        service = PaymentService(db)
        await service.create_session(user, [orders[0].id], NOW)

        payment = await service.create_session(user, [orders[0].id], NOW + timedelta(minutes=31))

        assert payment.amount == Decimal("250.00")


class TestCompleteAndVerify:
    async def test_complete_moves_orders_to_processing(self, db, unpaid):
        user, orders = unpaid
        service = PaymentService(db)
        payment = await service.create_session(user, [o.id for o in orders], NOW)

        completed = await service.mark_completed(user, payment.payment_id, " 412345678901 ", NOW + timedelta(minutes=5))

        assert completed.payment_status == "completed"
        assert completed.upi_transaction_id == "412345678901"
        assert completed.completed_at is not None
        assert await payment_statuses(db, orders) == ["processing", "processing"]

    async def test_verify_marks_orders_paid(self, db, unpaid):
        user, orders = unpaid
        service = PaymentService(db)
        payment = await service.create_session(user, [o.id for o in orders], NOW)
        await service.mark_completed(user, payment.payment_id, "412345678901", NOW)

        verified = await service.verify_payment(payment.payment_id, "verify", ADMIN, NOW, notes="Matched statement")

        assert verified.verification_status == "verified"
        assert verified.verification_notes == "Matched statement"
        assert verified.verified_by == {"kind": "system_admin"}
        assert await payment_statuses(db, orders) == ["paid", "paid"]
        assert await service.list_unpaid_orders(user) == []

    async def test_verify_refunds_order_cancelled_mid_session(self, db, unpaid):
        user, orders = unpaid
        service = PaymentService(db)
        payment = await service.create_session(user, [o.id for o in orders], NOW)
        await service.mark_completed(user, payment.payment_id, "412345678901", NOW)
        await OrderService(db).update_order_status(
            orders[1].id, OrderStatusUpdate(status="cancelled"), ADMIN, NOW
        )

        await service.verify_payment(payment.payment_id, "verify", ADMIN, NOW)

        assert await payment_statuses(db, orders) == ["paid", "refunded"]
        assert (await reload(db, Order, orders[1].id)).status == "cancelled"

    async def test_reject_returns_orders_to_pending(self, db, unpaid):
        user, orders = unpaid
        service = PaymentService(db)
        payment = await service.create_session(user, [o.id for o in orders], NOW)
        await service.mark_completed(user, payment.payment_id, "412345678901", NOW)

        rejected = await service.verify_payment(payment.payment_id, "reject", ADMIN, NOW)

        assert rejected.verification_status == "rejected"
        assert rejected.verification_notes == "Payment rejected by admin"
        assert await payment_statuses(db, orders) == ["pending", "pending"]

        retry = await service.create_session(user, [o.id for o in orders], NOW)
        assert retry.amount == Decimal("500.00")

    async def test_cannot_verify_twice(self, db, unpaid):
        user, orders = unpaid
        service = PaymentService(db)
        payment = await service.create_session(user, [orders[0].id], NOW)
        await service.mark_completed(user, payment.payment_id, "412345678901", NOW)
        await service.verify_payment(payment.payment_id, "verify", ADMIN, NOW)

        with pytest.raises(BusinessRuleError, match="not eligible"):
            await service.verify_payment(payment.payment_id, "reject", ADMIN, NOW)

    async def test_cannot_verify_open_session(self, db, unpaid):
        user, orders = unpaid
        service = PaymentService(db)
        payment = await service.create_session(user, [orders[0].id], NOW)

        with pytest.raises(BusinessRuleError):
            await service.verify_payment(payment.payment_id, "verify", ADMIN, NOW)

    async def test_unknown_action(self, db):
        with pytest.raises(ValidationError):
            await PaymentService(db).verify_payment("PAY-1", "approve", ADMIN, NOW)

    async def test_transaction_id_required(self, db, unpaid):
        user, orders = unpaid
        service = PaymentService(db)
        payment = await service.create_session(user, [orders[0].id], NOW)

        with pytest.raises(ValidationError):
            await service.mark_completed(user, payment.payment_id, "   ", NOW)

    async def test_complete_twice_rejected(self, db, unpaid):
        user, orders = unpaid
        service = PaymentService(db)
        payment = await service.create_session(user, [orders[0].id], NOW)
        await service.mark_completed(user, payment.payment_id, "412345678901", NOW)

        with pytest.raises(BusinessRuleError, match="already processed"):
            await service.mark_completed(user, payment.payment_id, "412345678901", NOW)

    async def test_other_customer_cannot_complete(self, db, unpaid):
        user, orders = unpaid
        stranger = await make_user(db, email="stranger@milkcart.in")
        service = PaymentService(db)
        payment = await service.create_session(user, [orders[0].id], NOW)

        with pytest.raises(NotFoundError):
            await service.mark_completed(stranger, payment.payment_id, "412345678901", NOW)


class TestExpiry:
    async def test_completing_expired_session_cancels_it(self, db, unpaid):
        user, orders = unpaid
        service = PaymentService(db)
        payment = await service.create_session(user, [o.id for o in orders], NOW)

        with pytest.raises(BusinessRuleError) as exc_info:
            await service.mark_completed(user, payment.payment_id, "412345678901", NOW + timedelta(minutes=31))

        assert exc_info.value.details == {"expired": True}
        assert (await service.get_payment(payment.payment_id)).payment_status == "cancelled"
        assert await payment_statuses(db, orders) == ["pending", "pending"]

    async def test_sweep_cancels_only_stale_sessions(self, db, unpaid):
        user, orders = unpaid
        service = PaymentService(db)
        stale = await service.create_session(user, [orders[0].id], NOW)
        fresh = await service.create_session(user, [orders[1].id], NOW + timedelta(minutes=20))

        cancelled = await service.expire_stale_sessions(NOW + timedelta(minutes=35))

        assert cancelled == 1
        assert (await service.get_payment(stale.payment_id)).payment_status == "cancelled"
        assert (await service.get_payment(fresh.payment_id)).payment_status == "pending"


async def test_delivered_order_can_still_be_paid(db, unpaid):
    user, orders = unpaid
    order_service = OrderService(db)
    await order_service.update_order_status(orders[0].id, OrderStatusUpdate(status="delivered"), ADMIN, NOW)
    service = PaymentService(db)
    payment = await service.create_session(user, [orders[0].id], NOW)
    await service.mark_completed(user, payment.payment_id, "412345678901", NOW)

    await service.verify_payment(payment.payment_id, "verify", ADMIN, NOW)

    order = await reload(db, Order, orders[0].id)
    assert order.status == "delivered"
    assert order.payment_status == "paid"
