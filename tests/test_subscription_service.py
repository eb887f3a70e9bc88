from datetime import date, timedelta
from decimal import Decimal

import pytest
from pydantic import ValidationError as SchemaError
from sqlalchemy import update

from milkcart.core.exceptions import BusinessRuleError, ConflictError, NotFoundError, ValidationError
from milkcart.models import ActorRef, Payment, RefundRequest, SubscriptionPlan, UserSubscription
from milkcart.schemas.subscription import (
    RefundStatusUpdate,
    SubscriptionCancelRequest,
    SubscriptionPlanCreate,
    SubscriptionPlanUpdate,
)
from milkcart.services.payment_service import PaymentService
from milkcart.services.subscription_service import SubscriptionService, calculate_refund
from tests.factories import NOW, TOMORROW, ist, make_plan, make_user, reload, subscription_request

ADMIN = ActorRef.system_admin()


def cancel_request(**overrides) -> SubscriptionCancelRequest:
    fields = {
        "reason": "Moving to another city",
        "mobile_number": "9876543210",
        "upi_id": "asha@okaxis",
    }
    fields.update(overrides)
    return SubscriptionCancelRequest(**fields)


async def activate(db, user, subscription) -> UserSubscription:
    """Pay for ``subscription`` through a UPI session and have the admin verify it."""
    payments = PaymentService(db)
    payment = await payments.create_subscription_session(user, subscription.id, NOW)
    await payments.mark_completed(user, payment.payment_id, "412345678901", NOW)
    await payments.verify_payment(payment.payment_id, "verify", ADMIN, NOW)
    return await SubscriptionService(db).get_subscription(subscription.id)


@pytest.fixture
async def customer(db):
    return await make_user(db)


@pytest.fixture
async def plan(db):
    """Cow milk, 1L a day for 30 days at 1800.00."""
    return await make_plan(db)


@pytest.fixture
async def active(db, customer, plan):
    subscription = await SubscriptionService(db).subscribe(customer, subscription_request(plan.id), NOW)
    return await activate(db, customer, subscription)


def test_refund_prorates_unused_days():
    quote = calculate_refund(Decimal("1800.00"), date(2026, 3, 11), 30, date(2026, 3, 20))

    assert quote.days_used == 10
    assert quote.days_remaining == 20
    assert quote.refund_amount == Decimal("1200.00")


def test_refund_before_start_is_full():
    quote = calculate_refund(Decimal("1800.00"), date(2026, 3, 11), 30, date(2026, 3, 10))

    assert quote.days_used == 0
    assert quote.refund_amount == Decimal("1800.00")


def test_refund_after_end_is_zero():
    quote = calculate_refund(Decimal("1800.00"), date(2026, 3, 11), 30, date(2026, 5, 1))

    assert quote.days_used == 30
    assert quote.refund_amount == Decimal("0.00")


class TestPlans:
    async def test_create_computes_daily_price(self, db):
        plan = await SubscriptionService(db).create_plan(
            SubscriptionPlanCreate(
                name="Buffalo Milk 2L",
                milk_type="buffalo",
                volume="2L",
                duration_days=15,
                price=Decimal("1500.00"),
                features=["Morning delivery"],
            )
        )

        assert plan.daily_price == Decimal("100.00")
        assert plan.milk_type == "buffalo"
        assert plan.features == ["Morning delivery"]

    async def test_same_variant_conflicts(self, db, plan):
        with pytest.raises(ConflictError, match="already exists"):
            await SubscriptionService(db).create_plan(
                SubscriptionPlanCreate(
                    name="Another cow plan",
                    milk_type="cow",
                    volume="1L",
                    duration_days=30,
                    price=Decimal("1700.00"),
                )
            )

    async def test_unsupported_duration_rejected(self):
        with pytest.raises(SchemaError):
            SubscriptionPlanCreate(
                name="Ten days", milk_type="cow", volume="1L", duration_days=10, price=Decimal("600.00")
            )

    async def test_price_change_recomputes_daily_price(self, db, plan):
        updated = await SubscriptionService(db).update_plan(
            plan.id, SubscriptionPlanUpdate(price=Decimal("2100.00"))
        )

        assert updated.daily_price == Decimal("70.00")

    async def test_update_into_existing_variant_conflicts(self, db, plan):
        other = await make_plan(db, duration_days=15, price="900.00")

        with pytest.raises(ConflictError):
            await SubscriptionService(db).update_plan(other.id, SubscriptionPlanUpdate(duration_days=30))

    async def test_inactive_plans_hidden_from_customers(self, db, plan):
        await make_plan(db, milk_type="buffalo", is_active=False)
        service = SubscriptionService(db)

        assert [p.id for p in await service.list_plans()] == [plan.id]
        assert len(await service.list_plans(include_inactive=True)) == 2

    async def test_cannot_delete_plan_with_active_subscription(self, db, plan, active):
        with pytest.raises(BusinessRuleError) as exc_info:
            await SubscriptionService(db).delete_plan(plan.id)

        assert exc_info.value.details == {"active_subscriptions": 1}

    async def test_plan_with_past_subscriptions_is_deactivated(self, db, customer, plan):
        await SubscriptionService(db).subscribe(customer, subscription_request(plan.id), NOW)

        deleted = await SubscriptionService(db).delete_plan(plan.id)

        assert deleted is False
        assert (await reload(db, SubscriptionPlan, plan.id)).is_active is False

    async def test_unused_plan_deleted(self, db, plan):
        assert await SubscriptionService(db).delete_plan(plan.id) is True

        with pytest.raises(NotFoundError):
            await SubscriptionService(db).get_plan(plan.id)


class TestSubscribe:
    async def test_starts_tomorrow_and_waits_for_payment(self, db, customer, plan):
        subscription = await SubscriptionService(db).subscribe(customer, subscription_request(plan.id), NOW)

        assert subscription.subscription_number.startswith("SUB-")
        assert subscription.status == "pending"
        assert subscription.payment_status == "pending"
        assert subscription.start_date == TOMORROW
        assert subscription.end_date == TOMORROW + timedelta(days=29)
        assert subscription.next_delivery_date == TOMORROW
        assert subscription.total_deliveries == 30
        assert subscription.amount == Decimal("1800")
        assert subscription.shipping_city == "Pune"
        assert [e.action for e in subscription.events] == ["created"]

    async def test_plan_discount_rounds_to_rupees(self, db, customer):
        plan = await make_plan(db, price="1000.00", discount_percent=15)

        subscription = await SubscriptionService(db).subscribe(customer, subscription_request(plan.id), NOW)

        assert subscription.amount == Decimal("850")
        assert subscription.discount_percent == 15

    async def test_same_day_start_rejected(self, db, customer, plan):
        with pytest.raises(ValidationError, match="tomorrow"):
            await SubscriptionService(db).subscribe(
                customer, subscription_request(plan.id, start_date=date(2026, 3, 10)), NOW
            )

    async def test_start_too_far_ahead_rejected(self, db, customer, plan):
        with pytest.raises(ValidationError):
            await SubscriptionService(db).subscribe(
                customer, subscription_request(plan.id, start_date=date(2026, 4, 30)), NOW
            )

    async def test_inactive_plan_rejected(self, db, customer):
        plan = await make_plan(db, is_active=False)

        with pytest.raises(BusinessRuleError, match="not available"):
            await SubscriptionService(db).subscribe(customer, subscription_request(plan.id), NOW)

    async def test_evening_shift_disabled(self, db, customer, plan):
        with pytest.raises(BusinessRuleError, match="Evening"):
            await SubscriptionService(db).subscribe(
                customer, subscription_request(plan.id, shift="evening"), NOW
            )


class TestPayment:
    async def test_verified_payment_activates(self, db, customer, plan):
        service = SubscriptionService(db)
        payments = PaymentService(db)
        subscription = await service.subscribe(customer, subscription_request(plan.id), NOW)

        payment = await payments.create_subscription_session(customer, subscription.id, NOW)
        assert payment.amount == Decimal("1800.00")
        assert payment.user_subscription_id == subscription.id
        assert payment.orders == []

        await payments.mark_completed(customer, payment.payment_id, "412345678901", NOW)
        processing = await service.get_subscription(subscription.id)
        assert processing.status == "processing"
        assert processing.upi_transaction_id == "412345678901"
        assert [s.id for s in await service.get_pending_approvals()] == [subscription.id]

        await payments.verify_payment(payment.payment_id, "verify", ADMIN, NOW)
        verified = await service.get_subscription(subscription.id)
        assert verified.status == "active"
        assert verified.payment_status == "paid"
        assert verified.paid_at == NOW
        assert [e.action for e in verified.events] == ["created", "payment_reported", "payment_verified"]

    async def test_rejected_payment_returns_to_pending(self, db, customer, plan):
        service = SubscriptionService(db)
        payments = PaymentService(db)
        subscription = await service.subscribe(customer, subscription_request(plan.id), NOW)
        payment = await payments.create_subscription_session(customer, subscription.id, NOW)
        await payments.mark_completed(customer, payment.payment_id, "412345678901", NOW)

        await payments.verify_payment(payment.payment_id, "reject", ADMIN, NOW, notes="No such UTR")

        rejected = await service.get_subscription(subscription.id)
        assert rejected.status == "pending"
        assert rejected.payment_status == "pending"
        assert rejected.events[-1].reason == "No such UTR"

        retry = await payments.create_subscription_session(customer, subscription.id, NOW)
        assert retry.payment_id != payment.payment_id

    async def test_open_session_conflicts(self, db, customer, plan):
        subscription = await SubscriptionService(db).subscribe(customer, subscription_request(plan.id), NOW)
        payments = PaymentService(db)
        await payments.create_subscription_session(customer, subscription.id, NOW)

        with pytest.raises(ConflictError):
            await payments.create_subscription_session(customer, subscription.id, NOW)

    async def test_active_subscription_not_payable(self, db, customer, active):
        with pytest.raises(BusinessRuleError, match="not awaiting payment"):
            await PaymentService(db).create_subscription_session(customer, active.id, NOW)

    async def test_other_customer_cannot_pay(self, db, customer, plan):
        subscription = await SubscriptionService(db).subscribe(customer, subscription_request(plan.id), NOW)
        stranger = await make_user(db, email="stranger@milkcart.in")

        with pytest.raises(NotFoundError):
            await PaymentService(db).create_subscription_session(stranger, subscription.id, NOW)


class TestDeliveries:
    async def test_pause_and_resume_moves_next_delivery(self, db, customer, active):
        service = SubscriptionService(db)

        paused = await service.pause(customer, active.id, "Travelling", NOW)
        assert paused.status == "paused"

        resumed = await service.resume(customer, active.id, ist(2026, 3, 15, 9, 0))
        assert resumed.status == "active"
        assert resumed.next_delivery_date == date(2026, 3, 16)
        assert [e.action for e in resumed.events][-2:] == ["paused", "resumed"]

    async def test_pause_requires_active(self, db, customer, active):
        service = SubscriptionService(db)
        await service.pause(customer, active.id, None, NOW)

        with pytest.raises(BusinessRuleError):
            await service.pause(customer, active.id, None, NOW)

    async def test_skip_counts_against_plan(self, db, customer, active):
        skipped = await SubscriptionService(db).skip_delivery(customer, active.id, None, NOW)

        assert skipped.skipped_deliveries == 1
        assert skipped.remaining_deliveries == 29
        assert skipped.next_delivery_date == date(2026, 3, 12)

    async def test_skip_after_evening_cutoff_rejected(self, db, customer, active):
        with pytest.raises(BusinessRuleError, match="20:00"):
            await SubscriptionService(db).skip_delivery(customer, active.id, None, ist(2026, 3, 10, 21, 0))

    async def test_due_deliveries_listed_on_the_day(self, db, active):
        service = SubscriptionService(db)

        assert await service.get_deliveries_due(NOW) == []
        assert [s.id for s in await service.get_deliveries_due(ist(2026, 3, 11, 6, 0))] == [active.id]

    async def test_complete_delivery_advances_schedule(self, db, active):
        completed = await SubscriptionService(db).complete_delivery(active.id, ADMIN, ist(2026, 3, 11, 7, 0))

        assert completed.completed_deliveries == 1
        assert completed.next_delivery_date == date(2026, 3, 12)
        assert completed.progress_percentage == 3
        assert completed.events[-1].performed_by_kind == "system_admin"

    async def test_delivery_not_due_yet(self, db, active):
        with pytest.raises(BusinessRuleError, match="not due"):
            await SubscriptionService(db).complete_delivery(active.id, ADMIN, NOW)

    async def test_last_delivery_completes_subscription(self, db, customer):
        plan = await make_plan(db, duration_days=7, price="420.00")
        service = SubscriptionService(db)
        subscription = await activate(
            db, customer, await service.subscribe(customer, subscription_request(plan.id), NOW)
        )

        for day in range(7):
            subscription = await service.complete_delivery(subscription.id, ADMIN, ist(2026, 3, 11 + day, 7, 0))

        assert subscription.status == "completed"
        assert subscription.next_delivery_date is None
        assert subscription.remaining_deliveries == 0
        assert subscription.events[-1].action == "completed"

        with pytest.raises(BusinessRuleError):
            await service.complete_delivery(subscription.id, ADMIN, ist(2026, 3, 18, 7, 0))

    async def test_expiry_sweep(self, db, active):
        service = SubscriptionService(db)

        assert await service.expire_finished(ist(2026, 4, 9, 23, 0)) == 0
        assert await service.expire_finished(ist(2026, 4, 10, 0, 30)) == 1

        expired = await service.get_subscription(active.id)
        assert expired.status == "expired"
        assert expired.next_delivery_date is None


class TestCancellation:
    async def test_cancel_raises_prorated_refund(self, db, customer, active):
        subscription, refund = await SubscriptionService(db).cancel(
            customer, active.id, cancel_request(), ist(2026, 3, 20, 10, 0)
        )

        assert subscription.status == "cancellation_requested"
        assert refund.status == "pending"
        assert refund.days_used == 10
        assert refund.days_remaining == 20
        assert refund.original_amount == Decimal("1800.00")
        assert refund.refund_amount == Decimal("1200.00")
        assert refund.refund_method == "upi"
        assert refund.upi_id == "asha@okaxis"

    async def test_pending_subscription_cannot_be_cancelled(self, db, customer, plan):
        subscription = await SubscriptionService(db).subscribe(customer, subscription_request(plan.id), NOW)

        with pytest.raises(BusinessRuleError, match="active or paused"):
            await SubscriptionService(db).cancel(customer, subscription.id, cancel_request(), NOW)

    async def test_refund_account_details_required(self):
        with pytest.raises(SchemaError, match="UPI ID"):
            cancel_request(upi_id=None)
        with pytest.raises(SchemaError, match="ifsc_code"):
            cancel_request(
                refund_method="bank_transfer",
                upi_id=None,
                account_holder_name="Asha Customer",
                bank_name="State Bank of India",
                account_number="123456789012",
            )

    async def test_refund_runs_to_completion(self, db, customer, active):
        service = SubscriptionService(db)
        _, refund = await service.cancel(customer, active.id, cancel_request(), NOW)

        approved = await service.update_refund_status(
            refund.id, RefundStatusUpdate(status="approved", admin_notes="OK"), ADMIN, NOW
        )
        assert approved.status == "approved"
        assert (await service.get_subscription(active.id)).status == "cancelled"

        processed = await service.update_refund_status(
            refund.id, RefundStatusUpdate(status="processed", refund_transaction_id="RFND123"), ADMIN, NOW
        )
        assert processed.processed_at == NOW
        assert processed.processed_by_kind == "system_admin"
        assert processed.refund_transaction_id == "RFND123"

        completed = await service.update_refund_status(refund.id, RefundStatusUpdate(status="completed"), ADMIN, NOW)
        assert completed.refund_date == date(2026, 3, 10)
        cancelled = await service.get_subscription(active.id)
        assert cancelled.payment_status == "refunded"
        assert cancelled.next_delivery_date is None

    async def test_rejected_refund_restores_paused_subscription(self, db, customer, active):
        service = SubscriptionService(db)
        await service.pause(customer, active.id, None, NOW)
        _, refund = await service.cancel(customer, active.id, cancel_request(), NOW)

        await service.update_refund_status(refund.id, RefundStatusUpdate(status="rejected"), ADMIN, NOW)

        restored = await service.get_subscription(active.id)
        assert restored.status == "paused"
        assert restored.events[-1].action == "cancellation_rejected"

    async def test_refund_cannot_skip_approval(self, db, customer, active):
        service = SubscriptionService(db)
        _, refund = await service.cancel(customer, active.id, cancel_request(), NOW)

        with pytest.raises(BusinessRuleError):
            await service.update_refund_status(refund.id, RefundStatusUpdate(status="completed"), ADMIN, NOW)


class TestAnalytics:
    async def test_subscription_analytics(self, db, customer, plan, active):
        await make_plan(db, milk_type="buffalo")
        await SubscriptionService(db).subscribe(customer, subscription_request(plan.id), NOW)
        await db.execute(update(UserSubscription).values(created_at=NOW))
        await db.commit()

        analytics = await SubscriptionService(db).get_analytics(NOW, days=30)

        assert analytics["total_subscriptions"] == 2
        assert analytics["active_subscriptions"] == 1
        assert analytics["total_revenue"] == Decimal("1800.00")
        assert analytics["cow_milk_subscriptions"] == 2
        assert analytics["buffalo_milk_subscriptions"] == 0

    async def test_refund_analytics(self, db, customer, active):
        service = SubscriptionService(db)
        later = ist(2026, 3, 20, 10, 0)
        _, refund = await service.cancel(customer, active.id, cancel_request(), later)
        for step in ("approved", "processed"):
            await service.update_refund_status(refund.id, RefundStatusUpdate(status=step), ADMIN, later)
        await db.execute(update(RefundRequest).values(created_at=later))
        await db.commit()

        analytics = await service.get_refund_analytics(later, days=30)

        assert analytics["total_refunds"] == 1
        assert analytics["refunded_amount"] == Decimal("1200.00")
        assert analytics["average_refund"] == Decimal("1200.00")
        assert analytics["by_status"] == [
            {"status": "processed", "count": 1, "total_amount": Decimal("1200.00")}
        ]


async def test_verify_writes_payment_row(db, customer, active):
    payment = (await PaymentService(db).list_user_payments(customer))[0][0]

    assert payment.user_subscription_id == active.id
    assert (await reload(db, Payment, payment.id)).verification_status == "verified"
