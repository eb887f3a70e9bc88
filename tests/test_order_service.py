from decimal import Decimal

import pytest

from milkcart.core.exceptions import (
    BusinessRuleError,
    InsufficientStockError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from milkcart.models import DeliveryBoy, Order, Product, User, UserRole
from milkcart.models.assignment import ActorRef
from milkcart.schemas.order import OrderDeliverRequest, OrderItemCreate, OrderStatusUpdate
from milkcart.services.cart_service import CartService
from milkcart.services.order_service import OrderService
from milkcart.services.stock_service import StockService
from tests.factories import (
    NOW,
    TOMORROW,
    ist,
    make_delivery_boy,
    make_product,
    make_user,
    order_request,
    reload,
)

ADMIN = ActorRef.system_admin()
DELIVERY_TIME = ist(2026, 3, 11, 7, 0)


async def confirm(service: OrderService, order: Order) -> Order:
    return await service.update_order_status(order.id, OrderStatusUpdate(status="confirmed"), ADMIN, NOW)


async def stock_of(db, product: Product) -> int:
    return (await reload(db, Product, product.id)).stock


class TestCreateOrder:
    async def test_prices_frozen_and_stock_untouched(self, db):
        user = await make_user(db)
        product = await make_product(db)

        order = await OrderService(db).create_order(user, order_request(product.id), NOW)

        assert order.status == "pending"
        assert order.payment_status == "pending"
        assert order.priority == "normal"
        assert order.order_number.startswith("ORD-")
        assert order.subtotal == Decimal("120.00")
        assert order.shipping_fee == Decimal("50.00")
        assert order.total_amount == Decimal("170.00")
        assert order.items[0].product_name == "Toned Milk"
        assert order.items[0].unit_price == Decimal("60.00")
        assert await stock_of(db, product) == 5

    async def test_admin_orders_are_urgent(self, db):
        admin = await make_user(db, email="ops@milkcart.in", role=UserRole.ADMIN.value)
        product = await make_product(db)

        order = await OrderService(db).create_order(admin, order_request(product.id), NOW)

        assert order.priority == "urgent"

    async def test_quantity_above_stock_rejected(self, db):
        user = await make_user(db)
        product = await make_product(db, stock=1)

        with pytest.raises(InsufficientStockError) as exc_info:
            await OrderService(db).create_order(user, order_request(product.id, quantity=2), NOW)

        assert exc_info.value.details == {"product": "Toned Milk", "available": 1, "required": 2}

    async def test_duplicate_lines_are_merged_for_stock_check(self, db):
        user = await make_user(db)
        product = await make_product(db, stock=3)
        request = order_request(product.id, quantity=2)
        request.items.append(OrderItemCreate(product_id=product.id, quantity=2))

        with pytest.raises(InsufficientStockError):
            await OrderService(db).create_order(user, request, NOW)

    async def test_order_number_collision_is_retried(self, db, monkeypatch):
        user = await make_user(db)
        product = await make_product(db, stock=10)
        cart = CartService(db)
        numbers = iter(["ORD-1-001", "ORD-1-001", "ORD-1-002"])
        monkeypatch.setattr(OrderService, "generate_order_number", staticmethod(lambda: next(numbers)))
        service = OrderService(db)
        await service.create_order(user, order_request(product.id), NOW)
        await cart.add_item(user, product.id, 1)
        user_id = user.id

        second = await service.create_order(user, order_request(product.id, clear_cart=True), NOW)

        assert second.order_number == "ORD-1-002"
        assert second.total_amount == Decimal("170.00")
        assert [item.quantity for item in second.items] == [2]
        assert (await cart.get_cart(await reload(db, User, user_id))).items == []

    async def test_evening_slot_rejected(self, db):
        user = await make_user(db)
        product = await make_product(db)

        with pytest.raises(ValidationError, match="Evening delivery"):
            await OrderService(db).create_order(user, order_request(product.id, shift="evening"), NOW)

    async def test_same_day_rejected(self, db):
        user = await make_user(db)
        product = await make_product(db)

        with pytest.raises(ValidationError, match="Same day"):
            await OrderService(db).create_order(user, order_request(product.id, delivery_date=NOW.date()), NOW)

    async def test_inactive_product_rejected(self, db):
        user = await make_user(db)
        product = await make_product(db)
        product.status = "inactive"
        await db.commit()

        with pytest.raises(BusinessRuleError, match="not available"):
            await OrderService(db).create_order(user, order_request(product.id), NOW)


class TestStockMovements:
    async def test_confirm_takes_stock_once(self, db):
        user = await make_user(db)
        product = await make_product(db)
        service = OrderService(db)
        order = await service.create_order(user, order_request(product.id), NOW)

        confirmed = await confirm(service, order)
        assert confirmed.status == "confirmed"
        assert confirmed.confirmed_at is not None
        assert await stock_of(db, product) == 3

        await confirm(service, order)
        assert await stock_of(db, product) == 3

    async def test_cancel_confirmed_restores_stock(self, db):
        user = await make_user(db)
        product = await make_product(db)
        service = OrderService(db)
        order = await service.create_order(user, order_request(product.id), NOW)
        await confirm(service, order)

        cancelled = await service.update_order_status(
            order.id, OrderStatusUpdate(status="cancelled", cancellation_reason="Out of route"), ADMIN, NOW
        )

        assert cancelled.status == "cancelled"
        assert cancelled.cancelled_by == "admin"
        assert cancelled.cancellation_reason == "Out of route"
        assert await stock_of(db, product) == 5

    async def test_cancel_pending_leaves_stock(self, db):
        user = await make_user(db)
        product = await make_product(db)
        service = OrderService(db)
        order = await service.create_order(user, order_request(product.id), NOW)

        await service.cancel_order_by_user(user, order.id, None, NOW)

        assert (await reload(db, Order, order.id)).cancelled_by == "user"
        assert await stock_of(db, product) == 5

    async def test_confirm_takes_all_lines_or_none(self, db):
        user = await make_user(db)
        milk = await make_product(db)
        curd = await make_product(db, name="Curd", price="40.00", stock=5)
        request = order_request(milk.id, quantity=2)
        request.items.append(OrderItemCreate(product_id=curd.id, quantity=3))
        service = OrderService(db)
        order = await service.create_order(user, request, NOW)
        await StockService(db).set_stock(curd.id, 1)
        await db.commit()
        # The failed confirmation rolls the session back and expires every instance
        milk_id, curd_id, order_id = milk.id, curd.id, order.id

        with pytest.raises(InsufficientStockError):
            await confirm(service, order)

        assert (await reload(db, Product, milk_id)).stock == 5
        assert (await reload(db, Product, curd_id)).stock == 1
        assert (await reload(db, Order, order_id)).status == "pending"

    async def test_last_unit_marks_product_out_of_stock(self, db):
        user = await make_user(db)
        product = await make_product(db, stock=2)
        service = OrderService(db)
        order = await service.create_order(user, order_request(product.id), NOW)

        await confirm(service, order)

        product = await reload(db, Product, product.id)
        assert product.stock == 0
        assert product.status == "out_of_stock"

    async def test_restock_reactivates_sold_out_product(self, db):
        user = await make_user(db)
        product = await make_product(db, stock=2)
        service = OrderService(db)
        order = await service.create_order(user, order_request(product.id), NOW)
        await confirm(service, order)

        await service.update_order_status(order.id, OrderStatusUpdate(status="cancelled"), ADMIN, NOW)

        product = await reload(db, Product, product.id)
        assert product.stock == 2
        assert product.status == "active"

    async def test_negative_stock_rejected(self, db):
        product = await make_product(db)

        with pytest.raises(ValidationError, match="negative"):
            await StockService(db).set_stock(product.id, -1)

    async def test_total_follows_discount_on_update(self, db):
        user = await make_user(db)
        product = await make_product(db)
        order = await OrderService(db).create_order(user, order_request(product.id), NOW)

        order.discount = Decimal("20.00")
        await db.commit()

        assert (await reload(db, Order, order.id)).total_amount == Decimal("150.00")

    async def test_terminal_order_rejects_status_change(self, db):
        user = await make_user(db)
        product = await make_product(db)
        service = OrderService(db)
        order = await service.create_order(user, order_request(product.id), NOW)
        await service.cancel_order_by_user(user, order.id, "Travelling", NOW)

        with pytest.raises(BusinessRuleError, match="terminal"):
            await confirm(service, order)

    async def test_terminal_order_accepts_payment_status(self, db):
        user = await make_user(db)
        product = await make_product(db)
        service = OrderService(db)
        order = await service.create_order(user, order_request(product.id), NOW)
        await service.cancel_order_by_user(user, order.id, None, NOW)

        updated = await service.update_order_status(
            order.id, OrderStatusUpdate(payment_status="refunded"), ADMIN, NOW
        )

        assert updated.status == "cancelled"
        assert updated.payment_status == "refunded"


class TestCustomerCancellation:
    async def test_after_cutoff_rejected(self, db):
        user = await make_user(db)
        product = await make_product(db)
        service = OrderService(db)
        order = await service.create_order(user, order_request(product.id), NOW)

        with pytest.raises(BusinessRuleError, match="20:00"):
            await service.cancel_order_by_user(user, order.id, None, ist(2026, 3, 10, 20, 30))

    async def test_other_customers_order_not_found(self, db):
        owner = await make_user(db)
        stranger = await make_user(db, email="stranger@milkcart.in")
        product = await make_product(db)
        service = OrderService(db)
        order = await service.create_order(owner, order_request(product.id), NOW)

        with pytest.raises(NotFoundError):
            await service.cancel_order_by_user(stranger, order.id, None, NOW)


class TestDelivery:
    async def _confirmed_assigned_order(self, db):
        user = await make_user(db)
        product = await make_product(db)
        delivery_boy = await make_delivery_boy(db)
        service = OrderService(db)
        order = await service.create_order(user, order_request(product.id), NOW)
        await confirm(service, order)
        await service.assign_order_to_delivery_boy(order.id, delivery_boy.id, NOW)
        return service, order, delivery_boy

    async def test_mark_delivered_inside_window(self, db):
        service, order, delivery_boy = await self._confirmed_assigned_order(db)

        delivered = await service.mark_delivered(
            delivery_boy, order.id, OrderDeliverRequest(notes="Left at door"), DELIVERY_TIME
        )

        assert delivered.status == "delivered"
        assert delivered.delivery_notes == "Left at door"
        assert delivered.delivered_at is not None
        assert (await reload(db, DeliveryBoy, delivery_boy.id)).total_deliveries == 1

    async def test_mark_delivered_outside_window(self, db):
        service, order, delivery_boy = await self._confirmed_assigned_order(db)

        with pytest.raises(BusinessRuleError, match="between 05:00 and 11:00"):
            await service.mark_delivered(delivery_boy, order.id, OrderDeliverRequest(), ist(2026, 3, 11, 12, 0))

    async def test_someone_elses_order(self, db):
        service, order, _ = await self._confirmed_assigned_order(db)
        other = await make_delivery_boy(db, email="suresh@milkcart.in", phone="9123456781", name="Suresh")

        with pytest.raises(PermissionDeniedError):
            await service.mark_delivered(other, order.id, OrderDeliverRequest(), DELIVERY_TIME)

    async def test_cannot_assign_to_unapproved_delivery_boy(self, db):
        user = await make_user(db)
        product = await make_product(db)
        pending = await make_delivery_boy(db, status="pending")
        service = OrderService(db)
        order = await service.create_order(user, order_request(product.id), NOW)

        with pytest.raises(BusinessRuleError, match="not active or not approved"):
            await service.assign_order_to_delivery_boy(order.id, pending.id, NOW)

    async def test_cannot_assign_outside_delivery_boys_shift(self, db):
        user = await make_user(db)
        product = await make_product(db)
        evening_only = await make_delivery_boy(db, shift="evening")
        service = OrderService(db)
        order = await service.create_order(user, order_request(product.id), NOW)

        with pytest.raises(BusinessRuleError, match="morning shift"):
            await service.assign_order_to_delivery_boy(order.id, evening_only.id, NOW)


async def test_delivery_date_recorded(db):
    user = await make_user(db)
    product = await make_product(db)

    order = await OrderService(db).create_order(user, order_request(product.id), NOW)

    assert order.delivery_date == TOMORROW
    assert order.delivery_shift == "morning"
