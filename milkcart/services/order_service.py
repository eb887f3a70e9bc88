from typing import List, Optional, Tuple
from datetime import datetime, date
from decimal import Decimal
import random
import time
import uuid
import logging

from sqlalchemy import select, update, delete, func, and_
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.exc import IntegrityError

from milkcart.config import settings
from milkcart.core.exceptions import (
    BusinessRuleError,
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
    InsufficientStockError,
)
from milkcart.models.assignment import ActorRef
from milkcart.models.cart import Cart, CartItem
from milkcart.models.delivery_boy import DeliveryBoy
from milkcart.models.order import (
    Order,
    OrderItem,
    OrderStatus,
    OrderPriority,
    CancelledBy,
    OPEN_ORDER_STATUSES,
)
from milkcart.models.product import Product, ProductStatus
from milkcart.models.user import User
from milkcart.schemas.order import OrderCreate, OrderStatusUpdate, OrderDeliverRequest
from milkcart.services import delivery_scheduling
from milkcart.services import order_state_machine
from milkcart.services.assignment_service import AssignmentService
from milkcart.services.stock_service import StockService

logger = logging.getLogger(__name__)


ORDER_NUMBER_ATTEMPTS = 3


class OrderService:
    """Service for placing orders and driving them through their lifecycle."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.stock = StockService(db)
        self.assignments = AssignmentService(db)

    # ==================== ORDER NUMBER GENERATION ====================

    @staticmethod
    def generate_order_number() -> str:
        """Generate order number: ORD-<epoch millis>-<3 random digits>"""
        return f"ORD-{int(time.time() * 1000)}-{random.randint(0, 999):03d}"

    # ==================== QUERIES ====================

    async def get_order_by_id(self, order_id: uuid.UUID) -> Optional[Order]:
        """Get order by ID, always reloaded from the database."""
        stmt = (
            select(Order)
            .where(Order.id == order_id)
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(stmt)
        return result.unique().scalar_one_or_none()

    async def get_user_order(self, user: User, order_id: uuid.UUID) -> Order:
        order = await self.get_order_by_id(order_id)
        if not order or order.user_id != user.id:
            raise NotFoundError("Order not found")
        return order

    async def get_orders(
        self,
        user_id: Optional[uuid.UUID] = None,
        status: Optional[str] = None,
        payment_status: Optional[str] = None,
        delivery_date: Optional[date] = None,
        delivery_shift: Optional[str] = None,
        delivery_boy_id: Optional[uuid.UUID] = None,
        unassigned: bool = False,
        search: Optional[str] = None,
        skip: int = 0,
        limit: int = 20,
    ) -> Tuple[List[Order], int]:
        """Get paginated orders with filters, newest first."""
        filters = []

        if user_id:
            filters.append(Order.user_id == user_id)
        if status:
            filters.append(Order.status == status)
        if payment_status:
            filters.append(Order.payment_status == payment_status)
        if delivery_date:
            filters.append(Order.delivery_date == delivery_date)
        if delivery_shift:
            filters.append(Order.delivery_shift == delivery_shift)
        if delivery_boy_id:
            filters.append(Order.delivery_boy_id == delivery_boy_id)
        if unassigned:
            filters.append(Order.delivery_boy_id.is_(None))
        if search:
            filters.append(Order.order_number.ilike(f"%{search.strip()}%"))

        count_stmt = select(func.count(Order.id))
        stmt = select(Order)
        if filters:
            count_stmt = count_stmt.where(and_(*filters))
            stmt = stmt.where(and_(*filters))

        total = (await self.db.execute(count_stmt)).scalar() or 0

        stmt = stmt.order_by(Order.created_at.desc()).offset(skip).limit(limit)
        result = await self.db.execute(stmt)
        return list(result.unique().scalars().all()), total

    async def get_delivery_history(
        self,
        delivery_boy: DeliveryBoy,
        skip: int = 0,
        limit: int = 20,
    ) -> Tuple[List[Order], int]:
        """Orders this delivery person has completed, latest first."""
        filters = [
            Order.delivery_boy_id == delivery_boy.id,
            Order.status == OrderStatus.DELIVERED.value,
        ]
        total = (await self.db.execute(select(func.count(Order.id)).where(*filters))).scalar() or 0
        stmt = (
            select(Order)
            .where(*filters)
            .order_by(Order.delivered_at.desc())
            .offset(skip)
            .limit(limit)
        )
        result = await self.db.execute(stmt)
        return list(result.unique().scalars().all()), total

    # ==================== CREATE ====================

    async def create_order(self, user: User, data: OrderCreate, now: datetime) -> Order:
        """
        Place an order for a delivery slot.

        Stock is checked but not taken; it is only decremented when an admin
        confirms the order. Prices are frozen from the catalogue at this
        point and never recalculated.
        """
        slot = delivery_scheduling.validate_slot(data.delivery_date, data.delivery_shift, now)
        if not slot.valid:
            raise ValidationError(slot.reason)

        # Merge duplicate lines so the stock check sees the full quantity
        quantities: dict = {}
        for item in data.items:
            quantities[item.product_id] = quantities.get(item.product_id, 0) + item.quantity

        result = await self.db.execute(select(Product).where(Product.id.in_(list(quantities))))
        products = {product.id: product for product in result.scalars().all()}

        order_items = []
        subtotal = Decimal("0")
        for product_id, quantity in quantities.items():
            product = products.get(product_id)
            if product is None:
                raise NotFoundError(f"Product {product_id} not found")
            if product.status == ProductStatus.INACTIVE.value:
                raise BusinessRuleError(f"{product.name} is not available")
            if product.stock < quantity:
                raise InsufficientStockError(product.name, product.stock, quantity)

            unit_price = product.effective_price
            line_total = unit_price * quantity
            subtotal += line_total
            order_items.append(
                OrderItem(
                    product_id=product.id,
                    product_name=product.name,
                    unit_price=unit_price,
                    quantity=quantity,
                    line_total=line_total,
                    image_url=product.image_url,
                )
            )

        address = data.shipping_address
        order = Order(
            user_id=user.id,
            status=OrderStatus.PENDING.value,
            payment_method=data.payment_method.value,
            priority=OrderPriority.URGENT.value if user.is_admin else OrderPriority.NORMAL.value,
            subtotal=subtotal,
            shipping_fee=settings.SHIPPING_FEE,
            tax=Decimal("0"),
            discount=Decimal("0"),
            shipping_name=address.name,
            shipping_phone=address.phone,
            shipping_street=address.street,
            shipping_city=address.city,
            shipping_state=address.state,
            shipping_pincode=address.pincode,
            delivery_date=data.delivery_date,
            delivery_shift=data.delivery_shift,
            customer_notes=data.notes,
            items=order_items,
        )
        order.recalculate_totals()

        await self.assignments.propagate_assignment_to_order(order, now)

        # A rollback on collision expires `user`; only plain values are read after it
        user_id, user_email = user.id, user.email
        for attempt in range(1, ORDER_NUMBER_ATTEMPTS + 1):
            order.order_number = self.generate_order_number()
            self.db.add(order)
            try:
                if data.clear_cart:
                    await self._clear_cart(user_id)
                await self.db.commit()
                break
            except IntegrityError as e:
                await self.db.rollback()
                logger.warning(f"Order number collision on attempt {attempt}: {e}")
        else:
            raise ConflictError("Could not allocate an order number, please retry")

        logger.info(
            f"Order {order.order_number} placed by {user_email} for "
            f"{order.delivery_date} {order.delivery_shift}, total {order.total_amount}"
        )
        return await self.get_order_by_id(order.id)

    async def _clear_cart(self, user_id: uuid.UUID) -> None:
        await self.db.execute(
            delete(CartItem).where(
                CartItem.cart_id.in_(select(Cart.id).where(Cart.user_id == user_id))
            )
        )

    # ==================== STATUS TRANSITIONS ====================

    async def _compare_and_set_status(
        self,
        order: Order,
        expected: str,
        new_status: str,
        **values,
    ) -> None:
        """
        Move ``order`` from ``expected`` to ``new_status`` in one conditional
        UPDATE. Losing a race to another request raises ConflictError.
        """
        result = await self.db.execute(
            update(Order)
            .where(Order.id == order.id, Order.status == expected)
            .values(status=new_status, **values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await self.db.rollback()
            raise ConflictError("Order was updated by another request, please reload and retry")

        order.status = new_status
        for key, value in values.items():
            setattr(order, key, value)

    async def _confirm(self, order: Order, now: datetime) -> None:
        """pending -> confirmed: take stock for every line or for none."""
        await self._compare_and_set_status(
            order, OrderStatus.PENDING.value, OrderStatus.CONFIRMED.value, confirmed_at=now
        )
        try:
            await self.stock.reserve_for_order(order)
        except InsufficientStockError:
            await self.db.rollback()
            raise
        await self.assignments.propagate_assignment_to_order(order, now)

    async def _cancel(
        self,
        order: Order,
        cancelled_by: CancelledBy,
        reason: Optional[str],
        now: datetime,
    ) -> None:
        """Cancel an open order; stock goes back only if it was taken."""
        previous = order.status
        await self._compare_and_set_status(
            order,
            previous,
            OrderStatus.CANCELLED.value,
            cancelled_at=now,
            cancelled_by=cancelled_by.value,
            cancellation_reason=reason,
        )
        if previous == OrderStatus.CONFIRMED.value:
            await self.stock.release_for_order(order)

    async def _deliver(self, order: Order, now: datetime, **values) -> None:
        await self._compare_and_set_status(
            order, OrderStatus.CONFIRMED.value, OrderStatus.DELIVERED.value, delivered_at=now, **values
        )
        if order.delivery_boy_id is not None:
            await self.db.execute(
                update(DeliveryBoy)
                .where(DeliveryBoy.id == order.delivery_boy_id)
                .values(total_deliveries=DeliveryBoy.total_deliveries + 1)
                .execution_options(synchronize_session=False)
            )

    async def update_order_status(
        self,
        order_id: uuid.UUID,
        data: OrderStatusUpdate,
        actor: ActorRef,
        now: datetime,
    ) -> Order:
        """
        Admin update of status, payment status and notes.

        Re-sending the current status is a no-op, so a repeated confirmation
        never takes stock twice. Terminal orders only accept notes and
        payment status changes.
        """
        order = await self.get_order_by_id(order_id)
        if not order:
            raise NotFoundError("Order not found")

        old_status = order.status
        new_status = data.status.value if data.status else old_status
        order_state_machine.validate_transition(old_status, new_status)

        if new_status != old_status:
            if new_status == OrderStatus.CONFIRMED.value:
                await self._confirm(order, now)
            elif new_status == OrderStatus.CANCELLED.value:
                await self._cancel(
                    order,
                    CancelledBy.ADMIN,
                    data.cancellation_reason or "Cancelled by admin",
                    now,
                )
            elif new_status == OrderStatus.DELIVERED.value:
                await self._deliver(order, now)

        if data.payment_status is not None:
            order.payment_status = data.payment_status.value
        if data.admin_notes is not None:
            order.admin_notes = data.admin_notes

        await self.db.commit()

        if new_status != old_status:
            logger.info(
                f"Order {order.order_number}: "
                f"{order_state_machine.get_transition_action(old_status, new_status)} "
                f"({old_status} -> {new_status}) by {actor.label}"
            )
        return await self.get_order_by_id(order_id)

    async def cancel_order_by_user(
        self,
        user: User,
        order_id: uuid.UUID,
        reason: Optional[str],
        now: datetime,
    ) -> Order:
        """Customer cancellation, allowed until the shift's cutoff hour."""
        order = await self.get_user_order(user, order_id)

        allowed, message = order_state_machine.can_be_cancelled_by_user(order, now)
        if not allowed:
            raise BusinessRuleError(message)

        await self._cancel(order, CancelledBy.USER, reason or "Cancelled by customer", now)
        await self.db.commit()

        logger.info(f"Order {order.order_number} cancelled by customer {user.email}")
        return await self.get_order_by_id(order_id)

    async def mark_delivered(
        self,
        delivery_boy: DeliveryBoy,
        order_id: uuid.UUID,
        data: OrderDeliverRequest,
        now: datetime,
    ) -> Order:
        """Delivery person closes an order inside the shift's delivery window."""
        order = await self.get_order_by_id(order_id)
        if not order:
            raise NotFoundError("Order not found")
        if order.delivery_boy_id is not None and order.delivery_boy_id != delivery_boy.id:
            raise PermissionDeniedError("Order is not assigned to you")

        allowed, message = order_state_machine.can_be_marked_as_delivered(order, now)
        if not allowed:
            raise BusinessRuleError(message)

        await self._deliver(
            order,
            now,
            delivery_notes=data.notes,
            delivery_latitude=data.latitude,
            delivery_longitude=data.longitude,
        )
        await self.db.commit()

        logger.info(f"Order {order.order_number} delivered by {delivery_boy.name}")
        return await self.get_order_by_id(order_id)

    # ==================== MANUAL DISPATCH ====================

    async def assign_order_to_delivery_boy(
        self,
        order_id: uuid.UUID,
        delivery_boy_id: uuid.UUID,
        now: datetime,
    ) -> Order:
        """Admin hands a single open order to a delivery person."""
        order = await self.get_order_by_id(order_id)
        if not order:
            raise NotFoundError("Order not found")
        if order.status not in OPEN_ORDER_STATUSES:
            raise BusinessRuleError(f"Cannot assign an order in '{order.status}' status")

        delivery_boy = await self.db.get(DeliveryBoy, delivery_boy_id)
        if not delivery_boy:
            raise NotFoundError("Delivery boy not found")
        if not delivery_boy.is_available:
            raise BusinessRuleError("Delivery boy is not active or not approved")
        if not delivery_boy.works_shift(order.delivery_shift):
            raise BusinessRuleError(
                f"{delivery_boy.name} does not work the {order.delivery_shift} shift"
            )

        order.delivery_boy_id = delivery_boy.id
        order.assigned_at = now
        await self.db.commit()

        logger.info(f"Order {order.order_number} assigned to {delivery_boy.name}")
        return await self.get_order_by_id(order_id)
