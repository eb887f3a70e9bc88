"""Customer order endpoints: delivery slots, checkout, history and cancellation."""
from typing import Optional
from math import ceil
import uuid
import logging

from fastapi import APIRouter, BackgroundTasks, Query, status

from milkcart.api.deps import DB, CurrentUser, Now
from milkcart.config import settings
from milkcart.core.timeutils import to_local
from milkcart.models.order import Order
from milkcart.schemas.order import (
    DeliverySlotResponse,
    DeliverySlotsResponse,
    OrderCancelRequest,
    OrderCreate,
    OrderListResponse,
    OrderResponse,
    ShiftAvailabilityResponse,
)
from milkcart.services import delivery_scheduling
from milkcart.services.email_service import get_email_service
from milkcart.services.order_service import OrderService

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/orders", tags=["Orders"])


def queue_order_placed_email(background_tasks: BackgroundTasks, order: Order) -> None:
    background_tasks.add_task(
        get_email_service().send_order_placed_email,
        order.user.email,
        order.order_number,
        order.user.name,
        order.total_amount,
        [
            {
                "product_name": item.product_name,
                "quantity": item.quantity,
                "line_total": item.line_total,
            }
            for item in order.items
        ],
        order.delivery_date.strftime("%d %b %Y"),
        order.delivery_shift,
        delivery_scheduling.get_delivery_time_slot(order.delivery_shift),
    )


def queue_order_status_email(background_tasks: BackgroundTasks, order: Order) -> None:
    background_tasks.add_task(
        get_email_service().send_order_status_email,
        order.user.email,
        order.order_number,
        order.user.name,
        order.status,
        order.cancellation_reason,
    )


# ==================== DELIVERY SLOTS ====================

@router.get("/delivery-slots", response_model=DeliverySlotsResponse)
async def get_delivery_slots(now: Now, days: Optional[int] = Query(None, ge=1, le=settings.ORDER_BOOKING_DAYS)):
    """Bookable days from tomorrow with per-shift availability."""
    slots = delivery_scheduling.get_available_slots(now, days)
    return DeliverySlotsResponse(
        current_local_time=to_local(now),
        timezone=settings.TIMEZONE,
        slots=[
            DeliverySlotResponse(
                date=slot.date,
                is_tomorrow=slot.is_tomorrow,
                morning_available=slot.morning_available,
                morning_cutoff_passed=slot.morning_cutoff_passed,
                morning_reason=slot.morning_reason,
                evening_available=slot.evening_available,
                evening_reason=slot.evening_reason,
                morning_time_slot=delivery_scheduling.get_delivery_time_slot("morning"),
                evening_time_slot=delivery_scheduling.get_delivery_time_slot("evening"),
            )
            for slot in slots
        ],
    )


@router.get("/shift-availability", response_model=ShiftAvailabilityResponse)
async def get_shift_availability(now: Now):
    availability = delivery_scheduling.get_shift_availability(now)
    return ShiftAvailabilityResponse(
        current_local_time=availability.current_local_time,
        morning_available=availability.morning_available,
        evening_available=availability.evening_available,
        next_available_date=availability.next_available_date,
        messages=availability.messages,
    )


# ==================== ORDERS ====================

@router.post("", response_model=OrderResponse, status_code=status.HTTP_201_CREATED)
async def create_order(
    data: OrderCreate,
    db: DB,
    now: Now,
    current_user: CurrentUser,
    background_tasks: BackgroundTasks,
):
    """
    Place an order for a delivery slot.

    Stock is only checked here; it is taken when an admin confirms.
    """
    order = await OrderService(db).create_order(current_user, data, now)
    queue_order_placed_email(background_tasks, order)
    return order


@router.get("", response_model=OrderListResponse)
async def list_my_orders(
    db: DB,
    current_user: CurrentUser,
    status_filter: Optional[str] = Query(None, alias="status"),
    page: int = Query(1, ge=1),
    size: int = Query(20, ge=1, le=100),
):
    orders, total = await OrderService(db).get_orders(
        user_id=current_user.id,
        status=status_filter,
        skip=(page - 1) * size,
        limit=size,
    )
    return OrderListResponse(
        items=[OrderResponse.model_validate(o) for o in orders],
        total=total,
        page=page,
        size=size,
        pages=ceil(total / size) if total > 0 else 1,
    )


@router.get("/{order_id}", response_model=OrderResponse)
async def get_my_order(order_id: uuid.UUID, db: DB, current_user: CurrentUser):
    return await OrderService(db).get_user_order(current_user, order_id)


@router.post("/{order_id}/cancel", response_model=OrderResponse)
async def cancel_my_order(
    order_id: uuid.UUID,
    db: DB,
    now: Now,
    current_user: CurrentUser,
    background_tasks: BackgroundTasks,
    data: Optional[OrderCancelRequest] = None,
):
    order = await OrderService(db).cancel_order_by_user(
        current_user, order_id, data.reason if data else None, now
    )
    queue_order_status_email(background_tasks, order)
    return order
