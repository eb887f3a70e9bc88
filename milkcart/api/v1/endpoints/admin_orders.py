from datetime import date
from typing import Optional
from math import ceil
import uuid

from fastapi import APIRouter, BackgroundTasks, HTTPException, Query, status

from milkcart.api.deps import DB, CurrentAdmin, Now
from milkcart.api.v1.endpoints.orders import queue_order_status_email
from milkcart.schemas.order import (
    AdminOrderListResponse,
    AdminOrderResponse,
    OrderAssignRequest,
    OrderStatusUpdate,
)
from milkcart.services.order_service import OrderService

router = APIRouter(prefix="/admin/orders", tags=["Admin Orders"])


@router.get("", response_model=AdminOrderListResponse)
async def list_orders(
    db: DB,
    admin: CurrentAdmin,
    status_filter: Optional[str] = Query(None, alias="status"),
    payment_status: Optional[str] = None,
    delivery_date: Optional[date] = None,
    delivery_shift: Optional[str] = None,
    delivery_boy_id: Optional[uuid.UUID] = None,
    unassigned: bool = False,
    search: Optional[str] = None,
    page: int = Query(1, ge=1),
    size: int = Query(20, ge=1, le=100),
):
    orders, total = await OrderService(db).get_orders(
        status=status_filter,
        payment_status=payment_status,
        delivery_date=delivery_date,
        delivery_shift=delivery_shift,
        delivery_boy_id=delivery_boy_id,
        unassigned=unassigned,
        search=search,
        skip=(page - 1) * size,
        limit=size,
    )
    return AdminOrderListResponse(
        items=[AdminOrderResponse.model_validate(o) for o in orders],
        total=total,
        page=page,
        size=size,
        pages=ceil(total / size) if total > 0 else 1,
    )


@router.get("/{order_id}", response_model=AdminOrderResponse)
async def get_order(order_id: uuid.UUID, db: DB, admin: CurrentAdmin):
    order = await OrderService(db).get_order_by_id(order_id)
    if not order:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Order not found")
    return order


@router.put("/{order_id}/status", response_model=AdminOrderResponse)
async def update_order_status(
    order_id: uuid.UUID,
    data: OrderStatusUpdate,
    db: DB,
    now: Now,
    admin: CurrentAdmin,
    background_tasks: BackgroundTasks,
):
    """
    Confirm, cancel or deliver an order, or update its payment status and notes.

    Confirmation takes stock; cancelling a confirmed order puts it back.
    """
    service = OrderService(db)
    before = await service.get_order_by_id(order_id)
    previous_status = before.status if before else None

    order = await service.update_order_status(order_id, data, admin, now)
    if order.status != previous_status:
        queue_order_status_email(background_tasks, order)
    return order


@router.put("/{order_id}/assign", response_model=AdminOrderResponse)
async def assign_order(
    order_id: uuid.UUID,
    data: OrderAssignRequest,
    db: DB,
    now: Now,
    admin: CurrentAdmin,
):
    return await OrderService(db).assign_order_to_delivery_boy(order_id, data.delivery_boy_id, now)
