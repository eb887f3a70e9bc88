"""Delivery person app: registration, login, today's route and proof of delivery."""
from datetime import date
from typing import Optional
from math import ceil
import uuid

from fastapi import APIRouter, BackgroundTasks, Query, status

from milkcart.api.deps import DB, CurrentDeliveryBoy, Now
from milkcart.api.v1.endpoints.assignments import build_work_queue_response
from milkcart.api.v1.endpoints.orders import queue_order_status_email
from milkcart.config import settings
from milkcart.schemas.delivery import (
    DeliveryBoyLogin,
    DeliveryBoyLoginResponse,
    DeliveryBoyRegister,
    DeliveryBoyResponse,
    WorkQueueResponse,
)
from milkcart.schemas.order import OrderDeliverRequest, OrderListResponse, OrderResponse
from milkcart.services.assignment_service import AssignmentService
from milkcart.services.delivery_boy_service import DeliveryBoyService
from milkcart.services.order_service import OrderService

router = APIRouter(prefix="/delivery", tags=["Delivery"])


@router.post("/register", response_model=DeliveryBoyResponse, status_code=status.HTTP_201_CREATED)
async def register(data: DeliveryBoyRegister, db: DB):
    """Self registration. The account stays pending until an admin approves it."""
    return await DeliveryBoyService(db).register(data)


@router.post("/login", response_model=DeliveryBoyLoginResponse)
async def login(data: DeliveryBoyLogin, db: DB, now: Now):
    delivery_boy, token = await DeliveryBoyService(db).login(data.identifier, data.password, now)
    return DeliveryBoyLoginResponse(
        access_token=token,
        expires_in=settings.DELIVERY_BOY_TOKEN_EXPIRE_MINUTES * 60,
        delivery_boy=DeliveryBoyResponse.model_validate(delivery_boy),
    )


@router.get("/me", response_model=DeliveryBoyResponse)
async def get_me(delivery_boy: CurrentDeliveryBoy):
    return delivery_boy


@router.get("/orders", response_model=WorkQueueResponse)
async def get_my_orders(
    db: DB,
    delivery_boy: CurrentDeliveryBoy,
    status_filter: Optional[str] = Query(None, alias="status"),
    delivery_date: Optional[date] = None,
):
    """Open orders grouped by customer in route order."""
    groups = await AssignmentService(db).get_work_queue(
        delivery_boy.id, status=status_filter, delivery_date=delivery_date
    )
    return build_work_queue_response(delivery_boy.id, groups)


@router.post("/orders/{order_id}/deliver", response_model=OrderResponse)
async def mark_delivered(
    order_id: uuid.UUID,
    db: DB,
    now: Now,
    delivery_boy: CurrentDeliveryBoy,
    background_tasks: BackgroundTasks,
    data: Optional[OrderDeliverRequest] = None,
):
    order = await OrderService(db).mark_delivered(
        delivery_boy, order_id, data or OrderDeliverRequest(), now
    )
    queue_order_status_email(background_tasks, order)
    return order


@router.get("/history", response_model=OrderListResponse)
async def get_delivery_history(
    db: DB,
    delivery_boy: CurrentDeliveryBoy,
    page: int = Query(1, ge=1),
    size: int = Query(20, ge=1, le=100),
):
    orders, total = await OrderService(db).get_delivery_history(
        delivery_boy, skip=(page - 1) * size, limit=size
    )
    return OrderListResponse(
        items=[OrderResponse.model_validate(o) for o in orders],
        total=total,
        page=page,
        size=size,
        pages=ceil(total / size) if total > 0 else 1,
    )
