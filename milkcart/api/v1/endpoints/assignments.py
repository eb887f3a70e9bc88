"""
Delivery assignment endpoints (admin).

Customers are mapped to delivery persons here; open orders follow the
mapping automatically.
"""
from datetime import date
from typing import List, Optional
from math import ceil
import uuid

from fastapi import APIRouter, Query, status

from milkcart.api.deps import DB, CurrentAdmin
from milkcart.models.assignment import UserDeliveryAssignment
from milkcart.schemas.assignment import (
    AssignmentListResponse,
    AssignmentResponse,
    AssignmentResultResponse,
    AssignUserRequest,
    BulkTransferRequest,
    BulkTransferResponse,
    OrderSequenceRequest,
    ReassignUserRequest,
    SequenceUpdateResponse,
    UnassignedUserListResponse,
    UnassignedUserResponse,
    UserSequenceRequest,
)
from milkcart.schemas.base import MessageResponse
from milkcart.schemas.delivery import WorkQueueGroup, WorkQueueResponse
from milkcart.schemas.order import CustomerBrief, OrderResponse
from milkcart.services.assignment_service import AssignmentService, UserOrderGroup

router = APIRouter(prefix="/admin/assignments", tags=["Delivery Assignments"])


def _build_assignment_response(assignment: UserDeliveryAssignment, open_orders: int = 0) -> AssignmentResponse:
    response = AssignmentResponse.model_validate(assignment)
    response.open_orders = open_orders
    return response


async def _build_assignment_list(
    service: AssignmentService,
    assignments: List[UserDeliveryAssignment],
) -> List[AssignmentResponse]:
    counts = await service.count_open_orders([a.user_id for a in assignments])
    return [_build_assignment_response(a, counts.get(a.user_id, 0)) for a in assignments]


def build_work_queue_response(delivery_boy_id: uuid.UUID, groups: List[UserOrderGroup]) -> WorkQueueResponse:
    return WorkQueueResponse(
        delivery_boy_id=delivery_boy_id,
        total_users=len(groups),
        total_orders=sum(len(group.orders) for group in groups),
        groups=[
            WorkQueueGroup(
                user=CustomerBrief.model_validate(group.user),
                assignment_id=group.assignment.id if group.assignment else None,
                sequence=group.assignment.sequence if group.assignment else None,
                orders=[OrderResponse.model_validate(o) for o in group.orders],
            )
            for group in groups
        ],
    )


# ==================== ASSIGN / REMOVE ====================

@router.post("", response_model=AssignmentResultResponse, status_code=status.HTTP_201_CREATED)
async def assign_user(data: AssignUserRequest, db: DB, admin: CurrentAdmin):
    result = await AssignmentService(db).assign_user(
        data.user_id,
        data.delivery_boy_id,
        admin,
        shifts=[shift.value for shift in data.shifts],
        areas=data.areas,
        notes=data.notes,
    )
    return AssignmentResultResponse(
        assignment=_build_assignment_response(result.assignment),
        orders_updated=result.orders_updated,
        message=f"User assigned successfully. {result.orders_updated} open orders assigned.",
    )


@router.get("", response_model=AssignmentListResponse)
async def list_assignments(
    db: DB,
    admin: CurrentAdmin,
    is_active: Optional[bool] = True,
    delivery_boy_id: Optional[uuid.UUID] = None,
    search: Optional[str] = None,
    page: int = Query(1, ge=1),
    size: int = Query(20, ge=1, le=100),
):
    service = AssignmentService(db)
    assignments, total = await service.list_assignments(
        is_active=is_active,
        delivery_boy_id=delivery_boy_id,
        search=search,
        page=page,
        size=size,
    )
    return AssignmentListResponse(
        items=await _build_assignment_list(service, assignments),
        total=total,
        page=page,
        size=size,
        pages=ceil(total / size) if total > 0 else 1,
    )


@router.delete("/{assignment_id}", response_model=MessageResponse)
async def remove_assignment(assignment_id: uuid.UUID, db: DB, admin: CurrentAdmin):
    orders_updated = await AssignmentService(db).remove_assignment(assignment_id)
    return MessageResponse(
        message=f"Assignment removed. {orders_updated} open orders returned to the unassigned pool."
    )


@router.get("/unassigned-users", response_model=UnassignedUserListResponse)
async def list_unassigned_users(
    db: DB,
    admin: CurrentAdmin,
    search: Optional[str] = None,
    has_orders: bool = False,
    page: int = Query(1, ge=1),
    size: int = Query(20, ge=1, le=100),
):
    service = AssignmentService(db)
    users, total = await service.list_unassigned_users(
        search=search, has_orders=has_orders, page=page, size=size
    )
    counts = await service.count_open_orders([u.id for u in users])

    items = []
    for user in users:
        item = UnassignedUserResponse.model_validate(user)
        item.open_orders = counts.get(user.id, 0)
        items.append(item)

    return UnassignedUserListResponse(
        items=items,
        total=total,
        page=page,
        size=size,
        pages=ceil(total / size) if total > 0 else 1,
    )


# ==================== REASSIGN / TRANSFER ====================

@router.put("/users/{user_id}/reassign", response_model=AssignmentResultResponse)
async def reassign_user(user_id: uuid.UUID, data: ReassignUserRequest, db: DB, admin: CurrentAdmin):
    """
    Move a customer to another delivery person.

    ``entire`` moves the customer and all open orders; ``date_range`` moves
    only open orders created between start_date and end_date.
    """
    result = await AssignmentService(db).reassign_user(
        user_id,
        data.new_delivery_boy_id,
        admin,
        data.reassignment_type,
        date_from=data.start_date,
        date_to=data.end_date,
        notes=data.notes,
    )
    return AssignmentResultResponse(
        assignment=_build_assignment_response(result.assignment),
        orders_updated=result.orders_updated,
        message=f"User reassigned successfully. {result.orders_updated} orders moved.",
    )


@router.get("/users/{user_id}/history", response_model=List[AssignmentResponse])
async def get_user_assignment_history(user_id: uuid.UUID, db: DB, admin: CurrentAdmin):
    history = await AssignmentService(db).get_user_assignment_history(user_id)
    return [_build_assignment_response(a) for a in history]


@router.post("/transfer", response_model=BulkTransferResponse)
async def bulk_transfer(data: BulkTransferRequest, db: DB, admin: CurrentAdmin):
    users, orders = await AssignmentService(db).bulk_transfer(
        data.from_delivery_boy_id,
        data.to_delivery_boy_id,
        admin,
        notes=data.notes,
    )
    return BulkTransferResponse(
        users_transferred=users,
        orders_updated=orders,
        message=f"Transferred {users} users and {orders} orders.",
    )


# ==================== ROUTES ====================

@router.get("/delivery-boys/{delivery_boy_id}/users", response_model=List[AssignmentResponse])
async def get_delivery_boy_users(delivery_boy_id: uuid.UUID, db: DB, admin: CurrentAdmin):
    service = AssignmentService(db)
    return await _build_assignment_list(service, await service.get_delivery_boy_users(delivery_boy_id))


@router.put("/delivery-boys/{delivery_boy_id}/user-sequence", response_model=SequenceUpdateResponse)
async def update_user_sequence(
    delivery_boy_id: uuid.UUID,
    data: UserSequenceRequest,
    db: DB,
    admin: CurrentAdmin,
):
    updated = await AssignmentService(db).update_user_sequence(delivery_boy_id, data.assignment_ids)
    return SequenceUpdateResponse(updated=updated, message=f"Route order updated for {updated} users")


@router.get("/delivery-boys/{delivery_boy_id}/work-queue", response_model=WorkQueueResponse)
async def get_work_queue(
    delivery_boy_id: uuid.UUID,
    db: DB,
    admin: CurrentAdmin,
    status_filter: Optional[str] = Query(None, alias="status"),
    delivery_date: Optional[date] = None,
):
    groups = await AssignmentService(db).get_work_queue(
        delivery_boy_id, status=status_filter, delivery_date=delivery_date
    )
    return build_work_queue_response(delivery_boy_id, groups)


@router.put("/delivery-boys/{delivery_boy_id}/order-sequence", response_model=SequenceUpdateResponse)
async def update_order_sequence(
    delivery_boy_id: uuid.UUID,
    data: OrderSequenceRequest,
    db: DB,
    admin: CurrentAdmin,
):
    updated = await AssignmentService(db).update_order_sequence(
        delivery_boy_id, data.order_ids, user_id=data.user_id
    )
    return SequenceUpdateResponse(updated=updated, message=f"Delivery order updated for {updated} orders")
