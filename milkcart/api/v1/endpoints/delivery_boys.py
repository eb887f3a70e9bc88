from typing import List, Optional
from math import ceil
import uuid

from fastapi import APIRouter, HTTPException, Query, status

from milkcart.api.deps import DB, CurrentAdmin, Now
from milkcart.schemas.delivery import (
    DeliveryBoyListResponse,
    DeliveryBoyResponse,
    DeliveryBoyStatusReason,
)
from milkcart.services.delivery_boy_service import DeliveryBoyService

router = APIRouter(prefix="/admin/delivery-boys", tags=["Admin Delivery Boys"])


@router.get("", response_model=DeliveryBoyListResponse)
async def list_delivery_boys(
    db: DB,
    admin: CurrentAdmin,
    status_filter: Optional[str] = Query(None, alias="status"),
    shift: Optional[str] = None,
    search: Optional[str] = None,
    page: int = Query(1, ge=1),
    size: int = Query(20, ge=1, le=100),
):
    delivery_boys, total = await DeliveryBoyService(db).list_delivery_boys(
        status=status_filter,
        shift=shift,
        search=search,
        skip=(page - 1) * size,
        limit=size,
    )
    return DeliveryBoyListResponse(
        items=[DeliveryBoyResponse.model_validate(d) for d in delivery_boys],
        total=total,
        page=page,
        size=size,
        pages=ceil(total / size) if total > 0 else 1,
    )


@router.get("/available", response_model=List[DeliveryBoyResponse])
async def list_available_delivery_boys(db: DB, admin: CurrentAdmin, shift: Optional[str] = None):
    """Approved and active delivery persons, least busy first."""
    return await DeliveryBoyService(db).list_available(shift)


@router.get("/{delivery_boy_id}", response_model=DeliveryBoyResponse)
async def get_delivery_boy(delivery_boy_id: uuid.UUID, db: DB, admin: CurrentAdmin):
    delivery_boy = await DeliveryBoyService(db).get_by_id(delivery_boy_id)
    if not delivery_boy:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Delivery boy not found")
    return delivery_boy


@router.put("/{delivery_boy_id}/approve", response_model=DeliveryBoyResponse)
async def approve_delivery_boy(delivery_boy_id: uuid.UUID, db: DB, now: Now, admin: CurrentAdmin):
    return await DeliveryBoyService(db).approve(delivery_boy_id, now)


@router.put("/{delivery_boy_id}/reject", response_model=DeliveryBoyResponse)
async def reject_delivery_boy(
    delivery_boy_id: uuid.UUID,
    db: DB,
    admin: CurrentAdmin,
    data: Optional[DeliveryBoyStatusReason] = None,
):
    return await DeliveryBoyService(db).reject(delivery_boy_id, data.reason if data else None)


@router.put("/{delivery_boy_id}/suspend", response_model=DeliveryBoyResponse)
async def suspend_delivery_boy(
    delivery_boy_id: uuid.UUID,
    db: DB,
    admin: CurrentAdmin,
    data: Optional[DeliveryBoyStatusReason] = None,
):
    return await DeliveryBoyService(db).suspend(delivery_boy_id, data.reason if data else None)
