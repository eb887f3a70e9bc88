"""
Milk subscription endpoints.

Customers browse plans, subscribe, and manage their subscriptions. Payment
for a new subscription goes through /payments/subscription-sessions. Admins
manage plans, record daily deliveries and work the refund queue.
"""
from typing import List, Optional
from math import ceil
import uuid

from fastapi import APIRouter, Query, status

from milkcart.api.deps import DB, CurrentAdmin, CurrentUser, Now
from milkcart.schemas.base import MessageResponse
from milkcart.schemas.subscription import (
    AdminRefundRequestResponse,
    AdminSubscriptionListResponse,
    AdminSubscriptionResponse,
    RefundAnalyticsResponse,
    RefundListResponse,
    RefundRequestResponse,
    RefundStatusUpdate,
    SubscriptionActionRequest,
    SubscriptionAnalyticsResponse,
    SubscriptionCancelRequest,
    SubscriptionCancelResponse,
    SubscriptionCreate,
    SubscriptionListResponse,
    SubscriptionPlanCreate,
    SubscriptionPlanResponse,
    SubscriptionPlanUpdate,
    SubscriptionResponse,
)
from milkcart.services.subscription_service import SubscriptionService

router = APIRouter(prefix="/subscriptions", tags=["Subscriptions"])
admin_router = APIRouter(prefix="/admin/subscriptions", tags=["Admin Subscriptions"])


# ==================== CUSTOMER ====================

@router.get("/plans", response_model=List[SubscriptionPlanResponse])
async def list_plans(db: DB, milk_type: Optional[str] = None):
    """Active plans, public."""
    return await SubscriptionService(db).list_plans(milk_type=milk_type)


@router.post("", response_model=SubscriptionResponse, status_code=status.HTTP_201_CREATED)
async def subscribe(data: SubscriptionCreate, db: DB, now: Now, current_user: CurrentUser):
    """Create a pending subscription. It starts once its payment is verified."""
    return await SubscriptionService(db).subscribe(current_user, data, now)


@router.get("/my", response_model=SubscriptionListResponse)
async def list_my_subscriptions(
    db: DB,
    current_user: CurrentUser,
    status_filter: Optional[str] = Query(None, alias="status"),
    page: int = Query(1, ge=1),
    size: int = Query(10, ge=1, le=100),
):
    subscriptions, total = await SubscriptionService(db).list_user_subscriptions(
        current_user,
        status=status_filter,
        skip=(page - 1) * size,
        limit=size,
    )
    return SubscriptionListResponse(
        items=[SubscriptionResponse.model_validate(s) for s in subscriptions],
        total=total,
        page=page,
        size=size,
        pages=ceil(total / size) if total > 0 else 1,
    )


@router.get("/my/{subscription_id}", response_model=SubscriptionResponse)
async def get_my_subscription(subscription_id: uuid.UUID, db: DB, current_user: CurrentUser):
    return await SubscriptionService(db).get_user_subscription(current_user, subscription_id)


@router.post("/my/{subscription_id}/pause", response_model=SubscriptionResponse)
async def pause_subscription(
    subscription_id: uuid.UUID,
    data: SubscriptionActionRequest,
    db: DB,
    now: Now,
    current_user: CurrentUser,
):
    return await SubscriptionService(db).pause(current_user, subscription_id, data.reason, now)


@router.post("/my/{subscription_id}/resume", response_model=SubscriptionResponse)
async def resume_subscription(subscription_id: uuid.UUID, db: DB, now: Now, current_user: CurrentUser):
    return await SubscriptionService(db).resume(current_user, subscription_id, now)


@router.post("/my/{subscription_id}/skip-delivery", response_model=SubscriptionResponse)
async def skip_delivery(
    subscription_id: uuid.UUID,
    data: SubscriptionActionRequest,
    db: DB,
    now: Now,
    current_user: CurrentUser,
):
    """Skip the next delivery. Skipped days are not refunded or added at the end."""
    return await SubscriptionService(db).skip_delivery(current_user, subscription_id, data.reason, now)


@router.post("/my/{subscription_id}/cancel", response_model=SubscriptionCancelResponse)
async def cancel_subscription(
    subscription_id: uuid.UUID,
    data: SubscriptionCancelRequest,
    db: DB,
    now: Now,
    current_user: CurrentUser,
):
    """Stop deliveries and request a refund for the unused days."""
    subscription, refund = await SubscriptionService(db).cancel(current_user, subscription_id, data, now)
    return SubscriptionCancelResponse(
        subscription=SubscriptionResponse.model_validate(subscription),
        refund_request=RefundRequestResponse.model_validate(refund),
    )


# ==================== ADMIN: PLANS ====================

@admin_router.get("/plans", response_model=List[SubscriptionPlanResponse])
async def list_all_plans(db: DB, admin: CurrentAdmin, milk_type: Optional[str] = None):
    return await SubscriptionService(db).list_plans(include_inactive=True, milk_type=milk_type)


@admin_router.post("/plans", response_model=SubscriptionPlanResponse, status_code=status.HTTP_201_CREATED)
async def create_plan(data: SubscriptionPlanCreate, db: DB, admin: CurrentAdmin):
    return await SubscriptionService(db).create_plan(data)


@admin_router.get("/plans/{plan_id}", response_model=SubscriptionPlanResponse)
async def get_plan(plan_id: uuid.UUID, db: DB, admin: CurrentAdmin):
    return await SubscriptionService(db).get_plan(plan_id)


@admin_router.put("/plans/{plan_id}", response_model=SubscriptionPlanResponse)
async def update_plan(plan_id: uuid.UUID, data: SubscriptionPlanUpdate, db: DB, admin: CurrentAdmin):
    return await SubscriptionService(db).update_plan(plan_id, data)


@admin_router.delete("/plans/{plan_id}", response_model=MessageResponse)
async def delete_plan(plan_id: uuid.UUID, db: DB, admin: CurrentAdmin):
    """Plans that were ever subscribed to are deactivated instead of deleted."""
    deleted = await SubscriptionService(db).delete_plan(plan_id)
    return MessageResponse(message="Plan deleted" if deleted else "Plan deactivated")


# ==================== ADMIN: REFUNDS ====================

@admin_router.get("/refunds", response_model=RefundListResponse)
async def list_refunds(
    db: DB,
    admin: CurrentAdmin,
    status_filter: Optional[str] = Query(None, alias="status"),
    page: int = Query(1, ge=1),
    size: int = Query(20, ge=1, le=100),
):
    refunds, total = await SubscriptionService(db).list_refunds(
        status=status_filter,
        skip=(page - 1) * size,
        limit=size,
    )
    return RefundListResponse(
        items=[AdminRefundRequestResponse.model_validate(r) for r in refunds],
        total=total,
        page=page,
        size=size,
        pages=ceil(total / size) if total > 0 else 1,
    )


@admin_router.get("/refunds/analytics", response_model=RefundAnalyticsResponse)
async def refund_analytics(db: DB, now: Now, admin: CurrentAdmin, days: int = Query(30, ge=1, le=365)):
    return await SubscriptionService(db).get_refund_analytics(now, days)


@admin_router.get("/refunds/{refund_id}", response_model=AdminRefundRequestResponse)
async def get_refund(refund_id: uuid.UUID, db: DB, admin: CurrentAdmin):
    return await SubscriptionService(db).get_refund(refund_id)


@admin_router.put("/refunds/{refund_id}/status", response_model=AdminRefundRequestResponse)
async def update_refund_status(
    refund_id: uuid.UUID,
    data: RefundStatusUpdate,
    db: DB,
    now: Now,
    admin: CurrentAdmin,
):
    """Approving cancels the subscription; rejecting puts it back as it was."""
    return await SubscriptionService(db).update_refund_status(refund_id, data, admin, now)


# ==================== ADMIN: SUBSCRIPTIONS ====================

@admin_router.get("/analytics", response_model=SubscriptionAnalyticsResponse)
async def subscription_analytics(db: DB, now: Now, admin: CurrentAdmin, days: int = Query(30, ge=1, le=365)):
    return await SubscriptionService(db).get_analytics(now, days)


@admin_router.get("/deliveries/today", response_model=List[AdminSubscriptionResponse])
async def deliveries_due_today(db: DB, now: Now, admin: CurrentAdmin):
    return await SubscriptionService(db).get_deliveries_due(now)


@admin_router.get("/pending-approval", response_model=List[AdminSubscriptionResponse])
async def pending_approval(db: DB, admin: CurrentAdmin):
    """Subscriptions whose UPI payment was reported and awaits verification."""
    return await SubscriptionService(db).get_pending_approvals()


@admin_router.get("", response_model=AdminSubscriptionListResponse)
async def list_subscriptions(
    db: DB,
    admin: CurrentAdmin,
    status_filter: Optional[str] = Query(None, alias="status"),
    milk_type: Optional[str] = None,
    search: Optional[str] = None,
    page: int = Query(1, ge=1),
    size: int = Query(20, ge=1, le=100),
):
    subscriptions, total = await SubscriptionService(db).list_subscriptions(
        status=status_filter,
        milk_type=milk_type,
        search=search,
        skip=(page - 1) * size,
        limit=size,
    )
    return AdminSubscriptionListResponse(
        items=[AdminSubscriptionResponse.model_validate(s) for s in subscriptions],
        total=total,
        page=page,
        size=size,
        pages=ceil(total / size) if total > 0 else 1,
    )


@admin_router.get("/{subscription_id}", response_model=AdminSubscriptionResponse)
async def get_subscription(subscription_id: uuid.UUID, db: DB, admin: CurrentAdmin):
    return await SubscriptionService(db).get_subscription(subscription_id)


@admin_router.post("/{subscription_id}/complete-delivery", response_model=AdminSubscriptionResponse)
async def complete_delivery(
    subscription_id: uuid.UUID,
    data: SubscriptionActionRequest,
    db: DB,
    now: Now,
    admin: CurrentAdmin,
):
    return await SubscriptionService(db).complete_delivery(subscription_id, admin, now, notes=data.reason)
