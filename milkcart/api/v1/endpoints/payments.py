"""
UPI QR payment endpoints.

Customers open a session for their unpaid orders or a pending
subscription, pay the admin's UPI id by scanning the QR code and report
the transaction id. Admins then verify or reject the payment, which
cascades to the orders or the subscription.
"""
from datetime import date, datetime
from decimal import Decimal
from typing import Optional
from math import ceil
import logging

from fastapi import APIRouter, BackgroundTasks, HTTPException, Query, status

from milkcart.api.deps import DB, CurrentAdmin, CurrentUser, Now
from milkcart.config import settings
from milkcart.core.timeutils import local_day_bounds
from milkcart.models.payment import Payment
from milkcart.schemas.payment import (
    AdminPaymentListResponse,
    AdminPaymentResponse,
    PaymentComplete,
    PaymentListResponse,
    PaymentOrderBrief,
    PaymentResponse,
    PaymentSessionCreate,
    PaymentSessionResponse,
    PaymentVerifyRequest,
    UnpaidOrdersResponse,
    SubscriptionPaymentSessionCreate,
)
from milkcart.services.email_service import get_email_service
from milkcart.services.payment_service import PaymentService, VerificationAction

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/payments", tags=["Payments"])
admin_router = APIRouter(prefix="/admin/payments", tags=["Admin Payments"])


def _build_session_response(payment: Payment, now: datetime) -> PaymentSessionResponse:
    base = PaymentResponse.model_validate(payment)
    return PaymentSessionResponse(
        **base.model_dump(),
        qr_code=payment.qr_code,
        upi_id=settings.ADMIN_UPI_ID,
        upi_name=settings.ADMIN_UPI_NAME,
        expires_in=max(0, int((payment.expires_at - now).total_seconds())),
    )


# ==================== CUSTOMER ====================

@router.get("/unpaid-orders", response_model=UnpaidOrdersResponse)
async def list_unpaid_orders(db: DB, current_user: CurrentUser):
    """Confirmed or delivered orders that still need paying."""
    orders = await PaymentService(db).list_unpaid_orders(current_user)
    return UnpaidOrdersResponse(
        orders=[PaymentOrderBrief.model_validate(o) for o in orders],
        total_amount=sum((o.total_amount for o in orders), Decimal("0")),
        order_count=len(orders),
    )


@router.post("/sessions", response_model=PaymentSessionResponse, status_code=status.HTTP_201_CREATED)
async def create_payment_session(data: PaymentSessionCreate, db: DB, now: Now, current_user: CurrentUser):
    payment = await PaymentService(db).create_session(current_user, data.order_ids, now)
    return _build_session_response(payment, now)


@router.post(
    "/subscription-sessions",
    response_model=PaymentSessionResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_subscription_payment_session(
    data: SubscriptionPaymentSessionCreate,
    db: DB,
    now: Now,
    current_user: CurrentUser,
):
    """Pay for a pending subscription. Reporting and verification use the same session endpoints."""
    payment = await PaymentService(db).create_subscription_session(current_user, data.subscription_id, now)
    return _build_session_response(payment, now)


@router.get("/sessions/{payment_id}", response_model=PaymentSessionResponse)
async def get_payment_session(payment_id: str, db: DB, now: Now, current_user: CurrentUser):
    payment = await PaymentService(db).get_session(current_user, payment_id)
    return _build_session_response(payment, now)


@router.post("/sessions/{payment_id}/complete", response_model=PaymentResponse)
async def complete_payment(
    payment_id: str,
    data: PaymentComplete,
    db: DB,
    now: Now,
    current_user: CurrentUser,
):
    """Report the UPI transaction id. The payment then waits for admin verification."""
    return await PaymentService(db).mark_completed(current_user, payment_id, data.upi_transaction_id, now)


@router.get("/history", response_model=PaymentListResponse)
async def get_payment_history(
    db: DB,
    current_user: CurrentUser,
    status_filter: Optional[str] = Query(None, alias="status"),
    page: int = Query(1, ge=1),
    size: int = Query(10, ge=1, le=100),
):
    payments, total = await PaymentService(db).list_user_payments(
        current_user,
        status=status_filter,
        skip=(page - 1) * size,
        limit=size,
    )
    return PaymentListResponse(
        items=[PaymentResponse.model_validate(p) for p in payments],
        total=total,
        page=page,
        size=size,
        pages=ceil(total / size) if total > 0 else 1,
    )


# ==================== ADMIN ====================

@admin_router.get("", response_model=AdminPaymentListResponse)
async def list_payments(
    db: DB,
    admin: CurrentAdmin,
    status_filter: Optional[str] = Query(None, alias="status"),
    verification_status: Optional[str] = None,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    search: Optional[str] = None,
    page: int = Query(1, ge=1),
    size: int = Query(20, ge=1, le=100),
):
    payments, total = await PaymentService(db).list_payments(
        status=status_filter,
        verification_status=verification_status,
        date_from=local_day_bounds(date_from)[0] if date_from else None,
        date_to=local_day_bounds(date_to)[1] if date_to else None,
        search=search,
        skip=(page - 1) * size,
        limit=size,
    )
    return AdminPaymentListResponse(
        items=[AdminPaymentResponse.model_validate(p) for p in payments],
        total=total,
        page=page,
        size=size,
        pages=ceil(total / size) if total > 0 else 1,
    )


@admin_router.get("/{payment_id}", response_model=AdminPaymentResponse)
async def get_payment(payment_id: str, db: DB, admin: CurrentAdmin):
    payment = await PaymentService(db).get_payment(payment_id)
    if not payment:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Payment not found")
    return payment


@admin_router.put("/{payment_id}/verify", response_model=AdminPaymentResponse)
async def verify_payment(
    payment_id: str,
    data: PaymentVerifyRequest,
    db: DB,
    now: Now,
    admin: CurrentAdmin,
    background_tasks: BackgroundTasks,
):
    """Verify marks every order in the session paid; reject puts them back to pending."""
    payment = await PaymentService(db).verify_payment(payment_id, data.action, admin, now, notes=data.notes)
    background_tasks.add_task(
        get_email_service().send_payment_verified_email,
        payment.user.email,
        payment.user.name,
        payment.payment_id,
        payment.amount,
        data.action == VerificationAction.VERIFY,
        payment.verification_notes,
    )
    return payment
