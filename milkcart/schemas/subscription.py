from pydantic import BaseModel, Field, field_validator, model_validator
from typing import Optional, List
from datetime import datetime, date
from decimal import Decimal
import uuid

from milkcart.models.subscription import PLAN_DURATIONS, MilkType, PlanVolume, RefundMethod, RefundStatus
from milkcart.schemas.base import BaseResponseSchema, BaseCreateSchema, BaseUpdateSchema
from milkcart.schemas.order import CustomerBrief, ShippingAddress


def _check_duration(value: Optional[int]) -> Optional[int]:
    if value is not None and value not in PLAN_DURATIONS:
        raise ValueError(f"Duration must be one of {', '.join(str(d) for d in PLAN_DURATIONS)} days")
    return value


# ==================== PLAN SCHEMAS ====================

class SubscriptionPlanCreate(BaseCreateSchema):
    name: str = Field(..., min_length=2, max_length=100)
    milk_type: MilkType
    volume: PlanVolume
    duration_days: int
    price: Decimal = Field(..., gt=0, decimal_places=2)
    original_price: Optional[Decimal] = Field(None, gt=0, decimal_places=2)
    discount_percent: int = Field(0, ge=0, le=100)
    description: Optional[str] = Field(None, max_length=1000)
    features: List[str] = []
    is_active: bool = True
    popularity: int = Field(0, ge=0)

    @field_validator("duration_days")
    @classmethod
    def check_duration(cls, v):
        return _check_duration(v)


class SubscriptionPlanUpdate(BaseUpdateSchema):
    name: Optional[str] = Field(None, min_length=2, max_length=100)
    milk_type: Optional[MilkType] = None
    volume: Optional[PlanVolume] = None
    duration_days: Optional[int] = None
    price: Optional[Decimal] = Field(None, gt=0, decimal_places=2)
    original_price: Optional[Decimal] = Field(None, gt=0, decimal_places=2)
    discount_percent: Optional[int] = Field(None, ge=0, le=100)
    description: Optional[str] = Field(None, max_length=1000)
    features: Optional[List[str]] = None
    is_active: Optional[bool] = None
    popularity: Optional[int] = Field(None, ge=0)

    @field_validator("duration_days")
    @classmethod
    def check_duration(cls, v):
        return _check_duration(v)


class SubscriptionPlanResponse(BaseResponseSchema):
    id: uuid.UUID
    name: str
    milk_type: str
    volume: str
    duration_days: int
    price: Decimal
    daily_price: Decimal
    original_price: Optional[Decimal] = None
    discount_percent: int
    final_price: Decimal
    description: Optional[str] = None
    features: List[str] = []
    is_active: bool
    popularity: int
    created_at: datetime


# ==================== CUSTOMER SUBSCRIPTION SCHEMAS ====================

class SubscriptionCreate(BaseCreateSchema):
    plan_id: uuid.UUID
    shipping_address: ShippingAddress
    delivery_instructions: Optional[str] = Field(None, max_length=500)
    delivery_shift: str = Field("morning", description="morning or evening")
    start_date: Optional[date] = Field(None, description="Defaults to tomorrow")


class SubscriptionActionRequest(BaseModel):
    """Pause, resume or skip-delivery body."""
    reason: Optional[str] = Field(None, max_length=500)


class SubscriptionCancelRequest(BaseModel):
    """Cancellation with the account the pro-rated refund is paid to."""
    reason: str = Field(..., min_length=3, max_length=500)
    refund_method: RefundMethod = RefundMethod.UPI
    mobile_number: str = Field(..., pattern=r"^[6-9]\d{9}$")
    upi_id: Optional[str] = Field(None, pattern=r"^[\w.\-]{2,}@[A-Za-z]{2,}$")
    account_holder_name: Optional[str] = Field(None, min_length=2, max_length=100)
    bank_name: Optional[str] = Field(None, min_length=2, max_length=100)
    account_number: Optional[str] = Field(None, pattern=r"^\d{9,18}$")
    ifsc_code: Optional[str] = Field(None, pattern=r"^[A-Z]{4}0[A-Z0-9]{6}$")

    @model_validator(mode="after")
    def check_refund_account(self):
        if self.refund_method == RefundMethod.UPI:
            if not self.upi_id:
                raise ValueError("UPI ID is required for UPI refunds")
        else:
            missing = [
                name for name in ("account_holder_name", "bank_name", "account_number", "ifsc_code")
                if not getattr(self, name)
            ]
            if missing:
                raise ValueError(f"Bank transfer refunds need: {', '.join(missing)}")
        return self


class SubscriptionEventResponse(BaseResponseSchema):
    action: str
    reason: Optional[str] = None
    performed_by_kind: str
    created_at: datetime


class PlanBrief(BaseResponseSchema):
    id: uuid.UUID
    name: str
    milk_type: str
    volume: str
    duration_days: int
    daily_price: Decimal


class SubscriptionResponse(BaseResponseSchema):
    id: uuid.UUID
    subscription_number: str
    user_id: uuid.UUID
    plan_id: uuid.UUID
    plan: PlanBrief
    status: str
    payment_status: str
    start_date: date
    end_date: date
    next_delivery_date: Optional[date] = None
    delivery_shift: str
    total_deliveries: int
    completed_deliveries: int
    skipped_deliveries: int
    remaining_deliveries: int
    progress_percentage: int
    shipping_name: str
    shipping_phone: str
    shipping_street: str
    shipping_city: str
    shipping_state: Optional[str] = None
    shipping_pincode: str
    delivery_instructions: Optional[str] = None
    amount: Decimal
    discount_percent: int
    upi_transaction_id: Optional[str] = None
    payment_reported_at: Optional[datetime] = None
    paid_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime
    events: List[SubscriptionEventResponse] = []


class AdminSubscriptionResponse(SubscriptionResponse):
    user: Optional[CustomerBrief] = None


class SubscriptionListResponse(BaseModel):
    items: List[SubscriptionResponse]
    total: int
    page: int
    size: int
    pages: int


class AdminSubscriptionListResponse(BaseModel):
    items: List[AdminSubscriptionResponse]
    total: int
    page: int
    size: int
    pages: int


# ==================== REFUND SCHEMAS ====================

class RefundRequestResponse(BaseResponseSchema):
    id: uuid.UUID
    user_subscription_id: uuid.UUID
    user_id: uuid.UUID
    original_amount: Decimal
    refund_amount: Decimal
    days_used: int
    days_remaining: int
    cancellation_reason: str
    refund_method: str
    mobile_number: str
    upi_id: Optional[str] = None
    account_holder_name: Optional[str] = None
    bank_name: Optional[str] = None
    account_number: Optional[str] = None
    ifsc_code: Optional[str] = None
    status: str
    admin_notes: Optional[str] = None
    refund_transaction_id: Optional[str] = None
    refund_date: Optional[date] = None
    processed_at: Optional[datetime] = None
    created_at: datetime


class AdminRefundRequestResponse(RefundRequestResponse):
    user: Optional[CustomerBrief] = None
    subscription_number: Optional[str] = None


class RefundListResponse(BaseModel):
    items: List[AdminRefundRequestResponse]
    total: int
    page: int
    size: int
    pages: int


class SubscriptionCancelResponse(BaseModel):
    subscription: SubscriptionResponse
    refund_request: RefundRequestResponse


class RefundStatusUpdate(BaseUpdateSchema):
    status: RefundStatus
    admin_notes: Optional[str] = Field(None, max_length=1000)
    refund_transaction_id: Optional[str] = Field(None, max_length=100)
    refund_date: Optional[date] = None


# ==================== ANALYTICS SCHEMAS ====================

class SubscriptionAnalyticsResponse(BaseModel):
    period_days: int
    total_subscriptions: int
    active_subscriptions: int
    paused_subscriptions: int
    completed_subscriptions: int
    cancelled_subscriptions: int
    total_revenue: Decimal
    cow_milk_subscriptions: int
    buffalo_milk_subscriptions: int


class RefundStatusBucket(BaseModel):
    status: str
    count: int
    total_amount: Decimal


class RefundAnalyticsResponse(BaseModel):
    period_days: int
    total_refunds: int
    refunded_amount: Decimal
    average_refund: Decimal
    by_status: List[RefundStatusBucket]
