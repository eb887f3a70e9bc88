from pydantic import BaseModel, Field
from typing import Optional, List
from datetime import datetime, date
from decimal import Decimal
import uuid

from milkcart.schemas.base import BaseResponseSchema
from milkcart.schemas.order import CustomerBrief


class PaymentSessionCreate(BaseModel):
    order_ids: List[uuid.UUID] = Field(..., min_length=1)


class SubscriptionPaymentSessionCreate(BaseModel):
    subscription_id: uuid.UUID


class PaymentComplete(BaseModel):
    upi_transaction_id: str = Field(..., min_length=4, max_length=100)


class PaymentVerifyRequest(BaseModel):
    action: str = Field(..., description="verify or reject")
    notes: Optional[str] = Field(None, max_length=500)


class PaymentOrderBrief(BaseResponseSchema):
    id: uuid.UUID
    order_number: str
    status: str
    payment_status: str
    total_amount: Decimal
    delivery_date: date
    confirmed_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None


class PaymentResponse(BaseResponseSchema):
    id: uuid.UUID
    payment_id: str
    reference_number: str
    user_id: uuid.UUID
    amount: Decimal
    method: str
    upi_url: str
    payment_status: str
    verification_status: str
    upi_transaction_id: Optional[str] = None
    expires_at: datetime
    completed_at: Optional[datetime] = None
    verified_at: Optional[datetime] = None
    verified_by: Optional[dict] = None
    verification_notes: Optional[str] = None
    created_at: datetime
    user_subscription_id: Optional[uuid.UUID] = None
    orders: List[PaymentOrderBrief] = []


class PaymentSessionResponse(PaymentResponse):
    """Returned when a session is opened; carries the QR image."""
    qr_code: Optional[str] = None
    upi_id: str
    upi_name: str
    expires_in: int = Field(..., description="Seconds until the session expires")


class AdminPaymentResponse(PaymentResponse):
    user: Optional[CustomerBrief] = None


class PaymentListResponse(BaseModel):
    items: List[PaymentResponse]
    total: int
    page: int
    size: int
    pages: int


class AdminPaymentListResponse(BaseModel):
    items: List[AdminPaymentResponse]
    total: int
    page: int
    size: int
    pages: int


class UnpaidOrdersResponse(BaseModel):
    orders: List[PaymentOrderBrief]
    total_amount: Decimal
    order_count: int
