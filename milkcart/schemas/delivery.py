from pydantic import BaseModel, EmailStr, Field
from typing import Optional, List
from datetime import datetime
from decimal import Decimal
import uuid

from milkcart.models.delivery_boy import DeliveryBoyShift
from milkcart.schemas.base import BaseResponseSchema
from milkcart.schemas.order import OrderResponse, CustomerBrief


class DeliveryBoyRegister(BaseModel):
    name: str = Field(..., min_length=2, max_length=100)
    email: EmailStr
    phone: str = Field(..., pattern=r"^[6-9]\d{9}$")
    password: str = Field(..., min_length=8)
    shift: DeliveryBoyShift
    vehicle_type: Optional[str] = Field(None, max_length=30)
    vehicle_number: Optional[str] = Field(None, max_length=20)


class DeliveryBoyLogin(BaseModel):
    identifier: str = Field(..., min_length=3, description="Email or phone number")
    password: str = Field(..., min_length=1)


class DeliveryBoyStatusReason(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)


class DeliveryBoyResponse(BaseResponseSchema):
    id: uuid.UUID
    name: str
    email: str
    phone: str
    vehicle_type: Optional[str] = None
    vehicle_number: Optional[str] = None
    shift: str
    status: str
    is_active: bool
    total_deliveries: int
    rating: Decimal
    approved_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    last_login_at: Optional[datetime] = None
    created_at: datetime


class DeliveryBoyBrief(BaseResponseSchema):
    id: uuid.UUID
    name: str
    phone: str
    shift: str


class DeliveryBoyListResponse(BaseModel):
    items: List[DeliveryBoyResponse]
    total: int
    page: int
    size: int
    pages: int


class DeliveryBoyLoginResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int
    delivery_boy: DeliveryBoyResponse


class WorkQueueGroup(BaseModel):
    """One customer on the route with their orders."""
    user: CustomerBrief
    assignment_id: Optional[uuid.UUID] = None
    sequence: Optional[int] = None
    orders: List[OrderResponse]


class WorkQueueResponse(BaseModel):
    delivery_boy_id: uuid.UUID
    total_users: int
    total_orders: int
    groups: List[WorkQueueGroup]
