from pydantic import BaseModel, Field, computed_field
from typing import Optional, List
from datetime import datetime, date
from decimal import Decimal
import uuid

from milkcart.models.cart import MIN_CART_QUANTITY, MAX_CART_QUANTITY
from milkcart.models.order import OrderStatus, PaymentStatus, PaymentMethod
from milkcart.schemas.base import BaseResponseSchema, BaseCreateSchema, BaseUpdateSchema


# ==================== ORDER ITEM SCHEMAS ====================

class OrderItemCreate(BaseModel):
    """Order line requested at checkout. Price always comes from the catalogue."""
    product_id: uuid.UUID
    quantity: int = Field(..., ge=MIN_CART_QUANTITY, le=MAX_CART_QUANTITY)


class OrderItemResponse(BaseResponseSchema):
    id: uuid.UUID
    product_id: uuid.UUID
    product_name: str
    unit_price: Decimal
    quantity: int
    line_total: Decimal
    image_url: Optional[str] = None


# ==================== ADDRESS SCHEMAS ====================

class ShippingAddress(BaseModel):
    """Delivery address snapshot stored on the order."""
    name: str = Field(..., min_length=2, max_length=100)
    phone: str = Field(..., pattern=r"^[6-9]\d{9}$", description="10 digit Indian mobile number")
    street: str = Field(..., min_length=3, max_length=255)
    city: str = Field(..., min_length=2, max_length=100)
    state: Optional[str] = Field(None, max_length=100)
    pincode: str = Field(..., pattern=r"^\d{6}$")


# ==================== ORDER SCHEMAS ====================

class OrderCreate(BaseCreateSchema):
    """Checkout request."""
    items: List[OrderItemCreate] = Field(..., min_length=1)
    shipping_address: ShippingAddress
    payment_method: PaymentMethod = PaymentMethod.COD
    delivery_date: date
    delivery_shift: str = Field(..., description="morning or evening")
    notes: Optional[str] = Field(None, max_length=500)
    clear_cart: bool = Field(False, description="Empty the cart after the order is placed")


class OrderStatusUpdate(BaseUpdateSchema):
    """Admin status change. Any field may be sent alone."""
    status: Optional[OrderStatus] = None
    payment_status: Optional[PaymentStatus] = None
    admin_notes: Optional[str] = Field(None, max_length=1000)
    cancellation_reason: Optional[str] = Field(None, max_length=500)


class OrderCancelRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)


class OrderDeliverRequest(BaseModel):
    """Delivery person's proof of delivery."""
    notes: Optional[str] = Field(None, max_length=500)
    latitude: Optional[Decimal] = Field(None, ge=-90, le=90)
    longitude: Optional[Decimal] = Field(None, ge=-180, le=180)


class OrderAssignRequest(BaseModel):
    delivery_boy_id: uuid.UUID


class CustomerBrief(BaseResponseSchema):
    id: uuid.UUID
    name: str
    email: str
    phone: Optional[str] = None


class OrderResponse(BaseResponseSchema):
    id: uuid.UUID
    order_number: str
    user_id: uuid.UUID
    status: str
    payment_status: str
    payment_method: str
    priority: str
    subtotal: Decimal
    shipping_fee: Decimal
    tax: Decimal
    discount: Decimal
    total_amount: Decimal
    shipping_name: str
    shipping_phone: str
    shipping_street: str
    shipping_city: str
    shipping_state: Optional[str] = None
    shipping_pincode: str
    delivery_date: date
    delivery_shift: str
    delivery_boy_id: Optional[uuid.UUID] = None
    assigned_at: Optional[datetime] = None
    sequence: Optional[int] = None
    customer_notes: Optional[str] = None
    admin_notes: Optional[str] = None
    delivery_notes: Optional[str] = None
    delivery_latitude: Optional[Decimal] = None
    delivery_longitude: Optional[Decimal] = None
    cancellation_reason: Optional[str] = None
    cancelled_by: Optional[str] = None
    confirmed_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime
    items: List[OrderItemResponse] = []

    @computed_field
    @property
    def item_count(self) -> int:
        return sum(item.quantity for item in self.items)


class AdminOrderResponse(OrderResponse):
    """Order with the customer attached, for back-office lists."""
    user: Optional[CustomerBrief] = None


class OrderListResponse(BaseModel):
    items: List[OrderResponse]
    total: int
    page: int
    size: int
    pages: int


class AdminOrderListResponse(BaseModel):
    items: List[AdminOrderResponse]
    total: int
    page: int
    size: int
    pages: int


# ==================== SLOT SCHEMAS ====================

class DeliverySlotResponse(BaseModel):
    date: date
    is_tomorrow: bool
    morning_available: bool
    morning_cutoff_passed: bool
    morning_reason: str = ""
    evening_available: bool
    evening_reason: str = ""
    morning_time_slot: str
    evening_time_slot: str


class DeliverySlotsResponse(BaseModel):
    current_local_time: datetime
    timezone: str
    slots: List[DeliverySlotResponse]


class ShiftAvailabilityResponse(BaseModel):
    current_local_time: datetime
    morning_available: bool
    evening_available: bool
    next_available_date: date
    messages: List[str] = []