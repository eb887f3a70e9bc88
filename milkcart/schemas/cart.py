from pydantic import BaseModel, Field
from typing import List, Optional
from decimal import Decimal
import uuid

from milkcart.models.cart import MIN_CART_QUANTITY, MAX_CART_QUANTITY
from milkcart.schemas.base import BaseResponseSchema


class CartItemAdd(BaseModel):
    product_id: uuid.UUID
    quantity: int = Field(1, ge=MIN_CART_QUANTITY, le=MAX_CART_QUANTITY)


class CartItemUpdate(BaseModel):
    quantity: int = Field(..., ge=MIN_CART_QUANTITY, le=MAX_CART_QUANTITY)


class CartProductBrief(BaseResponseSchema):
    id: uuid.UUID
    name: str
    unit: str
    image_url: Optional[str] = None
    effective_price: Decimal
    stock: int
    status: str


class CartItemResponse(BaseResponseSchema):
    id: uuid.UUID
    product_id: uuid.UUID
    quantity: int
    line_total: Decimal
    product: CartProductBrief


class CartResponse(BaseResponseSchema):
    id: Optional[uuid.UUID] = None
    items: List[CartItemResponse] = []
    total_items: int = 0
    total_amount: Decimal = Decimal("0")
