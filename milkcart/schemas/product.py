from pydantic import BaseModel, Field, computed_field
from typing import Optional, List
from datetime import datetime
from decimal import Decimal
import uuid

from milkcart.models.product import ProductStatus
from milkcart.schemas.base import BaseResponseSchema, BaseCreateSchema, BaseUpdateSchema


# ==================== CATEGORY SCHEMAS ====================

class CategoryCreate(BaseCreateSchema):
    name: str = Field(..., min_length=2, max_length=100)
    description: Optional[str] = None
    is_active: bool = True


class CategoryUpdate(BaseUpdateSchema):
    name: Optional[str] = Field(None, min_length=2, max_length=100)
    description: Optional[str] = None
    is_active: Optional[bool] = None


class CategoryResponse(BaseResponseSchema):
    id: uuid.UUID
    name: str
    description: Optional[str] = None
    is_active: bool
    created_at: datetime


# ==================== PRODUCT SCHEMAS ====================

class ProductCreate(BaseCreateSchema):
    name: str = Field(..., min_length=2, max_length=200)
    description: Optional[str] = None
    category_id: Optional[uuid.UUID] = None
    price: Decimal = Field(..., gt=0, decimal_places=2)
    discount_price: Optional[Decimal] = Field(None, gt=0, decimal_places=2)
    unit: str = Field("1 L", max_length=20)
    image_url: Optional[str] = Field(None, max_length=500)
    stock: int = Field(0, ge=0)


class ProductUpdate(BaseUpdateSchema):
    """Partial update. Stock has its own endpoint so it always goes through the ledger."""
    name: Optional[str] = Field(None, min_length=2, max_length=200)
    description: Optional[str] = None
    category_id: Optional[uuid.UUID] = None
    price: Optional[Decimal] = Field(None, gt=0, decimal_places=2)
    discount_price: Optional[Decimal] = Field(None, gt=0, decimal_places=2)
    unit: Optional[str] = Field(None, max_length=20)
    image_url: Optional[str] = Field(None, max_length=500)
    status: Optional[ProductStatus] = None


class StockUpdate(BaseModel):
    stock: int = Field(..., ge=0)


class ProductResponse(BaseResponseSchema):
    id: uuid.UUID
    name: str
    description: Optional[str] = None
    category_id: Optional[uuid.UUID] = None
    price: Decimal
    discount_price: Optional[Decimal] = None
    effective_price: Decimal
    unit: str
    image_url: Optional[str] = None
    stock: int
    status: str
    created_at: datetime
    updated_at: datetime

    @computed_field
    @property
    def in_stock(self) -> bool:
        return self.status == ProductStatus.ACTIVE.value and self.stock > 0


class ProductListResponse(BaseModel):
    items: List[ProductResponse]
    total: int
    page: int
    size: int
    pages: int
