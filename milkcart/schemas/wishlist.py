from pydantic import BaseModel, computed_field
from typing import Optional, List
from datetime import datetime
from decimal import Decimal
import uuid

from milkcart.schemas.base import BaseResponseSchema
from milkcart.schemas.product import ProductResponse


class WishlistItemResponse(BaseResponseSchema):
    id: uuid.UUID
    product_id: uuid.UUID
    product: ProductResponse
    price_when_added: Optional[Decimal] = None
    created_at: datetime

    @computed_field
    @property
    def price_dropped(self) -> bool:
        if self.price_when_added is None:
            return False
        return self.product.effective_price < self.price_when_added


class WishlistResponse(BaseModel):
    items: List[WishlistItemResponse]
    total: int
