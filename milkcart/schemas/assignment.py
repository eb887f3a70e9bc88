from pydantic import BaseModel, Field, model_validator
from typing import Optional, List
from datetime import datetime, date
import uuid

from milkcart.models.order import DeliveryShift
from milkcart.schemas.base import BaseResponseSchema
from milkcart.schemas.delivery import DeliveryBoyBrief
from milkcart.schemas.order import CustomerBrief


class AssignUserRequest(BaseModel):
    user_id: uuid.UUID
    delivery_boy_id: uuid.UUID
    shifts: List[DeliveryShift] = Field(default_factory=list, description="Empty means every shift")
    areas: List[str] = Field(default_factory=list)
    notes: Optional[str] = Field(None, max_length=500)


class ReassignUserRequest(BaseModel):
    new_delivery_boy_id: uuid.UUID
    reassignment_type: str = Field(..., description="entire or date_range")
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    notes: Optional[str] = Field(None, max_length=500)


class BulkTransferRequest(BaseModel):
    from_delivery_boy_id: uuid.UUID
    to_delivery_boy_id: uuid.UUID
    notes: Optional[str] = Field(None, max_length=500)

    @model_validator(mode="after")
    def check_distinct(self):
        if self.from_delivery_boy_id == self.to_delivery_boy_id:
            raise ValueError("Source and destination delivery boy must be different")
        return self


class UserSequenceRequest(BaseModel):
    """Assignment ids in route order."""
    assignment_ids: List[uuid.UUID] = Field(..., min_length=1)


class OrderSequenceRequest(BaseModel):
    """Order ids in delivery order. Optionally limited to one customer's orders."""
    order_ids: List[uuid.UUID] = Field(..., min_length=1)
    user_id: Optional[uuid.UUID] = None


class ActorResponse(BaseModel):
    kind: str
    user_id: Optional[uuid.UUID] = None


class AssignmentResponse(BaseResponseSchema):
    id: uuid.UUID
    user_id: uuid.UUID
    delivery_boy_id: uuid.UUID
    is_active: bool
    shifts: List[str]
    areas: List[str]
    notes: Optional[str] = None
    sequence: Optional[int] = None
    assignment_type: str
    date_from: Optional[date] = None
    date_to: Optional[date] = None
    assigned_by_kind: str
    assigned_by_user_id: Optional[uuid.UUID] = None
    deactivated_at: Optional[datetime] = None
    created_at: datetime
    user: Optional[CustomerBrief] = None
    delivery_boy: Optional[DeliveryBoyBrief] = None
    open_orders: int = 0


class AssignmentListResponse(BaseModel):
    items: List[AssignmentResponse]
    total: int
    page: int
    size: int
    pages: int


class AssignmentResultResponse(BaseModel):
    assignment: AssignmentResponse
    orders_updated: int
    message: str


class BulkTransferResponse(BaseModel):
    users_transferred: int
    orders_updated: int
    message: str


class UnassignedUserResponse(CustomerBrief):
    open_orders: int = 0


class UnassignedUserListResponse(BaseModel):
    items: List[UnassignedUserResponse]
    total: int
    page: int
    size: int
    pages: int


class SequenceUpdateResponse(BaseModel):
    updated: int
    message: str
