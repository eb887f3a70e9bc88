"""Shared Pydantic bases for MilkCart request and response bodies."""

from pydantic import BaseModel, ConfigDict


class BaseResponseSchema(BaseModel):
    """Response bodies built straight from ORM rows."""
    model_config = ConfigDict(from_attributes=True, populate_by_name=True)


class BaseCreateSchema(BaseModel):
    model_config = ConfigDict(extra="ignore")


class BaseUpdateSchema(BaseModel):
    """Partial updates: only fields the client sent are applied."""
    model_config = ConfigDict(extra="ignore")


class MessageResponse(BaseModel):
    message: str
