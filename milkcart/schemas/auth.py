from pydantic import BaseModel, EmailStr, Field
from typing import Optional
from datetime import datetime
import uuid

from milkcart.schemas.base import BaseResponseSchema


class UserRegister(BaseModel):
    """Customer sign-up."""
    name: str = Field(..., min_length=2, max_length=100)
    email: EmailStr = Field(..., description="User email address")
    password: str = Field(..., min_length=8, description="At least 8 chars with upper, lower and digit")
    phone: Optional[str] = Field(None, pattern=r"^[6-9]\d{9}$")


class VerifyEmailRequest(BaseModel):
    email: EmailStr
    code: str = Field(..., pattern=r"^\d{6}$", description="6 digit code from the email")


class ResendVerificationRequest(BaseModel):
    email: EmailStr


class LoginRequest(BaseModel):
    """Login request schema."""
    email: EmailStr = Field(..., description="User email address")
    password: str = Field(..., min_length=1, description="User password")


class TokenResponse(BaseModel):
    """Token response schema."""
    access_token: str = Field(..., description="JWT access token")
    token_type: str = Field(default="bearer", description="Token type")
    expires_in: int = Field(..., description="Access token expiration in seconds")


class UserResponse(BaseResponseSchema):
    id: uuid.UUID
    name: str
    email: str
    phone: Optional[str] = None
    role: str
    is_active: bool
    is_email_verified: bool
    address_street: Optional[str] = None
    address_city: Optional[str] = None
    address_state: Optional[str] = None
    address_pincode: Optional[str] = None
    last_login_at: Optional[datetime] = None
    created_at: datetime


class UserLoginResponse(TokenResponse):
    user: UserResponse


class RegisterResponse(BaseModel):
    message: str
    user: UserResponse
