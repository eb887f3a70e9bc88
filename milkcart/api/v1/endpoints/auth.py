"""Customer and admin authentication endpoints."""
import logging

from fastapi import APIRouter, BackgroundTasks, status

from milkcart.api.deps import DB, CurrentUser, Now
from milkcart.config import settings
from milkcart.schemas.auth import (
    LoginRequest,
    RegisterResponse,
    ResendVerificationRequest,
    TokenResponse,
    UserLoginResponse,
    UserRegister,
    UserResponse,
    VerifyEmailRequest,
)
from milkcart.schemas.base import MessageResponse
from milkcart.services.auth_service import AuthService, authenticate_admin
from milkcart.services.email_service import get_email_service

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/auth", tags=["Authentication"])


def _send_code(background_tasks: BackgroundTasks, email: str, name: str, code: str) -> None:
    background_tasks.add_task(
        get_email_service().send_verification_code_email,
        email,
        name,
        code,
        settings.EMAIL_VERIFICATION_CODE_EXPIRE_MINUTES,
    )


@router.post("/register", response_model=RegisterResponse, status_code=status.HTTP_201_CREATED)
async def register(
    data: UserRegister,
    db: DB,
    now: Now,
    background_tasks: BackgroundTasks,
):
    """Create an account and email a 6 digit verification code."""
    user, code = await AuthService(db).register(data, now)
    _send_code(background_tasks, user.email, user.name, code)
    return RegisterResponse(
        message="Registration successful. Please check your email for the verification code.",
        user=UserResponse.model_validate(user),
    )


@router.post("/verify-email", response_model=UserLoginResponse)
async def verify_email(data: VerifyEmailRequest, db: DB, now: Now):
    """Verify the email address and log the user straight in."""
    service = AuthService(db)
    user = await service.verify_email(data.email, data.code, now)
    return UserLoginResponse(
        access_token=service.issue_token(user),
        expires_in=settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60,
        user=UserResponse.model_validate(user),
    )


@router.post("/resend-verification", response_model=MessageResponse)
async def resend_verification(
    data: ResendVerificationRequest,
    db: DB,
    now: Now,
    background_tasks: BackgroundTasks,
):
    user, code = await AuthService(db).resend_verification(data.email, now)
    _send_code(background_tasks, user.email, user.name, code)
    return MessageResponse(message="Verification code sent")


@router.post("/login", response_model=UserLoginResponse)
async def login(data: LoginRequest, db: DB, now: Now):
    user, token = await AuthService(db).login(data.email, data.password, now)
    return UserLoginResponse(
        access_token=token,
        expires_in=settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60,
        user=UserResponse.model_validate(user),
    )


@router.post("/admin/login", response_model=TokenResponse)
async def admin_login(data: LoginRequest):
    """Back-office login against the configured admin credentials."""
    token = authenticate_admin(data.email, data.password)
    return TokenResponse(
        access_token=token,
        expires_in=settings.ADMIN_TOKEN_EXPIRE_MINUTES * 60,
    )


@router.get("/me", response_model=UserResponse)
async def get_me(current_user: CurrentUser):
    return current_user
