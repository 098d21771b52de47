from datetime import timedelta
from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import JSONResponse
from fastapi.security import OAuth2PasswordRequestForm
from sqlalchemy.orm import Session
from pydantic import BaseModel, ConfigDict, Field
from competition_portal.core.database import get_db
from competition_portal.core.security import create_access_token
from competition_portal.core.config import settings
from competition_portal.core.errors import InternalError, PortalError, ValidationError
from competition_portal.models import User
from competition_portal.api.dependencies import get_current_user
from competition_portal.services import user_service
from competition_portal.services.token_service import token_service

router = APIRouter(prefix="/auth", tags=["auth"])

FORGOT_PASSWORD_MESSAGE = (
    "If an account with this email exists, you will receive password reset instructions shortly."
)


class UserCreate(BaseModel):
    name: str = ""
    email: str = ""
    phone: str = ""
    institution: str = ""
    password: str = ""


class UserSummary(BaseModel):
    id: int
    name: str
    email: str

    model_config = ConfigDict(from_attributes=True)


class UserResponse(UserSummary):
    phone: str | None
    institution: str | None
    is_active: bool
    is_email_verified: bool
    is_admin: bool


class RegisterResponse(BaseModel):
    success: bool
    message: str
    requires_email_verification: bool = Field(serialization_alias="requiresEmailVerification")
    user: UserSummary


class Token(BaseModel):
    access_token: str
    token_type: str


class EmailRequest(BaseModel):
    email: str = ""


class TokenRequest(BaseModel):
    token: str = ""


class ResetPasswordRequest(BaseModel):
    token: str = ""
    password: str = ""
    confirm_password: str = Field(default="", alias="confirmPassword")

    model_config = ConfigDict(populate_by_name=True)


class MessageResponse(BaseModel):
    success: bool
    message: str


class TokenValidityResponse(MessageResponse):
    valid: bool


@router.post(
    "/register",
    response_model=RegisterResponse,
    response_model_by_alias=True,
    status_code=status.HTTP_201_CREATED,
)
def register(user_data: UserCreate, db: Session = Depends(get_db)):
    """Register a new user; the account stays inactive until the email is verified"""
    user = user_service.register_user(
        db,
        name=user_data.name,
        email=user_data.email,
        phone=user_data.phone,
        institution=user_data.institution,
        password=user_data.password,
    )
    return RegisterResponse(
        success=True,
        message="Registration successful! Please check your email to verify your account.",
        requires_email_verification=True,
        user=UserSummary.model_validate(user),
    )


@router.post("/login", response_model=Token)
def login(
    form_data: OAuth2PasswordRequestForm = Depends(),
    db: Session = Depends(get_db)
):
    """Login and get access token"""
    # OAuth2 form 'username' carries the email
    user = user_service.authenticate(db, form_data.username, form_data.password)

    # Generic error message prevents email enumeration
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Incorrect email or password",
            headers={"WWW-Authenticate": "Bearer"},
        )

    if not user.is_email_verified:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Please verify your email before logging in"
        )

    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="User account is inactive"
        )

    access_token = create_access_token(
        data={"sub": str(user.id)},
        expires_delta=timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    )

    return {"access_token": access_token, "token_type": "bearer"}


@router.get("/me", response_model=UserResponse)
async def get_current_user_info(current_user: User = Depends(get_current_user)):
    """Get current user information"""
    return current_user


@router.post("/forgot-password", response_model=MessageResponse)
def forgot_password(request: EmailRequest, db: Session = Depends(get_db)):
    """Start a password reset. The response never reveals whether the account exists."""
    if not request.email.strip():
        raise ValidationError("Email is required")
    user_service.request_password_reset(db, request.email)
    return MessageResponse(success=True, message=FORGOT_PASSWORD_MESSAGE)


@router.post("/reset-password", response_model=MessageResponse)
def reset_password(request: ResetPasswordRequest, db: Session = Depends(get_db)):
    """Set a new password using a reset token"""
    user_service.reset_password(db, request.token, request.password, request.confirm_password)
    return MessageResponse(
        success=True,
        message="Password has been reset successfully. You can now login with your new password.",
    )


@router.get("/verify-reset-token", response_model=TokenValidityResponse)
async def verify_reset_token(token: str | None = Query(default=None), db: Session = Depends(get_db)):
    """Check a reset token without consuming it (used before showing the reset form)"""
    if not token:
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"success": False, "valid": False, "error": "Reset token is required", "message": "Missing token"},
        )
    try:
        token_service.verify_password_reset_token(db, token)
    except PortalError as e:
        return TokenValidityResponse(success=True, valid=False, message=e.detail)
    return TokenValidityResponse(success=True, valid=True, message="Reset token is valid")


@router.post("/verify-email", response_model=MessageResponse)
async def verify_email(request: TokenRequest, db: Session = Depends(get_db)):
    """Redeem an email verification token"""
    if not request.token:
        raise ValidationError("Verification token is required")
    token_service.verify_email_token(db, request.token)
    return MessageResponse(success=True, message="Email verified successfully! Welcome to VK Competition.")


@router.post("/resend-verification", response_model=MessageResponse)
def resend_verification(request: EmailRequest, db: Session = Depends(get_db)):
    """Send a new verification email (at most once per cooldown window)"""
    if not request.email.strip():
        raise ValidationError("Email is required")
    if not user_service.resend_verification(db, request.email):
        raise InternalError("Failed to send verification email. Please try again later.")
    return MessageResponse(
        success=True,
        message="Verification email sent! Please check your inbox and spam folder.",
    )
