from datetime import datetime
from typing import Optional
from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, field_serializer
from sqlalchemy.orm import Session
from competition_portal.core.database import get_db
from competition_portal.api.dependencies import get_current_user
from competition_portal.models import User
from competition_portal.services import user_service

router = APIRouter(prefix="/users", tags=["users"])


class ProfileUpdate(BaseModel):
    name: Optional[str] = None
    phone: Optional[str] = None
    institution: Optional[str] = None


class Profile(BaseModel):
    id: int
    name: str
    email: str
    phone: Optional[str]
    institution: Optional[str]
    is_email_verified: bool
    created_at: Optional[datetime]
    updated_at: Optional[datetime]

    model_config = ConfigDict(from_attributes=True)

    @field_serializer('created_at', 'updated_at')
    def serialize_timestamps(self, value: Optional[datetime], _info):
        return value.isoformat() if value else None


class ProfileResponse(BaseModel):
    success: bool
    message: str
    user: Profile


@router.get("/me/profile", response_model=ProfileResponse)
async def get_profile(current_user: User = Depends(get_current_user)):
    return ProfileResponse(
        success=True,
        message="Profile retrieved successfully",
        user=Profile.model_validate(current_user),
    )


@router.put("/me/profile", response_model=ProfileResponse)
async def update_profile(
    payload: ProfileUpdate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Update name, phone or institution; email changes are not supported"""
    user = user_service.update_profile(db, current_user, payload.model_dump(exclude_unset=True))
    return ProfileResponse(
        success=True,
        message="Profile updated successfully",
        user=Profile.model_validate(user),
    )
