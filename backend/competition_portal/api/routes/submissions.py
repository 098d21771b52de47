import logging
from datetime import datetime
from typing import List, Optional
from fastapi import APIRouter, BackgroundTasks, Depends, Query
from pydantic import BaseModel, ConfigDict, field_serializer
from sqlalchemy.orm import Session
from competition_portal.core.database import get_db
from competition_portal.api.dependencies import get_current_user
from competition_portal.models import SubmissionStatus, User
from competition_portal.services.email_service import email_service
from competition_portal.services.submission_service import submission_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/submissions", tags=["submissions"])


class SubmissionCreate(BaseModel):
    competition_id: int
    file_url: str
    title: Optional[str] = None
    description: Optional[str] = None


class SubmissionResponse(BaseModel):
    id: int
    competition_id: int
    interval: int
    file_url: str
    title: Optional[str]
    description: Optional[str]
    creativity_score: Optional[float]
    technical_score: Optional[float]
    ai_tool_usage_score: Optional[float]
    adherence_score: Optional[float]
    impact_score: Optional[float]
    overall_score: Optional[float]
    judge_comments: Optional[str]
    status: SubmissionStatus
    is_access_verified: bool
    access_check_error: Optional[str]
    is_disqualified: bool
    disqualification_reason: Optional[str]
    evaluated_at: Optional[datetime]
    created_at: datetime
    updated_at: Optional[datetime]

    model_config = ConfigDict(from_attributes=True)

    @field_serializer('evaluated_at', 'created_at', 'updated_at')
    def serialize_timestamps(self, value: Optional[datetime], _info):
        return value.isoformat() if value else None


class SubmissionCreatedResponse(SubmissionResponse):
    message: str


class MessageCreate(BaseModel):
    content: str = ""


class MessageAuthor(BaseModel):
    id: int
    name: str
    is_admin: bool

    model_config = ConfigDict(from_attributes=True)


class SubmissionMessageResponse(BaseModel):
    id: int
    submission_id: int
    content: str
    is_from_admin: bool
    author: MessageAuthor
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)

    @field_serializer('created_at')
    def serialize_created_at(self, value: datetime, _info):
        return value.isoformat() if value else None


@router.get("/", response_model=List[SubmissionResponse])
async def list_my_submissions(
    competition_id: Optional[int] = Query(default=None),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """List the current user's submissions, newest first"""
    return submission_service.list_user_submissions(db, current_user.id, competition_id)


@router.post("/", response_model=SubmissionCreatedResponse, status_code=201)
def create_submission(
    payload: SubmissionCreate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Submit a Google Drive link to the current interval"""
    submission = submission_service.create_submission(
        db,
        current_user,
        competition_id=payload.competition_id,
        file_url=payload.file_url,
        title=payload.title,
        description=payload.description,
    )
    message = (
        "Submission created successfully!"
        if submission.is_access_verified
        else "Submission created but access verification failed. Please check your Google Drive sharing settings."
    )
    response = SubmissionResponse.model_validate(submission).model_dump()
    return SubmissionCreatedResponse(**response, message=message)


@router.get("/{submission_id}", response_model=SubmissionResponse)
async def get_my_submission(
    submission_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return submission_service.get_user_submission(db, submission_id, current_user)


@router.get("/{submission_id}/messages", response_model=List[SubmissionMessageResponse])
async def list_messages(
    submission_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Message thread for a submission (owner or admin), oldest first"""
    return submission_service.list_messages(db, submission_id, current_user)


@router.post("/{submission_id}/messages", response_model=SubmissionMessageResponse, status_code=201)
async def post_message(
    submission_id: int,
    payload: MessageCreate,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Append a message; a judge's message also emails the participant"""
    message = submission_service.add_message(db, submission_id, current_user, payload.content)

    if message.is_from_admin:
        owner = message.submission.user
        if owner.id != current_user.id:
            background_tasks.add_task(
                email_service.send_submission_update_email,
                owner.email,
                owner.name,
                "New comment on your submission",
                f"A judge commented: {message.content}",
            )
    return message
