import logging
from datetime import datetime
from typing import List, Optional
from fastapi import APIRouter, BackgroundTasks, Depends, Query, status
from pydantic import BaseModel, ConfigDict, field_serializer
from sqlalchemy.orm import Session
from competition_portal.core.database import get_db
from competition_portal.core.errors import ValidationError
from competition_portal.core.scheduler import get_scheduler_status
from competition_portal.api.dependencies import get_current_admin, verify_cleanup_token
from competition_portal.api.routes.competitions import CompetitionCreate, CompetitionResponse
from competition_portal.api.routes.submissions import SubmissionResponse
from competition_portal.models import SubmissionStatus, User
from competition_portal.services import user_service
from competition_portal.services.competition_service import competition_service
from competition_portal.services.email_service import Recipient, email_service
from competition_portal.services.settings_service import settings_service
from competition_portal.services.submission_service import submission_service
from competition_portal.services.token_service import token_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"])


class AdminSettingsResponse(BaseModel):
    current_interval: int
    is_submissions_open: bool
    max_submissions_per_interval: int
    version: int

    model_config = ConfigDict(from_attributes=True)


class AdminSettingsUpdate(BaseModel):
    current_interval: Optional[int] = None
    is_submissions_open: Optional[bool] = None
    max_submissions_per_interval: Optional[int] = None
    # Version the admin's form was loaded with; mismatch -> 409
    expected_version: Optional[int] = None


class AdvanceIntervalRequest(BaseModel):
    expected_version: Optional[int] = None


class SubmitterInfo(BaseModel):
    id: int
    name: str
    email: str
    phone: Optional[str]
    institution: Optional[str]
    is_active: bool
    is_email_verified: bool

    model_config = ConfigDict(from_attributes=True)


class AdminSubmissionResponse(SubmissionResponse):
    user_id: int
    evaluated_by: Optional[str]
    user: SubmitterInfo


class AdminSubmissionList(BaseModel):
    items: List[AdminSubmissionResponse]
    total: int


class ScoreRequest(BaseModel):
    # Range checks (0-10) happen in the service so they report as 400
    creativity_score: float
    technical_score: float
    ai_tool_usage_score: float
    adherence_score: float
    impact_score: float
    status: Optional[SubmissionStatus] = None
    judge_comments: Optional[str] = None
    evaluated_by: Optional[str] = None


class SubmissionUpdate(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    file_url: Optional[str] = None
    status: Optional[SubmissionStatus] = None
    judge_comments: Optional[str] = None
    evaluated_by: Optional[str] = None
    is_disqualified: Optional[bool] = None
    disqualification_reason: Optional[str] = None
    is_access_verified: Optional[bool] = None
    access_check_error: Optional[str] = None


class AdminUserResponse(BaseModel):
    id: int
    name: str
    email: str
    phone: Optional[str]
    institution: Optional[str]
    is_active: bool
    is_email_verified: bool
    is_admin: bool
    created_at: Optional[datetime]

    model_config = ConfigDict(from_attributes=True)

    @field_serializer('created_at')
    def serialize_created_at(self, value: Optional[datetime], _info):
        return value.isoformat() if value else None


class AdminUserList(BaseModel):
    items: List[AdminUserResponse]
    total: int


class CompetitionUpdate(BaseModel):
    slug: Optional[str] = None
    title: Optional[str] = None
    description: Optional[str] = None
    is_weekly: Optional[bool] = None
    is_active: Optional[bool] = None


class InboxParticipant(BaseModel):
    id: int
    name: str
    email: str
    institution: Optional[str]

    model_config = ConfigDict(from_attributes=True)


class InboxMessage(BaseModel):
    id: int
    content: str
    created_at: datetime
    author: InboxParticipant

    model_config = ConfigDict(from_attributes=True)

    @field_serializer('created_at')
    def serialize_created_at(self, value: datetime, _info):
        return value.isoformat() if value else None


class InboxEntry(BaseModel):
    id: int
    title: Optional[str]
    competition_id: int
    interval: int
    file_url: str
    description: Optional[str]
    user: InboxParticipant
    latest_message: InboxMessage


class BulkVerifyRequest(BaseModel):
    user_ids: Optional[List[int]] = None


class CampaignRequest(BaseModel):
    subject: str
    html_body: str
    text_body: Optional[str] = None
    only_unverified: bool = False


# Settings / interval gate

@router.get("/settings", response_model=AdminSettingsResponse)
async def get_settings(
    admin: User = Depends(get_current_admin),
    db: Session = Depends(get_db)
):
    return settings_service.get_settings(db)


@router.post("/settings", response_model=AdminSettingsResponse)
async def update_settings(
    payload: AdminSettingsUpdate,
    admin: User = Depends(get_current_admin),
    db: Session = Depends(get_db)
):
    """Partial update of the submission gate"""
    return settings_service.update_settings(
        db,
        current_interval=payload.current_interval,
        is_submissions_open=payload.is_submissions_open,
        max_submissions_per_interval=payload.max_submissions_per_interval,
        expected_version=payload.expected_version,
    )


@router.post("/settings/advance-interval", response_model=AdminSettingsResponse)
async def advance_interval(
    payload: AdvanceIntervalRequest | None = None,
    admin: User = Depends(get_current_admin),
    db: Session = Depends(get_db)
):
    """Move submissions on to the next interval (current + 1)"""
    expected_version = payload.expected_version if payload else None
    return settings_service.advance_interval(db, expected_version=expected_version)


# Submissions

@router.get("/submissions", response_model=AdminSubmissionList)
async def list_submissions(
    competition_id: Optional[int] = Query(default=None),
    interval: Optional[int] = Query(default=None),
    status_filter: Optional[SubmissionStatus] = Query(default=None, alias="status"),
    skip: int = Query(default=0, ge=0),
    limit: int = Query(default=50, ge=1, le=500),
    admin: User = Depends(get_current_admin),
    db: Session = Depends(get_db)
):
    items, total = submission_service.list_submissions(
        db, competition_id=competition_id, interval=interval, status=status_filter, skip=skip, limit=limit)
    return AdminSubmissionList(
        items=[AdminSubmissionResponse.model_validate(item) for item in items],
        total=total,
    )


@router.get("/submissions/{submission_id}", response_model=AdminSubmissionResponse)
async def get_submission(
    submission_id: int,
    admin: User = Depends(get_current_admin),
    db: Session = Depends(get_db)
):
    return submission_service.get_submission(db, submission_id)


@router.post("/submissions/{submission_id}/score", response_model=AdminSubmissionResponse)
async def score_submission(
    submission_id: int,
    payload: ScoreRequest,
    admin: User = Depends(get_current_admin),
    db: Session = Depends(get_db)
):
    """Score the five criteria; overall score is their mean"""
    scores = payload.model_dump(include={
        "creativity_score", "technical_score", "ai_tool_usage_score", "adherence_score", "impact_score"})
    return submission_service.score_submission(
        db,
        submission_id,
        scores,
        admin,
        status=payload.status,
        judge_comments=payload.judge_comments,
        evaluated_by=payload.evaluated_by,
    )


@router.patch("/submissions/{submission_id}", response_model=AdminSubmissionResponse)
async def update_submission(
    submission_id: int,
    payload: SubmissionUpdate,
    admin: User = Depends(get_current_admin),
    db: Session = Depends(get_db)
):
    """Edit status, flags or content; only fields present in the body change"""
    changes = payload.model_dump(exclude_unset=True)
    if not changes:
        raise ValidationError("No fields to update")
    return submission_service.update_submission(db, submission_id, changes, admin)


@router.delete("/submissions/{submission_id}")
async def delete_submission(
    submission_id: int,
    force_delete: bool = Query(default=False),
    admin: User = Depends(get_current_admin),
    db: Session = Depends(get_db)
):
    """Disqualify a submission, or remove it permanently with force_delete=true"""
    submission = submission_service.delete_submission(db, submission_id, admin, force=force_delete)
    if submission is None:
        return {"success": True, "message": "Submission permanently deleted", "id": submission_id}
    return {
        "success": True,
        "message": "Submission disqualified and removed from active submissions",
        "submission": AdminSubmissionResponse.model_validate(submission).model_dump(),
    }


# Users

@router.get("/users", response_model=AdminUserList)
async def list_users(
    search: Optional[str] = Query(default=None),
    is_active: Optional[bool] = Query(default=None),
    is_email_verified: Optional[bool] = Query(default=None),
    institution: Optional[str] = Query(default=None),
    skip: int = Query(default=0, ge=0),
    limit: int = Query(default=100, ge=1, le=1000),
    admin: User = Depends(get_current_admin),
    db: Session = Depends(get_db)
):
    """Search name/email and filter by status or institution"""
    users, total = user_service.list_users(
        db,
        search=search,
        is_active=is_active,
        is_email_verified=is_email_verified,
        institution=institution,
        skip=skip,
        limit=limit,
    )
    return AdminUserList(items=[AdminUserResponse.model_validate(user) for user in users], total=total)


@router.post("/users/{user_id}/activate", response_model=AdminUserResponse)
async def activate_user(
    user_id: int,
    admin: User = Depends(get_current_admin),
    db: Session = Depends(get_db)
):
    return user_service.set_user_active(db, user_id, True, admin)


@router.post("/users/{user_id}/deactivate", response_model=AdminUserResponse)
async def deactivate_user(
    user_id: int,
    admin: User = Depends(get_current_admin),
    db: Session = Depends(get_db)
):
    return user_service.set_user_active(db, user_id, False, admin)


@router.post("/users/bulk-verify-email")
async def bulk_verify_email(
    payload: BulkVerifyRequest,
    admin: User = Depends(get_current_admin),
    db: Session = Depends(get_db)
):
    updated = user_service.bulk_verify_email(db, payload.user_ids)
    return {"success": True, "message": f"Verified {updated} users", "updated": updated}


# Competitions

@router.post("/competitions", response_model=CompetitionResponse, status_code=status.HTTP_201_CREATED)
async def create_competition(
    payload: CompetitionCreate,
    admin: User = Depends(get_current_admin),
    db: Session = Depends(get_db)
):
    return competition_service.create_competition(db, payload.model_dump(), admin)


@router.put("/competitions/{competition_id}", response_model=CompetitionResponse)
async def update_competition(
    competition_id: int,
    payload: CompetitionUpdate,
    admin: User = Depends(get_current_admin),
    db: Session = Depends(get_db)
):
    """Partial edit; only fields present in the body change"""
    changes = payload.model_dump(exclude_unset=True)
    if not changes:
        raise ValidationError("No fields to update")
    return competition_service.update_competition(db, competition_id, changes, admin)


@router.delete("/competitions/{competition_id}")
async def delete_competition(
    competition_id: int,
    admin: User = Depends(get_current_admin),
    db: Session = Depends(get_db)
):
    competition_service.delete_competition(db, competition_id, admin)
    return {"success": True, "message": "Competition deleted", "id": competition_id}


# Messages

@router.get("/messages", response_model=List[InboxEntry])
async def message_inbox(
    limit: int = Query(default=100, ge=1, le=500),
    admin: User = Depends(get_current_admin),
    db: Session = Depends(get_db)
):
    """Submissions with participant messages, latest conversation first"""
    return [
        InboxEntry(
            id=submission.id,
            title=submission.title,
            competition_id=submission.competition_id,
            interval=submission.interval,
            file_url=submission.file_url,
            description=submission.description,
            user=InboxParticipant.model_validate(submission.user),
            latest_message=InboxMessage.model_validate(message),
        )
        for submission, message in submission_service.list_inbox(db, limit=limit)
    ]


# Monitoring / email

@router.get("/stats")
async def get_stats(
    admin: User = Depends(get_current_admin),
    db: Session = Depends(get_db)
):
    return submission_service.get_stats(db)


@router.get("/scheduler")
async def scheduler_status(admin: User = Depends(get_current_admin)):
    return get_scheduler_status()


@router.post("/emails/campaign", status_code=status.HTTP_202_ACCEPTED)
async def send_campaign(
    payload: CampaignRequest,
    background_tasks: BackgroundTasks,
    admin: User = Depends(get_current_admin),
    db: Session = Depends(get_db)
):
    """Queue a bulk email to active users (or to unverified users only)"""
    query = db.query(User)
    if payload.only_unverified:
        query = query.filter(User.is_email_verified.is_(False))
    else:
        query = query.filter(User.is_active.is_(True))
    recipients = [Recipient(email=user.email, name=user.name) for user in query.all()]

    background_tasks.add_task(
        email_service.send_bulk, recipients, payload.subject, payload.html_body, payload.text_body)
    logger.info(f"Admin {admin.id} queued campaign '{payload.subject}' to {len(recipients)} recipients")
    return {"success": True, "message": "Campaign queued", "recipients": len(recipients)}


# Token maintenance (shared-secret auth for cron callers)

CLEANUP_ACTIONS = {
    "expired": ("Expired tokens cleaned up successfully", token_service.cleanup_expired_tokens),
    "used": ("Old used tokens cleaned up successfully", token_service.cleanup_used_tokens),
    "full": ("Full token cleanup completed successfully", token_service.perform_full_cleanup),
    "stats": ("Token statistics retrieved successfully", token_service.get_token_statistics),
}


@router.api_route("/cleanup-tokens", methods=["GET", "POST"], dependencies=[Depends(verify_cleanup_token)])
async def cleanup_tokens(
    action: Optional[str] = Query(default=None),
    db: Session = Depends(get_db)
):
    if action not in CLEANUP_ACTIONS:
        raise ValidationError("Invalid action. Use: expired, used, full, or stats")
    message, operation = CLEANUP_ACTIONS[action]
    return {"success": True, "message": message, "data": operation(db)}
