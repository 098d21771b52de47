"""
Submission intake, judging and the per-submission message thread.

Status lifecycle: created PENDING; admins may move it to UNDER_REVIEW and
scoring sets EVALUATED (or WINNER / FINALIST / REJECTED when chosen). Any
status can be overwritten by a later admin edit. Access-check and
disqualification flags never change the status by themselves.
"""

import logging
import math
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, List, Optional, Tuple
from sqlalchemy import func
from sqlalchemy.orm import Session, joinedload
from competition_portal.core.database import utcnow
from competition_portal.core.errors import NotFoundError, PermissionDeniedError, ValidationError
from competition_portal.models import Competition, Submission, SubmissionMessage, SubmissionStatus, User
from competition_portal.services.drive_access import check_drive_access, is_valid_google_drive_url
from competition_portal.services.settings_service import settings_service

logger = logging.getLogger(__name__)

SCORE_FIELDS = (
    "creativity_score",
    "technical_score",
    "ai_tool_usage_score",
    "adherence_score",
    "impact_score",
)
MIN_SCORE = 0
MAX_SCORE = 10
SCORING_STATUSES = {
    SubmissionStatus.EVALUATED,
    SubmissionStatus.WINNER,
    SubmissionStatus.FINALIST,
    SubmissionStatus.REJECTED,
}
SUBMISSION_NOT_FOUND_MESSAGE = "Submission not found"

# Message moderation: case-insensitive substring match
BLOCKED_WORDS = [
    "abuse", "harass", "hate", "kill", "suicide", "sexual", "porn", "nude",
    "fuck", "shit", "bakchod", "chutiya", "harami", "gaand", "madarchod", "bhosdi",
]


def calculate_overall_score(scores: Dict[str, float]) -> float:
    """Arithmetic mean of the five criteria, rounded half-up to one decimal."""
    total = sum(Decimal(str(scores[field])) for field in SCORE_FIELDS)
    mean = total / Decimal(len(SCORE_FIELDS))
    return float(mean.quantize(Decimal("0.1"), rounding=ROUND_HALF_UP))


def validate_scores(scores: Dict[str, Optional[float]]) -> None:
    for field in SCORE_FIELDS:
        value = scores.get(field)
        label = field.replace("_", " ").capitalize()
        if value is None:
            raise ValidationError(f"{label} is required")
        if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value):
            raise ValidationError(f"{label} must be a number between {MIN_SCORE} and {MAX_SCORE}")
        if value < MIN_SCORE or value > MAX_SCORE:
            raise ValidationError(f"{label} must be a number between {MIN_SCORE} and {MAX_SCORE}")


def find_blocked_words(text: str) -> List[str]:
    normalized = text.lower()
    return [word for word in BLOCKED_WORDS if word in normalized]


class SubmissionService:

    @staticmethod
    def get_submission(db: Session, submission_id: int) -> Submission:
        submission = (
            db.query(Submission)
            .options(joinedload(Submission.user))
            .filter(Submission.id == submission_id)
            .first()
        )
        if submission is None:
            raise NotFoundError(SUBMISSION_NOT_FOUND_MESSAGE)
        return submission

    @staticmethod
    def get_user_submission(db: Session, submission_id: int, user: User) -> Submission:
        submission = SubmissionService.get_submission(db, submission_id)
        if submission.user_id != user.id and not user.is_admin:
            # Same answer as a missing row: ids of other users' work stay private
            raise NotFoundError(SUBMISSION_NOT_FOUND_MESSAGE)
        return submission

    @staticmethod
    def list_user_submissions(db: Session, user_id: int, competition_id: Optional[int] = None) -> List[Submission]:
        query = db.query(Submission).filter(Submission.user_id == user_id)
        if competition_id is not None:
            query = query.filter(Submission.competition_id == competition_id)
        return query.order_by(Submission.created_at.desc(), Submission.id.desc()).all()

    @staticmethod
    def create_submission(
        db: Session,
        user: User,
        competition_id: int,
        file_url: str,
        title: Optional[str] = None,
        description: Optional[str] = None,
    ) -> Submission:
        """
        Accept a new entry for the current interval.

        Gate order: valid link, known competition, submissions open, per-interval cap.
        The accessibility check only records its outcome on the row.
        """
        file_url = (file_url or "").strip()
        if not file_url:
            raise ValidationError("Competition ID and file URL are required")
        if not is_valid_google_drive_url(file_url):
            raise ValidationError("Invalid Google Drive URL format")

        competition = db.query(Competition).filter(Competition.id == competition_id).first()
        if competition is None or not competition.is_active:
            raise NotFoundError("Competition not found")

        # Fresh read each time; never a cached copy
        current = settings_service.get_settings(db)
        settings_service.ensure_submission_allowed(db, user.id, competition, current)

        access = check_drive_access(file_url)
        submission = Submission(
            user_id=user.id,
            competition_id=competition.id,
            interval=current.current_interval,
            file_url=file_url,
            title=title.strip() if title else None,
            description=description or None,
            status=SubmissionStatus.PENDING,
            is_access_verified=access.success,
            access_check_error=access.error,
        )
        db.add(submission)
        db.commit()
        db.refresh(submission)
        logger.info(
            f"User {user.id} submitted {submission.id} to competition {competition.id} "
            f"interval {submission.interval} (access_verified={access.success})"
        )
        return submission

    @staticmethod
    def score_submission(
        db: Session,
        submission_id: int,
        scores: Dict[str, float],
        admin: User,
        status: Optional[SubmissionStatus] = None,
        judge_comments: Optional[str] = None,
        evaluated_by: Optional[str] = None,
    ) -> Submission:
        """Record the five criterion scores and derive the overall score."""
        validate_scores(scores)
        status = status or SubmissionStatus.EVALUATED
        if status not in SCORING_STATUSES:
            raise ValidationError("Scoring status must be EVALUATED, WINNER, FINALIST or REJECTED")

        submission = SubmissionService.get_submission(db, submission_id)
        for field in SCORE_FIELDS:
            setattr(submission, field, float(scores[field]))
        submission.overall_score = calculate_overall_score(scores)
        submission.status = status
        if judge_comments is not None:
            submission.judge_comments = judge_comments
        submission.evaluated_by = evaluated_by or admin.name or f"Admin {admin.id}"
        submission.evaluated_at = utcnow()
        db.commit()
        db.refresh(submission)
        logger.info(
            f"Admin {admin.id} scored submission {submission.id}: "
            f"overall={submission.overall_score} status={submission.status.value}"
        )
        return submission

    @staticmethod
    def update_submission(db: Session, submission_id: int, changes: Dict[str, object], admin: User) -> Submission:
        """
        Apply an admin edit of non-score fields.

        Keys absent from ``changes`` are left untouched.
        """
        allowed = {
            "title", "description", "file_url", "status", "judge_comments", "evaluated_by",
            "is_disqualified", "disqualification_reason", "is_access_verified", "access_check_error",
        }
        unknown = set(changes) - allowed
        if unknown:
            raise ValidationError(f"Fields cannot be edited: {', '.join(sorted(unknown))}")
        for field in ("status", "is_disqualified", "is_access_verified"):
            if field in changes and changes[field] is None:
                raise ValidationError(f"{field} cannot be null")
        if "file_url" in changes and not is_valid_google_drive_url(str(changes["file_url"] or "")):
            raise ValidationError("Invalid Google Drive URL format")

        submission = SubmissionService.get_submission(db, submission_id)
        for field, value in changes.items():
            setattr(submission, field, value)
        if changes.get("status") == SubmissionStatus.EVALUATED:
            submission.evaluated_at = utcnow()
            submission.evaluated_by = changes.get("evaluated_by") or admin.name or f"Admin {admin.id}"
        db.commit()
        db.refresh(submission)
        logger.info(f"Admin {admin.id} updated submission {submission.id}: {sorted(changes)}")
        return submission

    @staticmethod
    def delete_submission(db: Session, submission_id: int, admin: User, force: bool = False) -> Optional[Submission]:
        """
        Soft delete (disqualify and reject) by default; ``force`` removes the row.

        Returns the updated submission, or None after a hard delete.
        """
        submission = SubmissionService.get_submission(db, submission_id)
        if force:
            db.delete(submission)
            db.commit()
            logger.info(f"Admin {admin.id} permanently deleted submission {submission_id}")
            return None

        submission.is_disqualified = True
        submission.disqualification_reason = "Removed by administrator"
        submission.status = SubmissionStatus.REJECTED
        db.commit()
        db.refresh(submission)
        logger.info(f"Admin {admin.id} disqualified submission {submission_id}")
        return submission

    @staticmethod
    def list_submissions(
        db: Session,
        competition_id: Optional[int] = None,
        interval: Optional[int] = None,
        status: Optional[SubmissionStatus] = None,
        skip: int = 0,
        limit: int = 50,
    ) -> tuple[List[Submission], int]:
        query = db.query(Submission)
        if competition_id is not None:
            query = query.filter(Submission.competition_id == competition_id)
        if interval is not None:
            query = query.filter(Submission.interval == interval)
        if status is not None:
            query = query.filter(Submission.status == status)
        total = query.count()
        items = (
            query.options(joinedload(Submission.user))
            .order_by(Submission.created_at.desc(), Submission.id.desc())
            .offset(skip)
            .limit(limit)
            .all()
        )
        return items, total

    @staticmethod
    def list_messages(db: Session, submission_id: int, user: User) -> List[SubmissionMessage]:
        SubmissionService._ensure_thread_access(db, submission_id, user)
        return (
            db.query(SubmissionMessage)
            .options(joinedload(SubmissionMessage.author))
            .filter(SubmissionMessage.submission_id == submission_id)
            .order_by(SubmissionMessage.created_at.asc(), SubmissionMessage.id.asc())
            .all()
        )

    @staticmethod
    def add_message(db: Session, submission_id: int, author: User, content: str) -> SubmissionMessage:
        submission = SubmissionService._ensure_thread_access(db, submission_id, author)
        content = (content or "").strip()
        if not content:
            raise ValidationError("Content is required")
        blocked = find_blocked_words(content)
        if blocked:
            raise ValidationError(f"Your message contains blocked words: {', '.join(blocked)}")

        message = SubmissionMessage(
            submission_id=submission.id,
            author_id=author.id,
            content=content,
            is_from_admin=bool(author.is_admin),
        )
        db.add(message)
        db.commit()
        db.refresh(message)
        logger.info(f"User {author.id} posted message {message.id} on submission {submission.id}")
        return message

    @staticmethod
    def list_inbox(db: Session, limit: int = 100) -> List[Tuple[Submission, SubmissionMessage]]:
        """
        Submissions with at least one participant message, each paired with
        its latest participant message, most recent conversation first.
        """
        latest = (
            db.query(
                SubmissionMessage.submission_id,
                func.max(SubmissionMessage.id).label("message_id"),
            )
            .filter(SubmissionMessage.is_from_admin.is_(False))
            .group_by(SubmissionMessage.submission_id)
            .subquery()
        )
        return (
            db.query(Submission, SubmissionMessage)
            .join(latest, latest.c.submission_id == Submission.id)
            .join(SubmissionMessage, SubmissionMessage.id == latest.c.message_id)
            .order_by(SubmissionMessage.created_at.desc(), SubmissionMessage.id.desc())
            .limit(limit)
            .all()
        )

    @staticmethod
    def _ensure_thread_access(db: Session, submission_id: int, user: User) -> Submission:
        submission = SubmissionService.get_submission(db, submission_id)
        if submission.user_id != user.id and not user.is_admin:
            raise PermissionDeniedError("Access denied")
        return submission

    @staticmethod
    def get_stats(db: Session) -> dict:
        current = settings_service.get_settings(db)
        by_status = {status.value: 0 for status in SubmissionStatus}
        for status, count in db.query(Submission.status, func.count(Submission.id)).group_by(Submission.status):
            by_status[status.value] = count

        average = db.query(func.avg(Submission.overall_score)).filter(
            Submission.overall_score.isnot(None)).scalar()
        return {
            "total_users": db.query(func.count(User.id)).scalar(),
            "verified_users": db.query(func.count(User.id)).filter(User.is_email_verified.is_(True)).scalar(),
            "active_users": db.query(func.count(User.id)).filter(User.is_active.is_(True)).scalar(),
            "total_submissions": sum(by_status.values()),
            "submissions_by_status": by_status,
            "current_interval": current.current_interval,
            "submissions_this_interval": db.query(func.count(Submission.id)).filter(
                Submission.interval == current.current_interval).scalar(),
            "disqualified_submissions": db.query(func.count(Submission.id)).filter(
                Submission.is_disqualified.is_(True)).scalar(),
            "average_score": round(float(average), 1) if average is not None else None,
        }


submission_service = SubmissionService()
