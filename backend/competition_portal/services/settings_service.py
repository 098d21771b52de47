"""
Interval / settings gate.

AdminSettings is the single source of truth for the current interval. It is
read from the database at the start of every request and never cached, and
writes go through the ORM version counter so two admins editing at once
cannot silently overwrite each other.
"""

import logging
from typing import Optional
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError
from competition_portal.core.errors import (
    ConflictError,
    SubmissionLimitError,
    SubmissionsClosedError,
    ValidationError,
)
from competition_portal.models import AdminSettings, Competition, Submission
from competition_portal.models.admin_settings import (
    DEFAULT_CURRENT_INTERVAL,
    DEFAULT_MAX_SUBMISSIONS_PER_INTERVAL,
    DEFAULT_SUBMISSIONS_OPEN,
    SETTINGS_ROW_ID,
)

logger = logging.getLogger(__name__)

SETTINGS_CHANGED_MESSAGE = "Settings were changed by someone else. Reload and try again."


class SettingsService:

    @staticmethod
    def get_settings(db: Session) -> AdminSettings:
        """Return the settings row, creating it with defaults on first use."""
        current = db.query(AdminSettings).filter(AdminSettings.id == SETTINGS_ROW_ID).first()
        if current is None:
            current = SettingsService._create_defaults(db)
        return current

    @staticmethod
    def _create_defaults(db: Session) -> AdminSettings:
        # Fixed primary key: a concurrent first request loses on the insert
        current = AdminSettings(
            id=SETTINGS_ROW_ID,
            current_interval=DEFAULT_CURRENT_INTERVAL,
            is_submissions_open=DEFAULT_SUBMISSIONS_OPEN,
            max_submissions_per_interval=DEFAULT_MAX_SUBMISSIONS_PER_INTERVAL,
        )
        db.add(current)
        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            logger.info("Admin settings were created concurrently; using the stored row")
            return db.query(AdminSettings).filter(AdminSettings.id == SETTINGS_ROW_ID).one()
        db.refresh(current)
        logger.info("Created default admin settings")
        return current

    @staticmethod
    def _check_version(current: AdminSettings, expected_version: Optional[int]) -> None:
        if expected_version is not None and expected_version != current.version:
            raise ConflictError(SETTINGS_CHANGED_MESSAGE)

    @staticmethod
    def _commit(db: Session) -> None:
        try:
            db.commit()
        except StaleDataError:
            db.rollback()
            raise ConflictError(SETTINGS_CHANGED_MESSAGE)

    @staticmethod
    def update_settings(
        db: Session,
        current_interval: Optional[int] = None,
        is_submissions_open: Optional[bool] = None,
        max_submissions_per_interval: Optional[int] = None,
        expected_version: Optional[int] = None,
    ) -> AdminSettings:
        """Partial update; omitted fields keep their stored value."""
        if current_interval is not None and current_interval < 1:
            raise ValidationError("Invalid current interval")
        if max_submissions_per_interval is not None and max_submissions_per_interval < 1:
            raise ValidationError("Invalid max submissions per interval")

        current = SettingsService.get_settings(db)
        SettingsService._check_version(current, expected_version)

        if current_interval is not None:
            current.current_interval = current_interval
        if is_submissions_open is not None:
            current.is_submissions_open = is_submissions_open
        if max_submissions_per_interval is not None:
            current.max_submissions_per_interval = max_submissions_per_interval

        SettingsService._commit(db)
        db.refresh(current)
        logger.info(
            f"Admin settings updated: interval={current.current_interval} "
            f"open={current.is_submissions_open} max={current.max_submissions_per_interval}"
        )
        return current

    @staticmethod
    def advance_interval(db: Session, expected_version: Optional[int] = None) -> AdminSettings:
        """Move to the next interval. There is no automatic advancement."""
        current = SettingsService.get_settings(db)
        SettingsService._check_version(current, expected_version)

        previous = current.current_interval
        current.current_interval = previous + 1
        SettingsService._commit(db)
        db.refresh(current)
        logger.info(f"Advanced submission interval {previous} -> {current.current_interval}")
        return current

    @staticmethod
    def count_interval_submissions(db: Session, user_id: int, competition_id: int, interval: int) -> int:
        return (
            db.query(func.count(Submission.id))
            .filter(
                Submission.user_id == user_id,
                Submission.competition_id == competition_id,
                Submission.interval == interval,
            )
            .scalar()
        )

    @staticmethod
    def ensure_submission_allowed(
        db: Session, user_id: int, competition: Competition, current: AdminSettings
    ) -> None:
        """
        Raise unless the user may submit to this competition right now.

        The open/closed gate applies to every competition. The per-interval cap
        applies to weekly competitions only.
        """
        if not current.is_submissions_open:
            raise SubmissionsClosedError("Submissions are currently closed")

        if not competition.is_weekly:
            return

        existing = SettingsService.count_interval_submissions(
            db, user_id, competition.id, current.current_interval)
        if existing >= current.max_submissions_per_interval:
            raise SubmissionLimitError(
                f"Maximum {current.max_submissions_per_interval} submissions allowed per interval"
            )


settings_service = SettingsService()
