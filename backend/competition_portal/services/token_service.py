"""
Issue, validate, consume and purge short-lived credential tokens.

Every call round-trips to the database; nothing is cached in memory. Check
and consume are separate statements, so two concurrent redemptions of the
same token can both pass the checks (the database has the final word on
the update).
"""

import logging
import math
from datetime import timedelta
from typing import Dict, Tuple
from sqlalchemy import func
from sqlalchemy.orm import Session
from competition_portal.core.config import settings
from competition_portal.core.database import utcnow, as_utc
from competition_portal.core.errors import (
    AlreadyUsedError,
    AlreadyVerifiedError,
    ExpiredError,
    InvalidTokenError,
)
from competition_portal.core.security import generate_secure_token
from competition_portal.models import PasswordResetToken, TokenType, VerificationToken

logger = logging.getLogger(__name__)


class TokenService:
    """Token lifecycle operations for verification and password reset tokens"""

    @staticmethod
    def create_verification_token(db: Session, user_id: int) -> str:
        """
        Issue a new email verification token valid for 24 hours.

        Existing live tokens are left untouched; any of them still verifies.
        """
        token = generate_secure_token()
        db.add(VerificationToken(
            token=token,
            user_id=user_id,
            type=TokenType.EMAIL_VERIFICATION,
            expires_at=utcnow() + timedelta(hours=settings.VERIFICATION_TOKEN_EXPIRE_HOURS),
        ))
        db.commit()
        logger.info(f"Issued verification token for user {user_id}")
        return token

    @staticmethod
    def create_password_reset_token(db: Session, user_id: int) -> str:
        """
        Issue a new password reset token valid for 1 hour.

        All unused, unexpired reset tokens of the user are marked used first,
        so at most one reset token is valid at a time.
        """
        now = utcnow()
        invalidated = (
            db.query(PasswordResetToken)
            .filter(
                PasswordResetToken.user_id == user_id,
                PasswordResetToken.used.is_(False),
                PasswordResetToken.expires_at > now,
            )
            .update({PasswordResetToken.used: True}, synchronize_session=False)
        )

        token = generate_secure_token()
        db.add(PasswordResetToken(
            token=token,
            user_id=user_id,
            expires_at=now + timedelta(minutes=settings.PASSWORD_RESET_TOKEN_EXPIRE_MINUTES),
        ))
        db.commit()
        logger.info(f"Issued password reset token for user {user_id} (invalidated {invalidated} previous)")
        return token

    @staticmethod
    def verify_email_token(db: Session, token: str) -> int:
        """
        Redeem an email verification token and return the owning user id.

        Checks run in a fixed order: existence, used, expired, already verified.
        On success the token is marked used and the user becomes verified and active.
        """
        record = db.query(VerificationToken).filter(VerificationToken.token == token).first()
        if record is None:
            raise InvalidTokenError("Invalid verification token")
        if record.used:
            raise AlreadyUsedError("Verification token has already been used")
        if as_utc(record.expires_at) < utcnow():
            raise ExpiredError("Verification token has expired")

        user = record.user
        if user.is_email_verified:
            raise AlreadyVerifiedError("Email is already verified")

        record.used = True
        user.is_email_verified = True
        user.is_active = True
        db.commit()
        logger.info(f"Email verified for user {user.id}")
        return user.id

    @staticmethod
    def verify_password_reset_token(db: Session, token: str) -> int:
        """
        Validate a password reset token without consuming it.

        The caller marks it used once the password has actually changed.
        """
        record = db.query(PasswordResetToken).filter(PasswordResetToken.token == token).first()
        if record is None:
            raise InvalidTokenError("Invalid reset token")
        if record.used:
            raise AlreadyUsedError("Reset token has already been used")
        if as_utc(record.expires_at) < utcnow():
            raise ExpiredError("Reset token has expired")
        return record.user_id

    @staticmethod
    def mark_password_reset_token_as_used(db: Session, token: str) -> None:
        db.query(PasswordResetToken).filter(
            PasswordResetToken.token == token
        ).update({PasswordResetToken.used: True}, synchronize_session=False)
        db.commit()

    @staticmethod
    def can_resend_verification_email(db: Session, user_id: int) -> Tuple[bool, int]:
        """
        Throttle verification resends to one per cooldown window.

        Returns ``(can_resend, wait_time_seconds)``; wait time is 0 when allowed.
        """
        last_token = (
            db.query(VerificationToken)
            .filter(
                VerificationToken.user_id == user_id,
                VerificationToken.type == TokenType.EMAIL_VERIFICATION,
            )
            .order_by(VerificationToken.created_at.desc(), VerificationToken.id.desc())
            .first()
        )
        if last_token is None:
            return True, 0

        available_at = as_utc(last_token.created_at) + timedelta(
            seconds=settings.VERIFICATION_RESEND_COOLDOWN_SECONDS)
        remaining = (available_at - utcnow()).total_seconds()
        if remaining > 0:
            return False, math.ceil(remaining)
        return True, 0

    @staticmethod
    def cleanup_expired_tokens(db: Session) -> Dict[str, int]:
        """Delete every token past its expiry, used or not."""
        now = utcnow()
        deleted_verification = (
            db.query(VerificationToken)
            .filter(VerificationToken.expires_at < now)
            .delete(synchronize_session=False)
        )
        deleted_reset = (
            db.query(PasswordResetToken)
            .filter(PasswordResetToken.expires_at < now)
            .delete(synchronize_session=False)
        )
        db.commit()

        result = {
            "deleted_verification_tokens": deleted_verification,
            "deleted_password_reset_tokens": deleted_reset,
            "total_deleted": deleted_verification + deleted_reset,
        }
        logger.info(f"Expired token cleanup completed: {result}")
        return result

    @staticmethod
    def cleanup_used_tokens(db: Session) -> Dict[str, int]:
        """Delete used tokens created more than the retention window ago."""
        cutoff = utcnow() - timedelta(days=settings.USED_TOKEN_RETENTION_DAYS)
        deleted_verification = (
            db.query(VerificationToken)
            .filter(VerificationToken.used.is_(True), VerificationToken.created_at < cutoff)
            .delete(synchronize_session=False)
        )
        deleted_reset = (
            db.query(PasswordResetToken)
            .filter(PasswordResetToken.used.is_(True), PasswordResetToken.created_at < cutoff)
            .delete(synchronize_session=False)
        )
        db.commit()

        result = {
            "deleted_verification_tokens": deleted_verification,
            "deleted_password_reset_tokens": deleted_reset,
            "total_deleted": deleted_verification + deleted_reset,
        }
        logger.info(f"Used token cleanup completed: {result}")
        return result

    @staticmethod
    def perform_full_cleanup(db: Session) -> Dict[str, object]:
        expired_cleanup = TokenService.cleanup_expired_tokens(db)
        used_cleanup = TokenService.cleanup_used_tokens(db)
        return {
            "expired_cleanup": expired_cleanup,
            "used_cleanup": used_cleanup,
            "grand_total": expired_cleanup["total_deleted"] + used_cleanup["total_deleted"],
        }

    @staticmethod
    def get_token_statistics(db: Session) -> Dict[str, Dict[str, int]]:
        """Counts per token table; ``active`` means unused and unexpired."""
        now = utcnow()
        stats = {}
        for key, model in (
            ("verification_tokens", VerificationToken),
            ("password_reset_tokens", PasswordResetToken),
        ):
            total = db.query(func.count(model.id)).scalar()
            expired = db.query(func.count(model.id)).filter(model.expires_at < now).scalar()
            used = db.query(func.count(model.id)).filter(model.used.is_(True)).scalar()
            active = (
                db.query(func.count(model.id))
                .filter(model.used.is_(False), model.expires_at >= now)
                .scalar()
            )
            stats[key] = {"total": total, "expired": expired, "used": used, "active": active}
        return stats


token_service = TokenService()
