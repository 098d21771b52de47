import logging
import math
import re
from typing import List, Optional
from pydantic import EmailStr, TypeAdapter
from pydantic import ValidationError as SchemaValidationError
from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from competition_portal.core.database import utcnow
from competition_portal.core.errors import (
    AlreadyVerifiedError,
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
    RateLimitError,
    ValidationError,
)
from competition_portal.core.security import get_password_hash, validate_password_policy, verify_password
from competition_portal.models import User
from competition_portal.services.email_service import email_service
from competition_portal.services.token_service import token_service

logger = logging.getLogger(__name__)

email_adapter = TypeAdapter(EmailStr)
PHONE_PATTERN = re.compile(r"^\+?[\d\-()]{10,15}$")
DUPLICATE_EMAIL_MESSAGE = (
    "An account with this email already exists. Please use a different email or try logging in."
)


def normalize_email(email: str) -> str:
    return email.strip().lower()


def find_user_by_email(db: Session, email: str) -> Optional[User]:
    return db.query(User).filter(User.email == normalize_email(email)).first()


def is_valid_email(email: str) -> bool:
    try:
        email_adapter.validate_python(email.strip())
    except SchemaValidationError:
        return False
    return True


def get_user(db: Session, user_id: int) -> User:
    user = db.query(User).filter(User.id == user_id).first()
    if user is None:
        raise NotFoundError("User not found")
    return user


def validate_registration(name: str, email: str, phone: str, institution: str, password: str) -> List[str]:
    errors = []
    name = (name or "").strip()
    if not name:
        errors.append("Name is required")
    elif len(name) < 2:
        errors.append("Name must be at least 2 characters long")

    if not (email or "").strip():
        errors.append("Email is required")
    elif not is_valid_email(email):
        errors.append("Please provide a valid email address")

    if not (phone or "").strip():
        errors.append("Phone number is required")
    elif not PHONE_PATTERN.match(re.sub(r"\s", "", phone)):
        errors.append("Please provide a valid phone number")

    if not (institution or "").strip():
        errors.append("Institution is required")

    if not (password or "").strip():
        errors.append("Password is required")
    else:
        errors.extend(validate_password_policy(password))
    return errors


def register_user(db: Session, name: str, email: str, phone: str, institution: str, password: str) -> User:
    """
    Create an inactive, unverified account and send its verification email.

    A failed email is logged only; the account still exists and the user can
    ask for a resend.
    """
    errors = validate_registration(name, email, phone, institution, password)
    if errors:
        raise ValidationError(", ".join(errors))

    if find_user_by_email(db, email):
        raise ConflictError(DUPLICATE_EMAIL_MESSAGE)

    user = User(
        name=name.strip(),
        email=normalize_email(email),
        phone=phone.strip(),
        institution=institution.strip(),
        hashed_password=get_password_hash(password),
        is_active=False,
        is_email_verified=False,
    )
    db.add(user)
    try:
        db.commit()
    except IntegrityError:
        # Two registrations for the same email raced past the check above
        db.rollback()
        raise ConflictError(DUPLICATE_EMAIL_MESSAGE)
    db.refresh(user)
    logger.info(f"New user registered: {user.email}")

    token = token_service.create_verification_token(db, user.id)
    if not email_service.send_verification_email(user.email, user.name, token):
        logger.error(f"Failed to send verification email to {user.email}")
    return user


def authenticate(db: Session, email: str, password: str) -> Optional[User]:
    user = find_user_by_email(db, email)
    if not user or not verify_password(password, user.hashed_password):
        return None
    return user


def resend_verification(db: Session, email: str) -> bool:
    """Issue a fresh verification token, subject to the resend cooldown."""
    user = find_user_by_email(db, email)
    if user is None:
        raise NotFoundError("No account found with this email address.")
    if user.is_email_verified:
        raise AlreadyVerifiedError("Email is already verified.")

    can_resend, wait_time = token_service.can_resend_verification_email(db, user.id)
    if not can_resend:
        minutes = math.ceil(wait_time / 60)
        raise RateLimitError(
            f"Please wait {minutes} minutes before requesting another verification email.",
            wait_time=wait_time,
        )

    token = token_service.create_verification_token(db, user.id)
    sent = email_service.send_verification_email(user.email, user.name, token)
    if sent:
        logger.info(f"Verification email resent to {user.email}")
    return sent


def request_password_reset(db: Session, email: str) -> None:
    """
    Issue and email a reset token when the account can use one.

    Callers respond identically whatever happens here.
    """
    user = find_user_by_email(db, email)
    if user is None or not user.is_active or not user.is_email_verified:
        logger.info("Password reset requested for an unknown or ineligible account")
        return

    token = token_service.create_password_reset_token(db, user.id)
    if email_service.send_password_reset_email(user.email, user.name, token):
        logger.info(f"Password reset email sent to {user.email}")
    else:
        logger.error(f"Failed to send password reset email to {user.email}")


def reset_password(db: Session, token: str, password: str, confirm_password: str) -> int:
    if not token:
        raise ValidationError("Reset token is required")
    if not password or not confirm_password:
        raise ValidationError("Password and confirm password are required")
    if password != confirm_password:
        raise ValidationError("Passwords do not match")
    errors = validate_password_policy(password)
    if errors:
        raise ValidationError(", ".join(errors))

    user_id = token_service.verify_password_reset_token(db, token)
    user = get_user(db, user_id)
    user.hashed_password = get_password_hash(password)
    user.updated_at = utcnow()
    db.commit()

    token_service.mark_password_reset_token_as_used(db, token)
    logger.info(f"Password reset completed for user {user_id}")
    return user_id


def set_user_active(db: Session, user_id: int, is_active: bool, acting_admin: User) -> User:
    user = get_user(db, user_id)
    if user.id == acting_admin.id and not is_active:
        raise PermissionDeniedError("Admins cannot deactivate their own account")
    user.is_active = is_active
    db.commit()
    db.refresh(user)
    logger.info(f"Admin {acting_admin.id} set user {user.id} active={is_active}")
    return user


def bulk_verify_email(db: Session, user_ids: Optional[List[int]] = None) -> int:
    """Mark users verified and active; all unverified users when no ids are given."""
    query = db.query(User).filter(User.is_email_verified.is_(False))
    if user_ids:
        query = query.filter(User.id.in_(user_ids))
    updated = query.update(
        {User.is_email_verified: True, User.is_active: True}, synchronize_session=False)
    db.commit()
    logger.info(f"Bulk verified {updated} users")
    return updated


PROFILE_PHONE_PATTERN = re.compile(r"^[\d\s\-+()]+$")
MAX_INSTITUTION_LENGTH = 200


def update_profile(db: Session, user: User, changes: dict) -> User:
    """
    Update the caller's own profile.

    Only keys present in ``changes`` are touched; an empty phone or
    institution clears the stored value.
    """
    updates = {}
    if "name" in changes and changes["name"] is not None:
        name = changes["name"].strip()
        if len(name) < 2:
            raise ValidationError("Name must be at least 2 characters long")
        updates["name"] = name

    if "phone" in changes and changes["phone"] is not None:
        phone = changes["phone"].strip()
        if not phone:
            updates["phone"] = None
        elif not PROFILE_PHONE_PATTERN.match(phone) or not 10 <= len(phone) <= 20:
            raise ValidationError("Invalid phone number format")
        else:
            updates["phone"] = phone

    if "institution" in changes and changes["institution"] is not None:
        institution = changes["institution"].strip()
        if len(institution) > MAX_INSTITUTION_LENGTH:
            raise ValidationError(
                f"Institution name is too long (max {MAX_INSTITUTION_LENGTH} characters)")
        updates["institution"] = institution or None

    if not updates:
        raise ValidationError("No valid fields to update")

    for field, value in updates.items():
        setattr(user, field, value)
    db.commit()
    db.refresh(user)
    logger.info(f"User {user.id} updated profile fields {sorted(updates)}")
    return user


def list_users(
    db: Session,
    search: Optional[str] = None,
    is_active: Optional[bool] = None,
    is_email_verified: Optional[bool] = None,
    institution: Optional[str] = None,
    skip: int = 0,
    limit: int = 100,
) -> tuple[List[User], int]:
    """Admin user listing; ``search`` matches name or email, case-insensitively."""
    query = db.query(User)
    if search:
        pattern = f"%{search.strip()}%"
        query = query.filter(or_(User.name.ilike(pattern), User.email.ilike(pattern)))
    if is_active is not None:
        query = query.filter(User.is_active.is_(is_active))
    if is_email_verified is not None:
        query = query.filter(User.is_email_verified.is_(is_email_verified))
    if institution:
        query = query.filter(User.institution.ilike(f"%{institution.strip()}%"))
    total = query.count()
    users = query.order_by(User.created_at.desc(), User.id.desc()).offset(skip).limit(limit).all()
    return users, total
