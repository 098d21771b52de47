from sqlalchemy import Column, Integer, String, DateTime, Boolean
from sqlalchemy.orm import relationship
from competition_portal.core.database import Base, utcnow


class User(Base):
    """
    Registered participant or administrator.

    Accounts start inactive and unverified; the first successful email
    verification activates them. Users are never hard-deleted, admins
    deactivate them instead.
    """
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    # Stored lower-cased so lookups are case-insensitive
    email = Column(String, unique=True, index=True, nullable=False)
    phone = Column(String, nullable=True)
    institution = Column(String, nullable=True)
    # Password is hashed using bcrypt - never store plaintext passwords
    hashed_password = Column(String, nullable=False)
    is_active = Column(Boolean, default=False, nullable=False)
    is_email_verified = Column(Boolean, default=False, nullable=False)
    is_admin = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), onupdate=utcnow)

    submissions = relationship("Submission", back_populates="user")
    verification_tokens = relationship(
        "VerificationToken", back_populates="user", cascade="all, delete-orphan")
    password_reset_tokens = relationship(
        "PasswordResetToken", back_populates="user", cascade="all, delete-orphan")
