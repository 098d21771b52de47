import enum
from sqlalchemy import Column, Integer, String, DateTime, Boolean, Float, Text, ForeignKey, Enum
from sqlalchemy.orm import relationship
from competition_portal.core.database import Base, utcnow


class SubmissionStatus(str, enum.Enum):
    PENDING = "PENDING"
    UNDER_REVIEW = "UNDER_REVIEW"
    EVALUATED = "EVALUATED"
    REJECTED = "REJECTED"
    WINNER = "WINNER"
    FINALIST = "FINALIST"


class Submission(Base):
    """
    A participant's entry (Google Drive link) for one competition interval.

    Scores stay NULL until an admin scores the submission. Access-check and
    disqualification flags are independent of ``status``.
    """
    __tablename__ = "submissions"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    competition_id = Column(Integer, ForeignKey("competitions.id"), nullable=False, index=True)
    # Submission period number taken from AdminSettings at creation time
    interval = Column(Integer, nullable=False, index=True)
    file_url = Column(String, nullable=False)
    title = Column(String, nullable=True)
    description = Column(Text, nullable=True)

    creativity_score = Column(Float, nullable=True)
    technical_score = Column(Float, nullable=True)
    ai_tool_usage_score = Column(Float, nullable=True)
    adherence_score = Column(Float, nullable=True)
    impact_score = Column(Float, nullable=True)
    overall_score = Column(Float, nullable=True, index=True)

    status = Column(Enum(SubmissionStatus), default=SubmissionStatus.PENDING, nullable=False)
    is_access_verified = Column(Boolean, default=False, nullable=False)
    access_check_error = Column(String, nullable=True)
    is_disqualified = Column(Boolean, default=False, nullable=False)
    disqualification_reason = Column(String, nullable=True)

    judge_comments = Column(Text, nullable=True)
    evaluated_by = Column(String, nullable=True)
    evaluated_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), onupdate=utcnow)

    user = relationship("User", back_populates="submissions")
    competition = relationship("Competition")
    messages = relationship(
        "SubmissionMessage",
        back_populates="submission",
        order_by="SubmissionMessage.created_at",
        cascade="all, delete-orphan",
    )


class SubmissionMessage(Base):
    """Immutable thread entry between a participant and the judges."""
    __tablename__ = "submission_messages"

    id = Column(Integer, primary_key=True, index=True)
    submission_id = Column(Integer, ForeignKey("submissions.id", ondelete="CASCADE"), nullable=False, index=True)
    author_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    content = Column(Text, nullable=False)
    is_from_admin = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    submission = relationship("Submission", back_populates="messages")
    author = relationship("User")
