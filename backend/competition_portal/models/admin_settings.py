from sqlalchemy import Column, Integer, Boolean, DateTime
from competition_portal.core.database import Base, utcnow

SETTINGS_ROW_ID = 1
DEFAULT_CURRENT_INTERVAL = 1
DEFAULT_SUBMISSIONS_OPEN = True
DEFAULT_MAX_SUBMISSIONS_PER_INTERVAL = 3


class AdminSettings(Base):
    """
    Single global row gating submission intake.

    Read fresh from the database on every request. ``version`` is the ORM
    version counter: an UPDATE against a stale version raises StaleDataError.
    """
    __tablename__ = "admin_settings"

    id = Column(Integer, primary_key=True)
    current_interval = Column(Integer, default=DEFAULT_CURRENT_INTERVAL, nullable=False)
    is_submissions_open = Column(Boolean, default=DEFAULT_SUBMISSIONS_OPEN, nullable=False)
    max_submissions_per_interval = Column(
        Integer, default=DEFAULT_MAX_SUBMISSIONS_PER_INTERVAL, nullable=False)
    version = Column(Integer, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    __mapper_args__ = {"version_id_col": version}
