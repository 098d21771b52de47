# Importing the package registers every model with Base.metadata so
# string-based relationships resolve regardless of which module loads first.
from competition_portal.models.user import User
from competition_portal.models.competition import Competition
from competition_portal.models.token import TokenType, VerificationToken, PasswordResetToken
from competition_portal.models.submission import Submission, SubmissionMessage, SubmissionStatus
from competition_portal.models.admin_settings import AdminSettings

__all__ = [
    "User",
    "Competition",
    "TokenType",
    "VerificationToken",
    "PasswordResetToken",
    "Submission",
    "SubmissionMessage",
    "SubmissionStatus",
    "AdminSettings",
]
