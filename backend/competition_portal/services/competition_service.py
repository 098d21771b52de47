import logging
from typing import Dict
from sqlalchemy import func
from sqlalchemy.orm import Session
from competition_portal.core.errors import ConflictError, NotFoundError, ValidationError
from competition_portal.models import Competition, Submission, User

logger = logging.getLogger(__name__)

DUPLICATE_SLUG_MESSAGE = "A competition with this slug already exists"


class CompetitionService:

    @staticmethod
    def get_competition(db: Session, competition_id: int) -> Competition:
        competition = db.query(Competition).filter(Competition.id == competition_id).first()
        if competition is None:
            raise NotFoundError("Competition not found")
        return competition

    @staticmethod
    def _ensure_slug_free(db: Session, slug: str, competition_id: int | None = None) -> None:
        query = db.query(Competition).filter(Competition.slug == slug)
        if competition_id is not None:
            query = query.filter(Competition.id != competition_id)
        if query.first():
            raise ValidationError(DUPLICATE_SLUG_MESSAGE)

    @staticmethod
    def create_competition(db: Session, data: Dict[str, object], admin: User) -> Competition:
        CompetitionService._ensure_slug_free(db, data["slug"])
        competition = Competition(**data)
        db.add(competition)
        db.commit()
        db.refresh(competition)
        logger.info(f"Admin {admin.id} created competition {competition.slug}")
        return competition

    @staticmethod
    def update_competition(db: Session, competition_id: int, changes: Dict[str, object], admin: User) -> Competition:
        """Partial update; keys absent from ``changes`` keep their stored value."""
        for field in ("slug", "title", "is_weekly", "is_active"):
            if field in changes and changes[field] is None:
                raise ValidationError(f"{field} cannot be null")
        competition = CompetitionService.get_competition(db, competition_id)
        if "slug" in changes:
            CompetitionService._ensure_slug_free(db, changes["slug"], competition.id)

        for field, value in changes.items():
            setattr(competition, field, value)
        db.commit()
        db.refresh(competition)
        logger.info(f"Admin {admin.id} updated competition {competition.id}: {sorted(changes)}")
        return competition

    @staticmethod
    def delete_competition(db: Session, competition_id: int, admin: User) -> None:
        """Remove a competition that has no submissions; otherwise deactivate it instead."""
        competition = CompetitionService.get_competition(db, competition_id)
        submissions = (
            db.query(func.count(Submission.id))
            .filter(Submission.competition_id == competition.id)
            .scalar()
        )
        if submissions:
            raise ConflictError(
                f"Competition has {submissions} submissions; deactivate it instead of deleting")
        db.delete(competition)
        db.commit()
        logger.info(f"Admin {admin.id} deleted competition {competition_id}")


competition_service = CompetitionService()
