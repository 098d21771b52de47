from datetime import datetime
from typing import List, Optional
from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, field_serializer
from sqlalchemy.orm import Session
from competition_portal.core.database import get_db
from competition_portal.core.errors import NotFoundError
from competition_portal.models import Competition

router = APIRouter(prefix="/competitions", tags=["competitions"])


class CompetitionCreate(BaseModel):
    slug: str
    title: str
    description: Optional[str] = None
    is_weekly: bool = True
    is_active: bool = True


class CompetitionResponse(BaseModel):
    id: int
    slug: str
    title: str
    description: Optional[str]
    is_weekly: bool
    is_active: bool
    created_at: Optional[datetime]

    model_config = ConfigDict(from_attributes=True)

    @field_serializer('created_at')
    def serialize_created_at(self, value: Optional[datetime], _info):
        return value.isoformat() if value else None


@router.get("/", response_model=List[CompetitionResponse])
async def list_competitions(db: Session = Depends(get_db)):
    """List active competitions"""
    return (
        db.query(Competition)
        .filter(Competition.is_active.is_(True))
        .order_by(Competition.id)
        .all()
    )


@router.get("/{slug}", response_model=CompetitionResponse)
async def get_competition(slug: str, db: Session = Depends(get_db)):
    competition = db.query(Competition).filter(Competition.slug == slug).first()
    if competition is None:
        raise NotFoundError("Competition not found")
    return competition
