from typing import Optional
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from competition_portal.core.database import get_db
from competition_portal.services.leaderboard_service import get_leaderboard

router = APIRouter(prefix="/leaderboard", tags=["leaderboard"])


@router.get("/")
async def leaderboard(
    competition_id: Optional[int] = Query(default=None),
    interval: Optional[int] = Query(default=None),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
    db: Session = Depends(get_db)
):
    """Public leaderboard of scored submissions"""
    return get_leaderboard(db, competition_id=competition_id, interval=interval, page=page, limit=limit)
