import math
from typing import Any, Dict, Optional
from sqlalchemy import func
from sqlalchemy.orm import Session, joinedload
from competition_portal.models import Submission, User


def _public_user(user) -> Dict[str, Any]:
    return {"id": user.id, "name": user.name, "institution": user.institution}


def get_leaderboard(
    db: Session,
    competition_id: Optional[int] = None,
    interval: Optional[int] = None,
    page: int = 1,
    limit: int = 10,
) -> Dict[str, Any]:
    """
    Ranked scored submissions plus a per (user, competition, interval) rollup.

    Unscored and disqualified submissions are left out of both views.
    """
    page = max(page, 1)
    limit = max(limit, 1)
    skip = (page - 1) * limit

    filters = [
        Submission.overall_score.isnot(None),
        Submission.is_disqualified.is_(False),
    ]
    if competition_id is not None:
        filters.append(Submission.competition_id == competition_id)
    if interval is not None:
        filters.append(Submission.interval == interval)

    query = db.query(Submission).filter(*filters)
    total = query.count()
    ranked = (
        query.options(joinedload(Submission.user))
        .order_by(Submission.overall_score.desc(), Submission.created_at.asc())
        .offset(skip)
        .limit(limit)
        .all()
    )

    avg_score = func.avg(Submission.overall_score)
    groups = (
        db.query(
            Submission.user_id,
            Submission.competition_id,
            Submission.interval,
            avg_score.label("avg_score"),
            func.max(Submission.overall_score).label("best_score"),
            func.count(Submission.id).label("submissions_count"),
        )
        .filter(*filters)
        .group_by(Submission.user_id, Submission.competition_id, Submission.interval)
        .order_by(avg_score.desc(), Submission.user_id.asc())
        .offset(skip)
        .limit(limit)
        .all()
    )
    user_ids = {group.user_id for group in groups}
    users = {user.id: user for user in db.query(User).filter(User.id.in_(user_ids))} if user_ids else {}

    aggregated = [
        {
            "user": _public_user(users[group.user_id]),
            "competition_id": group.competition_id,
            "interval": group.interval,
            "avg_score": round(float(group.avg_score), 2),
            "best_score": group.best_score,
            "submissions_count": group.submissions_count,
        }
        for group in groups
    ]

    return {
        "data": [
            {
                "id": s.id,
                "user": _public_user(s.user),
                "competition_id": s.competition_id,
                "interval": s.interval,
                "title": s.title,
                "overall_score": s.overall_score,
                "status": s.status.value,
            }
            for s in ranked
        ],
        "aggregated": aggregated,
        "meta": {
            "total": total,
            "page": page,
            "limit": limit,
            "total_pages": math.ceil(total / limit) if total else 0,
        },
    }
