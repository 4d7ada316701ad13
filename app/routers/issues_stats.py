# app/routers/issues_stats.py
from datetime import datetime, timezone
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from sqlalchemy import func
from app.db.session import get_db
from app.core.security import require_role
from app.models.issue import Issue, IssueStatus, IssuePriority

router = APIRouter(prefix="/issues/stats", tags=["issues:stats"])

MONTHS = 12


def months_back(now: datetime, months: int) -> datetime:
    """First instant of the month ``months - 1`` months before ``now``'s month."""
    index = now.year * 12 + (now.month - 1) - (months - 1)
    return datetime(index // 12, index % 12 + 1, 1, tzinfo=timezone.utc)


@router.get("", dependencies=[Depends(require_role("admin"))])
def issue_stats(db: Session = Depends(get_db)):
    by_status = {s.value: 0 for s in IssueStatus}
    for status, n in db.query(Issue.status, func.count(Issue.id)).group_by(Issue.status):
        by_status[status.value] = n

    by_priority = {p.value: 0 for p in IssuePriority}
    for priority, n in db.query(Issue.priority, func.count(Issue.id)).group_by(Issue.priority):
        by_priority[priority.value] = n

    by_category = [
        {"category": c.value, "count": n}
        for c, n in db.query(Issue.category, func.count(Issue.id))
        .group_by(Issue.category)
        .order_by(func.count(Issue.id).desc(), Issue.category)
    ]

    year = func.extract("year", Issue.created_at)
    month = func.extract("month", Issue.created_at)
    since = months_back(datetime.now(timezone.utc), MONTHS)
    monthly = [
        {"year": int(y), "month": int(m), "count": n}
        for y, m, n in db.query(year, month, func.count(Issue.id))
        .filter(Issue.created_at >= since)
        .group_by(year, month)
        .order_by(year.desc(), month.desc())
    ]

    return {
        "overall": {
            "totalIssues": sum(by_status.values()),
            "pendingIssues": by_status["pending"],
            "inProgressIssues": by_status["in_progress"],
            "resolvedIssues": by_status["resolved"],
            "urgentIssues": by_priority["urgent"],
            "highPriorityIssues": by_priority["high"],
        },
        "byStatus": by_status,
        "byPriority": by_priority,
        "byCategory": by_category,
        "monthly": monthly,
    }
