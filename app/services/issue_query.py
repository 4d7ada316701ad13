# File: app/services/issue_query.py
"""Translate listing parameters into an Issue select.

Radius search has two strategies. ``within`` filters to the disc and keeps
whatever ``sortBy`` asks for, so results are not distance ordered.
``nearest`` is chosen only for ``sortBy=distance`` and orders by distance from
the centre. Both apply the same disc predicate.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from sqlalchemy import case, func, or_, select
from sqlalchemy.orm import selectinload

from app.models.admin_note import AdminNote
from app.models.issue import (
    Issue,
    IssueCategory,
    IssuePriority,
    IssueStatus,
    PRIORITY_RANK,
)
from app.models.status_history import StatusHistory
from app.models.user import User, UserRole
from app.services.geo import Disc, validate_coordinates

logger = logging.getLogger(__name__)


class GeoStrategy(str, Enum):
    within = "within"
    nearest = "nearest"


SORTABLE_COLUMNS = {
    "createdAt": Issue.created_at,
    "updatedAt": Issue.updated_at,
    "status": Issue.status,
    "category": Issue.category,
    "title": Issue.title,
    "priority": case(
        *[(Issue.priority == p, rank) for p, rank in PRIORITY_RANK.items()],
    ),
}


@dataclass
class IssueFilters:
    status: Optional[IssueStatus] = None
    category: Optional[IssueCategory] = None
    priority: Optional[IssuePriority] = None
    reported_by: Optional[int] = None
    assigned_to: Optional[int] = None
    search: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    radius_m: float = 5000.0
    sort_by: str = "createdAt"
    sort_order: Optional[str] = None

    @property
    def has_center(self) -> bool:
        return self.latitude is not None and self.longitude is not None


@dataclass
class IssueQuery:
    """A built listing query. ``empty`` short-circuits execution."""

    criteria: list = field(default_factory=list)
    order_by: list = field(default_factory=list)
    disc: Optional[Disc] = None
    strategy: Optional[GeoStrategy] = None
    empty: bool = False

    def data_statement(self, offset: int, limit: int):
        return (
            select(Issue)
            .where(*self.criteria)
            .options(*issue_load_options())
            .order_by(*self.order_by)
            .offset(offset)
            .limit(limit)
        )

    def count_statement(self):
        return select(func.count(Issue.id)).where(*self.criteria)


def issue_load_options():
    """Eager loads needed to render an issue outside its session."""
    return (
        selectinload(Issue.reporter),
        selectinload(Issue.assignee),
        selectinload(Issue.images),
        selectinload(Issue.votes),
        selectinload(Issue.admin_notes).selectinload(AdminNote.author),
        selectinload(Issue.status_history).selectinload(StatusHistory.changed_by),
    )


def visibility_clause(user: User):
    """Predicate limiting what ``user`` may read; None for administrators."""
    if user.role == UserRole.admin:
        return None
    return or_(Issue.is_public.is_(True), Issue.reported_by_id == user.id)


def select_geo_strategy(sort_by: str) -> GeoStrategy:
    return GeoStrategy.nearest if sort_by == "distance" else GeoStrategy.within


def _escape_like(term: str) -> str:
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _search_clause(search: str):
    terms = [t for t in search.split() if t]
    if not terms:
        return None
    clauses = []
    for term in terms:
        like = f"%{_escape_like(term)}%"
        clauses.append(Issue.title.ilike(like, escape="\\"))
        clauses.append(Issue.description.ilike(like, escape="\\"))
    return or_(*clauses)


def build_issue_query(filters: IssueFilters, viewer: User) -> IssueQuery:
    q = IssueQuery()

    visible = visibility_clause(viewer)
    if visible is not None:
        q.criteria.append(visible)

    if filters.status is not None:
        q.criteria.append(Issue.status == filters.status)
    if filters.category is not None:
        q.criteria.append(Issue.category == filters.category)
    if filters.priority is not None:
        q.criteria.append(Issue.priority == filters.priority)
    if filters.reported_by is not None:
        q.criteria.append(Issue.reported_by_id == filters.reported_by)
    if filters.assigned_to is not None:
        q.criteria.append(Issue.assigned_to_id == filters.assigned_to)

    if filters.search:
        clause = _search_clause(filters.search)
        if clause is not None:
            q.criteria.append(clause)

    if filters.has_center:
        if not validate_coordinates(filters.longitude, filters.latitude):
            logger.info(
                "Ignoring radius search with invalid centre lng=%s lat=%s",
                filters.longitude, filters.latitude,
            )
            q.empty = True
            return q
        q.disc = Disc(filters.longitude, filters.latitude, max(0.0, filters.radius_m))
        q.strategy = select_geo_strategy(filters.sort_by)
        within = q.disc.contains(Issue.longitude, Issue.latitude)
        if within is not None:
            q.criteria.append(within)

    q.order_by = _order_by(filters, q)
    return q


def _order_by(filters: IssueFilters, q: IssueQuery) -> list:
    nearest = q.strategy == GeoStrategy.nearest
    # distance defaults to nearest first, everything else to descending
    order = filters.sort_order or ("asc" if nearest else "desc")
    descending = order.lower() != "asc"
    if nearest:
        key = q.disc.haversine_term(Issue.longitude, Issue.latitude)
    else:
        key = SORTABLE_COLUMNS.get(filters.sort_by)
    if key is None:
        # Unknown sort key: no defined ordering beyond a stable tiebreak.
        return [Issue.id]
    key = key.desc() if descending else key.asc()
    return [key, Issue.id.desc() if descending else Issue.id.asc()]
