# File: app/services/workflow.py
"""Admin-side mutation of an issue: status, priority, assignment, notes.

Every precondition is checked before the issue is touched, so a rejected
update leaves both the row and the session clean. Concurrent admin updates to
the same issue are last-writer-wins per column; there is no version check.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from app.models.admin_note import AdminNote
from app.models.issue import Issue, IssuePriority, IssueStatus, utcnow
from app.models.status_history import StatusHistory
from app.models.user import User, UserRole
from app.schemas.issue import IssueUpdate

logger = logging.getLogger(__name__)


class InvalidAssigneeError(Exception):
    """Assignee does not exist or is not an administrator."""


def record_status(issue: Issue, status: IssueStatus, actor_id: Optional[int],
                  reason: Optional[str] = None, at: Optional[datetime] = None) -> StatusHistory:
    entry = StatusHistory(
        status=status,
        changed_by_id=actor_id,
        changed_at=at or utcnow(),
        reason=reason,
    )
    issue.status_history.append(entry)
    return entry


def _resolve_assignee(db: Session, user_id: int) -> User:
    assignee = db.get(User, user_id)
    if not assignee or assignee.role != UserRole.admin:
        raise InvalidAssigneeError("Invalid assignee - user must be an admin")
    return assignee


def update_issue(db: Session, issue: Issue, actor: User, patch: IssueUpdate) -> Issue:
    fields = patch.model_fields_set

    # ---- PRECONDITIONS ----
    assignee: Optional[User] = None
    if "assigned_to" in fields and patch.assigned_to is not None:
        assignee = _resolve_assignee(db, patch.assigned_to)

    # ---- APPLY ----
    now = utcnow()
    if patch.status is not None:
        new_status = IssueStatus(patch.status)
        if new_status != issue.status:
            old_status = issue.status
            issue.status = new_status
            record_status(issue, new_status, actor.id, (patch.reason or "").strip() or None, at=now)
            logger.info("Issue %s status %s -> %s by user %s",
                        issue.id, old_status.value, new_status.value, actor.id)

    if patch.priority is not None:
        issue.priority = IssuePriority(patch.priority)

    if "assigned_to" in fields:
        issue.assigned_to_id = assignee.id if assignee else None

    if patch.is_public is not None:
        issue.is_public = patch.is_public

    if patch.estimated_resolution_time is not None:
        issue.estimated_resolution_time = patch.estimated_resolution_time

    note = (patch.admin_note or "").strip()
    if note:
        issue.admin_notes.append(
            AdminNote(text=note, author_id=actor.id, is_public=bool(patch.note_is_public), created_at=now)
        )

    issue.updated_at = now
    db.commit()
    db.refresh(issue)
    return issue
