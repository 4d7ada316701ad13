from app.models.user import User, UserRole
from app.models.issue import Issue, IssueCategory, IssuePriority, IssueStatus
from app.models.issue_image import IssueImage
from app.models.issue_vote import IssueVote, VoteKind
from app.models.admin_note import AdminNote
from app.models.status_history import StatusHistory

__all__ = [
    "User",
    "UserRole",
    "Issue",
    "IssueCategory",
    "IssuePriority",
    "IssueStatus",
    "IssueImage",
    "IssueVote",
    "VoteKind",
    "AdminNote",
    "StatusHistory",
]
