# File: app/models/issue_vote.py
from __future__ import annotations
from enum import Enum as PyEnum
from sqlalchemy import DateTime, Enum, ForeignKey, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column, relationship
from app.db.base import Base

class VoteKind(PyEnum):
    up = "up"
    down = "down"

class IssueVote(Base):
    """One row per (issue, voter). The unique key is what keeps a voter out of
    both the up and the down set at once."""
    __tablename__ = "issue_votes"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    issue_id: Mapped[int] = mapped_column(ForeignKey("issues.id", ondelete="CASCADE"), index=True, nullable=False)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False)
    kind: Mapped[VoteKind] = mapped_column(Enum(VoteKind), nullable=False)
    created_at: Mapped["DateTime"] = mapped_column(DateTime(timezone=True), server_default=func.now())

    issue = relationship("Issue", back_populates="votes")

    __table_args__ = (UniqueConstraint("issue_id", "user_id", name="uq_issue_vote_voter"),)
