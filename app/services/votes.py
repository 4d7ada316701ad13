# File: app/services/votes.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.models.issue import Issue, utcnow
from app.models.issue_vote import IssueVote, VoteKind

logger = logging.getLogger(__name__)

VOTE_TYPES = ("up", "down", "remove")


class SelfVoteError(Exception):
    """The reporter tried to vote on their own issue."""


@dataclass(frozen=True)
class VoteTally:
    upvote_count: int
    downvote_count: int
    user_vote: Optional[str] = None

    @property
    def total_votes(self) -> int:
        return self.upvote_count + self.downvote_count


def tally(db: Session, issue_id: int, voter_id: Optional[int] = None) -> VoteTally:
    rows = db.execute(
        select(IssueVote.kind, func.count(IssueVote.id))
        .where(IssueVote.issue_id == issue_id)
        .group_by(IssueVote.kind)
    ).all()
    counts = {kind: n for kind, n in rows}
    user_vote = None
    if voter_id is not None:
        kind = db.scalar(
            select(IssueVote.kind).where(IssueVote.issue_id == issue_id, IssueVote.user_id == voter_id)
        )
        user_vote = kind.value if kind else None
    return VoteTally(
        upvote_count=counts.get(VoteKind.up, 0),
        downvote_count=counts.get(VoteKind.down, 0),
        user_vote=user_vote,
    )


def apply_vote(db: Session, issue: Issue, voter_id: int, vote_type: str) -> VoteTally:
    """Record ``voter_id``'s vote on ``issue``.

    The voter's previous vote is removed first, then the new one inserted for
    ``up``/``down``. Repeating the same vote, or removing a vote that does not
    exist, leaves the ledger unchanged. Each voter is a separate row, so votes
    by different users never overwrite each other.
    """
    if vote_type not in VOTE_TYPES:
        raise ValueError(f"Invalid vote type: {vote_type}")
    if issue.reported_by_id == voter_id:
        raise SelfVoteError("You cannot vote on your own issue")

    for attempt in (1, 2):
        try:
            db.execute(
                delete(IssueVote).where(IssueVote.issue_id == issue.id, IssueVote.user_id == voter_id)
            )
            if vote_type != "remove":
                db.add(IssueVote(issue_id=issue.id, user_id=voter_id, kind=VoteKind(vote_type)))
            issue.updated_at = utcnow()
            db.commit()
            break
        except IntegrityError:
            # A concurrent vote by the same user landed between delete and insert.
            db.rollback()
            if attempt == 2:
                raise
            logger.info("Retrying vote by user %s on issue %s", voter_id, issue.id)

    db.expire(issue, ["votes"])
    return tally(db, issue.id, voter_id)
