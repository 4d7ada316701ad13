# File: app/models/issue.py
from __future__ import annotations
from datetime import datetime, timezone
from enum import Enum as PyEnum
from sqlalchemy import String, Float, Boolean, Enum, DateTime, ForeignKey, JSON, Index, func
from sqlalchemy.orm import Mapped, mapped_column, relationship
from app.db.base import Base

class IssueStatus(PyEnum):
    pending = "pending"
    in_progress = "in_progress"
    resolved = "resolved"
    rejected = "rejected"
    duplicate = "duplicate"

class IssuePriority(PyEnum):
    low = "low"
    medium = "medium"
    high = "high"
    urgent = "urgent"

class IssueCategory(PyEnum):
    pothole = "pothole"
    street_light = "street_light"
    drainage = "drainage"
    traffic_signal = "traffic_signal"
    road_damage = "road_damage"
    sidewalk = "sidewalk"
    graffiti = "graffiti"
    garbage = "garbage"
    water_leak = "water_leak"
    park_maintenance = "park_maintenance"
    noise_complaint = "noise_complaint"
    other = "other"

# Sort rank for priority; the enum names do not sort meaningfully as text.
PRIORITY_RANK = {
    IssuePriority.low: 0,
    IssuePriority.medium: 1,
    IssuePriority.high: 2,
    IssuePriority.urgent: 3,
}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Issue(Base):
    __tablename__ = "issues"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    title: Mapped[str] = mapped_column(String(200), index=True)
    description: Mapped[str] = mapped_column(String(2000))
    category: Mapped[IssueCategory] = mapped_column(Enum(IssueCategory), default=IssueCategory.other, index=True)
    priority: Mapped[IssuePriority] = mapped_column(Enum(IssuePriority), default=IssuePriority.medium, index=True)
    status: Mapped[IssueStatus] = mapped_column(Enum(IssueStatus), default=IssueStatus.pending, index=True)

    # GeoJSON order is [lng, lat]; stored as two columns.
    longitude: Mapped[float] = mapped_column(Float, nullable=False)
    latitude: Mapped[float] = mapped_column(Float, nullable=False)
    address: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    reported_by_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="RESTRICT"), index=True, nullable=False)
    assigned_to_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), index=True, nullable=True)

    is_public: Mapped[bool] = mapped_column(Boolean, default=True, server_default="true", index=True)
    estimated_resolution_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    ai_analysis: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    report_meta: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, server_default=func.now(), index=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, server_default=func.now())

    reporter = relationship("User", foreign_keys=[reported_by_id])
    assignee = relationship("User", foreign_keys=[assigned_to_id])

    images = relationship(
        "IssueImage", back_populates="issue", order_by="IssueImage.position",
        cascade="all, delete-orphan", passive_deletes=True,
    )
    votes = relationship(
        "IssueVote", back_populates="issue",
        cascade="all, delete-orphan", passive_deletes=True,
    )
    admin_notes = relationship(
        "AdminNote", back_populates="issue", order_by="AdminNote.id",
        cascade="all, delete-orphan", passive_deletes=True,
    )
    status_history = relationship(
        "StatusHistory", back_populates="issue", order_by="StatusHistory.id",
        cascade="all, delete-orphan", passive_deletes=True,
    )

    @property
    def upvoter_ids(self) -> list[int]:
        return sorted(v.user_id for v in self.votes if v.kind.value == "up")

    @property
    def downvoter_ids(self) -> list[int]:
        return sorted(v.user_id for v in self.votes if v.kind.value == "down")

Index("ix_issues_lat_lng", Issue.latitude, Issue.longitude)
