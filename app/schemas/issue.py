# File: app/schemas/issue.py
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel
from typing import Optional, Literal, List
from datetime import datetime

Status = Literal["pending", "in_progress", "resolved", "rejected", "duplicate"]
Priority = Literal["low", "medium", "high", "urgent"]
Category = Literal[
    "pothole",
    "street_light",
    "drainage",
    "traffic_signal",
    "road_damage",
    "sidewalk",
    "graffiti",
    "garbage",
    "water_leak",
    "park_maintenance",
    "noise_complaint",
    "other",
]
VoteType = Literal["up", "down", "remove"]


class CamelModel(BaseModel):
    """Wire format is camelCase; Python code uses the snake_case names."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class LocationIn(BaseModel):
    type: Literal["Point"] = "Point"
    coordinates: List[float] = Field(min_length=2, max_length=2)


class Address(CamelModel):
    street: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zip_code: Optional[str] = None
    country: Optional[str] = None
    formatted: Optional[str] = None

    def has_locality(self) -> bool:
        return bool(self.street or self.city)


class IssueCreate(CamelModel):
    # Missing or blank text and a missing location are domain checks in the
    # router (400), so only the upper bounds are enforced here.
    title: str = Field(default="", max_length=200)
    description: str = Field(default="", max_length=2000)
    category: Optional[Category] = None
    priority: Optional[Priority] = None
    location: Optional[LocationIn] = None
    address: Optional[Address] = None

    @field_validator("title", "description", mode="before")
    @classmethod
    def _strip(cls, v):
        return v.strip() if isinstance(v, str) else v


class UserLite(BaseModel):
    """Lightweight user info for reporter / assignee / note author."""
    id: Optional[int] = None
    name: Optional[str] = None
    email: Optional[str] = None
    role: Optional[str] = None


class ImageOut(CamelModel):
    url: str
    storage_key: str
    original_name: Optional[str] = None
    size: int
    ai_description: Optional[str] = None


class AdminNoteOut(CamelModel):
    note: str
    added_by: Optional[UserLite] = None
    is_public: bool
    added_at: datetime


class StatusHistoryOut(CamelModel):
    status: Status
    changed_by: Optional[UserLite] = None
    changed_at: datetime
    reason: Optional[str] = None


class LocationOut(BaseModel):
    type: Literal["Point"] = "Point"
    coordinates: List[float]


class VotesOut(BaseModel):
    upvotes: List[int] = []
    downvotes: List[int] = []


class IssueOut(CamelModel):
    id: int
    title: str
    description: str
    category: Category
    priority: Priority
    status: Status
    location: LocationOut
    address: Address = Address()
    images: List[ImageOut] = []
    reported_by: Optional[UserLite] = None
    assigned_to: Optional[UserLite] = None
    votes: VotesOut = VotesOut()
    upvote_count: int = 0
    downvote_count: int = 0
    total_votes: int = 0
    is_public: bool
    admin_notes: List[AdminNoteOut] = []
    status_history: List[StatusHistoryOut] = []
    estimated_resolution_time: Optional[datetime] = None
    ai_analysis: Optional[dict] = None
    distance_meters: Optional[float] = None
    created_at: datetime
    updated_at: Optional[datetime] = None


class PaginationOut(CamelModel):
    current_page: int
    total_pages: int
    total_count: int
    limit: int
    has_next_page: bool
    has_prev_page: bool


class PaginatedIssuesOut(BaseModel):
    issues: List[IssueOut]
    pagination: PaginationOut


class IssueUpdate(CamelModel):
    status: Optional[Status] = None
    priority: Optional[Priority] = None
    assigned_to: Optional[int] = None
    is_public: Optional[bool] = None
    estimated_resolution_time: Optional[datetime] = None
    admin_note: Optional[str] = Field(default=None, max_length=2000)
    note_is_public: bool = False
    reason: Optional[str] = Field(default=None, max_length=500)


class VoteIn(CamelModel):
    vote_type: VoteType


class VoteTallyOut(CamelModel):
    upvote_count: int
    downvote_count: int
    total_votes: int
    user_vote: Optional[Literal["up", "down"]] = None
