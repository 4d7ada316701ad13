# File: app/routers/issues.py
import json
import logging
import math
from dataclasses import dataclass
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.exceptions import RequestValidationError
from pydantic import ValidationError
from sqlalchemy.orm import Session
from starlette.datastructures import UploadFile

from app.core.config import settings
from app.core.ratelimit import limiter
from app.core.security import get_current_user, is_admin, require_role
from app.db.session import get_db
from app.models.issue import Issue, IssueCategory, IssuePriority, IssueStatus
from app.models.issue_image import IssueImage
from app.models.user import User
from app.schemas.issue import (
    Address,
    IssueCreate,
    IssueOut,
    IssueUpdate,
    PaginatedIssuesOut,
    VoteIn,
    VoteTallyOut,
)
from app.services.ai import AIProvider, ImageAnalysis, estimate_priority, get_ai_provider
from app.services.geo import Disc, validate_coordinates
from app.services.geocoding import Geocoder, get_geocoder
from app.services.issue_query import IssueFilters, build_issue_query, issue_load_options
from app.services.pagination import Page, fetch_page, parse_page_request
from app.services.storage import get_storage, make_object_key
from app.services.votes import SelfVoteError, apply_vote
from app.services.workflow import InvalidAssigneeError, record_status, update_issue as apply_update

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/issues", tags=["issues"])

MAX_FILES = 10
MAX_BYTES = 5 * 1024 * 1024
ALLOWED = {"image/jpeg", "image/png", "image/webp", "image/gif"}


@dataclass
class ImageUpload:
    filename: str
    content_type: str
    data: bytes


def _invalid(field: str, msg: str) -> RequestValidationError:
    return RequestValidationError([{"loc": ("body", field), "msg": msg, "type": "value_error"}])


async def read_issue_body(request: Request) -> tuple:
    """Accept the create payload as JSON or as a multipart form with images."""
    content_type = request.headers.get("content-type", "")
    uploads: list[ImageUpload] = []
    multipart = content_type.startswith(("multipart/form-data", "application/x-www-form-urlencoded"))

    if multipart:
        form = await request.form()
        raw = {}
        for key in ("title", "description", "category", "priority"):
            value = form.get(key)
            if isinstance(value, str) and value != "":
                raw[key] = value
        for key in ("location", "address"):
            value = form.get(key)
            if isinstance(value, str) and value.strip():
                try:
                    raw[key] = json.loads(value)
                except json.JSONDecodeError:
                    raise _invalid(key, "Invalid JSON")

        files = [f for f in form.getlist("images") if isinstance(f, UploadFile)]
        if len(files) > MAX_FILES:
            raise HTTPException(status_code=400, detail=f"Max {MAX_FILES} images")
        for f in files:
            if f.content_type not in ALLOWED:
                raise HTTPException(status_code=400, detail="Unsupported image type")
            data = await f.read()
            if len(data) > MAX_BYTES:
                raise HTTPException(status_code=400, detail="Image exceeds 5MB")
            uploads.append(ImageUpload(f.filename or "upload.jpg", f.content_type, data))
    else:
        try:
            raw = await request.json()
        except (json.JSONDecodeError, UnicodeDecodeError):
            raise _invalid("body", "Malformed JSON body")
        if not isinstance(raw, dict):
            raise _invalid("body", "Expected a JSON object")

    try:
        payload = IssueCreate.model_validate(raw)
    except ValidationError as exc:
        raise RequestValidationError(exc.errors(include_url=False))
    return payload, uploads, ("web" if multipart else "api")


def _user_lite(u: Optional[User], viewer: User) -> Optional[dict]:
    if not u:
        return None
    show_email = is_admin(viewer) or u.id == viewer.id
    return {
        "id": u.id,
        "name": u.name,
        "email": u.email if show_email else None,
        "role": u.role.value,
    }


def serialize_issue(issue: Issue, viewer: User, disc: Optional[Disc] = None) -> dict:
    admin = is_admin(viewer)
    upvotes, downvotes = issue.upvoter_ids, issue.downvoter_ids
    return {
        "id": issue.id,
        "title": issue.title,
        "description": issue.description,
        "category": issue.category.value,
        "priority": issue.priority.value,
        "status": issue.status.value,
        "location": {"type": "Point", "coordinates": [issue.longitude, issue.latitude]},
        "address": issue.address or {},
        "images": [
            {
                "url": img.url,
                "storage_key": img.storage_key,
                "original_name": img.original_name,
                "size": img.size,
                "ai_description": img.ai_description,
            }
            for img in issue.images
        ],
        "reported_by": _user_lite(issue.reporter, viewer),
        "assigned_to": _user_lite(issue.assignee, viewer),
        "votes": {"upvotes": upvotes, "downvotes": downvotes},
        "upvote_count": len(upvotes),
        "downvote_count": len(downvotes),
        "total_votes": len(upvotes) + len(downvotes),
        "is_public": issue.is_public,
        "admin_notes": [
            {
                "note": n.text,
                "added_by": _user_lite(n.author, viewer),
                "is_public": n.is_public,
                "added_at": n.created_at,
            }
            for n in issue.admin_notes
            if admin or n.is_public
        ],
        "status_history": [
            {
                "status": h.status.value,
                "changed_by": _user_lite(h.changed_by, viewer),
                "changed_at": h.changed_at,
                "reason": h.reason,
            }
            for h in issue.status_history
        ],
        "estimated_resolution_time": issue.estimated_resolution_time,
        "ai_analysis": issue.ai_analysis,
        "distance_meters": round(disc.distance_to(issue.longitude, issue.latitude), 1) if disc else None,
        "created_at": issue.created_at,
        "updated_at": issue.updated_at,
    }


def _load_issue(db: Session, issue_id: int) -> Issue:
    issue = db.query(Issue).options(*issue_load_options()).filter(Issue.id == issue_id).first()
    if not issue:
        raise HTTPException(status_code=404, detail="Issue not found")
    return issue


def _can_view(issue: Issue, user: User) -> bool:
    return is_admin(user) or issue.is_public or issue.reported_by_id == user.id


def _resolve_address(supplied: Optional[Address], lng: float, lat: float, geocoder: Geocoder) -> dict:
    address = supplied or Address()
    if not address.has_locality():
        found = geocoder.reverse(lng, lat)
        # caller-supplied parts win over geocoded ones
        address = found.model_copy(update=address.model_dump(exclude_none=True))
    return address.model_dump(exclude_none=True)


@router.post("", response_model=IssueOut, status_code=201)
@limiter.limit("10/minute")
def create_issue(
    request: Request,
    current: User = Depends(get_current_user),
    body: tuple = Depends(read_issue_body),
    db: Session = Depends(get_db),
    ai: AIProvider = Depends(get_ai_provider),
    geocoder: Geocoder = Depends(get_geocoder),
    storage=Depends(get_storage),
):
    payload, uploads, reporting_method = body

    coords = payload.location.coordinates if payload.location else None
    if not coords or not validate_coordinates(coords[0], coords[1]):
        raise HTTPException(status_code=400, detail="Invalid coordinates provided")
    if not payload.title or not payload.description:
        raise HTTPException(status_code=400, detail="Title and description are required")
    lng, lat = float(coords[0]), float(coords[1])

    address = _resolve_address(payload.address, lng, lat, geocoder)

    analysis: Optional[ImageAnalysis] = None
    captions: list[Optional[str]] = []
    if uploads and ai.available:
        analysis = ai.analyze_image(uploads[0].data, uploads[0].content_type)
        captions = [ai.describe_image(u.data, u.content_type) for u in uploads]

    category = payload.category
    if analysis and category in (None, "other") and analysis.suggested_category != "other":
        category = analysis.suggested_category
    elif category is None:
        category = ai.categorize(payload.title, payload.description).suggested_category

    priority = payload.priority
    if priority is None:
        priority = estimate_priority(category, payload.description, analysis) if analysis else "medium"

    obj = Issue(
        title=payload.title,
        description=payload.description,
        category=IssueCategory(category),
        priority=IssuePriority(priority),
        status=IssueStatus.pending,
        longitude=lng,
        latitude=lat,
        address=address,
        reported_by_id=current.id,
        is_public=True,
        ai_analysis=analysis.as_record() if analysis else None,
        report_meta={
            "reportingMethod": reporting_method,
            "userAgent": request.headers.get("user-agent"),
            "ipAddress": request.client.host if request.client else None,
        },
    )
    record_status(obj, IssueStatus.pending, current.id, "Issue reported")
    db.add(obj)

    uploaded: list[str] = []
    try:
        db.flush()
        for position, up in enumerate(uploads):
            key = make_object_key(obj.id, up.filename)
            url = storage.upload_image(up.data, up.content_type, key)
            uploaded.append(key)
            obj.images.append(
                IssueImage(
                    position=position,
                    url=url,
                    storage_key=key,
                    original_name=up.filename,
                    content_type=up.content_type,
                    size=len(up.data),
                    ai_description=captions[position] if position < len(captions) else None,
                )
            )
        db.commit()
    except Exception:
        db.rollback()
        for key in uploaded:
            try:
                storage.delete_image(key)
            except Exception:
                logger.warning("Could not remove uploaded image %s after failed create", key, exc_info=True)
        raise

    logger.info("Issue %s reported by user %s (%s, %s)", obj.id, current.id, obj.category.value, obj.priority.value)
    return serialize_issue(_load_issue(db, obj.id), current)


def _enum(enum_cls, value: Optional[str]):
    return enum_cls(value) if value else None


def _int(value: Optional[str]) -> Optional[int]:
    return int(value) if value not in (None, "") else None


def _coord(value: Optional[str]) -> Optional[float]:
    if value in (None, ""):
        return None
    try:
        return float(value)
    except ValueError:
        return math.nan


def _radius(value: Optional[str]) -> float:
    try:
        radius = float(value)
    except (TypeError, ValueError):
        return float(settings.default_search_radius_m)
    return radius if math.isfinite(radius) else float(settings.default_search_radius_m)


@router.get("", response_model=PaginatedIssuesOut)
@limiter.limit("60/minute")
def list_issues(
    request: Request,
    status: Optional[str] = Query(None),
    category: Optional[str] = Query(None),
    priority: Optional[str] = Query(None),
    reported_by: Optional[str] = Query(None, alias="reportedBy"),
    assigned_to: Optional[str] = Query(None, alias="assignedTo"),
    search: Optional[str] = Query(None),
    latitude: Optional[str] = Query(None),
    longitude: Optional[str] = Query(None),
    radius: Optional[str] = Query(None),
    page: Optional[str] = Query(None),
    limit: Optional[str] = Query(None),
    sort_by: str = Query("createdAt", alias="sortBy"),
    sort_order: Optional[str] = Query(None, alias="sortOrder"),
    db: Session = Depends(get_db),
    current: User = Depends(get_current_user),
):
    page_req = parse_page_request(page, limit, is_admin(current))
    try:
        filters = IssueFilters(
            status=_enum(IssueStatus, status),
            category=_enum(IssueCategory, category),
            priority=_enum(IssuePriority, priority),
            reported_by=_int(reported_by),
            assigned_to=_int(assigned_to),
            search=(search or "").strip() or None,
            latitude=_coord(latitude),
            longitude=_coord(longitude),
            radius_m=_radius(radius),
            sort_by=sort_by,
            sort_order=sort_order,
        )
    except ValueError:
        # a filter value no issue can have matches nothing
        result = Page(items=[], total_count=0, request=page_req)
        return {"issues": [], "pagination": result.pagination()}

    query = build_issue_query(filters, current)
    result = fetch_page(db, query, page_req)
    return {
        "issues": [serialize_issue(i, current, query.disc) for i in result.items],
        "pagination": result.pagination(),
    }


@router.get("/{issue_id}", response_model=IssueOut)
def get_issue(issue_id: int, db: Session = Depends(get_db), current: User = Depends(get_current_user)):
    issue = _load_issue(db, issue_id)
    if not _can_view(issue, current):
        raise HTTPException(status_code=403, detail="Access denied")
    return serialize_issue(issue, current)


@router.put("/{issue_id}", response_model=IssueOut)
def update_issue(
    issue_id: int,
    body: IssueUpdate,
    db: Session = Depends(get_db),
    current: User = Depends(require_role("admin")),
):
    issue = _load_issue(db, issue_id)
    try:
        apply_update(db, issue, current, body)
    except InvalidAssigneeError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return serialize_issue(_load_issue(db, issue_id), current)


@router.delete("/{issue_id}")
def delete_issue(
    issue_id: int,
    db: Session = Depends(get_db),
    current: User = Depends(require_role("admin")),
    storage=Depends(get_storage),
):
    issue = db.query(Issue).filter(Issue.id == issue_id).first()
    if not issue:
        raise HTTPException(status_code=404, detail="Issue not found")
    for img in issue.images:
        try:
            storage.delete_image(img.storage_key)
        except Exception:
            logger.error("Failed to delete image %s of issue %s", img.storage_key, issue_id, exc_info=True)
    db.delete(issue)
    db.commit()
    logger.info("Issue %s deleted by user %s", issue_id, current.id)
    return {"ok": True}


@router.post("/{issue_id}/vote", response_model=VoteTallyOut)
@limiter.limit("30/minute")
def vote(
    request: Request,
    issue_id: int,
    body: VoteIn,
    db: Session = Depends(get_db),
    current: User = Depends(get_current_user),
):
    issue = db.query(Issue).filter(Issue.id == issue_id).first()
    if not issue:
        raise HTTPException(status_code=404, detail="Issue not found")
    if not _can_view(issue, current):
        raise HTTPException(status_code=403, detail="Access denied")
    try:
        result = apply_vote(db, issue, current.id, body.vote_type)
    except SelfVoteError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {
        "upvote_count": result.upvote_count,
        "downvote_count": result.downvote_count,
        "total_votes": result.total_votes,
        "user_vote": result.user_vote,
    }
