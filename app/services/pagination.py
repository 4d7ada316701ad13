# File: app/services/pagination.py
from __future__ import annotations

import math
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Optional

from sqlalchemy.orm import Session

from app.services.issue_query import IssueQuery

DEFAULT_PAGE = 1
DEFAULT_LIMIT = 20
MAX_LIMIT = 100
ADMIN_MAX_LIMIT = 1000
# Largest OFFSET a 64-bit database integer can bind.
MAX_OFFSET = 2**63 - 1

# Shared by all requests; each listing submits one count and one data job.
_executor = ThreadPoolExecutor(max_workers=8, thread_name_prefix="issue-page")


def _parse_int(value: Any, default: int) -> int:
    if value is None or isinstance(value, bool):
        return default
    try:
        return int(str(value).strip())
    except ValueError:
        return default


@dataclass(frozen=True)
class PageRequest:
    page: int
    limit: int

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit


def parse_page_request(page: Optional[str], limit: Optional[str], is_admin: bool = False) -> PageRequest:
    """Lenient page/limit parsing; garbage falls back to page 1 / limit 20."""
    max_limit = ADMIN_MAX_LIMIT if is_admin else MAX_LIMIT
    page_num = max(1, _parse_int(page, DEFAULT_PAGE))
    limit_num = min(max_limit, max(1, _parse_int(limit, DEFAULT_LIMIT)))
    page_num = min(page_num, MAX_OFFSET // limit_num + 1)
    return PageRequest(page=page_num, limit=limit_num)


@dataclass
class Page:
    items: list
    total_count: int
    request: PageRequest

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total_count / self.request.limit)

    def pagination(self) -> dict:
        return {
            "current_page": self.request.page,
            "total_pages": self.total_pages,
            "total_count": self.total_count,
            "limit": self.request.limit,
            "has_next_page": self.request.page < self.total_pages,
            "has_prev_page": self.request.page > 1,
        }


def fetch_page(db: Session, query: IssueQuery, page: PageRequest) -> Page:
    """Run the count and the page query concurrently and join both.

    Each job opens its own session on the request's engine, so the two may see
    slightly different snapshots under concurrent writes. Returned issues are
    detached with everything ``issue_load_options`` loads.
    """
    if query.empty:
        return Page(items=[], total_count=0, request=page)

    bind = db.get_bind()

    def _count() -> int:
        with Session(bind=bind) as session:
            return session.scalar(query.count_statement()) or 0

    def _items() -> list:
        with Session(bind=bind) as session:
            return list(session.scalars(query.data_statement(page.offset, page.limit)).all())

    count_job = _executor.submit(_count)
    items_job = _executor.submit(_items)
    return Page(items=items_job.result(), total_count=count_job.result(), request=page)
