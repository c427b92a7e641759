"""
Query engine for job listings.

Pure functions over a snapshot (a list of job copies taken from the
store). Nothing here mutates its input or touches the store lock, so
long-running listing work never blocks writers.

The composite :func:`query` is the entry point for listing UIs and always
runs filter -> text search -> sort -> paginate in that order.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional, Sequence

from jobmarket.errors import InvalidInputError
from jobmarket.jobs.models import Job

logger = logging.getLogger(__name__)

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


class SortKey(str, Enum):
    """Listing sort keys."""

    RELEVANCE = "relevance"  # No scoring defined; newest first
    DATE = "date"
    BUDGET = "budget"
    URGENCY = "urgency"


class SortOrder(str, Enum):
    ASC = "asc"
    DESC = "desc"


@dataclass
class JobFilter:
    """Conjunctive filter over job listings. Unset predicates match everything."""

    category: Optional[str] = None
    location: Optional[str] = None  # Substring of the city
    budget_min: Optional[float] = None
    budget_max: Optional[float] = None
    urgency: Optional[str] = None
    status: Optional[str] = None
    visibility: Optional[str] = None
    experience: Optional[str] = None  # Substring of the experience text
    skills: List[str] = field(default_factory=list)  # Any of these
    created_from: Optional[datetime] = None
    created_to: Optional[datetime] = None

    def __post_init__(self):
        if (
            self.budget_min is not None
            and self.budget_max is not None
            and self.budget_min > self.budget_max
        ):
            raise InvalidInputError("budget_min must not exceed budget_max")
        if (
            self.created_from is not None
            and self.created_to is not None
            and self.created_from > self.created_to
        ):
            raise InvalidInputError("created_from must not be after created_to")
        # Accept enum members as well as raw strings
        for name in ("urgency", "status", "visibility"):
            value = getattr(self, name)
            if isinstance(value, Enum):
                setattr(self, name, value.value)

    def matches(self, job: Job) -> bool:
        """Check whether ``job`` satisfies every set predicate."""
        if self.category and job.category != self.category:
            return False
        if self.location and self.location.lower() not in job.location.city.lower():
            return False
        if not job.budget.overlaps(self.budget_min, self.budget_max):
            return False
        if self.urgency and job.timeline.urgency != self.urgency:
            return False
        if self.status and job.status != self.status:
            return False
        if self.visibility and job.visibility != self.visibility:
            return False
        if self.experience and (
            self.experience.lower() not in job.requirements.experience.lower()
        ):
            return False
        if self.skills and not _has_any_skill(job, self.skills):
            return False
        if self.created_from is not None or self.created_to is not None:
            if job.created_at is None:
                return False
            if self.created_from is not None and job.created_at < self.created_from:
                return False
            if self.created_to is not None and job.created_at > self.created_to:
                return False
        return True


def _has_any_skill(job: Job, wanted: Sequence[str]) -> bool:
    job_skills = [s.lower() for s in job.requirements.skills]
    return any(w.lower() in s for w in wanted for s in job_skills)


@dataclass
class Page:
    """One page of a listing."""

    items: List[Job]
    total: int
    page: int
    page_size: int

    @property
    def has_more(self) -> bool:
        return self.page * self.page_size < self.total


@dataclass
class JobSearchParams:
    """Arguments for :func:`query`, bundled for collaborators."""

    text: Optional[str] = None
    filters: Optional[JobFilter] = None
    sort_by: SortKey = SortKey.RELEVANCE
    sort_order: SortOrder = SortOrder.DESC
    page: int = 1
    page_size: int = 20


def search(jobs: Sequence[Job], text: Optional[str] = None) -> List[Job]:
    """Case-insensitive substring match on title, description and tags."""
    if text is None or not text.strip():
        return list(jobs)
    needle = text.strip().lower()
    return [
        job
        for job in jobs
        if needle in job.title.lower()
        or needle in job.description.lower()
        or any(needle in tag.lower() for tag in job.tags)
    ]


def apply_filters(jobs: Sequence[Job], filters: Optional[JobFilter] = None) -> List[Job]:
    """Keep the jobs matching every predicate in ``filters``."""
    if filters is None:
        return list(jobs)
    return [job for job in jobs if filters.matches(job)]


def sort_jobs(
    jobs: Sequence[Job],
    sort_by: SortKey = SortKey.RELEVANCE,
    sort_order: SortOrder = SortOrder.DESC,
) -> List[Job]:
    """Return a sorted copy of ``jobs``.

    Relevance has no scoring model and always lists newest first,
    regardless of ``sort_order``. Ties keep their input order.
    """
    sort_by = SortKey(sort_by or SortKey.RELEVANCE)
    sort_order = SortOrder(sort_order or SortOrder.DESC)

    if sort_by is SortKey.RELEVANCE:
        return sorted(jobs, key=_created_key, reverse=True)
    if sort_by is SortKey.DATE:
        key = _created_key
    elif sort_by is SortKey.BUDGET:
        key = lambda job: job.budget.max_amount  # noqa: E731
    else:
        key = lambda job: job.timeline.urgency_rank  # noqa: E731
    return sorted(jobs, key=key, reverse=sort_order is SortOrder.DESC)


def _created_key(job: Job) -> datetime:
    return job.created_at or _EPOCH


def paginate(items: Sequence[Job], page: int, page_size: int) -> Page:
    """Slice out a 1-indexed page.

    Raises:
        InvalidInputError: ``page`` or ``page_size`` is not positive
    """
    if page <= 0:
        raise InvalidInputError(f"page must be positive, got {page}")
    if page_size <= 0:
        raise InvalidInputError(f"page_size must be positive, got {page_size}")
    start = (page - 1) * page_size
    return Page(
        items=list(items[start : start + page_size]),
        total=len(items),
        page=page,
        page_size=page_size,
    )


def query(
    jobs: Sequence[Job],
    text: Optional[str] = None,
    filters: Optional[JobFilter] = None,
    sort_by: SortKey = SortKey.RELEVANCE,
    sort_order: SortOrder = SortOrder.DESC,
    page: int = 1,
    page_size: int = 20,
) -> Page:
    """Filter, text-search, sort and paginate a snapshot."""
    matched = search(apply_filters(jobs, filters), text)
    ordered = sort_jobs(matched, sort_by, sort_order)
    result = paginate(ordered, page, page_size)
    logger.debug(
        "Query text=%r sort=%s/%s page=%d matched %d of %d jobs",
        text,
        SortKey(sort_by or SortKey.RELEVANCE).value,
        SortOrder(sort_order or SortOrder.DESC).value,
        page,
        result.total,
        len(jobs),
    )
    return result
