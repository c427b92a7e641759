"""
Job marketplace data models.

A Job is posted by a client, collects competing Proposals from service
providers while ``posted``, and is fulfilled by at most one accepted
provider. Embedded value shapes (Budget, Timeline, Location, ...) are
owned by their Job; the job store hands out copies only.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Type

from jobmarket.types import format_datetime, new_id, parse_datetime, utc_now

MAX_TITLE_LENGTH = 200


class JobStatus(str, Enum):
    """Job lifecycle status."""

    DRAFT = "draft"  # Created, not visible to providers
    POSTED = "posted"  # Open for proposals
    ACTIVE = "active"  # A proposal was accepted, work in progress
    PENDING = "pending"  # Legacy value, no transitions in or out
    COMPLETED = "completed"  # Work finished (terminal)
    CANCELLED = "cancelled"  # Cancelled by client or admin (terminal)
    EXPIRED = "expired"  # Stale posting retired externally (terminal)


class ProposalStatus(str, Enum):
    """Proposal lifecycle status."""

    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    WITHDRAWN = "withdrawn"


class MilestoneStatus(str, Enum):
    """Milestone progress status."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    APPROVED = "approved"


class BudgetType(str, Enum):
    """Pricing mode of a job budget."""

    FIXED = "fixed"
    HOURLY = "hourly"
    MILESTONE = "milestone"


class Urgency(str, Enum):
    """Urgency tier, ordered standard < priority < emergency."""

    STANDARD = "standard"
    PRIORITY = "priority"
    EMERGENCY = "emergency"

    @property
    def rank(self) -> int:
        """Sort rank of this tier (1 = least urgent)."""
        return _URGENCY_RANK[self]


_URGENCY_RANK = {
    Urgency.STANDARD: 1,
    Urgency.PRIORITY: 2,
    Urgency.EMERGENCY: 3,
}


class Visibility(str, Enum):
    """Who may discover a job through listings."""

    PUBLIC = "public"
    PRIVATE = "private"
    INVITE_ONLY = "invite_only"


# Valid state transitions for jobs
VALID_JOB_TRANSITIONS: Dict[JobStatus, set] = {
    JobStatus.DRAFT: {JobStatus.POSTED, JobStatus.CANCELLED},
    JobStatus.POSTED: {JobStatus.ACTIVE, JobStatus.CANCELLED, JobStatus.EXPIRED},
    JobStatus.ACTIVE: {JobStatus.COMPLETED, JobStatus.CANCELLED},
    JobStatus.PENDING: set(),
    JobStatus.COMPLETED: set(),
    JobStatus.CANCELLED: set(),
    JobStatus.EXPIRED: set(),
}

TERMINAL_JOB_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.CANCELLED, JobStatus.EXPIRED})


def _coerce(value: Any, enum_cls: Type[Enum], label: str) -> str:
    """Normalize an enum member or raw string to the enum's string value."""
    if isinstance(value, enum_cls):
        return value.value
    valid = [e.value for e in enum_cls]
    if value not in valid:
        raise ValueError(f"Invalid {label}: {value}. Must be one of {valid}")
    return value


@dataclass
class Location:
    """Where the work takes place."""

    address: str = ""
    latitude: float = 0.0
    longitude: float = 0.0
    city: str = ""
    region: str = ""

    def __post_init__(self):
        if not -90.0 <= self.latitude <= 90.0:
            raise ValueError(f"Latitude out of range: {self.latitude}")
        if not -180.0 <= self.longitude <= 180.0:
            raise ValueError(f"Longitude out of range: {self.longitude}")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "address": self.address,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "city": self.city,
            "region": self.region,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Location":
        return cls(
            address=data.get("address", ""),
            latitude=data.get("latitude", 0.0),
            longitude=data.get("longitude", 0.0),
            city=data.get("city", ""),
            region=data.get("region", ""),
        )


@dataclass
class Budget:
    """Budget range for a job.

    Invariant: ``min_amount <= max_amount``.
    """

    min_amount: float = 0.0
    max_amount: float = 0.0
    currency: str = "SAR"
    budget_type: str = BudgetType.FIXED.value

    def __post_init__(self):
        self.budget_type = _coerce(self.budget_type, BudgetType, "budget type")
        if self.min_amount < 0 or self.max_amount < 0:
            raise ValueError("Budget amounts cannot be negative")
        if self.min_amount > self.max_amount:
            raise ValueError(
                f"Budget minimum ({self.min_amount}) exceeds maximum ({self.max_amount})"
            )
        if not self.currency:
            raise ValueError("Budget currency cannot be empty")

    def overlaps(self, low: Optional[float], high: Optional[float]) -> bool:
        """Check whether this range intersects ``[low, high]`` (open bounds allowed)."""
        if low is not None and self.max_amount < low:
            return False
        if high is not None and self.min_amount > high:
            return False
        return True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "min_amount": self.min_amount,
            "max_amount": self.max_amount,
            "currency": self.currency,
            "budget_type": self.budget_type,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Budget":
        return cls(
            min_amount=data.get("min_amount", 0.0),
            max_amount=data.get("max_amount", 0.0),
            currency=data.get("currency", "SAR"),
            budget_type=data.get("budget_type", BudgetType.FIXED.value),
        )


@dataclass
class Timeline:
    """Schedule for a job.

    Invariant: ``start_date <= end_date``. Missing dates default to now,
    and a missing end date defaults to the start date.
    """

    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    estimated_duration: int = 0  # days
    urgency: str = Urgency.STANDARD.value

    def __post_init__(self):
        self.urgency = _coerce(self.urgency, Urgency, "urgency")
        self.start_date = parse_datetime(self.start_date) or utc_now()
        self.end_date = parse_datetime(self.end_date) or self.start_date
        if self.start_date > self.end_date:
            raise ValueError("Timeline start date must not be after end date")
        if self.estimated_duration < 0:
            raise ValueError("Estimated duration cannot be negative")

    @property
    def urgency_rank(self) -> int:
        return Urgency(self.urgency).rank

    def to_dict(self) -> Dict[str, Any]:
        return {
            "start_date": format_datetime(self.start_date),
            "end_date": format_datetime(self.end_date),
            "estimated_duration": self.estimated_duration,
            "urgency": self.urgency,
        }

    @classmethod
    def from_dict(
        cls, data: Dict[str, Any], default_start: Optional[datetime] = None
    ) -> "Timeline":
        return cls(
            start_date=parse_datetime(data.get("start_date")) or default_start,
            end_date=parse_datetime(data.get("end_date")),
            estimated_duration=data.get("estimated_duration", 0),
            urgency=data.get("urgency", Urgency.STANDARD.value),
        )


@dataclass
class Requirements:
    """What a provider needs to bring."""

    experience: str = ""
    skills: List[str] = field(default_factory=list)
    certifications: List[str] = field(default_factory=list)
    special_requirements: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "experience": self.experience,
            "skills": list(self.skills),
            "certifications": list(self.certifications),
            "special_requirements": self.special_requirements,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Requirements":
        return cls(
            experience=data.get("experience", ""),
            skills=list(data.get("skills", [])),
            certifications=list(data.get("certifications", [])),
            special_requirements=data.get("special_requirements", ""),
        )


@dataclass
class Attachment:
    """Opaque file reference. The engine never inspects the content."""

    id: str
    name: str
    url: str
    file_type: str = ""
    size: int = 0

    def __post_init__(self):
        if self.size < 0:
            raise ValueError("Attachment size cannot be negative")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "url": self.url,
            "file_type": self.file_type,
            "size": self.size,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Attachment":
        return cls(
            id=data["id"],
            name=data["name"],
            url=data["url"],
            file_type=data.get("file_type", ""),
            size=data.get("size", 0),
        )


@dataclass
class Milestone:
    """A payable checkpoint of a job.

    Milestone amounts are advisory; their sum is not checked against the
    job budget.
    """

    id: str
    title: str
    amount: float
    description: str = ""
    due_date: Optional[datetime] = None
    status: str = MilestoneStatus.PENDING.value

    def __post_init__(self):
        self.status = _coerce(self.status, MilestoneStatus, "milestone status")
        self.due_date = parse_datetime(self.due_date)
        if self.amount < 0:
            raise ValueError("Milestone amount cannot be negative")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "amount": self.amount,
            "due_date": format_datetime(self.due_date),
            "status": self.status,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Milestone":
        return cls(
            id=data.get("id") or new_id("milestone"),
            title=data["title"],
            amount=data.get("amount", 0.0),
            description=data.get("description", ""),
            due_date=parse_datetime(data.get("due_date")),
            status=data.get("status", MilestoneStatus.PENDING.value),
        )


@dataclass
class Proposal:
    """A provider's bid against a posted job.

    ``submitter_rating`` is a snapshot taken at submission time, not a live
    reference to the provider's reputation.
    """

    id: str
    job_id: str
    submitter_id: str
    submitter_name: str
    amount: float
    timeline_days: int
    cover_letter: str = ""
    submitter_rating: Optional[float] = None
    attachments: List[str] = field(default_factory=list)
    status: str = ProposalStatus.PENDING.value
    submitted_at: datetime = field(default_factory=utc_now)

    def __post_init__(self):
        self.status = _coerce(self.status, ProposalStatus, "proposal status")
        if not self.submitter_id:
            raise ValueError("Proposal submitter_id cannot be empty")
        if self.amount <= 0:
            raise ValueError("Proposed amount must be positive")
        if self.timeline_days < 0:
            raise ValueError("Proposed timeline cannot be negative")

    @property
    def is_pending(self) -> bool:
        return self.status == ProposalStatus.PENDING.value

    @property
    def is_accepted(self) -> bool:
        return self.status == ProposalStatus.ACCEPTED.value

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "job_id": self.job_id,
            "submitter_id": self.submitter_id,
            "submitter_name": self.submitter_name,
            "submitter_rating": self.submitter_rating,
            "amount": self.amount,
            "timeline_days": self.timeline_days,
            "cover_letter": self.cover_letter,
            "attachments": list(self.attachments),
            "status": self.status,
            "submitted_at": format_datetime(self.submitted_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Proposal":
        return cls(
            id=data["id"],
            job_id=data["job_id"],
            submitter_id=data["submitter_id"],
            submitter_name=data.get("submitter_name", ""),
            submitter_rating=data.get("submitter_rating"),
            amount=data["amount"],
            timeline_days=data.get("timeline_days", 0),
            cover_letter=data.get("cover_letter", ""),
            attachments=list(data.get("attachments", [])),
            status=data.get("status", ProposalStatus.PENDING.value),
            submitted_at=parse_datetime(data.get("submitted_at")) or utc_now(),
        )


@dataclass
class Job:
    """A unit of work posted by a client.

    Attributes:
        id: Opaque identifier assigned by the store
        title: Short job title (max 200 chars)
        client_id: Posting client's identifier
        client_name: Posting client's display name
        engineer_id: Accepted provider's identifier (None until acceptance)
        engineer_name: Accepted provider's display name
        status: Lifecycle status (see VALID_JOB_TRANSITIONS)
        visibility: public, private or invite_only
        proposals: Bids in submission order; append-only apart from status
        published_at: Set on the transition into ``posted``
        completed_at: Set on the transition into ``completed``
    """

    id: str
    title: str
    client_id: str
    client_name: str
    description: str = ""
    category: str = ""
    subcategory: Optional[str] = None
    engineer_id: Optional[str] = None
    engineer_name: Optional[str] = None
    location: Location = field(default_factory=Location)
    budget: Budget = field(default_factory=Budget)
    timeline: Timeline = field(default_factory=Timeline)
    requirements: Requirements = field(default_factory=Requirements)
    status: str = JobStatus.DRAFT.value
    visibility: str = Visibility.PUBLIC.value
    tags: List[str] = field(default_factory=list)
    attachments: List[Attachment] = field(default_factory=list)
    milestones: List[Milestone] = field(default_factory=list)
    proposals: List[Proposal] = field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    published_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    def __post_init__(self):
        """Validate job data."""
        self.status = _coerce(self.status, JobStatus, "status")
        self.visibility = _coerce(self.visibility, Visibility, "visibility")
        if not self.id:
            raise ValueError("Job id cannot be empty")
        if not self.client_id:
            raise ValueError("client_id is required")
        if not self.client_name:
            raise ValueError("client_name is required")
        if not self.title or not self.title.strip():
            raise ValueError("title is required")
        if len(self.title) > MAX_TITLE_LENGTH:
            raise ValueError(f"Title too long (max {MAX_TITLE_LENGTH} chars)")

    def can_transition_to(self, new_status: JobStatus) -> bool:
        """Check if transition to new status is valid."""
        current = JobStatus(self.status)
        return JobStatus(new_status) in VALID_JOB_TRANSITIONS.get(current, set())

    @property
    def is_terminal(self) -> bool:
        """Check if job is in a terminal state."""
        return JobStatus(self.status) in TERMINAL_JOB_STATUSES

    @property
    def is_open(self) -> bool:
        """Check if job is accepting proposals."""
        return self.status == JobStatus.POSTED.value

    @property
    def accepted_proposal(self) -> Optional[Proposal]:
        for proposal in self.proposals:
            if proposal.is_accepted:
                return proposal
        return None

    @property
    def milestone_total(self) -> float:
        """Sum of milestone amounts (advisory only)."""
        return sum(m.amount for m in self.milestones)

    def get_proposal(self, proposal_id: str) -> Optional[Proposal]:
        for proposal in self.proposals:
            if proposal.id == proposal_id:
                return proposal
        return None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for collaborators."""
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "category": self.category,
            "subcategory": self.subcategory,
            "client_id": self.client_id,
            "client_name": self.client_name,
            "engineer_id": self.engineer_id,
            "engineer_name": self.engineer_name,
            "location": self.location.to_dict(),
            "budget": self.budget.to_dict(),
            "timeline": self.timeline.to_dict(),
            "requirements": self.requirements.to_dict(),
            "status": self.status,
            "visibility": self.visibility,
            "tags": list(self.tags),
            "attachments": [a.to_dict() for a in self.attachments],
            "milestones": [m.to_dict() for m in self.milestones],
            "proposals": [p.to_dict() for p in self.proposals],
            "created_at": format_datetime(self.created_at),
            "updated_at": format_datetime(self.updated_at),
            "published_at": format_datetime(self.published_at),
            "completed_at": format_datetime(self.completed_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Job":
        """Create from dictionary."""
        return cls(
            id=data["id"],
            title=data["title"],
            description=data.get("description", ""),
            category=data.get("category", ""),
            subcategory=data.get("subcategory"),
            client_id=data["client_id"],
            client_name=data["client_name"],
            engineer_id=data.get("engineer_id"),
            engineer_name=data.get("engineer_name"),
            location=Location.from_dict(data.get("location") or {}),
            budget=Budget.from_dict(data.get("budget") or {}),
            timeline=Timeline.from_dict(data.get("timeline") or {}),
            requirements=Requirements.from_dict(data.get("requirements") or {}),
            status=data.get("status", JobStatus.DRAFT.value),
            visibility=data.get("visibility", Visibility.PUBLIC.value),
            tags=list(data.get("tags", [])),
            attachments=[Attachment.from_dict(a) for a in data.get("attachments", [])],
            milestones=[Milestone.from_dict(m) for m in data.get("milestones", [])],
            proposals=[Proposal.from_dict(p) for p in data.get("proposals", [])],
            created_at=parse_datetime(data.get("created_at")),
            updated_at=parse_datetime(data.get("updated_at")),
            published_at=parse_datetime(data.get("published_at")),
            completed_at=parse_datetime(data.get("completed_at")),
        )


@dataclass
class JobStateTransition:
    """Audit log entry for a job status change."""

    id: str
    job_id: str
    to_status: str
    from_status: Optional[str] = None  # None for the initial draft entry
    actor_id: Optional[str] = None
    reason: Optional[str] = None
    created_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "job_id": self.job_id,
            "from_status": self.from_status,
            "to_status": self.to_status,
            "actor_id": self.actor_id,
            "reason": self.reason,
            "created_at": format_datetime(self.created_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "JobStateTransition":
        return cls(
            id=data["id"],
            job_id=data["job_id"],
            from_status=data.get("from_status"),
            to_status=data["to_status"],
            actor_id=data.get("actor_id"),
            reason=data.get("reason"),
            created_at=parse_datetime(data.get("created_at")) or utc_now(),
        )
