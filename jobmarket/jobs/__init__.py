"""Jobs marketplace engine.

Owns job postings, their lifecycle, competing proposals from providers,
and the listing surface clients use to discover postings.

Models:
- Job: A work posting
- Proposal: A provider's bid against a posted job
- JobStatus / ProposalStatus: Lifecycle statuses
- JobStateTransition: Audit log entry for status changes

Store:
- JobStore: Lock-guarded in-memory job table

Service:
- JobService: Lifecycle operations and read-only listings

Query / Stats:
- query, JobFilter, Page: Filter, search, sort and paginate snapshots
- stats_for, JobStats: Per-participant summaries

Events:
- NotificationBus, JobEvent, JobEventType: Post-commit announcements
"""

from jobmarket.jobs.models import (
    TERMINAL_JOB_STATUSES,
    VALID_JOB_TRANSITIONS,
    Attachment,
    Budget,
    BudgetType,
    Job,
    JobStateTransition,
    JobStatus,
    Location,
    Milestone,
    MilestoneStatus,
    Proposal,
    ProposalStatus,
    Requirements,
    Timeline,
    Urgency,
    Visibility,
)
from jobmarket.jobs.events import JobEvent, JobEventType, NotificationBus
from jobmarket.jobs.query import (
    JobFilter,
    JobSearchParams,
    Page,
    SortKey,
    SortOrder,
    apply_filters,
    paginate,
    query,
    search,
    sort_jobs,
)
from jobmarket.jobs.stats import JobStats, ParticipantRole, ReputationSource, stats_for
from jobmarket.jobs.storage import JobStore
from jobmarket.jobs.service import JobService

__all__ = [
    # Models
    "Job",
    "Proposal",
    "Milestone",
    "Budget",
    "Timeline",
    "Location",
    "Requirements",
    "Attachment",
    "JobStatus",
    "ProposalStatus",
    "MilestoneStatus",
    "BudgetType",
    "Urgency",
    "Visibility",
    "JobStateTransition",
    "VALID_JOB_TRANSITIONS",
    "TERMINAL_JOB_STATUSES",
    # Store
    "JobStore",
    # Events
    "NotificationBus",
    "JobEvent",
    "JobEventType",
    # Query
    "JobFilter",
    "JobSearchParams",
    "Page",
    "SortKey",
    "SortOrder",
    "search",
    "apply_filters",
    "sort_jobs",
    "paginate",
    "query",
    # Stats
    "JobStats",
    "ParticipantRole",
    "ReputationSource",
    "stats_for",
    # Service
    "JobService",
]
