"""
jobmarket - Job marketplace lifecycle and matching engine.

Job postings, competing proposals, atomic proposal acceptance and a
search/filter/sort/paginate surface over consistent snapshots.
"""

from .errors import (
    ConflictingMutationError,
    InvalidInputError,
    InvalidTransitionError,
    JobMarketError,
    JobNotFoundError,
    NotFoundError,
    ProposalNotFoundError,
)
from .jobs import JobService, JobStore, NotificationBus

try:
    from importlib.metadata import version

    __version__ = version("jobmarket")
except Exception:
    __version__ = "0.0.0"

__all__ = [
    "JobService",
    "JobStore",
    "NotificationBus",
    "JobMarketError",
    "NotFoundError",
    "JobNotFoundError",
    "ProposalNotFoundError",
    "InvalidInputError",
    "InvalidTransitionError",
    "ConflictingMutationError",
]
