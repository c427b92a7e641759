"""Per-participant summary metrics derived from a job snapshot.

Counts and earnings come from jobs the engine owns. Rating and response
rate are not derivable from job data; they are merged in from a
reputation collaborator when one is wired up and otherwise reported as
unavailable (None).
"""

import logging
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, Dict, Optional, Protocol, Sequence, Union

from jobmarket.errors import InvalidInputError
from jobmarket.jobs.models import Job, JobStatus

logger = logging.getLogger(__name__)


class ParticipantRole(str, Enum):
    CLIENT = "client"
    PROVIDER = "provider"


class ReputationSource(Protocol):
    """Collaborator that owns ratings and responsiveness."""

    def average_rating(self, participant_id: str) -> Optional[float]:
        """Average rating for a participant, or None if unknown."""
        ...

    def response_rate(self, participant_id: str) -> Optional[float]:
        """Fraction (0..1) of messages answered, or None if unknown."""
        ...


@dataclass
class JobStats:
    """Summary for one participant."""

    total_jobs: int = 0
    active_jobs: int = 0
    completed_jobs: int = 0
    total_earnings: float = 0.0
    average_rating: Optional[float] = None
    response_rate: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def coerce_role(role: Union[ParticipantRole, str]) -> ParticipantRole:
    try:
        return ParticipantRole(role)
    except ValueError as e:
        valid = [r.value for r in ParticipantRole]
        raise InvalidInputError(f"Invalid role: {role}. Must be one of {valid}") from e


def participant_jobs(
    jobs: Sequence[Job], participant_id: str, role: ParticipantRole
) -> list:
    """Jobs where the participant is the client or the accepted provider."""
    if coerce_role(role) is ParticipantRole.CLIENT:
        return [job for job in jobs if job.client_id == participant_id]
    return [job for job in jobs if job.engineer_id == participant_id]


def stats_for(
    jobs: Sequence[Job],
    participant_id: str,
    role: ParticipantRole,
    reputation: Optional[ReputationSource] = None,
) -> JobStats:
    """Aggregate counts and earnings for a participant.

    ``total_earnings`` sums the budget ceiling of completed jobs.
    """
    role = coerce_role(role)
    mine = participant_jobs(jobs, participant_id, role)
    completed = [job for job in mine if job.status == JobStatus.COMPLETED.value]

    stats = JobStats(
        total_jobs=len(mine),
        active_jobs=sum(1 for job in mine if job.status == JobStatus.ACTIVE.value),
        completed_jobs=len(completed),
        total_earnings=sum(job.budget.max_amount for job in completed),
    )
    if reputation is not None:
        stats.average_rating = reputation.average_rating(participant_id)
        stats.response_rate = reputation.response_rate(participant_id)

    logger.debug(
        "Stats for %s (%s): %d jobs, %d active, %d completed",
        participant_id,
        role.value,
        stats.total_jobs,
        stats.active_jobs,
        stats.completed_jobs,
    )
    return stats
