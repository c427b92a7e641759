"""
Jobs storage layer.

Holds the canonical in-memory table of jobs for one marketplace. All
writes go through a single lock per store instance; readers receive deep
copies so that nothing outside the store can alias live job data.
"""

import copy
import logging
import threading
from datetime import datetime
from typing import Any, Callable, Dict, List, Mapping, Optional

from jobmarket.errors import InvalidInputError, JobNotFoundError
from jobmarket.jobs.models import (
    Attachment,
    Budget,
    Job,
    JobStateTransition,
    JobStatus,
    Location,
    Milestone,
    Requirements,
    Timeline,
)
from jobmarket.types import new_id, utc_now

logger = logging.getLogger(__name__)

# Fields a caller may supply when drafting a job. Identity, status,
# provider assignment, proposals and timestamps are owned by the store.
DRAFT_FIELDS = frozenset(
    {
        "title",
        "description",
        "category",
        "subcategory",
        "client_id",
        "client_name",
        "location",
        "budget",
        "timeline",
        "requirements",
        "visibility",
        "tags",
        "attachments",
        "milestones",
    }
)

Mutation = Callable[[Job], None]

_VALUE_TYPES = {
    "location": Location,
    "budget": Budget,
    "timeline": Timeline,
    "requirements": Requirements,
}


def coerce_field(name: str, value: Any, now: Optional[datetime] = None) -> Any:
    """Turn a caller-supplied field value into a value the store owns.

    Plain dicts become model objects; model objects and lists are deep
    copied so the caller keeps no handle on stored job data. A timeline
    dict without a start date starts at ``now`` when given.
    """
    if name == "timeline" and isinstance(value, Mapping):
        return Timeline.from_dict(value, default_start=now)
    if name in _VALUE_TYPES and isinstance(value, Mapping):
        return _VALUE_TYPES[name].from_dict(value)
    if name == "attachments" and value is not None:
        return [Attachment.from_dict(a) if isinstance(a, Mapping) else copy.deepcopy(a) for a in value]
    if name == "milestones" and value is not None:
        return [Milestone.from_dict(m) if isinstance(m, Mapping) else copy.deepcopy(m) for m in value]
    if name == "tags" and value is not None:
        return list(value)
    return copy.deepcopy(value)


class JobStore:
    """Authoritative in-memory job table.

    ``mutate`` is the only path by which a stored job changes after
    creation. The mutation function runs against a private copy that is
    committed only if it returns normally, so a failing operation leaves
    the store exactly as it was.
    """

    def __init__(self, clock: Optional[Callable[[], datetime]] = None):
        """
        Initialize empty storage.

        Args:
            clock: Timestamp source, defaults to :func:`utc_now`
        """
        self._lock = threading.RLock()
        self._jobs: Dict[str, Job] = {}
        self._transitions: Dict[str, List[JobStateTransition]] = {}
        self._clock = clock or utc_now

    def now(self) -> datetime:
        """Current timestamp according to the store's clock."""
        return self._clock()

    # === Writes ===

    def create(self, draft: Mapping[str, Any], actor_id: Optional[str] = None) -> Job:
        """Store a new job in ``draft`` status.

        Args:
            draft: Job fields (see DRAFT_FIELDS)
            actor_id: Who created the job, for the audit log

        Returns:
            A copy of the stored job

        Raises:
            InvalidInputError: Unknown fields or invalid values
        """
        unknown = set(draft) - DRAFT_FIELDS
        if unknown:
            raise InvalidInputError(f"Fields cannot be set on create: {sorted(unknown)}")

        with self._lock:
            now = self._clock()
            try:
                fields = {
                    name: coerce_field(name, value, now)
                    for name, value in draft.items()
                    if value is not None or name not in _VALUE_TYPES
                }
                if "timeline" not in fields:
                    fields["timeline"] = Timeline(start_date=now)
                job = Job(
                    id=new_id("job"),
                    status=JobStatus.DRAFT,
                    created_at=now,
                    updated_at=now,
                    **fields,
                )
            except (KeyError, TypeError, ValueError) as e:
                raise InvalidInputError(str(e)) from e

            self._jobs[job.id] = job
            self._transitions[job.id] = [
                JobStateTransition(
                    id=new_id("transition"),
                    job_id=job.id,
                    from_status=None,
                    to_status=job.status,
                    actor_id=actor_id or job.client_id,
                    created_at=now,
                )
            ]
            logger.debug("Stored job %s", job.id)
            return copy.deepcopy(job)

    def mutate(
        self,
        job_id: str,
        fn: Mutation,
        actor_id: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> Job:
        """Apply ``fn`` to one job atomically and stamp ``updated_at``.

        Args:
            job_id: Job to change
            fn: Callable that edits the job in place; raising aborts the change
            actor_id: Who caused the change, recorded on status transitions
            reason: Optional reason recorded on status transitions

        Returns:
            A copy of the committed job

        Raises:
            JobNotFoundError: No such job
        """
        with self._lock:
            current = self._jobs.get(job_id)
            if current is None:
                raise JobNotFoundError(job_id)

            working = copy.deepcopy(current)
            fn(working)

            now = self._clock()
            working.updated_at = now
            if working.status != current.status:
                self._transitions[job_id].append(
                    JobStateTransition(
                        id=new_id("transition"),
                        job_id=job_id,
                        from_status=current.status,
                        to_status=working.status,
                        actor_id=actor_id,
                        reason=reason,
                        created_at=now,
                    )
                )
            self._jobs[job_id] = working
            return copy.deepcopy(working)

    # === Reads ===

    def get(self, job_id: str) -> Job:
        """Get a copy of a job by ID."""
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                raise JobNotFoundError(job_id)
            return copy.deepcopy(job)

    def snapshot(self) -> List[Job]:
        """Independent copies of all jobs, in creation order."""
        with self._lock:
            return copy.deepcopy(list(self._jobs.values()))

    def get_transitions(self, job_id: str) -> List[JobStateTransition]:
        """Get all state transitions for a job, oldest first."""
        with self._lock:
            if job_id not in self._jobs:
                raise JobNotFoundError(job_id)
            return copy.deepcopy(self._transitions[job_id])

    def __contains__(self, job_id: object) -> bool:
        with self._lock:
            return job_id in self._jobs

    def __len__(self) -> int:
        with self._lock:
            return len(self._jobs)
