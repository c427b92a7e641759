"""
Job service for the marketplace.

Enforces the job state machine and the proposal acceptance protocol on
top of :class:`~jobmarket.jobs.storage.JobStore`, and exposes the
read-only listing surface collaborators use.

Every successful mutating operation commits one atomic store change and
then publishes exactly one event on the notification bus. Events are
never published while the store lock is held.
"""

import copy
import dataclasses
import logging
import time
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from jobmarket.config import MarketplaceSettings, get_settings
from jobmarket.errors import (
    InvalidInputError,
    InvalidTransitionError,
    JobNotFoundError,
    ProposalNotFoundError,
)
from jobmarket.jobs.events import JobEvent, JobEventType, NotificationBus
from jobmarket.jobs.models import (
    Attachment,
    Budget,
    Job,
    JobStateTransition,
    JobStatus,
    Location,
    Milestone,
    Proposal,
    ProposalStatus,
    Requirements,
    Timeline,
    Visibility,
)
from jobmarket.jobs.query import (
    JobFilter,
    JobSearchParams,
    Page,
    SortKey,
    SortOrder,
    query as query_snapshot,
)
from jobmarket.jobs.stats import (
    JobStats,
    ParticipantRole,
    ReputationSource,
    participant_jobs,
    stats_for,
)
from jobmarket.jobs.storage import DRAFT_FIELDS, JobStore, coerce_field
from jobmarket.types import new_id

logger = logging.getLogger(__name__)

# Descriptive fields that may change while a job is draft or posted
UPDATABLE_FIELDS = DRAFT_FIELDS - {"client_id", "client_name"}

# Fields protected once a proposal has been accepted
PRICING_FIELDS = frozenset({"budget", "timeline"})


class JobService:
    """Lifecycle controller and collaborator contract for job postings.

    One service wraps one store; create a fresh store per test for
    isolation.
    """

    def __init__(
        self,
        store: Optional[JobStore] = None,
        bus: Optional[NotificationBus] = None,
        settings: Optional[MarketplaceSettings] = None,
        reputation: Optional[ReputationSource] = None,
        connector: Optional[Callable[[], None]] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Initialize job service.

        Args:
            store: Job store (a new empty one if omitted)
            bus: Notification bus (a new one if omitted)
            settings: Engine settings, defaults to :func:`get_settings`
            reputation: Optional source of ratings for :meth:`stats_for`
            connector: Optional hook that reaches a remote backend; raising
                ``OSError`` triggers the bounded retry loop in :meth:`connect`
            sleep: Backoff sleep function
        """
        self.store = store or JobStore()
        self.bus = bus or NotificationBus()
        self.settings = settings or get_settings()
        self.reputation = reputation
        self._connector = connector
        self._sleep = sleep
        self._connected = False

    # =========================================================================
    # Connection Lifecycle
    # =========================================================================

    @property
    def is_connected(self) -> bool:
        return self._connected

    def connect(self) -> bool:
        """Mark the service connected.

        In-process deployments have no connector and always succeed. With a
        connector, failures are retried up to ``max_reconnect_attempts``
        times with a fixed ``reconnect_interval_seconds`` backoff.
        """
        attempts = 0
        while True:
            try:
                if self._connector is not None:
                    self._connector()
                break
            except OSError as e:
                attempts += 1
                if attempts > self.settings.max_reconnect_attempts:
                    logger.error("Job service connection failed after %d attempts: %s", attempts, e)
                    self._connected = False
                    self.bus.publish(JobEvent(JobEventType.CONNECTION_FAILED, reason=str(e)))
                    return False
                logger.warning(
                    "Job service connection attempt %d failed: %s; retrying in %.1fs",
                    attempts,
                    e,
                    self.settings.reconnect_interval_seconds,
                )
                self._sleep(self.settings.reconnect_interval_seconds)

        self._connected = True
        logger.info("Job service connected")
        self.bus.publish(JobEvent(JobEventType.CONNECTED))
        return True

    def disconnect(self) -> None:
        self._connected = False
        logger.info("Job service disconnected")
        self.bus.publish(JobEvent(JobEventType.DISCONNECTED))

    # =========================================================================
    # Job Creation and Editing
    # =========================================================================

    def create_job(
        self,
        client_id: str,
        client_name: str,
        title: str,
        description: str = "",
        category: str = "",
        subcategory: Optional[str] = None,
        location: Union[Location, Mapping[str, Any], None] = None,
        budget: Union[Budget, Mapping[str, Any], None] = None,
        timeline: Union[Timeline, Mapping[str, Any], None] = None,
        requirements: Union[Requirements, Mapping[str, Any], None] = None,
        visibility: Union[Visibility, str] = Visibility.PUBLIC,
        tags: Optional[Sequence[str]] = None,
        attachments: Optional[Sequence[Union[Attachment, Mapping[str, Any]]]] = None,
        milestones: Optional[Sequence[Union[Milestone, Mapping[str, Any]]]] = None,
    ) -> Job:
        """Create a new job in ``draft`` status.

        Raises:
            InvalidInputError: Missing identity fields or malformed budget/timeline
        """
        draft: Dict[str, Any] = {
            "client_id": client_id,
            "client_name": client_name,
            "title": title,
            "description": description,
            "category": category,
            "subcategory": subcategory,
            "visibility": visibility,
            "tags": tags or [],
            "attachments": attachments or [],
            "milestones": milestones or [],
            "location": location,
            "requirements": requirements,
            "timeline": timeline,
        }
        draft["budget"] = budget if budget is not None else {"currency": self.settings.default_currency}

        job = self.store.create(draft, actor_id=client_id)
        logger.info("Created job %s for client %s", job.id, client_id)
        self._publish(JobEventType.JOB_CREATED, job)
        return job

    def update_job(self, job_id: str, patch: Mapping[str, Any], actor_id: Optional[str] = None) -> Job:
        """Change descriptive fields of a draft or posted job.

        Budget and timeline are frozen once a proposal has been accepted.

        Raises:
            JobNotFoundError: No such job
            InvalidInputError: Unknown/protected fields or invalid values
            InvalidTransitionError: Job is past ``posted`` or pricing is frozen
        """
        if not patch:
            raise InvalidInputError("No fields to update")
        unknown = set(patch) - UPDATABLE_FIELDS
        if unknown:
            raise InvalidInputError(f"Fields cannot be updated: {sorted(unknown)}")
        try:
            changes = {name: coerce_field(name, value) for name, value in patch.items()}
        except (KeyError, TypeError, ValueError) as e:
            raise InvalidInputError(str(e)) from e

        def apply(job: Job) -> None:
            if job.status not in (JobStatus.DRAFT.value, JobStatus.POSTED.value):
                raise InvalidTransitionError(
                    f"Cannot update job in {job.status} status",
                    job_id=job.id,
                    current_status=job.status,
                )
            if PRICING_FIELDS & set(changes) and job.accepted_proposal is not None:
                raise InvalidTransitionError(
                    "Budget and timeline cannot change after a proposal is accepted",
                    job_id=job.id,
                    current_status=job.status,
                )
            try:
                candidate = dataclasses.replace(job, **changes)
            except (TypeError, ValueError) as e:
                raise InvalidInputError(str(e)) from e
            for name in changes:
                setattr(job, name, getattr(candidate, name))

        job = self.store.mutate(job_id, apply, actor_id=actor_id)
        logger.info("Updated job %s fields %s", job_id, sorted(changes))
        self._publish(JobEventType.JOB_UPDATED, job)
        return job

    # =========================================================================
    # Lifecycle Transitions
    # =========================================================================

    def post_job(self, job_id: str, actor_id: Optional[str] = None) -> Job:
        """Publish a draft job so providers can submit proposals."""

        def apply(job: Job) -> None:
            self._require_status(job, JobStatus.DRAFT, JobStatus.POSTED)
            job.status = JobStatus.POSTED.value
            if job.published_at is None:
                job.published_at = self.store.now()

        job = self.store.mutate(job_id, apply, actor_id=actor_id)
        logger.info("Job %s: draft -> posted", job_id)
        self._publish(JobEventType.JOB_POSTED, job)
        return job

    def submit_proposal(
        self,
        job_id: str,
        submitter_id: str,
        submitter_name: str,
        amount: float,
        timeline_days: int,
        cover_letter: str = "",
        attachments: Optional[Sequence[str]] = None,
        submitter_rating: Optional[float] = None,
    ) -> Tuple[Job, Proposal]:
        """Append a pending proposal to a posted job.

        Multiple proposals from the same submitter are allowed.

        Returns:
            Tuple of (updated job, new proposal)

        Raises:
            JobNotFoundError: No such job
            InvalidInputError: Invalid amount/timeline, or the client bidding
                on their own job
            InvalidTransitionError: Job is not ``posted``
        """
        try:
            proposal = Proposal(
                id=new_id("proposal"),
                job_id=job_id,
                submitter_id=submitter_id,
                submitter_name=submitter_name,
                amount=amount,
                timeline_days=timeline_days,
                cover_letter=cover_letter,
                submitter_rating=submitter_rating,
                attachments=list(attachments or []),
            )
        except (TypeError, ValueError) as e:
            raise InvalidInputError(str(e)) from e

        def apply(job: Job) -> None:
            if job.status != JobStatus.POSTED.value:
                raise InvalidTransitionError(
                    f"Job is not accepting proposals (status: {job.status})",
                    job_id=job.id,
                    current_status=job.status,
                )
            if job.client_id == submitter_id:
                raise InvalidInputError("Cannot submit a proposal on your own job")
            proposal.submitted_at = self.store.now()
            job.proposals.append(proposal)

        job = self.store.mutate(job_id, apply, actor_id=submitter_id)
        submitted = job.get_proposal(proposal.id)
        logger.info("Proposal %s submitted on job %s by %s", proposal.id, job_id, submitter_id)
        self._publish(JobEventType.JOB_APPLIED, job, submitted)
        return job, submitted

    def accept_proposal(
        self, job_id: str, proposal_id: str, actor_id: Optional[str] = None
    ) -> Tuple[Job, Proposal]:
        """Accept one proposal and reject every other proposal on the job.

        Assigns the provider, moves the job to ``active`` and settles all
        proposal statuses in one atomic store change.

        Returns:
            Tuple of (updated job, accepted proposal)

        Raises:
            JobNotFoundError: No such job
            ProposalNotFoundError: Proposal does not belong to the job
            InvalidTransitionError: Job is not ``posted`` or proposal not pending
        """

        def apply(job: Job) -> None:
            proposal = job.get_proposal(proposal_id)
            if proposal is None:
                raise ProposalNotFoundError(job_id, proposal_id)
            self._require_status(job, JobStatus.POSTED, JobStatus.ACTIVE)
            if not proposal.is_pending:
                raise InvalidTransitionError(
                    f"Proposal {proposal_id} is {proposal.status}, only pending proposals can be accepted",
                    job_id=job.id,
                    current_status=job.status,
                    target_status=JobStatus.ACTIVE.value,
                )

            job.engineer_id = proposal.submitter_id
            job.engineer_name = proposal.submitter_name
            job.status = JobStatus.ACTIVE.value
            for other in job.proposals:
                if other.id == proposal_id:
                    other.status = ProposalStatus.ACCEPTED.value
                else:
                    other.status = ProposalStatus.REJECTED.value

        job = self.store.mutate(job_id, apply, actor_id=actor_id or self._client_of(job_id))
        accepted = job.get_proposal(proposal_id)
        logger.info(
            "Job %s: posted -> active, accepted proposal %s from %s",
            job_id,
            proposal_id,
            accepted.submitter_id,
        )
        self._publish(JobEventType.PROPOSAL_ACCEPTED, job, accepted)
        return job, accepted

    def complete_job(self, job_id: str, actor_id: Optional[str] = None) -> Job:
        """Mark an active job as completed."""

        def apply(job: Job) -> None:
            self._require_status(job, JobStatus.ACTIVE, JobStatus.COMPLETED)
            job.status = JobStatus.COMPLETED.value
            job.completed_at = self.store.now()

        job = self.store.mutate(job_id, apply, actor_id=actor_id)
        logger.info("Job %s: active -> completed", job_id)
        self._publish(JobEventType.JOB_COMPLETED, job)
        return job

    def cancel_job(
        self, job_id: str, reason: Optional[str] = None, actor_id: Optional[str] = None
    ) -> Job:
        """Cancel a draft, posted or active job.

        The reason is announced on the bus and kept in the transition log;
        it is not stored on the job itself.
        """
        previous: List[str] = []

        def apply(job: Job) -> None:
            if not job.can_transition_to(JobStatus.CANCELLED):
                raise InvalidTransitionError(
                    f"Cannot cancel job in {job.status} status",
                    job_id=job.id,
                    current_status=job.status,
                    target_status=JobStatus.CANCELLED.value,
                )
            previous.append(job.status)
            job.status = JobStatus.CANCELLED.value

        job = self.store.mutate(job_id, apply, actor_id=actor_id, reason=reason)
        logger.info("Job %s: %s -> cancelled (reason: %s)", job_id, previous[0], reason)
        self._publish(JobEventType.JOB_CANCELLED, job, reason=reason)
        return job

    def expire_job(self, job_id: str, actor_id: Optional[str] = None) -> Job:
        """Retire a stale posted job.

        Expiry is always triggered externally; the engine runs no timers.
        """

        def apply(job: Job) -> None:
            self._require_status(job, JobStatus.POSTED, JobStatus.EXPIRED)
            job.status = JobStatus.EXPIRED.value

        job = self.store.mutate(job_id, apply, actor_id=actor_id)
        logger.info("Job %s: posted -> expired", job_id)
        self._publish(JobEventType.JOB_EXPIRED, job)
        return job

    # =========================================================================
    # Reads
    # =========================================================================

    def get_job(self, job_id: str) -> Job:
        """Get a copy of a job by ID."""
        return self.store.get(job_id)

    def get_job_history(self, job_id: str) -> List[JobStateTransition]:
        """Get the status transition log of a job, oldest first."""
        return self.store.get_transitions(job_id)

    def query(
        self,
        text: Optional[str] = None,
        filters: Optional[JobFilter] = None,
        sort_by: SortKey = SortKey.RELEVANCE,
        sort_order: SortOrder = SortOrder.DESC,
        page: int = 1,
        page_size: Optional[int] = None,
    ) -> Page:
        """Search, filter, sort and paginate a fresh snapshot."""
        if page_size is None:
            page_size = self.settings.default_page_size
        if page_size > self.settings.max_page_size:
            raise InvalidInputError(
                f"page_size {page_size} exceeds maximum of {self.settings.max_page_size}"
            )
        return query_snapshot(
            self.store.snapshot(),
            text=text,
            filters=filters,
            sort_by=sort_by,
            sort_order=sort_order,
            page=page,
            page_size=page_size,
        )

    def search(self, params: JobSearchParams) -> Page:
        """Run :meth:`query` with bundled parameters."""
        return self.query(
            text=params.text,
            filters=params.filters,
            sort_by=params.sort_by,
            sort_order=params.sort_order,
            page=params.page,
            page_size=params.page_size,
        )

    def search_jobs(self, text: str, filters: Optional[JobFilter] = None) -> List[Job]:
        """First page of relevance-ordered matches for ``text``."""
        return self.query(text=text, filters=filters, sort_by=SortKey.RELEVANCE).items

    def stats_for(self, participant_id: str, role: Union[ParticipantRole, str]) -> JobStats:
        """Summary metrics for a client or provider."""
        return stats_for(
            self.store.snapshot(),
            participant_id,
            role,
            reputation=self.reputation,
        )

    def get_jobs_for_client(self, client_id: str) -> List[Job]:
        return participant_jobs(self.store.snapshot(), client_id, ParticipantRole.CLIENT)

    def get_jobs_for_engineer(self, engineer_id: str) -> List[Job]:
        return participant_jobs(self.store.snapshot(), engineer_id, ParticipantRole.PROVIDER)

    def get_featured_jobs(self, limit: Optional[int] = None) -> List[Job]:
        """Public posted jobs, newest first."""
        limit = self._check_limit(limit, self.settings.featured_jobs_limit)
        featured = [
            job
            for job in self.store.snapshot()
            if job.status == JobStatus.POSTED.value and job.visibility == Visibility.PUBLIC.value
        ]
        featured.sort(key=lambda job: job.created_at, reverse=True)
        return featured[:limit]

    def get_similar_jobs(self, job_id: str, limit: Optional[int] = None) -> List[Job]:
        """Public posted jobs sharing the category or a tag with ``job_id``.

        Raises:
            JobNotFoundError: No such job
        """
        limit = self._check_limit(limit, self.settings.similar_jobs_limit)
        snapshot = self.store.snapshot()
        reference = next((job for job in snapshot if job.id == job_id), None)
        if reference is None:
            raise JobNotFoundError(job_id)

        tags = set(reference.tags)
        similar = [
            job
            for job in snapshot
            if job.id != job_id
            and job.status == JobStatus.POSTED.value
            and job.visibility == Visibility.PUBLIC.value
            and (job.category == reference.category or tags.intersection(job.tags))
        ]
        similar.sort(key=lambda job: job.created_at, reverse=True)
        return similar[:limit]

    def service_stats(self) -> Dict[str, Any]:
        """Engine-wide counters."""
        snapshot = self.store.snapshot()
        return {
            "total_jobs": len(snapshot),
            "active_jobs": sum(1 for job in snapshot if job.status == JobStatus.ACTIVE.value),
            "is_connected": self._connected,
        }

    # =========================================================================
    # Helpers
    # =========================================================================

    def _require_status(self, job: Job, expected: JobStatus, target: JobStatus) -> None:
        if job.status != expected.value:
            raise InvalidTransitionError(
                f"Cannot move job from {job.status} to {target.value} (must be {expected.value})",
                job_id=job.id,
                current_status=job.status,
                target_status=target.value,
            )

    def _client_of(self, job_id: str) -> Optional[str]:
        try:
            return self.store.get(job_id).client_id
        except JobNotFoundError:
            return None

    @staticmethod
    def _check_limit(limit: Optional[int], default: int) -> int:
        if limit is None:
            return default
        if limit <= 0:
            raise InvalidInputError(f"limit must be positive, got {limit}")
        return limit

    def _publish(
        self,
        event_type: JobEventType,
        job: Job,
        proposal: Optional[Proposal] = None,
        reason: Optional[str] = None,
    ) -> None:
        # Events carry copies independent of the job returned to the caller
        self.bus.publish(
            JobEvent(
                event_type=event_type,
                job=copy.deepcopy(job),
                proposal=copy.deepcopy(proposal),
                reason=reason,
            )
        )
