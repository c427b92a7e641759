"""
Error taxonomy for the job marketplace engine.

Every error is raised synchronously to the caller of the failing
operation. A failed mutating operation never leaves a partial change
behind in the job store.
"""

from typing import Optional


class JobMarketError(Exception):
    """Base for all jobmarket errors."""

    pass


class NotFoundError(JobMarketError):
    """Raised when a referenced job or proposal does not exist."""

    pass


class JobNotFoundError(NotFoundError):
    """Raised when a job is not found."""

    def __init__(self, job_id: str):
        self.job_id = job_id
        super().__init__(f"Job {job_id} not found")


class ProposalNotFoundError(NotFoundError):
    """Raised when a proposal does not belong to the given job."""

    def __init__(self, job_id: str, proposal_id: str):
        self.job_id = job_id
        self.proposal_id = proposal_id
        super().__init__(f"Proposal {proposal_id} not found on job {job_id}")


class InvalidInputError(JobMarketError, ValueError):
    """Raised for missing required fields or malformed values."""

    pass


class InvalidTransitionError(JobMarketError):
    """Raised when a state change is not permitted from the current status."""

    def __init__(
        self,
        message: str,
        job_id: Optional[str] = None,
        current_status: Optional[str] = None,
        target_status: Optional[str] = None,
    ):
        self.job_id = job_id
        self.current_status = current_status
        self.target_status = target_status
        super().__init__(message)


class ConflictingMutationError(JobMarketError):
    """Reserved for optimistic concurrent-edit detection.

    The store serializes writers with a lock, so nothing raises this today.
    """

    pass
