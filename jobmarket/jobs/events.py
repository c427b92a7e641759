"""
Notification bus for job lifecycle events.

Events are published after the store has committed a change, never from
inside the store's critical section. Handlers run synchronously in the
publishing thread; a handler that raises is logged and skipped so it
cannot stall the lifecycle controller or other subscribers.
"""

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable, Dict, List, Optional

from jobmarket.jobs.models import Job, Proposal
from jobmarket.types import utc_now

logger = logging.getLogger(__name__)


class JobEventType(str, Enum):
    """Kinds of events announced by the marketplace engine."""

    JOB_CREATED = "job_created"
    JOB_POSTED = "job_posted"
    JOB_APPLIED = "job_applied"
    PROPOSAL_ACCEPTED = "proposal_accepted"
    JOB_COMPLETED = "job_completed"
    JOB_CANCELLED = "job_cancelled"
    JOB_EXPIRED = "job_expired"
    JOB_UPDATED = "job_updated"
    # Connection lifecycle
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    CONNECTION_FAILED = "connection_failed"


@dataclass
class JobEvent:
    """A single announcement on the bus."""

    event_type: JobEventType
    job: Optional[Job] = None
    proposal: Optional[Proposal] = None
    reason: Optional[str] = None
    occurred_at: datetime = field(default_factory=utc_now)

    @property
    def job_id(self) -> Optional[str]:
        return self.job.id if self.job else None


Handler = Callable[[JobEvent], None]


class NotificationBus:
    """Process-local publish/subscribe fan-out.

    Subscribe to one event type, or pass ``None`` to receive every event.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._handlers: Dict[Optional[JobEventType], List[Handler]] = {}

    def subscribe(
        self, event_type: Optional[JobEventType], handler: Handler
    ) -> Callable[[], None]:
        """Register ``handler`` and return a callable that unregisters it."""
        key = JobEventType(event_type) if event_type is not None else None
        with self._lock:
            self._handlers.setdefault(key, []).append(handler)

        def unsubscribe() -> None:
            with self._lock:
                handlers = self._handlers.get(key, [])
                if handler in handlers:
                    handlers.remove(handler)

        return unsubscribe

    def publish(self, event: JobEvent) -> int:
        """Deliver ``event`` to matching handlers.

        Returns:
            Number of handlers that ran without raising
        """
        with self._lock:
            handlers = list(self._handlers.get(event.event_type, []))
            handlers.extend(self._handlers.get(None, []))

        delivered = 0
        for handler in handlers:
            try:
                handler(event)
                delivered += 1
            except Exception:
                logger.exception(
                    "Subscriber %r failed on %s for job %s",
                    handler,
                    event.event_type.value,
                    event.job_id,
                )
        return delivered

    def subscriber_count(self, event_type: Optional[JobEventType] = None) -> int:
        with self._lock:
            return len(self._handlers.get(event_type, []))
