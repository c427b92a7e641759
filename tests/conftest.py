"""
Pytest fixtures and test configuration for jobmarket tests.
"""

from datetime import datetime, timedelta, timezone

import pytest

from jobmarket.config import MarketplaceSettings
from jobmarket.jobs.events import NotificationBus
from jobmarket.jobs.service import JobService
from jobmarket.jobs.storage import JobStore


class TickingClock:
    """Deterministic clock that advances one second per reading."""

    def __init__(self, start: datetime = datetime(2024, 1, 1, tzinfo=timezone.utc)):
        self.current = start

    def __call__(self) -> datetime:
        self.current += timedelta(seconds=1)
        return self.current


@pytest.fixture
def clock():
    return TickingClock()


@pytest.fixture
def store(clock):
    """Fresh job store per test."""
    return JobStore(clock=clock)


@pytest.fixture
def bus():
    return NotificationBus()


@pytest.fixture
def settings():
    """Settings with no backoff delay."""
    return MarketplaceSettings(
        default_page_size=20,
        max_page_size=50,
        max_reconnect_attempts=2,
        reconnect_interval_seconds=0.0,
    )


@pytest.fixture
def events(bus):
    """Every event published on the bus, in order."""
    received = []
    bus.subscribe(None, received.append)
    return received


@pytest.fixture
def service(store, bus, settings):
    return JobService(store=store, bus=bus, settings=settings)


@pytest.fixture
def make_job(service):
    """Factory for draft jobs with sensible defaults."""

    def _make_job(**overrides):
        fields = {
            "client_id": "client_1",
            "client_name": "Ahmed Al-Rashid",
            "title": "Site Survey for NEOM Project",
            "description": "Topographical survey, utility mapping and environmental assessment.",
            "category": "Surveying",
            "budget": {"min_amount": 12000, "max_amount": 15000, "currency": "SAR"},
        }
        fields.update(overrides)
        return service.create_job(**fields)

    return _make_job


@pytest.fixture
def posted_job(service, make_job):
    """A job that is open for proposals."""
    job = make_job()
    return service.post_job(job.id)
