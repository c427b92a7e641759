"""Tests for job service."""

import pytest

from jobmarket.errors import (
    InvalidInputError,
    InvalidTransitionError,
    JobNotFoundError,
    NotFoundError,
    ProposalNotFoundError,
)
from jobmarket.jobs.events import JobEventType
from jobmarket.jobs.models import VALID_JOB_TRANSITIONS, Budget, JobStatus, Requirements
from jobmarket.jobs.service import JobService
from jobmarket.jobs.stats import ParticipantRole


def setup_active_job(service, make_job):
    """Helper to set up a job with an accepted proposal."""
    job = make_job()
    service.post_job(job.id)
    _, proposal = service.submit_proposal(job.id, "engineer_1", "Sarah", 9500, 15, "Hire me")
    job, _ = service.accept_proposal(job.id, proposal.id)
    return job


class TestJobCreation:
    """Tests for job creation."""

    def test_create_job_basic(self, service, events):
        job = service.create_job(client_id="client_1", client_name="Ahmed", title="Survey")

        assert job.status == "draft"
        assert job.client_id == "client_1"
        assert job.engineer_id is None
        assert job.created_at is not None
        assert job.budget.currency == "SAR"
        assert [e.event_type for e in events] == [JobEventType.JOB_CREATED]
        assert events[0].job.id == job.id

    def test_create_job_from_plain_dicts(self, service):
        job = service.create_job(
            client_id="client_1",
            client_name="Ahmed",
            title="Survey",
            location={"address": "NEOM", "city": "Tabuk", "region": "Tabuk Province",
                      "latitude": 28.3998, "longitude": 36.566},
            timeline={"start_date": "2024-01-15T00:00:00Z", "end_date": "2024-02-15T00:00:00Z",
                      "estimated_duration": 30, "urgency": "priority"},
            requirements={"experience": "5+ years", "skills": ["CAD", "GIS"]},
            milestones=[{"title": "Initial Survey", "amount": 5000}],
            attachments=[{"id": "a1", "name": "site.pdf", "url": "https://files.example/site.pdf"}],
            visibility="invite_only",
            tags=["surveying", "neom"],
        )

        assert job.location.city == "Tabuk"
        assert job.timeline.urgency == "priority"
        assert job.requirements.skills == ["CAD", "GIS"]
        assert job.milestones[0].status == "pending"
        assert job.attachments[0].name == "site.pdf"
        assert job.visibility == "invite_only"

    def test_create_job_missing_client_fails(self, service, events):
        with pytest.raises(InvalidInputError, match="client_id"):
            service.create_job(client_id="", client_name="Ahmed", title="Survey")
        assert events == []

    def test_create_job_bad_budget_fails(self, service):
        with pytest.raises(InvalidInputError, match="exceeds maximum"):
            service.create_job(
                client_id="client_1",
                client_name="Ahmed",
                title="Survey",
                budget={"min_amount": 15000, "max_amount": 12000},
            )

    def test_create_job_bad_timeline_fails(self, service):
        with pytest.raises(InvalidInputError, match="start date"):
            service.create_job(
                client_id="client_1",
                client_name="Ahmed",
                title="Survey",
                timeline={"start_date": "2024-03-01T00:00:00Z", "end_date": "2024-02-01T00:00:00Z"},
            )

    def test_create_job_non_string_date_fails(self, service, events):
        with pytest.raises(InvalidInputError, match="ISO datetime"):
            service.create_job(
                client_id="client_1",
                client_name="Ahmed",
                title="Survey",
                timeline={"start_date": 20240101},
            )
        assert events == []
        assert len(service.store) == 0

    def test_create_job_keeps_no_reference_to_caller_objects(self, service):
        budget = Budget(min_amount=12000, max_amount=15000)
        requirements = Requirements(skills=["CAD"])

        job = service.create_job(
            client_id="client_1",
            client_name="Ahmed",
            title="Survey",
            budget=budget,
            requirements=requirements,
        )
        budget.max_amount = 1
        requirements.skills.append("GIS")

        stored = service.get_job(job.id)
        assert stored.budget.max_amount == 15000
        assert stored.requirements.skills == ["CAD"]

    def test_default_timeline_starts_at_creation(self, service, make_job):
        job = make_job()
        with_dict = make_job(timeline={"urgency": "priority"})

        assert job.timeline.start_date == job.created_at
        assert with_dict.timeline.start_date == with_dict.created_at
        assert with_dict.timeline.end_date == with_dict.created_at

    def test_create_job_bad_visibility_fails(self, service):
        with pytest.raises(InvalidInputError, match="Invalid visibility"):
            service.create_job(client_id="c", client_name="C", title="T", visibility="secret")


class TestPosting:
    """Tests for posting jobs."""

    def test_post_job(self, service, make_job, events):
        job = make_job()

        posted = service.post_job(job.id)

        assert posted.status == "posted"
        assert posted.published_at is not None
        assert events[-1].event_type == JobEventType.JOB_POSTED

    def test_post_already_posted_fails(self, service, posted_job):
        with pytest.raises(InvalidTransitionError) as exc_info:
            service.post_job(posted_job.id)

        assert exc_info.value.current_status == "posted"
        assert exc_info.value.target_status == "posted"

    def test_post_missing_job(self, service):
        with pytest.raises(JobNotFoundError):
            service.post_job("job_missing")


class TestProposals:
    """Tests for proposal submission and acceptance."""

    def test_submit_proposal(self, service, posted_job, events):
        job, proposal = service.submit_proposal(
            posted_job.id, "engineer_1", "Sarah", 9500, 15, "Experienced surveyor",
            attachments=["portfolio.pdf"], submitter_rating=4.8,
        )

        assert proposal.status == "pending"
        assert proposal.submitter_rating == 4.8
        assert proposal.attachments == ["portfolio.pdf"]
        assert job.proposals[-1].id == proposal.id
        assert events[-1].event_type == JobEventType.JOB_APPLIED
        assert events[-1].proposal.id == proposal.id

    def test_same_submitter_may_propose_twice(self, service, posted_job):
        service.submit_proposal(posted_job.id, "engineer_1", "Sarah", 9500, 15)
        job, _ = service.submit_proposal(posted_job.id, "engineer_1", "Sarah", 9000, 14)

        assert len(job.proposals) == 2

    def test_submit_to_draft_fails(self, service, make_job):
        job = make_job()

        with pytest.raises(InvalidTransitionError, match="not accepting"):
            service.submit_proposal(job.id, "engineer_1", "Sarah", 9500, 15)

    def test_submit_to_own_job_fails(self, service, posted_job):
        with pytest.raises(InvalidInputError, match="own job"):
            service.submit_proposal(posted_job.id, posted_job.client_id, "Ahmed", 100, 1)

    def test_submit_invalid_amount_fails(self, service, posted_job):
        with pytest.raises(InvalidInputError, match="positive"):
            service.submit_proposal(posted_job.id, "engineer_1", "Sarah", -5, 15)

    def test_two_proposals_then_accept_second(self, service, make_job):
        """Accepting the second of two proposals rejects the first."""
        job = make_job(budget=Budget(min_amount=12000, max_amount=15000))
        service.post_job(job.id)
        _, first = service.submit_proposal(job.id, "engineer_1", "Sarah", 8000, 20, "First")
        _, second = service.submit_proposal(job.id, "engineer_2", "Omar", 9500, 15, "Second")

        fetched = service.get_job(job.id)
        assert [p.status for p in fetched.proposals] == ["pending", "pending"]

        accepted_job, accepted = service.accept_proposal(job.id, second.id)

        assert accepted_job.status == "active"
        assert accepted_job.engineer_id == "engineer_2"
        assert accepted_job.engineer_name == "Omar"
        assert accepted_job.get_proposal(first.id).status == "rejected"
        assert accepted_job.get_proposal(second.id).status == "accepted"
        assert accepted.id == second.id

    def test_accept_publishes_with_proposal(self, service, posted_job, events):
        _, proposal = service.submit_proposal(posted_job.id, "engineer_1", "Sarah", 9500, 15)

        service.accept_proposal(posted_job.id, proposal.id)

        assert events[-1].event_type == JobEventType.PROPOSAL_ACCEPTED
        assert events[-1].proposal.status == "accepted"
        assert events[-1].job.status == "active"

    def test_accept_unknown_proposal(self, service, posted_job):
        with pytest.raises(ProposalNotFoundError):
            service.accept_proposal(posted_job.id, "proposal_missing")

    def test_accept_proposal_from_other_job(self, service, make_job):
        job_a = service.post_job(make_job().id)
        job_b = service.post_job(make_job(title="Other").id)
        _, proposal = service.submit_proposal(job_a.id, "engineer_1", "Sarah", 9500, 15)

        with pytest.raises(NotFoundError):
            service.accept_proposal(job_b.id, proposal.id)

    def test_accept_twice_fails(self, service, posted_job):
        _, first = service.submit_proposal(posted_job.id, "engineer_1", "Sarah", 9500, 15)
        _, second = service.submit_proposal(posted_job.id, "engineer_2", "Omar", 9000, 15)
        service.accept_proposal(posted_job.id, first.id)

        with pytest.raises(InvalidTransitionError):
            service.accept_proposal(posted_job.id, second.id)

        job = service.get_job(posted_job.id)
        assert job.engineer_id == "engineer_1"
        assert sum(1 for p in job.proposals if p.status == "accepted") == 1

    def test_no_proposals_after_acceptance(self, service, make_job):
        job = setup_active_job(service, make_job)

        with pytest.raises(InvalidTransitionError):
            service.submit_proposal(job.id, "engineer_3", "Late", 9000, 15)


class TestCompletion:
    """Tests for completing jobs."""

    def test_complete_active_job(self, service, make_job, events):
        job = setup_active_job(service, make_job)

        completed = service.complete_job(job.id)

        assert completed.status == "completed"
        assert completed.completed_at is not None
        assert events[-1].event_type == JobEventType.JOB_COMPLETED

    def test_complete_draft_fails_and_leaves_job_unchanged(self, service, make_job, events):
        job = make_job()
        published = len(events)

        with pytest.raises(InvalidTransitionError):
            service.complete_job(job.id)

        unchanged = service.get_job(job.id)
        assert unchanged.status == "draft"
        assert unchanged.updated_at == job.updated_at
        assert unchanged.completed_at is None
        assert len(events) == published


class TestCancellation:
    """Tests for job cancellation."""

    @pytest.mark.parametrize("stage", ["draft", "posted", "active"])
    def test_cancel_from_open_states(self, service, make_job, events, stage):
        if stage == "active":
            job = setup_active_job(service, make_job)
        else:
            job = make_job()
            if stage == "posted":
                service.post_job(job.id)

        cancelled = service.cancel_job(job.id, reason="Changed my mind")

        assert cancelled.status == "cancelled"
        assert events[-1].event_type == JobEventType.JOB_CANCELLED
        assert events[-1].reason == "Changed my mind"

    def test_cancel_terminal_job_fails(self, service, make_job):
        job = setup_active_job(service, make_job)
        service.complete_job(job.id)

        with pytest.raises(InvalidTransitionError, match="Cannot cancel"):
            service.cancel_job(job.id)

    def test_cancel_reason_in_history(self, service, make_job):
        job = make_job()
        service.cancel_job(job.id, reason="Duplicate posting", actor_id="client_1")

        history = service.get_job_history(job.id)

        assert history[-1].to_status == "cancelled"
        assert history[-1].reason == "Duplicate posting"
        assert history[-1].actor_id == "client_1"


class TestExpiry:
    """Tests for the explicit expire transition."""

    def test_expire_posted_job(self, service, posted_job, events):
        expired = service.expire_job(posted_job.id)

        assert expired.status == "expired"
        assert events[-1].event_type == JobEventType.JOB_EXPIRED

    def test_expire_draft_fails(self, service, make_job):
        with pytest.raises(InvalidTransitionError):
            service.expire_job(make_job().id)

    def test_no_transitions_out_of_expired(self, service, posted_job):
        service.expire_job(posted_job.id)

        for operation in (service.post_job, service.complete_job, service.cancel_job, service.expire_job):
            with pytest.raises(InvalidTransitionError):
                operation(posted_job.id)


class TestUpdate:
    """Tests for editing jobs."""

    def test_update_draft(self, service, make_job, events):
        job = make_job()

        updated = service.update_job(
            job.id,
            {"title": "Revised survey", "tags": ["revised"], "budget": {"min_amount": 1, "max_amount": 2}},
        )

        assert updated.title == "Revised survey"
        assert updated.tags == ["revised"]
        assert updated.budget.max_amount == 2
        assert events[-1].event_type == JobEventType.JOB_UPDATED

    def test_update_posted_with_pending_proposals(self, service, posted_job):
        service.submit_proposal(posted_job.id, "engineer_1", "Sarah", 9500, 15)

        updated = service.update_job(posted_job.id, {"description": "More detail"})

        assert updated.description == "More detail"
        assert len(updated.proposals) == 1

    def test_update_active_job_fails(self, service, make_job):
        job = setup_active_job(service, make_job)

        with pytest.raises(InvalidTransitionError):
            service.update_job(job.id, {"budget": {"min_amount": 1, "max_amount": 2}})
        with pytest.raises(InvalidTransitionError):
            service.update_job(job.id, {"title": "Too late"})

    def test_update_protected_fields_rejected(self, service, make_job):
        job = make_job()

        for field_name in ("status", "engineer_id", "proposals", "id", "client_id"):
            with pytest.raises(InvalidInputError, match="cannot be updated"):
                service.update_job(job.id, {field_name: "x"})

    def test_update_invalid_value_leaves_job_unchanged(self, service, make_job):
        job = make_job()

        with pytest.raises(InvalidInputError):
            service.update_job(job.id, {"title": ""})

        assert service.get_job(job.id).title == job.title

    def test_update_keeps_no_reference_to_caller_objects(self, service, make_job):
        job = make_job()
        budget = Budget(min_amount=100, max_amount=200)

        service.update_job(job.id, {"budget": budget})
        budget.min_amount = 500

        stored = service.get_job(job.id)
        assert stored.budget.min_amount == 100
        assert stored.budget.max_amount == 200

    def test_update_empty_patch(self, service, make_job):
        with pytest.raises(InvalidInputError):
            service.update_job(make_job().id, {})


class TestLifecycleHistory:
    """The observed statuses always follow the state machine."""

    def test_full_lifecycle_history(self, service, make_job):
        job = setup_active_job(service, make_job)
        service.complete_job(job.id)

        history = service.get_job_history(job.id)

        assert [(t.from_status, t.to_status) for t in history] == [
            (None, "draft"),
            ("draft", "posted"),
            ("posted", "active"),
            ("active", "completed"),
        ]
        for transition in history[1:]:
            assert JobStatus(transition.to_status) in VALID_JOB_TRANSITIONS[JobStatus(transition.from_status)]
        assert service.get_job(job.id).is_terminal


class TestListings:
    """Tests for the read-only collaborator surface."""

    def test_jobs_for_client_and_engineer(self, service, make_job):
        active = setup_active_job(service, make_job)
        make_job(client_id="client_2", client_name="Layla")

        assert [j.id for j in service.get_jobs_for_client("client_1")] == [active.id]
        assert [j.id for j in service.get_jobs_for_engineer("engineer_1")] == [active.id]
        assert service.get_jobs_for_engineer("nobody") == []

    def test_featured_jobs(self, service, make_job):
        older = service.post_job(make_job(title="Older").id)
        newer = service.post_job(make_job(title="Newer").id)
        service.post_job(make_job(title="Private", visibility="private").id)
        make_job(title="Still a draft")

        featured = service.get_featured_jobs()

        assert [j.id for j in featured] == [newer.id, older.id]
        assert [j.id for j in service.get_featured_jobs(limit=1)] == [newer.id]

    def test_featured_jobs_invalid_limit(self, service):
        with pytest.raises(InvalidInputError):
            service.get_featured_jobs(limit=0)

    def test_similar_jobs(self, service, make_job):
        reference = service.post_job(make_job(tags=["gis"]).id)
        same_category = service.post_job(make_job(title="Another survey").id)
        shared_tag = service.post_job(make_job(title="Mapping", category="Mapping", tags=["gis"]).id)
        service.post_job(make_job(title="Plumbing", category="Plumbing").id)
        make_job(title="Draft survey")

        similar = service.get_similar_jobs(reference.id)

        assert {j.id for j in similar} == {same_category.id, shared_tag.id}
        assert reference.id not in {j.id for j in similar}

    def test_similar_jobs_unknown_reference(self, service):
        with pytest.raises(JobNotFoundError):
            service.get_similar_jobs("job_missing")

    def test_search_jobs(self, service, make_job):
        make_job(title="Bridge inspection", description="Structural review")
        survey = make_job()

        results = service.search_jobs("SURVEY")

        assert [j.id for j in results] == [survey.id]

    def test_query_rejects_oversized_page(self, service):
        with pytest.raises(InvalidInputError, match="exceeds maximum"):
            service.query(page_size=51)

    def test_stats_for_client(self, service, make_job):
        job = setup_active_job(service, make_job)
        service.complete_job(job.id)
        setup_active_job(service, make_job)
        make_job()

        stats = service.stats_for("client_1", ParticipantRole.CLIENT)

        assert stats.total_jobs == 3
        assert stats.active_jobs == 1
        assert stats.completed_jobs == 1
        assert stats.total_earnings == 15000
        assert stats.average_rating is None
        assert stats.response_rate is None

    def test_stats_for_unknown_role(self, service, make_job):
        make_job()

        with pytest.raises(InvalidInputError, match="Invalid role"):
            service.stats_for("client_1", "engineer")

    def test_stats_for_provider_by_string_role(self, service, make_job):
        job = setup_active_job(service, make_job)
        service.complete_job(job.id)

        stats = service.stats_for("engineer_1", "provider")

        assert stats.completed_jobs == 1
        assert stats.total_earnings == 15000

    def test_stats_with_reputation_source(self, store, bus, settings):
        class FixedReputation:
            def average_rating(self, participant_id):
                return 4.5

            def response_rate(self, participant_id):
                return 0.85

        service = JobService(store=store, bus=bus, settings=settings, reputation=FixedReputation())

        stats = service.stats_for("client_1", ParticipantRole.CLIENT)

        assert stats.average_rating == 4.5
        assert stats.response_rate == 0.85

    def test_service_stats(self, service, make_job):
        setup_active_job(service, make_job)
        make_job()

        assert service.service_stats() == {
            "total_jobs": 2,
            "active_jobs": 1,
            "is_connected": False,
        }


class TestConnection:
    """Tests for the connect/disconnect hooks."""

    def test_in_process_connect_always_succeeds(self, service, events):
        assert service.connect() is True
        assert service.is_connected is True
        assert events[-1].event_type == JobEventType.CONNECTED

        service.disconnect()
        assert service.is_connected is False
        assert events[-1].event_type == JobEventType.DISCONNECTED

    def test_connector_retried_until_success(self, store, bus, settings):
        attempts = []
        sleeps = []

        def flaky():
            attempts.append(1)
            if len(attempts) < 2:
                raise ConnectionError("backend unavailable")

        service = JobService(store=store, bus=bus, settings=settings, connector=flaky, sleep=sleeps.append)

        assert service.connect() is True
        assert len(attempts) == 2
        assert sleeps == [0.0]

    def test_connector_gives_up_after_bounded_retries(self, store, bus, settings, events):
        calls = []

        def down():
            calls.append(1)
            raise ConnectionError("backend unavailable")

        service = JobService(store=store, bus=bus, settings=settings, connector=down, sleep=lambda s: None)

        assert service.connect() is False
        assert service.is_connected is False
        # One initial try plus max_reconnect_attempts retries
        assert len(calls) == settings.max_reconnect_attempts + 1
        assert events[-1].event_type == JobEventType.CONNECTION_FAILED
        assert "backend unavailable" in events[-1].reason
