from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from marketplace.core.auth import AccountType, AuthSession
from marketplace.services.jobs import JobRegistry
from marketplace.services.lifecycle import (
    ProposalStatus,
    validate_proposal_transition,
)
from marketplace.services.notifications import NotificationService
from marketplace.services.proposals import ProposalRegistry
from marketplace.services.repository import (
    RepositoryConflictError,
    RepositoryForbiddenError,
    RepositoryNotFoundError,
    RepositoryValidationError,
)
from marketplace.services.store import InMemoryStore

CLIENT = AuthSession.for_account("client-1", AccountType.CLIENT, display_name="Asha")
PROFESSIONAL = AuthSession.for_account("pro-1", AccountType.PROFESSIONAL, display_name="Ravi")
OTHER_PROFESSIONAL = AuthSession.for_account("pro-2", AccountType.PROFESSIONAL)
DUAL = AuthSession.for_account("client-1", AccountType.BOTH, display_name="Asha")

PROPOSAL_PAYLOAD = {"message": "I have fixed many sinks.", "proposed_budget": "₹4,500", "timeline": "2 days"}


async def _post_job(store: InMemoryStore, title: str = "Fix kitchen sink") -> str:
    return await JobRegistry(store, NotificationService(store), CLIENT).create_job(
        {"title": title, "category": "plumber", "description": "Leaking pipe", "location": "Kohima"}
    )


def _proposals(store: InMemoryStore, session: AuthSession | None) -> ProposalRegistry:
    return ProposalRegistry(store, NotificationService(store), session)


def test_transition_table() -> None:
    validate_proposal_transition(from_status=ProposalStatus.PENDING, to_status=ProposalStatus.ACCEPTED)
    validate_proposal_transition(from_status=ProposalStatus.PENDING, to_status=ProposalStatus.REJECTED)
    validate_proposal_transition(from_status=ProposalStatus.ACCEPTED, to_status=ProposalStatus.ACCEPTED)
    for terminal in (ProposalStatus.ACCEPTED, ProposalStatus.REJECTED):
        for target in ProposalStatus:
            if target == terminal:
                continue
            with pytest.raises(RepositoryConflictError, match="invalid state transition"):
                validate_proposal_transition(from_status=terminal, to_status=target)


def test_create_proposal_increments_counter_and_notifies_client() -> None:
    async def scenario() -> tuple[dict, dict, list[dict], dict]:
        store = InMemoryStore()
        job_id = await _post_job(store)
        proposal_id = await _proposals(store, PROFESSIONAL).create_proposal({**PROPOSAL_PAYLOAD, "job_id": job_id})
        job = await store.get("jobs", job_id)
        proposal = await _proposals(store, PROFESSIONAL).get_proposal(proposal_id)
        notifications = await NotificationService(store).list_for_user(CLIENT.user_id)
        profile = await store.get("professionals", PROFESSIONAL.user_id)
        return job, proposal, notifications, profile

    job, proposal, notifications, profile = asyncio.run(scenario())
    assert job["proposals"] == 1
    assert proposal["status"] == "pending"
    assert proposal["professional_name"] == "Ravi"
    assert proposal["proposed_budget"] == "₹4,500"

    received = [notification for notification in notifications if notification["type"] == "proposal_received"]
    assert len(received) == 1
    assert received[0]["title"] == "New Proposal Received"
    assert received[0]["message"] == 'Ravi has submitted a proposal for your job "Fix kitchen sink".'
    assert received[0]["action_url"] == f"/my-jobs/{job['id']}/proposals"
    assert received[0]["metadata"] == {"jobId": job["id"], "proposalId": proposal["id"]}

    assert profile["rating"] == 0.0
    assert profile["reviews"] == 0


def test_professional_name_falls_back_when_unknown() -> None:
    async def scenario() -> dict:
        store = InMemoryStore()
        job_id = await _post_job(store)
        proposal_id = await _proposals(store, OTHER_PROFESSIONAL).create_proposal(
            {**PROPOSAL_PAYLOAD, "job_id": job_id}
        )
        return await store.get("proposals", proposal_id)

    assert asyncio.run(scenario())["professional_name"] == "Unknown Professional"


def test_create_proposal_for_missing_job_persists_nothing() -> None:
    async def scenario() -> InMemoryStore:
        store = InMemoryStore()
        with pytest.raises(RepositoryNotFoundError):
            await _proposals(store, PROFESSIONAL).create_proposal({**PROPOSAL_PAYLOAD, "job_id": "gone"})
        return store

    store = asyncio.run(scenario())
    assert store.collections["proposals"] == {}
    assert store.collections["professionals"] == {}
    assert store.collections["notifications"] == {}


def test_create_proposal_guards() -> None:
    async def scenario() -> None:
        store = InMemoryStore()
        job_id = await _post_job(store)

        with pytest.raises(RepositoryForbiddenError):
            await _proposals(store, CLIENT).create_proposal({**PROPOSAL_PAYLOAD, "job_id": job_id})
        with pytest.raises(RepositoryForbiddenError):
            await _proposals(store, DUAL).create_proposal({**PROPOSAL_PAYLOAD, "job_id": job_id})
        with pytest.raises(RepositoryValidationError):
            await _proposals(store, PROFESSIONAL).create_proposal({**PROPOSAL_PAYLOAD, "job_id": job_id, "status": "accepted"})

        await store.update("jobs", job_id, {"status": "in_progress"})
        with pytest.raises(RepositoryConflictError):
            await _proposals(store, PROFESSIONAL).create_proposal({**PROPOSAL_PAYLOAD, "job_id": job_id})
        job = await store.get("jobs", job_id)
        assert job["proposals"] == 0

    asyncio.run(scenario())


def test_accepting_notifies_professional_and_starts_job() -> None:
    async def scenario() -> tuple[dict, dict, list[dict]]:
        store = InMemoryStore()
        job_id = await _post_job(store)
        proposal_id = await _proposals(store, PROFESSIONAL).create_proposal({**PROPOSAL_PAYLOAD, "job_id": job_id})
        proposal = await _proposals(store, CLIENT).update_proposal(proposal_id, {"status": "accepted"})
        job = await store.get("jobs", job_id)
        notifications = await NotificationService(store).list_for_user(PROFESSIONAL.user_id)
        return proposal, job, notifications

    proposal, job, notifications = asyncio.run(scenario())
    assert proposal["status"] == "accepted"
    assert job["status"] == "in_progress"
    assert job["proposals"] == 1
    assert len(notifications) == 1
    assert notifications[0]["type"] == "proposal_accepted"
    assert notifications[0]["title"] == "Proposal Accepted!"
    assert "Fix kitchen sink" in notifications[0]["message"]
    assert notifications[0]["action_url"] == "/my-proposals"


def test_rejecting_notifies_and_terminal_states_are_final() -> None:
    async def scenario() -> tuple[dict, list[dict]]:
        store = InMemoryStore()
        job_id = await _post_job(store)
        proposal_id = await _proposals(store, PROFESSIONAL).create_proposal({**PROPOSAL_PAYLOAD, "job_id": job_id})
        client_view = _proposals(store, CLIENT)
        await client_view.update_proposal(proposal_id, {"status": "rejected"})

        # Re-applying the same status is a no-op and sends nothing.
        unchanged = await client_view.update_proposal(proposal_id, {"status": "rejected"})
        with pytest.raises(RepositoryConflictError, match="rejected -> accepted"):
            await client_view.update_proposal(proposal_id, {"status": "accepted"})
        with pytest.raises(RepositoryConflictError):
            await _proposals(store, PROFESSIONAL).update_proposal(proposal_id, {"message": "Second try"})

        notifications = await NotificationService(store).list_for_user(PROFESSIONAL.user_id)
        return unchanged, notifications

    unchanged, notifications = asyncio.run(scenario())
    assert unchanged["status"] == "rejected"
    assert [notification["type"] for notification in notifications] == ["proposal_rejected"]
    assert notifications[0]["title"] == "Proposal Update"
    assert notifications[0]["message"] == 'Your proposal for "Fix kitchen sink" was not selected this time.'


def test_only_job_owner_changes_status_and_only_author_edits() -> None:
    async def scenario() -> dict:
        store = InMemoryStore()
        job_id = await _post_job(store)
        proposal_id = await _proposals(store, PROFESSIONAL).create_proposal({**PROPOSAL_PAYLOAD, "job_id": job_id})

        with pytest.raises(RepositoryForbiddenError):
            await _proposals(store, PROFESSIONAL).update_proposal(proposal_id, {"status": "accepted"})
        with pytest.raises(RepositoryForbiddenError):
            await _proposals(store, OTHER_PROFESSIONAL).update_proposal(proposal_id, {"timeline": "1 day"})
        with pytest.raises(RepositoryValidationError):
            await _proposals(store, CLIENT).update_proposal(proposal_id, {"status": "withdrawn"})
        with pytest.raises(RepositoryNotFoundError):
            await _proposals(store, CLIENT).update_proposal("missing", {"status": "accepted"})

        return await _proposals(store, PROFESSIONAL).update_proposal(proposal_id, {"timeline": "1 day"})

    edited = asyncio.run(scenario())
    assert edited["timeline"] == "1 day"
    assert edited["status"] == "pending"


def test_second_acceptance_needs_open_job() -> None:
    async def scenario() -> None:
        store = InMemoryStore()
        job_id = await _post_job(store)
        first = await _proposals(store, PROFESSIONAL).create_proposal({**PROPOSAL_PAYLOAD, "job_id": job_id})
        second = await _proposals(store, OTHER_PROFESSIONAL).create_proposal({**PROPOSAL_PAYLOAD, "job_id": job_id})
        await _proposals(store, CLIENT).update_proposal(first, {"status": "accepted"})
        with pytest.raises(RepositoryConflictError):
            await _proposals(store, CLIENT).update_proposal(second, {"status": "accepted"})
        rejected = await _proposals(store, CLIENT).update_proposal(second, {"status": "rejected"})
        assert rejected["status"] == "rejected"

    asyncio.run(scenario())


def test_listings_are_newest_first() -> None:
    base = datetime(2024, 6, 1, tzinfo=timezone.utc)

    async def scenario() -> tuple[list[dict], list[dict]]:
        store = InMemoryStore()
        for offset, (proposal_id, job_id) in enumerate([("p1", "j1"), ("p2", "j2"), ("p3", "j1")]):
            await store.insert(
                "proposals",
                {
                    **PROPOSAL_PAYLOAD,
                    "job_id": job_id,
                    "professional_id": "pro-1",
                    "status": "pending",
                    "created_at": base + timedelta(minutes=offset),
                },
                document_id=proposal_id,
            )
        registry = _proposals(store, None)
        return await registry.list_for_job("j1"), await registry.list_for_professional("pro-1")

    for_job, for_professional = asyncio.run(scenario())
    assert [proposal["id"] for proposal in for_job] == ["p3", "p1"]
    assert [proposal["id"] for proposal in for_professional] == ["p3", "p2", "p1"]
