from __future__ import annotations

import asyncio

import pytest

from marketplace.core.auth import AccountType, AuthSession
from marketplace.services.eligibility import ReviewEligibilityGate
from marketplace.services.jobs import JobRegistry
from marketplace.services.notifications import NotificationService
from marketplace.services.professionals import ProfessionalRegistry
from marketplace.services.proposals import ProposalRegistry
from marketplace.services.repository import RepositoryConflictError
from marketplace.services.reviews import ReviewRegistry
from marketplace.services.store import InMemoryStore

CLIENT = AuthSession.for_account("client-c", AccountType.CLIENT, display_name="Chuba")
PROFESSIONAL = AuthSession.for_account("pro-p", AccountType.PROFESSIONAL, display_name="Pele")


def _unread(notifications: list[dict], notification_type: str) -> list[dict]:
    return [row for row in notifications if row["type"] == notification_type and not row["read"]]


def test_post_propose_accept_review_flow() -> None:
    async def scenario() -> None:
        store = InMemoryStore()
        notifications = NotificationService(store)
        client_jobs = JobRegistry(store, notifications, CLIENT)
        professional_proposals = ProposalRegistry(store, notifications, PROFESSIONAL)
        client_proposals = ProposalRegistry(store, notifications, CLIENT)
        client_reviews = ReviewRegistry(store, notifications, CLIENT)
        gate = ReviewEligibilityGate(store)

        await ProfessionalRegistry(store, PROFESSIONAL).update_profile(
            {"profession": "Plumber", "skills": ["pipes", "pipes", " taps "]}
        )

        job_id = await client_jobs.create_job(
            {
                "title": "Bathroom leak",
                "category": "plumber",
                "description": "Water pooling under the basin.",
                "location": "Kohima",
                "budget": "₹5,000",
            }
        )
        proposal_id = await professional_proposals.create_proposal(
            {
                "job_id": job_id,
                "message": "I can come tomorrow morning.",
                "proposed_budget": "₹4,500",
                "timeline": "1 day",
            }
        )

        job = await client_jobs.get_job(job_id)
        assert job["proposals"] == 1
        assert job["budget"] == "₹5,000"
        client_inbox = await notifications.list_for_user(CLIENT.user_id)
        assert len(_unread(client_inbox, "proposal_received")) == 1
        assert not (await gate.check(CLIENT.user_id, PROFESSIONAL.user_id)).eligible

        await client_proposals.update_proposal(proposal_id, {"status": "accepted"})

        professional_inbox = await notifications.list_for_user(PROFESSIONAL.user_id)
        assert len(_unread(professional_inbox, "proposal_accepted")) == 1
        job = await client_jobs.get_job(job_id)
        assert job["proposals"] == 1
        assert job["status"] == "in_progress"
        assert (await gate.check(CLIENT.user_id, PROFESSIONAL.user_id)).eligible

        await client_reviews.create_review(
            {
                "professional_id": PROFESSIONAL.user_id,
                "job_id": job_id,
                "rating": 5,
                "work_quality": 5,
                "communication": 5,
                "timeliness": 5,
                "professionalism": 5,
                "comment": "Fixed it in an hour.",
                "would_recommend": True,
            }
        )
        profile = await ProfessionalRegistry(store).get_profile(PROFESSIONAL.user_id)
        assert profile["rating"] == 5.0
        assert profile["reviews"] == 1
        assert profile["skills"] == ["pipes", "taps"]

        with pytest.raises(RepositoryConflictError):
            await client_reviews.create_review(
                {
                    "professional_id": PROFESSIONAL.user_id,
                    "rating": 1,
                    "work_quality": 1,
                    "communication": 1,
                    "timeliness": 1,
                    "professionalism": 1,
                    "comment": "Changed my mind.",
                }
            )
        assert (await ProfessionalRegistry(store).get_profile(PROFESSIONAL.user_id))["reviews"] == 1

        await client_jobs.complete_job(job_id)
        profile = await ProfessionalRegistry(store).get_profile(PROFESSIONAL.user_id)
        assert profile["completed_jobs"] == 1

    asyncio.run(scenario())
