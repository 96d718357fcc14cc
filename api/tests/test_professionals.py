from __future__ import annotations

import asyncio

import pytest

from marketplace.core.auth import AccountType, AuthSession
from marketplace.services.professionals import ProfessionalRegistry
from marketplace.services.repository import (
    RepositoryConflictError,
    RepositoryForbiddenError,
    RepositoryValidationError,
)
from marketplace.services.store import InMemoryStore

PROFESSIONAL = AuthSession.for_account("pro-1", AccountType.PROFESSIONAL, display_name="Ravi")
CLIENT = AuthSession.for_account("client-1", AccountType.CLIENT)


def test_create_profile_defaults() -> None:
    async def scenario() -> dict:
        store = InMemoryStore()
        registry = ProfessionalRegistry(store, PROFESSIONAL)
        profile_id = await registry.create_profile({"profession": "Electrician", "skills": ["wiring", "wiring"]})
        with pytest.raises(RepositoryConflictError):
            await registry.create_profile()
        return await registry.get_profile(profile_id)

    profile = asyncio.run(scenario())
    assert profile["id"] == "pro-1"
    assert profile["user_id"] == "pro-1"
    assert profile["name"] == "Ravi"
    assert profile["rating"] == 0.0
    assert profile["reviews"] == 0
    assert profile["completed_jobs"] == 0
    assert profile["response_time"] == "Within 24 hours"
    assert profile["languages"] == ["English", "Nagamese"]
    assert profile["skills"] == ["wiring"]
    assert profile["verified"] is False


def test_update_profile_creates_lazily_and_protects_derived_fields() -> None:
    async def scenario() -> tuple[dict, dict, dict | None]:
        store = InMemoryStore()
        registry = ProfessionalRegistry(store, PROFESSIONAL)
        created = await registry.update_profile({"location": "Dimapur"})
        with pytest.raises(RepositoryValidationError):
            await registry.update_profile({"rating": 5.0})
        with pytest.raises(RepositoryValidationError):
            await registry.update_profile({"completed_jobs": 40})
        with pytest.raises(RepositoryForbiddenError):
            await ProfessionalRegistry(store, CLIENT).update_profile({"location": "Kohima"})
        updated = await registry.update_profile({"hourly_rate": "₹500/hr", "languages": ["English"]})
        ensured = await registry.ensure_profile()
        assert ensured["id"] == updated["id"]
        return created, updated, await registry.get_profile_by_user_id("pro-1")

    created, updated, by_user = asyncio.run(scenario())
    assert created["location"] == "Dimapur"
    assert created["name"] == "Ravi"
    assert updated["location"] == "Dimapur"
    assert updated["languages"] == ["English"]
    assert updated["rating"] == 0.0
    assert by_user is not None
    assert by_user["hourly_rate"] == "₹500/hr"


def test_list_professionals_filters_and_orders_by_rating() -> None:
    async def scenario() -> tuple[list[dict], list[dict]]:
        store = InMemoryStore()
        for professional_id, profession, rating, verified in [
            ("a", "Plumber", 4.2, True),
            ("b", "Plumber", 4.8, False),
            ("c", "Electrician", 5.0, True),
        ]:
            await store.insert(
                "professionals",
                {"user_id": professional_id, "profession": profession, "rating": rating, "verified": verified},
                document_id=professional_id,
            )
        registry = ProfessionalRegistry(store)
        return (
            await registry.list_professionals(profession="Plumber", location="All Districts"),
            await registry.list_professionals(verified=True),
        )

    plumbers, verified = asyncio.run(scenario())
    assert [row["id"] for row in plumbers] == ["b", "a"]
    assert [row["id"] for row in verified] == ["c", "a"]
