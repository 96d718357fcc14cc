from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from marketplace.core.auth import AuthSession
from marketplace.core.timestamps import to_instant, utc_now
from marketplace.services.access import authorize, reject_fields
from marketplace.services.jobs import equality_filters
from marketplace.services.repository import (
    PROFESSIONALS,
    DocumentStore,
    DocumentTransaction,
    RepositoryConflictError,
)

logger = logging.getLogger(__name__)

DEFAULT_RESPONSE_TIME = "Within 24 hours"
DEFAULT_LANGUAGES = ("English", "Nagamese")

# rating, reviews, rating_total and completed_jobs are maintained by the
# rating engine and job completion; verified is set by operators.
PROFILE_WRITABLE_FIELDS = {
    "name",
    "profession",
    "location",
    "hourly_rate",
    "skills",
    "description",
    "response_time",
    "languages",
}


def new_profile_document(user_id: str, *, name: str = "", now: datetime | None = None, **fields: Any) -> dict[str, Any]:
    created_at = now or utc_now()
    document: dict[str, Any] = {
        "user_id": user_id,
        "name": name,
        "profession": "",
        "location": "",
        "hourly_rate": "",
        "skills": [],
        "description": "",
        "response_time": DEFAULT_RESPONSE_TIME,
        "languages": list(DEFAULT_LANGUAGES),
        "verified": False,
        **{key: value for key, value in fields.items() if value is not None},
        "rating": 0.0,
        "reviews": 0,
        "rating_total": 0,
        "completed_jobs": 0,
        "created_at": created_at,
        "updated_at": created_at,
    }
    document["skills"] = normalize_skills(document["skills"])
    return document


def normalize_skills(skills: Any) -> list[str]:
    seen: dict[str, None] = {}
    for skill in skills or []:
        cleaned = str(skill).strip()
        if cleaned:
            seen.setdefault(cleaned, None)
    return list(seen)


async def ensure_profile_in(
    txn: DocumentTransaction,
    session: AuthSession,
) -> dict[str, Any]:
    """Return the caller's profile inside ``txn``, creating an empty one first if needed."""
    profile = await txn.get(PROFESSIONALS, session.user_id, for_update=True)
    if profile is not None:
        return profile
    document = new_profile_document(session.user_id, name=session.display_name)
    await txn.insert(PROFESSIONALS, document, document_id=session.user_id)
    logger.info("professional profile created lazily user_id=%s", session.user_id)
    return {**document, "id": session.user_id}


class ProfessionalRegistry:
    def __init__(self, store: DocumentStore, session: AuthSession | None = None) -> None:
        self.store = store
        self.session = session

    async def create_profile(self, data: dict[str, Any] | None = None) -> str:
        session = authorize(self.session, "profile:write")
        fields = dict(data or {})
        reject_fields(fields, PROFILE_WRITABLE_FIELDS, entity="profile")
        name = fields.pop("name", None) or session.display_name
        document = new_profile_document(session.user_id, name=name, **fields)
        try:
            profile_id = await self.store.insert(PROFESSIONALS, document, document_id=session.user_id)
        except RepositoryConflictError as exc:
            raise RepositoryConflictError("professional profile already exists") from exc
        logger.info("professional profile created user_id=%s", session.user_id)
        return profile_id

    async def ensure_profile(self) -> dict[str, Any]:
        session = authorize(self.session, "profile:write")
        async with self.store.transaction() as txn:
            profile = await ensure_profile_in(txn, session)
        return _hydrate_profile(profile)

    async def get_profile(self, professional_id: str) -> dict[str, Any] | None:
        document = await self.store.get(PROFESSIONALS, professional_id)
        return _hydrate_profile(document) if document is not None else None

    async def get_profile_by_user_id(self, user_id: str) -> dict[str, Any] | None:
        documents = await self.store.query(PROFESSIONALS, {"user_id": user_id}, limit=1)
        return _hydrate_profile(documents[0]) if documents else None

    async def list_professionals(
        self,
        *,
        profession: str | None = None,
        location: str | None = None,
        verified: bool | None = None,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        filters = equality_filters(profession=profession, location=location, verified=verified)
        documents = await self.store.query(PROFESSIONALS, filters, order_by="rating", limit=limit)
        return [_hydrate_profile(document) for document in documents]

    async def update_profile(self, changes: dict[str, Any]) -> dict[str, Any]:
        session = authorize(self.session, "profile:write")
        reject_fields(changes, PROFILE_WRITABLE_FIELDS, entity="profile")
        updates = {key: value for key, value in changes.items() if value is not None}
        if "skills" in updates:
            updates["skills"] = normalize_skills(updates["skills"])

        async with self.store.transaction() as txn:
            profile = await txn.get(PROFESSIONALS, session.user_id, for_update=True)
            if profile is None:
                name = updates.pop("name", None) or session.display_name
                document = new_profile_document(session.user_id, name=name, **updates)
                await txn.insert(PROFESSIONALS, document, document_id=session.user_id)
                updated = {**document, "id": session.user_id}
            else:
                updated = await txn.update(PROFESSIONALS, session.user_id, {**updates, "updated_at": utc_now()})
        return _hydrate_profile(updated)


def _hydrate_profile(document: dict[str, Any]) -> dict[str, Any]:
    return {
        **document,
        "rating": float(document.get("rating") or 0.0),
        "reviews": int(document.get("reviews") or 0),
        "completed_jobs": int(document.get("completed_jobs") or 0),
        "skills": list(document.get("skills") or []),
        "languages": list(document.get("languages") or []),
        "verified": bool(document.get("verified", False)),
        "created_at": to_instant(document.get("created_at")),
        "updated_at": to_instant(document.get("updated_at")),
    }
