from __future__ import annotations

import logging
from typing import Any

from marketplace.core.auth import AuthSession
from marketplace.core.timestamps import to_instant, utc_now
from marketplace.services.access import authorize, reject_fields
from marketplace.services.eligibility import ReviewEligibilityGate
from marketplace.services.notifications import NotificationSink, discard_side_effect, review_received
from marketplace.services.ratings import RatingEngine, validate_rating
from marketplace.services.repository import (
    JOBS,
    REVIEWS,
    DocumentStore,
    RepositoryForbiddenError,
    RepositoryNotFoundError,
    RepositoryValidationError,
)

logger = logging.getLogger(__name__)

SUB_RATING_FIELDS = ("work_quality", "communication", "timeliness", "professionalism")
REVIEW_WRITABLE_FIELDS = {"rating", *SUB_RATING_FIELDS, "comment", "would_recommend"}
REVIEW_CREATE_FIELDS = REVIEW_WRITABLE_FIELDS | {"professional_id", "job_id", "job_title"}


class ReviewRegistry:
    def __init__(
        self,
        store: DocumentStore,
        notifications: NotificationSink,
        session: AuthSession | None = None,
        *,
        ratings: RatingEngine | None = None,
        eligibility: ReviewEligibilityGate | None = None,
    ) -> None:
        self.store = store
        self.notifications = notifications
        self.session = session
        self.ratings = ratings or RatingEngine(store)
        self.eligibility = eligibility or ReviewEligibilityGate(store)

    async def create_review(self, data: dict[str, Any]) -> str:
        """Persist a review and fold it into the professional's rating.

        Eligibility is re-checked after the professional's profile is locked,
        so two concurrent submissions by one client cannot both succeed.
        """
        session = authorize(self.session, "reviews:write")
        reject_fields(data, REVIEW_CREATE_FIELDS, entity="review")
        professional_id = str(data.get("professional_id") or "")
        if not professional_id:
            raise RepositoryValidationError("professional_id is required")
        if professional_id == session.user_id:
            raise RepositoryForbiddenError("cannot review yourself")
        if not str(data.get("comment") or "").strip():
            raise RepositoryValidationError("review comment must not be empty")

        job_id = data.get("job_id")
        job_title = data.get("job_title")
        if job_id and not job_title:
            job = await self.store.get(JOBS, str(job_id))
            job_title = job.get("title") if job is not None else None

        async with self.store.transaction() as txn:
            profile = await self.ratings.lock_profile(txn, professional_id)
            await self.eligibility.ensure_eligible(session.user_id, professional_id, txn=txn)
            now = utc_now()
            review_id = await self.ratings.apply_new_review(
                txn,
                profile,
                {
                    **{field: data[field] for field in REVIEW_WRITABLE_FIELDS if field in data},
                    "professional_id": professional_id,
                    "professional_name": profile.get("name", ""),
                    "client_id": session.user_id,
                    "client_name": session.display_name,
                    "job_id": job_id,
                    "job_title": job_title,
                    "would_recommend": bool(data.get("would_recommend", False)),
                    "created_at": now,
                    "updated_at": now,
                },
            )

        logger.info(
            "review created review_id=%s professional_id=%s client_id=%s rating=%s",
            review_id,
            professional_id,
            session.user_id,
            data.get("rating"),
        )
        result = await self.notifications.publish(
            review_received(
                recipient_id=str(profile.get("user_id") or professional_id),
                client_name=session.display_name or "A client",
                rating=int(data["rating"]),
                job_title=job_title,
                client_id=session.user_id,
                professional_id=professional_id,
            )
        )
        discard_side_effect(result, event="review_received", review_id=review_id, professional_id=professional_id)
        return review_id

    async def update_review(self, review_id: str, changes: dict[str, Any]) -> dict[str, Any]:
        session = authorize(self.session, "reviews:write")
        reject_fields(changes, REVIEW_WRITABLE_FIELDS, entity="review")
        updates = {key: value for key, value in changes.items() if value is not None}
        if "comment" in updates and not str(updates["comment"]).strip():
            raise RepositoryValidationError("review comment must not be empty")
        if "rating" in updates:
            validate_rating(updates["rating"])

        async with self.store.transaction() as txn:
            review = await txn.get(REVIEWS, review_id, for_update=True)
            if review is None:
                raise RepositoryNotFoundError("review not found")
            _ensure_author(review, session)
            updated = await txn.update(REVIEWS, review_id, {**updates, "updated_at": utc_now()})
            if "rating" in updates and updates["rating"] != review.get("rating"):
                await self.ratings.recompute(txn, str(review["professional_id"]))
        return _hydrate_review(updated)

    async def delete_review(self, review_id: str) -> None:
        session = authorize(self.session, "reviews:write")
        async with self.store.transaction() as txn:
            review = await txn.get(REVIEWS, review_id, for_update=True)
            if review is None:
                raise RepositoryNotFoundError("review not found")
            _ensure_author(review, session)
            await txn.delete(REVIEWS, review_id)
            await self.ratings.recompute(txn, str(review["professional_id"]))
        logger.info("review deleted review_id=%s professional_id=%s", review_id, review.get("professional_id"))

    async def list_for_professional(self, professional_id: str, limit: int | None = None) -> list[dict[str, Any]]:
        documents = await self.store.query(
            REVIEWS,
            {"professional_id": professional_id},
            order_by="created_at",
            limit=limit,
        )
        return [_hydrate_review(document) for document in documents]

    async def list_by_client(self, client_id: str) -> list[dict[str, Any]]:
        documents = await self.store.query(REVIEWS, {"client_id": client_id}, order_by="created_at")
        return [_hydrate_review(document) for document in documents]

    async def get_review(self, review_id: str) -> dict[str, Any] | None:
        document = await self.store.get(REVIEWS, review_id)
        return _hydrate_review(document) if document is not None else None


def _ensure_author(review: dict[str, Any], session: AuthSession) -> None:
    if review.get("client_id") != session.user_id:
        raise RepositoryForbiddenError("only the review author can modify it")


def _hydrate_review(document: dict[str, Any]) -> dict[str, Any]:
    return {
        **document,
        "would_recommend": bool(document.get("would_recommend", False)),
        "created_at": to_instant(document.get("created_at")),
        "updated_at": to_instant(document.get("updated_at")),
    }
