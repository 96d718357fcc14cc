"""Keeps a professional's ``rating`` and ``reviews`` consistent with their reviews.

``rating`` is the mean of every review rating for the professional rounded
half-up to one decimal place, ``reviews`` is the number of those reviews.
The profile also stores ``rating_total`` (the exact sum) so a new review can
be folded in without reading every review and without drifting from the
rounded mean.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

from marketplace.core.timestamps import utc_now
from marketplace.services.repository import (
    PROFESSIONALS,
    REVIEWS,
    DocumentStore,
    DocumentTransaction,
    RepositoryNotFoundError,
    RepositoryValidationError,
)

logger = logging.getLogger(__name__)

_ONE_DECIMAL = Decimal("0.1")


def round_rating(total: int | float, count: int) -> float:
    if count <= 0:
        return 0.0
    mean = Decimal(str(total)) / Decimal(count)
    return float(mean.quantize(_ONE_DECIMAL, rounding=ROUND_HALF_UP))


def mean_rating(ratings: Iterable[int]) -> float:
    values = list(ratings)
    return round_rating(sum(values), len(values))


def validate_rating(rating: Any) -> int:
    if isinstance(rating, bool) or not isinstance(rating, int) or not 1 <= rating <= 5:
        raise RepositoryValidationError("review rating must be an integer between 1 and 5")
    return rating


class RatingEngine:
    def __init__(self, store: DocumentStore) -> None:
        self.store = store

    async def lock_profile(self, txn: DocumentTransaction, professional_id: str) -> dict[str, Any]:
        profile = await txn.get(PROFESSIONALS, professional_id, for_update=True)
        if profile is None:
            raise RepositoryNotFoundError("professional not found")
        return profile

    async def apply_new_review(
        self,
        txn: DocumentTransaction,
        profile: dict[str, Any],
        review: dict[str, Any],
    ) -> str:
        """Insert ``review`` and fold its rating into the locked ``profile``."""
        rating = validate_rating(review.get("rating"))

        count = int(profile.get("reviews") or 0)
        total = profile.get("rating_total")
        if total is None:
            # Profiles written before rating_total existed.
            total = round(float(profile.get("rating") or 0.0) * count)
        new_total = int(total) + rating
        new_count = count + 1

        review_id = await txn.insert(REVIEWS, review)
        await txn.update(
            PROFESSIONALS,
            profile["id"],
            {
                "rating": round_rating(new_total, new_count),
                "reviews": new_count,
                "rating_total": new_total,
                "updated_at": utc_now(),
            },
        )
        return review_id

    async def create_review(self, review: dict[str, Any]) -> str:
        async with self.store.transaction() as txn:
            profile = await self.lock_profile(txn, str(review["professional_id"]))
            return await self.apply_new_review(txn, profile, review)

    async def recompute(self, txn: DocumentTransaction, professional_id: str) -> dict[str, Any] | None:
        """Rebuild the aggregate from the reviews currently visible in ``txn``."""
        profile = await txn.get(PROFESSIONALS, professional_id, for_update=True)
        if profile is None:
            logger.warning("rating recompute skipped; professional missing professional_id=%s", professional_id)
            return None
        reviews = await txn.query(REVIEWS, {"professional_id": professional_id})
        ratings = [int(review.get("rating") or 0) for review in reviews]
        return await txn.update(
            PROFESSIONALS,
            professional_id,
            {
                "rating": mean_rating(ratings),
                "reviews": len(ratings),
                "rating_total": sum(ratings),
                "updated_at": utc_now(),
            },
        )

    async def recompute_professional(self, professional_id: str) -> dict[str, Any] | None:
        async with self.store.transaction() as txn:
            return await self.recompute(txn, professional_id)
