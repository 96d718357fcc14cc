from dataclasses import dataclass

from marketplace.services.lifecycle import ProposalStatus
from marketplace.services.repository import (
    JOBS,
    PROPOSALS,
    REVIEWS,
    DocumentStore,
    DocumentTransaction,
    RepositoryConflictError,
)


@dataclass(frozen=True, slots=True)
class Eligibility:
    can_review: bool
    has_reviewed: bool

    @property
    def eligible(self) -> bool:
        return self.can_review and not self.has_reviewed


class ReviewEligibilityGate:
    """Answers whether a client may review a professional.

    A client may review a professional once, and only after accepting one of
    that professional's proposals on a job the client owns. Every check can
    run inside a caller's transaction so creation re-checks under isolation.
    """

    def __init__(self, store: DocumentStore) -> None:
        self.store = store

    async def can_review(
        self,
        client_id: str,
        professional_id: str,
        *,
        txn: DocumentTransaction | None = None,
    ) -> bool:
        source = txn or self.store
        accepted = await source.query(
            PROPOSALS,
            {"professional_id": professional_id, "status": ProposalStatus.ACCEPTED.value},
        )
        for proposal in accepted:
            job = await source.get(JOBS, str(proposal.get("job_id", "")))
            if job is not None and job.get("client_id") == client_id:
                return True
        return False

    async def has_reviewed(
        self,
        client_id: str,
        professional_id: str,
        *,
        txn: DocumentTransaction | None = None,
    ) -> bool:
        source = txn or self.store
        existing = await source.query(
            REVIEWS,
            {"client_id": client_id, "professional_id": professional_id},
            limit=1,
        )
        return bool(existing)

    async def check(
        self,
        client_id: str,
        professional_id: str,
        *,
        txn: DocumentTransaction | None = None,
    ) -> Eligibility:
        return Eligibility(
            can_review=await self.can_review(client_id, professional_id, txn=txn),
            has_reviewed=await self.has_reviewed(client_id, professional_id, txn=txn),
        )

    async def ensure_eligible(
        self,
        client_id: str,
        professional_id: str,
        *,
        txn: DocumentTransaction | None = None,
    ) -> None:
        if not await self.can_review(client_id, professional_id, txn=txn):
            raise RepositoryConflictError("You can only review professionals you have worked with")
        if await self.has_reviewed(client_id, professional_id, txn=txn):
            raise RepositoryConflictError("You have already reviewed this professional")
