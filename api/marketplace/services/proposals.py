from __future__ import annotations

import logging
from typing import Any

from marketplace.core.auth import AuthSession
from marketplace.core.timestamps import to_instant, utc_now
from marketplace.services.access import authorize, reject_fields
from marketplace.services.lifecycle import (
    JobStatus,
    ProposalStatus,
    parse_job_status,
    parse_proposal_status,
    validate_job_transition,
    validate_proposal_transition,
)
from marketplace.services.notifications import (
    NotificationSink,
    discard_side_effect,
    proposal_received,
    proposal_status_changed,
)
from marketplace.services.professionals import ensure_profile_in
from marketplace.services.repository import (
    JOBS,
    PROPOSALS,
    DocumentStore,
    RepositoryConflictError,
    RepositoryForbiddenError,
    RepositoryNotFoundError,
    RepositoryValidationError,
)

logger = logging.getLogger(__name__)

UNKNOWN_PROFESSIONAL_NAME = "Unknown Professional"
PROPOSAL_CONTENT_FIELDS = {"message", "proposed_budget", "timeline"}


class ProposalRegistry:
    def __init__(
        self,
        store: DocumentStore,
        notifications: NotificationSink,
        session: AuthSession | None = None,
    ) -> None:
        self.store = store
        self.notifications = notifications
        self.session = session

    async def create_proposal(self, data: dict[str, Any]) -> str:
        """Submit a pending proposal and bump the job's proposal counter atomically.

        The job must exist, be open and belong to someone else. The counter
        increment and the insert share one transaction, so a vanished job
        leaves nothing behind.
        """
        session = authorize(self.session, "proposals:write")
        job_id = str(data.get("job_id") or "")
        if not job_id:
            raise RepositoryValidationError("job_id is required")
        content = {key: value for key, value in data.items() if key != "job_id"}
        reject_fields(content, PROPOSAL_CONTENT_FIELDS, entity="proposal")

        async with self.store.transaction() as txn:
            job = await txn.get(JOBS, job_id, for_update=True)
            if job is None:
                raise RepositoryNotFoundError("job not found")
            if job.get("client_id") == session.user_id:
                raise RepositoryForbiddenError("cannot submit a proposal for your own job")
            if job.get("status", JobStatus.OPEN.value) != JobStatus.OPEN.value:
                raise RepositoryConflictError("job is not open for proposals")

            profile = await ensure_profile_in(txn, session)
            professional_name = profile.get("name") or session.display_name or UNKNOWN_PROFESSIONAL_NAME
            now = utc_now()
            proposal_id = await txn.insert(
                PROPOSALS,
                {
                    **content,
                    "job_id": job_id,
                    "professional_id": session.user_id,
                    "professional_name": professional_name,
                    "status": ProposalStatus.PENDING.value,
                    "created_at": now,
                    "updated_at": now,
                },
            )
            proposal_count = await txn.increment(JOBS, job_id, "proposals")

        logger.info(
            "proposal created proposal_id=%s job_id=%s professional_id=%s proposals=%s",
            proposal_id,
            job_id,
            session.user_id,
            proposal_count,
        )
        result = await self.notifications.publish(
            proposal_received(
                client_id=str(job.get("client_id", "")),
                job_title=str(job.get("title", "")),
                professional_name=professional_name,
                job_id=job_id,
                proposal_id=proposal_id,
            )
        )
        discard_side_effect(result, event="proposal_received", job_id=job_id, proposal_id=proposal_id)
        return proposal_id

    async def list_for_job(self, job_id: str) -> list[dict[str, Any]]:
        documents = await self.store.query(PROPOSALS, {"job_id": job_id}, order_by="created_at")
        return [_hydrate_proposal(document) for document in documents]

    async def list_for_professional(self, professional_id: str) -> list[dict[str, Any]]:
        documents = await self.store.query(PROPOSALS, {"professional_id": professional_id}, order_by="created_at")
        return [_hydrate_proposal(document) for document in documents]

    async def get_proposal(self, proposal_id: str) -> dict[str, Any] | None:
        document = await self.store.get(PROPOSALS, proposal_id)
        return _hydrate_proposal(document) if document is not None else None

    async def update_proposal(self, proposal_id: str, changes: dict[str, Any]) -> dict[str, Any]:
        """Apply a status transition (job owner) and/or a content edit (author).

        Accepting moves the job from open to in_progress in the same
        transaction. Re-applying the current status is a no-op.
        """
        session = authorize(self.session)
        reject_fields(changes, PROPOSAL_CONTENT_FIELDS | {"status"}, entity="proposal")
        content = {key: value for key, value in changes.items() if key in PROPOSAL_CONTENT_FIELDS}
        transitioned: ProposalStatus | None = None

        async with self.store.transaction() as txn:
            proposal = await txn.get(PROPOSALS, proposal_id, for_update=True)
            if proposal is None:
                raise RepositoryNotFoundError("proposal not found")
            job_id = str(proposal.get("job_id", ""))
            job = await txn.get(JOBS, job_id, for_update=True)
            current = parse_proposal_status(proposal.get("status", ProposalStatus.PENDING.value))

            if changes.get("status") is not None:
                target = parse_proposal_status(changes["status"])
                if target != current:
                    if job is None:
                        raise RepositoryNotFoundError("job not found")
                    if job.get("client_id") != session.user_id:
                        raise RepositoryForbiddenError("only the job owner can change proposal status")
                    validate_proposal_transition(from_status=current, to_status=target)
                    if target == ProposalStatus.ACCEPTED:
                        job_status = parse_job_status(job.get("status", JobStatus.OPEN.value))
                        if job_status != JobStatus.OPEN:
                            raise RepositoryConflictError("job is not open for accepting proposals")
                        validate_job_transition(from_status=job_status, to_status=JobStatus.IN_PROGRESS)
                        await txn.update(
                            JOBS,
                            job_id,
                            {"status": JobStatus.IN_PROGRESS.value, "updated_at": utc_now()},
                        )
                    transitioned = target

            if content:
                if proposal.get("professional_id") != session.user_id:
                    raise RepositoryForbiddenError("only the proposal author can edit it")
                if (transitioned or current) != ProposalStatus.PENDING:
                    raise RepositoryConflictError("only pending proposals can be edited")

            if not content and transitioned is None:
                return _hydrate_proposal(proposal)

            updates: dict[str, Any] = {**content, "updated_at": utc_now()}
            if transitioned is not None:
                updates["status"] = transitioned.value
            updated = await txn.update(PROPOSALS, proposal_id, updates)

        if transitioned is not None:
            logger.info(
                "proposal status changed proposal_id=%s job_id=%s status=%s -> %s",
                proposal_id,
                job_id,
                current.value,
                transitioned.value,
            )
            result = await self.notifications.publish(
                proposal_status_changed(
                    professional_id=str(proposal.get("professional_id", "")),
                    job_title=str((job or {}).get("title", "")),
                    accepted=transitioned == ProposalStatus.ACCEPTED,
                    job_id=job_id,
                    proposal_id=proposal_id,
                )
            )
            discard_side_effect(
                result,
                event=f"proposal_{transitioned.value}",
                job_id=job_id,
                proposal_id=proposal_id,
            )
        return _hydrate_proposal(updated)


def _hydrate_proposal(document: dict[str, Any]) -> dict[str, Any]:
    updated_at = document.get("updated_at")
    return {
        **document,
        "status": document.get("status") or ProposalStatus.PENDING.value,
        "created_at": to_instant(document.get("created_at")),
        "updated_at": to_instant(updated_at) if updated_at is not None else None,
    }
