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
    validate_job_transition,
)
from marketplace.services.notifications import (
    NotificationSink,
    discard_side_effect,
    job_completed,
    job_posted,
)
from marketplace.services.repository import (
    JOBS,
    PROFESSIONALS,
    PROPOSALS,
    DocumentStore,
    RepositoryConflictError,
    RepositoryForbiddenError,
    RepositoryNotFoundError,
)

logger = logging.getLogger(__name__)

# Filter values the browse screens send when nothing is selected.
WILDCARD_FILTER_VALUES = {"", "All", "All Districts"}

JOB_WRITABLE_FIELDS = {
    "title",
    "category",
    "description",
    "location",
    "budget",
    "timeline",
    "requirements",
    "contact_method",
    "urgency",
    "status",
}


def equality_filters(**values: Any) -> dict[str, Any]:
    return {
        key: value
        for key, value in values.items()
        if value is not None and not (isinstance(value, str) and value.strip() in WILDCARD_FILTER_VALUES)
    }


class JobRegistry:
    def __init__(
        self,
        store: DocumentStore,
        notifications: NotificationSink,
        session: AuthSession | None = None,
    ) -> None:
        self.store = store
        self.notifications = notifications
        self.session = session

    async def create_job(self, data: dict[str, Any]) -> str:
        session = authorize(self.session, "jobs:write")
        reject_fields(data, JOB_WRITABLE_FIELDS, entity="job")
        now = utc_now()
        document = {
            "budget": "",
            "timeline": "",
            "requirements": "",
            "urgency": "normal",
            **data,
            "status": JobStatus.OPEN.value,
            "client_id": session.user_id,
            "client_name": session.display_name,
            "client_rating": 0.0,
            "proposals": 0,
            "created_at": now,
            "updated_at": now,
        }
        job_id = await self.store.insert(JOBS, document)
        logger.info("job created job_id=%s client_id=%s", job_id, session.user_id)

        result = await self.notifications.publish(
            job_posted(client_id=session.user_id, job_title=str(document.get("title", "")), job_id=job_id)
        )
        discard_side_effect(result, event="job_posted", job_id=job_id)
        return job_id

    async def list_jobs(
        self,
        *,
        category: str | None = None,
        location: str | None = None,
        status: str | None = None,
        client_id: str | None = None,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        filters = equality_filters(category=category, location=location, status=status, client_id=client_id)
        documents = await self.store.query(JOBS, filters, order_by="created_at", limit=limit)
        return [_hydrate_job(document) for document in documents]

    async def get_job(self, job_id: str) -> dict[str, Any] | None:
        document = await self.store.get(JOBS, job_id)
        return _hydrate_job(document) if document is not None else None

    async def update_job(self, job_id: str, changes: dict[str, Any]) -> dict[str, Any]:
        session = authorize(self.session, "jobs:write")
        reject_fields(changes, JOB_WRITABLE_FIELDS, entity="job")
        if "status" in changes:
            changes = {**changes, "status": parse_job_status(changes["status"]).value}

        async with self.store.transaction() as txn:
            job = await txn.get(JOBS, job_id, for_update=True)
            if job is None:
                raise RepositoryNotFoundError("job not found")
            _ensure_owner(job, session)
            updated = await txn.update(JOBS, job_id, {**changes, "updated_at": utc_now()})
        return _hydrate_job(updated)

    async def delete_job(self, job_id: str) -> None:
        session = authorize(self.session, "jobs:write")
        async with self.store.transaction() as txn:
            job = await txn.get(JOBS, job_id, for_update=True)
            if job is None:
                raise RepositoryNotFoundError("job not found")
            _ensure_owner(job, session)

            proposals = await txn.query(PROPOSALS, {"job_id": job_id})
            live = [
                proposal
                for proposal in proposals
                if proposal.get("status") in {ProposalStatus.PENDING.value, ProposalStatus.ACCEPTED.value}
            ]
            if live:
                raise RepositoryConflictError("cannot delete a job with pending or accepted proposals")
            for proposal in proposals:
                await txn.delete(PROPOSALS, proposal["id"])
            await txn.delete(JOBS, job_id)
        logger.info("job deleted job_id=%s removed_proposals=%s", job_id, len(proposals))

    async def complete_job(self, job_id: str) -> dict[str, Any]:
        session = authorize(self.session, "jobs:write")
        async with self.store.transaction() as txn:
            job = await txn.get(JOBS, job_id, for_update=True)
            if job is None:
                raise RepositoryNotFoundError("job not found")
            _ensure_owner(job, session)
            validate_job_transition(
                from_status=parse_job_status(job.get("status", JobStatus.OPEN.value)),
                to_status=JobStatus.COMPLETED,
            )

            accepted = await txn.query(PROPOSALS, {"job_id": job_id, "status": ProposalStatus.ACCEPTED.value})
            professional_ids = sorted({str(proposal["professional_id"]) for proposal in accepted})
            for professional_id in professional_ids:
                profile = await txn.get(PROFESSIONALS, professional_id, for_update=True)
                if profile is None:
                    logger.warning(
                        "completed job has no professional profile job_id=%s professional_id=%s",
                        job_id,
                        professional_id,
                    )
                    continue
                await txn.increment(PROFESSIONALS, professional_id, "completed_jobs")

            updated = await txn.update(
                JOBS,
                job_id,
                {"status": JobStatus.COMPLETED.value, "updated_at": utc_now()},
            )

        for professional_id in professional_ids:
            result = await self.notifications.publish(
                job_completed(
                    professional_id=professional_id,
                    job_title=str(updated.get("title", "")),
                    job_id=job_id,
                    client_id=session.user_id,
                )
            )
            discard_side_effect(result, event="job_completed", job_id=job_id, professional_id=professional_id)
        return _hydrate_job(updated)


def _ensure_owner(job: dict[str, Any], session: AuthSession) -> None:
    if job.get("client_id") != session.user_id:
        raise RepositoryForbiddenError("only the job owner can modify this job")


def _hydrate_job(document: dict[str, Any]) -> dict[str, Any]:
    return {
        **document,
        "proposals": int(document.get("proposals") or 0),
        "status": document.get("status") or JobStatus.OPEN.value,
        "created_at": to_instant(document.get("created_at")),
        "updated_at": to_instant(document.get("updated_at")),
    }
