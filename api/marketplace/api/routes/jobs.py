from fastapi import APIRouter, Depends, HTTPException, Query, Response, status

from marketplace.api.deps import (
    get_job_registry,
    get_proposal_registry,
    get_public_job_registry,
    http_errors,
)
from marketplace.schemas.jobs import JobCreated, JobCreateRequest, JobOut, JobPatchRequest, JobStatus
from marketplace.schemas.proposals import ProposalCreated, ProposalCreateRequest, ProposalOut

router = APIRouter()


@router.get("", response_model=list[JobOut])
async def list_jobs(
    jobs=Depends(get_public_job_registry),
    category: str | None = Query(default=None),
    location: str | None = Query(default=None),
    status_filter: JobStatus | None = Query(default=None, alias="status"),
    client_id: str | None = Query(default=None),
    limit: int | None = Query(default=None, ge=1, le=200),
) -> list[JobOut]:
    with http_errors():
        rows = await jobs.list_jobs(
            category=category,
            location=location,
            status=status_filter,
            client_id=client_id,
            limit=limit,
        )
    return [JobOut(**row) for row in rows]


@router.post("", response_model=JobCreated, status_code=status.HTTP_201_CREATED)
async def create_job(payload: JobCreateRequest, jobs=Depends(get_job_registry)) -> JobCreated:
    with http_errors():
        job_id = await jobs.create_job(payload.model_dump(exclude_none=True))
    return JobCreated(job_id=job_id)


@router.get("/{job_id}", response_model=JobOut)
async def get_job(job_id: str, jobs=Depends(get_public_job_registry)) -> JobOut:
    with http_errors():
        row = await jobs.get_job(job_id)
    if row is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="job not found")
    return JobOut(**row)


@router.patch("/{job_id}", response_model=JobOut)
async def patch_job(job_id: str, payload: JobPatchRequest, jobs=Depends(get_job_registry)) -> JobOut:
    with http_errors():
        row = await jobs.update_job(job_id, payload.model_dump(exclude_unset=True, exclude_none=True))
    return JobOut(**row)


@router.delete("/{job_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_job(job_id: str, jobs=Depends(get_job_registry)) -> Response:
    with http_errors():
        await jobs.delete_job(job_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{job_id}/complete", response_model=JobOut)
async def complete_job(job_id: str, jobs=Depends(get_job_registry)) -> JobOut:
    with http_errors():
        row = await jobs.complete_job(job_id)
    return JobOut(**row)


@router.get("/{job_id}/proposals", response_model=list[ProposalOut])
async def list_job_proposals(
    job_id: str,
    jobs=Depends(get_public_job_registry),
    proposals=Depends(get_proposal_registry),
) -> list[ProposalOut]:
    with http_errors():
        job = await jobs.get_job(job_id)
        if job is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="job not found")
        rows = await proposals.list_for_job(job_id)

    # Job owners see every bid; everyone else only their own.
    user_id = proposals.session.user_id
    if job.get("client_id") != user_id:
        rows = [row for row in rows if row.get("professional_id") == user_id]
    return [ProposalOut(**row) for row in rows]


@router.post("/{job_id}/proposals", response_model=ProposalCreated, status_code=status.HTTP_201_CREATED)
async def create_job_proposal(
    job_id: str,
    payload: ProposalCreateRequest,
    proposals=Depends(get_proposal_registry),
) -> ProposalCreated:
    with http_errors():
        proposal_id = await proposals.create_proposal({**payload.model_dump(), "job_id": job_id})
    return ProposalCreated(proposal_id=proposal_id)
