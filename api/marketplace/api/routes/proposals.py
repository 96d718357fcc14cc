from fastapi import APIRouter, Depends, HTTPException, status

from marketplace.api.deps import get_proposal_registry, get_public_job_registry, http_errors
from marketplace.schemas.proposals import ProposalOut, ProposalPatchRequest

router = APIRouter()


@router.get("", response_model=list[ProposalOut])
async def list_my_proposals(proposals=Depends(get_proposal_registry)) -> list[ProposalOut]:
    with http_errors():
        rows = await proposals.list_for_professional(proposals.session.user_id)
    return [ProposalOut(**row) for row in rows]


@router.get("/{proposal_id}", response_model=ProposalOut)
async def get_proposal(
    proposal_id: str,
    proposals=Depends(get_proposal_registry),
    jobs=Depends(get_public_job_registry),
) -> ProposalOut:
    with http_errors():
        row = await proposals.get_proposal(proposal_id)
        if row is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="proposal not found")
        job = await jobs.get_job(row["job_id"])

    user_id = proposals.session.user_id
    job_owner = job.get("client_id") if job is not None else None
    if user_id not in {row.get("professional_id"), job_owner}:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="proposal belongs to another user")
    return ProposalOut(**row)


@router.patch("/{proposal_id}", response_model=ProposalOut)
async def patch_proposal(
    proposal_id: str,
    payload: ProposalPatchRequest,
    proposals=Depends(get_proposal_registry),
) -> ProposalOut:
    with http_errors():
        row = await proposals.update_proposal(proposal_id, payload.model_dump(exclude_unset=True, exclude_none=True))
    return ProposalOut(**row)
