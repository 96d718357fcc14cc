from fastapi import APIRouter, Depends, HTTPException, Query, status

from marketplace.api.deps import (
    get_eligibility_gate,
    get_professional_registry,
    get_public_professional_registry,
    get_public_review_registry,
    http_errors,
)
from marketplace.core.security import get_auth_session
from marketplace.schemas.professionals import ProfessionalProfileOut, ProfessionalProfileRequest
from marketplace.schemas.reviews import ReviewEligibilityOut, ReviewOut

router = APIRouter()


@router.get("", response_model=list[ProfessionalProfileOut])
async def list_professionals(
    professionals=Depends(get_public_professional_registry),
    profession: str | None = Query(default=None),
    location: str | None = Query(default=None),
    verified: bool | None = Query(default=None),
    limit: int | None = Query(default=None, ge=1, le=200),
) -> list[ProfessionalProfileOut]:
    with http_errors():
        rows = await professionals.list_professionals(
            profession=profession,
            location=location,
            verified=verified,
            limit=limit,
        )
    return [ProfessionalProfileOut(**row) for row in rows]


@router.post("", response_model=ProfessionalProfileOut, status_code=status.HTTP_201_CREATED)
async def create_profile(
    payload: ProfessionalProfileRequest,
    professionals=Depends(get_professional_registry),
) -> ProfessionalProfileOut:
    with http_errors():
        profile_id = await professionals.create_profile(payload.model_dump(exclude_none=True))
        row = await professionals.get_profile(profile_id)
    return ProfessionalProfileOut(**row)


@router.get("/me", response_model=ProfessionalProfileOut)
async def get_my_profile(professionals=Depends(get_professional_registry)) -> ProfessionalProfileOut:
    with http_errors():
        row = await professionals.get_profile_by_user_id(professionals.session.user_id)
    if row is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="professional not found")
    return ProfessionalProfileOut(**row)


@router.put("/me", response_model=ProfessionalProfileOut)
async def update_my_profile(
    payload: ProfessionalProfileRequest,
    professionals=Depends(get_professional_registry),
) -> ProfessionalProfileOut:
    with http_errors():
        row = await professionals.update_profile(payload.model_dump(exclude_unset=True, exclude_none=True))
    return ProfessionalProfileOut(**row)


@router.get("/{professional_id}", response_model=ProfessionalProfileOut)
async def get_professional(
    professional_id: str,
    professionals=Depends(get_public_professional_registry),
) -> ProfessionalProfileOut:
    with http_errors():
        row = await professionals.get_profile(professional_id)
    if row is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="professional not found")
    return ProfessionalProfileOut(**row)


@router.get("/{professional_id}/reviews", response_model=list[ReviewOut])
async def list_professional_reviews(
    professional_id: str,
    reviews=Depends(get_public_review_registry),
    limit: int | None = Query(default=None, ge=1, le=200),
) -> list[ReviewOut]:
    with http_errors():
        rows = await reviews.list_for_professional(professional_id, limit=limit)
    return [ReviewOut(**row) for row in rows]


@router.get("/{professional_id}/review-eligibility", response_model=ReviewEligibilityOut)
async def get_review_eligibility(
    professional_id: str,
    session=Depends(get_auth_session),
    gate=Depends(get_eligibility_gate),
) -> ReviewEligibilityOut:
    with http_errors():
        result = await gate.check(session.user_id, professional_id)
    return ReviewEligibilityOut(
        can_review=result.can_review,
        has_reviewed=result.has_reviewed,
        eligible=result.eligible,
    )
