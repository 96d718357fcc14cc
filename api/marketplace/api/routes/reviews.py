from fastapi import APIRouter, Depends, HTTPException, Response, status

from marketplace.api.deps import get_review_registry, http_errors
from marketplace.schemas.reviews import ReviewCreated, ReviewCreateRequest, ReviewOut, ReviewPatchRequest

router = APIRouter()


@router.post("", response_model=ReviewCreated, status_code=status.HTTP_201_CREATED)
async def create_review(payload: ReviewCreateRequest, reviews=Depends(get_review_registry)) -> ReviewCreated:
    with http_errors():
        review_id = await reviews.create_review(payload.model_dump(exclude_none=True))
    return ReviewCreated(review_id=review_id)


@router.get("", response_model=list[ReviewOut])
async def list_my_reviews(reviews=Depends(get_review_registry)) -> list[ReviewOut]:
    with http_errors():
        rows = await reviews.list_by_client(reviews.session.user_id)
    return [ReviewOut(**row) for row in rows]


@router.get("/{review_id}", response_model=ReviewOut)
async def get_review(review_id: str, reviews=Depends(get_review_registry)) -> ReviewOut:
    with http_errors():
        row = await reviews.get_review(review_id)
    if row is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="review not found")
    return ReviewOut(**row)


@router.patch("/{review_id}", response_model=ReviewOut)
async def patch_review(review_id: str, payload: ReviewPatchRequest, reviews=Depends(get_review_registry)) -> ReviewOut:
    with http_errors():
        row = await reviews.update_review(review_id, payload.model_dump(exclude_unset=True, exclude_none=True))
    return ReviewOut(**row)


@router.delete("/{review_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_review(review_id: str, reviews=Depends(get_review_registry)) -> Response:
    with http_errors():
        await reviews.delete_review(review_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
