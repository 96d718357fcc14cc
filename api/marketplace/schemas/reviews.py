from datetime import datetime

from pydantic import BaseModel, Field


class ReviewCreateRequest(BaseModel):
    professional_id: str = Field(min_length=1)
    job_id: str | None = None
    job_title: str | None = None
    rating: int = Field(ge=1, le=5)
    work_quality: int = Field(ge=1, le=5)
    communication: int = Field(ge=1, le=5)
    timeliness: int = Field(ge=1, le=5)
    professionalism: int = Field(ge=1, le=5)
    comment: str = Field(min_length=1)
    would_recommend: bool = False


class ReviewPatchRequest(BaseModel):
    rating: int | None = Field(default=None, ge=1, le=5)
    work_quality: int | None = Field(default=None, ge=1, le=5)
    communication: int | None = Field(default=None, ge=1, le=5)
    timeliness: int | None = Field(default=None, ge=1, le=5)
    professionalism: int | None = Field(default=None, ge=1, le=5)
    comment: str | None = Field(default=None, min_length=1)
    would_recommend: bool | None = None


class ReviewOut(BaseModel):
    id: str
    professional_id: str
    professional_name: str = ""
    client_id: str
    client_name: str = ""
    job_id: str | None = None
    job_title: str | None = None
    rating: int
    work_quality: int
    communication: int
    timeliness: int
    professionalism: int
    comment: str
    would_recommend: bool = False
    created_at: datetime
    updated_at: datetime


class ReviewCreated(BaseModel):
    review_id: str


class ReviewEligibilityOut(BaseModel):
    can_review: bool
    has_reviewed: bool
    eligible: bool
