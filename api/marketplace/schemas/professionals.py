from datetime import datetime

from pydantic import BaseModel, Field


class ProfessionalProfileRequest(BaseModel):
    name: str | None = Field(default=None, min_length=1)
    profession: str | None = None
    location: str | None = None
    hourly_rate: str | None = None
    skills: list[str] | None = None
    description: str | None = None
    response_time: str | None = None
    languages: list[str] | None = None


class ProfessionalProfileOut(BaseModel):
    id: str
    user_id: str
    name: str = ""
    profession: str = ""
    location: str = ""
    rating: float = 0.0
    reviews: int = 0
    completed_jobs: int = 0
    hourly_rate: str = ""
    skills: list[str] = Field(default_factory=list)
    description: str = ""
    response_time: str = ""
    languages: list[str] = Field(default_factory=list)
    verified: bool = False
    created_at: datetime
    updated_at: datetime
