from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

JobStatus = Literal["open", "in_progress", "completed", "cancelled"]
JobUrgency = Literal["normal", "urgent"]


class JobCreateRequest(BaseModel):
    title: str = Field(min_length=1)
    category: str = Field(min_length=1)
    description: str = Field(min_length=1)
    location: str = Field(min_length=1)
    budget: str = ""
    timeline: str = ""
    requirements: str = ""
    contact_method: str | None = None
    urgency: JobUrgency = "normal"


class JobPatchRequest(BaseModel):
    title: str | None = Field(default=None, min_length=1)
    category: str | None = Field(default=None, min_length=1)
    description: str | None = Field(default=None, min_length=1)
    location: str | None = Field(default=None, min_length=1)
    budget: str | None = None
    timeline: str | None = None
    requirements: str | None = None
    contact_method: str | None = None
    urgency: JobUrgency | None = None
    status: JobStatus | None = None


class JobOut(BaseModel):
    id: str
    title: str
    category: str
    description: str
    location: str
    budget: str = ""
    timeline: str = ""
    requirements: str = ""
    contact_method: str | None = None
    urgency: JobUrgency = "normal"
    status: JobStatus = "open"
    client_id: str
    client_name: str = ""
    client_rating: float | None = None
    proposals: int = 0
    created_at: datetime
    updated_at: datetime


class JobCreated(BaseModel):
    job_id: str
