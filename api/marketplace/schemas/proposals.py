from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

ProposalStatus = Literal["pending", "accepted", "rejected"]


class ProposalCreateRequest(BaseModel):
    message: str = Field(min_length=1)
    proposed_budget: str = Field(min_length=1)
    timeline: str = Field(min_length=1)


class ProposalPatchRequest(BaseModel):
    status: ProposalStatus | None = None
    message: str | None = Field(default=None, min_length=1)
    proposed_budget: str | None = Field(default=None, min_length=1)
    timeline: str | None = Field(default=None, min_length=1)


class ProposalOut(BaseModel):
    id: str
    job_id: str
    professional_id: str
    professional_name: str = ""
    message: str
    proposed_budget: str
    timeline: str
    status: ProposalStatus = "pending"
    created_at: datetime
    updated_at: datetime | None = None


class ProposalCreated(BaseModel):
    proposal_id: str
