from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

NotificationType = Literal[
    "job_posted",
    "proposal_received",
    "proposal_accepted",
    "proposal_rejected",
    "job_completed",
    "review_received",
]


class NotificationOut(BaseModel):
    id: str
    user_id: str
    type: NotificationType
    title: str
    message: str
    read: bool = False
    action_url: str | None = None
    metadata: dict[str, str] = Field(default_factory=dict)
    created_at: datetime


class UnreadCountOut(BaseModel):
    count: int


class MarkAllReadOut(BaseModel):
    count: int
