from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

ContributionStatus = Literal["pending", "accepted", "rejected"]


class Contribution(BaseModel):
    id: int
    username: str
    filename: str
    line_number: int | None = None
    code: str
    status: ContributionStatus = "pending"
    created_at: datetime


class SubmissionResult(BaseModel):
    created: bool
    contribution_id: int | None = None
    duplicates: list[Contribution] = Field(default_factory=list)


class ReviewQueue(BaseModel):
    pending: list[Contribution] = Field(default_factory=list)
    reviewed: list[Contribution] = Field(default_factory=list)
