# adsproxy/models/entities.py
from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field, model_validator


class Credential(BaseModel):
    access_token: str
    obtained_at: datetime
    expires_at: datetime

    @model_validator(mode="after")
    def _check_window(self):
        if self.expires_at <= self.obtained_at:
            raise ValueError("expires_at must be later than obtained_at")
        return self

    def is_valid(self, now: datetime) -> bool:
        return now <= self.expires_at


class AuthStatus(BaseModel):
    authenticated: bool
    expires_at: Optional[datetime] = Field(default=None, serialization_alias="expiresAt")


class CampaignStatus(str, Enum):
    ACTIVE = "ACTIVE"
    PAUSED = "PAUSED"
    DELETED = "DELETED"
    ARCHIVED = "ARCHIVED"
    UNKNOWN = "UNKNOWN"


class CampaignRecord(BaseModel):
    id: str
    name: str
    objective: str = "N/A"
    status: CampaignStatus = CampaignStatus.UNKNOWN
    # Two-decimal string such as "10.50", or "N/A" when upstream has no budget
    daily_budget_major_units: str = Field(
        default="N/A", serialization_alias="dailyBudgetMajorUnits"
    )
    created_at: datetime = Field(serialization_alias="createdAt")


class Pagination(BaseModel):
    total: int
    page_size: int = Field(serialization_alias="pageSize")


class CampaignPage(BaseModel):
    campaigns: List[CampaignRecord] = Field(default_factory=list)
    pagination: Pagination
