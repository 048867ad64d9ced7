from pydantic import BaseModel, Field
from typing import List, Optional
from datetime import datetime
from cradle.core.models import CampaignStatus
from cradle.schemas.waitlist import UTCDateTime


class WaitlistCampaign(BaseModel):
    id: int
    daycare_id: int
    program_id: Optional[int] = None
    name: str
    description: Optional[str] = None
    status: CampaignStatus
    spots_available: int
    spots_remaining: int
    spot_available_date: datetime
    offer_window_hours: int
    max_offer_attempts: int
    total_offered: int = 0
    total_accepted: int = 0
    total_declined: int = 0
    created_by: str
    created_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class CreateCampaignRequest(BaseModel):
    daycare_id: int
    program_id: Optional[int] = None
    name: str = Field(..., min_length=1)
    description: Optional[str] = None
    spots_available: int = Field(..., gt=0)
    spot_available_date: UTCDateTime
    offer_window_hours: Optional[int] = Field(None, gt=0)
    max_offer_attempts: Optional[int] = Field(None, gt=0)
    created_by: str = Field(..., min_length=1)


class ExecuteCampaignRequest(BaseModel):
    performed_by: Optional[str] = None
    dry_run: bool = False


class PlannedOffer(BaseModel):
    entry_id: int
    child_name: str
    parent_id: str
    position: int
    priority_score: float
    days_on_waitlist: int
    order: int


class ExecutionPlan(BaseModel):
    campaign_id: int
    campaign_name: str
    spots_available: int
    spots_remaining: int
    max_offer_attempts: int
    offer_window_hours: int
    available_slots: int
    eligible_entries: int
    available_entries: int
    planned_offers: int
    offer_expires_at: datetime
    entries: List[PlannedOffer] = Field(default_factory=list)
    dry_run: bool = True


class ExecutionResult(ExecutionPlan):
    dry_run: bool = False
    offers_created: int = 0
    offer_ids: List[int] = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list)


class CampaignStats(BaseModel):
    total_offers: int = 0
    active_offers: int = 0
    accepted_offers: int = 0
    declined_offers: int = 0
    expired_offers: int = 0
    response_rate: int = 0
    acceptance_rate: int = 0


class CampaignSummary(WaitlistCampaign):
    stats: CampaignStats = Field(default_factory=CampaignStats)
