from pydantic import AfterValidator, BaseModel, Field
from typing import Annotated, List, Optional
from datetime import datetime
from cradle.core.models import WaitlistStatus, PriorityRuleType
from cradle.core.utils import naive_utc

# Incoming timestamps may carry an offset; the engine stores naive UTC
UTCDateTime = Annotated[datetime, AfterValidator(naive_utc)]


class WaitlistEntry(BaseModel):
    id: int
    daycare_id: int
    program_id: Optional[int] = None
    parent_id: str
    child_name: str
    status: WaitlistStatus
    position: int
    priority_score: float
    joined_at: datetime
    desired_start_date: Optional[datetime] = None
    paused_until: Optional[datetime] = None
    has_sibling_enrolled: bool = False
    is_staff_child: bool = False
    in_service_area: bool = False
    has_subsidy_approval: bool = False
    has_corporate_partnership: bool = False
    has_special_needs: bool = False
    provider_tags: List[str] = Field(default_factory=list)
    offer_attempts: int = 0
    estimated_wait_days: Optional[int] = None
    offer_expires_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class JoinWaitlistRequest(BaseModel):
    daycare_id: int
    program_id: Optional[int] = None
    parent_id: str
    child_name: str
    desired_start_date: Optional[UTCDateTime] = None
    has_sibling_enrolled: bool = False
    is_staff_child: bool = False
    in_service_area: bool = False
    has_subsidy_approval: bool = False
    has_corporate_partnership: bool = False
    has_special_needs: bool = False
    provider_tags: List[str] = Field(default_factory=list)


class RuleEvaluation(BaseModel):
    rule_id: Optional[int] = None
    rule_name: str
    rule_type: str
    points: int
    applied: bool
    reason: Optional[str] = None


class PriorityResult(BaseModel):
    total_score: float
    rule_breakdown: List[RuleEvaluation]
    previous_score: Optional[float] = None

    @property
    def score_changed(self):
        return self.previous_score is None or abs(self.previous_score - self.total_score) > 0.01


class PositionUpdate(BaseModel):
    entry_id: int
    old_position: int
    new_position: int
    position_change: int


class PositionChange(PositionUpdate):
    priority_score_change: float = 0


class WaitUpdate(BaseModel):
    entry_id: int
    estimated_wait_days: Optional[int] = None


class RecalculationResult(BaseModel):
    updated_count: int
    position_changes: List[PositionChange] = Field(default_factory=list)
    priority_score_changes: int = 0
    estimated_wait_updates: List[WaitUpdate] = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list)

    @property
    def significant_changes(self):
        return len(self.position_changes)


class ThroughputHistory(BaseModel):
    average_offer_per_month: float
    average_acceptance_rate: float
    seasonal_adjustment: float = 1.0


class PositionSummary(BaseModel):
    entry_id: int
    status: WaitlistStatus
    position: Optional[int] = None
    position_band: Optional[str] = None
    priority_score: float
    days_on_waitlist: int
    estimated_wait_days: Optional[int] = None
    total_active: int


class PauseRequest(BaseModel):
    paused_until: Optional[UTCDateTime] = None
    performed_by: Optional[str] = None


class ActorRequest(BaseModel):
    performed_by: Optional[str] = None
