from pydantic import BaseModel, Field
from typing import List, Literal, Optional
from datetime import datetime
from cradle.core.models import OfferResponse
from cradle.schemas.waitlist import UTCDateTime, WaitlistEntry


class WaitlistOffer(BaseModel):
    id: int
    entry_id: int
    campaign_id: Optional[int] = None
    spot_available_date: datetime
    offer_sent_at: datetime
    offer_expires_at: datetime
    response: Optional[OfferResponse] = None
    responded_at: Optional[datetime] = None
    response_notes: Optional[str] = None
    priority_at_offer: float
    position_at_offer: int
    deposit_required: bool = False
    deposit_amount: Optional[float] = None
    deposit_paid: bool = False
    required_documents: List[str] = Field(default_factory=list)
    is_automated: bool = False
    created_by: Optional[str] = None

    class Config:
        from_attributes = True


class OfferSettings(BaseModel):
    offer_window_hours: Optional[int] = Field(None, gt=0)
    deposit_required: Optional[bool] = None
    deposit_amount: Optional[float] = Field(None, ge=0)
    required_documents: List[str] = Field(default_factory=list)
    campaign_id: Optional[int] = None


class CreateOfferRequest(BaseModel):
    entry_id: int
    spot_start_date: UTCDateTime
    settings: OfferSettings = Field(default_factory=OfferSettings)
    created_by: Optional[str] = None


class OfferResponseRequest(BaseModel):
    response: Literal['ACCEPTED', 'DECLINED']
    notes: Optional[str] = None
    deposit_paid: bool = False
    responded_by: Optional[str] = None


class OfferResponseResult(BaseModel):
    response: OfferResponse
    offer: WaitlistOffer
    entry: WaitlistEntry
    enrollment_id: Optional[int] = None
    campaign_complete: bool = False


class CleanupResult(BaseModel):
    released_count: int
    offer_ids: List[int] = Field(default_factory=list)
    follow_on_offers: int = 0


class ReminderResult(BaseModel):
    reminders_sent: int
    offer_ids: List[int] = Field(default_factory=list)
