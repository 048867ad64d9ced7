from pydantic import BaseModel, Field
from typing import Optional
from datetime import datetime
from cradle.core.models import WaitlistAction


class Daycare(BaseModel):
    id: int
    name: str
    capacity: int
    daily_rate: Optional[float] = None
    default_offer_window_hours: Optional[int] = None
    require_deposit: bool = False
    default_deposit_amount: Optional[float] = None
    auto_advance_enabled: bool = False

    class Config:
        from_attributes = True


class CreateDaycareRequest(BaseModel):
    name: str = Field(..., min_length=1)
    capacity: int = Field(..., ge=0)
    daily_rate: Optional[float] = Field(None, ge=0)
    default_offer_window_hours: Optional[int] = Field(None, gt=0)
    require_deposit: bool = False
    default_deposit_amount: Optional[float] = Field(None, ge=0)
    auto_advance_enabled: bool = False


class Program(BaseModel):
    id: int
    daycare_id: int
    name: str
    total_capacity: int

    class Config:
        from_attributes = True


class CreateProgramRequest(BaseModel):
    name: str = Field(..., min_length=1)
    total_capacity: int = Field(..., ge=0)


class AuditLogEntry(BaseModel):
    id: int
    entry_id: Optional[int] = None
    daycare_id: int
    action: WaitlistAction
    description: str
    performed_by: Optional[str] = None
    performed_by_type: Optional[str] = None
    old_values: Optional[dict] = None
    new_values: Optional[dict] = None
    details: Optional[dict] = None
    created_at: datetime

    class Config:
        from_attributes = True


class Notification(BaseModel):
    id: int
    recipient_id: str
    entry_id: Optional[int] = None
    offer_id: Optional[int] = None
    type: str
    message: str
    date: datetime
    is_read: bool = False

    class Config:
        from_attributes = True
