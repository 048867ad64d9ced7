from pydantic import BaseModel
from typing import Optional
from datetime import datetime
from cradle.core.models import ReservationStatus, EnrollmentStatus
from cradle.schemas.waitlist import UTCDateTime


class CapacityCheck(BaseModel):
    has_capacity: bool
    available_slots: int
    total_capacity: int
    current_occupancy: int
    reserved_slots: int
    daycare_has_capacity: bool
    program_has_capacity: Optional[bool] = None
    program_name: Optional[str] = None


class CapacityReservation(BaseModel):
    id: int
    daycare_id: int
    program_id: Optional[int] = None
    offer_id: int
    slots: int
    status: ReservationStatus
    expires_at: datetime
    reserved_by: Optional[str] = None

    class Config:
        from_attributes = True


class EnrollmentData(BaseModel):
    start_date: UTCDateTime
    end_date: Optional[UTCDateTime] = None
    daily_rate: Optional[float] = None


class Enrollment(BaseModel):
    id: int
    daycare_id: int
    program_id: Optional[int] = None
    entry_id: Optional[int] = None
    offer_id: Optional[int] = None
    status: EnrollmentStatus
    start_date: datetime
    end_date: Optional[datetime] = None
    daily_rate: Optional[float] = None

    class Config:
        from_attributes = True
