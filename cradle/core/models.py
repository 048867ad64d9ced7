#!/usr/bin/env python

"""
    Waitlist Models for Cradle,
    including daycares, programs, waitlist entries, priority rules,
    offers, campaigns, capacity reservations, enrollments and audit logs.

    :copyright: (c) 2025 by AUTHORS
    :license: see LICENSE for more details
"""

import enum
from sqlalchemy import (
    Column, String, Boolean, Integer, Float, DateTime, Text, JSON,
    ForeignKey, UniqueConstraint, Enum as SQLAlchemyEnum, event
)
from sqlalchemy.orm import relationship
from cradle.core.db import Base
from cradle.core.exceptions import AuditLogImmutableError


class WaitlistStatus(str, enum.Enum):
    ACTIVE = 'ACTIVE'
    PAUSED = 'PAUSED'
    OFFERED = 'OFFERED'
    ACCEPTED = 'ACCEPTED'
    ENROLLED = 'ENROLLED'
    WITHDRAWN = 'WITHDRAWN'

class PriorityRuleType(str, enum.Enum):
    SIBLING_ENROLLED = 'SIBLING_ENROLLED'
    STAFF_CHILD = 'STAFF_CHILD'
    SERVICE_AREA = 'SERVICE_AREA'
    SUBSIDY_APPROVED = 'SUBSIDY_APPROVED'
    CORPORATE_PARTNERSHIP = 'CORPORATE_PARTNERSHIP'
    SPECIAL_NEEDS = 'SPECIAL_NEEDS'
    TIME_ON_LIST = 'TIME_ON_LIST'
    PROVIDER_CUSTOM = 'PROVIDER_CUSTOM'
    FIRST_TIME_PARENT = 'FIRST_TIME_PARENT'
    MILITARY_FAMILY = 'MILITARY_FAMILY'

class OfferResponse(str, enum.Enum):
    PENDING = 'PENDING'
    ACCEPTED = 'ACCEPTED'
    DECLINED = 'DECLINED'
    EXPIRED = 'EXPIRED'

class CampaignStatus(str, enum.Enum):
    DRAFT = 'DRAFT'
    ACTIVE = 'ACTIVE'
    COMPLETED = 'COMPLETED'
    CANCELLED = 'CANCELLED'

class ReservationStatus(str, enum.Enum):
    RESERVED = 'RESERVED'
    RELEASED = 'RELEASED'
    CONVERTED = 'CONVERTED'

class EnrollmentStatus(str, enum.Enum):
    PENDING = 'PENDING'
    CONFIRMED = 'CONFIRMED'
    CANCELLED = 'CANCELLED'

class WaitlistAction(str, enum.Enum):
    JOINED = 'JOINED'
    WITHDRAWN = 'WITHDRAWN'
    PAUSED = 'PAUSED'
    RESUMED = 'RESUMED'
    POSITION_CHANGED = 'POSITION_CHANGED'
    OFFER_SENT = 'OFFER_SENT'
    OFFER_ACCEPTED = 'OFFER_ACCEPTED'
    OFFER_DECLINED = 'OFFER_DECLINED'
    OFFER_EXPIRED = 'OFFER_EXPIRED'
    CONVERTED_TO_ENROLLMENT = 'CONVERTED_TO_ENROLLMENT'
    CAMPAIGN_STARTED = 'CAMPAIGN_STARTED'
    CAMPAIGN_COMPLETED = 'CAMPAIGN_COMPLETED'
    CAMPAIGN_CANCELLED = 'CAMPAIGN_CANCELLED'
    SPOT_RELEASED = 'SPOT_RELEASED'

# Enrollment states that occupy a slot
OCCUPYING_ENROLLMENTS = (EnrollmentStatus.CONFIRMED, EnrollmentStatus.PENDING)

# Offer responses that still hold a slot while unexpired
OPEN_RESPONSES = (OfferResponse.PENDING,)


class Daycare(Base):
    __tablename__ = 'daycares'

    id = Column(Integer, primary_key=True)
    name = Column(String(255), nullable=False)
    capacity = Column(Integer, nullable=False, default=0)
    daily_rate = Column(Float, nullable=True)
    default_offer_window_hours = Column(Integer, nullable=True)
    require_deposit = Column(Boolean, default=False, nullable=False)
    default_deposit_amount = Column(Float, nullable=True)
    auto_advance_enabled = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, nullable=True)


class Program(Base):
    __tablename__ = 'programs'

    id = Column(Integer, primary_key=True)
    daycare_id = Column(Integer, ForeignKey('daycares.id', ondelete='CASCADE'), nullable=False)
    name = Column(String(255), nullable=False)
    total_capacity = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, nullable=True)


class WaitlistEntry(Base):
    __tablename__ = 'waitlist_entries'

    id = Column(Integer, primary_key=True)
    daycare_id = Column(Integer, ForeignKey('daycares.id', ondelete='CASCADE'), nullable=False)
    program_id = Column(Integer, ForeignKey('programs.id', ondelete='SET NULL'), nullable=True)
    parent_id = Column(String(50), nullable=False)
    child_name = Column(String(255), nullable=False)
    status = Column(SQLAlchemyEnum(WaitlistStatus), default=WaitlistStatus.ACTIVE, nullable=False)
    position = Column(Integer, nullable=False, default=0)
    priority_score = Column(Float, nullable=False, default=0)
    joined_at = Column(DateTime, nullable=False)
    desired_start_date = Column(DateTime, nullable=True)
    paused_until = Column(DateTime, nullable=True)

    has_sibling_enrolled = Column(Boolean, default=False, nullable=False)
    is_staff_child = Column(Boolean, default=False, nullable=False)
    in_service_area = Column(Boolean, default=False, nullable=False)
    has_subsidy_approval = Column(Boolean, default=False, nullable=False)
    has_corporate_partnership = Column(Boolean, default=False, nullable=False)
    has_special_needs = Column(Boolean, default=False, nullable=False)
    provider_tags = Column(JSON, nullable=False, default=list)

    offer_attempts = Column(Integer, nullable=False, default=0)
    estimated_wait_days = Column(Integer, nullable=True)
    last_offer_sent_at = Column(DateTime, nullable=True)
    offer_expires_at = Column(DateTime, nullable=True)
    offer_response = Column(SQLAlchemyEnum(OfferResponse), nullable=True)
    offer_response_at = Column(DateTime, nullable=True)
    last_position_change = Column(DateTime, nullable=True)
    updated_at = Column(DateTime, nullable=True)

    offers = relationship('WaitlistOffer', back_populates='entry', order_by='WaitlistOffer.id')

    @property
    def cohort(self):
        return (self.daycare_id, self.program_id)

    @property
    def tags(self):
        return set(self.provider_tags or [])


class PriorityRule(Base):
    __tablename__ = 'priority_rules'

    id = Column(Integer, primary_key=True)
    daycare_id = Column(Integer, ForeignKey('daycares.id', ondelete='CASCADE'), nullable=False)
    program_id = Column(Integer, ForeignKey('programs.id', ondelete='CASCADE'), nullable=True)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    rule_type = Column(SQLAlchemyEnum(PriorityRuleType), nullable=False)
    points = Column(Integer, nullable=False, default=0)
    is_active = Column(Boolean, default=True, nullable=False)
    sort_order = Column(Integer, default=0, nullable=False)
    conditions = Column(JSON, nullable=True)
    created_at = Column(DateTime, nullable=True)


class WaitlistCampaign(Base):
    __tablename__ = 'waitlist_campaigns'

    id = Column(Integer, primary_key=True)
    daycare_id = Column(Integer, ForeignKey('daycares.id', ondelete='CASCADE'), nullable=False)
    program_id = Column(Integer, ForeignKey('programs.id', ondelete='SET NULL'), nullable=True)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    status = Column(SQLAlchemyEnum(CampaignStatus), default=CampaignStatus.DRAFT, nullable=False)
    spots_available = Column(Integer, nullable=False)
    spots_remaining = Column(Integer, nullable=False)
    spot_available_date = Column(DateTime, nullable=False)
    offer_window_hours = Column(Integer, nullable=False)
    max_offer_attempts = Column(Integer, nullable=False)
    total_offered = Column(Integer, nullable=False, default=0)
    total_accepted = Column(Integer, nullable=False, default=0)
    total_declined = Column(Integer, nullable=False, default=0)
    created_by = Column(String(50), nullable=False)
    created_at = Column(DateTime, nullable=True)
    started_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    cancelled_at = Column(DateTime, nullable=True)

    offers = relationship('WaitlistOffer', back_populates='campaign', order_by='WaitlistOffer.id')

    @property
    def cohort(self):
        return (self.daycare_id, self.program_id)


class WaitlistOffer(Base):
    __tablename__ = 'waitlist_offers'

    id = Column(Integer, primary_key=True)
    entry_id = Column(Integer, ForeignKey('waitlist_entries.id', ondelete='CASCADE'), nullable=False)
    campaign_id = Column(Integer, ForeignKey('waitlist_campaigns.id', ondelete='SET NULL'), nullable=True)
    spot_available_date = Column(DateTime, nullable=False)
    offer_sent_at = Column(DateTime, nullable=False)
    offer_expires_at = Column(DateTime, nullable=False)
    response = Column(SQLAlchemyEnum(OfferResponse), nullable=True)
    responded_at = Column(DateTime, nullable=True)
    response_notes = Column(Text, nullable=True)
    priority_at_offer = Column(Float, nullable=False, default=0)
    position_at_offer = Column(Integer, nullable=False, default=0)
    deposit_required = Column(Boolean, default=False, nullable=False)
    deposit_amount = Column(Float, nullable=True)
    deposit_paid = Column(Boolean, default=False, nullable=False)
    deposit_paid_at = Column(DateTime, nullable=True)
    required_documents = Column(JSON, nullable=False, default=list)
    is_automated = Column(Boolean, default=False, nullable=False)
    created_by = Column(String(50), nullable=True)
    reminder_sent_at = Column(DateTime, nullable=True)

    entry = relationship('WaitlistEntry', back_populates='offers')
    campaign = relationship('WaitlistCampaign', back_populates='offers')

    @property
    def is_open(self):
        """No response recorded yet."""
        return self.response is None or self.response in OPEN_RESPONSES

    def is_outstanding(self, now):
        return self.is_open and self.offer_expires_at > now


class CapacityReservation(Base):
    __tablename__ = 'capacity_reservations'

    id = Column(Integer, primary_key=True)
    daycare_id = Column(Integer, ForeignKey('daycares.id', ondelete='CASCADE'), nullable=False)
    program_id = Column(Integer, ForeignKey('programs.id', ondelete='CASCADE'), nullable=True)
    offer_id = Column(Integer, ForeignKey('waitlist_offers.id', ondelete='CASCADE'), nullable=False)
    slots = Column(Integer, nullable=False, default=1)
    status = Column(SQLAlchemyEnum(ReservationStatus), default=ReservationStatus.RESERVED, nullable=False)
    expires_at = Column(DateTime, nullable=False)
    reserved_by = Column(String(50), nullable=True)
    created_at = Column(DateTime, nullable=True)
    released_at = Column(DateTime, nullable=True)
    converted_at = Column(DateTime, nullable=True)

    __table_args__ = (UniqueConstraint('offer_id', name='unique_offer_reservation'),)

    def is_live(self, now):
        return self.status == ReservationStatus.RESERVED and self.expires_at > now


class Enrollment(Base):
    __tablename__ = 'enrollments'

    id = Column(Integer, primary_key=True)
    daycare_id = Column(Integer, ForeignKey('daycares.id', ondelete='CASCADE'), nullable=False)
    program_id = Column(Integer, ForeignKey('programs.id', ondelete='SET NULL'), nullable=True)
    entry_id = Column(Integer, ForeignKey('waitlist_entries.id', ondelete='SET NULL'), nullable=True)
    offer_id = Column(Integer, ForeignKey('waitlist_offers.id', ondelete='SET NULL'), nullable=True)
    parent_id = Column(String(50), nullable=True)
    child_name = Column(String(255), nullable=True)
    status = Column(SQLAlchemyEnum(EnrollmentStatus), default=EnrollmentStatus.CONFIRMED, nullable=False)
    start_date = Column(DateTime, nullable=False)
    end_date = Column(DateTime, nullable=True)
    daily_rate = Column(Float, nullable=True)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=True)

    __table_args__ = (UniqueConstraint('offer_id', name='unique_offer_enrollment'),)


class AuditLog(Base):
    __tablename__ = 'waitlist_audit_logs'

    id = Column(Integer, primary_key=True)
    entry_id = Column(Integer, ForeignKey('waitlist_entries.id', ondelete='SET NULL'), nullable=True)
    daycare_id = Column(Integer, nullable=False)
    action = Column(SQLAlchemyEnum(WaitlistAction), nullable=False)
    description = Column(Text, nullable=False)
    performed_by = Column(String(50), nullable=True)
    performed_by_type = Column(String(20), nullable=True)
    old_values = Column(JSON, nullable=True)
    new_values = Column(JSON, nullable=True)
    details = Column(JSON, nullable=True)
    created_at = Column(DateTime, nullable=False)


@event.listens_for(AuditLog, 'before_update')
@event.listens_for(AuditLog, 'before_delete')
def _audit_log_is_append_only(mapper, connection, target):
    raise AuditLogImmutableError(f"Audit log {target.id} cannot be modified")


class Notification(Base):
    __tablename__ = 'notifications'

    id = Column(Integer, primary_key=True)
    recipient_id = Column(String(50), nullable=False)
    entry_id = Column(Integer, ForeignKey('waitlist_entries.id', ondelete='CASCADE'), nullable=True)
    offer_id = Column(Integer, ForeignKey('waitlist_offers.id', ondelete='CASCADE'), nullable=True)
    type = Column(String(50), nullable=False)
    message = Column(String, nullable=False)
    date = Column(DateTime, nullable=False)
    is_read = Column(Boolean, default=False, nullable=False)
