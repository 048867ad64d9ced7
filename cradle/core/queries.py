"""
    Typed query shapes shared by the waitlist engine.

    Each function takes an explicit `Cohort` (or ids) rather than an
    ad hoc filter dict, so every filter is validated before it reaches
    the session.
"""

from dataclasses import dataclass
from typing import Optional
from sqlalchemy import func, or_
from cradle.core.exceptions import ValidationError
from cradle.core.models import (
    WaitlistEntry, WaitlistOffer, PriorityRule, CapacityReservation, Enrollment,
    WaitlistStatus, OfferResponse, ReservationStatus, OCCUPYING_ENROLLMENTS
)


@dataclass(frozen=True)
class Cohort:
    """A daycare-wide (program_id None) or per-program waitlist."""
    daycare_id: int
    program_id: Optional[int] = None

    def __post_init__(self):
        if self.daycare_id is None:
            raise ValidationError("Daycare ID is required")

    def where(self, model):
        conds = [model.daycare_id == self.daycare_id]
        if self.program_id is None:
            conds.append(model.program_id.is_(None))
        else:
            conds.append(model.program_id == self.program_id)
        return conds

    @classmethod
    def of(cls, obj):
        return cls(obj.daycare_id, obj.program_id)


def open_response():
    return or_(WaitlistOffer.response.is_(None),
               WaitlistOffer.response == OfferResponse.PENDING)


def active_entries(session, cohort, lock=False):
    query = session.query(WaitlistEntry).filter(
        *cohort.where(WaitlistEntry),
        WaitlistEntry.status == WaitlistStatus.ACTIVE)
    if lock:
        query = query.with_for_update()
    return query.all()


def cohort_rules(session, cohort):
    """Active rules scoped to the whole daycare or to this program."""
    scope = [PriorityRule.program_id.is_(None)]
    if cohort.program_id is not None:
        scope.append(PriorityRule.program_id == cohort.program_id)
    return session.query(PriorityRule).filter(
        PriorityRule.daycare_id == cohort.daycare_id,
        PriorityRule.is_active.is_(True),
        or_(*scope),
    ).order_by(PriorityRule.sort_order, PriorityRule.id).all()


def outstanding_offers(session, now, entry_id=None, cohort=None):
    query = session.query(WaitlistOffer).filter(
        open_response(), WaitlistOffer.offer_expires_at > now)
    if entry_id is not None:
        query = query.filter(WaitlistOffer.entry_id == entry_id)
    if cohort is not None:
        query = query.join(WaitlistEntry).filter(*cohort.where(WaitlistEntry))
    return query


def entries_with_outstanding_offers(session, now, cohort):
    rows = outstanding_offers(session, now, cohort=cohort).with_entities(
        WaitlistOffer.entry_id).distinct().all()
    return {entry_id for (entry_id,) in rows}


def expired_open_offers(session, now):
    return session.query(WaitlistOffer).filter(
        open_response(), WaitlistOffer.offer_expires_at <= now
    ).order_by(WaitlistOffer.id)


def reserved_slots(session, now, daycare_id, program_id=None, exclude_offer_id=None):
    """Slots held by live reservations at the daycare (or one program)."""
    query = session.query(func.coalesce(func.sum(CapacityReservation.slots), 0)).filter(
        CapacityReservation.daycare_id == daycare_id,
        CapacityReservation.status == ReservationStatus.RESERVED,
        CapacityReservation.expires_at > now)
    if program_id is not None:
        query = query.filter(CapacityReservation.program_id == program_id)
    if exclude_offer_id is not None:
        query = query.filter(CapacityReservation.offer_id != exclude_offer_id)
    return int(query.scalar() or 0)


def enrolled_count(session, daycare_id, program_id=None):
    query = session.query(func.count(Enrollment.id)).filter(
        Enrollment.daycare_id == daycare_id,
        Enrollment.status.in_(OCCUPYING_ENROLLMENTS))
    if program_id is not None:
        query = query.filter(Enrollment.program_id == program_id)
    return int(query.scalar() or 0)


def campaign_offered_entry_ids(session, campaign_id):
    """Entries that already received an offer in this campaign."""
    rows = session.query(WaitlistOffer.entry_id).filter(
        WaitlistOffer.campaign_id == campaign_id).distinct().all()
    return {entry_id for (entry_id,) in rows}


def offers_expiring_between(session, start, end):
    return session.query(WaitlistOffer).filter(
        open_response(),
        WaitlistOffer.reminder_sent_at.is_(None),
        WaitlistOffer.offer_expires_at >= start,
        WaitlistOffer.offer_expires_at <= end,
    ).order_by(WaitlistOffer.offer_expires_at)
