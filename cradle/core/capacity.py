#!/usr/bin/env python

"""
    Capacity management for Cradle.

    The capacity manager is the only component that reserves, releases
    or consumes slots. Every mutation runs in a single transaction while
    holding the daycare lock and the daycare (and program) rows FOR
    UPDATE, so concurrent reservations are serialized and the check that
    admits a reservation is the one made at commit time.

    :copyright: (c) 2025 by AUTHORS
    :license: see LICENSE for more details
"""

import logging
from collections import defaultdict
from cradle.core import audit, queries
from cradle.core.exceptions import (
    CapacityExhaustedError, DaycareNotFoundError, ProgramNotFoundError,
    OfferNotFoundError, InvalidStateError, AlreadyConvertedError, ValidationError
)
from cradle.core.models import (
    Daycare, Program, WaitlistEntry, WaitlistOffer, CapacityReservation, Enrollment,
    WaitlistStatus, OfferResponse, ReservationStatus, EnrollmentStatus, WaitlistAction
)
from cradle.core.queries import Cohort
from cradle.schemas.capacity import CapacityCheck, EnrollmentData
from cradle.schemas.offer import CleanupResult

logger = logging.getLogger(__name__)


class CapacityManager:

    def __init__(self, db, clock, locks, positions=None):
        self.db = db
        self.clock = clock
        self.locks = locks
        self.positions = positions

    def _load(self, session, daycare_id, program_id=None, lock=False):
        daycare = Daycare.get(session, daycare_id, lock=lock)
        if not daycare:
            raise DaycareNotFoundError(f"Daycare {daycare_id} not found")
        program = None
        if program_id is not None:
            program = Program.get(session, program_id, lock=lock)
            if not program or program.daycare_id != daycare_id:
                raise ProgramNotFoundError(f"Program {program_id} not found")
        return daycare, program

    def _measure(self, session, daycare, program, required_slots, exclude_offer_id=None):
        now = self.clock.now()
        session.flush()
        daycare_enrolled = queries.enrolled_count(session, daycare.id)
        daycare_reserved = queries.reserved_slots(
            session, now, daycare.id, exclude_offer_id=exclude_offer_id)
        daycare_available = daycare.capacity - daycare_enrolled - daycare_reserved

        program_available = None
        occupancy, reserved, total = daycare_enrolled, daycare_reserved, daycare.capacity
        if program is not None:
            occupancy = queries.enrolled_count(session, daycare.id, program.id)
            reserved = queries.reserved_slots(
                session, now, daycare.id, program.id, exclude_offer_id=exclude_offer_id)
            total = program.total_capacity
            program_available = total - occupancy - reserved

        available = (daycare_available if program_available is None
                     else min(daycare_available, program_available))
        return CapacityCheck(
            has_capacity=available >= required_slots,
            available_slots=max(0, available),
            total_capacity=total,
            current_occupancy=occupancy,
            reserved_slots=reserved,
            daycare_has_capacity=daycare_available >= required_slots,
            program_has_capacity=(None if program_available is None
                                  else program_available >= required_slots),
            program_name=program.name if program else None,
        )

    def check_capacity(self, daycare_id, program_id=None, required_slots=1,
                       exclude_offer_id=None, session=None):
        """Read-only view of free slots: capacity minus enrollments and live reservations."""
        if required_slots < 0:
            raise ValidationError("required_slots must not be negative")
        with self.db.transaction(session) as s:
            daycare, program = self._load(s, daycare_id, program_id)
            return self._measure(s, daycare, program, required_slots, exclude_offer_id)

    def reserve_capacity(self, daycare_id, program_id, slots, offer_id, expires_at,
                         user_id=None, session=None):
        """Hold `slots` for `offer_id` until `expires_at`.

        Availability is re-checked under lock inside the writing
        transaction; an earlier `check_capacity` is never trusted. When
        `session` is given the caller must hold `self.locks(daycare_id)`
        until it commits.
        """
        now = self.clock.now()
        if slots < 1:
            raise ValidationError("A reservation needs at least one slot")
        if expires_at is None or expires_at <= now:
            raise ValidationError("A reservation must expire in the future")

        with self.locks(daycare_id):
            with self.db.transaction(session) as s:
                daycare, program = self._load(s, daycare_id, program_id, lock=True)
                reservation = s.query(CapacityReservation).filter(
                    CapacityReservation.offer_id == offer_id).with_for_update().first()
                if reservation and reservation.status == ReservationStatus.CONVERTED:
                    raise AlreadyConvertedError(f"Offer {offer_id} was already converted")
                if reservation and reservation.is_live(now) and reservation.slots >= slots:
                    reservation.expires_at = expires_at
                    return reservation

                check = self._measure(s, daycare, program, slots, exclude_offer_id=offer_id)
                if not check.has_capacity:
                    logger.warning(
                        f"Capacity exhausted for daycare {daycare_id} program {program_id}: "
                        f"available {check.available_slots}, required {slots}")
                    raise CapacityExhaustedError(
                        f"Insufficient capacity. Available: {check.available_slots}, "
                        f"Required: {slots}",
                        available_slots=check.available_slots, required_slots=slots)

                if reservation is None:
                    reservation = CapacityReservation(offer_id=offer_id, created_at=now)
                    s.add(reservation)
                reservation.daycare_id = daycare_id
                reservation.program_id = program_id
                reservation.slots = slots
                reservation.status = ReservationStatus.RESERVED
                reservation.expires_at = expires_at
                reservation.reserved_by = user_id
                reservation.released_at = None
                s.flush()
                return reservation

    def release_capacity(self, offer_id, session=None):
        """Free the reservation of `offer_id`. Missing, released or converted
        reservations are left alone; returns whether anything was freed."""
        with self.db.transaction(session) as s:
            reservation = s.query(CapacityReservation).filter(
                CapacityReservation.offer_id == offer_id).with_for_update().first()
            if reservation is None or reservation.status != ReservationStatus.RESERVED:
                return False
            reservation.status = ReservationStatus.RELEASED
            reservation.released_at = self.clock.now()
            return True

    def _daycare_of_offer(self, offer_id, session=None):
        with self.db.transaction(session) as s:
            row = s.query(WaitlistEntry.daycare_id).join(WaitlistOffer).filter(
                WaitlistOffer.id == offer_id).first()
        if row is None:
            raise OfferNotFoundError(f"Offer {offer_id} not found")
        return row[0]

    def convert_to_enrollment(self, offer_id, enrollment_data, performed_by=None, session=None):
        """Consume the offer's reservation and confirm an enrollment.

        The offer must already be ACCEPTED. A reservation that is no longer
        live is only replaced if a slot is still free.
        """
        if isinstance(enrollment_data, dict):
            enrollment_data = EnrollmentData(**enrollment_data)
        now = self.clock.now()
        daycare_id = self._daycare_of_offer(offer_id, session)

        with self.locks(daycare_id):
            with self.db.transaction(session) as s:
                offer = WaitlistOffer.get(s, offer_id, lock=True)
                if offer.response != OfferResponse.ACCEPTED:
                    raise InvalidStateError(f"Offer {offer_id} has not been accepted")
                entry = WaitlistEntry.get(s, offer.entry_id, lock=True)
                if s.query(Enrollment).filter(Enrollment.offer_id == offer_id).first():
                    raise AlreadyConvertedError(f"Offer {offer_id} was already converted")

                daycare, program = self._load(s, entry.daycare_id, entry.program_id, lock=True)
                reservation = s.query(CapacityReservation).filter(
                    CapacityReservation.offer_id == offer_id).with_for_update().first()
                if reservation and reservation.status == ReservationStatus.CONVERTED:
                    raise AlreadyConvertedError(f"Offer {offer_id} was already converted")
                if not (reservation and reservation.is_live(now)):
                    check = self._measure(s, daycare, program, 1, exclude_offer_id=offer_id)
                    if not check.has_capacity:
                        raise CapacityExhaustedError(
                            f"Reservation for offer {offer_id} lapsed and no slot is free",
                            available_slots=check.available_slots)
                if reservation is None:
                    reservation = CapacityReservation(
                        offer_id=offer_id, daycare_id=entry.daycare_id,
                        program_id=entry.program_id, slots=1, expires_at=now,
                        created_at=now)
                    s.add(reservation)
                reservation.status = ReservationStatus.CONVERTED
                reservation.converted_at = now

                enrollment = Enrollment(
                    daycare_id=entry.daycare_id,
                    program_id=entry.program_id,
                    entry_id=entry.id,
                    offer_id=offer.id,
                    parent_id=entry.parent_id,
                    child_name=entry.child_name,
                    status=EnrollmentStatus.CONFIRMED,
                    start_date=enrollment_data.start_date,
                    end_date=enrollment_data.end_date,
                    daily_rate=(enrollment_data.daily_rate
                                if enrollment_data.daily_rate is not None
                                else daycare.daily_rate),
                    notes=f"Converted from waitlist - Original position: {offer.position_at_offer}",
                    created_at=now,
                )
                s.add(enrollment)
                s.flush()
                audit.record(
                    s, now, entry.daycare_id, WaitlistAction.CONVERTED_TO_ENROLLMENT,
                    f"Waitlist entry converted to enrollment - Enrollment ID: {enrollment.id}",
                    entry_id=entry.id, performed_by=performed_by,
                    new_values={'enrollment_id': enrollment.id,
                                'start_date': enrollment.start_date},
                    details={'offer_id': offer.id,
                             'original_position': offer.position_at_offer,
                             'original_priority_score': offer.priority_at_offer})
                return enrollment

    def cleanup_expired_offers(self):
        """Expire unanswered offers past their deadline.

        Each daycare is swept in its own transaction under its lock and
        offers are re-selected there, so overlapping sweeps never process
        the same offer twice. Returns the count this call processed.
        """
        now = self.clock.now()
        with self.db.transaction() as s:
            rows = queries.expired_open_offers(s, now).join(WaitlistEntry).with_entities(
                WaitlistEntry.daycare_id, WaitlistOffer.id).all()
        by_daycare = defaultdict(list)
        for daycare_id, offer_id in rows:
            by_daycare[daycare_id].append(offer_id)

        result = CleanupResult(released_count=0)
        for daycare_id, offer_ids in sorted(by_daycare.items()):
            with self.locks(daycare_id):
                with self.db.transaction() as s:
                    expired = queries.expired_open_offers(s, now).filter(
                        WaitlistOffer.id.in_(offer_ids)).with_for_update().all()
                    cohorts = set()
                    for offer in expired:
                        entry = self._expire(s, offer, now)
                        cohorts.add(Cohort.of(entry))
                        result.offer_ids.append(offer.id)
                    if self.positions is not None:
                        for cohort in sorted(cohorts, key=lambda c: (c.daycare_id, c.program_id or 0)):
                            self.positions.recalculate(s, cohort, reason='Offer expired')

        result.released_count = len(result.offer_ids)

        if result.released_count:
            logger.info(f"Expired {result.released_count} offers")
        return result

    def _expire(self, session, offer, now):
        offer.response = OfferResponse.EXPIRED
        offer.responded_at = now
        self.release_capacity(offer.id, session=session)

        entry = WaitlistEntry.get(session, offer.entry_id, lock=True)
        old_status = entry.status
        session.flush()
        if entry.status == WaitlistStatus.OFFERED and not queries.outstanding_offers(
                session, now, entry_id=entry.id).count():
            entry.status = WaitlistStatus.ACTIVE
            entry.offer_expires_at = None
        entry.offer_response = OfferResponse.EXPIRED
        entry.offer_response_at = now
        entry.updated_at = now
        audit.record(
            session, now, entry.daycare_id, WaitlistAction.OFFER_EXPIRED,
            'Offer expired without response',
            entry_id=entry.id,
            old_values={'status': old_status, 'offer_response': None},
            new_values={'status': entry.status, 'offer_response': OfferResponse.EXPIRED},
            details={'offer_id': offer.id, 'campaign_id': offer.campaign_id,
                     'offer_expires_at': offer.offer_expires_at})
        return entry
