#!/usr/bin/env python

"""
    Offer management for Cradle,
    ranking candidates, extending time-boxed offers against reserved
    capacity and processing the parent's response.

    :copyright: (c) 2025 by AUTHORS
    :license: see LICENSE for more details
"""

import datetime
import logging
from cradle import configs
from cradle.core import audit, queries
from cradle.core.exceptions import (
    CradleAPIError, CapacityExhaustedError, CampaignNotFoundError, CampaignStateError,
    EntryNotFoundError, OfferNotFoundError,
    OutstandingOfferError, OfferAlreadyRespondedError, OfferExpiredError,
    EntryNotEligibleError, ValidationError
)
from cradle.core.models import (
    Daycare, WaitlistEntry, WaitlistOffer, WaitlistCampaign, WaitlistStatus,
    OfferResponse, CampaignStatus, WaitlistAction
)
from cradle.core.notifications import dispatch
from cradle.core.priority import PriorityEngine
from cradle.core.queries import Cohort
from cradle.core.utils import naive_utc
from cradle.schemas.capacity import EnrollmentData
from cradle.schemas.offer import (
    OfferSettings, OfferResponseResult, CleanupResult, ReminderResult,
    WaitlistOffer as OfferSchema
)
from cradle.schemas.waitlist import WaitlistEntry as EntrySchema

logger = logging.getLogger(__name__)

RESPONSES = (OfferResponse.ACCEPTED, OfferResponse.DECLINED)


class OfferManager:

    def __init__(self, db, clock, locks, capacity, positions, notifier=None):
        self.db = db
        self.clock = clock
        self.locks = locks
        self.capacity = capacity
        self.positions = positions
        self.notifier = notifier

    def ineligibility(self, session, entry, now, spot_start_date=None, outstanding=None):
        """Why `entry` cannot receive an offer right now, or None."""
        if entry.status != WaitlistStatus.ACTIVE:
            return f"Status is {entry.status.value}"
        if entry.paused_until and entry.paused_until > now:
            return f"Paused until {entry.paused_until:%Y-%m-%d}"
        if outstanding is None:
            has_offer = queries.outstanding_offers(session, now, entry_id=entry.id).count() > 0
        else:
            has_offer = entry.id in outstanding
        if has_offer:
            return 'Already has an active offer'
        if spot_start_date and entry.desired_start_date and entry.desired_start_date > spot_start_date:
            return (f"Desired start date ({entry.desired_start_date:%Y-%m-%d}) is after "
                    f"spot availability ({spot_start_date:%Y-%m-%d})")
        return None

    def candidates(self, session, cohort, as_of_date=None, exclude=()):
        now = self.clock.now()
        outstanding = queries.entries_with_outstanding_offers(session, now, cohort)
        eligible = [
            entry for entry in queries.active_entries(session, cohort)
            if entry.id not in exclude
            and self.ineligibility(session, entry, now, as_of_date, outstanding) is None
        ]
        return PriorityEngine.rank(eligible)

    def rank_waitlist_candidates(self, daycare_id, program_id=None, as_of_date=None):
        """ACTIVE entries without an outstanding offer, best first."""
        with self.db.transaction() as session:
            return self.candidates(session, Cohort(daycare_id, program_id), as_of_date)

    def issue(self, session, entry, daycare, spot_start_date, settings=None,
              created_by=None, campaign=None):
        """Persist an offer for `entry` and reserve its slot in `session`.

        The caller holds the daycare lock and owns the transaction, so a
        CapacityExhaustedError here leaves no offer behind.
        """
        settings = settings or OfferSettings()
        now = self.clock.now()
        window = (settings.offer_window_hours
                  or (campaign.offer_window_hours if campaign else None)
                  or daycare.default_offer_window_hours
                  or configs.DEFAULT_OFFER_WINDOW_HOURS)
        expires_at = now + datetime.timedelta(hours=window)
        deposit_required = (settings.deposit_required
                            if settings.deposit_required is not None
                            else daycare.require_deposit)
        deposit_amount = (settings.deposit_amount
                          if settings.deposit_amount is not None
                          else daycare.default_deposit_amount)

        offer = WaitlistOffer(
            entry_id=entry.id,
            campaign_id=campaign.id if campaign else None,
            spot_available_date=spot_start_date,
            offer_sent_at=now,
            offer_expires_at=expires_at,
            response=OfferResponse.PENDING,
            priority_at_offer=entry.priority_score,
            position_at_offer=entry.position,
            deposit_required=bool(deposit_required),
            deposit_amount=deposit_amount if deposit_required else None,
            required_documents=list(settings.required_documents),
            is_automated=campaign is not None or not created_by,
            created_by=created_by,
        )
        session.add(offer)
        session.flush()
        self.capacity.reserve_capacity(
            entry.daycare_id, entry.program_id, 1, offer.id, expires_at,
            user_id=created_by, session=session)

        old_status = entry.status
        entry.status = WaitlistStatus.OFFERED
        entry.last_offer_sent_at = now
        entry.offer_expires_at = expires_at
        entry.offer_response = None
        entry.offer_attempts = (entry.offer_attempts or 0) + 1
        entry.updated_at = now

        via = f' via campaign "{campaign.name}"' if campaign else ''
        audit.record(
            session, now, entry.daycare_id, WaitlistAction.OFFER_SENT,
            f"Offer sent{via} for spot starting {spot_start_date:%Y-%m-%d}",
            entry_id=entry.id, performed_by=created_by,
            performed_by_type='PROVIDER' if created_by else None,
            old_values={'status': old_status, 'offer_attempts': entry.offer_attempts - 1},
            new_values={'offer_id': offer.id, 'status': entry.status,
                        'offer_expires_at': expires_at,
                        'deposit_required': offer.deposit_required,
                        'deposit_amount': offer.deposit_amount,
                        'priority_at_offer': offer.priority_at_offer,
                        'position_at_offer': offer.position_at_offer},
            details={'campaign_id': offer.campaign_id, 'offer_window_hours': window,
                     'automated': offer.is_automated})
        return offer

    def _entry_daycare(self, entry_id):
        with self.db.transaction() as session:
            entry = WaitlistEntry.get(session, entry_id)
        if not entry:
            raise EntryNotFoundError(f"Waitlist entry {entry_id} not found")
        return entry.daycare_id

    def create_offer(self, entry_id, spot_start_date, settings=None, created_by=None):
        if isinstance(settings, dict):
            settings = OfferSettings(**settings)
        settings = settings or OfferSettings()
        spot_start_date = naive_utc(spot_start_date)
        daycare_id = self._entry_daycare(entry_id)

        with self.locks(daycare_id):
            with self.db.transaction() as session:
                now = self.clock.now()
                entry = WaitlistEntry.get(session, entry_id, lock=True)
                if queries.outstanding_offers(session, now, entry_id=entry.id).count():
                    raise OutstandingOfferError(f"Entry {entry_id} already has an active offer")
                reason = self.ineligibility(session, entry, now, spot_start_date)
                if reason:
                    raise EntryNotEligibleError(f"Entry {entry_id} is not eligible: {reason}")
                campaign = None
                if settings.campaign_id is not None:
                    campaign = self._campaign_for(session, settings.campaign_id, entry)
                daycare = Daycare.get(session, entry.daycare_id)
                offer = self.issue(session, entry, daycare, spot_start_date, settings,
                                   created_by=created_by, campaign=campaign)
                if campaign is not None:
                    campaign.total_offered += 1
                result, entries = self.positions.recalculate(
                    session, Cohort.of(entry), reason='Offer sent')

        self.positions.notify(result, entries)
        dispatch(self.notifier, 'offer_sent', offer, entry)
        return offer

    def _campaign_for(self, session, campaign_id, entry):
        campaign = WaitlistCampaign.get(session, campaign_id, lock=True)
        if campaign is None:
            raise CampaignNotFoundError(f"Campaign {campaign_id} not found")
        if Cohort.of(campaign) != Cohort.of(entry):
            raise CampaignStateError(
                f"Campaign {campaign_id} does not cover entry {entry.id}'s waitlist")
        if campaign.status != CampaignStatus.ACTIVE:
            raise CampaignStateError(
                f"Campaign {campaign_id} is {campaign.status.value}; only ACTIVE campaigns take offers")
        return campaign

    def process_offer_response(self, offer_id, response, notes=None, deposit_paid=False,
                               responded_by=None):
        """Accept or decline an offer in one transaction.

        ACCEPTED consumes the reservation into an enrollment and moves the
        entry to ACCEPTED. DECLINED frees the slot and returns the entry to
        the active cohort, where its position is recomputed by score.
        Campaign counters move with the response.
        """
        try:
            response = OfferResponse(response)
        except ValueError:
            raise ValidationError(f"Invalid response: {response}")
        if response not in RESPONSES:
            raise ValidationError("Response must be ACCEPTED or DECLINED")

        daycare_id = self.capacity._daycare_of_offer(offer_id)
        with self.locks(daycare_id):
            with self.db.transaction() as session:
                now = self.clock.now()
                offer = WaitlistOffer.get(session, offer_id, lock=True)
                if offer is None:
                    raise OfferNotFoundError(f"Offer {offer_id} not found")
                if not offer.is_open:
                    raise OfferAlreadyRespondedError(
                        f"Offer {offer_id} has already been responded to ({offer.response.value})")
                if now >= offer.offer_expires_at:
                    raise OfferExpiredError(f"Offer {offer_id} has expired")

                entry = WaitlistEntry.get(session, offer.entry_id, lock=True)
                daycare = Daycare.get(session, entry.daycare_id)
                campaign = (WaitlistCampaign.get(session, offer.campaign_id, lock=True)
                            if offer.campaign_id else None)
                old = {'status': entry.status, 'offer_response': offer.response}

                offer.response = response
                offer.responded_at = now
                offer.response_notes = notes
                offer.deposit_paid = bool(deposit_paid)
                offer.deposit_paid_at = now if deposit_paid else None

                enrollment = None
                campaign_complete = False
                via = f' for campaign "{campaign.name}"' if campaign else ''
                if response == OfferResponse.ACCEPTED:
                    enrollment = self.capacity.convert_to_enrollment(
                        offer.id,
                        EnrollmentData(start_date=offer.spot_available_date,
                                       daily_rate=daycare.daily_rate),
                        performed_by=responded_by or entry.parent_id,
                        session=session)
                    entry.status = WaitlistStatus.ACCEPTED
                    action = WaitlistAction.OFFER_ACCEPTED
                    description = f"Offer accepted{via} - converting to enrollment"
                    if campaign is not None:
                        campaign_complete = self._count_acceptance(session, campaign, now)
                else:
                    self.capacity.release_capacity(offer.id, session=session)
                    entry.status = WaitlistStatus.ACTIVE
                    entry.last_offer_sent_at = None
                    entry.offer_expires_at = None
                    action = WaitlistAction.OFFER_DECLINED
                    description = f"Offer declined{via} - returned to active waitlist"
                    if campaign is not None:
                        campaign.total_declined += 1

                entry.offer_response = response
                entry.offer_response_at = now
                entry.updated_at = now
                audit.record(
                    session, now, entry.daycare_id, action,
                    f"{description}{f' - {notes}' if notes else ''}",
                    entry_id=entry.id, performed_by=responded_by or entry.parent_id,
                    performed_by_type='PARENT',
                    old_values=old,
                    new_values={'status': entry.status, 'offer_response': response,
                                'response_notes': notes, 'deposit_paid': offer.deposit_paid,
                                'responded_at': now},
                    details={'offer_id': offer.id,
                             'campaign_id': campaign.id if campaign else None,
                             'campaign_name': campaign.name if campaign else None,
                             'spot_available_date': offer.spot_available_date,
                             'offer_sent_at': offer.offer_sent_at,
                             'offer_expires_at': offer.offer_expires_at,
                             'enrollment_id': enrollment.id if enrollment else None})
                result, entries = self.positions.recalculate(
                    session, Cohort.of(entry), reason=f"Offer {response.value.lower()}")

        self.positions.notify(result, entries)
        if response == OfferResponse.ACCEPTED:
            dispatch(self.notifier, 'offer_accepted', offer, entry)
        elif daycare.auto_advance_enabled:
            in_campaign = (campaign is not None and campaign.status == CampaignStatus.ACTIVE
                           and campaign.spots_remaining > 0)
            self._best_effort_advance(
                entry.daycare_id, entry.program_id, offer.spot_available_date,
                campaign_id=campaign.id if in_campaign else None, skip=(entry.id,))

        return OfferResponseResult(
            response=response,
            offer=OfferSchema.model_validate(offer),
            entry=EntrySchema.model_validate(entry),
            enrollment_id=enrollment.id if enrollment else None,
            campaign_complete=campaign_complete,
        )

    def _count_acceptance(self, session, campaign, now):
        campaign.total_accepted += 1
        campaign.spots_remaining = max(0, campaign.spots_remaining - 1)
        if campaign.spots_remaining == 0 and campaign.status == CampaignStatus.ACTIVE:
            campaign.status = CampaignStatus.COMPLETED
            campaign.completed_at = now
            audit.record(
                session, now, campaign.daycare_id, WaitlistAction.CAMPAIGN_COMPLETED,
                f'Campaign "{campaign.name}" completed - all spots accepted',
                old_values={'status': CampaignStatus.ACTIVE, 'spots_remaining': 1},
                new_values={'status': campaign.status, 'spots_remaining': 0},
                details={'campaign_id': campaign.id,
                         'total_accepted': campaign.total_accepted})
            return True
        return False

    def handle_expired_offers(self):
        """Run the expiration sweep, then notify and refill best-effort.

        An expired campaign offer is followed by an offer to the campaign's
        next candidate while the campaign is ACTIVE with spots remaining;
        otherwise daycares with auto-advance get their next candidate.
        """
        result = self.capacity.cleanup_expired_offers()
        for offer_id in result.offer_ids:
            with self.db.transaction() as session:
                offer = WaitlistOffer.get(session, offer_id)
                entry = WaitlistEntry.get(session, offer.entry_id)
                daycare = Daycare.get(session, entry.daycare_id)
                campaign = (WaitlistCampaign.get(session, offer.campaign_id)
                            if offer.campaign_id else None)
            dispatch(self.notifier, 'offer_expired', offer, entry)

            if campaign and campaign.status == CampaignStatus.ACTIVE and campaign.spots_remaining > 0:
                follow_on = self._best_effort_advance(
                    campaign.daycare_id, campaign.program_id,
                    campaign.spot_available_date, campaign_id=campaign.id)
            elif campaign is None and daycare.auto_advance_enabled:
                follow_on = self._best_effort_advance(
                    entry.daycare_id, entry.program_id, offer.spot_available_date,
                    skip=(entry.id,))
            else:
                follow_on = None
            if follow_on is not None:
                result.follow_on_offers += 1
        return result

    def _best_effort_advance(self, *args, **kwargs):
        try:
            return self.advance_to_next_candidate(*args, **kwargs)
        except CradleAPIError as e:
            logger.warning(f"Could not advance to next candidate: {e}")
            return None

    def advance_to_next_candidate(self, daycare_id, program_id, spot_start_date,
                                  campaign_id=None, skip=()):
        """Offer the spot to the best remaining candidate.

        Entries in `skip` (typically the one that just let the spot go) are
        passed over. Within a campaign, entries it already reached and
        entries out of attempts are skipped too. With no candidate left the
        spot is recorded as released to the public.
        """
        cohort = Cohort(daycare_id, program_id)
        with self.locks(daycare_id):
            with self.db.transaction() as session:
                now = self.clock.now()
                campaign = (WaitlistCampaign.get(session, campaign_id, lock=True)
                            if campaign_id else None)
                exclude = set(skip)
                if campaign is not None:
                    exclude |= queries.campaign_offered_entry_ids(session, campaign.id)
                candidates = [
                    entry for entry in self.candidates(session, cohort, spot_start_date, exclude)
                    if campaign is None or entry.offer_attempts < campaign.max_offer_attempts
                ]
                if not candidates:
                    audit.record(
                        session, now, daycare_id, WaitlistAction.SPOT_RELEASED,
                        f"Spot for {spot_start_date:%Y-%m-%d} marked as public - waitlist exhausted",
                        details={'program_id': program_id, 'campaign_id': campaign_id,
                                 'spot_start_date': spot_start_date,
                                 'reason': 'waitlist_exhausted'})
                    return None

                daycare = Daycare.get(session, daycare_id)
                entry = candidates[0]
                WaitlistEntry.get(session, entry.id, lock=True)
                offer = self.issue(session, entry, daycare, spot_start_date, campaign=campaign)
                if campaign is not None:
                    campaign.total_offered += 1
                result, entries = self.positions.recalculate(
                    session, cohort, reason='Advanced to next candidate')

        self.positions.notify(result, entries)
        dispatch(self.notifier, 'offer_sent', offer, entry)
        return offer

    def send_expiration_reminders(self, window_hours=configs.REMINDER_WINDOW_HOURS):
        """Remind holders of offers expiring inside the window, once each."""
        low, high = window_hours
        with self.db.transaction() as session:
            now = self.clock.now()
            offers = queries.offers_expiring_between(
                session, now + datetime.timedelta(hours=low),
                now + datetime.timedelta(hours=high)).with_for_update().all()
            due = []
            for offer in offers:
                offer.reminder_sent_at = now
                entry = WaitlistEntry.get(session, offer.entry_id)
                hours = int((offer.offer_expires_at - now).total_seconds() // 3600)
                due.append((offer, entry, hours))

        for offer, entry, hours in due:
            dispatch(self.notifier, 'offer_expiring', offer, entry, hours)
        return ReminderResult(reminders_sent=len(due), offer_ids=[o.id for o, _, _ in due])
