#!/usr/bin/env python

"""
    Waitlist campaigns for Cradle.

    A campaign releases a known number of upcoming spots to the waitlist
    in one batch: DRAFT -> ACTIVE -> COMPLETED | CANCELLED. Execution walks
    the ranked candidates one at a time, in rank order, so reservations
    are granted in priority order.

    :copyright: (c) 2025 by AUTHORS
    :license: see LICENSE for more details
"""

import datetime
import logging
from cradle import configs
from cradle.core import audit, queries
from cradle.core.exceptions import (
    CradleAPIError, CampaignNotFoundError, CampaignStateError, CapacityExhaustedError,
    EntryNotEligibleError
)
from cradle.core.models import (
    Daycare, WaitlistEntry, WaitlistCampaign, WaitlistOffer, CampaignStatus,
    OfferResponse, WaitlistAction
)
from cradle.core.notifications import dispatch
from cradle.core.queries import Cohort
from cradle.core.utils import days_between
from cradle.schemas.campaign import (
    CreateCampaignRequest, ExecutionPlan, ExecutionResult, PlannedOffer,
    CampaignStats, CampaignSummary
)

logger = logging.getLogger(__name__)

EXECUTABLE = (CampaignStatus.DRAFT, CampaignStatus.ACTIVE)
CANCELLABLE = EXECUTABLE


class CampaignOrchestrator:

    def __init__(self, db, clock, locks, capacity, offers, positions, notifier=None):
        self.db = db
        self.clock = clock
        self.locks = locks
        self.capacity = capacity
        self.offers = offers
        self.positions = positions
        self.notifier = notifier

    def create_campaign(self, request):
        if isinstance(request, dict):
            request = CreateCampaignRequest(**request)
        with self.db.transaction() as session:
            self.positions.resolve_cohort(session, request.daycare_id, request.program_id)
            daycare = Daycare.get(session, request.daycare_id)
            campaign = WaitlistCampaign(
                daycare_id=request.daycare_id,
                program_id=request.program_id,
                name=request.name,
                description=request.description,
                status=CampaignStatus.DRAFT,
                spots_available=request.spots_available,
                spots_remaining=request.spots_available,
                spot_available_date=request.spot_available_date,
                offer_window_hours=(request.offer_window_hours
                                    or daycare.default_offer_window_hours
                                    or configs.DEFAULT_OFFER_WINDOW_HOURS),
                max_offer_attempts=(request.max_offer_attempts
                                    or configs.DEFAULT_MAX_OFFER_ATTEMPTS),
                created_by=request.created_by,
                created_at=self.clock.now(),
            )
            session.add(campaign)
            session.flush()
        logger.info(f'Campaign "{campaign.name}" ({campaign.id}) created for daycare {campaign.daycare_id}')
        return campaign

    def get_campaign(self, campaign_id, session=None):
        with self.db.transaction(session) as s:
            campaign = WaitlistCampaign.get(s, campaign_id)
        if campaign is None:
            raise CampaignNotFoundError(f"Campaign {campaign_id} not found")
        return campaign

    def list_campaigns(self, daycare_id, program_id=None, status=None, include_completed=False):
        now = self.clock.now()
        with self.db.transaction() as session:
            query = session.query(WaitlistCampaign).filter(
                WaitlistCampaign.daycare_id == daycare_id)
            if program_id is not None:
                query = query.filter(WaitlistCampaign.program_id == program_id)
            if status is not None:
                query = query.filter(WaitlistCampaign.status == CampaignStatus(status))
            elif not include_completed:
                query = query.filter(WaitlistCampaign.status != CampaignStatus.COMPLETED)
            summaries = []
            for campaign in query.order_by(WaitlistCampaign.id.desc()).all():
                offers = session.query(WaitlistOffer).filter(
                    WaitlistOffer.campaign_id == campaign.id).all()
                summary = CampaignSummary.model_validate(campaign)
                summary.stats = self.stats(offers, now)
                summaries.append(summary)
            return summaries

    @staticmethod
    def stats(offers, now):
        total = len(offers)
        if not total:
            return CampaignStats()
        accepted = sum(1 for o in offers if o.response == OfferResponse.ACCEPTED)
        declined = sum(1 for o in offers if o.response == OfferResponse.DECLINED)
        expired = sum(1 for o in offers if o.response == OfferResponse.EXPIRED
                      or (o.is_open and o.offer_expires_at <= now))
        responded = sum(1 for o in offers if o.responded_at is not None)
        return CampaignStats(
            total_offers=total,
            active_offers=sum(1 for o in offers if o.is_outstanding(now)),
            accepted_offers=accepted,
            declined_offers=declined,
            expired_offers=expired,
            response_rate=round(responded / total * 100),
            acceptance_rate=round(accepted / total * 100),
        )

    def cancel_campaign(self, campaign_id, performed_by=None):
        """Stop a campaign. Offers already out stay valid until answered or expired."""
        with self.db.transaction() as session:
            now = self.clock.now()
            campaign = WaitlistCampaign.get(session, campaign_id, lock=True)
            if campaign is None:
                raise CampaignNotFoundError(f"Campaign {campaign_id} not found")
            if campaign.status not in CANCELLABLE:
                raise CampaignStateError(
                    f"Campaign {campaign_id} is {campaign.status.value} and cannot be cancelled")
            old_status = campaign.status
            campaign.status = CampaignStatus.CANCELLED
            campaign.cancelled_at = now
            audit.record(
                session, now, campaign.daycare_id, WaitlistAction.CAMPAIGN_CANCELLED,
                f'Campaign "{campaign.name}" cancelled',
                performed_by=performed_by, performed_by_type='PROVIDER',
                old_values={'status': old_status},
                new_values={'status': campaign.status},
                details={'campaign_id': campaign.id,
                         'spots_remaining': campaign.spots_remaining})
        return campaign

    def plan(self, session, campaign):
        """Ranked candidates for the campaign and how many of them to approach.

        Entries the campaign already reached, or that used up their offer
        attempts, are not approached again.
        """
        now = self.clock.now()
        cohort = Cohort.of(campaign)
        active = queries.active_entries(session, cohort)
        exclude = queries.campaign_offered_entry_ids(session, campaign.id)
        candidates = [
            entry for entry in self.offers.candidates(
                session, cohort, campaign.spot_available_date, exclude)
            if entry.offer_attempts < campaign.max_offer_attempts
        ]
        if not candidates:
            raise EntryNotEligibleError("No eligible waitlist entries found")

        check = self.capacity.check_capacity(
            campaign.daycare_id, campaign.program_id,
            required_slots=campaign.spots_remaining, session=session)
        if not check.has_capacity:
            raise CapacityExhaustedError(
                f"Insufficient capacity. Available: {check.available_slots}, "
                f"Required: {campaign.spots_remaining}",
                available_slots=check.available_slots,
                required_slots=campaign.spots_remaining)

        max_offers = min(
            check.available_slots * campaign.max_offer_attempts,
            len(candidates),
            campaign.spots_remaining * campaign.max_offer_attempts,
        )
        selected = candidates[:max_offers]
        plan = ExecutionPlan(
            campaign_id=campaign.id,
            campaign_name=campaign.name,
            spots_available=campaign.spots_available,
            spots_remaining=campaign.spots_remaining,
            max_offer_attempts=campaign.max_offer_attempts,
            offer_window_hours=campaign.offer_window_hours,
            available_slots=check.available_slots,
            eligible_entries=len(active),
            available_entries=len(candidates),
            planned_offers=len(selected),
            offer_expires_at=now + datetime.timedelta(hours=campaign.offer_window_hours),
            entries=[
                PlannedOffer(
                    entry_id=entry.id,
                    child_name=entry.child_name,
                    parent_id=entry.parent_id,
                    position=entry.position,
                    priority_score=entry.priority_score,
                    days_on_waitlist=days_between(entry.joined_at, now),
                    order=order,
                )
                for order, entry in enumerate(selected, start=1)
            ],
        )
        return plan

    def execute_campaign(self, campaign_id, performed_by=None, dry_run=False):
        """Plan a round of offers and, unless `dry_run`, send them.

        The first execution starts a DRAFT campaign, the only time it
        enters ACTIVE. An ACTIVE campaign with spots remaining may be
        executed again to reach the candidates it has not offered yet.
        Per-candidate failures are collected and the round continues with
        the next candidate.
        """
        campaign = self.get_campaign(campaign_id)
        with self.locks(campaign.daycare_id):
            with self.db.transaction() as session:
                now = self.clock.now()
                campaign = WaitlistCampaign.get(session, campaign_id, lock=True)
                if campaign.status not in EXECUTABLE:
                    raise CampaignStateError(
                        f"Campaign {campaign_id} is {campaign.status.value} and cannot be executed")
                if campaign.spots_remaining <= 0:
                    raise CampaignStateError("No spots remaining in campaign")
                plan = self.plan(session, campaign)
                if dry_run:
                    return plan
                if campaign.status == CampaignStatus.DRAFT:
                    campaign.status = CampaignStatus.ACTIVE
                    campaign.started_at = now
                    audit.record(
                        session, now, campaign.daycare_id, WaitlistAction.CAMPAIGN_STARTED,
                        f'Campaign "{campaign.name}" started',
                        performed_by=performed_by, performed_by_type='PROVIDER',
                        old_values={'status': CampaignStatus.DRAFT},
                        new_values={'status': campaign.status},
                        details={'campaign_id': campaign.id,
                                 'planned_offers': plan.planned_offers})

            result = ExecutionResult(**plan.model_dump(exclude={'dry_run'}))
            for planned in plan.entries:
                try:
                    offer = self._offer_to(campaign_id, planned.entry_id, performed_by)
                except CradleAPIError as e:
                    logger.warning(
                        f"Campaign {campaign_id}: failed to offer entry {planned.entry_id}: {e}")
                    result.errors.append(
                        f"Failed to create offer for {planned.child_name}: {e}")
                    continue
                result.offers_created += 1
                result.offer_ids.append(offer.id)

        logger.info(f"Campaign {campaign_id} executed - {result.offers_created} offers sent, "
                    f"{len(result.errors)} errors")
        return result

    def _offer_to(self, campaign_id, entry_id, performed_by):
        with self.db.transaction() as session:
            now = self.clock.now()
            campaign = WaitlistCampaign.get(session, campaign_id, lock=True)
            entry = WaitlistEntry.get(session, entry_id, lock=True)
            reason = self.offers.ineligibility(
                session, entry, now, campaign.spot_available_date)
            if reason:
                raise EntryNotEligibleError(reason)
            daycare = Daycare.get(session, campaign.daycare_id)
            offer = self.offers.issue(
                session, entry, daycare, campaign.spot_available_date,
                created_by=performed_by, campaign=campaign)
            campaign.total_offered += 1
            result, entries = self.positions.recalculate(
                session, Cohort.of(campaign), reason=f'Campaign "{campaign.name}" offer')

        self.positions.notify(result, entries)
        dispatch(self.notifier, 'offer_sent', offer, entry)
        return offer

    def respond(self, offer_id, response, notes=None, responded_by=None, deposit_paid=False):
        return self.offers.process_offer_response(
            offer_id, response, notes=notes, deposit_paid=deposit_paid,
            responded_by=responded_by)
