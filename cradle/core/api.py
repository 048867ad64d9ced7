#!/usr/bin/env python

"""
    The Cradle waitlist API.

    `WaitlistAPI` wires one `Database`, `Clock`, notifier and set of cohort
    locks into the engine components and exposes the operations callers
    (HTTP routes, scripts, tests) use.

    :copyright: (c) 2025 by AUTHORS
    :license: see LICENSE for more details
"""

import logging
from cradle.core.campaigns import CampaignOrchestrator
from cradle.core.capacity import CapacityManager
from cradle.core.db import Database
from cradle.core.exceptions import EntryNotFoundError, ValidationError
from cradle.core.models import (
    Daycare, Program, WaitlistEntry, PriorityRule, AuditLog, Notification
)
from cradle.core.notifications import DatabaseNotifier
from cradle.core.offers import OfferManager
from cradle.core.positions import PositionManager
from cradle.core.priority import DEFAULT_PRIORITY_RULES
from cradle.core.utils import Clock, CohortLocks
from cradle.schemas.daycare import CreateDaycareRequest, CreateProgramRequest
from cradle.schemas.rule import CreateRuleRequest, parse_conditions
from cradle.schemas.waitlist import JoinWaitlistRequest

logger = logging.getLogger(__name__)


class WaitlistAPI:

    def __init__(self, db=None, clock=None, notifier=None, locks=None):
        self.db = db or Database()
        self.clock = clock or Clock()
        self.notifier = notifier if notifier is not None else DatabaseNotifier(self.db, self.clock)
        self.locks = locks or CohortLocks()

        self.positions = PositionManager(self.db, self.clock, self.locks, self.notifier)
        self.capacity = CapacityManager(self.db, self.clock, self.locks, self.positions)
        self.offers = OfferManager(
            self.db, self.clock, self.locks, self.capacity, self.positions, self.notifier)
        self.campaigns = CampaignOrchestrator(
            self.db, self.clock, self.locks, self.capacity, self.offers,
            self.positions, self.notifier)

    # Daycares and programs

    def create_daycare(self, request):
        if isinstance(request, dict):
            request = CreateDaycareRequest(**request)
        with self.db.transaction() as session:
            daycare = Daycare(**request.model_dump(), created_at=self.clock.now())
            session.add(daycare)
            session.flush()
        return daycare

    def create_program(self, daycare_id, request):
        if isinstance(request, dict):
            request = CreateProgramRequest(**request)
        with self.db.transaction() as session:
            self.positions.resolve_cohort(session, daycare_id)
            program = Program(
                daycare_id=daycare_id, created_at=self.clock.now(), **request.model_dump())
            session.add(program)
            session.flush()
        return program

    # Priority rules

    def create_rule(self, request):
        """Persist a rule after validating its conditions for the rule type."""
        if isinstance(request, dict):
            request = CreateRuleRequest(**request)
        conditions = parse_conditions(request.rule_type, request.conditions)
        if conditions is None and request.conditions:
            raise ValidationError(
                f"Rule type {request.rule_type.value} does not take conditions")
        with self.db.transaction() as session:
            self.positions.resolve_cohort(session, request.daycare_id, request.program_id)
            rule = PriorityRule(
                **request.model_dump(exclude={'conditions'}),
                conditions=conditions.model_dump(by_alias=True) if conditions else None,
                created_at=self.clock.now(),
            )
            session.add(rule)
            session.flush()
        logger.info(f"Rule '{rule.name}' ({rule.rule_type.value}) added to daycare {rule.daycare_id}")
        return rule

    def seed_default_rules(self, daycare_id, program_id=None):
        return [
            self.create_rule(dict(rule, daycare_id=daycare_id, program_id=program_id))
            for rule in DEFAULT_PRIORITY_RULES
        ]

    def list_rules(self, daycare_id, program_id=None):
        with self.db.transaction() as session:
            query = session.query(PriorityRule).filter(PriorityRule.daycare_id == daycare_id)
            if program_id is not None:
                query = query.filter(PriorityRule.program_id == program_id)
            return query.order_by(PriorityRule.sort_order, PriorityRule.id).all()

    # Waitlist entries

    def join_waitlist(self, request, performed_by=None):
        if isinstance(request, dict):
            request = JoinWaitlistRequest(**request)
        return self.positions.join_waitlist(request, performed_by=performed_by)

    def withdraw(self, entry_id, performed_by=None):
        return self.positions.withdraw(entry_id, performed_by=performed_by)

    def pause(self, entry_id, paused_until=None, performed_by=None):
        return self.positions.pause(entry_id, paused_until, performed_by=performed_by)

    def resume(self, entry_id, performed_by=None):
        return self.positions.resume(entry_id, performed_by=performed_by)

    def get_entry(self, entry_id):
        with self.db.transaction() as session:
            entry = WaitlistEntry.get(session, entry_id)
        if not entry:
            raise EntryNotFoundError(f"Waitlist entry {entry_id} not found")
        return entry

    def position_summary(self, entry_id):
        return self.positions.position_summary(entry_id)

    def recalculate_positions(self, daycare_id, program_id=None, performed_by=None):
        return self.positions.recalculate_positions(
            daycare_id, program_id, performed_by=performed_by)

    # Capacity and offers

    def check_capacity(self, daycare_id, program_id=None, required_slots=1):
        return self.capacity.check_capacity(daycare_id, program_id, required_slots)

    def rank_waitlist_candidates(self, daycare_id, program_id=None, as_of_date=None):
        return self.offers.rank_waitlist_candidates(daycare_id, program_id, as_of_date)

    def create_offer(self, entry_id, spot_start_date, settings=None, created_by=None):
        return self.offers.create_offer(
            entry_id, spot_start_date, settings=settings, created_by=created_by)

    def respond_to_offer(self, offer_id, response, notes=None, deposit_paid=False,
                         responded_by=None):
        return self.offers.process_offer_response(
            offer_id, response, notes=notes, deposit_paid=deposit_paid,
            responded_by=responded_by)

    def cleanup_expired_offers(self):
        return self.offers.handle_expired_offers()

    def send_expiration_reminders(self, window_hours=None):
        if window_hours is None:
            return self.offers.send_expiration_reminders()
        return self.offers.send_expiration_reminders(window_hours)

    # Campaigns

    def create_campaign(self, request):
        return self.campaigns.create_campaign(request)

    def get_campaign(self, campaign_id):
        return self.campaigns.get_campaign(campaign_id)

    def execute_campaign(self, campaign_id, performed_by=None, dry_run=False):
        return self.campaigns.execute_campaign(
            campaign_id, performed_by=performed_by, dry_run=dry_run)

    def list_campaigns(self, daycare_id, program_id=None, status=None, include_completed=False):
        return self.campaigns.list_campaigns(
            daycare_id, program_id, status=status, include_completed=include_completed)

    def cancel_campaign(self, campaign_id, performed_by=None):
        return self.campaigns.cancel_campaign(campaign_id, performed_by=performed_by)

    # Audit trail and inbox

    def audit_log(self, daycare_id, entry_id=None, limit=100):
        with self.db.transaction() as session:
            query = session.query(AuditLog).filter(AuditLog.daycare_id == daycare_id)
            if entry_id is not None:
                query = query.filter(AuditLog.entry_id == entry_id)
            return query.order_by(AuditLog.created_at.desc(), AuditLog.id.desc()).limit(limit).all()

    def notifications(self, recipient_id, unread_only=False):
        with self.db.transaction() as session:
            query = session.query(Notification).filter(
                Notification.recipient_id == recipient_id)
            if unread_only:
                query = query.filter(Notification.is_read.is_(False))
            return query.order_by(Notification.date.desc(), Notification.id.desc()).all()

    def mark_notifications_read(self, recipient_id):
        with self.db.transaction() as session:
            return session.query(Notification).filter(
                Notification.recipient_id == recipient_id,
                Notification.is_read.is_(False),
            ).update({Notification.is_read: True}, synchronize_session=False)
