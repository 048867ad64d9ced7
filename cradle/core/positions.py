#!/usr/bin/env python

"""
    Waitlist positions for Cradle,
    including joining and leaving the waitlist, position recalculation
    and wait-time projection.

    :copyright: (c) 2025 by AUTHORS
    :license: see LICENSE for more details
"""

import datetime
import logging
from sqlalchemy import func
from cradle import configs
from cradle.core import audit, queries
from cradle.core.exceptions import (
    DaycareNotFoundError, ProgramNotFoundError, EntryNotFoundError, InvalidStateError
)
from cradle.core.models import (
    Daycare, Program, WaitlistEntry, WaitlistOffer, WaitlistStatus,
    WaitlistAction, OfferResponse
)
from cradle.core.notifications import dispatch
from cradle.core.priority import PriorityEngine, DAYS_PER_MONTH
from cradle.core.queries import Cohort
from cradle.core.utils import days_between, naive_utc
from cradle.schemas.waitlist import (
    PositionChange, RecalculationResult, WaitUpdate, ThroughputHistory, PositionSummary
)

logger = logging.getLogger(__name__)


class PositionManager:

    def __init__(self, db, clock, locks, notifier=None,
                 threshold=configs.SIGNIFICANT_POSITION_CHANGE):
        self.db = db
        self.clock = clock
        self.locks = locks
        self.notifier = notifier
        self.threshold = threshold

    def resolve_cohort(self, session, daycare_id, program_id=None):
        if not Daycare.get(session, daycare_id):
            raise DaycareNotFoundError(f"Daycare {daycare_id} not found")
        if program_id is not None:
            program = Program.get(session, program_id)
            if not program or program.daycare_id != daycare_id:
                raise ProgramNotFoundError(
                    f"Program {program_id} not found or doesn't belong to daycare {daycare_id}")
        return Cohort(daycare_id, program_id)

    def join_waitlist(self, request, performed_by=None):
        """Add a child to the waitlist, scored and placed immediately."""
        now = self.clock.now()
        with self.locks(request.daycare_id):
            with self.db.transaction() as session:
                cohort = self.resolve_cohort(session, request.daycare_id, request.program_id)
                entry = WaitlistEntry(
                    **request.model_dump(),
                    status=WaitlistStatus.ACTIVE,
                    joined_at=now,
                    updated_at=now,
                    position=len(queries.active_entries(session, cohort)) + 1,
                    priority_score=0,
                    offer_attempts=0,
                )
                session.add(entry)
                session.flush()
                score = PriorityEngine.calculate_priority_score(
                    entry, queries.cohort_rules(session, cohort), 0)
                entry.priority_score = score.total_score
                audit.record(
                    session, now, entry.daycare_id, WaitlistAction.JOINED,
                    f"{entry.child_name} joined the waitlist",
                    entry_id=entry.id, performed_by=performed_by or entry.parent_id,
                    performed_by_type='PARENT',
                    new_values={'priority_score': entry.priority_score,
                                'status': entry.status})
                result, entries = self.recalculate(session, cohort, reason='Waitlist join')
        self.notify(result, entries)
        return entry

    def withdraw(self, entry_id, performed_by=None):
        now = self.clock.now()
        with self.db.transaction() as session:
            entry = WaitlistEntry.get(session, entry_id)
        if not entry:
            raise EntryNotFoundError(f"Waitlist entry {entry_id} not found")

        with self.locks(entry.daycare_id):
            with self.db.transaction() as session:
                entry = WaitlistEntry.get(session, entry_id, lock=True)
                if entry.status in (WaitlistStatus.ENROLLED, WaitlistStatus.WITHDRAWN):
                    raise InvalidStateError(f"Entry {entry_id} is already {entry.status.value}")
                if queries.outstanding_offers(session, now, entry_id=entry.id).count():
                    raise InvalidStateError(
                        f"Entry {entry_id} has an outstanding offer; decline it first")
                old_status = entry.status
                entry.status = WaitlistStatus.WITHDRAWN
                entry.updated_at = now
                audit.record(
                    session, now, entry.daycare_id, WaitlistAction.WITHDRAWN,
                    f"{entry.child_name} withdrew from the waitlist",
                    entry_id=entry.id, performed_by=performed_by,
                    old_values={'status': old_status, 'position': entry.position},
                    new_values={'status': entry.status})
                result, entries = self.recalculate(
                    session, Cohort.of(entry), reason='Waitlist withdrawal')
        self.notify(result, entries)
        return entry

    def pause(self, entry_id, paused_until=None, performed_by=None):
        """Take an ACTIVE entry out of ranking, optionally until a date."""
        return self._move(entry_id, WaitlistStatus.ACTIVE, WaitlistStatus.PAUSED,
                          WaitlistAction.PAUSED, naive_utc(paused_until), performed_by)

    def resume(self, entry_id, performed_by=None):
        return self._move(entry_id, WaitlistStatus.PAUSED, WaitlistStatus.ACTIVE,
                          WaitlistAction.RESUMED, None, performed_by)

    def _move(self, entry_id, from_status, to_status, action, paused_until, performed_by):
        now = self.clock.now()
        with self.db.transaction() as session:
            entry = WaitlistEntry.get(session, entry_id)
        if not entry:
            raise EntryNotFoundError(f"Waitlist entry {entry_id} not found")

        with self.locks(entry.daycare_id):
            with self.db.transaction() as session:
                entry = WaitlistEntry.get(session, entry_id, lock=True)
                if entry.status != from_status:
                    raise InvalidStateError(
                        f"Entry {entry_id} is {entry.status.value}, expected {from_status.value}")
                entry.status = to_status
                entry.paused_until = paused_until
                entry.updated_at = now
                audit.record(
                    session, now, entry.daycare_id, action,
                    f"{entry.child_name} {action.value.lower()} on the waitlist",
                    entry_id=entry.id, performed_by=performed_by,
                    old_values={'status': from_status, 'position': entry.position},
                    new_values={'status': to_status, 'paused_until': paused_until})
                result, entries = self.recalculate(
                    session, Cohort.of(entry), reason=f"Waitlist {action.value.lower()}")
        self.notify(result, entries)
        return entry

    def recalculate_positions(self, daycare_id, program_id=None, performed_by=None,
                              reason='Manual position update'):
        with self.locks(daycare_id):
            with self.db.transaction() as session:
                cohort = self.resolve_cohort(session, daycare_id, program_id)
                result, entries = self.recalculate(
                    session, cohort, performed_by=performed_by, reason=reason)
        self.notify(result, entries)
        return result

    def recalculate(self, session, cohort, performed_by=None, reason=None):
        """Rescore and re-rank the cohort inside the caller's transaction.

        All active entries are read (and locked) before any is written.
        Returns the result and the entries keyed by id so the caller can
        notify once its transaction has committed.
        """
        now = self.clock.now()
        session.flush()
        entries = queries.active_entries(session, cohort, lock=True)
        result = RecalculationResult(updated_count=len(entries))
        if not entries:
            return result, {}

        rules = queries.cohort_rules(session, cohort)
        old_scores = {}
        for entry in entries:
            old_scores[entry.id] = entry.priority_score
            try:
                days = days_between(entry.joined_at, now)
                score = PriorityEngine.calculate_priority_score(entry, rules, days)
            except Exception as e:
                logger.warning(f"Could not rescore entry {entry.id}: {e}")
                result.errors.append(f"Entry {entry.id}: {e}")
                continue
            if score.score_changed:
                entry.priority_score = score.total_score
                entry.updated_at = now
                result.priority_score_changes += 1

        history = self.throughput_history(session, cohort)
        by_id = {entry.id: entry for entry in entries}
        for update in PriorityEngine.calculate_positions(entries):
            entry = by_id[update.entry_id]
            if update.old_position != update.new_position:
                entry.position = update.new_position
                entry.last_position_change = now
            entry.estimated_wait_days = PriorityEngine.calculate_estimated_wait_days(
                update.new_position, **history.model_dump())
            result.estimated_wait_updates.append(WaitUpdate(
                entry_id=entry.id, estimated_wait_days=entry.estimated_wait_days))

            if not update.old_position or not PriorityEngine.is_significant_position_change(
                    update.old_position, update.new_position, self.threshold):
                continue
            change = PositionChange(
                **update.model_dump(),
                priority_score_change=entry.priority_score - old_scores[entry.id])
            result.position_changes.append(change)
            direction = 'moved up' if change.position_change > 0 else 'moved down'
            audit.record(
                session, now, cohort.daycare_id, WaitlistAction.POSITION_CHANGED,
                f"Position changed from {change.old_position} to {change.new_position} "
                f"({direction} {abs(change.position_change)} positions)",
                entry_id=entry.id, performed_by=performed_by,
                performed_by_type='PROVIDER' if performed_by else None,
                old_values={'position': change.old_position,
                            'priority_score': old_scores[entry.id]},
                new_values={'position': change.new_position,
                            'priority_score': entry.priority_score},
                details={'reason': reason,
                         'days_on_waitlist': days_between(entry.joined_at, now)})
        return result, by_id

    def notify(self, result, entries):
        for change in result.position_changes:
            dispatch(self.notifier, 'position_changed',
                     entries[change.entry_id], change.old_position, change.new_position)

    def throughput_history(self, session, cohort):
        """Offer and acceptance rates of the cohort over the history window."""
        since = self.clock.now() - datetime.timedelta(days=configs.HISTORY_DAYS)
        rows = session.query(WaitlistOffer.response, func.count(WaitlistOffer.id)).join(
            WaitlistEntry).filter(
            *cohort.where(WaitlistEntry),
            WaitlistOffer.offer_sent_at >= since,
        ).group_by(WaitlistOffer.response).all()
        counts = {response: n for response, n in rows}
        sent = sum(counts.values())
        if not sent:
            return ThroughputHistory(
                average_offer_per_month=configs.DEFAULT_OFFERS_PER_MONTH,
                average_acceptance_rate=configs.DEFAULT_ACCEPTANCE_RATE,
                seasonal_adjustment=configs.SEASONAL_ADJUSTMENT)

        answered = sum(counts.get(r, 0) for r in (
            OfferResponse.ACCEPTED, OfferResponse.DECLINED, OfferResponse.EXPIRED))
        rate = (counts.get(OfferResponse.ACCEPTED, 0) / answered
                if answered else configs.DEFAULT_ACCEPTANCE_RATE)
        return ThroughputHistory(
            average_offer_per_month=sent / (configs.HISTORY_DAYS / DAYS_PER_MONTH),
            average_acceptance_rate=rate,
            seasonal_adjustment=configs.SEASONAL_ADJUSTMENT)

    def position_summary(self, entry_id):
        """Where the entry stands. Entries that are not ACTIVE are unranked,
        so their position, band and wait estimate are None."""
        now = self.clock.now()
        with self.db.transaction() as session:
            entry = WaitlistEntry.get(session, entry_id)
            if not entry:
                raise EntryNotFoundError(f"Waitlist entry {entry_id} not found")
            cohort = Cohort.of(entry)
            total = len(queries.active_entries(session, cohort))
            summary = PositionSummary(
                entry_id=entry.id,
                status=entry.status,
                priority_score=entry.priority_score,
                days_on_waitlist=days_between(entry.joined_at, now),
                total_active=total,
            )
            if entry.status == WaitlistStatus.ACTIVE:
                history = self.throughput_history(session, cohort)
                summary.position = entry.position
                summary.position_band = PriorityEngine.get_position_band(entry.position)
                summary.estimated_wait_days = PriorityEngine.calculate_estimated_wait_days(
                    entry.position, **history.model_dump())
            return summary
