import datetime
import pytest
from cradle.core import queries
from cradle.core.api import WaitlistAPI
from cradle.core.exceptions import (
    AuditLogImmutableError, EntryNotEligibleError, OfferAlreadyRespondedError,
    OfferExpiredError, OfferNotFoundError, OutstandingOfferError, ValidationError
)
from cradle.core.models import (
    AuditLog, PriorityRuleType, WaitlistAction, WaitlistEntry, WaitlistOffer,
    OfferResponse, WaitlistStatus
)
from cradle.core.notifications import Notifier
from tests.helpers import START

SPOT = START + datetime.timedelta(days=30)


def load_entry(waitlist, entry_id):
    with waitlist.db.transaction() as session:
        return WaitlistEntry.get(session, entry_id)


def actions(waitlist, action):
    with waitlist.db.transaction() as session:
        return session.query(AuditLog).filter(AuditLog.action == action).all()


def test_create_offer_snapshots_and_reserves(waitlist, seed, notifier):
    daycare = seed.daycare(capacity=2, require_deposit=True, default_deposit_amount=100.0)
    seed.rule(daycare, PriorityRuleType.SERVICE_AREA, 20)
    a = seed.entry(daycare, 'A', in_service_area=True)
    b = seed.entry(daycare, 'B', days_later=1)

    offer = waitlist.create_offer(a.id, SPOT, created_by='provider-1')

    assert offer.offer_expires_at == waitlist.clock.now() + datetime.timedelta(hours=48)
    assert offer.response == OfferResponse.PENDING
    assert offer.priority_at_offer == 20
    assert offer.position_at_offer == 1
    assert offer.deposit_required is True
    assert offer.deposit_amount == 100.0
    assert offer.is_automated is False

    entry = load_entry(waitlist, a.id)
    assert entry.status == WaitlistStatus.OFFERED
    assert entry.offer_attempts == 1
    assert entry.offer_expires_at == offer.offer_expires_at
    # B moves up once A leaves the active ranking
    assert load_entry(waitlist, b.id).position == 1

    assert waitlist.check_capacity(daycare.id).available_slots == 1
    assert [n['offer_id'] for n in notifier.of_type('OFFER_SENT')] == [offer.id]
    sent = actions(waitlist, WaitlistAction.OFFER_SENT)
    assert len(sent) == 1 and sent[0].new_values['offer_id'] == offer.id


def test_offer_window_settings(waitlist, seed):
    daycare = seed.daycare(default_offer_window_hours=24)
    a, b = seed.entry(daycare, 'A'), seed.entry(daycare, 'B')
    now = waitlist.clock.now()

    assert waitlist.create_offer(a.id, SPOT).offer_expires_at == now + datetime.timedelta(hours=24)
    custom = waitlist.create_offer(
        b.id, SPOT, settings={'offer_window_hours': 6, 'required_documents': ['immunization']})
    assert custom.offer_expires_at == now + datetime.timedelta(hours=6)
    assert custom.required_documents == ['immunization']


def test_one_outstanding_offer_per_entry(waitlist, seed):
    daycare = seed.daycare(capacity=5)
    a = seed.entry(daycare, 'A')
    waitlist.create_offer(a.id, SPOT)
    with pytest.raises(OutstandingOfferError):
        waitlist.create_offer(a.id, SPOT)

    with waitlist.db.transaction() as session:
        assert queries.outstanding_offers(session, waitlist.clock.now(), entry_id=a.id).count() == 1


def test_ineligible_entries_get_no_offer(waitlist, seed):
    daycare = seed.daycare(capacity=5)
    gone = seed.entry(daycare, 'Gone')
    late = seed.entry(daycare, 'Late', desired_start_date=SPOT + datetime.timedelta(days=10))
    waitlist.withdraw(gone.id)

    with pytest.raises(EntryNotEligibleError):
        waitlist.create_offer(gone.id, SPOT)
    with pytest.raises(EntryNotEligibleError, match='Desired start date'):
        waitlist.create_offer(late.id, SPOT)
    # Fine for a spot opening after the desired date
    assert waitlist.create_offer(late.id, SPOT + datetime.timedelta(days=20))


def test_rank_candidates_skips_offered_and_late_starters(waitlist, seed):
    daycare = seed.daycare(capacity=5)
    a = seed.entry(daycare, 'A')
    b = seed.entry(daycare, 'B', days_later=1, desired_start_date=SPOT + datetime.timedelta(days=5))
    c = seed.entry(daycare, 'C', days_later=1)
    waitlist.create_offer(a.id, SPOT)

    assert [e.id for e in waitlist.rank_waitlist_candidates(daycare.id)] == [b.id, c.id]
    assert [e.id for e in waitlist.rank_waitlist_candidates(daycare.id, as_of_date=SPOT)] == [c.id]


def test_accept(waitlist, seed, notifier):
    daycare = seed.daycare(capacity=1)
    a = seed.entry(daycare, 'A')
    offer = waitlist.create_offer(a.id, SPOT)

    result = waitlist.respond_to_offer(offer.id, 'ACCEPTED', notes='See you in April',
                                       deposit_paid=True)
    assert result.response == OfferResponse.ACCEPTED
    assert result.entry.status == WaitlistStatus.ACCEPTED
    assert result.offer.deposit_paid is True
    assert result.offer.response_notes == 'See you in April'
    assert result.enrollment_id is not None
    assert result.campaign_complete is False

    assert notifier.of_type('OFFER_ACCEPTED')
    accepted = actions(waitlist, WaitlistAction.OFFER_ACCEPTED)
    assert accepted[0].old_values['status'] == 'OFFERED'
    assert accepted[0].new_values['status'] == 'ACCEPTED'
    assert actions(waitlist, WaitlistAction.CONVERTED_TO_ENROLLMENT)

    with pytest.raises(OfferAlreadyRespondedError):
        waitlist.respond_to_offer(offer.id, 'DECLINED')


def test_decline_returns_entry_to_its_ranked_place(waitlist, seed):
    daycare = seed.daycare(capacity=1)
    seed.rule(daycare, PriorityRuleType.SIBLING_ENROLLED, 50)
    top = seed.entry(daycare, 'Top', has_sibling_enrolled=True)
    others = [seed.entry(daycare, name, days_later=1) for name in 'XYZ']
    offer = waitlist.create_offer(top.id, SPOT)

    result = waitlist.respond_to_offer(offer.id, 'DECLINED')
    assert result.entry.status == WaitlistStatus.ACTIVE
    assert result.enrollment_id is None
    # Placed by score, not appended
    assert load_entry(waitlist, top.id).position == 1
    assert [load_entry(waitlist, e.id).position for e in others] == [2, 3, 4]
    assert waitlist.check_capacity(daycare.id).has_capacity


def test_response_validation(waitlist, seed):
    daycare = seed.daycare()
    offer = waitlist.create_offer(seed.entry(daycare, 'A').id, SPOT)
    with pytest.raises(ValidationError):
        waitlist.respond_to_offer(offer.id, 'MAYBE')
    with pytest.raises(ValidationError):
        waitlist.respond_to_offer(offer.id, 'EXPIRED')
    with pytest.raises(OfferNotFoundError):
        waitlist.respond_to_offer(9999, 'ACCEPTED')


def test_expired_offer_cannot_be_answered(waitlist, seed, clock):
    daycare = seed.daycare()
    a = seed.entry(daycare, 'A')
    offer = waitlist.create_offer(a.id, SPOT, settings={'offer_window_hours': 1})
    clock.advance(minutes=61)

    with pytest.raises(OfferExpiredError):
        waitlist.respond_to_offer(offer.id, 'ACCEPTED')
    # Nothing changed until the sweep runs
    assert load_entry(waitlist, a.id).status == WaitlistStatus.OFFERED


def test_offer_closes_at_its_deadline(waitlist, seed, clock):
    daycare = seed.daycare()
    a = seed.entry(daycare, 'A')
    offer = waitlist.create_offer(a.id, SPOT, settings={'offer_window_hours': 1})
    clock.advance(hours=1)

    with pytest.raises(OfferExpiredError):
        waitlist.respond_to_offer(offer.id, 'ACCEPTED')
    # The sweep agrees the offer is due at the same instant
    assert waitlist.cleanup_expired_offers().offer_ids == [offer.id]


def test_offset_spot_date_is_normalized(waitlist, seed):
    daycare = seed.daycare()
    a = seed.entry(daycare, 'A', desired_start_date=SPOT)
    spot = (SPOT + datetime.timedelta(hours=2)).replace(
        tzinfo=datetime.timezone(datetime.timedelta(hours=2)))

    offer = waitlist.create_offer(a.id, spot)
    assert offer.spot_available_date == SPOT
    assert offer.spot_available_date.tzinfo is None


def test_expiry_sweep_notifies_and_frees_the_entry(waitlist, seed, clock, notifier):
    daycare = seed.daycare(capacity=1)
    a = seed.entry(daycare, 'A')
    offer = waitlist.create_offer(a.id, SPOT)
    clock.advance(hours=49)

    result = waitlist.cleanup_expired_offers()
    assert result.released_count == 1
    assert result.follow_on_offers == 0
    assert [n['offer_id'] for n in notifier.of_type('OFFER_EXPIRED')] == [offer.id]
    assert load_entry(waitlist, a.id).status == WaitlistStatus.ACTIVE

    # A fresh offer can go out again
    assert waitlist.create_offer(a.id, SPOT).id != offer.id


def test_auto_advance_after_decline(waitlist, seed):
    daycare = seed.daycare(capacity=1, auto_advance_enabled=True)
    a = seed.entry(daycare, 'A')
    b = seed.entry(daycare, 'B', days_later=1)
    offer = waitlist.create_offer(a.id, SPOT)

    waitlist.respond_to_offer(offer.id, 'DECLINED')

    assert load_entry(waitlist, a.id).status == WaitlistStatus.ACTIVE
    entry_b = load_entry(waitlist, b.id)
    assert entry_b.status == WaitlistStatus.OFFERED
    with waitlist.db.transaction() as session:
        follow_on = session.query(WaitlistOffer).filter(WaitlistOffer.entry_id == b.id).one()
    assert follow_on.is_automated is True
    assert follow_on.spot_available_date == SPOT


def test_auto_advance_after_expiry_and_public_release(waitlist, seed, clock):
    daycare = seed.daycare(capacity=1, auto_advance_enabled=True)
    a = seed.entry(daycare, 'A')
    b = seed.entry(daycare, 'B', days_later=1)
    waitlist.create_offer(a.id, SPOT)

    clock.advance(hours=49)
    assert waitlist.cleanup_expired_offers().follow_on_offers == 1
    assert load_entry(waitlist, b.id).status == WaitlistStatus.OFFERED

    waitlist.withdraw(a.id)
    clock.advance(hours=49)
    assert waitlist.cleanup_expired_offers().follow_on_offers == 0
    released = actions(waitlist, WaitlistAction.SPOT_RELEASED)
    assert len(released) == 1
    assert released[0].details['reason'] == 'waitlist_exhausted'


def test_expiration_reminders_are_sent_once(waitlist, seed, clock, notifier):
    daycare = seed.daycare()
    a = seed.entry(daycare, 'A')
    offer = waitlist.create_offer(a.id, SPOT)

    assert waitlist.send_expiration_reminders().reminders_sent == 0
    clock.advance(hours=24)
    result = waitlist.send_expiration_reminders()
    assert result.offer_ids == [offer.id]
    assert 'expires in 24 hours' in notifier.of_type('OFFER_EXPIRING')[0]['message']

    clock.advance(minutes=30)
    assert waitlist.send_expiration_reminders().reminders_sent == 0


class BrokenNotifier(Notifier):

    def deliver(self, recipient_id, type, message, entry_id=None, offer_id=None):
        raise ConnectionError('mail relay down')


def test_notification_failures_do_not_undo_the_offer(db, clock, caplog):
    waitlist = WaitlistAPI(db, clock, BrokenNotifier())
    daycare = waitlist.create_daycare({'name': 'Busy Bees', 'capacity': 1})
    a = waitlist.join_waitlist({'daycare_id': daycare.id, 'parent_id': 'p1', 'child_name': 'A'})

    offer = waitlist.create_offer(a.id, SPOT)
    assert load_entry(waitlist, a.id).status == WaitlistStatus.OFFERED
    assert offer.id is not None
    assert "Notification 'offer_sent' failed" in caplog.text


def test_default_notifier_fills_the_inbox(db, clock):
    waitlist = WaitlistAPI(db, clock)
    daycare = waitlist.create_daycare({'name': 'Busy Bees', 'capacity': 1})
    a = waitlist.join_waitlist({'daycare_id': daycare.id, 'parent_id': 'p1', 'child_name': 'Ada'})
    waitlist.create_offer(a.id, SPOT)

    inbox = waitlist.notifications('p1', unread_only=True)
    assert [n.type for n in inbox] == ['OFFER_SENT']
    assert 'Ada' in inbox[0].message
    assert waitlist.mark_notifications_read('p1') == 1
    assert waitlist.notifications('p1', unread_only=True) == []


def test_audit_log_is_append_only(waitlist, seed):
    daycare = seed.daycare()
    seed.entry(daycare, 'A')
    with pytest.raises(AuditLogImmutableError):
        with waitlist.db.transaction() as session:
            log = session.query(AuditLog).first()
            log.description = 'rewritten'
    with pytest.raises(AuditLogImmutableError):
        with waitlist.db.transaction() as session:
            session.delete(session.query(AuditLog).first())
