import datetime
import threading
import pytest
from cradle.core import queries
from cradle.core.api import WaitlistAPI
from cradle.core.db import Database
from cradle.core.exceptions import (
    AlreadyConvertedError, CapacityExhaustedError, InvalidStateError, ValidationError
)
from cradle.core.models import (
    CapacityReservation, Enrollment, WaitlistEntry, WaitlistOffer, OfferResponse,
    ReservationStatus, WaitlistStatus
)
from cradle.core.utils import FrozenClock
from tests.helpers import START, RecordingNotifier, Seed

SPOT = START + datetime.timedelta(days=30)


def occupancy(waitlist, daycare_id):
    """Reserved plus enrolled slots right now."""
    with waitlist.db.transaction() as session:
        now = waitlist.clock.now()
        return (queries.reserved_slots(session, now, daycare_id)
                + queries.enrolled_count(session, daycare_id))


def reservation_of(waitlist, offer_id):
    with waitlist.db.transaction() as session:
        return session.query(CapacityReservation).filter(
            CapacityReservation.offer_id == offer_id).first()


def test_check_capacity_counts_reservations_and_enrollments(waitlist, seed):
    daycare = seed.daycare(capacity=3)
    a, b = seed.entry(daycare, 'A'), seed.entry(daycare, 'B', days_later=1)

    check = waitlist.check_capacity(daycare.id)
    assert check.has_capacity and check.available_slots == 3

    offer = waitlist.create_offer(a.id, SPOT)
    waitlist.respond_to_offer(offer.id, 'ACCEPTED')
    waitlist.create_offer(b.id, SPOT)

    check = waitlist.check_capacity(daycare.id, required_slots=2)
    assert check.available_slots == 1
    assert check.current_occupancy == 1
    assert check.reserved_slots == 1
    assert not check.has_capacity
    assert check.daycare_has_capacity is False
    assert check.program_has_capacity is None


def test_program_and_daycare_limits_both_apply(waitlist, seed):
    daycare = seed.daycare(capacity=1)
    roomy = seed.program(daycare, total_capacity=5, name='Preschool')
    tight = seed.program(daycare, total_capacity=0, name='Infants')

    check = waitlist.check_capacity(daycare.id, roomy.id)
    assert check.available_slots == 1
    assert check.total_capacity == 5
    assert check.program_name == 'Preschool'

    check = waitlist.check_capacity(daycare.id, tight.id)
    assert check.available_slots == 0
    assert check.daycare_has_capacity is True
    assert check.program_has_capacity is False


def test_reservation_rechecks_at_commit(waitlist, seed):
    daycare = seed.daycare(capacity=1)
    a, b = seed.entry(daycare, 'A'), seed.entry(daycare, 'B', days_later=1)

    # Both would pass a check made now
    assert waitlist.check_capacity(daycare.id).has_capacity
    waitlist.create_offer(a.id, SPOT)
    with pytest.raises(CapacityExhaustedError) as e:
        waitlist.create_offer(b.id, SPOT)
    assert e.value.available_slots == 0

    with waitlist.db.transaction() as session:
        assert session.query(WaitlistOffer).filter(WaitlistOffer.entry_id == b.id).count() == 0
        assert WaitlistEntry.get(session, b.id).status == WaitlistStatus.ACTIVE
    assert occupancy(waitlist, daycare.id) == 1


def test_release_is_idempotent(waitlist, seed):
    daycare = seed.daycare(capacity=1)
    a = seed.entry(daycare, 'A')
    offer = waitlist.create_offer(a.id, SPOT)

    assert waitlist.capacity.release_capacity(offer.id) is True
    assert waitlist.capacity.release_capacity(offer.id) is False
    assert waitlist.capacity.release_capacity(12345) is False
    assert reservation_of(waitlist, offer.id).status == ReservationStatus.RELEASED
    assert waitlist.check_capacity(daycare.id).available_slots == 1


def test_reserve_validates_input(waitlist, seed):
    daycare = seed.daycare()
    later = START + datetime.timedelta(hours=1)
    with pytest.raises(ValidationError):
        waitlist.capacity.reserve_capacity(daycare.id, None, 0, 1, later)
    with pytest.raises(ValidationError):
        waitlist.capacity.reserve_capacity(daycare.id, None, 1, 1, START)


def test_lapsed_reservations_free_their_slot(waitlist, seed, clock):
    daycare = seed.daycare(capacity=1)
    a = seed.entry(daycare, 'A')
    waitlist.create_offer(a.id, SPOT, settings={'offer_window_hours': 2})

    assert not waitlist.check_capacity(daycare.id).has_capacity
    clock.advance(hours=3)
    # Counted as free before any sweep runs
    assert waitlist.check_capacity(daycare.id).has_capacity


def test_convert_requires_acceptance_and_happens_once(waitlist, seed):
    daycare = seed.daycare(capacity=2, daily_rate=60.0)
    a = seed.entry(daycare, 'A')
    offer = waitlist.create_offer(a.id, SPOT)

    with pytest.raises(InvalidStateError):
        waitlist.capacity.convert_to_enrollment(offer.id, {'start_date': SPOT})

    result = waitlist.respond_to_offer(offer.id, 'ACCEPTED')
    with pytest.raises(AlreadyConvertedError):
        waitlist.capacity.convert_to_enrollment(offer.id, {'start_date': SPOT})

    with waitlist.db.transaction() as session:
        enrollments = session.query(Enrollment).all()
    assert [e.id for e in enrollments] == [result.enrollment_id]
    assert enrollments[0].daily_rate == 60.0
    assert enrollments[0].start_date == SPOT
    assert reservation_of(waitlist, offer.id).status == ReservationStatus.CONVERTED
    assert occupancy(waitlist, daycare.id) == 1


def test_cleanup_expires_offers_once(waitlist, seed, clock):
    daycare = seed.daycare(capacity=1)
    a = seed.entry(daycare, 'A')
    offer = waitlist.create_offer(a.id, SPOT, settings={'offer_window_hours': 1})
    clock.advance(hours=2)

    first = waitlist.capacity.cleanup_expired_offers()
    assert first.released_count == 1
    assert first.offer_ids == [offer.id]

    with waitlist.db.transaction() as session:
        stored = WaitlistOffer.get(session, offer.id)
        entry = WaitlistEntry.get(session, a.id)
        assert stored.response == OfferResponse.EXPIRED
        assert entry.status == WaitlistStatus.ACTIVE
        assert entry.position == 1
    assert reservation_of(waitlist, offer.id).status == ReservationStatus.RELEASED

    second = waitlist.capacity.cleanup_expired_offers()
    assert second.released_count == 0
    assert second.offer_ids == []


def test_capacity_is_conserved_across_a_mixed_sequence(waitlist, seed, clock):
    daycare = seed.daycare(capacity=2)
    entries = [seed.entry(daycare, name, days_later=1) for name in 'ABCDE']

    def attempt(entry):
        try:
            return waitlist.create_offer(entry.id, SPOT, settings={'offer_window_hours': 4})
        except CapacityExhaustedError:
            return None
        finally:
            assert occupancy(waitlist, daycare.id) <= 2

    first = [attempt(e) for e in entries[:3]]
    assert first[2] is None
    waitlist.respond_to_offer(first[0].id, 'ACCEPTED')
    waitlist.respond_to_offer(first[1].id, 'DECLINED')
    assert occupancy(waitlist, daycare.id) == 1

    third = attempt(entries[2])
    assert third is not None
    assert attempt(entries[3]) is None

    clock.advance(hours=5)
    waitlist.cleanup_expired_offers()
    assert occupancy(waitlist, daycare.id) == 1
    assert attempt(entries[4]) is not None
    assert occupancy(waitlist, daycare.id) == 2


def test_concurrent_offers_never_overbook(tmp_path):
    db = Database(f"sqlite:///{tmp_path / 'cradle.db'}", echo=False).init()
    clock = FrozenClock(START)
    waitlist = WaitlistAPI(db, clock, RecordingNotifier())
    seed = Seed(waitlist, clock)
    daycare = seed.daycare(capacity=2)
    entries = [seed.entry(daycare, f'Kid{i}', days_later=1) for i in range(6)]

    barrier = threading.Barrier(len(entries))
    outcomes = []

    def offer(entry):
        barrier.wait()
        try:
            waitlist.create_offer(entry.id, SPOT)
            outcomes.append('offered')
        except CapacityExhaustedError:
            outcomes.append('full')

    threads = [threading.Thread(target=offer, args=(e,)) for e in entries]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert sorted(outcomes) == ['full'] * 4 + ['offered'] * 2
    assert occupancy(waitlist, daycare.id) == 2
    db.engine.dispose()
