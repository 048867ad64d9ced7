#!/usr/bin/env python

"""
    Waitlist notifications for Cradle.

    Notifications are fire-and-forget from the engine's point of view:
    they are sent after the core transaction has committed and a failed
    delivery is logged, never raised.

    :copyright: (c) 2025 by AUTHORS
    :license: see LICENSE for more details
"""

import logging
from cradle.core.models import Notification

logger = logging.getLogger(__name__)


class Notifier:
    """Formats waitlist events and hands them to `deliver`.

    Subclasses override `deliver` to push into a concrete channel; the
    base class only logs.
    """

    def offer_sent(self, offer, entry):
        self.deliver(
            entry.parent_id, 'OFFER_SENT',
            f"Spot available for {entry.child_name}! Respond before "
            f"{offer.offer_expires_at:%Y-%m-%d %H:%M} UTC.",
            entry_id=entry.id, offer_id=offer.id)

    def offer_accepted(self, offer, entry):
        self.deliver(
            entry.parent_id, 'OFFER_ACCEPTED',
            f"Spot confirmed for {entry.child_name} starting "
            f"{offer.spot_available_date:%Y-%m-%d}.",
            entry_id=entry.id, offer_id=offer.id)

    def offer_expired(self, offer, entry):
        self.deliver(
            entry.parent_id, 'OFFER_EXPIRED',
            f"The offer for {entry.child_name} expired without a response. "
            "You remain on the waitlist.",
            entry_id=entry.id, offer_id=offer.id)

    def offer_expiring(self, offer, entry, hours_remaining):
        self.deliver(
            entry.parent_id, 'OFFER_EXPIRING',
            f"Reminder: the offer for {entry.child_name} expires in "
            f"{hours_remaining} hours.",
            entry_id=entry.id, offer_id=offer.id)

    def position_changed(self, entry, old_position, new_position):
        # Only improvements are worth a message
        if old_position - new_position <= 0:
            return
        self.deliver(
            entry.parent_id, 'POSITION_CHANGED',
            f"{entry.child_name} moved up on the waitlist: "
            f"now #{new_position} (was #{old_position}).",
            entry_id=entry.id)

    def deliver(self, recipient_id, type, message, entry_id=None, offer_id=None):
        logger.info(f"[{type}] to {recipient_id}: {message}")


class DatabaseNotifier(Notifier):
    """Writes each notification into the in-app inbox table."""

    def __init__(self, db, clock):
        self.db = db
        self.clock = clock

    def deliver(self, recipient_id, type, message, entry_id=None, offer_id=None):
        with self.db.transaction() as session:
            session.add(Notification(
                recipient_id=recipient_id,
                entry_id=entry_id,
                offer_id=offer_id,
                type=type,
                message=message,
                date=self.clock.now(),
            ))


def dispatch(notifier, event, *args):
    """Call `notifier.<event>(*args)`, logging instead of raising on failure."""
    if notifier is None:
        return False
    try:
        getattr(notifier, event)(*args)
        return True
    except Exception:
        logger.exception(f"Notification '{event}' failed")
        return False
