#!/usr/bin/env python
# -*- coding: utf-8 -*-

"""
    tests.helpers
    ~~~~~~~~~~~~~

    A notifier that records instead of delivering, and builders for the
    rows most tests need.

    :copyright: (c) 2025 by Authors.
    :license: see LICENSE for more details.
"""

import datetime
from cradle.core.models import PriorityRuleType
from cradle.core.notifications import Notifier

START = datetime.datetime(2025, 3, 1, 9, 0, 0)


class RecordingNotifier(Notifier):

    def __init__(self):
        self.sent = []

    def deliver(self, recipient_id, type, message, entry_id=None, offer_id=None):
        self.sent.append({
            'recipient_id': recipient_id, 'type': type, 'message': message,
            'entry_id': entry_id, 'offer_id': offer_id,
        })

    def of_type(self, type):
        return [n for n in self.sent if n['type'] == type]


class Seed:
    """Builders for the rows most tests need."""

    def __init__(self, waitlist, clock):
        self.waitlist = waitlist
        self.clock = clock

    def daycare(self, capacity=10, **kwargs):
        return self.waitlist.create_daycare(
            dict({'name': 'Little Acorns', 'capacity': capacity, 'daily_rate': 55.0}, **kwargs))

    def program(self, daycare, total_capacity=1, name='Toddlers'):
        return self.waitlist.create_program(
            daycare.id, {'name': name, 'total_capacity': total_capacity})

    def rule(self, daycare, rule_type=PriorityRuleType.SIBLING_ENROLLED, points=50,
             program=None, **kwargs):
        return self.waitlist.create_rule(dict(
            {'daycare_id': daycare.id, 'program_id': program.id if program else None,
             'name': f'{rule_type.value} rule', 'rule_type': rule_type, 'points': points},
            **kwargs))

    def entry(self, daycare, child_name, program=None, days_later=0, **flags):
        """Join the waitlist `days_later` days after the clock's current time."""
        if days_later:
            self.clock.advance(days=days_later)
        return self.waitlist.join_waitlist(dict(
            {'daycare_id': daycare.id, 'program_id': program.id if program else None,
             'parent_id': f'parent-{child_name.lower()}', 'child_name': child_name},
            **flags))

    def campaign(self, daycare, program=None, spots=1, **kwargs):
        return self.waitlist.create_campaign(dict(
            {'daycare_id': daycare.id, 'program_id': program.id if program else None,
             'name': 'Spring opening', 'spots_available': spots,
             'spot_available_date': START + datetime.timedelta(days=60),
             'created_by': 'provider-1'},
            **kwargs))
