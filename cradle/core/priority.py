#!/usr/bin/env python

"""
    Priority engine for Cradle,
    scoring waitlist entries against configurable rules and ranking
    the active cohort by score and join order.

    :copyright: (c) 2025 by AUTHORS
    :license: see LICENSE for more details
"""

import logging
from cradle.core.models import PriorityRuleType, WaitlistStatus
from cradle.schemas.rule import parse_conditions
from cradle.schemas.waitlist import (
    RuleEvaluation, PriorityResult, PositionUpdate
)

logger = logging.getLogger(__name__)

DAYS_PER_MONTH = 30.4

POSITION_BANDS = (
    (5, 'Top 5'),
    (10, '6-10'),
    (20, '11-20'),
    (50, '21-50'),
)

# Boolean rule types and the entry flag each one reads
FLAG_RULES = {
    PriorityRuleType.SIBLING_ENROLLED: (
        'has_sibling_enrolled', 'Has sibling enrolled', 'No sibling enrolled'),
    PriorityRuleType.STAFF_CHILD: (
        'is_staff_child', 'Staff child', 'Not a staff child'),
    PriorityRuleType.SERVICE_AREA: (
        'in_service_area', 'Lives in service area', 'Outside service area'),
    PriorityRuleType.SUBSIDY_APPROVED: (
        'has_subsidy_approval', 'Has subsidy approval', 'No subsidy approval'),
    PriorityRuleType.CORPORATE_PARTNERSHIP: (
        'has_corporate_partnership', 'Corporate partnership', 'No corporate partnership'),
    PriorityRuleType.SPECIAL_NEEDS: (
        'has_special_needs', 'Has special needs', 'No special needs'),
}

# Defined but inert until the supporting data is collected
UNAVAILABLE_RULES = {
    PriorityRuleType.FIRST_TIME_PARENT: 'First-time parent status not available',
    PriorityRuleType.MILITARY_FAMILY: 'Military family status not available',
}

DEFAULT_PRIORITY_RULES = [
    {
        'name': 'Sibling Already Enrolled',
        'description': 'Priority for families with siblings already enrolled',
        'rule_type': PriorityRuleType.SIBLING_ENROLLED,
        'points': 50,
        'sort_order': 1,
    },
    {
        'name': 'Staff Child',
        'description': 'Priority for children of daycare staff',
        'rule_type': PriorityRuleType.STAFF_CHILD,
        'points': 40,
        'sort_order': 2,
    },
    {
        'name': 'Service Area Resident',
        'description': 'Priority for families living in the primary service area',
        'rule_type': PriorityRuleType.SERVICE_AREA,
        'points': 20,
        'sort_order': 3,
    },
    {
        'name': 'Special Needs Child',
        'description': 'Priority for children with special needs',
        'rule_type': PriorityRuleType.SPECIAL_NEEDS,
        'points': 30,
        'sort_order': 4,
    },
    {
        'name': 'Subsidy Approved',
        'description': 'Priority for families with approved childcare subsidies',
        'rule_type': PriorityRuleType.SUBSIDY_APPROVED,
        'points': 15,
        'sort_order': 5,
    },
    {
        'name': 'Long-term Waitlist',
        'description': 'Bonus points for families on waitlist 6+ months',
        'rule_type': PriorityRuleType.TIME_ON_LIST,
        'points': 10,
        'sort_order': 6,
        'conditions': {'minDays': 180, 'maxDays': 999},
    },
]


class PriorityEngine:

    @classmethod
    def calculate_priority_score(cls, entry, rules, days_on_waitlist):
        """Score `entry` against the active `rules`.

        Rules are evaluated in ascending `sort_order`, each one either
        awarding its full points or nothing. A rule that fails to evaluate
        counts as not applied and never stops the others.
        """
        breakdown = []
        total = 0
        active = sorted(
            (r for r in rules if r.is_active),
            key=lambda r: (r.sort_order, r.id or 0))

        for rule in active:
            applied, reason = cls.evaluate_rule(rule, entry, days_on_waitlist)
            breakdown.append(RuleEvaluation(
                rule_id=rule.id,
                rule_name=rule.name,
                rule_type=getattr(rule.rule_type, 'value', str(rule.rule_type)),
                points=rule.points if applied else 0,
                applied=applied,
                reason=reason,
            ))
            if applied:
                total += rule.points

        return PriorityResult(
            total_score=total,
            rule_breakdown=breakdown,
            previous_score=entry.priority_score,
        )

    @classmethod
    def evaluate_rule(cls, rule, entry, days_on_waitlist):
        try:
            rule_type = PriorityRuleType(rule.rule_type)
        except ValueError:
            return False, f"Unknown rule type: {rule.rule_type}"

        try:
            if rule_type in FLAG_RULES:
                flag, yes, no = FLAG_RULES[rule_type]
                applied = bool(getattr(entry, flag))
                return applied, yes if applied else no

            if rule_type in UNAVAILABLE_RULES:
                return False, UNAVAILABLE_RULES[rule_type]

            conditions = parse_conditions(rule_type, rule.conditions)

            if rule_type == PriorityRuleType.TIME_ON_LIST:
                lo, hi = conditions.min_days, conditions.max_days
                applied = lo <= days_on_waitlist <= hi
                verdict = "qualifies" if applied else "doesn't qualify"
                return applied, (
                    f"On waitlist for {days_on_waitlist} days ({verdict}: {lo}-{hi} days)")

            if rule_type == PriorityRuleType.PROVIDER_CUSTOM:
                required = conditions.required_tags
                applied = set(required) <= entry.tags
                label = ', '.join(required)
                return applied, (
                    f"Has required tags: {label}" if applied else f"Missing required tags: {label}")

            return False, f"Unknown rule type: {rule_type.value}"
        except Exception as e:
            logger.warning(f"Error evaluating rule {rule.id}: {e}")
            return False, f"Error evaluating rule: {e}"

    @staticmethod
    def sort_key(entry):
        """Higher score first, then earlier join (FIFO), then id for totality."""
        return (-entry.priority_score, entry.joined_at, entry.id)

    @classmethod
    def rank(cls, entries):
        return sorted(entries, key=cls.sort_key)

    @classmethod
    def calculate_positions(cls, entries):
        """New 1-based positions for the ACTIVE entries among `entries`."""
        active = [e for e in entries if e.status == WaitlistStatus.ACTIVE]
        return [
            PositionUpdate(
                entry_id=entry.id,
                old_position=entry.position or 0,
                new_position=index,
                position_change=(entry.position or 0) - index,
            )
            for index, entry in enumerate(cls.rank(active), start=1)
        ]

    @staticmethod
    def calculate_estimated_wait_days(position, average_offer_per_month,
                                      average_acceptance_rate, seasonal_adjustment=1.0):
        """Projected days until `position` reaches the front.

        Returns None when the effective monthly throughput is not positive,
        since no finite estimate exists.
        """
        slots_per_month = average_offer_per_month * average_acceptance_rate * seasonal_adjustment
        if slots_per_month <= 1e-9:
            return None
        months = max(0, (position - 1) / slots_per_month)
        return round(months * DAYS_PER_MONTH)

    @staticmethod
    def get_position_band(position):
        for upper, label in POSITION_BANDS:
            if position <= upper:
                return label
        return '50+'

    @staticmethod
    def is_significant_position_change(old_position, new_position, threshold=3):
        return abs(old_position - new_position) >= threshold
