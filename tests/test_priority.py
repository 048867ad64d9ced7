import datetime
import pytest
from cradle.core.models import PriorityRule, PriorityRuleType, WaitlistEntry, WaitlistStatus
from cradle.core.priority import PriorityEngine

T0 = datetime.datetime(2025, 1, 1)


def make_rule(id, rule_type, points, sort_order=0, conditions=None, is_active=True):
    return PriorityRule(
        id=id, daycare_id=1, name=f'rule {id}', rule_type=rule_type, points=points,
        sort_order=sort_order, conditions=conditions, is_active=is_active)


def make_entry(id, score=0, joined_days=0, position=None, status=WaitlistStatus.ACTIVE,
               tags=None, **flags):
    fields = dict(
        has_sibling_enrolled=False, is_staff_child=False, in_service_area=False,
        has_subsidy_approval=False, has_corporate_partnership=False, has_special_needs=False)
    fields.update(flags)
    return WaitlistEntry(
        id=id, daycare_id=1, parent_id=f'p{id}', child_name=f'child {id}',
        status=status, priority_score=score, position=position,
        joined_at=T0 + datetime.timedelta(days=joined_days),
        provider_tags=tags or [], **fields)


def test_flag_rules_are_additive():
    rules = [
        make_rule(1, PriorityRuleType.SIBLING_ENROLLED, 50, sort_order=1),
        make_rule(2, PriorityRuleType.SERVICE_AREA, 20, sort_order=2),
        make_rule(3, PriorityRuleType.STAFF_CHILD, 40, sort_order=3),
    ]
    entry = make_entry(1, score=5, has_sibling_enrolled=True, in_service_area=True)
    result = PriorityEngine.calculate_priority_score(entry, rules, 0)

    assert result.total_score == 70
    assert result.previous_score == 5
    assert [r.applied for r in result.rule_breakdown] == [True, True, False]
    assert result.rule_breakdown[2].points == 0
    assert result.rule_breakdown[2].reason == 'Not a staff child'


def test_rules_evaluated_in_sort_order_and_inactive_skipped():
    rules = [
        make_rule(1, PriorityRuleType.SPECIAL_NEEDS, 30, sort_order=5),
        make_rule(2, PriorityRuleType.SUBSIDY_APPROVED, 15, sort_order=1),
        make_rule(3, PriorityRuleType.STAFF_CHILD, 40, sort_order=0, is_active=False),
    ]
    result = PriorityEngine.calculate_priority_score(make_entry(1), rules, 0)
    assert [r.rule_id for r in result.rule_breakdown] == [2, 1]


def test_negative_points_are_allowed():
    rules = [make_rule(1, PriorityRuleType.CORPORATE_PARTNERSHIP, -10)]
    entry = make_entry(1, has_corporate_partnership=True)
    assert PriorityEngine.calculate_priority_score(entry, rules, 0).total_score == -10


@pytest.mark.parametrize('days,applied', [(29, False), (30, True), (365, True), (366, False)])
def test_time_on_list_default_bounds(days, applied):
    rules = [make_rule(1, PriorityRuleType.TIME_ON_LIST, 10)]
    result = PriorityEngine.calculate_priority_score(make_entry(1), rules, days)
    assert result.rule_breakdown[0].applied is applied


def test_time_on_list_custom_bounds():
    rules = [make_rule(1, PriorityRuleType.TIME_ON_LIST, 10,
                       conditions={'minDays': 180, 'maxDays': 999})]
    assert PriorityEngine.calculate_priority_score(make_entry(1), rules, 179).total_score == 0
    assert PriorityEngine.calculate_priority_score(make_entry(1), rules, 180).total_score == 10


def test_provider_custom_requires_superset_of_tags():
    rules = [make_rule(1, PriorityRuleType.PROVIDER_CUSTOM, 25,
                       conditions={'requiredTags': ['twins', 'returning']})]
    both = make_entry(1, tags=['returning', 'twins', 'vip'])
    one = make_entry(2, tags=['twins'])
    assert PriorityEngine.calculate_priority_score(both, rules, 0).total_score == 25
    result = PriorityEngine.calculate_priority_score(one, rules, 0)
    assert result.total_score == 0
    assert 'Missing required tags' in result.rule_breakdown[0].reason


@pytest.mark.parametrize('rule_type', [
    PriorityRuleType.FIRST_TIME_PARENT, PriorityRuleType.MILITARY_FAMILY])
def test_unavailable_rule_types_never_apply(rule_type):
    rules = [make_rule(1, rule_type, 100)]
    result = PriorityEngine.calculate_priority_score(make_entry(1), rules, 0)
    assert result.total_score == 0
    assert 'not available' in result.rule_breakdown[0].reason


def test_broken_rule_does_not_abort_scoring():
    rules = [
        make_rule(1, PriorityRuleType.TIME_ON_LIST, 10, sort_order=1, conditions='{not json'),
        make_rule(2, PriorityRuleType.SIBLING_ENROLLED, 50, sort_order=2),
    ]
    entry = make_entry(1, has_sibling_enrolled=True)
    result = PriorityEngine.calculate_priority_score(entry, rules, 100)
    assert result.total_score == 50
    assert result.rule_breakdown[0].applied is False
    assert result.rule_breakdown[0].reason.startswith('Error evaluating rule')


def test_positions_are_dense_and_ties_break_by_join_date():
    entries = [
        make_entry(1, score=50, joined_days=3, position=1),
        make_entry(2, score=50, joined_days=1, position=2),
        make_entry(3, score=70, joined_days=9, position=3),
        make_entry(4, score=10, joined_days=0, position=4),
        make_entry(5, score=99, status=WaitlistStatus.PAUSED, position=5),
    ]
    updates = {u.entry_id: u for u in PriorityEngine.calculate_positions(entries)}

    assert sorted(u.new_position for u in updates.values()) == [1, 2, 3, 4]
    assert 5 not in updates
    assert updates[3].new_position == 1
    assert updates[2].new_position == 2
    assert updates[1].new_position == 3
    assert updates[1].position_change == -2
    assert updates[3].position_change == 2


@pytest.mark.parametrize('position,band', [
    (1, 'Top 5'), (5, 'Top 5'), (6, '6-10'), (20, '11-20'), (50, '21-50'), (51, '50+')])
def test_position_band(position, band):
    assert PriorityEngine.get_position_band(position) == band


def test_estimated_wait_days():
    assert PriorityEngine.calculate_estimated_wait_days(1, 2, 0.7) == 0
    # 10 places ahead at 1.4 slots a month
    assert PriorityEngine.calculate_estimated_wait_days(11, 2, 0.7) == round(10 / 1.4 * 30.4)


@pytest.mark.parametrize('offers,rate', [(0, 0.7), (2, 0), (2, -1)])
def test_estimated_wait_days_unknown_without_throughput(offers, rate):
    assert PriorityEngine.calculate_estimated_wait_days(4, offers, rate) is None


def test_significant_position_change():
    assert PriorityEngine.is_significant_position_change(10, 7)
    assert PriorityEngine.is_significant_position_change(4, 7)
    assert not PriorityEngine.is_significant_position_change(5, 3)
    assert PriorityEngine.is_significant_position_change(5, 3, threshold=2)
