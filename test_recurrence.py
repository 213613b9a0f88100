from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
from uuid import uuid4

from InMemoryDatabase import RecurrenceRule
from recurrence import (
    applicable_dates,
    applies,
    first_applicable_on_or_after,
    rules_conflict,
    rules_share_date,
)

CREATED = datetime(2023, 12, 1, tzinfo=timezone.utc)


def make_rule(**overrides) -> RecurrenceRule:
    values = dict(
        id=uuid4(),
        owner_id="user-1",
        resource_id=1,
        start_date=date(2024, 1, 1),
        end_date=None,
        interval_days=7,
        start_time=time(18, 0),
        end_time=time(19, 30),
        duration_minutes=90,
        created_at=CREATED,
    )
    values.update(overrides)
    return RecurrenceRule(**values)


def test_weekly_rule_applies_every_seventh_day_only():
    rule = make_rule()
    for offset in range(0, 120):
        day = rule.start_date + timedelta(days=offset)
        assert applies(rule, day) == (offset % 7 == 0), day


def test_interval_rule_periodicity_for_several_intervals():
    for interval in (1, 2, 3, 10, 14):
        rule = make_rule(interval_days=interval, start_date=date(2024, 2, 27))
        hits = [d for d in (rule.start_date + timedelta(days=i) for i in range(60)) if applies(rule, d)]
        assert hits == [rule.start_date + timedelta(days=k * interval) for k in range(len(hits))]
        assert len(hits) == (59 // interval) + 1


def test_never_applies_before_start_date():
    rule = make_rule(start_date=date(2024, 1, 15))
    assert not applies(rule, date(2024, 1, 8))
    assert not applies(rule, date(2024, 1, 1))
    assert applies(rule, date(2024, 1, 15))


def test_end_date_is_inclusive():
    rule = make_rule(end_date=date(2024, 1, 15))
    assert applies(rule, date(2024, 1, 15))
    assert not applies(rule, date(2024, 1, 22))


def test_applicable_dates_weekly_scenario():
    rule = make_rule()
    days = list(applicable_dates(rule, date(2024, 1, 1), date(2024, 1, 22)))
    assert days == [date(2024, 1, 1), date(2024, 1, 8), date(2024, 1, 15), date(2024, 1, 22)]


def test_applicable_dates_window_starting_mid_cycle():
    rule = make_rule(interval_days=3)
    days = list(applicable_dates(rule, date(2024, 1, 5), date(2024, 1, 12)))
    assert days == [date(2024, 1, 7), date(2024, 1, 10)]


def test_first_applicable_on_or_after():
    rule = make_rule(end_date=date(2024, 1, 29))
    assert first_applicable_on_or_after(rule, date(2023, 12, 20)) == date(2024, 1, 1)
    assert first_applicable_on_or_after(rule, date(2024, 1, 8)) == date(2024, 1, 8)
    assert first_applicable_on_or_after(rule, date(2024, 1, 9)) == date(2024, 1, 15)
    assert first_applicable_on_or_after(rule, date(2024, 1, 30)) is None


def test_rules_with_offset_even_intervals_never_share_a_date():
    a = make_rule(interval_days=2, start_date=date(2024, 1, 1))
    b = make_rule(interval_days=2, start_date=date(2024, 1, 2))
    assert rules_share_date(a, b) is None
    assert not rules_conflict(a, b)


def test_rules_share_date_finds_first_common_day():
    a = make_rule(interval_days=7, start_date=date(2024, 1, 1))
    b = make_rule(interval_days=3, start_date=date(2024, 1, 2))
    assert rules_share_date(a, b) == date(2024, 1, 8)


def test_end_date_can_prevent_a_shared_date():
    a = make_rule(interval_days=7, start_date=date(2024, 1, 1))
    b = make_rule(interval_days=3, start_date=date(2024, 1, 2), end_date=date(2024, 1, 7))
    assert rules_share_date(a, b) is None


def test_rules_conflict_needs_same_court_and_overlapping_time():
    a = make_rule()
    assert rules_conflict(a, make_rule(start_time=time(19, 0), end_time=time(20, 0), duration_minutes=60))
    assert not rules_conflict(a, make_rule(resource_id=2))
    # adjacent, not overlapping
    assert not rules_conflict(a, make_rule(start_time=time(19, 30), end_time=time(20, 30), duration_minutes=60))


def test_rule_never_conflicts_with_itself():
    a = make_rule()
    assert not rules_conflict(a, a)
