"""Recurrence rule evaluation.

A rule applies on ``start_date + k * interval_days`` for every ``k >= 0``,
up to and including ``end_date`` when one is set. A weekly rule is simply
``interval_days = 7``.
"""

from __future__ import annotations

from datetime import date, timedelta
from math import gcd
from typing import Iterator, Optional

from InMemoryDatabase import RecurrenceRule


def applies(rule: RecurrenceRule, day: date) -> bool:
    if day < rule.start_date:
        return False
    if rule.end_date is not None and day > rule.end_date:
        return False
    diff_days = (day - rule.start_date).days
    return diff_days >= 0 and diff_days % rule.interval_days == 0


def first_applicable_on_or_after(rule: RecurrenceRule, day: date) -> Optional[date]:
    """Earliest date >= ``day`` the rule applies on, or None once the rule has ended."""
    if day <= rule.start_date:
        candidate = rule.start_date
    else:
        offset = (day - rule.start_date).days
        steps = -(-offset // rule.interval_days)
        candidate = rule.start_date + timedelta(days=steps * rule.interval_days)

    if rule.end_date is not None and candidate > rule.end_date:
        return None
    return candidate


def applicable_dates(rule: RecurrenceRule, start: date, end: date) -> Iterator[date]:
    """Dates in ``[start, end]`` the rule applies on, ascending."""
    current = first_applicable_on_or_after(rule, start)
    step = timedelta(days=rule.interval_days)
    last = end if rule.end_date is None else min(end, rule.end_date)
    while current is not None and current <= last:
        yield current
        current += step


def times_overlap(a: RecurrenceRule, b: RecurrenceRule) -> bool:
    return a.start_minute < b.end_minute and b.start_minute < a.end_minute


def rules_share_date(a: RecurrenceRule, b: RecurrenceRule) -> Optional[date]:
    """First date both rules apply on, or None if they never coincide.

    The combined pattern repeats every lcm(a, b) days, so one period after
    the later start date is enough to decide.
    """
    start = max(a.start_date, b.start_date)
    period = a.interval_days * b.interval_days // gcd(a.interval_days, b.interval_days)
    end = start + timedelta(days=period)
    for end_date in (a.end_date, b.end_date):
        if end_date is not None:
            end = min(end, end_date)

    for day in applicable_dates(a, start, end):
        if applies(b, day):
            return day
    return None


def rules_conflict(a: RecurrenceRule, b: RecurrenceRule) -> bool:
    """Two rules conflict when they book the same court at overlapping times on a shared date."""
    if a.id == b.id or a.resource_id != b.resource_id:
        return False
    if not times_overlap(a, b):
        return False
    return rules_share_date(a, b) is not None
