from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
from uuid import uuid4

from clock import Clock
from completion import CompletionSweeper
from errors import StorageError
from InMemoryDatabase import Booking, BookingStatus, InMemoryRepository, RecurrenceRule
import lifecycle
from propagation import PropagationEngine, materialize
from reconciliation import ReconciliationJob, pick_keeper

BUSINESS_TZ = timezone(timedelta(hours=-3))
NOW = datetime(2024, 1, 1, 8, 0, tzinfo=BUSINESS_TZ)
JAN = [date(2024, 1, d) for d in (1, 8, 15, 22)]


def fixed_clock(moment: datetime = NOW) -> Clock:
    return Clock(-3, now=lambda: moment)


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
        created_at=NOW,
    )
    values.update(overrides)
    return RecurrenceRule(**values)


def make_booking(day: date, start: time, duration: int, **overrides) -> Booking:
    end_minute = start.hour * 60 + start.minute + duration
    values = dict(
        id=uuid4(),
        owner_id="user-2",
        resource_id=1,
        date=day,
        start_time=start,
        end_time=time((end_minute // 60) % 24, end_minute % 60),
        duration_minutes=duration,
        created_at=NOW,
        confirmed=True,
    )
    values.update(overrides)
    return Booking(**values)


def engine_for(repo, moment: datetime = NOW) -> PropagationEngine:
    return PropagationEngine(repo, fixed_clock(moment), ReconciliationJob(repo))


def rule_dates(repo, rule):
    return sorted(b.date for b in repo.list_bookings_for_rule(rule.id))


class FlakyRepository(InMemoryRepository):
    """Fails every insert that touches ``failing_day``."""

    def __init__(self, failing_day: date) -> None:
        super().__init__()
        self.failing_day = failing_day

    def insert_bookings(self, bookings):
        batch = list(bookings)
        if any(b.date == self.failing_day for b in batch):
            raise StorageError("connection reset")
        return super().insert_bookings(batch)


# ----------------------------
# PropagationEngine.ensure
# ----------------------------

def test_weekly_rule_materializes_every_applicable_date():
    repo = InMemoryRepository()
    rule = make_rule()
    report = engine_for(repo).ensure([rule], date(2024, 1, 1), date(2024, 1, 22))

    assert report.dates_processed == 22
    assert report.bookings_created == 4
    assert report.errors == []
    assert rule_dates(repo, rule) == JAN
    for booking in repo.list_bookings_for_rule(rule.id):
        assert booking.status == BookingStatus.CONFIRMED
        assert booking.resource_id == 1
        assert booking.start_time == time(18, 0)
        assert booking.owner_id == "user-1"


def test_second_pass_creates_nothing():
    repo = InMemoryRepository()
    rule = make_rule()
    engine = engine_for(repo)
    engine.ensure([rule], date(2024, 1, 1), date(2024, 1, 22))
    before = {b.id for b in repo.list_bookings_between(date(2024, 1, 1), date(2024, 1, 22))}

    again = engine.ensure([rule], date(2024, 1, 1), date(2024, 1, 22))

    assert again.bookings_created == 0
    assert {b.id for b in repo.list_bookings_between(date(2024, 1, 1), date(2024, 1, 22))} == before


def test_cancelled_occurrence_is_never_recreated():
    repo = InMemoryRepository()
    rule = make_rule()
    engine = engine_for(repo)
    engine.ensure([rule], date(2024, 1, 1), date(2024, 1, 22))

    target = next(b for b in repo.list_bookings(date(2024, 1, 8)) if b.rule_id == rule.id)
    repo.update_booking(lifecycle.apply(target, lifecycle.Action.CANCEL))

    report = engine.ensure([rule], date(2024, 1, 1), date(2024, 1, 22))

    assert report.bookings_created == 0
    on_day = [b for b in repo.list_bookings(date(2024, 1, 8)) if b.rule_id == rule.id]
    assert len(on_day) == 1
    assert on_day[0].cancelled


def test_end_date_and_inactive_rules_respected():
    repo = InMemoryRepository()
    ending = make_rule(end_date=date(2024, 1, 15))
    paused = make_rule(resource_id=2, active=False)

    report = engine_for(repo).ensure([ending, paused], date(2024, 1, 1), date(2024, 1, 31))

    assert report.bookings_created == 3
    assert rule_dates(repo, ending) == JAN[:3]
    assert repo.list_bookings_for_rule(paused.id) == []


def test_rules_due_on_same_date_are_created_together():
    repo = InMemoryRepository()
    rules = [make_rule(resource_id=court) for court in (1, 2, 3)]

    report = engine_for(repo).ensure(rules, date(2024, 1, 1), date(2024, 1, 1))

    assert report.bookings_created == 3
    assert sorted(b.resource_id for b in repo.list_bookings(date(2024, 1, 1))) == [1, 2, 3]


def test_busy_court_is_skipped_and_reported():
    repo = InMemoryRepository()
    rule = make_rule()
    repo.insert_bookings([make_booking(date(2024, 1, 8), time(18, 30), 60)])

    report = engine_for(repo).ensure([rule], date(2024, 1, 1), date(2024, 1, 22))

    assert report.bookings_created == 3
    assert rule_dates(repo, rule) == [JAN[0], JAN[2], JAN[3]]
    assert len(report.errors) == 1
    error = report.errors[0]
    assert error.code == "COURT_CONFLICT"
    assert error.date == date(2024, 1, 8)
    assert error.rule_id == rule.id


def test_storage_failure_on_one_date_does_not_stop_the_run():
    repo = FlakyRepository(failing_day=date(2024, 1, 15))
    rule = make_rule()

    report = engine_for(repo).ensure([rule], date(2024, 1, 1), date(2024, 1, 22))

    assert report.dates_processed == 22
    assert report.bookings_created == 3
    assert [(e.code, e.date) for e in report.errors] == [("STORAGE_ERROR", date(2024, 1, 15))]
    assert rule_dates(repo, rule) == [JAN[0], JAN[1], JAN[3]]


def test_wipe_first_rebuilds_rule_bookings_only():
    repo = InMemoryRepository()
    rule = make_rule()
    engine = engine_for(repo)
    engine.ensure([rule], date(2024, 1, 1), date(2024, 1, 22))
    target = next(b for b in repo.list_bookings(date(2024, 1, 8)) if b.rule_id == rule.id)
    repo.update_booking(lifecycle.apply(target, lifecycle.Action.CANCEL))
    direct = make_booking(date(2024, 1, 8), time(10, 0), 60, resource_id=2)
    repo.insert_bookings([direct])

    report = engine.ensure([rule], date(2024, 1, 1), date(2024, 1, 22), wipe_first=True)

    assert report.deleted == 4
    assert report.bookings_created == 4
    rebuilt = [b for b in repo.list_bookings(date(2024, 1, 8)) if b.rule_id == rule.id]
    assert len(rebuilt) == 1
    assert rebuilt[0].status == BookingStatus.CONFIRMED
    assert repo.get_booking(direct.id) == direct


# ----------------------------
# Reconciliation
# ----------------------------

def test_pick_keeper_prefers_oldest_non_cancelled():
    rule_id = uuid4()
    day = date(2024, 1, 8)
    oldest_cancelled = make_booking(day, time(18, 0), 90, rule_id=rule_id, cancelled=True, created_at=NOW)
    middle = make_booking(day, time(18, 0), 90, rule_id=rule_id, created_at=NOW + timedelta(seconds=1))
    newest = make_booking(day, time(18, 0), 90, rule_id=rule_id, created_at=NOW + timedelta(seconds=2))

    assert pick_keeper([newest, oldest_cancelled, middle]) == middle
    assert pick_keeper([oldest_cancelled]) == oldest_cancelled


def test_pick_keeper_all_cancelled_keeps_oldest():
    rule_id = uuid4()
    day = date(2024, 1, 8)
    first = make_booking(day, time(18, 0), 90, rule_id=rule_id, cancelled=True, created_at=NOW)
    second = make_booking(day, time(18, 0), 90, rule_id=rule_id, cancelled=True, created_at=NOW + timedelta(seconds=5))

    assert pick_keeper([second, first]) == first


def test_dedupe_removes_duplicates_and_leaves_other_bookings():
    repo = InMemoryRepository()
    rule = make_rule()
    day = date(2024, 1, 8)
    copies = [materialize(rule, day, NOW + timedelta(seconds=i)) for i in range(3)]
    direct = make_booking(day, time(10, 0), 60)
    repo.insert_bookings(copies + [direct])

    report = ReconciliationJob(repo).dedupe(day)

    assert report.duplicates_removed == 2
    remaining = repo.list_bookings(day)
    assert {b.id for b in remaining} == {copies[0].id, direct.id}


def test_racing_passes_converge_to_one_booking_per_date():
    repo = InMemoryRepository()
    rule = make_rule()
    day = date(2024, 1, 8)
    # two passes that both saw an empty date
    repo.insert_bookings([materialize(rule, day, NOW), materialize(rule, day, NOW + timedelta(seconds=1))])

    report = engine_for(repo).ensure([rule], date(2024, 1, 1), date(2024, 1, 22))

    assert report.duplicates_removed == 1
    assert rule_dates(repo, rule) == JAN


def test_dedupe_range_sums_across_dates():
    repo = InMemoryRepository()
    rule = make_rule()
    for day in JAN[:2]:
        repo.insert_bookings([materialize(rule, day, NOW), materialize(rule, day, NOW + timedelta(seconds=1))])

    report = ReconciliationJob(repo).dedupe_range(date(2024, 1, 1), date(2024, 1, 31))

    assert report.duplicates_removed == 2
    assert report.errors == []


# ----------------------------
# Coverage
# ----------------------------

def test_coverage_reports_gaps():
    repo = InMemoryRepository()
    rule = make_rule()
    engine = engine_for(repo)
    engine.ensure([rule], date(2024, 1, 1), date(2024, 1, 8))

    report = engine.coverage([rule], date(2024, 1, 1), date(2024, 1, 22))

    assert report.active_rules == 1
    assert report.expected == 4
    assert report.actual == 2
    assert report.gaps == [date(2024, 1, 15), date(2024, 1, 22)]
    assert report.coverage == "50.0%"
    assert report.by_date[date(2024, 1, 2)] == (0, 0)


def test_coverage_without_rules():
    report = engine_for(InMemoryRepository()).coverage([], date(2024, 1, 1), date(2024, 1, 7))
    assert report.expected == 0
    assert report.coverage == "0%"
    assert report.gaps == []


# ----------------------------
# Completion sweep
# ----------------------------

def test_sweep_marks_finished_confirmed_bookings_present():
    repo = InMemoryRepository()
    day = date(2024, 1, 1)
    evening = datetime(2024, 1, 1, 20, 0, tzinfo=BUSINESS_TZ)
    finished = make_booking(day, time(18, 0), 90)
    just_ended = make_booking(day, time(19, 0), 60, resource_id=2)
    running = make_booking(day, time(19, 30), 60, resource_id=3)
    cancelled = make_booking(day, time(17, 0), 60, cancelled=True)
    pending = make_booking(day, time(16, 0), 60, confirmed=False, hold_expiry=NOW + timedelta(minutes=10))
    repo.insert_bookings([finished, just_ended, running, cancelled, pending])

    sweeper = CompletionSweeper(repo, fixed_clock(evening))
    report = sweeper.sweep()

    assert report.date == day
    assert report.marked == 2
    assert repo.get_booking(finished.id).status == BookingStatus.PRESENT
    assert repo.get_booking(just_ended.id).status == BookingStatus.PRESENT
    assert repo.get_booking(running.id).status == BookingStatus.CONFIRMED
    assert repo.get_booking(cancelled.id).status == BookingStatus.CANCELLED
    assert repo.get_booking(pending.id).status == BookingStatus.PENDING

    assert sweeper.sweep().marked == 0


def test_sweep_uses_business_date_not_utc_date():
    repo = InMemoryRepository()
    # 23:30 local on Jan 1 is already Jan 2 in UTC
    late = datetime(2024, 1, 2, 2, 30, tzinfo=timezone.utc)
    booking = make_booking(date(2024, 1, 1), time(21, 0), 120)
    repo.insert_bookings([booking])

    report = CompletionSweeper(repo, fixed_clock(late)).sweep()

    assert report.date == date(2024, 1, 1)
    assert report.marked == 1


def test_booking_ending_at_midnight_is_swept_next_day():
    repo = InMemoryRepository()
    booking = make_booking(date(2024, 1, 1), time(23, 0), 60)
    repo.insert_bookings([booking])

    before_midnight = datetime(2024, 1, 1, 23, 59, tzinfo=BUSINESS_TZ)
    assert CompletionSweeper(repo, fixed_clock(before_midnight)).sweep().marked == 0

    after_midnight = datetime(2024, 1, 2, 0, 5, tzinfo=BUSINESS_TZ)
    report = CompletionSweeper(repo, fixed_clock(after_midnight)).sweep()

    assert report.date == date(2024, 1, 2)
    assert report.marked == 1
    assert repo.get_booking(booking.id).status == BookingStatus.PRESENT
