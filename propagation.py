"""Rolling-window materialization of recurring rules.

``PropagationEngine.ensure`` walks every date of a window and makes sure each
active rule that applies on the date has exactly one booking for it. Any
existing booking for the (date, rule) pair counts, cancelled ones included,
so a cancelled occurrence is never brought back. Each date is written with
one batch insert; a failure on one date is recorded and the walk goes on.

Running ``ensure`` twice in a row creates nothing the second time. That is
sequential idempotency only: two passes racing on the same date can both
insert, which is what ``ReconciliationJob`` cleans up before the next pass.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Dict, Iterable, Iterator, List, Optional, Tuple
from uuid import uuid4

from clock import Clock
from conflicts import ConflictDetector
from errors import COURT_CONFLICT, ItemError, StorageError
from InMemoryDatabase import Booking, RecurrenceRule, Repository
from reconciliation import ReconciliationJob
from recurrence import applies

logger = logging.getLogger(__name__)


def iter_dates(start: date, end: date) -> Iterator[date]:
    day = start
    while day <= end:
        yield day
        day += timedelta(days=1)


def materialize(rule: RecurrenceRule, day: date, created_at: datetime) -> Booking:
    """The confirmed booking a rule projects onto ``day``."""
    return Booking(
        id=uuid4(),
        owner_id=rule.owner_id,
        resource_id=rule.resource_id,
        date=day,
        start_time=rule.start_time,
        end_time=rule.end_time,
        duration_minutes=rule.duration_minutes,
        created_at=created_at,
        confirmed=True,
        rule_id=rule.id,
    )


@dataclass
class PropagationReport:
    start: date
    end: date
    dates_processed: int = 0
    bookings_created: int = 0
    duplicates_removed: int = 0
    deleted: int = 0
    created: List[Booking] = field(default_factory=list)
    errors: List[ItemError] = field(default_factory=list)

    def merge(self, other: "PropagationReport") -> None:
        self.start = min(self.start, other.start)
        self.end = max(self.end, other.end)
        self.dates_processed += other.dates_processed
        self.bookings_created += other.bookings_created
        self.duplicates_removed += other.duplicates_removed
        self.deleted += other.deleted
        self.created.extend(other.created)
        self.errors.extend(other.errors)


@dataclass
class CoverageReport:
    start: date
    end: date
    active_rules: int
    by_date: Dict[date, Tuple[int, int]]

    @property
    def expected(self) -> int:
        return sum(expected for expected, _ in self.by_date.values())

    @property
    def actual(self) -> int:
        return sum(actual for _, actual in self.by_date.values())

    @property
    def gaps(self) -> List[date]:
        return [day for day, (expected, actual) in self.by_date.items() if actual < expected]

    @property
    def coverage(self) -> str:
        if self.expected == 0:
            return "0%"
        return f"{self.actual / self.expected * 100:.1f}%"


class PropagationEngine:
    def __init__(
        self,
        repository: Repository,
        clock: Clock,
        reconciler: Optional[ReconciliationJob] = None,
        slot_minutes: int = 30,
    ) -> None:
        self.repository = repository
        self.clock = clock
        self.reconciler = reconciler
        self.slot_minutes = slot_minutes

    def ensure(
        self,
        rules: Iterable[RecurrenceRule],
        start: date,
        end: date,
        wipe_first: bool = False,
    ) -> PropagationReport:
        """Create every missing materialized booking for ``rules`` in ``[start, end]``.

        With ``wipe_first`` every rule-generated booking dated inside the
        window is deleted first, cancelled ones included, and the window is
        rebuilt from the rules.
        """
        report = PropagationReport(start=start, end=end)
        active = [r for r in rules if r.active]
        now = self.clock.now()

        if wipe_first:
            self._wipe(start, end, report)

        for day in iter_dates(start, end):
            report.dates_processed += 1

            if self.reconciler is not None:
                reconciled = self.reconciler.dedupe(day)
                report.duplicates_removed += reconciled.duplicates_removed
                report.errors.extend(reconciled.errors)

            due = [r for r in active if applies(r, day)]
            if not due:
                continue

            try:
                existing = self.repository.list_bookings(day)
            except StorageError as e:
                logger.error(f"❌ Error reading bookings for {day}: {e.message}")
                report.errors.append(ItemError(code=e.code, message=e.message, date=day))
                continue

            batch = self._plan_date(day, due, existing, now, report)
            if not batch:
                continue

            try:
                self.repository.insert_bookings(batch)
            except StorageError as e:
                logger.error(f"❌ Error creating bookings for {day}: {e.message}")
                report.errors.append(ItemError(code=e.code, message=e.message, date=day))
                continue

            report.bookings_created += len(batch)
            report.created.extend(batch)
            logger.info(f"✅ Created {len(batch)} bookings for {day}")

        logger.info(
            f"Propagation {start} → {end}: {report.dates_processed} dates, "
            f"{report.bookings_created} created, {report.duplicates_removed} duplicates removed, "
            f"{len(report.errors)} errors"
        )
        return report

    def _plan_date(
        self,
        day: date,
        due: List[RecurrenceRule],
        existing: List[Booking],
        now: datetime,
        report: PropagationReport,
    ) -> List[Booking]:
        materialized = {b.rule_id for b in existing if b.rule_id is not None}
        detector = ConflictDetector(existing, now, self.slot_minutes)
        batch: List[Booking] = []

        for rule in due:
            if rule.id in materialized:
                continue

            if not detector.is_resource_free(rule.resource_id, rule.start_minute, rule.duration_minutes):
                message = f"Court {rule.resource_id} is already booked at {rule.start_time:%H:%M} on {day}."
                logger.warning(f"Skipping rule {rule.id}: {message}")
                report.errors.append(
                    ItemError(code=COURT_CONFLICT.code, message=message, date=day, rule_id=rule.id)
                )
                continue

            booking = materialize(rule, day, now)
            detector.add(booking)
            batch.append(booking)

        return batch

    def _wipe(self, start: date, end: date, report: PropagationReport) -> None:
        try:
            bookings = self.repository.list_bookings_between(start, end)
        except StorageError as e:
            logger.error(f"❌ Error reading bookings for {start} → {end}: {e.message}")
            report.errors.append(ItemError(code=e.code, message=e.message))
            return

        for booking in bookings:
            if booking.rule_id is None:
                continue
            try:
                self.repository.delete_booking(booking.id)
            except KeyError:
                continue
            except StorageError as e:
                report.errors.append(
                    ItemError(
                        code=e.code,
                        message=e.message,
                        date=booking.date,
                        rule_id=booking.rule_id,
                        booking_id=booking.id,
                    )
                )
                continue
            report.deleted += 1

        logger.info(f"🧹 Deleted {report.deleted} rule bookings between {start} and {end}")

    def coverage(self, rules: Iterable[RecurrenceRule], start: date, end: date) -> CoverageReport:
        """Expected vs. actual materialized bookings per date. Raises StorageError."""
        active = [r for r in rules if r.active]
        active_ids = {r.id for r in active}
        bookings = self.repository.list_bookings_between(start, end)

        by_date: Dict[date, Tuple[int, int]] = {}
        for day in iter_dates(start, end):
            expected = sum(1 for r in active if applies(r, day))
            actual = len({b.rule_id for b in bookings if b.date == day and b.rule_id in active_ids})
            by_date[day] = (expected, actual)

        return CoverageReport(start=start, end=end, active_rules=len(active), by_date=by_date)
