"""Scheduling service - booking and recurring-rule operations.

Single-item operations raise ``errors.SchedulingError`` subclasses and leave
state untouched when they do. Batch operations return reports that carry
per-item errors instead.

Every check here is read-then-write against the repository. Nothing locks a
court between the check and the insert, so two racing requests can both
succeed; rule duplicates are repaired by reconciliation, while a double-booked
court from racing direct requests is left for the operator to correct.
"""

from __future__ import annotations

import logging
from datetime import date, time, timedelta
from typing import List, Optional, Tuple
from uuid import UUID, uuid4

from auth import OwnerDirectory
from clock import Clock
from completion import CompletionSweeper, SweepReport
from config import Settings
from conflicts import ConflictDetector, CourtAllocator
from errors import (
    BOOKING_IN_PAST,
    INVALID_COURT,
    INVALID_DURATION,
    INVALID_TIME,
    OWNER_NOT_FOUND,
    RULE_CONFLICT,
    RULE_NOT_FOUND,
    NotFound,
    ResourceConflict,
    Unauthorized,
    ValidationError,
)
from InMemoryDatabase import Booking, RecurrenceRule, Repository, minutes_of
import lifecycle
from models import BookingCreateRequest, BookingUpdates, RuleCreateRequest, RuleUpdates
from propagation import CoverageReport, PropagationEngine, PropagationReport
from reconciliation import ReconciliationJob
from recurrence import first_applicable_on_or_after, rules_conflict

logger = logging.getLogger(__name__)


class SchedulingService:
    """Service layer for the court schedule"""

    def __init__(
        self,
        repository: Repository,
        settings: Settings,
        clock: Clock,
        owner_directory: Optional[OwnerDirectory] = None,
    ) -> None:
        self.repo = repository
        self.settings = settings
        self.clock = clock
        self.owners = owner_directory
        self.reconciler = ReconciliationJob(repository)
        self.engine = PropagationEngine(repository, clock, self.reconciler, settings.slot_minutes)
        self.sweeper = CompletionSweeper(repository, clock)

    # ----------------------------
    # Helpers
    # ----------------------------

    def window(self, days: Optional[int] = None) -> Tuple[date, date]:
        today = self.clock.today()
        return today, today + timedelta(days=self.settings.horizon_days if days is None else days)

    def _detector(self, day: date) -> ConflictDetector:
        return ConflictDetector(self.repo.list_bookings(day), self.clock.now(), self.settings.slot_minutes)

    def _allocator(self, detector: ConflictDetector) -> CourtAllocator:
        return CourtAllocator(detector, self.settings.court_count)

    def _validate_slot(self, start_time: time, duration: int, end_time: Optional[time] = None) -> time:
        """Check duration, grid alignment and the midnight bound. Returns the end time."""
        allowed = self.settings.allowed_durations
        if duration not in allowed:
            raise ValidationError(
                f"Duration must be one of {', '.join(str(d) for d in allowed)} minutes.",
                error=INVALID_DURATION,
            )

        start = minutes_of(start_time)
        if start_time.second or start_time.microsecond or start % self.settings.slot_minutes:
            raise ValidationError(
                f"Start time must be on a {self.settings.slot_minutes}-minute boundary.",
                error=INVALID_TIME,
            )

        end = start + duration
        if end > 24 * 60:
            raise ValidationError("Booking can't run past midnight.", error=INVALID_TIME)

        computed = time((end // 60) % 24, end % 60)
        if end_time is not None and end_time.replace(tzinfo=None) != computed:
            raise ValidationError(
                f"End time must be {computed:%H:%M} for a {duration}-minute booking.",
                error=INVALID_TIME,
            )
        return computed

    def _validate_court(self, court: int) -> None:
        if not 1 <= court <= self.settings.court_count:
            raise ValidationError(
                f"Court must be between 1 and {self.settings.court_count}.",
                error=INVALID_COURT,
            )

    def _check_owner(self, owner_id: str) -> None:
        if self.owners is not None and not self.owners.exists(owner_id):
            raise NotFound(f"User {owner_id} not found.", error=OWNER_NOT_FOUND)

    def _get_booking(self, booking_id: UUID) -> Booking:
        booking = self.repo.get_booking(booking_id)
        if booking is None:
            raise NotFound()
        return booking

    def _save_booking(self, booking: Booking) -> Booking:
        try:
            return self.repo.update_booking(booking)
        except KeyError:
            raise NotFound()

    def _get_rule(self, rule_id: UUID) -> RecurrenceRule:
        rule = self.repo.get_rule(rule_id)
        if rule is None:
            raise NotFound(error=RULE_NOT_FOUND)
        return rule

    def _materialize_date(self, day: date) -> PropagationReport:
        """Lazy pass for one date: dedupe, then create missing rule bookings."""
        return self.engine.ensure(self.repo.list_rules(active_only=True), day, day)

    # ----------------------------
    # Bookings
    # ----------------------------

    def schedule_for_date(self, day: date) -> List[Booking]:
        """All bookings on ``day`` ordered by start time, after the lazy pass."""
        self._materialize_date(day)
        bookings = self.repo.list_bookings(day)
        return sorted(bookings, key=lambda b: (b.start_minute, b.resource_id or 0))

    def public_schedule(self, day: date) -> List[Booking]:
        return [b for b in self.schedule_for_date(day) if not b.cancelled]

    def create_booking(self, data: BookingCreateRequest, is_admin: bool = False) -> Booking:
        if data.confirmed and not is_admin:
            raise Unauthorized("Only the operator can create confirmed bookings.")

        end_time = self._validate_slot(data.start_time, data.duration_minutes, data.end_time)
        self._check_owner(data.owner_id)

        now = self.clock.now()
        day = data.booking_date
        if self.clock.at(day, data.start_time) < now:
            raise ValidationError(error=BOOKING_IN_PAST)

        self._materialize_date(day)
        detector = self._detector(day)
        court = self._allocator(detector).assign(
            data.resource_id,
            minutes_of(data.start_time),
            data.duration_minutes,
        )

        booking = Booking(
            id=uuid4(),
            owner_id=data.owner_id,
            resource_id=court,
            date=day,
            start_time=data.start_time,
            end_time=end_time,
            duration_minutes=data.duration_minutes,
            created_at=now,
            confirmed=data.confirmed,
            hold_expiry=None if data.confirmed else now + timedelta(minutes=self.settings.hold_minutes),
            comment=data.comment,
        )
        self.repo.insert_bookings([booking])
        logger.info(f"📥 Booking {booking.id} on court {court} {day} {data.start_time:%H:%M} for {data.owner_id}")
        return booking

    def transition(self, booking_id: UUID, action: lifecycle.Action) -> Booking:
        booking = self._get_booking(booking_id)
        changed = lifecycle.apply(booking, action)

        # Cancelled or lapsed-hold bookings free their court; taking it back needs a fresh check.
        now = self.clock.now()
        if not booking.is_active(now) and changed.is_active(now):
            detector = self._detector(booking.date)
            if not detector.is_resource_free(
                booking.resource_id, booking.start_minute, booking.duration_minutes, exclude=booking.id
            ):
                raise ResourceConflict(f"Court {booking.resource_id} was booked by someone else in the meantime.")

        updated = self._save_booking(changed)
        logger.info(f"Booking {booking.id}: {booking.status.value} → {updated.status.value} ({action.value})")

        if action == lifecycle.Action.MARK_PRESENT and updated.rule_id is not None:
            self._propagate_after(updated)
        return updated

    def set_flag(self, booking_id: UUID, field: str, value: bool) -> Booking:
        return self.transition(booking_id, lifecycle.action_for_field(field, value))

    def _propagate_after(self, booking: Booking) -> None:
        """Keep the booking's rule populated for a horizon past the attended date."""
        rule = self.repo.get_rule(booking.rule_id)
        if rule is None or not rule.active:
            return
        self.engine.ensure([rule], booking.date, booking.date + timedelta(days=self.settings.horizon_days))

    def update_booking(self, booking_id: UUID, updates: BookingUpdates) -> Booking:
        booking = self._get_booking(booking_id)
        changes = {}

        if updates.comment is not None:
            changes["comment"] = updates.comment

        if updates.start_time is not None or updates.duration_minutes is not None or updates.resource_id is not None:
            start_time = updates.start_time if updates.start_time is not None else booking.start_time
            duration = updates.duration_minutes if updates.duration_minutes is not None else booking.duration_minutes
            requested = updates.resource_id if updates.resource_id is not None else booking.resource_id
            end_time = self._validate_slot(start_time, duration)

            if booking.is_active(self.clock.now()):
                detector = self._detector(booking.date)
                court = self._allocator(detector).assign(
                    requested, minutes_of(start_time), duration, exclude=booking.id
                )
            else:
                self._validate_court(requested)
                court = requested

            changes.update(start_time=start_time, end_time=end_time, duration_minutes=duration, resource_id=court)

        return self._save_booking(booking.with_changes(**changes))

    def owner_overview(self, owner_id: str) -> Tuple[List[Booking], List[RecurrenceRule]]:
        bookings = sorted(self.repo.list_bookings_for_owner(owner_id), key=lambda b: b.start_minute)
        bookings.sort(key=lambda b: b.date, reverse=True)
        rules = [r for r in self.repo.list_rules(active_only=True) if r.owner_id == owner_id]
        rules.sort(key=lambda r: (r.start_date, r.start_minute))
        return bookings, rules

    # ----------------------------
    # Recurring rules
    # ----------------------------

    def list_rules(self) -> List[RecurrenceRule]:
        return sorted(self.repo.list_rules(), key=lambda r: r.created_at, reverse=True)

    def _check_rule_conflicts(self, rule: RecurrenceRule) -> None:
        for other in self.repo.list_rules(active_only=True):
            if rules_conflict(rule, other):
                raise ResourceConflict(
                    f"Court {rule.resource_id} is already taken by rule {other.id} "
                    f"at {other.start_time:%H:%M} on some of the same dates.",
                    error=RULE_CONFLICT,
                )

    def _check_first_occurrence(self, rule: RecurrenceRule) -> None:
        first = first_applicable_on_or_after(rule, self.clock.today())
        if first is None:
            return
        taken = [
            b
            for b in self._detector(first).conflicts(rule.resource_id, rule.start_minute, rule.duration_minutes)
            if b.rule_id != rule.id
        ]
        if taken:
            raise ResourceConflict(
                f"Court {rule.resource_id} is already booked on {first} at {taken[0].start_time:%H:%M}."
            )

    def _populate_rule(self, rule: RecurrenceRule) -> PropagationReport:
        """First occurrence right away, then the rolling horizon."""
        start, end = self.window()
        report = self.engine.ensure([rule], start, end)
        first = first_applicable_on_or_after(rule, start)
        if first is not None and first > end:
            report.merge(self.engine.ensure([rule], first, first))
        return report

    def create_rule(self, data: RuleCreateRequest) -> Tuple[RecurrenceRule, PropagationReport]:
        self._validate_court(data.resource_id)
        end_time = self._validate_slot(data.start_time, data.duration_minutes, data.end_time)
        self._check_owner(data.owner_id)

        now = self.clock.now()
        rule = RecurrenceRule(
            id=uuid4(),
            owner_id=data.owner_id,
            resource_id=data.resource_id,
            start_date=data.start_date,
            end_date=data.end_date,
            interval_days=data.interval_days,
            start_time=data.start_time,
            end_time=end_time,
            duration_minutes=data.duration_minutes,
            created_at=now,
            active=data.active,
        )

        if rule.active:
            self._check_rule_conflicts(rule)
            self._check_first_occurrence(rule)

        self.repo.insert_rule(rule)
        logger.info(f"✅ Rule {rule.id}: court {rule.resource_id} every {rule.interval_days}d from {rule.start_date}")

        if not rule.active:
            today = self.clock.today()
            return rule, PropagationReport(start=today, end=today)
        return rule, self._populate_rule(rule)

    def update_rule(self, rule_id: UUID, updates: RuleUpdates) -> RecurrenceRule:
        """Apply ``updates`` to a rule.

        Bookings already materialized keep their old time and court; only
        dates materialized from now on follow the new template.
        """
        rule = self._get_rule(rule_id)

        changes = {
            name: value
            for name, value in (
                ("resource_id", updates.resource_id),
                ("start_date", updates.start_date),
                ("end_date", updates.end_date),
                ("interval_days", updates.interval_days),
                ("start_time", updates.start_time),
                ("duration_minutes", updates.duration_minutes),
                ("active", updates.active),
            )
            if value is not None
        }
        if updates.clear_end_date:
            changes["end_date"] = None

        updated = rule.with_changes(**changes)
        if updated.end_date is not None and updated.end_date < updated.start_date:
            raise ValidationError("'endDate' must not be before 'startDate'.")
        self._validate_court(updated.resource_id)
        updated = updated.with_changes(end_time=self._validate_slot(updated.start_time, updated.duration_minutes))

        if updated.active:
            self._check_rule_conflicts(updated)
            self._check_first_occurrence(updated)

        try:
            self.repo.update_rule(updated)
        except KeyError:
            raise NotFound(error=RULE_NOT_FOUND)
        logger.info(f"Rule {rule_id} updated: {', '.join(sorted(changes)) or 'no changes'}")

        if updated.active:
            self._populate_rule(updated)
        return updated

    def delete_rule(self, rule_id: UUID) -> int:
        """Delete a rule and every booking it generated. Returns the booking count."""
        self._get_rule(rule_id)
        try:
            self.repo.delete_rule(rule_id)
        except KeyError:
            raise NotFound(error=RULE_NOT_FOUND)

        deleted = 0
        for booking in self.repo.list_bookings_for_rule(rule_id):
            try:
                self.repo.delete_booking(booking.id)
            except KeyError:
                continue
            deleted += 1

        logger.info(f"🗑️ Rule {rule_id} deleted with {deleted} bookings")
        return deleted

    # ----------------------------
    # Batch runs
    # ----------------------------

    def run_propagation(self, days: Optional[int] = None) -> PropagationReport:
        start, end = self.window(days)
        return self.engine.ensure(self.repo.list_rules(active_only=True), start, end)

    def regenerate(self, days: Optional[int] = None) -> PropagationReport:
        start, end = self.window(days)
        return self.engine.ensure(self.repo.list_rules(active_only=True), start, end, wipe_first=True)

    def coverage(self, days: Optional[int] = None) -> CoverageReport:
        start, end = self.window(days)
        return self.engine.coverage(self.repo.list_rules(active_only=True), start, end)

    def sweep(self) -> SweepReport:
        return self.sweeper.sweep()
