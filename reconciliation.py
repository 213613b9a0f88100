from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Dict, List
from uuid import UUID

from errors import ItemError, StorageError
from InMemoryDatabase import Booking, Repository

logger = logging.getLogger(__name__)


@dataclass
class ReconciliationReport:
    duplicates_removed: int = 0
    errors: List[ItemError] = field(default_factory=list)

    def merge(self, other: "ReconciliationReport") -> None:
        self.duplicates_removed += other.duplicates_removed
        self.errors.extend(other.errors)


def pick_keeper(group: List[Booking]) -> Booking:
    """First non-cancelled booking by creation order, else the first one created."""
    ordered = sorted(group, key=lambda b: b.created_at)
    for booking in ordered:
        if not booking.cancelled:
            return booking
    return ordered[0]


class ReconciliationJob:
    """Collapses duplicate materializations of one rule on one date.

    Concurrent propagation passes can each see "no booking yet" for a
    (date, rule) pair and both insert. This job runs ahead of propagation
    so the existence check there sees at most one row per pair.
    """

    def __init__(self, repository: Repository) -> None:
        self.repository = repository

    def dedupe(self, day: date) -> ReconciliationReport:
        report = ReconciliationReport()

        try:
            bookings = self.repository.list_bookings(day)
        except StorageError as e:
            logger.error(f"❌ Could not read bookings for {day}: {e.message}")
            report.errors.append(ItemError(code=e.code, message=e.message, date=day))
            return report

        groups: Dict[UUID, List[Booking]] = {}
        for booking in bookings:
            if booking.rule_id is not None:
                groups.setdefault(booking.rule_id, []).append(booking)

        for rule_id, group in groups.items():
            if len(group) < 2:
                continue

            keeper = pick_keeper(group)
            for booking in group:
                if booking.id == keeper.id:
                    continue
                try:
                    self.repository.delete_booking(booking.id)
                except KeyError:
                    # Another reconciliation got there first.
                    continue
                except StorageError as e:
                    logger.error(f"❌ Could not delete duplicate {booking.id} for {day}: {e.message}")
                    report.errors.append(
                        ItemError(code=e.code, message=e.message, date=day, rule_id=rule_id, booking_id=booking.id)
                    )
                    continue
                report.duplicates_removed += 1

            logger.warning(f"Rule {rule_id} had {len(group)} bookings on {day}; kept {keeper.id}")

        return report

    def dedupe_range(self, start: date, end: date) -> ReconciliationReport:
        report = ReconciliationReport()
        day = start
        while day <= end:
            report.merge(self.dedupe(day))
            day += timedelta(days=1)
        return report
