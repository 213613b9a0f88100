from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import List, Optional

from clock import Clock
from errors import ItemError, StorageError
from InMemoryDatabase import BookingStatus, Repository
import lifecycle

logger = logging.getLogger(__name__)


@dataclass
class SweepReport:
    date: date
    marked: int = 0
    errors: List[ItemError] = field(default_factory=list)


class CompletionSweeper:
    """Marks confirmed bookings whose end time has passed as present.

    Only rows still Confirmed are written, re-read just before the write, so
    overlapping sweeps converge on the same result.
    """

    def __init__(self, repository: Repository, clock: Clock) -> None:
        self.repository = repository
        self.clock = clock

    def sweep(self, day: Optional[date] = None) -> SweepReport:
        """Mark ``day``'s finished bookings present (default: today).

        The day before is swept too: a booking running up to midnight only
        ends once the next day has begun.
        """
        now = self.clock.now()
        day = day or now.date()
        report = SweepReport(date=day)

        for booking_day in (day - timedelta(days=1), day):
            try:
                bookings = self.repository.list_bookings(booking_day)
            except StorageError as e:
                logger.error(f"❌ Error reading bookings for {booking_day}: {e.message}")
                report.errors.append(ItemError(code=e.code, message=e.message, date=booking_day))
                continue

            for booking in bookings:
                if booking.status != BookingStatus.CONFIRMED:
                    continue
                ends_at = self.clock.at(booking_day, booking.start_time) + timedelta(minutes=booking.duration_minutes)
                if ends_at > now:
                    continue

                try:
                    current = self.repository.get_booking(booking.id)
                    if current is None or current.status != BookingStatus.CONFIRMED:
                        continue
                    self.repository.update_booking(lifecycle.apply(current, lifecycle.Action.MARK_PRESENT))
                except KeyError:
                    continue
                except StorageError as e:
                    logger.error(f"❌ Error completing booking {booking.id}: {e.message}")
                    report.errors.append(
                        ItemError(
                            code=e.code,
                            message=e.message,
                            date=booking_day,
                            booking_id=booking.id,
                            rule_id=booking.rule_id,
                        )
                    )
                    continue
                report.marked += 1

        logger.info(f"Completion sweep for {day}: {report.marked} bookings marked present")
        return report
