from __future__ import annotations

import logging
from datetime import datetime
from typing import Iterable, List, Optional, Set
from uuid import UUID

from errors import INVALID_COURT, ResourceConflict, ResourceExhausted, ValidationError
from InMemoryDatabase import Booking

logger = logging.getLogger(__name__)


# ----------------------------
# Conflict detection
# ----------------------------


class ConflictDetector:
    """Answers occupancy questions about one date's bookings.

    Activity is evaluated against ``now`` once, at construction: cancelled
    bookings and pending bookings whose hold has lapsed never occupy a court.
    Times are minutes since midnight and intervals are half-open.
    """

    def __init__(self, bookings: Iterable[Booking], now: datetime, slot_minutes: int = 30) -> None:
        self.slot_minutes = slot_minutes
        self._active: List[Booking] = [b for b in bookings if b.is_active(now) and b.resource_id is not None]

    @staticmethod
    def _overlaps(a_start: int, a_end: int, b_start: int, b_end: int) -> bool:
        return a_start < b_end and b_start < a_end

    def add(self, booking: Booking) -> None:
        """Count a booking that is about to be written as occupying its court."""
        if booking.resource_id is not None and not booking.cancelled:
            self._active.append(booking)

    def conflicts(self, resource_id: int, start: int, duration: int, exclude: Optional[UUID] = None) -> List[Booking]:
        end = start + duration
        return [
            b
            for b in self._active
            if b.resource_id == resource_id
            and b.id != exclude
            and self._overlaps(start, end, b.start_minute, b.end_minute)
        ]

    def is_resource_free(self, resource_id: int, start: int, duration: int, exclude: Optional[UUID] = None) -> bool:
        return not self.conflicts(resource_id, start, duration, exclude)

    def _busy_at(self, tick: int, exclude: Optional[UUID]) -> Set[int]:
        return {b.resource_id for b in self._active if b.id != exclude and b.start_minute <= tick < b.end_minute}

    def occupied_resources(self, start: int, duration: int, exclude: Optional[UUID] = None) -> Set[int]:
        """Courts busy at any slot tick in ``[start, start + duration)``."""
        occupied: Set[int] = set()
        for tick in range(start, start + duration, self.slot_minutes):
            occupied |= self._busy_at(tick, exclude)
        return occupied

    def is_saturated(self, start: int, duration: int, court_count: int, exclude: Optional[UUID] = None) -> bool:
        """True when some tick of the span has every court busy."""
        return any(
            len(self._busy_at(tick, exclude)) >= court_count
            for tick in range(start, start + duration, self.slot_minutes)
        )


# ----------------------------
# Court allocation
# ----------------------------


class CourtAllocator:
    """Picks the court for a new booking. Pure decision: the caller writes."""

    def __init__(self, detector: ConflictDetector, court_count: int) -> None:
        self.detector = detector
        self.court_count = court_count

    def assign(
        self,
        requested: Optional[int],
        start: int,
        duration: int,
        exclude: Optional[UUID] = None,
    ) -> int:
        if requested is not None and not 1 <= requested <= self.court_count:
            raise ValidationError(
                f"Court must be between 1 and {self.court_count}.",
                error=INVALID_COURT,
            )

        if self.detector.is_saturated(start, duration, self.court_count, exclude):
            logger.info(f"All {self.court_count} courts busy between minute {start} and {start + duration}")
            raise ResourceExhausted()

        occupied = self.detector.occupied_resources(start, duration, exclude)

        if requested is not None:
            if requested in occupied:
                raise ResourceConflict(f"Court {requested} is already booked for that time.")
            return requested

        for court in range(1, self.court_count + 1):
            if court not in occupied:
                return court

        raise ResourceExhausted("No single court is free for the whole time span.")
