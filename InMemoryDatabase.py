from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import date, datetime, time
from enum import Enum
from threading import Lock
from typing import Dict, Iterable, List, Optional, Protocol
from uuid import UUID

# ----------------------------
# Records
# ----------------------------


class BookingStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PRESENT = "present"
    CANCELLED = "cancelled"


def minutes_of(moment: time) -> int:
    return moment.hour * 60 + moment.minute


@dataclass(frozen=True)
class Booking:
    id: UUID
    owner_id: str
    resource_id: Optional[int]
    date: date
    start_time: time
    end_time: time
    duration_minutes: int
    created_at: datetime
    confirmed: bool = False
    present: bool = False
    cancelled: bool = False
    absent: bool = False
    hold_expiry: Optional[datetime] = None
    rule_id: Optional[UUID] = None
    comment: Optional[str] = None

    @property
    def status(self) -> BookingStatus:
        if self.cancelled:
            return BookingStatus.CANCELLED
        if self.present:
            return BookingStatus.PRESENT
        if self.confirmed:
            return BookingStatus.CONFIRMED
        return BookingStatus.PENDING

    @property
    def start_minute(self) -> int:
        return minutes_of(self.start_time)

    @property
    def end_minute(self) -> int:
        return self.start_minute + self.duration_minutes

    def is_active(self, now: datetime) -> bool:
        """Whether this booking occupies its court at evaluation time ``now``."""
        if self.cancelled:
            return False
        if self.confirmed or self.present:
            return True
        return self.hold_expiry is not None and self.hold_expiry > now

    def with_changes(self, **changes) -> "Booking":
        return replace(self, **changes)


@dataclass(frozen=True)
class RecurrenceRule:
    id: UUID
    owner_id: str
    resource_id: int
    start_date: date
    end_date: Optional[date]
    interval_days: int
    start_time: time
    end_time: time
    duration_minutes: int
    created_at: datetime
    active: bool = True

    @property
    def start_minute(self) -> int:
        return minutes_of(self.start_time)

    @property
    def end_minute(self) -> int:
        return self.start_minute + self.duration_minutes

    def with_changes(self, **changes) -> "RecurrenceRule":
        return replace(self, **changes)


# ----------------------------
# Repository
# ----------------------------


class Repository(Protocol):
    """Per-row access to bookings and rules.

    Implementations may raise ``errors.StorageError`` from any method.
    ``update_*`` and ``delete_*`` raise ``KeyError`` when the row is gone.
    """

    def list_bookings(self, day: date) -> List[Booking]: ...

    def list_bookings_between(self, start: date, end: date) -> List[Booking]: ...

    def list_bookings_for_owner(self, owner_id: str) -> List[Booking]: ...

    def list_bookings_for_rule(self, rule_id: UUID) -> List[Booking]: ...

    def get_booking(self, booking_id: UUID) -> Optional[Booking]: ...

    def insert_bookings(self, bookings: Iterable[Booking]) -> List[Booking]: ...

    def update_booking(self, booking: Booking) -> Booking: ...

    def delete_booking(self, booking_id: UUID) -> None: ...

    def list_rules(self, active_only: bool = False) -> List[RecurrenceRule]: ...

    def get_rule(self, rule_id: UUID) -> Optional[RecurrenceRule]: ...

    def insert_rule(self, rule: RecurrenceRule) -> RecurrenceRule: ...

    def update_rule(self, rule: RecurrenceRule) -> RecurrenceRule: ...

    def delete_rule(self, rule_id: UUID) -> None: ...


# ----------------------------
# In-memory "database"
# ----------------------------


class InMemoryRepository:
    """Dict-backed repository.

    The lock guards one call at a time; nothing spans calls, so callers get
    the same read-then-write behaviour they would get from a remote store.
    Lists come back in insertion order, which is creation order.
    """

    def __init__(self) -> None:
        self._lock = Lock()
        self._bookings: Dict[UUID, Booking] = {}
        self._rules: Dict[UUID, RecurrenceRule] = {}

    # bookings

    def list_bookings(self, day: date) -> List[Booking]:
        with self._lock:
            return [b for b in self._bookings.values() if b.date == day]

    def list_bookings_between(self, start: date, end: date) -> List[Booking]:
        with self._lock:
            return [b for b in self._bookings.values() if start <= b.date <= end]

    def list_bookings_for_owner(self, owner_id: str) -> List[Booking]:
        with self._lock:
            return [b for b in self._bookings.values() if b.owner_id == owner_id]

    def list_bookings_for_rule(self, rule_id: UUID) -> List[Booking]:
        with self._lock:
            return [b for b in self._bookings.values() if b.rule_id == rule_id]

    def get_booking(self, booking_id: UUID) -> Optional[Booking]:
        with self._lock:
            return self._bookings.get(booking_id)

    def insert_bookings(self, bookings: Iterable[Booking]) -> List[Booking]:
        batch = list(bookings)
        with self._lock:
            for booking in batch:
                self._bookings[booking.id] = booking
        return batch

    def update_booking(self, booking: Booking) -> Booking:
        with self._lock:
            if booking.id not in self._bookings:
                raise KeyError("not_found")
            self._bookings[booking.id] = booking
            return booking

    def delete_booking(self, booking_id: UUID) -> None:
        with self._lock:
            if booking_id not in self._bookings:
                raise KeyError("not_found")
            del self._bookings[booking_id]

    # rules

    def list_rules(self, active_only: bool = False) -> List[RecurrenceRule]:
        with self._lock:
            return [r for r in self._rules.values() if r.active or not active_only]

    def get_rule(self, rule_id: UUID) -> Optional[RecurrenceRule]:
        with self._lock:
            return self._rules.get(rule_id)

    def insert_rule(self, rule: RecurrenceRule) -> RecurrenceRule:
        with self._lock:
            self._rules[rule.id] = rule
            return rule

    def update_rule(self, rule: RecurrenceRule) -> RecurrenceRule:
        with self._lock:
            if rule.id not in self._rules:
                raise KeyError("not_found")
            self._rules[rule.id] = rule
            return rule

    def delete_rule(self, rule_id: UUID) -> None:
        with self._lock:
            if rule_id not in self._rules:
                raise KeyError("not_found")
            del self._rules[rule_id]
