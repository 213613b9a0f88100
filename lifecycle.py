"""Booking status transitions.

Status is derived from the booking's flags (see ``Booking.status``); this
module decides which actions are legal from which status and which flags
each one writes. Rule-generated bookings are created Confirmed and never pass
through Pending.
"""

from __future__ import annotations

from enum import Enum
from typing import Dict, Tuple

from errors import VALIDATION_ERROR, InvalidTransition, ValidationError
from InMemoryDatabase import Booking, BookingStatus


class Action(str, Enum):
    CONFIRM = "confirm"
    CANCEL = "cancel"
    MARK_ABSENT = "markAbsent"
    MARK_PRESENT = "markPresent"
    UNMARK_PRESENT = "unmarkPresent"
    RESTORE = "restore"


TRANSITIONS: Dict[Tuple[BookingStatus, Action], BookingStatus] = {
    (BookingStatus.PENDING, Action.CONFIRM): BookingStatus.CONFIRMED,
    (BookingStatus.PENDING, Action.CANCEL): BookingStatus.CANCELLED,
    (BookingStatus.PENDING, Action.MARK_ABSENT): BookingStatus.CANCELLED,
    (BookingStatus.CONFIRMED, Action.CANCEL): BookingStatus.CANCELLED,
    (BookingStatus.CONFIRMED, Action.MARK_ABSENT): BookingStatus.CANCELLED,
    (BookingStatus.CONFIRMED, Action.MARK_PRESENT): BookingStatus.PRESENT,
    (BookingStatus.PRESENT, Action.UNMARK_PRESENT): BookingStatus.CONFIRMED,
    # Prior state is not remembered: a restored booking is always Confirmed.
    (BookingStatus.CANCELLED, Action.RESTORE): BookingStatus.CONFIRMED,
}

_FLAGS = {
    Action.CONFIRM: {"confirmed": True, "hold_expiry": None},
    Action.CANCEL: {"cancelled": True},
    Action.MARK_ABSENT: {"cancelled": True, "absent": True},
    Action.MARK_PRESENT: {"present": True},
    Action.UNMARK_PRESENT: {"present": False},
    Action.RESTORE: {"cancelled": False, "absent": False, "confirmed": True, "present": False, "hold_expiry": None},
}

# PATCH {id, field, value} form: (field, value) -> action
_FIELD_ACTIONS = {
    ("confirmed", True): Action.CONFIRM,
    ("present", True): Action.MARK_PRESENT,
    ("present", False): Action.UNMARK_PRESENT,
    ("cancelled", True): Action.CANCEL,
    ("cancelled", False): Action.RESTORE,
    ("absent", True): Action.MARK_ABSENT,
    ("absent", False): Action.RESTORE,
}


def can_apply(booking: Booking, action: Action) -> bool:
    return (booking.status, action) in TRANSITIONS


def apply(booking: Booking, action: Action) -> Booking:
    """Return the booking after ``action``. Raises InvalidTransition if illegal."""
    if not can_apply(booking, action):
        raise InvalidTransition(f"Can't {action.value} a {booking.status.value} booking.")
    return booking.with_changes(**_FLAGS[action])


def action_for_field(field: str, value: bool) -> Action:
    try:
        return _FIELD_ACTIONS[(field, value)]
    except KeyError:
        raise ValidationError(f"Unsupported change: {field}={str(value).lower()}.", error=VALIDATION_ERROR)
