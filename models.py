from pydantic import BaseModel, ConfigDict, Field, model_validator
from typing import Dict, List, Literal, Optional
from datetime import date, datetime, time
from uuid import UUID

from InMemoryDatabase import Booking, BookingStatus, RecurrenceRule
from errors import ItemError
# ----------------------------
# Models (API)
# ----------------------------


class ApiModel(BaseModel):
    """camelCase on the wire, snake_case in Python."""

    model_config = ConfigDict(populate_by_name=True)


# ----------------------------
# Bookings
# ----------------------------

class BookingCreateRequest(ApiModel):
    owner_id: str = Field(
        ...,
        alias="ownerId",
        min_length=1,
        max_length=100,
        description="Id of the user the booking is for.",
        examples=["user-123"],
    )
    booking_date: date = Field(..., alias="date", description="Day of the booking (YYYY-MM-DD), business local time.")
    start_time: time = Field(
        ...,
        alias="startTime",
        description="Local start time (HH:MM). Must sit on the 30-minute booking grid.",
        examples=["18:00"],
    )
    end_time: Optional[time] = Field(
        None,
        alias="endTime",
        description="Optional local end time. When sent it must equal start + duration.",
        examples=["19:30"],
    )
    duration_minutes: int = Field(
        ...,
        alias="durationMinutes",
        description="Booking length in minutes: 60, 90 or 120.",
        examples=[90],
    )
    resource_id: Optional[int] = Field(
        None,
        alias="resourceId",
        description="Court number. Omit to get the lowest-numbered free court.",
        examples=[1],
    )
    confirmed: bool = Field(
        False,
        description=(
            "Create the booking already confirmed. Operator only.\n\n"
            "Without it the booking is **pending** and holds the court for a few minutes."
        ),
    )
    comment: Optional[str] = Field(None, max_length=500)


class BookingUpdates(ApiModel):
    start_time: Optional[time] = Field(None, alias="startTime")
    duration_minutes: Optional[int] = Field(None, alias="durationMinutes")
    resource_id: Optional[int] = Field(None, alias="resourceId")
    comment: Optional[str] = Field(None, max_length=500)

    @model_validator(mode="after")
    def require_some_change(self) -> "BookingUpdates":
        if self.start_time is None and self.duration_minutes is None and self.resource_id is None and self.comment is None:
            raise ValueError("'updates' must change at least one of startTime, durationMinutes, resourceId, comment.")
        return self


class BookingPatchRequest(ApiModel):
    """
    Either a status change or an edit:
      - `{id, field, value}`: field is one of confirmed, present, cancelled, absent
      - `{id, updates}`: new time, duration, court or comment
    """
    id: UUID
    field: Optional[Literal["confirmed", "present", "cancelled", "absent"]] = None
    value: Optional[bool] = None
    updates: Optional[BookingUpdates] = None

    @model_validator(mode="after")
    def require_one_form(self) -> "BookingPatchRequest":
        has_field = self.field is not None and self.value is not None
        if has_field == (self.updates is not None):
            raise ValueError("Send either 'field' and 'value', or 'updates'.")
        return self


class BookingResponse(ApiModel):
    id: UUID
    owner_id: str = Field(alias="ownerId")
    resource_id: Optional[int] = Field(alias="resourceId")
    booking_date: date = Field(alias="date")
    start_time: time = Field(alias="startTime")
    end_time: time = Field(alias="endTime")
    duration_minutes: int = Field(alias="durationMinutes")
    status: BookingStatus
    confirmed: bool
    present: bool
    cancelled: bool
    absent: bool
    hold_expiry: Optional[datetime] = Field(None, alias="holdExpiry")
    rule_id: Optional[UUID] = Field(None, alias="ruleId")
    comment: Optional[str] = None
    created_at: datetime = Field(alias="createdAt")

    @classmethod
    def from_booking(cls, booking: Booking) -> "BookingResponse":
        return cls(**booking.__dict__, status=booking.status)


# ----------------------------
# Recurring rules
# ----------------------------

class RuleCreateRequest(ApiModel):
    owner_id: str = Field(..., alias="ownerId", min_length=1, max_length=100)
    resource_id: int = Field(..., alias="resourceId", description="Court number.", examples=[2])
    start_date: date = Field(
        ...,
        alias="startDate",
        description="First date the rule books. Later dates follow every `intervalDays` days.",
        examples=["2024-01-01"],
    )
    end_date: Optional[date] = Field(
        None,
        alias="endDate",
        description="Last date the rule may book (inclusive). Omit for no end.",
    )
    interval_days: int = Field(
        7,
        alias="intervalDays",
        ge=1,
        description="Days between occurrences. `7` is weekly.",
    )
    start_time: time = Field(..., alias="startTime", examples=["18:00"])
    end_time: Optional[time] = Field(None, alias="endTime", examples=["19:30"])
    duration_minutes: int = Field(..., alias="durationMinutes", examples=[90])
    active: bool = True

    @model_validator(mode="after")
    def end_not_before_start(self) -> "RuleCreateRequest":
        if self.end_date is not None and self.end_date < self.start_date:
            raise ValueError("'endDate' must not be before 'startDate'.")
        return self


class RuleUpdates(ApiModel):
    resource_id: Optional[int] = Field(None, alias="resourceId")
    start_date: Optional[date] = Field(None, alias="startDate")
    end_date: Optional[date] = Field(None, alias="endDate")
    clear_end_date: bool = Field(False, alias="clearEndDate", description="Remove the end date.")
    interval_days: Optional[int] = Field(None, alias="intervalDays", ge=1)
    start_time: Optional[time] = Field(None, alias="startTime")
    duration_minutes: Optional[int] = Field(None, alias="durationMinutes")
    active: Optional[bool] = None


class RulePatchRequest(ApiModel):
    id: UUID
    updates: RuleUpdates


class RuleResponse(ApiModel):
    id: UUID
    owner_id: str = Field(alias="ownerId")
    resource_id: int = Field(alias="resourceId")
    start_date: date = Field(alias="startDate")
    end_date: Optional[date] = Field(None, alias="endDate")
    interval_days: int = Field(alias="intervalDays")
    start_time: time = Field(alias="startTime")
    end_time: time = Field(alias="endTime")
    duration_minutes: int = Field(alias="durationMinutes")
    active: bool
    created_at: datetime = Field(alias="createdAt")

    @classmethod
    def from_rule(cls, rule: RecurrenceRule) -> "RuleResponse":
        return cls(**rule.__dict__)


# ----------------------------
# Batch runs
# ----------------------------

class ItemErrorResponse(ApiModel):
    code: str
    message: str
    day: Optional[date] = Field(None, alias="date")
    rule_id: Optional[UUID] = Field(None, alias="ruleId")
    booking_id: Optional[UUID] = Field(None, alias="bookingId")

    @classmethod
    def from_item(cls, item: ItemError) -> "ItemErrorResponse":
        return cls(**item.__dict__)


class DateRange(BaseModel):
    start: date
    end: date


class PropagationResponse(ApiModel):
    dates_processed: int = Field(alias="datesProcessed")
    bookings_created: int = Field(alias="bookingsCreated")
    duplicates_removed: int = Field(0, alias="duplicatesRemoved")
    deleted: int = 0
    date_range: DateRange = Field(alias="dateRange")
    errors: List[ItemErrorResponse] = []


class RuleCreatedResponse(RuleResponse):
    propagation: PropagationResponse


class SweepResponse(ApiModel):
    day: date = Field(alias="date")
    marked: int
    errors: List[ItemErrorResponse] = []


class DateCoverage(BaseModel):
    expected: int
    actual: int


class CoverageResponse(ApiModel):
    date_range: DateRange = Field(alias="dateRange")
    active_rules: int = Field(alias="activeRules")
    expected: int
    actual: int
    coverage: str
    by_date: Dict[str, DateCoverage] = Field(alias="byDate")
    gaps: List[date]


class OwnerBookingsResponse(ApiModel):
    bookings: List[BookingResponse]
    recurring_rules: List[RuleResponse] = Field(alias="recurringRules")


class RuleDeletedResponse(ApiModel):
    message: str
    bookings_deleted: int = Field(alias="bookingsDeleted")


class HealthResponse(ApiModel):
    status: str
    message: str
    courts: int
    horizon_days: int = Field(alias="horizonDays")
