from __future__ import annotations

from datetime import date
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request, status

from errors import Unauthorized
from models import (
    BookingCreateRequest,
    BookingPatchRequest,
    BookingResponse,
    CoverageResponse,
    DateCoverage,
    DateRange,
    HealthResponse,
    ItemErrorResponse,
    OwnerBookingsResponse,
    PropagationResponse,
    RuleCreatedResponse,
    RuleCreateRequest,
    RuleDeletedResponse,
    RulePatchRequest,
    RuleResponse,
    SweepResponse,
)
from propagation import PropagationReport
from service import SchedulingService

router = APIRouter()


# ----------------------------
# Dependencies
# ----------------------------

def get_service(request: Request) -> SchedulingService:
    return request.app.state.service


def require_admin(request: Request) -> None:
    check = request.app.state.admin_validator.validate(request)
    if not check.is_admin:
        raise Unauthorized(check.error or "Unauthorized")


def require_trigger(request: Request) -> None:
    check = request.app.state.admin_validator.validate_trigger(request)
    if not check.is_admin:
        raise Unauthorized(check.error or "Unauthorized")


def _propagation_response(report: PropagationReport) -> PropagationResponse:
    return PropagationResponse(
        dates_processed=report.dates_processed,
        bookings_created=report.bookings_created,
        duplicates_removed=report.duplicates_removed,
        deleted=report.deleted,
        date_range=DateRange(start=report.start, end=report.end),
        errors=[ItemErrorResponse.from_item(e) for e in report.errors],
    )


def window_days(
    days: Optional[int] = Query(None, ge=1, le=60, description="Days after today to cover. Defaults to the configured horizon."),
) -> Optional[int]:
    return days


# ----------------------------
# Bookings
# ----------------------------

@router.get(
    "/bookings",
    response_model=list[BookingResponse],
    summary="List a day's bookings",
    dependencies=[Depends(require_admin)],
)
def list_bookings(
    day: date = Query(..., alias="date", description="Day to list (YYYY-MM-DD)."),
    service: SchedulingService = Depends(get_service),
):
    return [BookingResponse.from_booking(b) for b in service.schedule_for_date(day)]


@router.post(
    "/bookings",
    response_model=BookingResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Book a court",
)
def create_booking(
    request: Request,
    payload: BookingCreateRequest,
    service: SchedulingService = Depends(get_service),
):
    is_admin = request.app.state.admin_validator.validate(request).is_admin
    return BookingResponse.from_booking(service.create_booking(payload, is_admin=is_admin))


@router.patch(
    "/bookings",
    response_model=BookingResponse,
    summary="Change a booking's status or edit it",
    dependencies=[Depends(require_admin)],
)
def patch_booking(payload: BookingPatchRequest, service: SchedulingService = Depends(get_service)):
    if payload.updates is not None:
        booking = service.update_booking(payload.id, payload.updates)
    else:
        booking = service.set_flag(payload.id, payload.field, payload.value)
    return BookingResponse.from_booking(booking)


@router.get(
    "/public-bookings",
    response_model=list[BookingResponse],
    summary="A day's non-cancelled bookings",
)
def list_public_bookings(
    day: date = Query(..., alias="date"),
    service: SchedulingService = Depends(get_service),
):
    return [BookingResponse.from_booking(b) for b in service.public_schedule(day)]


@router.get(
    "/user-bookings",
    response_model=OwnerBookingsResponse,
    summary="A user's bookings and active recurring rules",
)
def list_user_bookings(
    owner_id: str = Query(..., alias="ownerId", min_length=1),
    service: SchedulingService = Depends(get_service),
):
    bookings, rules = service.owner_overview(owner_id)
    return OwnerBookingsResponse(
        bookings=[BookingResponse.from_booking(b) for b in bookings],
        recurring_rules=[RuleResponse.from_rule(r) for r in rules],
    )


# ----------------------------
# Recurring rules
# ----------------------------

@router.get(
    "/recurring-rules",
    response_model=list[RuleResponse],
    summary="List recurring rules, newest first",
    dependencies=[Depends(require_admin)],
)
def list_rules(service: SchedulingService = Depends(get_service)):
    return [RuleResponse.from_rule(r) for r in service.list_rules()]


@router.post(
    "/recurring-rules",
    response_model=RuleCreatedResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a recurring rule and book its upcoming dates",
    dependencies=[Depends(require_admin)],
)
def create_rule(payload: RuleCreateRequest, service: SchedulingService = Depends(get_service)):
    rule, report = service.create_rule(payload)
    return RuleCreatedResponse(**rule.__dict__, propagation=_propagation_response(report))


@router.patch(
    "/recurring-rules",
    response_model=RuleResponse,
    summary="Update or toggle a recurring rule",
    dependencies=[Depends(require_admin)],
)
def patch_rule(payload: RulePatchRequest, service: SchedulingService = Depends(get_service)):
    return RuleResponse.from_rule(service.update_rule(payload.id, payload.updates))


@router.delete(
    "/recurring-rules",
    response_model=RuleDeletedResponse,
    summary="Delete a recurring rule and all of its bookings",
    dependencies=[Depends(require_admin)],
)
def delete_rule(rule_id: UUID = Query(..., alias="id"), service: SchedulingService = Depends(get_service)):
    deleted = service.delete_rule(rule_id)
    return RuleDeletedResponse(message="Recurring rule deleted successfully", bookings_deleted=deleted)


# ----------------------------
# Maintenance
# ----------------------------

@router.post(
    "/propagation/run",
    response_model=PropagationResponse,
    summary="Fill the rolling horizon with recurring bookings",
    dependencies=[Depends(require_trigger)],
)
def run_propagation(days: Optional[int] = Depends(window_days), service: SchedulingService = Depends(get_service)):
    return _propagation_response(service.run_propagation(days))


@router.post(
    "/propagation/regenerate",
    response_model=PropagationResponse,
    summary="Delete and rebuild every recurring booking in the horizon",
    dependencies=[Depends(require_admin)],
)
def regenerate(days: Optional[int] = Depends(window_days), service: SchedulingService = Depends(get_service)):
    return _propagation_response(service.regenerate(days))


@router.get(
    "/propagation/status",
    response_model=CoverageResponse,
    summary="Expected vs. materialized recurring bookings per day",
    dependencies=[Depends(require_admin)],
)
def propagation_status(days: Optional[int] = Depends(window_days), service: SchedulingService = Depends(get_service)):
    report = service.coverage(days)
    return CoverageResponse(
        date_range=DateRange(start=report.start, end=report.end),
        active_rules=report.active_rules,
        expected=report.expected,
        actual=report.actual,
        coverage=report.coverage,
        by_date={
            day.isoformat(): DateCoverage(expected=expected, actual=actual)
            for day, (expected, actual) in report.by_date.items()
        },
        gaps=report.gaps,
    )


@router.post(
    "/completion/sweep",
    response_model=SweepResponse,
    summary="Mark today's finished bookings as present",
    dependencies=[Depends(require_trigger)],
)
def completion_sweep(service: SchedulingService = Depends(get_service)):
    report = service.sweep()
    return SweepResponse(
        day=report.date,
        marked=report.marked,
        errors=[ItemErrorResponse.from_item(e) for e in report.errors],
    )


@router.get("/health", response_model=HealthResponse, summary="Service health")
def health(request: Request):
    settings = request.app.state.settings
    return HealthResponse(
        status="healthy",
        message="All systems operational",
        courts=settings.court_count,
        horizon_days=settings.horizon_days,
    )
