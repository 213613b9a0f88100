from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from auth import AdminValidator, BearerTokenValidator, OwnerDirectory
from clock import Clock
from config import Settings
from errors import ROUTE_NOT_FOUND, VALIDATION_ERROR, SchedulingError
from InMemoryDatabase import InMemoryRepository, Repository
from routes import router
from service import SchedulingService

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

logging.getLogger("httpx").setLevel(logging.WARNING)


DESCRIPTION = (
    "Court booking with recurring reservations.\n\n"
    "## Booking rules\n"
    "- **No overlaps per court**: bookings use half-open intervals **[start, end)**.\n"
    "- **Grid**: start times sit on the slot grid; durations are 60, 90 or 120 minutes.\n"
    "- **Holds**: bookings made without operator confirmation are *pending* and hold the court "
    "only until their `holdExpiry`.\n"
    "- **Courts**: omit `resourceId` to get the lowest-numbered free court.\n\n"
    "## Recurring rules\n"
    "- A rule books its court every `intervalDays` days from `startDate` to `endDate`.\n"
    "- The next days of every active rule are kept booked. Reading a day also books it.\n"
    "- Cancelling one occurrence is permanent: it is never booked again.\n\n"
    "## Timezones\n"
    "- Dates and times are business local time, a fixed offset from UTC."
)


def create_app(
    settings: Optional[Settings] = None,
    repository: Optional[Repository] = None,
    clock: Optional[Clock] = None,
    admin_validator: Optional[AdminValidator] = None,
    owner_directory: Optional[OwnerDirectory] = None,
) -> FastAPI:
    settings = settings or Settings()
    logging.getLogger().setLevel(settings.log_level.upper())

    clock = clock or Clock(settings.business_utc_offset_hours)
    service = SchedulingService(repository or InMemoryRepository(), settings, clock, owner_directory)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Application starting up...")
        # Propagation and sweeps run only when the timer calls their endpoints.
        logger.info(
            f"🎾 {settings.court_count} courts, {settings.horizon_days}-day horizon, "
            f"UTC{settings.business_utc_offset_hours:+d}"
        )
        yield
        logger.info("Application shutting down...")

    app = FastAPI(
        title="Court Booking API",
        version="1.0.0",
        description=DESCRIPTION,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.service = service
    app.state.admin_validator = admin_validator or BearerTokenValidator(settings.admin_token, settings.cron_secret)

    @app.exception_handler(SchedulingError)
    async def scheduling_error_handler(request: Request, exc: SchedulingError):
        logger.warning(f"{request.method} {request.url.path} rejected: {exc.code} {exc.message}")
        return exc.to_response()

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        details = [{"loc": [str(part) for part in e.get("loc", ())], "msg": e.get("msg", "")} for e in exc.errors()]
        logger.warning(f"Validation error for {request.url.path}: {details}")
        message = "; ".join(f"{'.'.join(d['loc'][1:]) or d['loc'][0]}: {d['msg']}" for d in details if d["loc"])
        return VALIDATION_ERROR.to_response(message=message or None, extra={"details": details})

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        if exc.status_code == 404:
            return ROUTE_NOT_FOUND.to_response()
        return JSONResponse(status_code=exc.status_code, content={"error": str(exc.detail), "code": "HTTP_ERROR"})

    app.include_router(router)
    return app


app = create_app()
