from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from loguru import logger

from intelliconsult.api.routes import (
    admin_router,
    appointments_router,
    health_router,
    payments_router,
)
from intelliconsult.booking.factory import build_booking_service
from intelliconsult.booking.service import BookingService
from intelliconsult.config import AppConfig
from intelliconsult.domain.exceptions import (
    AppointmentNotFoundError,
    AppointmentNotPayableError,
    BookingError,
    DoctorNotFoundError,
    InvalidTransitionError,
    NotAuthorizedError,
    PatientNotFoundError,
    PaymentGatewayError,
    SlotConflictError,
    StorageUnavailableError,
    ValidationError,
)

SLOT_TAKEN_MESSAGE = "This time slot is no longer available. Please select another."

# Most specific first; the first isinstance match wins.
_ERROR_STATUS: list[tuple[type[BookingError], int, bool]] = [
    (SlotConflictError, status.HTTP_409_CONFLICT, True),
    (DoctorNotFoundError, status.HTTP_404_NOT_FOUND, False),
    (PatientNotFoundError, status.HTTP_404_NOT_FOUND, False),
    (AppointmentNotFoundError, status.HTTP_404_NOT_FOUND, False),
    (ValidationError, status.HTTP_400_BAD_REQUEST, False),
    (NotAuthorizedError, status.HTTP_403_FORBIDDEN, False),
    (InvalidTransitionError, status.HTTP_409_CONFLICT, False),
    (AppointmentNotPayableError, status.HTTP_409_CONFLICT, False),
    (PaymentGatewayError, status.HTTP_502_BAD_GATEWAY, True),
    (StorageUnavailableError, status.HTTP_503_SERVICE_UNAVAILABLE, True),
]


def error_response(exc: BookingError) -> JSONResponse:
    for error_type, status_code, retryable in _ERROR_STATUS:
        if isinstance(exc, error_type):
            break
    else:
        status_code, retryable = status.HTTP_500_INTERNAL_SERVER_ERROR, False

    message = SLOT_TAKEN_MESSAGE if isinstance(exc, SlotConflictError) else str(exc)
    return JSONResponse(
        status_code=status_code,
        content={"error": type(exc).__name__, "message": message, "retryable": retryable},
    )


async def booking_error_handler(request: Request, exc: BookingError) -> JSONResponse:
    response = error_response(exc)
    if response.status_code >= 500:
        logger.error("{} {} failed: {}", request.method, request.url.path, exc)
    else:
        logger.info("{} {} rejected: {}", request.method, request.url.path, exc)
    return response


def create_app(service: BookingService | None = None, config: AppConfig | None = None) -> FastAPI:
    """Build the HTTP app.

    When ``service`` is given it is used as is and left open on shutdown, which
    is how tests drive the app. Otherwise the service is built from ``config``
    (or the environment) on startup and closed on shutdown.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        if service is not None:
            app.state.service = service
            yield
            return

        app.state.service = await build_booking_service(config or AppConfig())
        logger.info("Booking service ready")
        try:
            yield
        finally:
            await app.state.service.close()
            logger.info("Booking service closed")

    app = FastAPI(title="IntelliConsult Booking API", version="0.1.0", lifespan=lifespan)
    if service is not None:
        app.state.service = service

    app.add_exception_handler(BookingError, booking_error_handler)  # type: ignore[arg-type]
    app.include_router(appointments_router)
    app.include_router(payments_router)
    app.include_router(admin_router)
    app.include_router(health_router)
    return app
