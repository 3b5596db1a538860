"""
FastAPI API Service Entry Point
"""

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from api.routes import appointments, availability, calendar, stripe
from booking.errors import BookingError, ErrorKind
from shared.circuit_breaker import get_breaker_status
from shared.config import get_settings
from shared.logging_config import configure_logging
from shared.redis_client import close_redis_client

# Configure structured JSON logging on startup
configure_logging()
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Booking Engine API",
    version="1.0.0",
)

settings = get_settings()
origins = settings.CORS_ORIGINS.split(",")

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["*"],
)

app.include_router(availability.router, tags=["availability"])
app.include_router(appointments.router, tags=["appointments"])
app.include_router(calendar.router, tags=["calendar"])
app.include_router(stripe.router, prefix="/webhook", tags=["webhooks"])

# Error kind -> HTTP status
STATUS_BY_KIND = {
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.VALIDATION: 400,
    ErrorKind.SLOT_CONFLICT: 409,
    ErrorKind.NO_PROFESSIONAL_AVAILABLE: 409,
    ErrorKind.PAYMENT_REQUIRED: 402,
    ErrorKind.INTERNAL: 503,
}


@app.exception_handler(BookingError)
async def booking_error_handler(request: Request, exc: BookingError) -> JSONResponse:
    """Map booking errors to the failure payload with a kind-specific status."""
    status_code = STATUS_BY_KIND.get(exc.kind, 500)
    log = logger.error if status_code >= 500 else logger.info
    log(
        f"Booking error {exc.error_code} on {request.method} {request.url.path}",
        extra={"request_path": request.url.path},
    )
    return JSONResponse(status_code=status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 400 with validation error details."""
    return JSONResponse(
        status_code=400,
        content={
            "success": False,
            "error_code": "VALIDATION_ERROR",
            "error_message": "Datos de la solicitud inválidos",
            "details": {"errors": _jsonable_errors(exc)},
        },
    )


def _jsonable_errors(exc: RequestValidationError) -> list[dict[str, str]]:
    return [
        {"loc": ".".join(str(part) for part in error.get("loc", ())), "msg": str(error.get("msg", ""))}
        for error in exc.errors()
    ]


@app.on_event("shutdown")
async def shutdown_clients() -> None:
    await close_redis_client()


@app.get("/health")
async def health_check() -> JSONResponse:
    """
    Health check endpoint for Docker health checks and monitoring.

    Checks:
    - Redis connectivity (PING command)
    - PostgreSQL connectivity (SELECT 1 query)

    Returns:
        200 OK if all systems healthy
        503 Service Unavailable if degraded
    """
    from sqlalchemy import text

    from database.connection import get_async_session
    from shared.redis_client import get_redis_client

    health_status = {
        "status": "healthy",
        "redis": "unknown",
        "postgres": "unknown",
    }
    status_code = 200

    try:
        redis_client = get_redis_client()
        await redis_client.ping()
        health_status["redis"] = "connected"
    except Exception:
        logger.warning("Health check: Redis unreachable", exc_info=True)
        health_status["redis"] = "disconnected"
        health_status["status"] = "degraded"
        status_code = 503

    try:
        async with get_async_session() as session:
            await session.execute(text("SELECT 1"))
            health_status["postgres"] = "connected"
    except Exception:
        logger.warning("Health check: PostgreSQL unreachable", exc_info=True)
        health_status["postgres"] = "disconnected"
        health_status["status"] = "degraded"
        status_code = 503

    health_status["circuit_breakers"] = get_breaker_status()
    return JSONResponse(status_code=status_code, content=health_status)


@app.get("/")
async def root() -> dict[str, str]:
    """Root endpoint"""
    return {"message": "Booking Engine API - Use /health for health checks"}
