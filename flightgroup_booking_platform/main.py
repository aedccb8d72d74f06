"""FastAPI application setup and configuration."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from flightgroup_booking_platform.config import settings
from flightgroup_booking_platform.api import api_router
from flightgroup_booking_platform.database import init_database, close_database
from flightgroup_booking_platform.middleware import (
    ErrorHandlerMiddleware,
    LoggingMiddleware
)
from flightgroup_booking_platform.utils.logging_config import setup_logging

# Set up logging
setup_logging(
    log_level="DEBUG" if settings.debug else settings.log_level,
    log_file="logs/flightgroup.log" if settings.environment == "production" else None,
    enable_json_logging=settings.enable_json_logging or settings.environment == "production",
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup and shutdown events."""
    # Startup
    logger.info("Starting Flight-Group Booking Platform")
    await init_database()
    logger.info("Database initialized successfully")
    yield
    # Shutdown
    logger.info("Shutting down Flight-Group Booking Platform")
    await close_database()


app = FastAPI(
    title="Flight-Group Booking Platform API",
    description="""
    ## Flight-Group Booking Platform

    Agencies request seats on pre-negotiated flight groups; airline staff
    approve, collect payment and issue tickets.

    ### Booking lifecycle

    `REQUESTED -> APPROVED -> PAYMENT_PENDING -> PAID -> ISSUED`, with
    `REJECTED`, `CANCELLED` and `EXPIRED` as exits. Seats are held from
    the moment a booking is requested and are released when it leaves the
    lifecycle without being issued.

    ### Authentication

    Send a JWT in the Authorization header: `Authorization: Bearer <token>`.
    The token carries the user id, the agency id and the role (ADMIN or AGENT).

    ### Error Handling

    ```json
    {
      "error": {
        "error_code": "ERROR_CODE",
        "message": "Human readable error message",
        "details": {},
        "suggestions": []
      },
      "error_id": "...",
      "timestamp": "..."
    }
    ```
    """,
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_tags=[
        {
            "name": "bookings",
            "description": "Booking request lifecycle operations"
        },
        {
            "name": "flight-groups",
            "description": "Flight group seat availability"
        },
        {
            "name": "admin",
            "description": "Administrative operations"
        },
        {
            "name": "health",
            "description": "System health endpoints"
        }
    ],
    lifespan=lifespan,
)

# Middleware stack (the last one added runs first)

# 1. Error handling middleware, innermost so error envelopes still get a request id
app.add_middleware(
    ErrorHandlerMiddleware,
    debug=settings.debug
)

# 2. Logging middleware
if settings.enable_request_logging:
    app.add_middleware(
        LoggingMiddleware,
        log_requests=True,
        log_responses=True,
    )

# 3. CORS middleware
if settings.debug:
    cors_origins = ["*"]
    cors_allow_credentials = False  # Cannot use credentials with wildcard origins
else:
    cors_origins = settings.cors_origins
    cors_allow_credentials = settings.cors_allow_credentials

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=cors_allow_credentials,
    allow_methods=settings.cors_allow_methods,
    allow_headers=settings.cors_allow_headers,
    expose_headers=settings.cors_expose_headers
)

# Include API routes
app.include_router(api_router)


@app.get("/", tags=["health"])
async def root():
    """Basic information about the API."""
    return {
        "message": "Flight-Group Booking Platform API",
        "version": "1.0.0",
        "docs_url": "/docs",
        "redoc_url": "/redoc",
        "status": "operational"
    }


@app.get("/health", tags=["health"])
async def health_check():
    """Basic health check for uptime monitoring."""
    return {"status": "healthy", "service": "flightgroup-booking-platform"}
