"""Meetpoint FastAPI Application.

Main entry point for the backend API server.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from meetpoint.api import router
from meetpoint.config import Settings
from meetpoint.exceptions import GeocodingFailure, InvalidInput, RateLimitExceeded, TierRequired
from meetpoint.models import AppError, ErrorCode, RecoveryOption
from meetpoint.services.meetpoint import create_meetpoint_service

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    datefmt="%H:%M:%S",
)

logger = logging.getLogger(__name__)

settings = Settings.from_env()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    # Startup: tests may install their own service first
    owned = None
    if getattr(app.state, "meetpoint", None) is None:
        owned = create_meetpoint_service(settings)
        app.state.meetpoint = owned
    yield
    # Shutdown
    if owned is not None:
        await owned.close()
        app.state.meetpoint = None


app = FastAPI(
    title="Meetpoint API",
    description="Fair meeting points and nearby venues for two or more parties",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS configuration
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _error_response(status_code: int, error: AppError, headers: dict[str, str] | None = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "error": error.model_dump(mode="json")},
        headers=headers,
    )


# Global exception handlers
@app.exception_handler(RequestValidationError)
@app.exception_handler(ValidationError)
async def validation_exception_handler(request: Request, exc: Exception):
    """Handle request body and Pydantic validation errors."""
    return _error_response(422, AppError(
        code=ErrorCode.VALIDATION_ERROR,
        message=str(exc),
        user_message="Invalid request format. Please check your input.",
    ))


@app.exception_handler(InvalidInput)
async def invalid_input_handler(request: Request, exc: InvalidInput):
    return _error_response(422, AppError(
        code=ErrorCode.INVALID_INPUT,
        message=str(exc),
        user_message="Invalid request. Please check your input and try again.",
    ))


@app.exception_handler(GeocodingFailure)
async def geocoding_failure_handler(request: Request, exc: GeocodingFailure):
    params = {"origin_index": exc.origin_index} if exc.origin_index is not None else None
    return _error_response(422, AppError(
        code=ErrorCode.GEOCODING_FAILED,
        message=str(exc),
        user_message=f"We couldn't find '{exc.address}'. Try a more specific address.",
        recovery_options=[
            RecoveryOption(label="Edit address", action="edit_origin", params=params),
        ],
    ))


@app.exception_handler(TierRequired)
async def tier_required_handler(request: Request, exc: TierRequired):
    return _error_response(403, AppError(
        code=ErrorCode.TIER_REQUIRED,
        message=str(exc),
        user_message="Meeting more than two people needs a premium plan.",
        recovery_options=[RecoveryOption(label="Upgrade", action="upgrade")],
    ))


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded):
    retry_after = max(1, round(exc.retry_after))
    return _error_response(
        429,
        AppError(
            code=ErrorCode.RATE_LIMITED,
            message=str(exc),
            user_message=f"Too many requests. Please wait {retry_after} seconds and try again.",
            recovery_options=[
                RecoveryOption(label="Retry", action="retry", params={"after_seconds": retry_after}),
            ],
        ),
        headers={"Retry-After": str(retry_after)},
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """Handle unexpected errors."""
    logger.exception("Unhandled error")
    return _error_response(500, AppError(
        code=ErrorCode.API_ERROR,
        message=str(exc),
        user_message="Something went wrong. Please try again.",
        recovery_options=[RecoveryOption(label="Retry", action="retry")],
    ))


# Include API routes
app.include_router(router, prefix="/api")


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy"}
