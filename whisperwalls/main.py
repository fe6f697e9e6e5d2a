"""Whisper Walls FastAPI application.

Assembles the message, discovery, moderation and mood routers into a single
FastAPI instance, maps typed service failures to RFC 7807 problem bodies and
runs the expiration sweeper for the lifetime of the process.
"""

import logging
from contextlib import asynccontextmanager
from http import HTTPStatus

import httpx
from fastapi import APIRouter, FastAPI, HTTPException, Request, status
from fastapi.exception_handlers import request_validation_exception_handler
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from httpcore import ConnectError as HttpcoreConnectError

from whisperwalls.api.v1.endpoints import discovery, messages, moderation, mood
from whisperwalls.core.config import settings
from whisperwalls.core.errors import RateLimited, WhisperError
from whisperwalls.db.astra_client import init_astra_db
from whisperwalls.models.common import ProblemDetail
from whisperwalls.services.registry import get_registry
from whisperwalls.utils.observability import configure_observability

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    if settings.STORE_BACKEND.lower() == "astra":
        await init_astra_db()

    registry = get_registry()
    if settings.SWEEPER_ENABLED:
        registry.sweeper.start()

    yield

    await registry.sweeper.stop()
    cancelled = await registry.scheduler.cancel_all()
    if cancelled:
        logger.info("Cancelled %d in-flight background jobs on shutdown", cancelled)


app = FastAPI(
    title="Whisper Walls Backend",
    version=settings.APP_VERSION,
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# CORS middleware
#
# See: https://fastapi.tiangolo.com/tutorial/cors/
# ---------------------------------------------------------------------------

logger.debug(f"CORS origins: {settings.parsed_cors_origins}")

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.parsed_cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# API router for v1
api_router_v1 = APIRouter(prefix=settings.API_V1_STR)
api_router_v1.include_router(messages.router)
api_router_v1.include_router(discovery.router)
api_router_v1.include_router(moderation.router)
api_router_v1.include_router(mood.router)

app.include_router(api_router_v1)

configure_observability(app)


def _problem_response(
    request: Request,
    status_code: int,
    detail: str | None,
    code: str | None = None,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    """Build an RFC7807-style JSON error body."""

    return JSONResponse(
        status_code=status_code,
        content=ProblemDetail(
            type="about:blank",
            title=HTTPStatus(status_code).phrase,
            status=status_code,
            detail=detail,
            instance=str(request.url),
            code=code,
        ).model_dump(exclude_none=True),
        headers=headers,
    )


@app.exception_handler(WhisperError)
async def whisper_error_handler(request: Request, exc: WhisperError):
    headers = None
    if isinstance(exc, RateLimited):
        headers = {"Retry-After": exc.retry_after_header}
    if exc.status_code >= 500:
        logger.warning("Service failure on %s: %s", request.url.path, exc.detail)
    return _problem_response(request, exc.status_code, exc.detail, exc.code, headers)


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    return _problem_response(
        request, exc.status_code, exc.detail, headers=getattr(exc, "headers", None)
    )


@app.exception_handler(httpx.ConnectError)
async def httpx_connect_error_handler(request: Request, exc: httpx.ConnectError):
    logger.warning("AstraDB connectivity problem: %s", exc)
    logger.debug("Detailed stack trace for connectivity issue:", exc_info=True)
    return _problem_response(
        request,
        status.HTTP_503_SERVICE_UNAVAILABLE,
        "Unable to reach data store. Please try again later.",
    )


@app.exception_handler(HttpcoreConnectError)
async def httpcore_connect_error_handler(request: Request, exc: HttpcoreConnectError):
    logger.warning("AstraDB connectivity problem: %s", exc)
    logger.debug("Detailed stack trace for connectivity issue:", exc_info=True)
    return _problem_response(
        request,
        status.HTTP_503_SERVICE_UNAVAILABLE,
        "Unable to reach data store. Please try again later.",
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception):
    logger.error("Unhandled exception: %s", exc, exc_info=True)
    return _problem_response(
        request,
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        "An unexpected internal server error occurred.",
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Log validation errors and return FastAPI's default 422 response."""
    logger.error("Request validation failed: %s", exc.errors())
    return await request_validation_exception_handler(request, exc)


@app.get("/", summary="Health check")
async def root():
    return {"message": f"Welcome to {settings.PROJECT_NAME}!"}
