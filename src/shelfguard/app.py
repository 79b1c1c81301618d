"""FastAPI application for Shelfguard."""

import math
import time
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from typing import Any, Optional

import structlog
from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from starlette.exceptions import HTTPException as StarletteHTTPException

from shelfguard import __version__
from shelfguard.admission import (
    ClientKeyError,
    client_key_from_host,
    get_controller,
    reset_controller,
)
from shelfguard.config import get_settings
from shelfguard.filters import FailedValidation, Validator, read_int, read_str
from shelfguard.listings import (
    BOOKS,
    READING_LISTS,
    REVIEWS,
    CatalogUnavailable,
    ensure_valid,
    get_catalog,
    parse_filters,
)
from shelfguard.logging import setup_logging
from shelfguard.metrics import metrics
from shelfguard.models import ErrorResponse, HealthResponse

logger = structlog.get_logger()

SERVER_ERROR_MESSAGE = "the server encountered a problem and could not process your request"
NOT_FOUND_MESSAGE = "the requested resource could not be found"

LIST_ERRORS: dict[int | str, dict[str, Any]] = {
    status: {"model": ErrorResponse} for status in (404, 422, 429, 500, 503)
}


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan manager."""
    # Startup
    setup_logging()
    settings = get_settings()
    logger.info("shelfguard_starting", version=__version__, environment=settings.environment)

    controller = get_controller()
    logger.info(
        "limiter_configured",
        enabled=controller.enabled,
        rps=controller.refill_rate,
        burst=controller.burst,
    )

    yield

    # Shutdown
    reset_controller()
    logger.info("shelfguard_stopped")


app = FastAPI(
    title="Shelfguard",
    version=__version__,
    description="Request admission and query filtering for the book club API",
    lifespan=lifespan,
)


def error_response(
    status_code: int, message: Any, headers: Optional[dict[str, str]] = None
) -> JSONResponse:
    """Wrap ``message`` in the ``{"error": ...}`` envelope."""
    return JSONResponse(status_code=status_code, content={"error": message}, headers=headers)


def query_values(request: Request) -> dict[str, str]:
    """Query parameters, keeping the first value of a repeated key."""
    return dict(reversed(request.query_params.multi_items()))


# === Middleware ===
# Registered innermost first: admission runs inside request logging, which
# runs inside the metrics middleware.


@app.middleware("http")
async def admission_middleware(request: Request, call_next: Callable[[Request], Any]) -> Response:
    """Reject requests from clients that have run out of tokens."""
    controller = get_controller()
    if not controller.enabled:
        return await call_next(request)

    try:
        client_key = client_key_from_host(request.client.host if request.client else None)
    except ClientKeyError as e:
        logger.error("client_key_unavailable", error=str(e), path=request.url.path)
        return error_response(500, SERVER_ERROR_MESSAGE)

    if not controller.admit(client_key):
        retry_after = math.ceil(controller.retry_after(client_key))
        logger.info("rate_limit_exceeded", client=client_key, path=request.url.path)
        return error_response(
            429, "rate limit exceeded", headers={"Retry-After": str(max(retry_after, 1))}
        )

    response: Response = await call_next(request)
    return response


@app.middleware("http")
async def log_request_middleware(request: Request, call_next: Callable[[Request], Any]) -> Response:
    """Log the start and end of every request."""
    start_time = time.perf_counter()
    logger.info("request_started", method=request.method, url=str(request.url))

    response: Response = await call_next(request)

    logger.info(
        "request_completed",
        method=request.method,
        url=str(request.url),
        status=response.status_code,
        duration_ms=round((time.perf_counter() - start_time) * 1000, 3),
    )
    return response


@app.middleware("http")
async def metrics_middleware(request: Request, call_next: Callable[[Request], Any]) -> Response:
    """Record HTTP metrics for each request."""
    start_time = time.perf_counter()

    response: Response = await call_next(request)

    duration = time.perf_counter() - start_time
    route = request.scope.get("route")
    endpoint = getattr(route, "path", request.url.path)
    method = request.method

    metrics.http_requests_total.labels(
        method=method,
        endpoint=endpoint,
        status=response.status_code,
    ).inc()

    metrics.http_request_duration.labels(
        method=method,
        endpoint=endpoint,
    ).observe(duration)

    return response


# === Health endpoints ===


@app.get("/v1/healthcheck", response_model=HealthResponse, tags=["Health"])
async def healthcheck() -> HealthResponse:
    """Health check endpoint."""
    settings = get_settings()
    return HealthResponse(status="available", environment=settings.environment, version=__version__)


# === Metrics endpoint ===


@app.get("/metrics", tags=["Observability"])
async def prometheus_metrics() -> Response:
    """Prometheus metrics endpoint."""
    if not get_settings().metrics_enabled:
        return error_response(404, NOT_FOUND_MESSAGE)
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


# === List endpoints ===


@app.get("/v1/books", tags=["Books"], responses=LIST_ERRORS)
async def list_books(request: Request) -> dict[str, Any]:
    """List books, optionally filtered by title and author."""
    params = query_values(request)
    v = Validator()
    title = read_str(params, "title", "")
    author = read_str(params, "author", "")
    filters = parse_filters(params, BOOKS, v)
    ensure_valid(v, resource="books")

    books, total = await get_catalog().list_books(title, author, filters)
    return {"books": books, "metadata": filters.metadata(total).model_dump()}


@app.get("/v1/lists", tags=["Reading Lists"], responses=LIST_ERRORS)
async def list_reading_lists(request: Request) -> dict[str, Any]:
    """List reading lists."""
    v = Validator()
    filters = parse_filters(query_values(request), READING_LISTS, v)
    ensure_valid(v, resource="reading_lists")

    lists, total = await get_catalog().list_reading_lists(filters)
    return {"reading_lists": lists, "metadata": filters.metadata(total).model_dump()}


@app.get("/v1/books/{book_id}/reviews", tags=["Reviews"], responses=LIST_ERRORS)
async def list_book_reviews(book_id: int, request: Request) -> dict[str, Any]:
    """List reviews of a book, optionally filtered by rating and author."""
    params = query_values(request)
    v = Validator()
    rating = read_int(params, "rating", 0, v)
    author = read_str(params, "author", "")
    filters = parse_filters(params, REVIEWS, v)
    ensure_valid(v, resource="reviews")

    reviews, total = await get_catalog().list_reviews(
        filters, book_id=book_id, rating=rating or 0, author=author
    )
    return {"reviews": reviews, "metadata": filters.metadata(total).model_dump()}


@app.get("/v1/users/{user_id}/lists", tags=["Users"], responses=LIST_ERRORS)
async def list_user_reading_lists(user_id: int, request: Request) -> dict[str, Any]:
    """List the reading lists owned by a user."""
    v = Validator()
    filters = parse_filters(query_values(request), READING_LISTS, v)
    ensure_valid(v, resource="reading_lists")

    lists, total = await get_catalog().list_reading_lists(filters, user_id=user_id)
    return {"reading_lists": lists, "metadata": filters.metadata(total).model_dump()}


@app.get("/v1/users/{user_id}/reviews", tags=["Users"], responses=LIST_ERRORS)
async def list_user_reviews(user_id: int, request: Request) -> dict[str, Any]:
    """List the reviews written by a user."""
    v = Validator()
    filters = parse_filters(query_values(request), REVIEWS, v)
    ensure_valid(v, resource="reviews")

    reviews, total = await get_catalog().list_reviews(filters, user_id=user_id)
    return {"reviews": reviews, "metadata": filters.metadata(total).model_dump()}


# === Error handlers ===


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Unknown routes and unsupported methods."""
    if exc.status_code == 404:
        message = NOT_FOUND_MESSAGE
    elif exc.status_code == 405:
        message = f"the {request.method} method is not supported for this resource"
    else:
        message = exc.detail
    return error_response(exc.status_code, message, headers=exc.headers)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """A malformed path id names no resource, so it is reported as not found."""
    errors = exc.errors()
    if any(error["loc"][0] == "path" for error in errors):
        return error_response(404, NOT_FOUND_MESSAGE)
    v = Validator()
    for error in errors:
        v.add_error(str(error["loc"][-1]), error["msg"])
    return error_response(422, v.errors)


@app.exception_handler(FailedValidation)
async def failed_validation_handler(request: Request, exc: FailedValidation) -> JSONResponse:
    """Report every rejected query parameter at once."""
    return error_response(422, exc.as_dict())


@app.exception_handler(CatalogUnavailable)
async def catalog_unavailable_handler(request: Request, exc: CatalogUnavailable) -> JSONResponse:
    """The catalog backend has not been wired in."""
    logger.error("catalog_unavailable", path=request.url.path)
    return error_response(503, "the catalog is not available")


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle unexpected exceptions."""
    logger.exception("unhandled_exception", error=str(exc), path=request.url.path)
    return error_response(500, SERVER_ERROR_MESSAGE)


def create_app() -> FastAPI:
    """Factory function to create the app."""
    return app
