"""FastAPI application exposing the expense tracking endpoints.

Run with ``expense-tracker serve`` or
``uvicorn --factory expense_tracker.server:create_app``.
"""
from __future__ import annotations

import logging
import time
from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Request, Response, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.datastructures import Headers
from starlette.exceptions import HTTPException as StarletteHTTPException

from . import __version__, schemas
from .config import Settings, load_settings
from .database import Database
from .errors import NotFoundError, StorageError, ValidationError
from .logging import configure_logging
from .store import ExpenseStore

LOG = logging.getLogger(__name__)

API_PREFIXES = ("", "/api")
ERROR_RESPONSES = {
    status.HTTP_400_BAD_REQUEST: {"model": schemas.ErrorRead},
    status.HTTP_500_INTERNAL_SERVER_ERROR: {"model": schemas.ErrorRead},
}


def get_store(request: Request) -> ExpenseStore:
    """FastAPI dependency returning the store bound to the application."""
    return request.app.state.store


router = APIRouter()


@router.get("/expenses", response_model=List[schemas.ExpenseRead], responses=ERROR_RESPONSES)
def list_expenses(store: ExpenseStore = Depends(get_store)) -> List[schemas.ExpenseRead]:
    return store.list()


@router.post(
    "/expenses",
    response_model=schemas.ExpenseRead,
    status_code=status.HTTP_201_CREATED,
    responses=ERROR_RESPONSES,
)
def create_expense(expense_in: schemas.ExpenseCreate, store: ExpenseStore = Depends(get_store)) -> schemas.ExpenseRead:
    return store.create(
        description=expense_in.description,
        amount=expense_in.amount,
        category=expense_in.category,
        date=expense_in.date,
    )


@router.get(
    "/expenses/{expense_id}",
    response_model=schemas.ExpenseRead,
    responses={status.HTTP_404_NOT_FOUND: {"model": schemas.ErrorRead}, **ERROR_RESPONSES},
)
def get_expense(expense_id: int, store: ExpenseStore = Depends(get_store)) -> schemas.ExpenseRead:
    try:
        return store.get(expense_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc


@router.put("/expenses/{expense_id}", response_model=schemas.ExpenseRead, responses=ERROR_RESPONSES)
def update_expense(
    expense_id: int,
    update_in: schemas.ExpenseUpdate,
    store: ExpenseStore = Depends(get_store),
) -> schemas.ExpenseRead:
    try:
        return store.update(
            expense_id,
            description=update_in.description,
            amount=update_in.amount,
            category=update_in.category,
        )
    except NotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc


@router.delete(
    "/expenses/{expense_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    response_class=Response,
    responses={status.HTTP_404_NOT_FOUND: {"model": schemas.ErrorRead}, **ERROR_RESPONSES},
)
def delete_expense(expense_id: int, store: ExpenseStore = Depends(get_store)) -> Response:
    try:
        store.delete(expense_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get(
    "/health",
    tags=["system"],
    response_model=schemas.HealthRead,
    response_model_exclude_none=True,
    responses={status.HTTP_500_INTERNAL_SERVER_ERROR: {"model": schemas.HealthRead}},
)
def healthcheck(request: Request, store: ExpenseStore = Depends(get_store)):
    uptime = round(time.monotonic() - request.app.state.started_at, 3)
    try:
        store.ping()
    except StorageError as exc:
        LOG.error("Health check failed: %s", exc)
        body = schemas.HealthRead(status="unhealthy", db="disconnected", uptime=uptime)
        if request.app.state.settings.debug:
            body.error = str(exc)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=body.model_dump(exclude_none=True),
        )
    return schemas.HealthRead(status="healthy", db="connected", uptime=uptime)


class JSONCORSMiddleware(CORSMiddleware):
    """CORS middleware whose rejected preflights carry the JSON ``{error}`` body."""

    def preflight_response(self, request_headers: Headers) -> Response:
        response = super().preflight_response(request_headers)
        if response.status_code == status.HTTP_200_OK:
            return response
        headers = {
            key: value
            for key, value in response.headers.items()
            if key not in {"content-length", "content-type"}
        }
        if not self.is_allowed_origin(request_headers["origin"]):
            return JSONResponse(
                status_code=status.HTTP_403_FORBIDDEN,
                content={"error": "Origin not allowed"},
                headers=headers,
            )
        return JSONResponse(
            status_code=response.status_code,
            content={"error": response.body.decode("utf-8")},
            headers=headers,
        )


def _error_body(request: Request, error: str, exc: Exception | None = None) -> dict[str, str]:
    body = {"error": error}
    if exc is not None and request.app.state.settings.debug:
        body["message"] = str(exc)
    return body


def _register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(StarletteHTTPException)
    async def http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        if exc.status_code == status.HTTP_404_NOT_FOUND and exc.detail == "Not Found":
            message = "Endpoint not found"
        elif exc.status_code == status.HTTP_405_METHOD_NOT_ALLOWED:
            message = "Method not allowed"
        else:
            message = str(exc.detail)
        return JSONResponse(status_code=exc.status_code, content={"error": message}, headers=exc.headers)

    @app.exception_handler(RequestValidationError)
    async def request_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"error": schemas.describe_errors(exc.errors())},
        )

    @app.exception_handler(ValidationError)
    async def validation_error(request: Request, exc: ValidationError) -> JSONResponse:
        return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"error": str(exc)})

    @app.exception_handler(NotFoundError)
    async def not_found_error(request: Request, exc: NotFoundError) -> JSONResponse:
        return JSONResponse(status_code=status.HTTP_404_NOT_FOUND, content={"error": str(exc)})

    @app.exception_handler(StorageError)
    async def storage_error(request: Request, exc: StorageError) -> JSONResponse:
        LOG.error("%s %s failed: %s", request.method, request.url.path, exc)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=_error_body(request, "Storage unavailable", exc),
        )

    @app.exception_handler(Exception)
    async def internal_error(request: Request, exc: Exception) -> JSONResponse:
        LOG.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=_error_body(request, "Internal server error", exc),
        )


@asynccontextmanager
async def lifespan(app: FastAPI):
    database: Database = app.state.database
    owns_database = not database.is_open
    database.open()
    database.init_db()
    LOG.info("Expense service ready (database %s)", database.safe_url)
    try:
        yield
    finally:
        if owns_database:
            database.close()
        LOG.info("Expense service stopped")


def create_app(settings: Optional[Settings] = None, database: Optional[Database] = None) -> FastAPI:
    """Build the FastAPI application.

    ``database`` lets callers inject an already opened handle (the CLI and the
    tests do); otherwise one is created from ``settings`` and opened by the
    application lifespan.
    """

    settings = settings or load_settings()
    configure_logging(settings)
    database = database or Database(settings)

    app = FastAPI(title="Expense Tracker API", version=__version__, lifespan=lifespan)
    app.state.settings = settings
    app.state.database = database
    app.state.store = ExpenseStore(database)
    app.state.started_at = time.monotonic()

    app.add_middleware(
        JSONCORSMiddleware,
        allow_origins=list(settings.allowed_origins),
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization"],
        max_age=86400,
    )

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        started = time.perf_counter()
        response = await call_next(request)
        duration_ms = round((time.perf_counter() - started) * 1000, 2)
        LOG.info(
            "%s %s -> %s (%.2f ms)",
            request.method,
            request.url.path,
            response.status_code,
            duration_ms,
            extra={
                "method": request.method,
                "path": request.url.path,
                "status_code": response.status_code,
                "duration_ms": duration_ms,
            },
        )
        return response

    _register_error_handlers(app)
    for prefix in API_PREFIXES:
        app.include_router(router, prefix=prefix)
    return app
