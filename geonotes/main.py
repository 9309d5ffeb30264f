import asyncio
import logging
from contextlib import asynccontextmanager, suppress
from typing import Annotated, Optional

from fastapi import Depends, FastAPI, Query, Request, Response, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from geonotes.auth import CurrentUser
from geonotes.backends import MessageStore, create_store
from geonotes.config import Settings, get_settings
from geonotes.errors import ProximityError, StorageError
from geonotes.logging_utils import RequestLoggingMiddleware, log_message_data, setup_logging
from geonotes.metrics import get_metrics, get_metrics_content_type, record_purge
from geonotes.records import Clock, utc_now
from geonotes.schemas import (
    CreateMessageRequest,
    DeleteResponse,
    ErrorResponse,
    HealthResponse,
    MessageResponse,
    StatusResponse,
)
from geonotes.service import ProximityService
from geonotes.storage import Database

logger = logging.getLogger(__name__)


async def purge_periodically(store: MessageStore, interval_seconds: float) -> None:
    """Run the retention purge forever; a failed round is logged and retried next interval."""
    while True:
        await asyncio.sleep(interval_seconds)
        try:
            purged = await run_in_threadpool(store.purge_expired)
            record_purge(purged)
        except StorageError as e:
            logger.error(f"Retention purge failed: {e}")
        except Exception:
            logger.exception("Retention purge crashed, retrying next interval")


def get_service(request: Request) -> ProximityService:
    return request.app.state.service


Service = Annotated[ProximityService, Depends(get_service)]


def create_app(
    settings: Optional[Settings] = None,
    store: Optional[MessageStore] = None,
    clock: Clock = utc_now,
) -> FastAPI:
    """
    Build the application.

    The database handle and the store are created once here (or injected by
    the caller) and shared by every request through app.state.
    """
    settings = settings or get_settings()
    setup_logging(settings.LOG_LEVEL)

    database = None
    if store is None:
        database = Database(settings.DATABASE_URL)
        store = create_store(settings, database, clock=clock)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """
        - Startup: create tables and start the retention purge
        - Shutdown: stop the purge and release pooled connections
        """
        store.init_schema()
        logger.info(f"Message store ready: backend={store.name}")

        purge_task = None
        if settings.PURGE_INTERVAL_SECONDS > 0 and store.has_retention:
            purge_task = asyncio.create_task(purge_periodically(store, settings.PURGE_INTERVAL_SECONDS))
        yield
        if purge_task is not None:
            purge_task.cancel()
            with suppress(asyncio.CancelledError):
                await purge_task
        if database is not None:
            database.dispose()

    app = FastAPI(
        title="geonotes API",
        description="Location-tagged notes visible to users within a fixed radius",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.store = store
    app.state.service = ProximityService(
        store,
        radius_meters=settings.NEARBY_RADIUS_METERS,
        max_age_seconds=settings.MESSAGE_MAX_AGE_SECONDS,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(RequestLoggingMiddleware)

    register_exception_handlers(app)
    register_routes(app)
    return app


# =============================================================================
# Error Mapping
# =============================================================================

_RESULT_BY_STATUS = {
    400: "validation_error",
    401: "unauthorized",
    404: "not_found",
}


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(ProximityError)
    async def proximity_error_handler(request: Request, exc: ProximityError) -> JSONResponse:
        if isinstance(exc, StorageError):
            logger.error(f"Storage error on {request.method} {request.url.path}: {exc.detail}")
            detail = "Server error"
        else:
            detail = exc.detail
        result = _RESULT_BY_STATUS.get(exc.status_code, "error")
        log_message_data(request, message_id=request.path_params.get("message_id"), result=result)
        return JSONResponse(status_code=exc.status_code, content={"detail": detail})

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        errors = exc.errors()
        if errors:
            first = errors[0]
            field = ".".join(str(part) for part in first.get("loc", ()) if part not in ("body", "query", "path"))
            detail = f"{field}: {first.get('msg')}" if field else str(first.get("msg"))
        else:
            detail = "Invalid request"
        logger.warning(f"Request validation failed: {detail}")
        log_message_data(request, result="validation_error")
        return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"detail": detail})


# =============================================================================
# Routes
# =============================================================================

_ERRORS = {
    400: {"model": ErrorResponse, "description": "Missing or invalid field"},
    401: {"model": ErrorResponse, "description": "Missing/invalid token or not the owner"},
}


def register_routes(app: FastAPI) -> None:

    @app.get("/", response_model=StatusResponse)
    async def root() -> StatusResponse:
        return StatusResponse(message="geonotes API is running")

    @app.get("/health/live", response_model=HealthResponse)
    async def health_live() -> HealthResponse:
        """Liveness probe - always returns 200 once the app is running."""
        return HealthResponse(status="ok")

    @app.get("/health/ready", response_model=HealthResponse)
    def health_ready(request: Request, response: Response) -> HealthResponse:
        """
        Readiness probe - returns 200 only if:
        1. AUTH_TOKEN_SECRET is set (non-empty)
        2. The store's tables exist and the DB is reachable

        Otherwise returns 503 (Service Unavailable).
        """
        store = request.app.state.store
        if not request.app.state.settings.AUTH_TOKEN_SECRET:
            response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
            return HealthResponse(status="not_ready", reason="AUTH_TOKEN_SECRET not configured")

        if not store.check_ready():
            response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
            return HealthResponse(
                status="not_ready",
                reason="Database not reachable or schema not applied",
                backend=store.name,
            )

        return HealthResponse(status="ready", backend=store.name)

    @app.post(
        "/messages",
        response_model=MessageResponse,
        status_code=status.HTTP_201_CREATED,
        responses=_ERRORS,
    )
    def create_message(
        request: Request,
        service: Service,
        caller: CurrentUser,
        body: CreateMessageRequest,
    ) -> MessageResponse:
        """
        Post a new note at the given position.

        The id, timestamp and author come from the server, never the body.
        """
        record = service.create_message(caller, body.content, body.latitude, body.longitude)
        log_message_data(request, message_id=record.id, result="created")
        return MessageResponse.from_record(record)

    @app.get("/messages/nearby", response_model=list[MessageResponse], responses=_ERRORS)
    def nearby_messages(
        request: Request,
        service: Service,
        caller: CurrentUser,
        latitude: Annotated[Optional[float], Query(description="Caller latitude")] = None,
        longitude: Annotated[Optional[float], Query(description="Caller longitude")] = None,
    ) -> list[MessageResponse]:
        """
        Messages within the configured radius of the caller, newest first.

        Results reflect what the database has committed when the query runs;
        a create still in flight may not be visible yet.
        """
        records = service.nearby(latitude, longitude)
        log_message_data(request, result="listed", count=len(records))
        return [MessageResponse.from_record(r) for r in records]

    @app.get("/messages/mine", response_model=list[MessageResponse], responses=_ERRORS)
    def my_messages(
        request: Request,
        service: Service,
        caller: CurrentUser,
        limit: Annotated[int, Query(ge=1, le=100, description="Maximum number of messages to return")] = 50,
    ) -> list[MessageResponse]:
        records = service.messages_by(caller, limit=limit)
        log_message_data(request, result="listed", count=len(records))
        return [MessageResponse.from_record(r) for r in records]

    @app.get(
        "/messages/{message_id}",
        response_model=MessageResponse,
        responses={**_ERRORS, 404: {"model": ErrorResponse, "description": "Message not found"}},
    )
    def get_message(message_id: str, service: Service, caller: CurrentUser) -> MessageResponse:
        return MessageResponse.from_record(service.get_message(message_id))

    @app.delete(
        "/messages/{message_id}",
        response_model=DeleteResponse,
        responses={**_ERRORS, 404: {"model": ErrorResponse, "description": "Message not found"}},
    )
    def delete_message(request: Request, message_id: str, service: Service, caller: CurrentUser) -> DeleteResponse:
        """Delete a message. Only its author may do so."""
        service.delete_message(caller, message_id)
        log_message_data(request, message_id=message_id, result="deleted")
        return DeleteResponse()

    @app.get("/metrics")
    async def metrics() -> Response:
        """Expose Prometheus-style metrics in text exposition format."""
        return Response(
            content=get_metrics(),
            media_type=get_metrics_content_type()
        )


app = create_app()
