from contextlib import asynccontextmanager
import logging
import time
import uuid

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles
from fastapi.responses import JSONResponse, PlainTextResponse

from app.api.v1.router import api_router
from app.core.exceptions import (
    EntityNotFoundError,
    ExportValidationError,
    ObjectNotFoundError,
    StorageError,
)
from app.core.logging import configure_logging
from app.core.metrics import get_metrics_payload
from app.core.request_context import reset_request_id, set_request_id
from app.core.settings import settings
from app.core.telemetry import setup_telemetry
from app.db.base import Base
from app.db.session import get_engine, init_engine
from app.services import job_queue
from app.services.notifications import init_notifier
from app.services.storage import init_storage


logger = logging.getLogger("app")


def _is_polling_request(method: str, path: str) -> bool:
    if method != "GET":
        return False
    if path.startswith("/v1/exports/") and not path.endswith("/next"):
        return True
    return path in {"/health", "/metrics"}


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging(settings.log_level, settings.log_file)

    init_engine(settings.database_url)

    setup_telemetry(app, service_name="roomscan-export")

    if settings.db_auto_create and settings.database_url.startswith("sqlite"):
        engine = get_engine()
        Base.metadata.create_all(bind=engine)

    init_storage(settings)
    init_notifier(settings)

    await job_queue.start_worker()
    try:
        yield
    finally:
        await job_queue.stop_worker()


app = FastAPI(title="Room Scan Export Service", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_allow_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.mount(
    settings.media_url_prefix,
    StaticFiles(directory=settings.media_root, check_dir=False),
    name="media",
)


@app.middleware("http")
async def request_context_middleware(request: Request, call_next):
    request_id = request.headers.get("x-request-id") or str(uuid.uuid4())
    request.state.request_id = request_id
    token = set_request_id(request_id)
    start = time.perf_counter()
    try:
        try:
            response = await call_next(request)
        except Exception:
            duration_ms = (time.perf_counter() - start) * 1000
            logger.exception(
                "request_failed",
                extra={
                    "method": request.method,
                    "path": request.url.path,
                    "duration_ms": duration_ms,
                },
            )
            raise

        duration_ms = (time.perf_counter() - start) * 1000
        request_logger = logger.debug if _is_polling_request(request.method, request.url.path) else logger.info
        request_logger(
            "request_complete",
            extra={
                "method": request.method,
                "path": request.url.path,
                "status": response.status_code,
                "duration_ms": duration_ms,
            },
        )
        response.headers["x-request-id"] = request_id
        return response
    finally:
        reset_request_id(token)


def _error_response(request: Request, status_code: int, detail: str) -> JSONResponse:
    request_id = getattr(request.state, "request_id", None)
    return JSONResponse(
        status_code=status_code,
        content={"detail": detail, "request_id": request_id},
    )


@app.exception_handler(ExportValidationError)
async def export_validation_error_handler(request: Request, exc: ExportValidationError):
    return _error_response(request, 400, exc.detail)


@app.exception_handler(RequestValidationError)
async def request_validation_error_handler(request: Request, exc: RequestValidationError):
    messages = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ()) if part != "body")
        messages.append(f"{location}: {error.get('msg')}" if location else str(error.get("msg")))
    return _error_response(request, 400, "; ".join(messages) or "invalid request")


@app.exception_handler(EntityNotFoundError)
async def entity_not_found_handler(request: Request, exc: EntityNotFoundError):
    return _error_response(request, 404, exc.detail)


@app.exception_handler(ObjectNotFoundError)
async def object_not_found_handler(request: Request, exc: ObjectNotFoundError):
    return _error_response(request, 404, exc.detail)


@app.exception_handler(StorageError)
async def storage_error_handler(request: Request, exc: StorageError):
    logger.error("storage_error", extra={"error": str(exc)})
    return _error_response(request, 500, exc.detail)


@app.exception_handler(ValueError)
async def value_error_handler(request: Request, exc: ValueError):
    return _error_response(request, 400, str(exc))


@app.exception_handler(KeyError)
async def key_error_handler(request: Request, exc: KeyError):
    return _error_response(request, 400, f"{exc}")


@app.exception_handler(RuntimeError)
async def runtime_error_handler(request: Request, exc: RuntimeError):
    return _error_response(request, 502, str(exc))


@app.get("/health")
def health():
    return {"status": "ok", "storage_backend": settings.storage_backend}


@app.get("/metrics")
def metrics_endpoint():
    return PlainTextResponse(get_metrics_payload(), media_type="text/plain; version=0.0.4; charset=utf-8")


app.include_router(api_router)
