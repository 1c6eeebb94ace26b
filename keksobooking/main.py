import logging
from contextlib import asynccontextmanager
from time import perf_counter

from fastapi import FastAPI
from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from keksobooking.core.config import settings
from keksobooking.core.errors import OfferApiError, build_error_envelope
from keksobooking.core.log_buffer import install_log_buffer, record_request
from keksobooking.db.session import init_db
from keksobooking.api.routes import diagnostics, health, offers

logger = logging.getLogger("keksobooking.startup")
error_logger = logging.getLogger("keksobooking.errors")

install_log_buffer(
    max_logs=settings.log_buffer_size,
    max_request_events=settings.log_request_event_size,
    file_path=settings.log_buffer_file,
)


@asynccontextmanager
async def lifespan(_: FastAPI):
    logger.info("=== Keksobooking Startup ===")
    logger.info("ENVIRONMENT: %s", settings.environment)
    logger.info("DATABASE_URL: %s", "***" if settings.database_url else "NOT SET")
    logger.info("STORAGE_DIR: %s", settings.storage_dir)
    logger.info("IMAGE_STORAGE_BACKEND: %s", settings.image_storage_backend)
    logger.info("============================")

    # Healthchecks should succeed even if the database is temporarily down.
    try:
        init_db()
        logger.info("Database initialization completed successfully")
    except Exception as exc:  # pragma: no cover - defensive startup
        logger.exception("Database initialization skipped due to error: %s", exc)
    yield


app = FastAPI(title=settings.app_name, lifespan=lifespan)

env_lower = settings.environment.lower()
if settings.cors_allow_all and env_lower not in {"prod", "production"}:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"]
    )
elif settings.cors_allowed_origins:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allowed_origins,
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"]
    )

app.include_router(health.router)
app.include_router(offers.router)
app.include_router(diagnostics.router)


async def respond_with_error(request: Request, exc: Exception) -> JSONResponse:
    """Serialize any failure as the error envelope with its status code."""

    envelope = build_error_envelope(exc)
    if envelope.status_code >= 500:
        error_logger.error(
            "Request %s %s failed", request.method, request.url.path, exc_info=exc
        )
    elif not isinstance(exc, OfferApiError):
        error_logger.info(
            "Request %s %s rejected with %s", request.method, request.url.path, envelope.status_code
        )
    return JSONResponse(status_code=envelope.status_code, content=envelope.to_payload())


app.add_exception_handler(OfferApiError, respond_with_error)
app.add_exception_handler(RequestValidationError, respond_with_error)
app.add_exception_handler(StarletteHTTPException, respond_with_error)
app.add_exception_handler(Exception, respond_with_error)


@app.get("/metadata", summary="Service metadata")
def service_metadata() -> dict[str, str]:
    return {"service": settings.app_name, "environment": settings.environment}


def _offer_key(path: str) -> str | None:
    parts = path.strip("/").split("/")
    return parts[1] if len(parts) > 1 and parts[1] else None


@app.middleware("http")
async def capture_offer_requests(request: Request, call_next):
    start = perf_counter()
    status_code: int = 500
    try:
        response = await call_next(request)
        status_code = response.status_code
        return response
    finally:
        if request.url.path.startswith("/offers"):
            record_request(
                method=request.method,
                path=request.url.path,
                status=status_code,
                duration_ms=(perf_counter() - start) * 1000.0,
                offer_key=_offer_key(request.url.path),
            )
